# paygate/x402/audit.py
"""
Audit logging for x402 payments.

This module records every payment decision for:
- Dispute resolution
- Financial reconciliation
- Debugging rejected proofs (internal reasons never reach the requester)

Log format: JSON lines (one event per line)
Log location: Configured via X402_AUDIT_LOG_PATH, toggled by X402_AUDIT_ENABLED

Events logged:
- 402 returned (resource, options offered)
- Payment received (payer, scheme, network)
- Payment verified (facilitator verdict)
- Payment rejected (stage and internal reason)
- Payment settled (transaction reference, network, policy)
- Error (type, context)
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from paygate.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_SETTLED = "payment_settled"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a short request ID for correlating events."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    return Path(settings.X402_AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    payer: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        client_ip: Client IP address (if available)
        payer: Payer address (if known)
        request_id: Identifier correlating events of one request

    Returns:
        A structured event ready to be written to the audit log
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "payer": payer,
        "data": data,
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    payer: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an event to the audit log.

    Write failures are logged and swallowed: auditing never changes the
    outcome of a payment.

    Returns:
        The request_id used for this event, or None if disabled or on error
    """
    if not settings.X402_AUDIT_ENABLED:
        return None

    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        payer=payer,
        request_id=request_id
    )

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except OSError as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


def log_payment_required_sent(
    client_ip: str,
    resource: str,
    options: List[Dict[str, str]],
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 Payment Required response."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REQUIRED_SENT,
        data={"resource": resource, "options": options},
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_received(
    client_ip: str,
    payer: str,
    scheme: str,
    network: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_RECEIVED,
        data={"scheme": scheme, "network": network},
        client_ip=client_ip,
        payer=payer,
        request_id=request_id
    )


def log_payment_verified(
    client_ip: str,
    payer: Optional[str],
    is_valid: bool,
    invalid_reason: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_VERIFIED,
        data={"is_valid": is_valid, "invalid_reason": invalid_reason},
        client_ip=client_ip,
        payer=payer,
        request_id=request_id
    )


def log_payment_rejected(
    client_ip: str,
    stage: str,
    reason: str,
    payer: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log why a presented proof was turned into a 402."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REJECTED,
        data={"stage": stage, "reason": reason},
        client_ip=client_ip,
        payer=payer,
        request_id=request_id
    )


def log_payment_settled(
    client_ip: str,
    payer: Optional[str],
    transaction: Optional[str],
    network: Optional[str],
    success: bool,
    policy: str,
    error_reason: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_SETTLED,
        data={
            "success": success,
            "transaction": transaction,
            "network": network,
            "policy": policy,
            "error_reason": error_reason,
        },
        client_ip=client_ip,
        payer=payer,
        request_id=request_id
    )


def log_error(
    client_ip: str,
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        client_ip=client_ip,
        request_id=request_id
    )


def _iter_events(log_path: Path):
    with open(log_path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                continue


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    client_ip: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Read entries from the audit log, most recent first.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)
        client_ip: Filter by client IP (optional)
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    try:
        events = [
            event for event in _iter_events(log_path)
            if (event_type is None or event.get("event_type") == event_type.value)
            and (client_ip is None or event.get("client_ip") == client_ip)
        ]
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    return list(reversed(events))[:max_entries]


def get_audit_stats() -> Dict[str, Any]:
    """
    Get statistics from the audit log.

    Returns:
        Dict with event counts by type and the first/last timestamps
    """
    log_path = get_audit_log_path()
    stats: Dict[str, Any] = {
        "total_events": 0,
        "events_by_type": {},
        "first_event": None,
        "last_event": None,
        "log_path": str(log_path),
        "log_exists": log_path.exists(),
    }
    if not stats["log_exists"]:
        return stats

    try:
        for event in _iter_events(log_path):
            stats["total_events"] += 1
            kind = event.get("event_type", "unknown")
            stats["events_by_type"][kind] = stats["events_by_type"].get(kind, 0) + 1

            timestamp = event.get("timestamp")
            if timestamp:
                if stats["first_event"] is None:
                    stats["first_event"] = timestamp
                stats["last_event"] = timestamp
    except OSError as e:
        logger.error(f"Failed to get audit stats: {e}")
        stats["error"] = str(e)

    return stats
