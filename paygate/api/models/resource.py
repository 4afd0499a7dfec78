from typing import Dict, List, Optional

from pydantic import BaseModel


class ResourceResponse(BaseModel):
    """
    Response model for a paid resource.
    """
    name: str
    content: str
    mimeType: str = "application/json"


class SupportedKindModel(BaseModel):
    x402Version: int
    scheme: str
    network: str


class SupportedResponse(BaseModel):
    """
    Payment kinds the configured facilitator can verify and settle.
    """
    kinds: List[SupportedKindModel]


class AuditStatsResponse(BaseModel):
    total_events: int
    events_by_type: Dict[str, int]
    first_event: Optional[str] = None
    last_event: Optional[str] = None
    log_path: str
    log_exists: bool
