"""
Trigger models built from webhook events.
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict

class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"

class TriggerContext(BaseModel):
    event_kind: EventKind
    source_ref: str
    target_ref: str
    change_id: str

    model_config = ConfigDict(frozen=True)
