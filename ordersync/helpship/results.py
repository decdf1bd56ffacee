"""
Outcomes of WMS calls.

The gateway never raises for remote failures; callers branch with isinstance:

    outcome = gateway.sync_order(order)
    if isinstance(outcome, SyncSuccess):
        ...
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class SyncSuccess:
    helpship_order_id: str
    total: Decimal
    held: bool = False


@dataclass(frozen=True)
class SyncFailure:
    error: str
    status_code: Optional[int] = None


@dataclass(frozen=True)
class RemoteAck:
    """A mirrored status change (hold, unhold, cancel, uncancel, address) was accepted."""
    helpship_order_id: str
    action: str
    details: Dict[str, Any] = field(default_factory=dict)


SyncOutcome = Union[SyncSuccess, SyncFailure]
MirrorOutcome = Union[RemoteAck, SyncFailure]
