from ordersync.helpship.client import get_helpship_gateway
from ordersync.helpship.gateway import HelpshipGateway
from ordersync.helpship.results import RemoteAck, SyncFailure, SyncOutcome, SyncSuccess

__all__ = [
    "HelpshipGateway",
    "RemoteAck",
    "SyncFailure",
    "SyncOutcome",
    "SyncSuccess",
    "get_helpship_gateway",
]
