"""Routing core: events, formatting, forwarding, provisioning and the router."""

from src.bridge.events import ErrorEvent, EventDispatcher, EventKind, MessageEvent
from src.bridge.forwarding import ConversationForwarder
from src.bridge.provisioner import ConversationProvisioner, ProvisionState
from src.bridge.router import BridgeRouter, RouteOutcome

__all__ = [
    "BridgeRouter",
    "ConversationForwarder",
    "ConversationProvisioner",
    "ErrorEvent",
    "EventDispatcher",
    "EventKind",
    "MessageEvent",
    "ProvisionState",
    "RouteOutcome",
]
