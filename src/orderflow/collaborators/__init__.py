"""Capability interfaces for the collaborators this service does not own."""

from orderflow.collaborators.identity import SYSTEM_ACTOR, Identity, IdentityResolver, StaticTokenResolver
from orderflow.collaborators.notifications import LoggingNotifier, OrderNotifier, RecordingNotifier

__all__ = [
    "SYSTEM_ACTOR",
    "Identity",
    "IdentityResolver",
    "LoggingNotifier",
    "OrderNotifier",
    "RecordingNotifier",
    "StaticTokenResolver",
]
