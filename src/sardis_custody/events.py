"""Wallet events and the bus that publishes them.

Contracts emit events through the chain while a call frame is open; events
from frames that revert are discarded, and events from the outermost frame
are published to the bus once it commits.
"""
from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event names emitted by the custody core."""
    # Registry
    MODULE_REGISTERED = "ModuleRegistered"
    MODULE_DEREGISTERED = "ModuleDeregistered"
    UPGRADER_REGISTERED = "UpgraderRegistered"

    # Wallet
    AUTHORISED_MODULE = "AuthorisedModule"
    OWNER_CHANGED = "OwnerChanged"
    INVOKED = "Invoked"

    # Guardians
    GUARDIAN_ADDITION_REQUESTED = "GuardianAdditionRequested"
    GUARDIAN_ADDITION_CANCELLED = "GuardianAdditionCancelled"
    GUARDIAN_ADDED = "GuardianAdded"
    GUARDIAN_REVOCATION_REQUESTED = "GuardianRevocationRequested"
    GUARDIAN_REVOCATION_CANCELLED = "GuardianRevocationCancelled"
    GUARDIAN_REVOKED = "GuardianRevoked"

    # Lock
    LOCKED = "Locked"
    UNLOCKED = "Unlocked"

    # Recovery
    RECOVERY_EXECUTED = "RecoveryExecuted"
    RECOVERY_FINALIZED = "RecoveryFinalized"
    RECOVERY_CANCELED = "RecoveryCanceled"
    OWNERSHIP_TRANSFERRED = "OwnershipTransferred"

    # Relayer
    TRANSACTION_EXECUTED = "TransactionExecuted"
    REFUND = "Refund"


@dataclass(frozen=True)
class Event:
    """A single emitted event."""
    name: str
    address: str  # Emitting contract
    args: Dict[str, Any]
    timestamp: int
    index: int

    def __getitem__(self, key: str) -> Any:
        return self.args[key]


@dataclass
class EventBus:
    """Publishes committed events to subscribers.

    Example:
        bus = EventBus()
        bus.subscribe("Guardian*", on_guardian_event)
        bus.subscribe("TransactionExecuted", on_relay)
    """

    _subscribers: Dict[str, List[Callable[[Event], Any]]] = field(default_factory=dict)

    def subscribe(self, event_pattern: str, handler: Callable[[Event], Any]) -> None:
        """Subscribe to events whose name matches a pattern (fnmatch wildcards)."""
        if event_pattern not in self._subscribers:
            self._subscribers[event_pattern] = []

        if handler not in self._subscribers[event_pattern]:
            self._subscribers[event_pattern].append(handler)
            logger.debug(f"Subscribed {getattr(handler, '__name__', handler)} to {event_pattern}")

    def unsubscribe(self, event_pattern: str, handler: Callable[[Event], Any]) -> None:
        """Remove a subscription."""
        handlers = self._subscribers.get(event_pattern)
        if not handlers or handler not in handlers:
            return
        handlers.remove(handler)
        if not handlers:
            del self._subscribers[event_pattern]

    def publish(self, events: List[Event]) -> None:
        """Deliver committed events to matching subscribers.

        A failing handler is logged and does not affect the other handlers
        or the already-committed state.
        """
        for event in events:
            for pattern, handlers in list(self._subscribers.items()):
                if not fnmatch.fnmatchcase(event.name, pattern):
                    continue
                for handler in list(handlers):
                    try:
                        handler(event)
                    except Exception as e:
                        logger.error(
                            f"Handler {getattr(handler, '__name__', handler)} "
                            f"failed for {event.name}: {e}",
                            exc_info=True,
                        )

    def clear_subscribers(self) -> None:
        """Clear all subscriptions (useful for testing)."""
        self._subscribers.clear()


__all__ = [
    "EventType",
    "Event",
    "EventBus",
]
