# settlement_system/events/event_bus.py
"""
Post-commit notifications of settlement outcomes.

Services emit only after their unit of work has committed, so a handler
never sees a rolled-back payout. Delivery is best-effort: a failing handler
is logged and the remaining handlers still run.
"""
from collections import defaultdict
from typing import Any, Callable, Dict, List
import inspect
import logging

logger = logging.getLogger(__name__)


class SettlementEvents:
    """Event names emitted by the services."""

    SUBSCRIPTION_SUBMITTED = "subscription.submitted"
    SUBSCRIPTION_ACTIVATED = "subscription.activated"
    SUBSCRIPTION_REJECTED = "subscription.rejected"

    COMMISSION_PAID = "commission.paid"
    BONUSES_RESET = "bonuses.reset"

    RANK_ACHIEVED = "rank.achieved"
    RANK_ASSIGNED = "rank.assigned"

    SIGNAL_PUBLISHED = "signal.published"
    SIGNAL_JOINED = "signal.joined"
    SIGNAL_RESOLVED = "signal.resolved"

    WITHDRAWAL_REQUESTED = "withdrawal.requested"


def _handlerName(handler: Callable) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class EventBus:
    """In-process fan-out of settlement events to sync or async handlers."""

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)

    def subscribe(self, eventName: str, handler: Callable):
        self._handlers[eventName].append(handler)

    def unsubscribe(self, eventName: str, handler: Callable):
        handlers = self._handlers.get(eventName, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, eventName: str, data: Dict[str, Any]) -> int:
        """
        Deliver data to every handler of eventName.
        Returns how many handlers failed.
        """
        failed = 0

        for handler in list(self._handlers.get(eventName, [])):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                failed += 1
                logger.error(f"Handler {_handlerName(handler)} failed on {eventName}: {e}", exc_info=True)

        return failed

    def clear(self):
        self._handlers.clear()


# Shared by all services of the process
eventBus = EventBus()
