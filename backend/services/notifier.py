"""
Notification collaborator — receives the typed GameEvents of committed sections.

Delivery is best effort: the state change already happened, so a failed
notice is logged and swallowed, never propagated back into the engine.
"""
import logging
from typing import List

from models.game import GameEvent

logger = logging.getLogger(__name__)


class Notifier:
    """Base notifier. Subclasses deliver one event at a time."""

    async def publish(self, game_id: str, event: GameEvent) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Default when no front-end is attached: events only reach the log."""

    async def publish(self, game_id: str, event: GameEvent) -> None:
        scope = f" → {event.recipients}" if event.recipients else ""
        logger.info(f"[{game_id}] {event.type.value}{scope} target={event.target}")


class FanoutNotifier(Notifier):

    def __init__(self, *notifiers: Notifier):
        self.notifiers: List[Notifier] = list(notifiers)

    async def publish(self, game_id: str, event: GameEvent) -> None:
        for notifier in self.notifiers:
            await notify_safely(notifier, game_id, event)


async def notify_safely(notifier: Notifier, game_id: str, event: GameEvent) -> bool:
    """Publish one event; returns False (after logging) if delivery failed."""
    try:
        await notifier.publish(game_id, event)
        return True
    except Exception as e:
        logger.warning(f"[{game_id}] Notification {event.type.value} failed: {e}")
        return False
