"""
Live Update Channel

Bridges change notifications for the active quiz to full aggregator
refreshes. Two streams are watched: any change to the quiz's sessions, and
any inserted response (not filtered by quiz; the aggregator's own join does
the filtering). Notifications carry no payload and no delta is applied
locally.

Notifier callbacks must run on the event loop thread.
"""

import asyncio
import logging
from functools import partial
from typing import Optional

from ..collaborators import PushNotifier, Subscription, SESSIONS, RESPONSES
from .aggregator import FlowAnalyticsAggregator

logger = logging.getLogger(__name__)


class LiveUpdateChannel:
    """Subscriptions for one quiz at a time, torn down on stop or quiz switch."""

    def __init__(self, notifier: PushNotifier, aggregator: FlowAnalyticsAggregator):
        self._notifier = notifier
        self._aggregator = aggregator
        self._subscriptions: list[Subscription] = []
        self._quiz_id: Optional[str] = None
        self._generation = 0
        self._tasks: set[asyncio.Task] = set()

    @property
    def quiz_id(self) -> Optional[str]:
        return self._quiz_id

    @property
    def is_live(self) -> bool:
        return bool(self._subscriptions) and all(sub.is_active for sub in self._subscriptions)

    @property
    def pending_refreshes(self) -> int:
        return len(self._tasks)

    def start(self, quiz_id: Optional[str] = None) -> bool:
        """
        Subscribe to both streams for `quiz_id` (default: the aggregator's quiz).

        Returns False when there is nothing to watch (no quiz, feature disabled)
        or when subscribing fails; the view then works with manual refresh only.
        """
        self.stop()
        quiz_id = quiz_id or self._aggregator.quiz_id
        if not quiz_id or not self._aggregator.enabled:
            return False

        generation = self._generation
        subscriptions = []
        try:
            for entity in (SESSIONS, RESPONSES):
                callback = partial(self._on_change, entity, generation)
                subscriptions.append(self._notifier.subscribe(quiz_id, entity, callback))
        except Exception as e:
            logger.warning(f"[flow_analytics] Live updates unavailable for quiz {quiz_id}: {e}")
            for sub in subscriptions:
                self._safe_unsubscribe(sub)
            return False

        self._subscriptions = subscriptions
        self._quiz_id = quiz_id
        return True

    def stop(self) -> None:
        """Unsubscribe. Refreshes already running may still complete."""
        self._generation += 1
        subscriptions, self._subscriptions = self._subscriptions, []
        for sub in subscriptions:
            self._safe_unsubscribe(sub)
        self._quiz_id = None

    def switch_quiz(self, quiz_id: Optional[str]) -> bool:
        """Move to another quiz: drop old subscriptions, refetch, resubscribe."""
        self.stop()
        self._aggregator.set_quiz(quiz_id)
        if not quiz_id:
            return False
        self._schedule_refresh()
        return self.start(quiz_id)

    async def drain(self) -> None:
        """Wait for every refresh triggered so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _on_change(self, entity: str, generation: int) -> None:
        if generation != self._generation or not self._subscriptions:
            return
        logger.info(f"[flow_analytics] {entity} update detected for quiz {self._quiz_id}, refreshing analytics")
        self._schedule_refresh()

    def _schedule_refresh(self) -> None:
        task = asyncio.get_running_loop().create_task(self._aggregator.refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _safe_unsubscribe(self, sub: Subscription) -> None:
        try:
            sub.unsubscribe()
        except Exception as e:
            logger.warning(f"[flow_analytics] Failed to unsubscribe: {e}")
