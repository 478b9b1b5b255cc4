"""
Flow Analytics Aggregator

Per-stage lead counts and recent activity for one quiz, computed from the
raw session/response records:

1. Fetch the quiz's sessions, their responses, and the ordered stage ids
2. Start every known stage at zero
3. Leads per stage = distinct session ids among its responses
4. Recent activity per stage = responses inside the trailing window
5. First stage leads = max(its leads, total sessions): a session that never
   persisted a first-stage response still reached the first stage
6. Report the total session count alongside

Every refresh recomputes from freshly fetched data. The published snapshot is
replaced whole; a failed refresh leaves the previous one in place.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Callable, Mapping, Optional

from ..collaborators import AnalyticsQuery
from ..flow_settings import FlowSettings
from ..flow_types import Session, Response, StageAnalytics, FlowAnalyticsSnapshot

logger = logging.getLogger(__name__)

Listener = Callable[[FlowAnalyticsSnapshot], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_stage_analytics(
    sessions: list[Session],
    responses: list[Response],
    stage_ids: list[str],
    now: datetime,
    activity_window: timedelta = timedelta(minutes=5),
) -> FlowAnalyticsSnapshot:
    """
    Steps 2-6 of the aggregation over already-fetched records.

    Responses for stages not in `stage_ids` are ignored.
    """
    analytics = {sid: StageAnalytics(stage_id=sid) for sid in stage_ids}

    sessions_by_stage: dict[str, set[str]] = defaultdict(set)
    recent_by_stage: dict[str, int] = defaultdict(int)
    cutoff = now - activity_window

    for response in responses:
        sessions_by_stage[response.stage_id].add(response.session_id)
        if response.created_at > cutoff:
            recent_by_stage[response.stage_id] += 1

    for stage_id, session_set in sessions_by_stage.items():
        if stage_id in analytics:
            analytics[stage_id] = StageAnalytics(
                stage_id=stage_id,
                total_leads=len(session_set),
                recent_activity=recent_by_stage.get(stage_id, 0),
            )

    if stage_ids:
        first = analytics[stage_ids[0]]
        analytics[first.stage_id] = first.model_copy(
            update={"total_leads": max(first.total_leads, len(sessions))}
        )

    return FlowAnalyticsSnapshot(
        stage_analytics=analytics,
        total_sessions=len(sessions),
        computed_at=now,
    )


class FlowAnalyticsAggregator:
    """
    Holds the latest analytics snapshot for one quiz and refreshes it.

    Overlapping refreshes are not coordinated: each one applies its own
    result when it completes, so the last to finish wins. A refresh that
    completes after the quiz was switched or the aggregator was detached is
    discarded.
    """

    def __init__(
        self,
        query: AnalyticsQuery,
        quiz_id: Optional[str] = None,
        enabled: bool = True,
        settings: Optional[FlowSettings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._query = query
        self._quiz_id = quiz_id
        self._enabled = enabled
        self._settings = settings or FlowSettings()
        self._clock = clock
        self._snapshot = FlowAnalyticsSnapshot()
        self._in_flight = 0
        self._last_error: Optional[str] = None
        self._detached = False
        self._listeners: list[Listener] = []

    # ── State ─────────────────────────────────────────────────

    @property
    def quiz_id(self) -> Optional[str]:
        return self._quiz_id

    @property
    def enabled(self) -> bool:
        return self._enabled and not self._detached

    @property
    def snapshot(self) -> FlowAnalyticsSnapshot:
        return self._snapshot

    @property
    def stage_analytics(self) -> Mapping[str, StageAnalytics]:
        return MappingProxyType(self._snapshot.stage_analytics)

    @property
    def total_sessions(self) -> int:
        return self._snapshot.total_sessions

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    @property
    def last_error(self) -> Optional[str]:
        """Message of the most recent failed refresh; cleared by a successful one."""
        return self._last_error

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call `listener(snapshot)` after every applied refresh. Returns a remover."""
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled

    def set_quiz(self, quiz_id: Optional[str]) -> None:
        """Point the aggregator at another quiz; the previous quiz's data is dropped."""
        if quiz_id == self._quiz_id:
            return
        self._quiz_id = quiz_id
        self._last_error = None
        self._publish(FlowAnalyticsSnapshot())

    def detach(self) -> None:
        """The consuming view is gone: stop publishing, including in-flight results."""
        self._detached = True
        self._listeners.clear()

    # ── Refresh ───────────────────────────────────────────────

    async def refresh(self) -> bool:
        """
        Refetch everything and recompute.

        Returns True when a new snapshot was published. Fetch errors are
        logged and kept in `last_error`; they never propagate.
        """
        quiz_id = self._quiz_id
        if not quiz_id or not self.enabled:
            return False

        self._in_flight += 1
        try:
            sessions = await self._query.list_sessions(quiz_id)
            session_ids = [s.id for s in sessions]
            responses = await self._query.list_responses(session_ids) if session_ids else []
            stage_ids = await self._query.list_stage_ids(quiz_id)
            window = timedelta(minutes=self._settings.activity_window_minutes)
            snapshot = compute_stage_analytics(sessions, responses, stage_ids, self._clock(), window)
        except Exception as e:
            logger.error(f"[flow_analytics] Error fetching flow analytics for quiz {quiz_id}: {e}")
            if not self._detached and quiz_id == self._quiz_id:
                self._last_error = str(e)
            return False
        finally:
            self._in_flight -= 1

        if self._detached or quiz_id != self._quiz_id:
            return False

        self._last_error = None
        self._publish(snapshot)
        return True

    refetch = refresh

    def _publish(self, snapshot: FlowAnalyticsSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)
