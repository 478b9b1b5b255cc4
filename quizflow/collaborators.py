"""
Contracts of the external collaborators the flow core talks to.

Implementations are passed in explicitly (constructor/function arguments);
the Postgres-backed ones live in pg_store.py and pg_notify.py.
"""

from typing import Callable, Protocol

from .flow_types import Stage, Session, Response


NotificationCallback = Callable[[], None]

SESSIONS = "sessions"
RESPONSES = "responses"


class StagePersistence(Protocol):
    """Owner of stage CRUD. Receives the full stage list after every structural change."""

    def __call__(self, stages: list[Stage]) -> None: ...


class AnalyticsQuery(Protocol):
    """Read side of sessions/responses, scoped by quiz."""

    async def list_sessions(self, quiz_id: str) -> list[Session]: ...

    async def list_responses(self, session_ids: list[str]) -> list[Response]: ...

    async def list_stage_ids(self, quiz_id: str) -> list[str]:
        """Stage ids in sequence order."""
        ...


class Subscription(Protocol):
    @property
    def is_active(self) -> bool:
        """False once the notifier has dropped the subscription (e.g. lost connection)."""
        ...

    def unsubscribe(self) -> None: ...


class PushNotifier(Protocol):
    """
    Change notifications. `entity` is SESSIONS (any change to the quiz's
    sessions) or RESPONSES (any inserted response, not filtered by quiz).
    The callback carries no payload.
    """

    def subscribe(self, quiz_id: str, entity: str, callback: NotificationCallback) -> Subscription: ...
