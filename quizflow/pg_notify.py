"""
Postgres change notifications

PushNotifier over LISTEN/NOTIFY. Row triggers on quiz_sessions (any change)
and quiz_responses (insert) publish a small JSON payload on one channel:

    {"entity": "sessions", "quiz_id": "<quiz>"}
    {"entity": "responses", "quiz_id": null}

One autocommit connection LISTENs while at least one subscription exists;
its socket is watched with loop.add_reader, so callbacks run on the event
loop thread.
"""

import asyncio
import json
import logging
from itertools import count
from typing import Callable, Dict, Optional, Tuple

import psycopg2
import psycopg2.extensions
from psycopg2 import sql

from .collaborators import NotificationCallback, SESSIONS, RESPONSES
from .pg_store import get_db_connection

logger = logging.getLogger(__name__)

NOTIFY_CHANNEL = "quizflow_changes"


def ensure_notify_triggers(cur, channel: str = NOTIFY_CHANNEL) -> None:
    """
    Ensure the notify trigger functions and triggers exist.

    Lazy (on demand) like the rest of the schema helpers, so a fresh
    database does not need a separate migration step.
    """
    cur.execute(
        sql.SQL(
            """
            CREATE OR REPLACE FUNCTION quizflow_notify_session_change() RETURNS trigger AS $$
            BEGIN
              PERFORM pg_notify({channel}, json_build_object(
                'entity', 'sessions',
                'quiz_id', COALESCE(NEW.quiz_id, OLD.quiz_id)
              )::text);
              RETURN NULL;
            END
            $$ LANGUAGE plpgsql
            """
        ).format(channel=sql.Literal(channel))
    )
    cur.execute(
        sql.SQL(
            """
            CREATE OR REPLACE FUNCTION quizflow_notify_response_insert() RETURNS trigger AS $$
            BEGIN
              PERFORM pg_notify({channel}, json_build_object(
                'entity', 'responses',
                'quiz_id', NULL
              )::text);
              RETURN NULL;
            END
            $$ LANGUAGE plpgsql
            """
        ).format(channel=sql.Literal(channel))
    )
    cur.execute("DROP TRIGGER IF EXISTS quizflow_sessions_notify ON quiz_sessions")
    cur.execute(
        """
        CREATE TRIGGER quizflow_sessions_notify
          AFTER INSERT OR UPDATE OR DELETE ON quiz_sessions
          FOR EACH ROW EXECUTE FUNCTION quizflow_notify_session_change()
        """
    )
    cur.execute("DROP TRIGGER IF EXISTS quizflow_responses_notify ON quiz_responses")
    cur.execute(
        """
        CREATE TRIGGER quizflow_responses_notify
          AFTER INSERT ON quiz_responses
          FOR EACH ROW EXECUTE FUNCTION quizflow_notify_response_insert()
        """
    )


def parse_notification(payload: str) -> Optional[Tuple[str, Optional[str]]]:
    """(entity, quiz_id) from a notification payload, or None if unusable."""
    try:
        data = json.loads(payload)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or data.get("entity") not in (SESSIONS, RESPONSES):
        return None
    quiz_id = data.get("quiz_id")
    return data["entity"], (str(quiz_id) if quiz_id is not None else None)


class _PgSubscription:
    def __init__(self, notifier: "PostgresNotifier", key: int):
        self._notifier = notifier
        self._key = key

    @property
    def is_active(self) -> bool:
        return self._key in self._notifier._subscribers

    def unsubscribe(self) -> None:
        self._notifier._remove(self._key)


class PostgresNotifier:
    """
    PushNotifier backed by Postgres LISTEN/NOTIFY.

    subscribe() must be called from within the running event loop.
    """

    def __init__(
        self,
        connect: Callable = get_db_connection,
        channel: str = NOTIFY_CHANNEL,
        install_triggers: bool = False,
    ):
        self._connect = connect
        self._channel = channel
        self._install_triggers = install_triggers
        self._conn = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._fd: Optional[int] = None
        self._keys = count(1)
        self._subscribers: Dict[int, Tuple[str, str, NotificationCallback]] = {}

    @property
    def is_listening(self) -> bool:
        return self._conn is not None

    def subscribe(self, quiz_id: str, entity: str, callback: NotificationCallback) -> _PgSubscription:
        if entity not in (SESSIONS, RESPONSES):
            raise ValueError(f"Unknown entity: {entity!r}")
        self._ensure_listening()
        key = next(self._keys)
        self._subscribers[key] = (quiz_id, entity, callback)
        return _PgSubscription(self, key)

    def close(self) -> None:
        self._subscribers.clear()
        self._stop_listening()

    def _ensure_listening(self) -> None:
        if self._conn is not None:
            return
        loop = asyncio.get_running_loop()
        conn = self._connect()
        try:
            conn.set_isolation_level(psycopg2.extensions.ISOLATION_LEVEL_AUTOCOMMIT)
            cur = conn.cursor()
            if self._install_triggers:
                ensure_notify_triggers(cur, self._channel)
            cur.execute(sql.SQL("LISTEN {}").format(sql.Identifier(self._channel)))
            fd = conn.fileno()
            loop.add_reader(fd, self._drain)
        except Exception:
            conn.close()
            raise
        self._conn = conn
        self._loop = loop
        self._fd = fd

    def _stop_listening(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        if self._loop is not None and self._fd is not None:
            self._loop.remove_reader(self._fd)
        self._loop = None
        self._fd = None
        conn.close()

    def _remove(self, key: int) -> None:
        self._subscribers.pop(key, None)
        if not self._subscribers:
            self._stop_listening()

    def _drain(self) -> None:
        conn = self._conn
        if conn is None:
            return
        try:
            conn.poll()
        except psycopg2.Error as e:
            logger.error(f"[pg_notify] Listener connection failed: {e}")
            loop = self._loop
            self._stop_listening()
            if loop is not None and self._subscribers:
                loop.call_soon(self._reconnect)
            return
        while conn.notifies:
            notification = conn.notifies.pop(0)
            parsed = parse_notification(notification.payload)
            if parsed is None:
                logger.warning(f"[pg_notify] Ignoring malformed payload: {notification.payload!r}")
                continue
            self.dispatch(*parsed)

    def _reconnect(self) -> None:
        """
        Re-establish LISTEN after the connection dropped.

        Notifications sent while disconnected are lost, so every response
        subscriber (each live view holds one) is called once to resync. If the
        connection cannot be re-established, all subscriptions are dropped.
        """
        if self._conn is not None or not self._subscribers:
            return
        try:
            self._ensure_listening()
        except Exception as e:
            logger.error(f"[pg_notify] Reconnect failed, live updates degraded to manual refresh: {e}")
            self._subscribers.clear()
            return
        logger.info("[pg_notify] Listener reconnected")
        self.dispatch(RESPONSES, None)

    def dispatch(self, entity: str, quiz_id: Optional[str]) -> int:
        """
        Invoke the callbacks interested in one notification.

        Session changes reach only subscribers of that quiz; response inserts
        reach every response subscriber. Returns the number of callbacks run.
        """
        delivered = 0
        for sub_quiz_id, sub_entity, callback in list(self._subscribers.values()):
            if sub_entity != entity:
                continue
            if entity == SESSIONS and sub_quiz_id != quiz_id:
                continue
            try:
                callback()
            except Exception as e:
                logger.error(f"[pg_notify] Subscriber callback failed: {e}")
            delivered += 1
        return delivered
