"""
Tests for the Postgres-backed collaborators.

No database is needed: connections are MagicMocks, and the LISTEN socket is
one end of a local socketpair.
"""

import asyncio
import socket
from datetime import datetime
from unittest.mock import MagicMock

import psycopg2
import psycopg2.extensions
import pytest

from quizflow.pg_store import PostgresAnalyticsQuery, get_db_connection
from quizflow.pg_notify import PostgresNotifier, parse_notification, ensure_notify_triggers


def mock_connection(rows=()):
    conn = MagicMock()
    conn.cursor.return_value.fetchall.return_value = list(rows)
    return conn


class TestGetDbConnection:

    def test_requires_env(self, monkeypatch):
        monkeypatch.delenv("DB_CONNECTION", raising=False)
        with pytest.raises(ValueError, match="DB_CONNECTION"):
            get_db_connection()


class TestPostgresAnalyticsQuery:

    def test_list_sessions(self):
        conn = mock_connection([
            ("a1", datetime(2025, 1, 1, 10, 0), None, False, 2, "mobile", None),
        ])
        query = PostgresAnalyticsQuery(connect=lambda: conn)
        result = asyncio.run(query.list_sessions("quiz-1"))

        assert [s.id for s in result] == ["a1"]
        assert result[0].device_type == "mobile"
        assert result[0].started_at.tzinfo is not None
        sql_text, params = conn.cursor.return_value.execute.call_args[0]
        assert "FROM quiz_sessions" in sql_text
        assert params == ("quiz-1",)
        conn.close.assert_called_once()

    def test_list_responses(self):
        conn = mock_connection([("s1", "a1", datetime(2025, 1, 1, 10, 0))])
        query = PostgresAnalyticsQuery(connect=lambda: conn)
        result = asyncio.run(query.list_responses(["a1", "a2"]))

        assert [(r.stage_id, r.session_id) for r in result] == [("s1", "a1")]
        _, params = conn.cursor.return_value.execute.call_args[0]
        assert params == (["a1", "a2"],)

    def test_list_responses_empty_skips_query(self):
        connect = MagicMock()
        query = PostgresAnalyticsQuery(connect=connect)
        assert asyncio.run(query.list_responses([])) == []
        connect.assert_not_called()

    def test_list_stage_ids_ordered(self):
        conn = mock_connection([(11,), (12,), (13,)])
        query = PostgresAnalyticsQuery(connect=lambda: conn)
        assert asyncio.run(query.list_stage_ids("quiz-1")) == ["11", "12", "13"]
        sql_text, _ = conn.cursor.return_value.execute.call_args[0]
        assert "ORDER BY ordem" in sql_text

    def test_error_propagates_and_closes(self):
        conn = mock_connection()
        conn.cursor.return_value.execute.side_effect = psycopg2.OperationalError("gone")
        query = PostgresAnalyticsQuery(connect=lambda: conn)
        with pytest.raises(psycopg2.OperationalError):
            asyncio.run(query.list_sessions("quiz-1"))
        conn.close.assert_called_once()


class TestParseNotification:

    def test_sessions(self):
        assert parse_notification('{"entity": "sessions", "quiz_id": "q1"}') == ("sessions", "q1")

    def test_responses(self):
        assert parse_notification('{"entity": "responses", "quiz_id": null}') == ("responses", None)

    def test_numeric_quiz_id(self):
        assert parse_notification('{"entity": "sessions", "quiz_id": 7}') == ("sessions", "7")

    @pytest.mark.parametrize("payload", ["", "not json", "[]", '{"entity": "stages"}', None])
    def test_unusable(self, payload):
        assert parse_notification(payload) is None


class TestDispatch:

    @pytest.fixture
    def notifier(self, monkeypatch):
        n = PostgresNotifier(connect=MagicMock())
        monkeypatch.setattr(n, "_ensure_listening", lambda: None)
        return n

    def test_sessions_filtered_by_quiz(self, notifier):
        calls = []
        notifier.subscribe("q1", "sessions", lambda: calls.append("q1"))
        notifier.subscribe("q2", "sessions", lambda: calls.append("q2"))
        assert notifier.dispatch("sessions", "q1") == 1
        assert calls == ["q1"]

    def test_responses_reach_everyone(self, notifier):
        calls = []
        notifier.subscribe("q1", "responses", lambda: calls.append("q1"))
        notifier.subscribe("q2", "responses", lambda: calls.append("q2"))
        notifier.subscribe("q1", "sessions", lambda: calls.append("sessions"))
        assert notifier.dispatch("responses", None) == 2
        assert sorted(calls) == ["q1", "q2"]

    def test_failing_callback_does_not_stop_others(self, notifier):
        calls = []

        def broken():
            raise RuntimeError("boom")

        notifier.subscribe("q1", "responses", broken)
        notifier.subscribe("q1", "responses", lambda: calls.append("ok"))
        assert notifier.dispatch("responses", None) == 2
        assert calls == ["ok"]

    def test_unsubscribe(self, notifier):
        calls = []
        sub = notifier.subscribe("q1", "sessions", lambda: calls.append(1))
        sub.unsubscribe()
        assert notifier.dispatch("sessions", "q1") == 0
        assert calls == []

    def test_unknown_entity(self, notifier):
        with pytest.raises(ValueError):
            notifier.subscribe("q1", "stages", lambda: None)

    def test_drain_dispatches_queued_notifications(self, notifier):
        calls = []
        notifier.subscribe("q1", "sessions", lambda: calls.append("s"))
        conn = MagicMock()
        conn.notifies = [
            MagicMock(payload='{"entity": "sessions", "quiz_id": "q1"}'),
            MagicMock(payload="garbage"),
            MagicMock(payload='{"entity": "sessions", "quiz_id": "q9"}'),
        ]
        notifier._conn = conn
        notifier._drain()
        conn.poll.assert_called_once()
        assert calls == ["s"]
        assert conn.notifies == []


class TestListening:

    def test_listen_lifecycle(self):
        left, right = socket.socketpair()
        conn = MagicMock()
        conn.fileno.return_value = left.fileno()
        notifier = PostgresNotifier(connect=lambda: conn, install_triggers=True)

        async def scenario():
            first = notifier.subscribe("q1", "sessions", lambda: None)
            second = notifier.subscribe("q1", "responses", lambda: None)
            assert notifier.is_listening
            first.unsubscribe()
            assert notifier.is_listening
            second.unsubscribe()
            assert not notifier.is_listening

        try:
            asyncio.run(scenario())
        finally:
            left.close()
            right.close()

        conn.set_isolation_level.assert_called_once_with(psycopg2.extensions.ISOLATION_LEVEL_AUTOCOMMIT)
        # Two trigger functions, two drop/create pairs, then LISTEN
        assert conn.cursor.return_value.execute.call_count == 7
        conn.close.assert_called_once()

    def test_failed_listen_closes_connection(self):
        conn = MagicMock()
        conn.cursor.return_value.execute.side_effect = psycopg2.ProgrammingError("no such table")
        notifier = PostgresNotifier(connect=lambda: conn)

        async def scenario():
            notifier.subscribe("q1", "sessions", lambda: None)

        with pytest.raises(psycopg2.ProgrammingError):
            asyncio.run(scenario())
        conn.close.assert_called_once()
        assert not notifier.is_listening


class TestReconnect:
    """A listener connection that fails during poll is re-established on the next loop turn."""

    def test_reconnects_and_resyncs(self):
        left, right = socket.socketpair()
        broken, fresh = MagicMock(), MagicMock()
        for conn in (broken, fresh):
            conn.fileno.return_value = left.fileno()
        broken.poll.side_effect = psycopg2.OperationalError("server closed the connection unexpectedly")
        connect = MagicMock(side_effect=[broken, fresh])
        notifier = PostgresNotifier(connect=connect)
        calls = []

        async def scenario():
            sub = notifier.subscribe("q1", "responses", lambda: calls.append("resync"))
            notifier._drain()
            assert not notifier.is_listening
            await asyncio.sleep(0)
            assert notifier.is_listening
            assert sub.is_active
            notifier.close()

        try:
            asyncio.run(scenario())
        finally:
            left.close()
            right.close()

        assert connect.call_count == 2
        assert calls == ["resync"]
        broken.close.assert_called_once()

    def test_failed_reconnect_drops_subscriptions(self):
        left, right = socket.socketpair()
        broken = MagicMock()
        broken.fileno.return_value = left.fileno()
        broken.poll.side_effect = psycopg2.OperationalError("server closed the connection unexpectedly")
        notifier = PostgresNotifier(connect=MagicMock(side_effect=[broken, psycopg2.OperationalError("refused")]))
        calls = []

        async def scenario():
            sub = notifier.subscribe("q1", "sessions", lambda: calls.append("s"))
            notifier._drain()
            await asyncio.sleep(0)
            return sub

        try:
            sub = asyncio.run(scenario())
        finally:
            left.close()
            right.close()

        assert not notifier.is_listening
        assert not sub.is_active
        assert notifier.dispatch("sessions", "q1") == 0
        assert calls == []


class TestEnsureNotifyTriggers:

    def test_statements(self):
        cur = MagicMock()
        ensure_notify_triggers(cur)
        plain = [c[0][0] for c in cur.execute.call_args_list if isinstance(c[0][0], str)]
        assert any("CREATE TRIGGER quizflow_sessions_notify" in s for s in plain)
        assert any("CREATE TRIGGER quizflow_responses_notify" in s for s in plain)
        assert cur.execute.call_count == 6
