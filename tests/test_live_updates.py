"""
Tests for the live update channel.

Validates:
- A notification on either stream triggers a full refresh
- No refresh is triggered after stop or for a previous quiz
- A failing subscription degrades to manual refresh
"""

import asyncio

from quizflow.analytics.aggregator import FlowAnalyticsAggregator
from quizflow.analytics.live_updates import LiveUpdateChannel
from tests.fixtures.stages import NOW, sessions, response
from tests.fixtures.collaborators import FakeAnalyticsQuery, FakeNotifier, settle


def make_channel(quiz_id="quiz-1"):
    query = FakeAnalyticsQuery(
        sessions_by_quiz={"quiz-1": sessions("a"), "quiz-2": sessions("b", "c", "d")},
        responses=[response("s1", "a")],
        stage_ids_by_quiz={"quiz-1": ["s1", "s2"], "quiz-2": ["t1"]},
    )
    aggregator = FlowAnalyticsAggregator(query, quiz_id=quiz_id, clock=lambda: NOW)
    notifier = FakeNotifier()
    return query, aggregator, notifier, LiveUpdateChannel(notifier, aggregator)


class TestSubscribe:

    def test_subscribes_to_both_streams(self):
        _, _, notifier, channel = make_channel()
        assert channel.start() is True
        assert channel.is_live
        assert channel.quiz_id == "quiz-1"
        assert sorted((q, e) for q, e, _ in notifier.active) == [("quiz-1", "responses"), ("quiz-1", "sessions")]

    def test_no_quiz(self):
        _, _, notifier, channel = make_channel(quiz_id=None)
        assert channel.start() is False
        assert notifier.active == []

    def test_disabled(self):
        _, aggregator, notifier, channel = make_channel()
        aggregator.set_enabled(False)
        assert channel.start() is False
        assert notifier.active == []

    def test_subscribe_failure_degrades(self):
        query, aggregator, _, _ = make_channel()
        channel = LiveUpdateChannel(FakeNotifier(fail_on_subscribe=True), aggregator)
        assert channel.start() is False
        assert not channel.is_live
        # Manual refresh still works
        assert asyncio.run(aggregator.refresh()) is True


class TestNotifications:

    def test_session_change_refreshes(self):
        query, aggregator, notifier, channel = make_channel()

        async def scenario():
            channel.start()
            query.sessions_by_quiz["quiz-1"] = sessions("a", "b", "c")
            assert notifier.fire("sessions", "quiz-1") == 1
            await channel.drain()

        asyncio.run(scenario())
        assert aggregator.total_sessions == 3

    def test_response_insert_refreshes(self):
        query, aggregator, notifier, channel = make_channel()

        async def scenario():
            channel.start()
            query.responses.append(response("s2", "a", minutes_ago=1))
            notifier.fire("responses")
            await channel.drain()

        asyncio.run(scenario())
        assert aggregator.stage_analytics["s2"].total_leads == 1
        assert aggregator.stage_analytics["s2"].recent_activity == 1

    def test_other_quiz_sessions_ignored(self):
        query, _, notifier, channel = make_channel()

        async def scenario():
            channel.start()
            assert notifier.fire("sessions", "quiz-9") == 0
            await settle()

        asyncio.run(scenario())
        assert query.calls == []

    def test_no_refresh_after_stop(self):
        query, _, notifier, channel = make_channel()

        async def scenario():
            channel.start()
            callbacks = [cb for _, _, cb in notifier.active]
            channel.stop()
            # A notification already queued by the backend arrives late
            for cb in callbacks:
                cb()
            await settle()

        asyncio.run(scenario())
        assert query.calls == []
        assert notifier.active == []
        assert not channel.is_live

    def test_dropped_subscriptions_not_live(self):
        _, _, notifier, channel = make_channel()
        channel.start()
        notifier.drop_all()
        assert not channel.is_live

    def test_repeated_notifications_each_refresh(self):
        query, _, notifier, channel = make_channel()

        async def scenario():
            channel.start()
            notifier.fire("responses")
            notifier.fire("responses")
            assert channel.pending_refreshes == 2
            await channel.drain()

        asyncio.run(scenario())
        assert [name for name, _ in query.calls].count("list_sessions") == 2


class TestSwitchQuiz:

    def test_resubscribes_and_refetches(self):
        query, aggregator, notifier, channel = make_channel()

        async def scenario():
            channel.start()
            old_callbacks = [cb for _, _, cb in notifier.active]
            assert channel.switch_quiz("quiz-2") is True
            for cb in old_callbacks:
                cb()
            await channel.drain()

        asyncio.run(scenario())
        assert channel.quiz_id == "quiz-2"
        assert sorted(q for q, _, _ in notifier.active) == ["quiz-2", "quiz-2"]
        assert ("quiz-1", "sessions") in notifier.unsubscribed
        assert aggregator.total_sessions == 3
        assert set(aggregator.stage_analytics) == {"t1"}
        # Only the switch itself refetched
        assert [name for name, _ in query.calls].count("list_sessions") == 1

    def test_switch_to_none(self):
        _, aggregator, notifier, channel = make_channel()
        channel.start()
        assert channel.switch_quiz(None) is False
        assert notifier.active == []
        assert aggregator.quiz_id is None
