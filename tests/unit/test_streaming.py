"""Tests for RunStream context manager."""

import pytest

from agui import AgentSession, ReplayTransport
from agui._types import RunStatus
from agui.coordinator import CoordinatorState, Notification
from tests.utils.factories import EventFactory as F


def _answer_run(text_parts, result=None):
    return [
        F.run_started(),
        F.message_start("m1"),
        *[F.message_content("m1", part) for part in text_parts],
        F.message_end("m1"),
        F.run_finished(result=result),
    ]


@pytest.mark.unit
class TestRunStream:
    def test_iteration_yields_notifications(self):
        session = AgentSession(ReplayTransport(_answer_run(["Hello"])))
        notifications = list(session.run())
        assert all(isinstance(n, Notification) for n in notifications)
        assert notifications[-1].terminal

    def test_text_accumulation(self):
        session = AgentSession(ReplayTransport(_answer_run(["Hello", " world"])))
        stream = session.run()
        list(stream)
        assert stream.text == "Hello world"
        assert stream.status == CoordinatorState.FINISHED
        assert stream.error is None

    def test_text_skips_tool_only_messages(self, replay_session):
        stream = replay_session.run()
        stream.wait()
        assert stream.text == "Let me check"
        assert len(stream.messages) == 1

    def test_result(self):
        session = AgentSession(ReplayTransport(_answer_run(["ok"], result={"score": 3})))
        stream = session.run()
        stream.wait()
        assert stream.result == {"score": 3}

    def test_wait_returns_terminal_notification(self):
        session = AgentSession(ReplayTransport([F.run_started(), F.run_error("nope")]))
        final = session.run().wait()
        assert final.status == CoordinatorState.ERRORED
        assert final.error.message == "nope"

    def test_context_manager_cancels_on_early_exit(self):
        session = AgentSession(ReplayTransport(_answer_run(["a", "b", "c"])))
        with session.run() as stream:
            for notification in stream:
                if notification.status == CoordinatorState.ACTIVE:
                    break
        assert stream.status == CoordinatorState.CANCELLED
        assert session.status == RunStatus.CANCELLED

    def test_context_manager_after_finish_keeps_status(self):
        session = AgentSession(ReplayTransport(_answer_run(["a"])))
        with session.run() as stream:
            list(stream)
        assert session.status == RunStatus.FINISHED

    def test_cancel_returns_whether_it_cancelled(self):
        session = AgentSession(ReplayTransport(_answer_run(["a"])))
        stream = session.run()
        assert stream.cancel() is True
        assert stream.cancel() is False

    def test_empty_text_before_any_message(self):
        session = AgentSession(ReplayTransport(_answer_run(["a"])))
        stream = session.run()
        assert stream.text == ""
