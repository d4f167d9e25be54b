"""Tests for the run state machine."""

import pytest

from agui._exceptions import (
    EventDecodeError,
    InvalidPatchError,
    RemoteRunError,
    TransportError,
    UnexpectedEventError,
    UnknownTargetError,
)
from agui._types import RunAgentInput, RunState, RunStatus
from agui.accumulator import Reduction
from agui.coordinator import CoordinatorState, StreamCoordinator
from agui.events import RunFinishedEvent, TextMessageContentEvent
from agui.transport import GeneratorTransport
from tests.utils.factories import EventFactory as F


class _Store:
    """Minimal StateStore for driving a coordinator without a session."""

    def __init__(self):
        self._state = RunState(status=RunStatus.RUNNING)
        self.commits = 0

    @property
    def state(self):
        return self._state

    def commit(self, update):
        self.commits += 1
        reduction: Reduction = update(self._state)
        if reduction.ok:
            self._state = reduction.state
        return reduction


def _run_input():
    return RunAgentInput(thread_id="thread-1", run_id="run-1", messages=[])


def _coordinator(*items, factory=None):
    store = _Store()
    transport = GeneratorTransport(factory or (lambda _input: list(items)))
    return StreamCoordinator(transport.open(_run_input()), store), store


@pytest.mark.unit
class TestSuccessfulRun:
    def test_one_notification_per_event(self, weather_run):
        coordinator, store = _coordinator(*weather_run)
        notifications = list(coordinator)
        assert len(notifications) == len(weather_run)
        assert notifications[0].status == CoordinatorState.STARTING
        assert {n.status for n in notifications[1:-1]} == {CoordinatorState.ACTIVE}
        assert notifications[-1].status == CoordinatorState.FINISHED
        assert isinstance(notifications[-1].event, RunFinishedEvent)
        assert coordinator.phase == CoordinatorState.FINISHED
        assert store.state.status == RunStatus.FINISHED

    def test_notifications_carry_state_after_event(self):
        coordinator, _ = _coordinator(
            F.run_started(), F.message_start("m1"), F.message_content("m1", "He"),
            F.message_content("m1", "llo"), F.message_end("m1"), F.run_finished(),
        )
        contents = [
            n.state.messages[0].content
            for n in coordinator
            if isinstance(n.event, TextMessageContentEvent)
        ]
        assert contents == ["He", "Hello"]

    def test_weather_scenario_final_state(self, weather_run):
        coordinator, store = _coordinator(*weather_run)
        list(coordinator)
        state = store.state
        (message,) = state.messages
        assert message.content == "Let me check"
        assert message.tool_calls[0].name == "get_weather"
        assert message.tool_calls[0].arguments == '{"city":"NY"}'
        assert message.tool_calls[0].closed
        assert state.status == RunStatus.FINISHED
        assert state.warnings == []

    def test_finish_force_closes_open_entities(self):
        coordinator, store = _coordinator(
            F.run_started(),
            F.message_start("m1"),
            F.message_content("m1", "unfinished"),
            F.run_finished(result="done"),
        )
        final = list(coordinator)[-1]
        assert final.status == CoordinatorState.FINISHED
        assert [w.code for w in final.warnings] == ["premature_end"]
        assert store.state.open_message_ids == set()
        assert store.state.messages[0].content == "unfinished"
        assert store.state.result == "done"
        assert [w.target_id for w in store.state.warnings] == ["m1"]

    def test_malformed_arguments_warning_does_not_stop_run(self):
        coordinator, store = _coordinator(
            F.run_started(),
            F.tool_call_start("t1"),
            F.tool_call_args("t1", "{oops"),
            F.tool_call_end("t1"),
            F.run_finished(),
        )
        notifications = list(coordinator)
        assert [w.code for w in notifications[3].warnings] == ["malformed_arguments"]
        assert notifications[-1].status == CoordinatorState.FINISHED
        assert [w.code for w in store.state.warnings] == ["malformed_arguments"]

    def test_events_after_finish_not_consumed(self):
        coordinator, store = _coordinator(
            F.run_started(), F.run_finished(), F.message_start("late")
        )
        list(coordinator)
        assert store.state.messages == []


@pytest.mark.unit
class TestFailedRun:
    def test_remote_run_error(self):
        coordinator, store = _coordinator(
            F.run_started(),
            F.run_error("model overloaded", code="overloaded"),
            F.message_start("x"),
        )
        notifications = list(coordinator)
        final = notifications[-1]
        assert final.status == CoordinatorState.ERRORED
        assert isinstance(final.error, RemoteRunError)
        assert final.error.code == "overloaded"
        assert store.state.status == RunStatus.ERRORED
        assert store.state.error is final.error
        assert store.state.messages == []

    def test_run_error_before_run_started(self):
        coordinator, _ = _coordinator(F.run_error("refused"))
        (final,) = list(coordinator)
        assert isinstance(final.error, RemoteRunError)
        assert final.error.code == "run_error"

    def test_first_event_must_be_run_started(self):
        coordinator, _ = _coordinator(F.message_start("m1"))
        (final,) = list(coordinator)
        assert isinstance(final.error, UnexpectedEventError)

    def test_second_run_started_rejected(self):
        coordinator, _ = _coordinator(F.run_started(), F.run_started("run-2"))
        final = list(coordinator)[-1]
        assert isinstance(final.error, UnexpectedEventError)

    def test_protocol_violation_stops_run(self):
        coordinator, store = _coordinator(
            F.run_started(),
            F.message_start("m1"),
            F.message_content("ghost", "x"),
            F.message_content("m1", "never"),
            F.run_finished(),
        )
        notifications = list(coordinator)
        final = notifications[-1]
        assert final.status == CoordinatorState.ERRORED
        assert isinstance(final.error, UnknownTargetError)
        assert final.event.message_id == "ghost"
        assert store.state.messages[0].content == ""
        assert coordinator.error is final.error

    def test_stream_ending_early_is_transport_failure(self):
        coordinator, store = _coordinator(
            F.run_started(), F.message_start("m1"), F.message_content("m1", "partial")
        )
        final = list(coordinator)[-1]
        assert final.event is None
        assert final.status == CoordinatorState.ERRORED
        assert isinstance(final.error, TransportError)
        assert final.error.code == "transport_failure"
        # Applied events are kept.
        assert store.state.messages[0].content == "partial"

    def test_source_exception_is_transport_failure(self):
        def agent(_input):
            yield F.run_started()
            raise ConnectionResetError("peer reset")

        coordinator, store = _coordinator(factory=agent)
        final = list(coordinator)[-1]
        assert isinstance(final.error, TransportError)
        assert "peer reset" in final.error.message
        assert store.state.status == RunStatus.ERRORED

    def test_malformed_state_delta_is_protocol_error(self):
        coordinator, store = _coordinator(
            F.run_started(),
            F.state_snapshot({"a": 1}),
            F.state_delta({"op": "move", "from": "/a", "path": 5}),
            F.run_finished(),
        )
        final = list(coordinator)[-1]
        assert final.status == CoordinatorState.ERRORED
        assert isinstance(final.error, InvalidPatchError)
        assert final.error.code == "invalid_patch"
        assert store.state.state == {"a": 1}

    def test_reducer_exception_is_not_transport_failure(self, monkeypatch):
        def broken(state, event):
            raise KeyError("reducer bug")

        monkeypatch.setattr("agui.coordinator.apply", broken)
        coordinator, _ = _coordinator(F.run_started(), F.run_finished())
        with pytest.raises(KeyError):
            list(coordinator)
        assert coordinator.error is None

    def test_undecodable_event(self):
        coordinator, _ = _coordinator(F.run_started(), {"type": "TEXT_MESSAGE_CONTENT"})
        final = list(coordinator)[-1]
        assert isinstance(final.error, EventDecodeError)
        assert final.event is None

    def test_empty_stream(self):
        coordinator, _ = _coordinator()
        (final,) = list(coordinator)
        assert isinstance(final.error, TransportError)


@pytest.mark.unit
class TestCancellation:
    def test_cancel_mid_stream(self):
        produced = []
        closed = []

        def agent(_input):
            try:
                for event in F.weather_run():
                    produced.append(event["type"])
                    yield event
            finally:
                closed.append(True)

        coordinator, store = _coordinator(factory=agent)
        notifications = []
        for notification in coordinator:
            notifications.append(notification)
            if len(notifications) == 2:
                assert coordinator.cancel() is True

        assert notifications[-1].status == CoordinatorState.CANCELLED
        assert notifications[-1].event is None
        assert len(notifications) == 3
        assert closed == [True]
        assert len(produced) == 2
        assert store.state.status == RunStatus.CANCELLED
        # Cancellation keeps what was applied.
        assert [m.id for m in store.state.messages] == ["m1"]

    def test_cancel_is_idempotent(self, weather_run):
        coordinator, store = _coordinator(*weather_run)
        assert coordinator.cancel() is True
        state = store.state
        commits = store.commits
        assert coordinator.cancel() is False
        assert store.state is state
        assert store.commits == commits

    def test_cancel_before_iteration(self, weather_run):
        coordinator, store = _coordinator(*weather_run)
        coordinator.cancel()
        (final,) = list(coordinator)
        assert final.status == CoordinatorState.CANCELLED
        assert store.state.messages == []

    def test_cancel_after_finish_is_noop(self, weather_run):
        coordinator, store = _coordinator(*weather_run)
        list(coordinator)
        assert coordinator.cancel() is False
        assert store.state.status == RunStatus.FINISHED

    def test_abandoned_iteration_cancels(self, weather_run):
        coordinator, store = _coordinator(*weather_run)
        iterator = iter(coordinator)
        next(iterator)
        iterator.close()
        assert coordinator.phase == CoordinatorState.CANCELLED
        assert store.state.status == RunStatus.CANCELLED

    def test_single_consumption(self, weather_run):
        coordinator, _ = _coordinator(*weather_run)
        list(coordinator)
        with pytest.raises(RuntimeError):
            list(coordinator)
