"""Tests for event sources and transports."""

import json
from unittest.mock import MagicMock

import pytest
import responses

from agui import AgentSession
from agui._exceptions import ConfigurationError, TransportError
from agui._types import RunAgentInput, RunStatus
from agui.coordinator import CoordinatorState
from agui.events import EventType, RunStartedEvent
from agui.transport import (
    DEFAULT_TIMEOUT,
    GeneratorTransport,
    HttpEventSource,
    HttpTransport,
    ReplayTransport,
)
from tests.utils.factories import EventFactory as F, make_response, sse_body, sse_lines


def _run_input():
    return RunAgentInput(thread_id="thread-1", run_id="run-1", messages=[])


@pytest.mark.unit
class TestGeneratorTransport:
    def test_accepts_events_and_dicts(self):
        def agent(run_input):
            yield RunStartedEvent(run_id=run_input.run_id)
            yield F.run_finished(run_id=run_input.run_id)

        source = GeneratorTransport(agent).open(_run_input())
        assert [e.type for e in source] == [EventType.RUN_STARTED, EventType.RUN_FINISHED]

    def test_factory_called_lazily(self):
        factory = MagicMock(return_value=[])
        source = GeneratorTransport(factory).open(_run_input())
        factory.assert_not_called()
        list(source)
        factory.assert_called_once()

    def test_close_stops_production(self):
        closed = []

        def agent(_input):
            try:
                yield F.run_started()
                yield F.message_start("m1")
            finally:
                closed.append(True)

        source = GeneratorTransport(agent).open(_run_input())
        iterator = iter(source)
        next(iterator)
        source.close()
        assert closed == [True]
        assert source.closed
        assert list(iterator) == []

    def test_closed_source_yields_nothing(self):
        source = GeneratorTransport(lambda _: [F.run_started()]).open(_run_input())
        source.close()
        source.close()
        assert list(source) == []


@pytest.mark.unit
class TestReplayTransport:
    def test_records_inputs(self):
        transport = ReplayTransport([F.run_started()])
        list(transport.open(_run_input()))
        assert transport.inputs[0].run_id == "run-1"

    def test_out_of_scripts(self):
        transport = ReplayTransport()
        with pytest.raises(TransportError):
            list(transport.open(_run_input()))


@pytest.mark.unit
class TestHttpTransportConfig:
    def test_url_required(self):
        with pytest.raises(ConfigurationError):
            HttpTransport()

    def test_env_fallback(self, monkeypatch, agent_url):
        monkeypatch.setenv("AGUI_URL", agent_url)
        monkeypatch.setenv("AGUI_TIMEOUT", "12.5")
        transport = HttpTransport()
        assert transport.url == agent_url
        assert transport.timeout == 12.5

    def test_default_timeout(self, agent_url):
        assert HttpTransport(agent_url).timeout == DEFAULT_TIMEOUT

    def test_invalid_timeout(self, monkeypatch, agent_url):
        monkeypatch.setenv("AGUI_TIMEOUT", "soon")
        with pytest.raises(ConfigurationError):
            HttpTransport(agent_url)

    def test_explicit_arguments_win(self, monkeypatch, agent_url):
        monkeypatch.setenv("AGUI_URL", "https://other.test")
        monkeypatch.setenv("AGUI_TIMEOUT", "1")
        transport = HttpTransport(agent_url, timeout=30)
        assert transport.url == agent_url
        assert transport.timeout == 30


@pytest.mark.unit
class TestHttpEventSource:
    def test_close_closes_response(self):
        resp = make_response(sse_lines(F.run_started(), F.message_start("m1")))
        http = MagicMock()
        http.stream.return_value = resp
        source = HttpEventSource(http, "https://agent.test", _run_input())
        iterator = iter(source)
        next(iterator)
        source.close()
        resp.close.assert_called()
        assert list(iterator) == []

    def test_open_is_lazy(self):
        http = MagicMock()
        HttpEventSource(http, "https://agent.test", _run_input())
        http.stream.assert_not_called()

    @responses.activate
    def test_posts_run_input(self, agent_url):
        responses.add(responses.POST, agent_url, body=sse_body(F.run_started()), status=200)
        source = HttpTransport(agent_url).open(_run_input())
        events = list(source)
        assert events[0].type == EventType.RUN_STARTED
        body = json.loads(responses.calls[0].request.body)
        assert body["threadId"] == "thread-1"
        assert body["runId"] == "run-1"
        assert body["messages"] == []


@pytest.mark.unit
class TestHttpSession:
    @responses.activate
    def test_weather_run_over_http(self, agent_url, weather_run):
        responses.add(
            responses.POST,
            agent_url,
            body=sse_body(*weather_run),
            status=200,
            content_type="text/event-stream",
        )
        session = AgentSession(HttpTransport(agent_url, headers={"Authorization": "Bearer t"}))
        session.add_message({"id": "u1", "role": "user", "content": "Weather in NY?"})
        final = session.run().wait()

        assert final.status == CoordinatorState.FINISHED
        assert session.messages[-1].tool_calls[0].arguments == '{"city":"NY"}'
        request = responses.calls[0].request
        assert request.headers["Authorization"] == "Bearer t"
        assert json.loads(request.body)["messages"][0]["content"] == "Weather in NY?"

    @responses.activate
    def test_http_error_errors_the_run(self, agent_url):
        responses.add(responses.POST, agent_url, json={"detail": "forbidden"}, status=403)
        session = AgentSession(HttpTransport(agent_url))
        final = session.run().wait()
        assert final.status == CoordinatorState.ERRORED
        assert isinstance(final.error, TransportError)
        assert final.error.status_code == 403
        assert session.status == RunStatus.ERRORED

    @responses.activate
    def test_invalid_json_frame_errors_the_run(self, agent_url):
        responses.add(
            responses.POST,
            agent_url,
            body=sse_body(F.run_started(), "{broken"),
            status=200,
        )
        session = AgentSession(HttpTransport(agent_url))
        final = session.run().wait()
        assert final.error.code == "malformed_event"
