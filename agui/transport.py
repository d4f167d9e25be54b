"""
Event sources that feed a run.

A Transport opens one EventSource per run. The source yields events in arrival
order and stops producing as soon as it is closed, which is how cancellation
reaches the agent side (an HTTP response is closed, a generator is closed).
Framework adapters plug in as Transport implementations.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
import logging
import os
from typing import Any

import requests

from ._exceptions import ConfigurationError, EventDecodeError, TransportError
from ._http import HTTPClient
from ._types import RunAgentInput
from .events import Event, EventStreamParser

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0


def _coerce_event(item: Any) -> Event:
    if isinstance(item, Event):
        return item
    if isinstance(item, dict):
        return Event.from_dict(item)
    raise EventDecodeError(f"Event source produced {type(item).__name__}, expected an event")


class EventSource(ABC):
    """Ordered, closeable stream of events for a single run."""

    def __init__(self) -> None:
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    def __iter__(self) -> Iterator[Event]:
        """Yield events until the run's stream ends or the source is closed."""

    def close(self) -> None:
        """Stop producing events (idempotent)."""
        self._closed = True


class Transport(ABC):
    """Opens event sources for runs."""

    @abstractmethod
    def open(self, run_input: RunAgentInput) -> EventSource:
        """Return a lazy source for the run; no I/O happens until iteration."""


class GeneratorSource(EventSource):
    """Source backed by an iterable of events or event dicts."""

    def __init__(
        self, factory: Callable[[RunAgentInput], Iterable[Any]], run_input: RunAgentInput
    ):
        super().__init__()
        self._factory = factory
        self._run_input = run_input
        self._iterator: Iterator[Any] | None = None

    def _close_iterator(self) -> None:
        close = getattr(self._iterator, "close", None)
        if close is None:
            return
        try:
            close()
        except ValueError:
            # Generator is mid-step in another thread; that thread closes it.
            logger.debug("Generator busy, deferring close to the consuming thread")

    def __iter__(self) -> Iterator[Event]:
        if self._closed:
            return
        self._iterator = iter(self._factory(self._run_input))
        try:
            for item in self._iterator:
                if self._closed:
                    break
                yield _coerce_event(item)
        finally:
            self._close_iterator()

    def close(self) -> None:
        if self._closed:
            return
        super().close()
        if self._iterator is not None:
            self._close_iterator()


class GeneratorTransport(Transport):
    """Transport over an in-process event producer.

    Usage:
        def agent(run_input):
            yield RunStartedEvent(run_id=run_input.run_id)
            ...

        session = AgentSession(GeneratorTransport(agent))
    """

    def __init__(self, factory: Callable[[RunAgentInput], Iterable[Any]]):
        self._factory = factory

    def open(self, run_input: RunAgentInput) -> EventSource:
        return GeneratorSource(self._factory, run_input)


class ReplayTransport(GeneratorTransport):
    """Replays scripted runs, one script per opened source, in order."""

    def __init__(self, *runs: Iterable[Any]):
        self._runs = [list(run) for run in runs]
        self.inputs: list[RunAgentInput] = []
        super().__init__(self._next_run)

    def _next_run(self, run_input: RunAgentInput) -> Iterator[Any]:
        index = len(self.inputs)
        self.inputs.append(run_input)
        if index >= len(self._runs):
            raise TransportError(f"No scripted run left (opened {index + 1} runs)")
        yield from self._runs[index]


class HttpEventSource(EventSource):
    """Streams one run over HTTP POST + Server-Sent Events."""

    def __init__(self, http: HTTPClient, url: str, run_input: RunAgentInput):
        super().__init__()
        self._http = http
        self._url = url
        self._run_input = run_input
        self._response: requests.Response | None = None

    def _close_response(self) -> None:
        if self._response is not None:
            self._response.close()

    def __iter__(self) -> Iterator[Event]:
        if self._closed:
            return
        self._response = self._http.stream("POST", self._url, json=self._run_input.to_dict())
        try:
            for event in EventStreamParser.parse_stream(self._response):
                if self._closed:
                    break
                yield event
        except requests.RequestException as e:
            if self._closed:
                logger.debug("Stream read interrupted by close: %s", e)
                return
            raise TransportError(str(e), method="POST", url=self._url) from e
        finally:
            self._close_response()

    def close(self) -> None:
        if self._closed:
            return
        super().close()
        self._close_response()


class HttpTransport(Transport):
    """AG-UI over HTTP: POST the run input, read the SSE response.

    Configuration falls back to the AGUI_URL and AGUI_TIMEOUT environment
    variables.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ):
        url = url or os.environ.get("AGUI_URL")
        if not url:
            raise ConfigurationError("No agent URL provided. Pass url= or set AGUI_URL env var.")
        if timeout is None:
            raw_timeout = os.environ.get("AGUI_TIMEOUT")
            try:
                timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT
            except ValueError:
                raise ConfigurationError(
                    f"AGUI_TIMEOUT must be a number, got {raw_timeout!r}"
                ) from None
        self.url = url
        self.timeout = timeout
        self._http = HTTPClient(headers=headers, timeout=timeout)

    def open(self, run_input: RunAgentInput) -> EventSource:
        return HttpEventSource(self._http, self.url, run_input)
