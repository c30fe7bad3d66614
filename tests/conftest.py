"""Shared fixtures for the restweave test-suite."""

import json
from typing import Any

import pytest

from restweave.client import RestClient
from restweave.config import ClientConfig
from restweave.retry import RetryPolicy
from restweave.transport import CallbackTransport, TransportRequest, TransportResponse

BASE_URL = "https://api.example.com"


def json_response(
    status_code: int = 200,
    payload: Any = None,
    headers: dict[str, str] | None = None,
) -> TransportResponse:
    """A TransportResponse carrying ``payload`` as JSON (empty body for None)."""
    body = b"" if payload is None else json.dumps(payload).encode()
    all_headers = {"Content-Type": "application/json"} if body else {}
    all_headers.update(headers or {})
    return TransportResponse(status_code=status_code, headers=all_headers, body=body)


class ScriptedTransport(CallbackTransport):
    """Answers requests from a script of responses, exceptions or callables.

    Steps are consumed in order; the last step keeps answering once the script
    runs out. A callable step receives the TransportRequest and may be async.
    """

    def __init__(self, *steps: Any):
        super().__init__(self._next)
        self._steps = list(steps)

    async def _next(self, request: TransportRequest) -> TransportResponse:
        step = self._steps.pop(0) if len(self._steps) > 1 else self._steps[0]
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            step = step(request)
            if hasattr(step, "__await__"):
                step = await step
        return step

    @property
    def call_count(self) -> int:
        return len(self.requests)


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_client(sleeper):
    """Factory building a RestClient around a ScriptedTransport."""

    def _make(
        transport: ScriptedTransport,
        config: ClientConfig | None = None,
        **config_updates: Any,
    ) -> RestClient:
        config = config or ClientConfig(retry_policy=RetryPolicy.none())
        if config_updates:
            config = config.model_copy(update=config_updates)
        return RestClient(BASE_URL, config, transport=transport, sleep=sleeper)

    return _make


def text_response(status_code: int, text: str) -> TransportResponse:
    """A TransportResponse with a non-JSON body."""
    return TransportResponse(
        status_code=status_code,
        headers={"Content-Type": "text/html; charset=utf-8"},
        body=text.encode(),
    )
