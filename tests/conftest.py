import asyncio
import os
import re
from collections import deque
from typing import Callable, Iterable, List, Optional, Union

import pytest
from typer.testing import CliRunner

from topicfilter.domain.interfaces.completion_provider import CompletionProvider
from topicfilter.domain.models.completion import CompletionRequest, CompletionResponse
from topicfilter.infrastructure.config import settings as settings_module

NUMBERED_LINE = re.compile(r"^\d+\. (.*)$", re.MULTILINE)

Step = Union[str, BaseException, Callable[[CompletionRequest], str]]


def numbered_items(request: CompletionRequest) -> List[str]:
    """The item texts a batch prompt carries, in order."""
    return NUMBERED_LINE.findall(request.messages[-1]["content"])


def answer_by_keyword(*keywords: str) -> Callable[[CompletionRequest], str]:
    """Responder that says 是 for items containing any keyword and 否 otherwise."""
    lowered = [k.lower() for k in keywords]

    def respond(request: CompletionRequest) -> str:
        return ",".join(
            "是" if any(k in item.lower() for k in lowered) else "否"
            for item in numbered_items(request)
        )

    return respond


class FakeClock:
    """Manual clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class ScriptedProvider(CompletionProvider):
    """CompletionProvider double that replays a script of answers and errors."""

    default_min_interval = 0.0

    def __init__(
        self,
        script: Optional[Iterable[Step]] = None,
        default: Optional[Step] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.script = deque(script or [])
        self.default = default
        self.clock = clock
        self.requests: List[CompletionRequest] = []
        self.call_times: List[float] = []
        self.closed = False

    @property
    def provider_name(self) -> str:
        return "scripted"

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        if self.clock is not None:
            self.call_times.append(self.clock())
        step = self.script.popleft() if self.script else self.default
        if step is None:
            raise AssertionError("ScriptedProvider ran out of answers")
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            step = step(request)
        return CompletionResponse(content=step, finish_reason="stop")

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def isolated_configuration(monkeypatch):
    """Every test starts with no loaded config and no TOPICFILTER_* variables."""
    for key in list(os.environ):
        if key.startswith(settings_module.ENV_PREFIX):
            monkeypatch.delenv(key, raising=False)
    before = set(os.environ)
    settings_module.reset_configuration()
    yield
    settings_module.reset_configuration()
    # load_dotenv writes straight into os.environ
    for key in set(os.environ) - before:
        if key.startswith(settings_module.ENV_PREFIX):
            del os.environ[key]
