"""Shared fixtures: a scripted session stand-in and zero-wait configs."""

import threading
from collections import defaultdict

import pytest

from mdharvest.config import FRESH_PRESET, RESUME_PRESET, HarvestConfig
from mdharvest.extractors import FetchResult
from mdharvest.strategies import DirectStrategy, RenderedStrategy

NO_WAIT = {
    "delay": 0,
    "retry_delay": 0,
    "timeout_backoff": 0,
    "direct_settle": 0,
    "render_settle": 0,
    "selector_timeout": 0,
}

LONG_TEXT = "Configure the client by passing options to the constructor. " * 4


class FakeSession:
    """Session with the worker-facing surface of mdharvest.fetcher.Session and no I/O."""

    def __init__(self, registry=None, fail_start=None):
        self.registry = registry if registry is not None else {"spawned": [], "lock": threading.Lock()}
        self.fail_start = fail_start
        self.started = False
        self.closed = False
        self.status = None

    def spawn(self):
        child = FakeSession(self.registry, self.fail_start)
        with self.registry["lock"]:
            self.registry["spawned"].append(child)
        return child

    @property
    def spawned(self):
        return self.registry["spawned"]

    def start(self):
        if self.fail_start is not None:
            raise self.fail_start
        self.started = True
        return self

    def close(self):
        self.closed = True

    def goto(self, url, *, wait_until=None, timeout=None):
        self.url = url

    def settle(self, seconds):
        pass

    def wait_for_selector(self, selector, *, timeout):
        return True

    def title(self):
        return ""

    def content(self):
        return ""


class Script:
    """
    Scripted strategy outcomes keyed by (strategy, path). Each entry is a list of
    steps consumed one per call; the last step repeats. A step is a FetchResult,
    None, an exception instance, or an int (build a result of that many chars).
    """

    def __init__(self):
        self.steps = {}
        self.calls = defaultdict(int)
        self.lock = threading.Lock()

    def set(self, strategy, path, *steps):
        self.steps[(strategy, path)] = list(steps)

    def next(self, strategy, path, url):
        with self.lock:
            n = self.calls[(strategy, path)]
            self.calls[(strategy, path)] = n + 1
        steps = self.steps.get((strategy, path), [None])
        step = steps[min(n, len(steps) - 1)]
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, int):
            return FetchResult(title="Doc", markdown="x" * step, source_url=url, path=path, strategy=strategy)
        return step


@pytest.fixture
def script(monkeypatch):
    """Replace both strategies' fetch with the script."""
    s = Script()

    def direct_fetch(self, session, path, *, log_prefix=""):
        return s.next("direct", path, self.url_for(path))

    def rendered_fetch(self, session, path, *, log_prefix=""):
        return s.next("rendered", path, self.url_for(path))

    monkeypatch.setattr(DirectStrategy, "fetch", direct_fetch)
    monkeypatch.setattr(RenderedStrategy, "fetch", rendered_fetch)
    return s


@pytest.fixture
def fresh_config(tmp_path):
    return HarvestConfig.from_preset(
        {**FRESH_PRESET, **NO_WAIT},
        base_url="https://docs.example.com",
        start_url="https://docs.example.com/guide/index.html",
        prefix="/guide",
        dynamic_url="https://docs.example.com/viewer?doc={path}",
        out_dir=tmp_path / "out",
        ledger_dir=tmp_path,
        use_progress=False,
    )


@pytest.fixture
def resume_config(tmp_path):
    return HarvestConfig.from_preset(
        {**RESUME_PRESET, **NO_WAIT},
        base_url="https://docs.example.com",
        dynamic_url="https://docs.example.com/viewer?doc={path}",
        out_dir=tmp_path / "out",
        ledger_dir=tmp_path,
        use_progress=False,
    )
