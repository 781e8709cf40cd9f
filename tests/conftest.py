import subprocess
import threading
from pathlib import Path

import pytest

from nativeci.env import Environment
from nativeci.ui.console import Console


class FakeProcessRunner:
    """
    Stands in for run_process. Outcomes are queued per component (the
    working directory name): an int is an exit code, "timeout" raises
    TimeoutExpired, "missing" raises FileNotFoundError. The last outcome
    repeats once the queue is down to one.
    """

    def __init__(self, outcomes=None, default=0):
        self.outcomes = {k: list(v) for k, v in (outcomes or {}).items()}
        self.default = default
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, argv, *, cwd, env, timeout, capture):
        component = Path(cwd).name
        with self._lock:
            self.calls.append({"argv": list(argv), "cwd": Path(cwd), "env": dict(env), "timeout": timeout})
            queue = self.outcomes.get(component)
            if queue:
                outcome = queue.pop(0) if len(queue) > 1 else queue[0]
            else:
                outcome = self.default
        if outcome == "timeout":
            raise subprocess.TimeoutExpired(list(argv), timeout)
        if outcome == "missing":
            raise FileNotFoundError(argv[0])
        return outcome, "" if outcome == 0 else "test result: FAILED"

    def calls_for(self, component):
        return [c for c in self.calls if c["cwd"].name == component]


@pytest.fixture
def console():
    return Console()


@pytest.fixture
def repo(tmp_path):
    for name in ("sup", "butterfly", "common", "hab", "launcher-client"):
        (tmp_path / "components" / name).mkdir(parents=True)
    return tmp_path


@pytest.fixture
def env():
    return Environment({"LIBRARY_PATH": "/pkgs/openssl/lib", "LD_LIBRARY_PATH": "/pkgs/zeromq/lib"})
