# model.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional, Tuple


class LinkMode(str, Enum):
    """How a dependency is consumed by the build or the test binary."""
    STATIC_BUILD = "static-build"        # build the dependency itself as a static archive
    STATIC_LINK = "static-link"          # archive found by the linker at build time
    DYNAMIC_RUNTIME = "dynamic-runtime"  # shared object found by the loader at run time
    TOOL_PATH = "tool-path"              # discovered through pkg-config at build time


class AgentClass(str, Enum):
    LINUX_CONTAINER = "linux-container"
    WINDOWS_NATIVE = "windows-native"


class Lane(str, Enum):
    GATING = "gating"
    QUARANTINE = "quarantine"


_IDENT_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*/[A-Za-z0-9_][A-Za-z0-9_.+-]*$")


@dataclass(frozen=True)
class DependencySpec:
    """
    A native dependency the build/test step needs.

    `ident` is `origin/name` (e.g. "core/openssl"). `modes` may hold several
    linking modes; an empty set means install-only (e.g. a binlinked tool).
    """
    ident: str
    modes: FrozenSet[LinkMode] = frozenset()
    binlink: bool = False

    def __post_init__(self) -> None:
        if not _IDENT_RE.match(self.ident):
            raise ValueError(f"Dependency identifier must look like 'origin/name', got {self.ident!r}")
        # accept any iterable of modes or mode strings
        object.__setattr__(self, "modes", frozenset(LinkMode(m) for m in self.modes))

    def has_mode(self, mode: LinkMode) -> bool:
        return mode in self.modes


@dataclass(frozen=True)
class ResolvedRoot:
    ident: str
    path: str

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError(f"Resolved root for {self.ident} is empty")


@dataclass(frozen=True)
class TestRunner:
    """Base command template for a component's test run."""
    __test__ = False

    command: Tuple[str, ...] = ("cargo", "test")
    features_flag: str = "--features"
    separator: str = "--"                      # routes what follows to the test binary
    default_test_args: Tuple[str, ...] = ("--nocapture",)


CARGO = TestRunner()


@dataclass(frozen=True)
class ComponentInvocation:
    """
    The logical test invocation of one component.

    `features` is the space-joined feature list ("" = no feature flag).
    `test_options` is passed verbatim to the test binary.
    """
    component: str
    features: str = ""
    test_options: str = ""
    runner: TestRunner = CARGO

    @property
    def feature_list(self) -> list[str]:
        return self.features.split()


@dataclass(frozen=True)
class Quarantine:
    """
    Known-flaky cases of a component.

    The gating lane runs with `exclude_feature` switched on (flaky cases
    compiled out) and the job's own small retry budget. The quarantine lane
    runs without it, with `retries`, and never gates the pipeline.
    """
    exclude_feature: str = "ignore_inconsistent_tests"
    retries: int = 10


@dataclass(frozen=True)
class PipelineJob:
    """
    One pipeline job: a component invocation bound to an agent class.

    `skip` holds the reason when the job is skipped (None = run it).
    `quarantine` is only set on declared jobs; `pipeline.expand_lanes`
    turns it into a gating and a quarantine instance.
    """
    invocation: ComponentInvocation
    agent_class: AgentClass = AgentClass.LINUX_CONTAINER
    timeout_minutes: float = 10
    retries: int = 1
    lane: Lane = Lane.GATING
    quarantine: Optional[Quarantine] = None
    skip: Optional[str] = None
    queue: Optional[str] = None
    image: Optional[str] = None
    name: Optional[str] = None   # explicit label, overrides the derived one
    tags: Tuple[str, ...] = field(default=("unit",))

    @property
    def component(self) -> str:
        return self.invocation.component

    @property
    def skipped(self) -> bool:
        return self.skip is not None

    @property
    def gating(self) -> bool:
        return self.lane is Lane.GATING

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        tags = list(self.tags)
        if self.lane is Lane.QUARANTINE:
            tags.append("inconsistent")
        prefix = "".join(f"[{t}]" for t in tags)
        os_tag = "linux" if self.agent_class is AgentClass.LINUX_CONTAINER else "windows"
        return f"{prefix} :{os_tag}: {self.component}".strip()
