# src/nativeci/dsl.py
from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional, Union

from .env import FlagRule, PathListRule, RootRule
from .invoker import Features, invocation
from .model import AgentClass, DependencySpec, LinkMode, PipelineJob, Quarantine


# ---------------------------------------------------------------------
# Dependencies + environment rules
# ---------------------------------------------------------------------

def dep(ident: str, *modes: Union[LinkMode, str], binlink: bool = False) -> DependencySpec:
    """dep("core/openssl", "static-link", "tool-path")"""
    return DependencySpec(ident=ident, modes=frozenset(LinkMode(m) for m in modes), binlink=binlink)


def path_list(var: str, mode: Union[LinkMode, str], subpath: str = "lib") -> PathListRule:
    return PathListRule(var, LinkMode(mode), subpath)


def root_of(var: str, ident: str) -> RootRule:
    return RootRule(var, ident)


def flag(var: str, ident: str, mode: Union[LinkMode, str]) -> FlagRule:
    return FlagRule(var, ident, LinkMode(mode))


# ---------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------

def quarantine(exclude_feature: str = "ignore_inconsistent_tests", *, retries: int = 10) -> Quarantine:
    return Quarantine(exclude_feature=exclude_feature, retries=retries)


def job(
    component: str,
    *,
    agent: Union[AgentClass, str] = AgentClass.LINUX_CONTAINER,
    features: Features = None,
    test_options: Optional[str] = None,
    timeout_minutes: float = 10,
    retries: int = 1,
    flaky: Optional[Quarantine] = None,
    skip: Optional[str] = None,
    queue: Optional[str] = None,
    image: Optional[str] = None,
    label: Optional[str] = None,
) -> PipelineJob:
    return PipelineJob(
        invocation=invocation(component, features, test_options),
        agent_class=AgentClass(agent),
        timeout_minutes=timeout_minutes,
        retries=retries,
        quarantine=flaky,
        skip=skip,
        queue=queue,
        image=image,
        name=label,
    )


def linux(component: str, **kwargs: Any) -> PipelineJob:
    return job(component, agent=AgentClass.LINUX_CONTAINER, **kwargs)


def windows(component: str, **kwargs: Any) -> PipelineJob:
    return job(component, agent=AgentClass.WINDOWS_NATIVE, **kwargs)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("component", ["common", "hab"]).jobs(
            lambda c: linux(c, timeout_minutes=10)
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def jobs(self, builder: Callable[[Any], PipelineJob]) -> List[PipelineJob]:
        out: List[PipelineJob] = []
        for v in self.values:
            built = builder(v)
            if not isinstance(built, PipelineJob):
                raise TypeError(
                    f"matrix {self.key}={v!r}: builder returned {type(built).__name__}, expected a job"
                )
            out.append(built)
        return out


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Workflow helper
# ---------------------------------------------------------------------

def wf(*items: Union[PipelineJob, Iterable[PipelineJob]]) -> List[PipelineJob]:
    """
    Collect jobs (and lists of jobs, e.g. from matrix) into one ordered table.

        def workflow():
            return wf(
                linux("common"),
                matrix("component", [...]).jobs(lambda c: windows(c)),
            )
    """
    out: List[PipelineJob] = []
    for item in items:
        if isinstance(item, PipelineJob):
            out.append(item)
        else:
            out.extend(item)
    return out
