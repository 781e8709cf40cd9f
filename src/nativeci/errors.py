# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


class ConfigurationError(Exception):
    """Run-level error: every job depends on the shared configuration, so the run stops."""


class JobError(Exception):
    """Job-level error: contained to the job that raised it."""


# ----------------------------------------------------------------------
# Configuration-level
# ----------------------------------------------------------------------

@dataclass
class DependencyMissing(ConfigurationError):
    ident: str
    reason: str = "not installed"

    def __str__(self) -> str:
        return f"dependency {self.ident} is missing: {self.reason}"


@dataclass
class UnresolvedDependency(ConfigurationError):
    idents: list[str]
    referenced_by: Optional[str] = None

    def __str__(self) -> str:
        msg = f"no resolved root for: {', '.join(self.idents)}"
        if self.referenced_by:
            msg += f" (referenced by {self.referenced_by})"
        return msg


@dataclass
class PipelineDefinitionError(ConfigurationError):
    source: str
    problems: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        lines = [f"invalid pipeline definition: {self.source}"]
        lines.extend(f"  {p}" for p in self.problems)
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Job-level
# ----------------------------------------------------------------------

@dataclass
class InvalidJobConfiguration(JobError):
    job: str
    problem: str

    def __str__(self) -> str:
        return f"[{self.job}] invalid job configuration: {self.problem}"


@dataclass
class ProcessFailure(JobError):
    job: str
    attempt: int
    cmd: str
    exit_code: int
    output: str = ""   # tail of captured output, if any

    def __str__(self) -> str:
        return f"[{self.job}] attempt {self.attempt} failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class JobTimeout(JobError):
    job: str
    attempt: int
    cmd: str
    timeout_seconds: float

    def __str__(self) -> str:
        return f"[{self.job}] attempt {self.attempt} timed out after {self.timeout_seconds:g}s: {self.cmd}"


@dataclass
class FatallyFailed(JobError):
    job: str
    attempts: int
    last_error: Optional[JobError] = None

    def __str__(self) -> str:
        msg = f"[{self.job}] fatally failed after {self.attempts} attempt(s)"
        if self.last_error is not None:
            msg += f"; last error: {self.last_error}"
        return msg


@dataclass
class InvalidTransition(RuntimeError):
    job: str
    current: str
    target: str

    def __str__(self) -> str:
        return f"[{self.job}] illegal state transition {self.current} -> {self.target}"
