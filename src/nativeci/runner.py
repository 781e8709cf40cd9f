# runner.py
from __future__ import annotations

import contextlib
import os
import signal
import subprocess
import sys
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .env import Environment
from .errors import (
    FatallyFailed,
    InvalidJobConfiguration,
    InvalidTransition,
    JobError,
    JobTimeout,
    ProcessFailure,
)
from .invoker import build_command
from .model import AgentClass, Lane, PipelineJob
from .pipeline import check_job
from .platform import LINUX, docker_wrap, platform_for
from .ui.console import Console, get_console


TOOL_HINTS = {
    "cargo": "Install a Rust toolchain (rustup) or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
    "hab": "Install the hab CLI or fix PATH.",
}

OUTPUT_TAIL = 4000

_WINDOWS = sys.platform.startswith("win")


# ----------------------------------------------------------------------
# Job state machine
# ----------------------------------------------------------------------

class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed-out"
    FATALLY_FAILED = "fatally-failed"
    SKIPPED = "skipped"


_TRANSITIONS: Dict[JobState, Tuple[JobState, ...]] = {
    # Pending -> FatallyFailed only for jobs rejected before their first attempt
    JobState.PENDING: (JobState.RUNNING, JobState.SKIPPED, JobState.FATALLY_FAILED),
    JobState.RUNNING: (JobState.SUCCEEDED, JobState.FAILED, JobState.TIMED_OUT),
    JobState.FAILED: (JobState.PENDING, JobState.FATALLY_FAILED),
    JobState.TIMED_OUT: (JobState.PENDING, JobState.FATALLY_FAILED),
    JobState.SUCCEEDED: (),
    JobState.FATALLY_FAILED: (),
    JobState.SKIPPED: (),
}


class JobRun:
    """State of one job instance within a run. Going back to Pending spends a retry."""

    def __init__(self, job: PipelineJob):
        self.job = job
        self.state = JobState.PENDING
        self.retries_left = job.retries
        self.history: List[JobState] = [JobState.PENDING]

    def transition(self, target: JobState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(self.job.label, self.state.value, target.value)
        if target is JobState.PENDING:
            if self.retries_left <= 0:
                raise InvalidTransition(self.job.label, self.state.value, target.value)
            self.retries_left -= 1
        self.state = target
        self.history.append(target)

    @property
    def terminal(self) -> bool:
        return not _TRANSITIONS[self.state]


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass
class Attempt:
    number: int
    state: JobState
    exit_code: Optional[int]
    duration: float
    error: Optional[JobError] = None


@dataclass
class JobResult:
    job: PipelineJob
    state: JobState
    attempts: List[Attempt] = field(default_factory=list)
    error: Optional[FatallyFailed] = None

    @property
    def status(self) -> str:
        if self.state is JobState.SUCCEEDED:
            return "success"
        if self.state is JobState.SKIPPED:
            return "skipped"
        return "failed"


@dataclass
class PipelineResult:
    results: List[JobResult]

    @property
    def passed(self) -> bool:
        """All gating jobs succeeded or were skipped. Quarantine lanes never count."""
        return all(
            r.state in (JobState.SUCCEEDED, JobState.SKIPPED)
            for r in self.results
            if r.job.gating
        )

    @property
    def failed(self) -> List[JobResult]:
        return [r for r in self.results if r.state is JobState.FATALLY_FAILED]


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

class ProcessRunner(Protocol):
    def __call__(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout: Optional[float],
        capture: bool,
    ) -> Tuple[int, str]: ...


def run_process(
    argv: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
    timeout: Optional[float],
    capture: bool,
) -> Tuple[int, str]:
    """
    Run one attempt in its own process group. On timeout the whole group is
    killed and reaped before TimeoutExpired propagates, so nothing the test
    runner started (e.g. the test binary) outlives the attempt.
    """
    group: Dict[str, object] = (
        {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP} if _WINDOWS else {"start_new_session": True}
    )
    with subprocess.Popen(
        list(argv),
        cwd=str(cwd),
        env=dict(env),
        text=True,
        stdout=subprocess.PIPE if capture else None,
        stderr=subprocess.STDOUT if capture else None,
        **group,
    ) as proc:
        try:
            stdout, _ = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_tree(proc)
            proc.communicate()
            raise
    output = (stdout or "")[-OUTPUT_TAIL:] if capture else ""
    return proc.returncode, output


def _kill_tree(proc: subprocess.Popen) -> None:
    if _WINDOWS:
        subprocess.run(
            ["taskkill", "/T", "/F", "/PID", str(proc.pid)],
            capture_output=True,
            check=False,
        )
    else:
        # the group may already be gone
        with contextlib.suppress(ProcessLookupError):
            os.killpg(proc.pid, signal.SIGKILL)
    proc.kill()


@dataclass(frozen=True)
class RetryPolicy:
    """Retries are immediate unless backoff_seconds is set."""
    backoff_seconds: float = 0.0
    sleep: Callable[[float], None] = time.sleep


def _prepare(
    job: PipelineJob,
    env: Environment,
    repo_root: Path,
    *,
    base_env: Mapping[str, str],
    container: bool,
    container_workdir: str,
) -> Tuple[List[str], Path, Dict[str, str], Optional[str]]:
    """Returns argv, cwd, process env and the container name (None when run natively)."""
    cmd = build_command(job.invocation, repo_root)
    if not cmd.cwd.is_dir():
        raise InvalidJobConfiguration(job.label, f"working directory not found: {cmd.cwd}")

    if container and job.agent_class is AgentClass.LINUX_CONTAINER:
        name = f"nativeci-{job.component}-{uuid.uuid4().hex[:8]}"
        argv = docker_wrap(
            cmd.argv,
            image=job.image or LINUX.default_image,
            repo_root=str(repo_root.resolve()),
            workdir=cmd.relative_cwd,
            env=dict(env),
            container_root=container_workdir,
            name=name,
        )
        return argv, repo_root, dict(base_env), name
    return list(cmd.argv), cmd.cwd, env.overlay(base_env), None


def _remove_container(
    name: str,
    process_runner: ProcessRunner,
    *,
    cwd: Path,
    env: Mapping[str, str],
    console: Console,
) -> None:
    # killing the docker client leaves the container running
    try:
        process_runner(["docker", "rm", "-f", name], cwd=cwd, env=env, timeout=60, capture=True)
    except (subprocess.SubprocessError, OSError) as e:
        console.print_info(f"warning: could not remove container {name}: {e}")


def run_job(
    job: PipelineJob,
    env: Environment,
    *,
    repo_root: str | Path = ".",
    policy: Optional[RetryPolicy] = None,
    process_runner: Optional[ProcessRunner] = None,
    console: Optional[Console] = None,
    base_env: Optional[Mapping[str, str]] = None,
    container: bool = False,
    container_workdir: str = "/workspace",
    capture: bool = True,
) -> JobResult:
    """
    Run a job to a terminal state.

    Each attempt is a fresh process with the same argv and environment. A
    failed or timed-out attempt goes back to Pending while the retry budget
    lasts, so a budget of R allows R+1 attempts before FatallyFailed.
    Job-level errors never escape; they are recorded on the result.
    """
    console = console or get_console()
    policy = policy or RetryPolicy()
    process_runner = process_runner or run_process
    base_env = os.environ if base_env is None else base_env
    repo_root_p = Path(repo_root)
    label = job.label
    run = JobRun(job)

    try:
        check_job(job)
        if job.skipped:
            run.transition(JobState.SKIPPED)
            console.print_job_skipped(label, job.skip)
            return JobResult(job, JobState.SKIPPED)
        argv, cwd, proc_env, container_name = _prepare(
            job, env, repo_root_p,
            base_env=base_env, container=container, container_workdir=container_workdir,
        )
    except InvalidJobConfiguration as e:
        run.transition(JobState.FATALLY_FAILED)
        fatal = FatallyFailed(label, 0, e)
        console.print_failure(label, str(e))
        return JobResult(job, JobState.FATALLY_FAILED, error=fatal)

    display = platform_for(job.agent_class).render(argv)
    total = job.retries + 1
    attempts: List[Attempt] = []
    console.print_job_start(label)

    while True:
        run.transition(JobState.RUNNING)
        n = len(attempts) + 1
        console.print_attempt(label, n, total, display)
        started = time.monotonic()
        exit_code: Optional[int] = None
        error: Optional[JobError] = None
        try:
            exit_code, output = process_runner(
                argv, cwd=cwd, env=proc_env, timeout=job.timeout_seconds, capture=capture
            )
        except subprocess.TimeoutExpired:
            error = JobTimeout(label, n, display, job.timeout_seconds)
            state = JobState.TIMED_OUT
            if container_name:
                _remove_container(container_name, process_runner, cwd=cwd, env=proc_env, console=console)
        except FileNotFoundError:
            hint = TOOL_HINTS.get(argv[0], f"Install {argv[0]} or fix PATH.")
            exit_code = 127
            error = ProcessFailure(label, n, display, exit_code, output=hint)
            state = JobState.FAILED
        else:
            if exit_code == 0:
                state = JobState.SUCCEEDED
            else:
                error = ProcessFailure(label, n, display, exit_code, output=output)
                state = JobState.FAILED

        attempts.append(Attempt(n, state, exit_code, time.monotonic() - started, error))
        run.transition(state)

        if state is JobState.SUCCEEDED:
            console.print_success(label, n)
            return JobResult(job, JobState.SUCCEEDED, attempts)

        if run.retries_left > 0:
            run.transition(JobState.PENDING)
            console.print_retry(label, str(error), run.retries_left)
            if policy.backoff_seconds > 0:
                policy.sleep(policy.backoff_seconds)
            continue

        run.transition(JobState.FATALLY_FAILED)
        fatal = FatallyFailed(label, n, error)
        console.print_failure(label, str(fatal), exit_code=exit_code, output=getattr(error, "output", None))
        return JobResult(job, JobState.FATALLY_FAILED, attempts, fatal)


# ----------------------------------------------------------------------
# Selection
# ----------------------------------------------------------------------

def select_jobs(
    jobs: Sequence[PipelineJob],
    *,
    agent: Optional[AgentClass] = None,
    lane: Optional[Lane] = None,
    labels: Sequence[str] = (),
    console: Optional[Console] = None,
    print_plan: bool = True,
) -> List[PipelineJob]:
    console = console or get_console()
    selected: List[PipelineJob] = []
    for j in jobs:
        if agent is not None and j.agent_class is not agent:
            reason = f"agent {j.agent_class.value}"
        elif lane is not None and j.lane is not lane:
            reason = f"lane {j.lane.value}"
        elif labels and j.label not in labels:
            reason = "label not requested"
        else:
            selected.append(j)
            if print_plan:
                console.print_plan_job(j.label, f"{j.lane.value}, retries={j.retries}")
            continue
        if print_plan:
            console.print_plan_job_skipped(j.label, reason)
    return selected


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_pipeline(
    jobs: Sequence[PipelineJob],
    env: Environment,
    *,
    repo_root: str | Path = ".",
    max_workers: Optional[int] = None,
    policy: Optional[RetryPolicy] = None,
    process_runner: Optional[ProcessRunner] = None,
    console: Optional[Console] = None,
    container: bool = False,
    container_workdir: str = "/workspace",
) -> PipelineResult:
    """
    Run every job in parallel. Jobs share only the read-only environment;
    a failure or timeout in one never cancels another.
    """
    console = console or get_console()
    jobs = list(jobs)
    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    results: Dict[int, JobResult] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {
            pool.submit(
                run_job,
                job,
                env,
                repo_root=repo_root,
                policy=policy,
                process_runner=process_runner,
                console=console,
                container=container,
                container_workdir=container_workdir,
            ): idx
            for idx, job in enumerate(jobs)
        }
        for fut in as_completed(futures):
            idx = futures[fut]
            try:
                results[idx] = fut.result()
            except Exception as e:
                job = jobs[idx]
                console.print_exception(e)
                results[idx] = JobResult(job, JobState.FATALLY_FAILED, error=FatallyFailed(job.label, 0))

    return PipelineResult([results[i] for i in range(len(jobs))])
