# pipeline.py
from __future__ import annotations

import math
from dataclasses import replace
from typing import Any, Dict, Iterable, List

from .errors import InvalidJobConfiguration, PipelineDefinitionError
from .invoker import check_component, entrypoint_args
from .model import AgentClass, Lane, PipelineJob
from .platform import Platform, platform_for


# ---------------------------------------------------------------------
# Lanes
# ---------------------------------------------------------------------

def expand_lanes(jobs: Iterable[PipelineJob]) -> List[PipelineJob]:
    """
    Turn declared jobs into runnable instances.

    A job with a `quarantine` attribute becomes two instances: a gating one
    that switches on the exclude feature, and a quarantine one with the
    flaky cases included and the larger retry budget. Both come from the
    same declaration so they cannot drift apart.
    """
    out: List[PipelineJob] = []
    for job in jobs:
        q = job.quarantine
        if q is None:
            out.append(job)
            continue

        inv = job.invocation
        gating_features = " ".join([q.exclude_feature] + inv.feature_list)
        out.append(replace(job, invocation=replace(inv, features=gating_features), quarantine=None))
        out.append(
            replace(
                job,
                lane=Lane.QUARANTINE,
                retries=q.retries,
                quarantine=None,
                name=f"{job.name} [inconsistent]" if job.name else None,
            )
        )
    return out


# ---------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------

def check_job(job: PipelineJob) -> None:
    """Raise InvalidJobConfiguration for a job that cannot be run as declared."""
    label = job.label
    check_component(job.component)

    if job.retries < 0:
        raise InvalidJobConfiguration(label, f"retry budget must be >= 0, got {job.retries}")
    if job.timeout_minutes <= 0:
        raise InvalidJobConfiguration(label, f"timeout must be positive, got {job.timeout_minutes}")
    if job.skip is not None and not job.skip.strip():
        raise InvalidJobConfiguration(label, "skipped job needs a reason")
    if job.image and job.agent_class is not AgentClass.LINUX_CONTAINER:
        raise InvalidJobConfiguration(label, "container image given for a non-container agent")
    check_quarantine(job)


def check_quarantine(job: PipelineJob) -> None:
    q = job.quarantine
    if q is None:
        return
    label = job.label
    if job.lane is Lane.QUARANTINE:
        raise InvalidJobConfiguration(label, "quarantine lane cannot declare another quarantine")
    if q.retries <= job.retries:
        raise InvalidJobConfiguration(
            label, f"quarantine retry budget ({q.retries}) must exceed gating budget ({job.retries})"
        )
    if not q.exclude_feature or q.exclude_feature in job.invocation.feature_list:
        raise InvalidJobConfiguration(
            label, f"exclude feature {q.exclude_feature!r} must be set and not already enabled"
        )


def check_table(jobs: Iterable[PipelineJob], source: str = "<workflow>") -> List[PipelineJob]:
    """
    Expand lanes and reject malformed tables: a broken quarantine
    declaration or colliding labels stop the whole run. Other per-job
    problems are left for the runner to report against that job alone.
    """
    jobs = list(jobs)
    problems: List[str] = []
    for job in jobs:
        try:
            check_quarantine(job)
        except InvalidJobConfiguration as e:
            problems.append(str(e))
    if problems:
        raise PipelineDefinitionError(source, problems)

    expanded = expand_lanes(jobs)
    labels = [j.label for j in expanded]
    dupes = sorted({n for n in labels if labels.count(n) > 1})
    if dupes:
        raise PipelineDefinitionError(source, [f"duplicate job label: {d}" for d in dupes])
    return expanded


# ---------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------

def render_command(job: PipelineJob, platform: Platform | None = None) -> str:
    """The command line an agent runs for this job."""
    platform = platform or platform_for(job.agent_class)
    return platform.render([platform.entrypoint, *entrypoint_args(job.invocation)])


def to_buildkite_steps(jobs: Iterable[PipelineJob]) -> List[Dict[str, Any]]:
    """
    Render expanded jobs as pipeline steps (label, command, agent queue,
    container image, timeout, retry). Quarantine lanes are soft-failing.
    """
    steps: List[Dict[str, Any]] = []
    for job in jobs:
        platform = platform_for(job.agent_class)
        step: Dict[str, Any] = {
            "label": job.label,
            "command": [render_command(job, platform)],
            "agents": {"queue": job.queue or platform.default_queue},
        }
        if job.skipped:
            step["skip"] = job.skip
        image = job.image or platform.default_image
        if job.agent_class is AgentClass.LINUX_CONTAINER and image:
            step["plugins"] = [{"docker#v2.1.0": {"image": image}}]
        # the agent only takes whole minutes
        step["timeout_in_minutes"] = math.ceil(job.timeout_minutes)
        step["retry"] = {"automatic": {"limit": job.retries}}
        if job.lane is Lane.QUARANTINE:
            step["soft_fail"] = True
        steps.append(step)
    return steps
