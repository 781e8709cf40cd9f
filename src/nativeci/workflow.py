# workflow.py
"""
Loading the pipeline definition.

Two forms are accepted:

  - a Python file defining `DEPENDENCIES` (list of DependencySpec), an
    optional `ENVIRONMENT` rule list, and either `workflow() -> list` or
    `JOBS = [...]`;
  - a JSON file with `dependencies`, optional `environment` and `jobs`,
    validated against the record models below.
"""
from __future__ import annotations

import json
import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .env import DEFAULT_RULES, FlagRule, PathListRule, Rule, RootRule
from .errors import PipelineDefinitionError
from .invoker import invocation
from .model import AgentClass, DependencySpec, LinkMode, PipelineJob, Quarantine


@dataclass
class Workflow:
    dependencies: List[DependencySpec]
    jobs: List[PipelineJob]                      # as declared, lanes not yet expanded
    rules: Sequence[Rule] = field(default=DEFAULT_RULES)
    source: str = "<workflow>"


# ----------------------------------------------------------------------
# JSON records
# ----------------------------------------------------------------------

class DependencyRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ident: str
    modes: List[LinkMode] = Field(default_factory=list)
    binlink: bool = False


class RuleRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    var: str
    kind: Literal["path-list", "root", "flag"]
    mode: Optional[LinkMode] = None
    ident: Optional[str] = None
    subpath: str = "lib"

    @model_validator(mode="after")
    def _fields_for_kind(self) -> "RuleRecord":
        if self.kind in ("path-list", "flag") and self.mode is None:
            raise ValueError(f"{self.kind} rule {self.var} needs a mode")
        if self.kind in ("root", "flag") and not self.ident:
            raise ValueError(f"{self.kind} rule {self.var} needs an ident")
        return self


class QuarantineRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    exclude_feature: str = "ignore_inconsistent_tests"
    retries: int = 10


class JobRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    component: str
    agent: AgentClass = AgentClass.LINUX_CONTAINER
    features: str = ""
    test_options: str = ""
    timeout_minutes: float = 10
    retries: int = 1
    quarantine: Optional[QuarantineRecord] = None
    skip: Optional[str] = None
    queue: Optional[str] = None
    image: Optional[str] = None
    label: Optional[str] = None


class WorkflowRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    dependencies: List[DependencyRecord]
    environment: Optional[List[RuleRecord]] = None
    jobs: List[JobRecord]


def _rule_from_record(r: RuleRecord) -> Rule:
    if r.kind == "path-list":
        return PathListRule(r.var, r.mode, r.subpath)
    if r.kind == "root":
        return RootRule(r.var, r.ident)
    return FlagRule(r.var, r.ident, r.mode)


def _rule_to_record(rule: Rule) -> RuleRecord:
    if isinstance(rule, PathListRule):
        return RuleRecord(var=rule.var, kind="path-list", mode=rule.mode, subpath=rule.subpath)
    if isinstance(rule, RootRule):
        return RuleRecord(var=rule.var, kind="root", ident=rule.ident)
    return RuleRecord(var=rule.var, kind="flag", ident=rule.ident, mode=rule.mode)


def _job_from_record(r: JobRecord) -> PipelineJob:
    q = None
    if r.quarantine is not None:
        q = Quarantine(exclude_feature=r.quarantine.exclude_feature, retries=r.quarantine.retries)
    return PipelineJob(
        invocation=invocation(r.component, r.features, r.test_options),
        agent_class=r.agent,
        timeout_minutes=r.timeout_minutes,
        retries=r.retries,
        quarantine=q,
        skip=r.skip,
        queue=r.queue,
        image=r.image,
        name=r.label,
    )


def _job_to_record(job: PipelineJob) -> JobRecord:
    q = job.quarantine
    return JobRecord(
        component=job.component,
        agent=job.agent_class,
        features=job.invocation.features,
        test_options=job.invocation.test_options,
        timeout_minutes=job.timeout_minutes,
        retries=job.retries,
        quarantine=QuarantineRecord(exclude_feature=q.exclude_feature, retries=q.retries) if q else None,
        skip=job.skip,
        queue=job.queue,
        image=job.image,
        label=job.name,
    )


def from_records(data: dict, source: str = "<records>") -> Workflow:
    try:
        rec = WorkflowRecord.model_validate(data)
        deps = [DependencySpec(d.ident, frozenset(d.modes), d.binlink) for d in rec.dependencies]
    except ValidationError as e:
        problems = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise PipelineDefinitionError(source, problems) from e
    except ValueError as e:
        raise PipelineDefinitionError(source, [str(e)]) from e

    rules = DEFAULT_RULES if rec.environment is None else tuple(_rule_from_record(r) for r in rec.environment)
    return Workflow(
        dependencies=deps,
        jobs=[_job_from_record(j) for j in rec.jobs],
        rules=rules,
        source=source,
    )


def to_records(wf: Workflow) -> dict:
    rec = WorkflowRecord(
        dependencies=[
            DependencyRecord(ident=d.ident, modes=sorted(d.modes, key=lambda m: m.value), binlink=d.binlink)
            for d in wf.dependencies
        ],
        environment=[_rule_to_record(r) for r in wf.rules],
        jobs=[_job_to_record(j) for j in wf.jobs],
    )
    return rec.model_dump(mode="json", exclude_none=True)


# ----------------------------------------------------------------------
# Loading
# ----------------------------------------------------------------------

def _load_python(wf_path: Path) -> Workflow:
    module_name = f"nativeci_workflow_{wf_path.stem}"
    source = str(wf_path)
    try:
        globals_dict = runpy.run_path(source, run_name=module_name)
        jobs = None
        if "workflow" in globals_dict and callable(globals_dict["workflow"]):
            jobs = globals_dict["workflow"]()
        elif "JOBS" in globals_dict:
            jobs = globals_dict["JOBS"]
    except (ValueError, TypeError) as e:
        raise PipelineDefinitionError(source, [f"{type(e).__name__}: {e}"]) from e

    problems: List[str] = []
    if not isinstance(jobs, list) or not all(isinstance(j, PipelineJob) for j in jobs):
        problems.append("define workflow() -> List[PipelineJob] or JOBS = [PipelineJob, ...]")

    deps = globals_dict.get("DEPENDENCIES")
    if not isinstance(deps, list) or not all(isinstance(d, DependencySpec) for d in deps):
        problems.append("define DEPENDENCIES = [DependencySpec, ...]")

    rules = globals_dict.get("ENVIRONMENT", DEFAULT_RULES)
    if not isinstance(rules, (list, tuple)) or not all(
        isinstance(r, (PathListRule, RootRule, FlagRule)) for r in rules
    ):
        problems.append("ENVIRONMENT must be a list of path_list/root_of/flag rules")

    if problems:
        raise PipelineDefinitionError(source, problems)
    return Workflow(dependencies=deps, jobs=jobs, rules=tuple(rules), source=source)


def load_workflow(path: str | Path) -> Workflow:
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix == ".py":
        return _load_python(wf_path)
    if wf_path.suffix == ".json":
        try:
            data = json.loads(wf_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise PipelineDefinitionError(str(wf_path), [f"invalid JSON: {e}"]) from e
        return from_records(data, source=str(wf_path))
    raise PipelineDefinitionError(str(wf_path), [f"workflow must be a .py or .json file, got {wf_path.name}"])
