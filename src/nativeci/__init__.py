from .dsl import dep, flag, job, linux, matrix, path_list, quarantine, root_of, wf, windows
from .env import Environment, assemble
from .model import AgentClass, ComponentInvocation, DependencySpec, Lane, LinkMode, PipelineJob
from .runner import run_job, run_pipeline

__all__ = [
    "dep", "flag", "job", "linux", "matrix", "path_list", "quarantine", "root_of", "wf", "windows",
    "Environment", "assemble",
    "AgentClass", "ComponentInvocation", "DependencySpec", "Lane", "LinkMode", "PipelineJob",
    "run_job", "run_pipeline",
]
