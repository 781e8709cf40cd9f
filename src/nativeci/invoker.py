# invoker.py
from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Tuple, Union

from .errors import InvalidJobConfiguration
from .model import CARGO, ComponentInvocation, TestRunner
from .platform import Platform

COMPONENTS_DIR = "components"

Features = Union[str, Iterable[str], None]


@dataclass(frozen=True)
class CommandDescriptor:
    """What to run and where. Built by the invoker, executed by the runner."""
    argv: Tuple[str, ...]
    cwd: Path
    component: str

    def display(self, platform: Platform) -> str:
        return platform.render(self.argv)

    @property
    def relative_cwd(self) -> str:
        return f"{COMPONENTS_DIR}/{self.component}"


def normalize_features(features: Features) -> str:
    """Collapse a feature list or string into the space-joined form ("" for none)."""
    if features is None:
        return ""
    if isinstance(features, str):
        return " ".join(features.split())
    return " ".join(f.strip() for f in features if f and f.strip())


def invocation(
    component: str,
    features: Features = None,
    test_options: str | None = None,
    runner: TestRunner = CARGO,
) -> ComponentInvocation:
    return ComponentInvocation(
        component=component,
        features=normalize_features(features),
        test_options=(test_options or "").strip(),
        runner=runner,
    )


def check_component(component: str) -> None:
    if not component or not component.strip():
        raise InvalidJobConfiguration(component or "<unnamed>", "component name is empty")
    if "/" in component or "\\" in component or component in (".", ".."):
        raise InvalidJobConfiguration(component, "component name must be a single directory name")


def runner_argv(inv: ComponentInvocation) -> List[str]:
    """
    cargo test [--features "<f1 f2>"] -- --nocapture [<test options>]

    The feature flag is left out entirely when there are no features; some
    runners reject an empty value.
    """
    runner = inv.runner
    argv = list(runner.command)
    features = normalize_features(inv.features)
    if features:
        argv.extend([runner.features_flag, features])
    argv.append(runner.separator)
    argv.extend(runner.default_test_args)
    if inv.test_options:
        argv.extend(shlex.split(inv.test_options))
    return argv


def build_command(inv: ComponentInvocation, repo_root: str | Path) -> CommandDescriptor:
    check_component(inv.component)
    cwd = Path(repo_root) / COMPONENTS_DIR / inv.component
    return CommandDescriptor(argv=tuple(runner_argv(inv)), cwd=cwd, component=inv.component)


def entrypoint_args(inv: ComponentInvocation) -> List[str]:
    """CLI arguments that reproduce `inv` through `nativeci test`."""
    args = ["test"]
    features = normalize_features(inv.features)
    if features:
        args.extend(["--features", features])
    if inv.test_options:
        args.extend(["--test-options", inv.test_options])
    args.append(inv.component)
    return args
