# platform.py
from __future__ import annotations

import shlex
import subprocess
import sys
from dataclasses import dataclass
from pathlib import PurePath, PurePosixPath, PureWindowsPath
from typing import Callable, Optional, Sequence, Type

from .model import AgentClass


def _quote_windows(arg: str) -> str:
    return subprocess.list2cmdline([arg])


@dataclass(frozen=True)
class Platform:
    """
    Target-platform descriptor. Everything that differs between Linux and
    Windows agents lives here, so a job record renders the same logical
    invocation on both.
    """
    name: str
    agent_class: AgentClass
    path_sep: str
    path_flavor: Type[PurePath]
    default_queue: str
    default_image: Optional[str]
    quote: Callable[[str], str]
    entrypoint: str = "nativeci"

    def join(self, root: str, subpath: str) -> str:
        return str(self.path_flavor(root, *subpath.split("/")))

    def join_path_list(self, fragments: Sequence[str]) -> str:
        return self.path_sep.join(f for f in fragments if f)

    def render(self, argv: Sequence[str]) -> str:
        """Render argv as a single command line for this platform's shell."""
        return " ".join(self.quote(a) for a in argv)

    def export_line(self, name: str, value: str) -> str:
        if self.agent_class is AgentClass.WINDOWS_NATIVE:
            return f'$env:{name} = "{value}"'
        return f"export {name}={shlex.quote(value)}"


LINUX = Platform(
    name="linux",
    agent_class=AgentClass.LINUX_CONTAINER,
    path_sep=":",
    path_flavor=PurePosixPath,
    default_queue="docker-privileged",
    default_image="chefes/buildkite",
    quote=shlex.quote,
)

WINDOWS = Platform(
    name="windows",
    agent_class=AgentClass.WINDOWS_NATIVE,
    path_sep=";",
    path_flavor=PureWindowsPath,
    default_queue="windows-default",
    default_image=None,
    quote=_quote_windows,
)

PLATFORMS = {p.agent_class: p for p in (LINUX, WINDOWS)}


def platform_for(agent_class: AgentClass | str) -> Platform:
    return PLATFORMS[AgentClass(agent_class)]


def host_platform() -> Platform:
    return WINDOWS if sys.platform.startswith("win") else LINUX


def docker_wrap(
    argv: Sequence[str],
    *,
    image: str,
    repo_root: str,
    workdir: str,
    env: dict[str, str],
    container_root: str = "/workspace",
    name: Optional[str] = None,
) -> list[str]:
    """
    Wrap argv in `docker run`, mounting repo_root at container_root.

    `workdir` is relative to the repository root. A `name` lets the caller
    remove the container if the client is killed.
    """
    cmd = ["docker", "run", "--rm"]
    if name:
        cmd.extend(["--name", name])
    cmd.extend(["-v", f"{repo_root}:{container_root}"])
    container_cwd = f"{container_root}/{workdir}".replace("//", "/")
    cmd.extend(["-w", container_cwd])
    for key, value in env.items():
        cmd.extend(["-e", f"{key}={value}"])
    cmd.append(image)
    cmd.extend(argv)
    return cmd
