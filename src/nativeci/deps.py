# deps.py
# Dependency installation and root lookup. Both talk to the package manager
# (`hab`) and nothing else; a missing dependency is a hard configuration error.
from __future__ import annotations

import subprocess
from typing import Dict, Iterable, List, Mapping, Optional, Protocol

from .errors import DependencyMissing
from .model import DependencySpec, ResolvedRoot


class RootLocator(Protocol):
    def resolve(self, spec: DependencySpec) -> ResolvedRoot: ...


class HabLocator:
    """Finds installed roots with `hab pkg path <ident>`."""

    def __init__(self, hab_binary: str = "hab"):
        self.hab_binary = hab_binary

    def resolve(self, spec: DependencySpec) -> ResolvedRoot:
        try:
            proc = subprocess.run(
                [self.hab_binary, "pkg", "path", spec.ident],
                text=True,
                capture_output=True,
                check=False,
            )
        except FileNotFoundError:
            raise DependencyMissing(spec.ident, reason=f"{self.hab_binary} not found on PATH")

        path = (proc.stdout or "").strip()
        if proc.returncode != 0 or not path:
            reason = (proc.stderr or "").strip().splitlines()
            raise DependencyMissing(
                spec.ident,
                reason=reason[-1] if reason else f"{self.hab_binary} pkg path exited {proc.returncode}",
            )
        return ResolvedRoot(spec.ident, path)


class MappingLocator:
    """
    Explicit ident -> root table. Identifiers not in the table go to
    `fallback` when one is given.
    """

    def __init__(self, roots: Mapping[str, str], fallback: Optional[RootLocator] = None):
        self.roots = dict(roots)
        self.fallback = fallback

    def resolve(self, spec: DependencySpec) -> ResolvedRoot:
        path = self.roots.get(spec.ident)
        if path:
            return ResolvedRoot(spec.ident, path)
        if self.fallback is not None:
            return self.fallback.resolve(spec)
        raise DependencyMissing(spec.ident)


class HabInstaller:
    """Installs a dependency so that its root becomes discoverable."""

    def __init__(self, hab_binary: str = "hab"):
        self.hab_binary = hab_binary

    def command(self, spec: DependencySpec) -> List[str]:
        cmd = [self.hab_binary, "pkg", "install", spec.ident]
        if spec.binlink:
            cmd.append("--binlink")
        return cmd

    def install(self, spec: DependencySpec) -> None:
        try:
            proc = subprocess.run(self.command(spec), text=True, capture_output=True, check=False)
        except FileNotFoundError:
            raise DependencyMissing(spec.ident, reason=f"{self.hab_binary} not found on PATH")
        if proc.returncode != 0:
            raise DependencyMissing(spec.ident, reason=f"install failed (exit={proc.returncode})")


def install_all(specs: Iterable[DependencySpec], installer: HabInstaller) -> None:
    for spec in specs:
        installer.install(spec)


def resolve_roots(specs: Iterable[DependencySpec], locator: RootLocator) -> Dict[str, ResolvedRoot]:
    """
    Resolve every spec in declaration order. The first missing dependency
    raises DependencyMissing; no partial result is returned.
    """
    roots: Dict[str, ResolvedRoot] = {}
    for spec in specs:
        roots[spec.ident] = locator.resolve(spec)
    return roots


def parse_root_overrides(values: Iterable[str]) -> Dict[str, str]:
    """Parse `IDENT=PATH` pairs given on the command line."""
    out: Dict[str, str] = {}
    for raw in values:
        ident, sep, path = raw.partition("=")
        if not sep or not ident.strip() or not path.strip():
            raise ValueError(f"expected IDENT=PATH, got {raw!r}")
        out[ident.strip()] = path.strip()
    return out
