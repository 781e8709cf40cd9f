# env.py
"""
Environment assembly.

The native build reads its dependency locations from environment variables.
Each variable comes from one rule in a fixed table:

  - PathListRule: every dependency declaring a mode contributes
    `<root>/<subpath>`, in declaration order. Linkers take the first match,
    so the order is part of the result.
  - RootRule: the root of one named dependency.
  - FlagRule: "true" when a named dependency declares a mode.

Assembly is all-or-nothing and never touches os.environ; the result is an
immutable mapping handed to every job.
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Union

from .errors import UnresolvedDependency
from .model import DependencySpec, LinkMode, ResolvedRoot
from .platform import LINUX, Platform


@dataclass(frozen=True)
class PathListRule:
    var: str
    mode: LinkMode
    subpath: str = "lib"

    def referenced(self) -> List[str]:
        return []

    def evaluate(self, specs: Sequence[DependencySpec], roots: Mapping[str, ResolvedRoot], platform: Platform) -> Optional[str]:
        fragments = [platform.join(roots[s.ident].path, self.subpath) for s in specs if s.has_mode(self.mode)]
        value = platform.join_path_list(fragments)
        return value or None


@dataclass(frozen=True)
class RootRule:
    var: str
    ident: str

    def referenced(self) -> List[str]:
        return [self.ident]

    def evaluate(self, specs: Sequence[DependencySpec], roots: Mapping[str, ResolvedRoot], platform: Platform) -> Optional[str]:
        return str(platform.path_flavor(roots[self.ident].path))


@dataclass(frozen=True)
class FlagRule:
    var: str
    ident: str
    mode: LinkMode

    def referenced(self) -> List[str]:
        return [self.ident]

    def evaluate(self, specs: Sequence[DependencySpec], roots: Mapping[str, ResolvedRoot], platform: Platform) -> Optional[str]:
        spec = next(s for s in specs if s.ident == self.ident)
        return "true" if spec.has_mode(self.mode) else None


Rule = Union[PathListRule, RootRule, FlagRule]


DEFAULT_RULES: tuple[Rule, ...] = (
    PathListRule("LIBRARY_PATH", LinkMode.STATIC_LINK, "lib"),
    PathListRule("PKG_CONFIG_PATH", LinkMode.TOOL_PATH, "lib/pkgconfig"),
    PathListRule("LD_LIBRARY_PATH", LinkMode.DYNAMIC_RUNTIME, "lib"),
)


class Environment(Mapping[str, str]):
    """Read-only set of assembled variables, safe to share between jobs."""

    def __init__(self, values: Mapping[str, str]):
        self._values = MappingProxyType(dict(values))

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Environment({dict(self._values)!r})"

    def overlay(self, base: Mapping[str, str]) -> Dict[str, str]:
        """A fresh process environment: base with these variables on top."""
        out = dict(base)
        out.update(self._values)
        return out

    def exports(self, platform: Platform) -> List[str]:
        return [platform.export_line(k, v) for k, v in self._values.items()]


def assemble(
    specs: Sequence[DependencySpec],
    roots: Mapping[str, ResolvedRoot],
    rules: Sequence[Rule] = DEFAULT_RULES,
    platform: Platform = LINUX,
) -> Environment:
    specs = list(specs)
    declared = {s.ident for s in specs}

    missing = [s.ident for s in specs if s.ident not in roots]
    if missing:
        raise UnresolvedDependency(missing)
    for rule in rules:
        unknown = [i for i in rule.referenced() if i not in declared or i not in roots]
        if unknown:
            raise UnresolvedDependency(unknown, referenced_by=rule.var)

    values: Dict[str, str] = {}
    for rule in rules:
        value = rule.evaluate(specs, roots, platform)
        if value is not None:
            values[rule.var] = value
    return Environment(values)
