"""
Target graph: named computation steps and their declared dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .commands import Command, FunctionCommand
from .errors import CycleDetected, DuplicateName, MissingDependency, UnknownTarget

PathLike = Union[str, Path]


@dataclass(frozen=True)
class Target:
    name: str
    command: Command
    depends_on: Tuple[str, ...] = ()
    file_reads: Tuple[Path, ...] = ()
    file_writes: Tuple[Path, ...] = ()

    def declared_files(self) -> List[Path]:
        return [*self.file_reads, *self.file_writes]


@dataclass(frozen=True)
class TargetContext:
    """What a command sees when it runs: upstream results and declared files."""

    name: str
    upstream: Mapping[str, Any] = field(default_factory=dict)
    file_reads: Tuple[Path, ...] = ()
    file_writes: Tuple[Path, ...] = ()

    def __getitem__(self, dep: str) -> Any:
        return self.upstream[dep]

    @property
    def output(self) -> Optional[Path]:
        """First declared output file, the common single-output case."""
        return self.file_writes[0] if self.file_writes else None


def _as_paths(paths: Optional[Iterable[PathLike]]) -> Tuple[Path, ...]:
    if not paths:
        return ()
    return tuple(Path(p) for p in paths)


class TargetGraph:
    """Directed acyclic graph of targets, kept in declaration order.

    Dependencies may name targets that are declared later. Cycles are checked
    on every declaration against the edges known so far, so a cycle is always
    reported by the declaration that closes it.
    """

    def __init__(self) -> None:
        self._targets: Dict[str, Target] = {}
        self._order: Dict[str, int] = {}

    # ------------------------------------------------------------------ building
    def add_target(
        self,
        name: str,
        command: Union[Command, Any],
        depends_on: Optional[Sequence[str]] = None,
        file_reads: Optional[Iterable[PathLike]] = None,
        file_writes: Optional[Iterable[PathLike]] = None,
    ) -> Target:
        if not name:
            raise ValueError("Target name cannot be empty")
        if name in self._targets:
            raise DuplicateName(name)
        if not isinstance(command, Command):
            if not callable(command):
                raise TypeError(f"Command for target '{name}' must be a Command or a callable")
            command = FunctionCommand(fn=command)

        deps: List[str] = []
        for dep in depends_on or ():
            if dep not in deps:
                deps.append(dep)
        if name in deps:
            raise CycleDetected([name, name])

        target = Target(
            name=name,
            command=command,
            depends_on=tuple(deps),
            file_reads=_as_paths(file_reads),
            file_writes=_as_paths(file_writes),
        )

        # Any existing target that (transitively) depends on `name` closes a
        # cycle if `name` also reaches it through `deps`.
        for dep in deps:
            path = self._path_between(dep, name)
            if path is not None:
                raise CycleDetected([name, *path])

        self._targets[name] = target
        self._order[name] = len(self._order)
        return target

    def _path_between(self, start: str, goal: str) -> Optional[List[str]]:
        """Dependency path start -> ... -> goal following `depends_on` edges."""
        if start == goal:
            return [start]
        stack: List[Tuple[str, List[str]]] = [(start, [start])]
        seen: Set[str] = set()
        while stack:
            cur, path = stack.pop()
            if cur in seen:
                continue
            seen.add(cur)
            t = self._targets.get(cur)
            if t is None:
                continue
            for dep in t.depends_on:
                if dep == goal:
                    return [*path, dep]
                stack.append((dep, [*path, dep]))
        return None

    # ------------------------------------------------------------------ queries
    def __contains__(self, name: object) -> bool:
        return name in self._targets

    def __len__(self) -> int:
        return len(self._targets)

    def __iter__(self) -> Iterator[Target]:
        return iter(self._targets.values())

    def __getitem__(self, name: str) -> Target:
        return self._targets[name]

    def names(self) -> List[str]:
        return list(self._targets)

    def upstream(self, name: str) -> List[str]:
        return list(self._targets[name].depends_on)

    def downstream(self, name: str) -> List[str]:
        if name not in self._targets:
            raise KeyError(name)
        return [t.name for t in self._targets.values() if name in t.depends_on]

    def ancestors(self, name: str) -> Set[str]:
        out: Set[str] = set()
        stack = list(self._targets[name].depends_on)
        while stack:
            cur = stack.pop()
            if cur in out:
                continue
            out.add(cur)
            t = self._targets.get(cur)
            if t is not None:
                stack.extend(t.depends_on)
        return out

    def descendants(self, name: str) -> Set[str]:
        if name not in self._targets:
            raise KeyError(name)
        children: Dict[str, List[str]] = {n: [] for n in self._targets}
        for t in self._targets.values():
            for dep in t.depends_on:
                if dep in children:
                    children[dep].append(t.name)
        out: Set[str] = set()
        stack = list(children[name])
        while stack:
            cur = stack.pop()
            if cur in out:
                continue
            out.add(cur)
            stack.extend(children[cur])
        return out

    def subgraph(self, targets: Iterable[str]) -> "TargetGraph":
        """The named targets plus everything they need, in declaration order."""
        keep: Set[str] = set()
        for name in targets:
            if name not in self._targets:
                raise UnknownTarget(name)
            keep.add(name)
            keep |= self.ancestors(name)
        sub = TargetGraph()
        for t in self._targets.values():
            if t.name in keep:
                sub._targets[t.name] = t
                sub._order[t.name] = len(sub._order)
        return sub

    def topological_order(self) -> List[str]:
        """Kahn's algorithm with ties broken by declaration order."""
        for t in self._targets.values():
            missing = [d for d in t.depends_on if d not in self._targets]
            if missing:
                raise MissingDependency(t.name, missing)

        remaining: Dict[str, int] = {n: len(t.depends_on) for n, t in self._targets.items()}
        children: Dict[str, List[str]] = {n: [] for n in self._targets}
        for t in self._targets.values():
            for dep in t.depends_on:
                children[dep].append(t.name)

        ready = sorted((n for n, k in remaining.items() if k == 0), key=self._order.__getitem__)
        order: List[str] = []
        while ready:
            cur = ready.pop(0)
            order.append(cur)
            released = []
            for child in children[cur]:
                remaining[child] -= 1
                if remaining[child] == 0:
                    released.append(child)
            if released:
                ready = sorted([*ready, *released], key=self._order.__getitem__)

        if len(order) != len(self._targets):
            stuck = [n for n in self._targets if n not in set(order)]
            raise CycleDetected(self._find_cycle(stuck) or stuck)
        return order

    def _find_cycle(self, candidates: Sequence[str]) -> Optional[List[str]]:
        for start in candidates:
            for dep in self._targets[start].depends_on:
                path = self._path_between(dep, start)
                if path is not None:
                    return [start, *path]
        return None
