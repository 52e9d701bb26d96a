"""
Typed target commands.

A command is what a target runs. Each command exposes a stable `code_id()` so
the scheduler can tell when a target's definition changed between runs.
"""

from __future__ import annotations

import hashlib
import inspect
import json
import textwrap
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

from .errors import UnknownCommand

if TYPE_CHECKING:
    from .graph import TargetContext


class Command(ABC):
    """Base class for everything a target can run."""

    #: Optional human-readable variant label (shows up in logs and reports).
    variant: str = "command"

    @abstractmethod
    def code_id(self) -> str:
        """Content-based identity of the command definition."""

    @abstractmethod
    def __call__(self, context: "TargetContext") -> Any:
        """Produce the target's result from its resolved upstream results."""


def _canonical_params(params: Mapping[str, Any]) -> str:
    try:
        return json.dumps(dict(params), sort_keys=True, separators=(",", ":"), default=repr)
    except TypeError:
        return repr(sorted(params.items(), key=lambda kv: str(kv[0])))


def function_source_id(fn: Callable[..., Any]) -> str:
    """Hash a function's qualified name and definition.

    Uses the dedented source text when available; otherwise falls back to the
    bytecode and constants of the code object (lambdas defined in a REPL,
    builtins wrapped in partials, etc.).
    """

    h = hashlib.sha256()
    h.update(f"{getattr(fn, '__module__', '')}.{getattr(fn, '__qualname__', repr(fn))}".encode("utf-8"))
    try:
        source = textwrap.dedent(inspect.getsource(fn))
        h.update(source.encode("utf-8"))
    except (OSError, TypeError):
        code = getattr(fn, "__code__", None)
        if code is not None:
            h.update(code.co_code)
            h.update(repr(code.co_consts).encode("utf-8"))
        else:
            h.update(repr(fn).encode("utf-8"))
    return h.hexdigest()


@dataclass
class FunctionCommand(Command):
    """Run a plain function as `fn(context, **params)`.

    The parameters are part of the code identity, so changing a hyperparameter
    invalidates the target just like editing the function body.
    """

    fn: Callable[..., Any]
    params: Dict[str, Any] = field(default_factory=dict)
    variant: str = "function"

    def code_id(self) -> str:
        h = hashlib.sha256()
        h.update(self.variant.encode("utf-8"))
        h.update(function_source_id(self.fn).encode("utf-8"))
        h.update(_canonical_params(self.params).encode("utf-8"))
        return h.hexdigest()

    def __call__(self, context: "TargetContext") -> Any:
        return self.fn(context, **self.params)


@dataclass
class ValueCommand(Command):
    """A target whose result is a literal value (configuration constants, seeds)."""

    value: Any
    variant: str = "value"

    def code_id(self) -> str:
        h = hashlib.sha256()
        h.update(self.variant.encode("utf-8"))
        h.update(_canonical_params({"value": self.value}).encode("utf-8"))
        return h.hexdigest()

    def __call__(self, context: "TargetContext") -> Any:
        return self.value


CommandFactory = Callable[..., Command]


class CommandRegistry:
    """Caller-populated map of command variants.

    Plans refer to variants by name (`registry.create("train", units=16)`)
    instead of building commands from arbitrary expressions.
    """

    def __init__(self) -> None:
        self._factories: Dict[str, CommandFactory] = {}

    def register(self, name: str, factory: Optional[CommandFactory] = None):
        """Register a factory; usable directly or as a decorator on a function.

        Decorating a plain function registers a factory building a
        `FunctionCommand` around it.
        """

        def _add(obj: Callable[..., Any]) -> Callable[..., Any]:
            if isinstance(obj, type) and issubclass(obj, Command):
                self._factories[name] = obj
            elif factory is not None:
                self._factories[name] = obj
            else:
                fn = obj

                def _build(**params: Any) -> Command:
                    return FunctionCommand(fn=fn, params=dict(params), variant=name)

                self._factories[name] = _build
            return obj

        if factory is not None:
            _add(factory)
            return factory
        return _add

    def create(self, name: str, **params: Any) -> Command:
        try:
            factory = self._factories[name]
        except KeyError as exc:
            known = ", ".join(sorted(self._factories)) or "<none>"
            raise UnknownCommand(f"Unknown command variant '{name}'. Known: {known}") from exc
        return factory(**params)

    def names(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories
