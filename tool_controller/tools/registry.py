from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping

from .builtins import ARITHMETIC_FUNCTIONS, coerce_number, format_number
from .exceptions import UnknownBuiltinError

__all__ = [
    "QUALIFIER_SEPARATOR",
    "BuiltinRegistry",
    "QualifiedToolName",
    "builtin_registry",
    "parse_qualified_tool_name",
]

QUALIFIER_SEPARATOR = "__"

BinaryFunction = Callable[[float, float], float]


@dataclass(slots=True, frozen=True)
class QualifiedToolName:
    server: str
    tool: str
    is_remote: bool

    def __str__(self) -> str:
        if not self.is_remote:
            return self.tool
        return f"{self.server}{QUALIFIER_SEPARATOR}{self.tool}"


def parse_qualified_tool_name(name: str) -> QualifiedToolName:
    """Split ``server__tool``; anything other than exactly two non-empty segments is local."""
    parts = name.split(QUALIFIER_SEPARATOR)
    if len(parts) == 2 and all(parts):
        return QualifiedToolName(server=parts[0], tool=parts[1], is_remote=True)
    return QualifiedToolName(server="", tool=name, is_remote=False)


class BuiltinRegistry:
    """Named two-operand functions invoked with arguments ``a`` and ``b``."""

    def __init__(self) -> None:
        self._functions: Dict[str, BinaryFunction] = {}

    def register(self, name: str, function: BinaryFunction) -> None:
        key = name.strip()
        if not key:
            raise ValueError("Builtin name must not be empty")
        self._functions[key] = function

    def unregister(self, name: str) -> None:
        self._functions.pop(name.strip(), None)

    def get(self, name: str) -> BinaryFunction | None:
        return self._functions.get(name.strip())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip() in self._functions

    def list(self) -> list[str]:
        return sorted(self._functions)

    def invoke(self, name: str, arguments: Mapping[str, Any]) -> str:
        """Run ``name`` on coerced ``a``/``b`` and return the canonical string result.

        Raises :class:`UnknownBuiltinError` for unregistered names, and lets
        :class:`ArgumentCoercionError` and :class:`DivisionByZeroError` propagate.
        """
        function = self.get(name)
        if function is None:
            raise UnknownBuiltinError(f"unknown builtin function '{name}'")
        a = coerce_number(arguments, "a")
        b = coerce_number(arguments, "b")
        return format_number(function(a, b))

    @classmethod
    def with_arithmetic(cls) -> "BuiltinRegistry":
        registry = cls()
        for name, function in ARITHMETIC_FUNCTIONS.items():
            registry.register(name, function)
        return registry


builtin_registry = BuiltinRegistry.with_arithmetic()
