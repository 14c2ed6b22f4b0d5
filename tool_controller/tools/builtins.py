"""Arithmetic builtins executed in-process for ``function`` tools."""

from __future__ import annotations

import math
from typing import Any, Mapping

from .exceptions import ArgumentCoercionError, DivisionByZeroError


def coerce_number(arguments: Mapping[str, Any], key: str) -> float:
    """Read ``arguments[key]`` as a finite float from a float, int, or numeric string."""
    if key not in arguments:
        raise ArgumentCoercionError(f"missing argument '{key}'")
    value = arguments[key]
    # bool is an int subclass but never a number here.
    if isinstance(value, bool):
        raise ArgumentCoercionError(f"argument '{key}' must be a number, got bool")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise ArgumentCoercionError(f"argument '{key}' is not numeric: {value!r}") from None
    else:
        raise ArgumentCoercionError(f"argument '{key}' must be a number, got {type(value).__name__}")
    if not math.isfinite(number):
        raise ArgumentCoercionError(f"argument '{key}' must be finite")
    return number


def format_number(value: float) -> str:
    """Shortest round-trip form; a trailing ``.0`` is dropped."""
    text = repr(value)
    return text[:-2] if text.endswith(".0") else text


def add(a: float, b: float) -> float:
    return a + b


def subtract(a: float, b: float) -> float:
    return a - b


def multiply(a: float, b: float) -> float:
    return a * b


def divide(a: float, b: float) -> float:
    if b == 0:
        raise DivisionByZeroError("division by zero")
    return a / b


ARITHMETIC_FUNCTIONS = {
    "add": add,
    "subtract": subtract,
    "multiply": multiply,
    "divide": divide,
}

__all__ = [
    "ARITHMETIC_FUNCTIONS",
    "add",
    "coerce_number",
    "divide",
    "format_number",
    "multiply",
    "subtract",
]
