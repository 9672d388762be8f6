#!/usr/bin/env python3
"""
preview_expression.py - Offset/width expression evaluator

Grammar:
    expr := [sign] term (('+' | '-') term)*
    term := '{' name '}' | number
    number := 0b1010 | 1010 (only 0/1 digits: binary) | 0x1F | 017 | 42

Variables are dotted field paths bound earlier in the same decode pass.

Usage:
    from preview_expression import evaluate
    from preview_config import ValueExpr

    evaluate(ValueExpr.of('{size}-5'), {'size': 66})  # 61
"""

from typing import Mapping, Optional

from preview_config import ValueExpr


INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1
UINT64_MAX = (1 << 64) - 1

_DIGITS = '0123456789abcdef'


class ExpressionError(ValueError):
    """Expression could not be evaluated."""

    def __init__(self, message: str, missing_variable: Optional[str] = None):
        super().__init__(message)
        self.missing_variable = missing_variable

    @property
    def is_missing_variable(self) -> bool:
        return self.missing_variable is not None


def to_int64(value: int) -> int:
    """Wrap an integer to signed 64-bit two's complement."""
    value &= UINT64_MAX
    if value > INT64_MAX:
        value -= 1 << 64
    return value


def _is_binary_string(text: str) -> bool:
    return bool(text) and all(ch in '01' for ch in text)


def _parse_radix(text: str) -> int:
    """C-style radix inference: 0x -> hex, leading 0 -> octal, else decimal."""
    if text[:2].lower() == '0x':
        digits, base = text[2:], 16
    elif len(text) > 1 and text.startswith('0'):
        digits, base = text[1:], 8
    else:
        digits, base = text, 10
    allowed = _DIGITS[:base]
    if not digits or any(ch not in allowed for ch in digits.lower()):
        raise ValueError(f"invalid base {base} number '{text}'")
    return int(digits, base)


def _parse_unsigned(text: str) -> int:
    text = text.strip()
    if text[:2].lower() == '0b':
        digits = text[2:]
        if not _is_binary_string(digits):
            raise ValueError(f"invalid binary number '{text}'")
        return int(digits, 2)
    if _is_binary_string(text):
        return int(text, 2)
    if not text:
        raise ValueError("empty number")
    return _parse_radix(text)


def parse_signed_integer(token: str) -> int:
    """Parse one expression term literal into a signed 64-bit integer."""
    value = _parse_unsigned(token)
    if value > INT64_MAX:
        raise ValueError(f"number '{token.strip()}' out of range")
    return value


def parse_numeric_string(text: str) -> int:
    """Parse text as an unsigned 64-bit integer (binary autodetected)."""
    value = _parse_unsigned(text)
    if value > UINT64_MAX:
        raise ValueError(f"number '{text.strip()}' out of range")
    return value


class _Tokenizer:
    def __init__(self, text: str, values: Mapping[str, int]):
        self.text = text
        self.values = values
        self.pos = 0

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def skip_spaces(self):
        while not self.at_end() and self.text[self.pos].isspace():
            self.pos += 1

    def peek(self) -> str:
        return self.text[self.pos]

    def term(self) -> int:
        if self.at_end():
            raise ExpressionError("Expression ends with an operator.")

        if self.peek() == '{':
            start = self.pos + 1
            end = self.text.find('}', start)
            if end < 0:
                raise ExpressionError("Missing '}' in expression.")
            key = self.text[start:end].strip()
            if not key:
                raise ExpressionError("Empty variable name in expression.")
            if key not in self.values:
                raise ExpressionError(f"Missing variable {key}.", missing_variable=key)
            self.pos = end + 1
            return int(self.values[key])

        start = self.pos
        while not self.at_end():
            ch = self.peek()
            if ch.isspace() or ch in '+-':
                break
            self.pos += 1
        token = self.text[start:self.pos]
        if not token:
            raise ExpressionError("Expected numeric token.")
        try:
            return parse_signed_integer(token)
        except ValueError:
            raise ExpressionError(f"Invalid numeric token '{token}'.")


def evaluate_text(expression: str, values: Mapping[str, int]) -> int:
    """Evaluate an expression string against bound values."""
    text = expression.strip()
    if not text:
        raise ExpressionError("Expression is empty.")

    tok = _Tokenizer(text, values)
    sign = 1
    if tok.peek() in '+-':
        sign = -1 if tok.peek() == '-' else 1
        tok.pos += 1
        tok.skip_spaces()

    total = sign * tok.term()
    while True:
        tok.skip_spaces()
        if tok.at_end():
            break
        op = tok.peek()
        if op not in '+-':
            raise ExpressionError("Expected '+' or '-' in expression.")
        tok.pos += 1
        tok.skip_spaces()
        term = tok.term()
        total = total - term if op == '-' else total + term

    return to_int64(total)


def evaluate(expr: ValueExpr, values: Mapping[str, int]) -> int:
    """
    Evaluate a ValueExpr.

    Unset evaluates to 0. Raises ExpressionError; when the failure is an
    unbound {variable}, ``missing_variable`` names it.
    """
    if not expr.is_set:
        return 0
    if expr.is_literal:
        return to_int64(expr.literal)
    return evaluate_text(expr.expression, values)
