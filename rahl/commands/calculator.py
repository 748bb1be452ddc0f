"""Restricted arithmetic evaluator for the ``calc`` command.

Grammar::

    expression := term (("+" | "-") term)*
    term       := factor (("*" | "/") factor)*
    factor     := ("+" | "-") factor | NUMBER | "(" expression ")"

Anything outside the grammar is rejected. Input is never handed to the
Python interpreter.
"""

from __future__ import annotations

import re
from decimal import Decimal, DivisionByZero, InvalidOperation, localcontext

MAX_EXPRESSION_LENGTH = 200
MAX_NESTING = 32

_TOKEN = re.compile(r"\s*(?:(\d+(?:\.\d*)?|\.\d+)|(.))")
# Common look-alikes people type in chat
_ALIASES = {"x": "*", "×": "*", "÷": "/", "−": "-"}


class CalculationError(ValueError):
    """Raised for malformed expressions and arithmetic errors."""
    pass


def _tokenize(expression: str) -> list[str]:
    tokens: list[str] = []
    for number, symbol in _TOKEN.findall(expression):
        if number:
            tokens.append(number)
            continue
        if symbol.isspace() or not symbol:
            continue
        symbol = _ALIASES.get(symbol.lower(), symbol)
        if symbol not in "+-*/()":
            raise CalculationError(f"Unexpected character '{symbol}'")
        tokens.append(symbol)
    return tokens


class _Parser:
    def __init__(self, tokens: list[str]) -> None:
        self.tokens = tokens
        self.pos = 0
        self.depth = 0

    def peek(self) -> str | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> str:
        token = self.peek()
        if token is None:
            raise CalculationError("Unexpected end of expression")
        self.pos += 1
        return token

    def expression(self) -> Decimal:
        value = self.term()
        while self.peek() in ("+", "-"):
            if self.take() == "+":
                value += self.term()
            else:
                value -= self.term()
        return value

    def term(self) -> Decimal:
        value = self.factor()
        while self.peek() in ("*", "/"):
            if self.take() == "*":
                value *= self.factor()
            else:
                divisor = self.factor()
                if divisor == 0:
                    raise CalculationError("Division by zero")
                value /= divisor
        return value

    def factor(self) -> Decimal:
        token = self.take()
        if token in ("+", "-"):
            self._enter()
            value = self.factor()
            self.depth -= 1
            return value if token == "+" else -value
        if token == "(":
            self._enter()
            value = self.expression()
            if self.take() != ")":
                raise CalculationError("Missing closing parenthesis")
            self.depth -= 1
            return value
        if token in "*/)":
            raise CalculationError(f"Unexpected '{token}'")
        return Decimal(token)

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise CalculationError("Expression is nested too deeply")


def evaluate(expression: str) -> Decimal:
    """
    Evaluate an arithmetic expression.

    Raises:
        CalculationError: If the expression is empty, too long, malformed,
            or divides by zero.
    """
    expression = (expression or "").strip()
    if not expression:
        raise CalculationError("Empty expression")
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise CalculationError("Expression is too long")

    tokens = _tokenize(expression)
    parser = _Parser(tokens)
    with localcontext() as ctx:
        ctx.prec = 28
        try:
            value = parser.expression()
        except (InvalidOperation, DivisionByZero) as e:
            raise CalculationError("Invalid arithmetic") from e
    if parser.peek() is not None:
        raise CalculationError(f"Unexpected '{parser.peek()}'")
    return value


def format_result(value: Decimal) -> str:
    """Render a result without exponent noise or trailing zeros."""
    if value == 0:
        return "0"
    if value == value.to_integral_value():
        return format(value.to_integral_value(), "f")
    text = format(value.normalize(), "f")
    return text.rstrip("0").rstrip(".") if "." in text else text
