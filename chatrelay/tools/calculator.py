"""
Arithmetic calculator tool.

Expressions are parsed by a small recursive-descent parser over the grammar::

    expr   := term (("+" | "-") term)*
    term   := unary (("*" | "/") unary)*
    unary  := ("+" | "-") unary | atom
    atom   := NUMBER | "(" expr ")"

Nothing outside the grammar is evaluated or silently dropped; it is a
``CalculationError``.
"""

from __future__ import annotations

import re

from chatrelay.tools.base import Tool, ToolContext, ToolKind

_TOKEN_RE = re.compile(r"\s*(?:(\d+(?:\.\d*)?|\.\d+)|(\S))")
MAX_EXPRESSION_LENGTH = 500


class CalculationError(ValueError):
    pass


def _tokenize(expression: str) -> list[tuple[str, str, int]]:
    tokens: list[tuple[str, str, int]] = []
    pos = 0
    while pos < len(expression):
        m = _TOKEN_RE.match(expression, pos)
        if m is None:
            # only trailing whitespace left
            break
        number, op = m.group(1), m.group(2)
        if number is not None:
            tokens.append(("num", number, m.start(1)))
        elif op is not None:
            if op not in "+-*/()":
                raise CalculationError(f"unexpected character {op!r} at position {m.start(2)}")
            tokens.append(("op", op, m.start(2)))
        pos = m.end()
    return tokens


class _Parser:
    def __init__(self, tokens: list[tuple[str, str, int]]) -> None:
        self.tokens = tokens
        self.i = 0

    def _peek(self) -> tuple[str, str, int] | None:
        return self.tokens[self.i] if self.i < len(self.tokens) else None

    def _at(self, *ops: str) -> bool:
        tok = self._peek()
        return tok is not None and tok[0] == "op" and tok[1] in ops

    def _take(self) -> tuple[str, str, int]:
        tok = self.tokens[self.i]
        self.i += 1
        return tok

    def parse(self) -> float:
        if not self.tokens:
            raise CalculationError("empty expression")
        value = self._expr()
        tok = self._peek()
        if tok is not None:
            raise CalculationError(f"unexpected {tok[1]!r} at position {tok[2]}")
        return value

    def _expr(self) -> float:
        value = self._term()
        while self._at("+", "-"):
            tok = self._take()
            rhs = self._term()
            value = value + rhs if tok[1] == "+" else value - rhs
        return value

    def _term(self) -> float:
        value = self._unary()
        while self._at("*", "/"):
            tok = self._take()
            rhs = self._unary()
            if tok[1] == "*":
                value = value * rhs
            else:
                if rhs == 0:
                    raise CalculationError("division by zero")
                value = value / rhs
        return value

    def _unary(self) -> float:
        tok = self._peek()
        if tok is not None and tok[0] == "op" and tok[1] in ("+", "-"):
            self._take()
            operand = self._unary()
            return operand if tok[1] == "+" else -operand
        return self._atom()

    def _atom(self) -> float:
        tok = self._peek()
        if tok is None:
            raise CalculationError("unexpected end of expression")
        if tok[0] == "num":
            self._take()
            return float(tok[1])
        if tok[1] == "(":
            self._take()
            value = self._expr()
            close = self._peek()
            if close is None or close[1] != ")":
                raise CalculationError("missing closing parenthesis")
            self._take()
            return value
        raise CalculationError(f"unexpected {tok[1]!r} at position {tok[2]}")


def evaluate(expression: str) -> float:
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise CalculationError("expression too long")
    return _Parser(_tokenize(expression)).parse()


def format_number(value: float) -> str:
    if value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(value)


class CalculatorTool(Tool):
    @property
    def kind(self) -> ToolKind:
        return ToolKind.CALCULATOR

    @property
    def description(self) -> str:
        return "Perform mathematical calculations"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "expression": {
                    "type": "string",
                    "description": "Arithmetic expression using numbers, + - * / and parentheses",
                },
            },
            "required": ["expression"],
        }

    async def execute(self, args: dict, ctx: ToolContext) -> str:
        expression = args["expression"]
        try:
            value = evaluate(expression)
        except CalculationError as e:
            return f"Error calculating: {e}"
        return f"{expression} = {format_number(value)}"
