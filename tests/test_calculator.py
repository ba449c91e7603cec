"""Tests for the calculator tool and its expression parser."""

from __future__ import annotations

import pytest

from chatrelay.tools.base import ToolContext
from chatrelay.tools.calculator import (
    CalculationError,
    CalculatorTool,
    evaluate,
    format_number,
)


class TestEvaluate:
    @pytest.mark.parametrize(
        "expr, expected",
        [
            ("2 + 2", 4),
            ("2 + 3 * 4", 14),
            ("(2 + 3) * 4", 20),
            ("10 / 4", 2.5),
            ("-3 + 5", 2),
            ("-(2 + 3) * 2", -10),
            ("--4", 4),
            (".5 + 1.", 1.5),
            ("  7  ", 7),
            ("8 - 2 - 1", 5),
            ("16 / 4 / 2", 2),
        ],
    )
    def test_valid_expressions(self, expr, expected):
        assert evaluate(expr) == pytest.approx(expected)

    @pytest.mark.parametrize(
        "expr, message",
        [
            ("", "empty expression"),
            ("   ", "empty expression"),
            ("1 / 0", "division by zero"),
            ("(1 + 2", "missing closing parenthesis"),
            ("2 +", "unexpected end of expression"),
            ("2 & 3", "unexpected character '&' at position 2"),
            ("__import__('os')", "unexpected character '_' at position 0"),
            ("2 ** 3", "unexpected '*' at position 3"),
            ("1 2", "unexpected '2' at position 2"),
            ("2 + 2)", "unexpected ')' at position 5"),
        ],
    )
    def test_rejected_expressions(self, expr, message):
        with pytest.raises(CalculationError) as exc_info:
            evaluate(expr)
        assert str(exc_info.value) == message

    def test_expression_too_long(self):
        with pytest.raises(CalculationError, match="too long"):
            evaluate("1+" * 300 + "1")


class TestFormatNumber:
    def test_integral_values_drop_fraction(self):
        assert format_number(4.0) == "4"
        assert format_number(-10.0) == "-10"

    def test_fractional_values(self):
        assert format_number(2.5) == "2.5"


class TestCalculatorTool:
    async def test_success(self):
        out = await CalculatorTool().execute({"expression": "6 * 7"}, ToolContext())
        assert out == "6 * 7 = 42"

    async def test_error_is_text(self):
        out = await CalculatorTool().execute({"expression": "1/0"}, ToolContext())
        assert out == "Error calculating: division by zero"

    def test_schema(self):
        schema = CalculatorTool().to_openai_schema()
        assert schema["function"]["name"] == "calculator"
        assert schema["function"]["parameters"]["required"] == ["expression"]
        assert schema["function"]["parameters"]["additionalProperties"] is False
