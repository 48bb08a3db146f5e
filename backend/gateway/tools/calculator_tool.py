"""Arithmetic expression evaluator."""

import ast
import operator

from gateway.tools.base import (
    BaseTool, ToolCall, ToolDefinition, ToolParameter, ToolParamType, ToolResult,
)

BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
UNARY_OPERATORS = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

MAX_EXPONENT = 1000
MAX_EXPRESSION_LENGTH = 500


class _Evaluator(ast.NodeVisitor):
    """Walks a parsed expression, allowing numbers and arithmetic only."""

    def visit_Expression(self, node: ast.Expression):
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise ValueError("Only numeric values allowed")
        return node.value

    def visit_BinOp(self, node: ast.BinOp):
        op = BINARY_OPERATORS.get(type(node.op))
        if op is None:
            raise ValueError(f"Unsupported operator: {type(node.op).__name__}")
        left, right = self.visit(node.left), self.visit(node.right)
        if op is operator.pow and abs(right) > MAX_EXPONENT:
            raise ValueError("Exponent too large")
        return op(left, right)

    def visit_UnaryOp(self, node: ast.UnaryOp):
        op = UNARY_OPERATORS.get(type(node.op))
        if op is None:
            raise ValueError(f"Unsupported operator: {type(node.op).__name__}")
        return op(self.visit(node.operand))

    def generic_visit(self, node: ast.AST):
        raise ValueError(f"Unsupported expression type: {type(node).__name__}")


def safe_eval(expr: str) -> float:
    """Evaluate a numeric expression without exposing names or calls."""
    if len(expr) > MAX_EXPRESSION_LENGTH:
        raise ValueError("Expression too long")
    return _Evaluator().visit(ast.parse(expr, mode="eval"))


class CalculatorTool(BaseTool):

    def get_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="calculator",
            description="Evaluate an arithmetic expression (+, -, *, /, //, %, **).",
            category="utility",
            parameters=[
                ToolParameter(
                    name="expression",
                    type=ToolParamType.STRING,
                    description="Expression to evaluate, e.g. '(100 + 200) * 1.1'",
                ),
                ToolParameter(
                    name="precision",
                    type=ToolParamType.INTEGER,
                    description="Round the result to this many decimal places",
                    required=False,
                ),
            ],
        )

    async def execute(self, call: ToolCall, **kwargs) -> ToolResult:
        expression = kwargs.get("expression", "")
        if not expression:
            return ToolResult(success=False, error="expression is required")

        try:
            value = safe_eval(expression)
        except (ValueError, ZeroDivisionError, SyntaxError, OverflowError) as e:
            return ToolResult(success=False, error=f"Calculation error: {e}")

        precision = kwargs.get("precision")
        if precision is not None:
            if not isinstance(precision, int) or isinstance(precision, bool) or not 0 <= precision <= 15:
                return ToolResult(success=False, error="precision must be an integer between 0 and 15")
            value = round(value, precision)
        return ToolResult(success=True, data={"expression": expression, "result": value})
