"""Arithmetic for the ``math`` command: numbers, + - * / and parentheses only."""

from __future__ import annotations

import ast
from typing import Union

Number = Union[int, float]

MAX_EXPRESSION_LENGTH = 200


class MathError(ValueError):
    pass


def _eval(node: ast.AST) -> Number:
    if isinstance(node, ast.Expression):
        return _eval(node.body)
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return node.value
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.UAdd, ast.USub)):
        operand = _eval(node.operand)
        return -operand if isinstance(node.op, ast.USub) else operand
    if isinstance(node, ast.BinOp):
        left = _eval(node.left)
        right = _eval(node.right)
        if isinstance(node.op, ast.Add):
            return left + right
        if isinstance(node.op, ast.Sub):
            return left - right
        if isinstance(node.op, ast.Mult):
            return left * right
        if isinstance(node.op, ast.Div):
            if right == 0:
                raise MathError("division by zero")
            return left / right
    raise MathError(f"unsupported expression: {type(node).__name__}")


def evaluate(expression: str) -> Number:
    text = (expression or "").strip()
    if not text:
        raise MathError("empty expression")
    if len(text) > MAX_EXPRESSION_LENGTH:
        raise MathError("expression too long")
    try:
        tree = ast.parse(text, mode="eval")
    except (SyntaxError, ValueError) as exc:
        raise MathError("invalid expression") from exc
    result = _eval(tree)
    if isinstance(result, float) and result.is_integer():
        return int(result)
    return result


def format_number(value: Number) -> str:
    if isinstance(value, float):
        return f"{value:.10g}"
    return str(value)
