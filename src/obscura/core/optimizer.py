"""
Structural Optimizer
Constant folding and dead-branch elimination over the JavaScript tree

optimize() is total: it never raises, and returns its input unchanged when
the input does not parse. Folding follows JavaScript semantics for the
primitive cases it understands and leaves everything else alone.
"""

import logging
import math
from typing import Any

from .errors import JSParseError
from .jsparse import (
    MISSING, JSRewriter, is_number, is_valid_identifier, js_number, literal_value, parse_js,
)

logger = logging.getLogger(__name__)

MAX_SAFE_INTEGER = 2 ** 53
DEFAULT_MAX_PASSES = 3

_COMPARISONS = frozenset(["<", ">", "<=", ">="])
_EQUALITY = frozenset(["===", "!==", "==", "!="])
_STATEMENT_START_HAZARDS = ("function", "class", "{")


def js_truthy(value: Any) -> bool:
    """JavaScript ToBoolean for primitive values"""
    if value is None or value is False:
        return False
    if value is True:
        return True
    if isinstance(value, str):
        return value != ""
    if is_number(value):
        return not (value == 0 or (isinstance(value, float) and math.isnan(value)))
    return True


def _to_int32(value) -> int:
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return 0
        value = int(value)
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value


def _to_uint32(value) -> int:
    return _to_int32(value) & 0xFFFFFFFF


def _normalize(result: Any) -> Any:
    if isinstance(result, complex):
        return MISSING
    if isinstance(result, float) and result.is_integer() and abs(result) <= MAX_SAFE_INTEGER:
        return int(result)
    if isinstance(result, int) and not isinstance(result, bool) and abs(result) > MAX_SAFE_INTEGER:
        return MISSING
    return result


def _same_kind(left: Any, right: Any) -> bool:
    if is_number(left) and is_number(right):
        return True
    return type(left) is type(right)


def _strict_equal(left: Any, right: Any) -> bool:
    return _same_kind(left, right) and left == right


def fold_binary(operator: str, left: Any, right: Any) -> Any:
    """
    Evaluate a binary operator over two primitive values

    Returns:
        The folded value, or MISSING when the result is not statically safe
    """
    if left is MISSING or right is MISSING:
        return MISSING

    if operator == "+":
        if isinstance(left, str) and isinstance(right, str):
            return left + right
        if isinstance(left, str) and is_number(right):
            return _concat_number(left, right, number_first=False)
        if is_number(left) and isinstance(right, str):
            return _concat_number(right, left, number_first=True)

    if operator in _EQUALITY:
        if operator in ("==", "!=") and not _same_kind(left, right):
            return MISSING
        equal = _strict_equal(left, right)
        return equal if operator in ("===", "==") else not equal

    if operator in _COMPARISONS and isinstance(left, str) and isinstance(right, str):
        return _compare(operator, left, right)

    if not (is_number(left) and is_number(right)):
        return MISSING

    if operator in _COMPARISONS:
        return _compare(operator, left, right)

    try:
        if operator == "+":
            return _normalize(left + right)
        if operator == "-":
            return _normalize(left - right)
        if operator == "*":
            return _normalize(left * right)
        if operator == "/":
            return MISSING if right == 0 else _normalize(left / right)
        if operator == "%":
            return MISSING if right == 0 else _normalize(math.fmod(left, right))
        if operator == "**":
            return _normalize(float(left) ** float(right))
        if operator == "&":
            return _to_int32(left) & _to_int32(right)
        if operator == "|":
            return _to_int32(left) | _to_int32(right)
        if operator == "^":
            return _to_int32(left) ^ _to_int32(right)
        if operator == "<<":
            return _to_int32(_to_int32(left) << (_to_uint32(right) & 31))
        if operator == ">>":
            return _to_int32(left) >> (_to_uint32(right) & 31)
        if operator == ">>>":
            return _to_uint32(left) >> (_to_uint32(right) & 31)
    except (OverflowError, ZeroDivisionError, ValueError):
        return MISSING
    return MISSING


def _concat_number(text: str, number, number_first: bool) -> Any:
    if isinstance(number, float) and not number.is_integer():
        # Python and JavaScript disagree on float formatting
        return MISSING
    rendered = js_number(number)
    return rendered + text if number_first else text + rendered


def _compare(operator: str, left: Any, right: Any) -> Any:
    if operator == "<":
        return left < right
    if operator == ">":
        return left > right
    if operator == "<=":
        return left <= right
    return left >= right


def fold_unary(operator: str, value: Any) -> Any:
    """Evaluate a unary operator over a primitive value, or return MISSING"""
    if value is MISSING:
        return MISSING
    if operator == "!":
        return not js_truthy(value)
    if operator == "typeof":
        if isinstance(value, str):
            return "string"
        if isinstance(value, bool):
            return "boolean"
        if value is None:
            return "object"
        return "number"
    if not is_number(value):
        return MISSING
    if operator == "-":
        return -value
    if operator == "+":
        return value
    if operator == "~":
        return ~_to_int32(value)
    return MISSING


def _is_empty_object(node) -> bool:
    if node.type == "ArrayExpression":
        return not node.elements
    if node.type == "ObjectExpression":
        return not node.properties
    return False


def static_value(node) -> Any:
    """
    Value of a side-effect-free constant expression without rewriting it

    Returns:
        The primitive value, or MISSING
    """
    if node is None:
        return MISSING
    kind = node.type
    if kind == "Literal":
        return literal_value(node)
    if kind == "UnaryExpression":
        if node.operator == "!" and _is_empty_object(node.argument):
            return False
        return fold_unary(node.operator, static_value(node.argument))
    if kind == "BinaryExpression":
        return fold_binary(node.operator, static_value(node.left), static_value(node.right))
    if kind == "LogicalExpression":
        left = static_value(node.left)
        if left is MISSING:
            return MISSING
        if node.operator == "||":
            return left if js_truthy(left) else static_value(node.right)
        if node.operator == "&&":
            return static_value(node.right) if js_truthy(left) else left
    return MISSING


class ConstantFolder(JSRewriter):
    """Folds constant expressions and collapses constant conditionals"""

    def visit_BinaryExpression(self, node):
        folded = fold_binary(node.operator, self.constant(node.left), self.constant(node.right))
        if folded is MISSING:
            return None
        return self.emit_constant(node, folded)

    def visit_UnaryExpression(self, node):
        if node.operator == "!" and _is_empty_object(node.argument):
            return self.emit_constant(node, False)

        folded = fold_unary(node.operator, self.constant(node.argument))
        if folded is MISSING:
            return None
        if node.operator in ("-", "+") and literal_value(node.argument) is not MISSING:
            # -5 is already as folded as it gets
            self._constants[id(node)] = folded
            return None
        return self.emit_constant(node, folded)

    def visit_LogicalExpression(self, node):
        left = self.constant(node.left)
        if left is MISSING:
            return None
        truthy = js_truthy(left)
        if node.operator == "||":
            return self.promote(node, node.left if truthy else node.right)
        if node.operator == "&&":
            return self.promote(node, node.right if truthy else node.left)
        return None

    def visit_ConditionalExpression(self, node):
        test = self.constant(node.test)
        if test is MISSING:
            return None
        return self.promote(node, node.consequent if js_truthy(test) else node.alternate)

    def visit_IfStatement(self, node):
        test = self.constant(node.test)
        if test is MISSING:
            return None
        if js_truthy(test):
            return self.inline_statement(node, node.consequent)
        if node.alternate is not None:
            return self.inline_statement(node, node.alternate)
        return self.drop_statement(node)


class StructuralOptimizer(ConstantFolder):
    """ConstantFolder plus readability rewrites that keep behavior"""

    def visit_UnaryExpression(self, node):
        inner = node.argument
        if node.operator == "!" and inner.type == "UnaryExpression" and inner.operator == "!":
            target = inner.argument
            value = self.constant(target)
            if value is not MISSING:
                return self.emit_constant(node, js_truthy(value))
            if _is_empty_object(target):
                return self.emit_constant(node, True)
            text = self.visit(target)
            if target.type == "SequenceExpression":
                text = "(" + text + ")"
            return "Boolean(" + text + ")"
        return super().visit_UnaryExpression(node)

    def visit_MemberExpression(self, node):
        if not node.computed:
            return None
        key = self.constant(node.property)
        if not isinstance(key, str) or not is_valid_identifier(key):
            return None
        if node.object.type == "Literal" and is_number(node.object.value):
            return None

        prefix = self.render_span(node.range[0], node.property.range[0], [node.object]).rstrip()
        if not prefix.endswith("["):
            return None
        return prefix[:-1].rstrip() + "." + key

    def visit_ExpressionStatement(self, node):
        if node.directive or node.expression.type != "SequenceExpression":
            return None

        statements = []
        for expression in node.expression.expressions:
            text = self.visit(expression)
            if text.startswith(_STATEMENT_START_HAZARDS):
                text = "(" + text + ")"
            statements.append(text + ";")

        if self.in_statement_list(node):
            return ("\n" + self.indentation(node)).join(statements)
        return "{ " + " ".join(statements) + " }"


def optimize(code: str, max_passes: int = DEFAULT_MAX_PASSES) -> str:
    """
    Apply structural optimizations until nothing changes

    Args:
        code: JavaScript source
        max_passes: Upper bound on rewrite rounds

    Returns:
        Optimized source, or the input unchanged if it does not parse
    """
    try:
        tree = parse_js(code)
    except JSParseError:
        return code

    current = code
    for _ in range(max_passes):
        rewriter = StructuralOptimizer(current)
        try:
            result = rewriter.rewrite(tree)
        except JSParseError as exc:
            logger.debug("Optimizer stopped: %s", exc)
            break
        if rewriter.changes == 0 or result == current:
            break
        try:
            tree = parse_js(result)
        except JSParseError as exc:
            logger.warning("Optimizer output did not parse, keeping previous round: %s", exc)
            break
        current = result
    return current
