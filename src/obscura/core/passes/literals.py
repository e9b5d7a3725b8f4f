"""
Literal and Expression Passes
Constant folding plus the small idiom rewrites obfuscators rely on
"""

from typing import Tuple

from esprima.nodes import Node

from ..jsparse import JSRewriter, is_number, literal_value
from ..optimizer import ConstantFolder
from .base import BasePass


class LiteralTransformer(BasePass):
    """Fold numeric/string constants and drop literal-constant branches"""

    def get_name(self) -> str:
        return "basic-ast-transform"

    def describe(self, count: int) -> str:
        return f"Constant folding, dead code elimination, string concatenation ({count} rewrites)"

    def transform(self, code: str, tree: Node) -> Tuple[str, int]:
        folder = ConstantFolder(code)
        new_code = folder.rewrite(tree)
        return new_code, folder.changes


class _IdiomRewriter(JSRewriter):
    def visit_UnaryExpression(self, node):
        argument = node.argument
        if node.operator == "void" and literal_value(argument) == 0 and is_number(argument.value):
            return "undefined"
        if node.operator != "!":
            return None
        if argument.type == "ArrayExpression" and not argument.elements:
            return "false"
        if argument.type == "UnaryExpression" and argument.operator == "!" \
                and argument.argument.type == "ArrayExpression" and not argument.argument.elements:
            return "true"
        value = literal_value(argument)
        if is_number(value):
            return "false" if value else "true"
        return None


class ExpressionSimplifier(BasePass):
    """
    Rewrite obfuscator idioms into their plain forms

    ``void 0`` becomes ``undefined``, ``!0``/``!1`` become booleans and
    ``![]``/``!![]`` become ``false``/``true``.
    """

    def get_name(self) -> str:
        return "simplify-expressions"

    def describe(self, count: int) -> str:
        return f"Simplified {count} expressions"

    def transform(self, code: str, tree: Node) -> Tuple[str, int]:
        rewriter = _IdiomRewriter(code)
        new_code = rewriter.rewrite(tree)
        return new_code, rewriter.changes
