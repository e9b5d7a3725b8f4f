"""
String Decoding Pass
Rewrite hex and unicode escaped string literals in their decoded form
"""

import re
from typing import Tuple

from esprima.nodes import Node

from ..jsparse import JSRewriter, is_string_literal, js_string
from .base import BasePass

ESCAPE_PATTERN = re.compile(r"\\(x[0-9a-fA-F]{2}|u[0-9a-fA-F]{4}|u\{[0-9a-fA-F]+\})")


def is_readable(text: str) -> bool:
    """Printable text, allowing ordinary whitespace"""
    return all(char.isprintable() or char in "\n\r\t" for char in text)


class _EscapeDecoder(JSRewriter):
    def visit_ExpressionStatement(self, node):
        if node.directive:
            # "use strict" must keep its exact spelling
            return self.original(node)
        return None

    def visit_Literal(self, node):
        if not is_string_literal(node) or not ESCAPE_PATTERN.search(node.raw or ""):
            return None
        if not is_readable(node.value):
            return None
        return js_string(node.value)


class StringDecoder(BasePass):
    """Decode \\xHH and \\uHHHH escapes inside string literals"""

    def get_name(self) -> str:
        return "string-decode"

    def describe(self, count: int) -> str:
        return f"Decoded {count} strings (hex/unicode)"

    def transform(self, code: str, tree: Node) -> Tuple[str, int]:
        rewriter = _EscapeDecoder(code)
        new_code = rewriter.rewrite(tree)
        return new_code, rewriter.changes
