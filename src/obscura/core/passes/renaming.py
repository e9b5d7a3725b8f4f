"""
Variable Renaming Pass
Give mangled ``_0x`` bindings short readable names
"""

import re
from typing import Dict, Set, Tuple

from esprima.nodes import Node

from ..jsparse import JSRewriter, walk
from .base import BasePass

MANGLED_NAME = re.compile(r"^_0x[0-9a-fA-F]+$")

_FUNCTION_TYPES = ("FunctionDeclaration", "FunctionExpression", "ArrowFunctionExpression")


def collect_renames(tree: Node) -> Dict[str, str]:
    """
    Plan new names for mangled declarations

    Variables become var_N, function names func_N and parameters arg_N.
    Generated names never collide with identifiers already in the source.
    """
    used: Set[str] = set()
    declared = []
    for node, _ in walk(tree):
        if node.type == "Identifier":
            used.add(node.name)
        elif node.type == "VariableDeclarator" and node.id.type == "Identifier":
            declared.append(("var", node.id.name))
        elif node.type in _FUNCTION_TYPES:
            if node.id is not None:
                declared.append(("func", node.id.name))
            for param in node.params:
                if param.type == "Identifier":
                    declared.append(("arg", param.name))
                elif param.type == "AssignmentPattern" and param.left.type == "Identifier":
                    declared.append(("arg", param.left.name))

    renames: Dict[str, str] = {}
    counters = {"var": 0, "func": 0, "arg": 0}
    for prefix, name in declared:
        if name in renames or not MANGLED_NAME.match(name):
            continue
        candidate = f"{prefix}_{counters[prefix]}"
        while candidate in used:
            counters[prefix] += 1
            candidate = f"{prefix}_{counters[prefix]}"
        counters[prefix] += 1
        used.add(candidate)
        renames[name] = candidate
    return renames


class _Renamer(JSRewriter):
    def __init__(self, source: str, renames: Dict[str, str]):
        super().__init__(source)
        self.renames = renames

    def visit_Identifier(self, node):
        if self.is_name_position(node):
            return None
        return self.renames.get(node.name)

    def visit_Property(self, node):
        if not node.shorthand:
            return None
        value = node.value
        target = value.left if value.type == "AssignmentPattern" else value
        if target is None or target.type != "Identifier":
            return None
        new_name = self.renames.get(target.name)
        if new_name is None:
            return None
        tail = ""
        if value.type == "AssignmentPattern":
            tail = self.render_span(target.range[1], value.range[1], [value.right])
        return f"{target.name}: {new_name}{tail}"


class VariableRenamer(BasePass):
    """Rename _0x-style variables, functions and parameters"""

    def get_name(self) -> str:
        return "rename-variables"

    def describe(self, count: int) -> str:
        return f"Renamed {count} identifiers"

    def transform(self, code: str, tree: Node) -> Tuple[str, int]:
        renames = collect_renames(tree)
        if not renames:
            return code, 0
        rewriter = _Renamer(code, renames)
        new_code = rewriter.rewrite(tree)
        return new_code, len(renames)
