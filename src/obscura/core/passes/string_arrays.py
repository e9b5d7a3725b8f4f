"""
String Array Passes
Extract obfuscator string tables and inline indexed lookups into them

javascript-obfuscator hoists every string into one array and replaces each
use with ``_0xabc[3]``. Inlining is only safe while the array is never
mutated or handed to other code, so arrays that escape are recorded but
never substituted.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from esprima.nodes import Node

from ..jsparse import JSRewriter, is_number, is_string_literal, js_string, literal_value, walk
from .base import BasePass

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset([
    "push", "pop", "shift", "unshift", "splice", "reverse", "sort", "fill", "copyWithin",
])
MIN_ARRAY_LENGTH = 2


@dataclass
class StringArrayTable:
    """String arrays found in one deobfuscation call"""
    arrays: Dict[str, List[str]] = field(default_factory=dict)
    unsafe: Set[str] = field(default_factory=set)

    def lookup(self, name: str, index) -> Optional[str]:
        """Return the string at index, or None when the lookup is not safe to inline"""
        if name in self.unsafe or not is_number(index):
            return None
        if isinstance(index, float):
            if not index.is_integer():
                return None
            index = int(index)
        values = self.arrays.get(name)
        if values is None or not 0 <= index < len(values):
            return None
        return values[index]

    def clear(self) -> None:
        self.arrays.clear()
        self.unsafe.clear()


def find_string_arrays(tree: Node) -> Dict[str, List[str]]:
    """Collect ``var name = ["...", ...]`` declarations whose elements are all strings"""
    found: Dict[str, List[str]] = {}
    declared_twice: Set[str] = set()
    for node, _ in walk(tree):
        if node.type != "VariableDeclarator" or node.id.type != "Identifier":
            continue
        init = node.init
        if init is None or init.type != "ArrayExpression" or len(init.elements) < MIN_ARRAY_LENGTH:
            continue
        if not all(is_string_literal(element) for element in init.elements):
            continue
        name = node.id.name
        if name in found:
            declared_twice.add(name)
        found[name] = [element.value for element in init.elements]
    for name in declared_twice:
        del found[name]
    return found


def find_escaping_arrays(tree: Node, names: Set[str]) -> Set[str]:
    """
    Names whose array may change at runtime

    A reference is harmless only as ``name[index]`` (read) or as the object
    of a non-mutating property access such as ``name.length``.
    """
    escaping: Set[str] = set()
    parents: Dict[int, Node] = {}
    for node, parent in walk(tree):
        if parent is not None:
            parents[id(node)] = parent
        if node.type != "Identifier" or node.name not in names or parent is None:
            continue
        if parent.type == "VariableDeclarator" and parent.id is node:
            continue
        if parent.type == "MemberExpression" and parent.object is node:
            if not parent.computed and parent.property.name in MUTATING_METHODS:
                escaping.add(node.name)
                continue
            holder = parents.get(id(parent))
            if holder is not None and _writes_to(holder, parent):
                escaping.add(node.name)
            continue
        if parent.type == "MemberExpression" and not parent.computed and parent.property is node:
            continue
        if parent.type == "Property" and not parent.computed and parent.key is node and not parent.shorthand:
            continue
        escaping.add(node.name)
    return escaping


def _writes_to(holder: Node, target: Node) -> bool:
    if holder.type == "AssignmentExpression":
        return holder.left is target
    if holder.type == "UpdateExpression":
        return holder.argument is target
    if holder.type == "UnaryExpression" and holder.operator == "delete":
        return holder.argument is target
    return False


class StringArrayExtractor(BasePass):
    """Record string tables so later passes can inline lookups"""

    def __init__(self, table: StringArrayTable, options=None):
        super().__init__(options)
        self.table = table

    def get_name(self) -> str:
        return "extract-string-arrays"

    def describe(self, count: int) -> str:
        return f"Extracted {count} string arrays"

    def transform(self, code: str, tree: Node) -> Tuple[str, int]:
        arrays = find_string_arrays(tree)
        if not arrays:
            return code, 0
        self.table.arrays.update(arrays)
        self.table.unsafe.update(find_escaping_arrays(tree, set(arrays)))
        for name in arrays:
            logger.debug("String array %s: %d entries%s", name, len(arrays[name]),
                         " (escapes, not inlined)" if name in self.table.unsafe else "")
        return code, len(arrays)


class _LookupInliner(JSRewriter):
    def __init__(self, source: str, table: StringArrayTable):
        super().__init__(source)
        self.table = table

    def visit_MemberExpression(self, node):
        if not node.computed or node.object.type != "Identifier" or self.is_write_target(node):
            return None
        value = self.table.lookup(node.object.name, literal_value(node.property))
        if value is None:
            return None
        return js_string(value)


class ArrayIndexDecryptor(BasePass):
    """Replace ``table[3]`` with the literal string stored there"""

    def __init__(self, table: StringArrayTable, options=None):
        super().__init__(options)
        self.table = table

    def get_name(self) -> str:
        return "decrypt-arrays"

    def describe(self, count: int) -> str:
        return f"Replaced {count} array references"

    def transform(self, code: str, tree: Node) -> Tuple[str, int]:
        if not self.table.arrays:
            return code, 0
        rewriter = _LookupInliner(code, self.table)
        new_code = rewriter.rewrite(tree)
        return new_code, rewriter.changes
