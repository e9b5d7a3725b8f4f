"""
JavaScript Parse and Rewrite Primitives
Shared esprima wrapper used by the deobfuscation passes and the crypto detector

Transformations never regenerate code from the tree. A rewriter visits the
tree bottom-up and splices replacement text into the original source
ranges, so everything it does not touch (comments, spacing, quoting) is
kept byte-for-byte.
"""

import json
import logging
import math
import re
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

import esprima
import jsbeautifier
from esprima.nodes import Node
from jsbeautifier.javascript.beautifier import Beautifier

from .errors import JSParseError

logger = logging.getLogger(__name__)

PARSE_OPTIONS = {"range": True, "loc": True, "tolerant": False}

# Attributes of a node that never hold child nodes
_SKIP_FIELDS = frozenset([
    "type", "range", "loc", "regex", "leadingComments", "trailingComments", "innerComments",
])

# Expressions that must be parenthesized when promoted into an operand slot
_NEEDS_PARENS = frozenset([
    "SequenceExpression", "AssignmentExpression", "ConditionalExpression",
    "LogicalExpression", "ArrowFunctionExpression", "YieldExpression",
    "FunctionExpression", "ClassExpression", "ObjectExpression",
])

_IDENT_CHAR = re.compile(r"[\w$]")
_VALID_IDENTIFIER = re.compile(r"^[A-Za-z_$][\w$]*$")
_LONE_SURROGATE = re.compile("[\ud800-\udfff]")


class _Missing:
    """Marker for 'no statically known value'"""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def parse_js(code: str) -> Node:
    """
    Parse JavaScript source into an ESTree-style tree with ranges

    Script goal is tried first, module goal second (for import/export).

    Args:
        code: JavaScript source text

    Returns:
        Program node

    Raises:
        JSParseError: If neither goal accepts the source
    """
    try:
        return esprima.parseScript(code, PARSE_OPTIONS)
    except esprima.Error as exc:
        first_error = exc
    except (RecursionError, ValueError, IndexError) as exc:
        raise JSParseError(f"Parser gave up on input: {exc.__class__.__name__}") from exc

    logger.debug("Script parse failed: %s", first_error)
    if "import" in code or "export" in code:
        try:
            return esprima.parseModule(code, PARSE_OPTIONS)
        except (esprima.Error, RecursionError, ValueError, IndexError):
            pass

    raise JSParseError(
        getattr(first_error, "message", None) or str(first_error),
        line=getattr(first_error, "lineNumber", None),
        column=getattr(first_error, "column", None),
    ) from first_error


def is_valid_javascript(code: str) -> bool:
    """Check whether code parses"""
    if not code or not code.strip():
        return False
    try:
        parse_js(code)
    except JSParseError:
        return False
    return True


class _FormattingOnlyBeautifier(Beautifier):
    """Beautifier with the built-in regex unpackers switched off

    The stock unpackers strip a leading `var _0x...=[...]` string table while
    references to it remain.
    """

    def unpack(self, source, evalcode=False):
        return source


def beautify_js(code: str, indent_size: int = 2) -> str:
    """Pretty-print JavaScript with jsbeautifier"""
    options = jsbeautifier.default_options()
    options.indent_size = indent_size
    options.preserve_newlines = True
    options.max_preserve_newlines = 2
    return _FormattingOnlyBeautifier(options).beautify(code)


def iter_child_nodes(node: Node) -> List[Node]:
    """Return the direct children of node ordered by source position"""
    children = []
    for name, value in node.__dict__.items():
        if name in _SKIP_FIELDS or value is None:
            continue
        if isinstance(value, Node):
            children.append(value)
        elif isinstance(value, list):
            children.extend(item for item in value if isinstance(item, Node))
    children.sort(key=lambda child: child.range[0] if child.range else 0)
    return children


def walk(tree: Node) -> Iterator[Tuple[Node, Optional[Node]]]:
    """Yield (node, parent) pairs in source order without recursion"""
    stack = [(tree, None)]
    while stack:
        node, parent = stack.pop()
        yield node, parent
        for child in reversed(iter_child_nodes(node)):
            stack.append((child, node))


def node_source(source: str, node: Node) -> str:
    start, end = node.range
    return source[start:end]


def literal_value(node: Optional[Node]) -> Any:
    """
    Value of a primitive literal node

    Returns:
        The Python value (str, int, float, bool or None for null), or MISSING
        when the node is not a primitive literal
    """
    if node is None or node.type != "Literal" or node.regex:
        return MISSING
    return node.value


def is_string_literal(node: Optional[Node]) -> bool:
    return literal_value(node) is not MISSING and isinstance(node.value, str)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def as_integer(value: Any) -> Optional[int]:
    """Integral number as an int; None for non-numbers, fractions, NaN and infinities"""
    if not is_number(value):
        return None
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        return int(value)
    return value


def is_valid_identifier(name: str) -> bool:
    return bool(_VALID_IDENTIFIER.match(name))


def member_path(node: Optional[Node]) -> str:
    """
    Dotted path for member chains like CryptoJS.mode.ECB

    Computed string keys are included; anything else makes the path empty.
    """
    parts = []
    while node is not None:
        if node.type == "Identifier":
            parts.append(node.name)
            break
        if node.type == "ThisExpression":
            parts.append("this")
            break
        if node.type != "MemberExpression":
            return ""
        if node.computed:
            key = literal_value(node.property)
            if not isinstance(key, str):
                return ""
            parts.append(key)
        else:
            parts.append(node.property.name)
        node = node.object
    return ".".join(reversed(parts))


def js_string(value: str) -> str:
    """Render a Python string as a double-quoted JavaScript literal"""
    text = json.dumps(value, ensure_ascii=False)
    text = text.replace("\u2028", "\\u2028").replace("\u2029", "\\u2029")
    return _LONE_SURROGATE.sub(lambda m: "\\u%04x" % ord(m.group()), text)


def js_number(value) -> str:
    """Render a number the way JavaScript prints it"""
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    return str(value)


def render_constant(value: Any) -> Optional[str]:
    """JavaScript source for a primitive value, or None if it has no literal form"""
    if value is True:
        return "true"
    if value is False:
        return "false"
    if value is None:
        return "null"
    if isinstance(value, str):
        return js_string(value)
    if is_number(value):
        return js_number(value)
    return None


def terminate_statement(text: str) -> str:
    """Append a semicolon so the statement can share a line with the next one"""
    text = text.rstrip()
    if text and not text.endswith((";", "}")):
        return text + ";"
    return text


def _needs_space(left: str, right: str) -> bool:
    if not left or not right:
        return False
    if _IDENT_CHAR.match(left) and _IDENT_CHAR.match(right):
        return True
    return left in "+-" and left == right


class JSRewriter:
    """
    Bottom-up tree rewriter that renders nodes by splicing source ranges

    Subclasses define ``visit_<NodeType>(node)`` methods. A handler returns
    the replacement text for the node, or None to keep the node and render
    its children in place. Every node is visited at most once.
    """

    def __init__(self, source: str):
        self.source = source
        self.changes = 0
        self._memo: Dict[int, str] = {}
        self._constants: Dict[int, Any] = {}
        self._in_list: Set[int] = set()
        self._names: Set[int] = set()
        self._targets: Set[int] = set()

    def rewrite(self, tree: Node) -> str:
        """
        Render the whole program

        Raises:
            JSParseError: If the tree nests too deeply to rewrite
        """
        start, end = tree.range
        try:
            body = self.visit(tree)
        except RecursionError as exc:
            raise JSParseError("Input nests too deeply to rewrite") from exc
        return self.source[:start] + body + self.source[end:]

    def visit(self, node: Node) -> str:
        key = id(node)
        if key in self._memo:
            return self._memo[key]

        self._mark(node)
        handler = getattr(self, "visit_" + node.type, None)
        text = handler(node) if handler is not None else None
        if text is None:
            text = self.render(node)
        elif text != self.original(node):
            self.changes += 1

        self._memo[key] = text
        return text

    def render(self, node: Node) -> str:
        return self.render_span(node.range[0], node.range[1], iter_child_nodes(node))

    def render_span(self, start: int, end: int, children: List[Node]) -> str:
        """Render source[start:end] with every child in range replaced by its visited text"""
        parts: List[str] = []
        cursor = start
        for child in children:
            child_start, child_end = child.range
            if child_start < cursor or child_end > end:
                continue
            gap = self.source[cursor:child_start]
            text = self.visit(child)
            if text and text != self.source[child_start:child_end]:
                before = gap[-1:] if gap else (parts[-1][-1:] if parts and parts[-1] else "")
                if _needs_space(before, text[0]):
                    text = " " + text
                if _needs_space(text[-1], self.source[child_end:child_end + 1]):
                    text = text + " "
            parts.append(gap)
            parts.append(text)
            cursor = child_end
        parts.append(self.source[cursor:end])
        return "".join(parts)

    def original(self, node: Node) -> str:
        return node_source(self.source, node)

    def _mark(self, node: Node) -> None:
        kind = node.type
        if kind in ("Program", "BlockStatement"):
            self._in_list.update(id(statement) for statement in node.body)
        elif kind == "SwitchCase":
            self._in_list.update(id(statement) for statement in node.consequent)
        elif kind == "MemberExpression" and not node.computed:
            self._names.add(id(node.property))
        elif kind in ("Property", "MethodDefinition") and not node.computed and node.key is not None:
            self._names.add(id(node.key))
        elif kind == "AssignmentExpression":
            self._targets.add(id(node.left))
        elif kind == "UpdateExpression":
            self._targets.add(id(node.argument))
        elif kind == "UnaryExpression" and node.operator == "delete":
            self._targets.add(id(node.argument))
        elif kind in ("ForInStatement", "ForOfStatement"):
            self._targets.add(id(node.left))
        elif kind in ("LabeledStatement", "BreakStatement", "ContinueStatement") and node.label:
            self._names.add(id(node.label))

    # Helpers for subclasses

    def in_statement_list(self, node: Node) -> bool:
        return id(node) in self._in_list

    def is_name_position(self, node: Node) -> bool:
        """True for property keys and labels, which are not variable references"""
        return id(node) in self._names

    def is_write_target(self, node: Node) -> bool:
        return id(node) in self._targets

    def constant(self, node: Node) -> Any:
        """Statically known value of node after rewriting, or MISSING"""
        self.visit(node)
        key = id(node)
        if key in self._constants:
            return self._constants[key]
        return literal_value(node)

    def emit_constant(self, node: Node, value: Any) -> Optional[str]:
        text = render_constant(value)
        if text is not None:
            self._constants[id(node)] = value
        return text

    def promote(self, node: Node, child: Node) -> str:
        """Text for replacing node with its own child"""
        text = self.visit(child)
        value = self.constant(child)
        if value is not MISSING:
            self._constants[id(node)] = value
        if child.type in _NEEDS_PARENS:
            return "(" + text + ")"
        return text

    def drop_statement(self, node: Node) -> str:
        return "" if self.in_statement_list(node) else ";"

    def inline_statement(self, node: Node, replacement: Node) -> str:
        """
        Text for replacing statement node with statement replacement

        A block replacement is unwrapped into the enclosing statement list
        when it declares nothing block-scoped.
        """
        text = self.visit(replacement)
        if replacement.type != "BlockStatement" or not self.in_statement_list(node):
            return text
        for statement in replacement.body:
            if statement.type in ("FunctionDeclaration", "ClassDeclaration"):
                return text
            if statement.type == "VariableDeclaration" and statement.kind != "var":
                return text
        return terminate_statement(text[1:-1].strip())

    def indentation(self, node: Node) -> str:
        line_start = self.source.rfind("\n", 0, node.range[0]) + 1
        prefix = self.source[line_start:node.range[0]]
        return prefix if not prefix.strip() else ""
