"""
Obfuscation Classifier
Tags JavaScript with the obfuscation techniques its structure reveals

Every signature is checked independently, so one technique never masks
another. classify() never raises: unparsable input is tagged "unknown"
unless it is a whole-payload encoding that is not JavaScript by nature.
"""

import logging
import re
from typing import List, Optional, Tuple

from esprima.nodes import Node

from .errors import JSParseError
from .jsparse import MISSING, is_number, is_string_literal, literal_value, member_path, parse_js, walk
from .optimizer import js_truthy, static_value

logger = logging.getLogger(__name__)

JAVASCRIPT_OBFUSCATOR = "javascript-obfuscator"
VM_PROTECTION = "vm-protection"
CONTROL_FLOW_FLATTENING = "control-flow-flattening"
DEAD_CODE_INJECTION = "dead-code-injection"
OPAQUE_PREDICATES = "opaque-predicates"
HEX_ENCODING = "hex-encoding"
WEBPACK = "webpack"
PACKER = "packer"
AAENCODE = "aaencode"
JJENCODE = "jjencode"
JSFUCK = "jsfuck"
URLENCODED = "urlencoded"
STRING_ARRAY_ROTATION = "string-array-rotation"
INVISIBLE_UNICODE = "invisible-unicode"
EVAL_OBFUSCATION = "eval-obfuscation"
BASE64_ENCODING = "base64-encoding"
UGLIFY = "uglify"
UNKNOWN = "unknown"

# Encodings whose payload is not JavaScript, so they are reported even when parsing fails
PAYLOAD_TAGS = (URLENCODED, AAENCODE)

DYNAMIC_DECODERS = frozenset([
    "eval", "Function", "atob", "unescape", "escape", "decodeURIComponent", "decodeURI",
    "String.fromCharCode",
])
WEBPACK_GLOBALS = ("__webpack_require__", "__webpack_modules__", "webpackJsonp", "webpackChunk")

MANGLED_IDENTIFIER = re.compile(r"^_0x[0-9a-fA-F]{3,}$")
STRING_ESCAPE = re.compile(r"\\(x[0-9a-fA-F]{2}|u[0-9a-fA-F]{4}|u\{[0-9a-fA-F]+\})")
PACKER_SIGNATURE = re.compile(r"eval\s*\(\s*function\s*\(\s*p\s*,\s*a\s*,\s*c\s*,\s*k\s*,\s*e\s*,\s*[rd]\s*\)")
AAENCODE_SIGNATURE = re.compile("゜-゜|ﾟωﾟ|ﾟДﾟ")
JJENCODE_SIGNATURE = re.compile(r"\$=~\[\];\s*\$=\{")
JSFUCK_ALPHABET = frozenset("[]()!+")
PERCENT_ESCAPE = re.compile(r"%[0-9A-Fa-f]{2}")
ZERO_WIDTH = re.compile("[\u200b\u200c\u200d\u2060\ufeff]")
BASE64_LITERAL = re.compile(r"^[A-Za-z0-9+/]{20,}={0,2}$")

MIN_URL_ESCAPES = 10
MIN_JSFUCK_LENGTH = 50
LONG_LINE = 1000
SHORT_NAME_RATIO = 0.6
MIN_NAMES_FOR_RATIO = 10


def text_signatures(code: str) -> List[str]:
    """Tags detectable from raw text alone"""
    tags = []
    if PACKER_SIGNATURE.search(code):
        tags.append(PACKER)
    if AAENCODE_SIGNATURE.search(code):
        tags.append(AAENCODE)
    if JJENCODE_SIGNATURE.search(code):
        tags.append(JJENCODE)

    compact = "".join(code.split())
    if len(compact) >= MIN_JSFUCK_LENGTH:
        jsfuck_chars = sum(1 for char in compact if char in JSFUCK_ALPHABET)
        if jsfuck_chars / len(compact) >= 0.95:
            tags.append(JSFUCK)

    escapes = PERCENT_ESCAPE.findall(code)
    if len(escapes) > MIN_URL_ESCAPES and len(escapes) * 3 >= len(compact) * 0.5:
        tags.append(URLENCODED)
    if ZERO_WIDTH.search(code):
        tags.append(INVISIBLE_UNICODE)
    if any(len(line) > LONG_LINE for line in code.splitlines()):
        tags.append(UGLIFY)
    return tags


def callee_name(call: Node) -> str:
    """Name of a called function: ``eval``, ``String.fromCharCode``, ``arr.push`` ..."""
    return member_path(call.callee) if call.callee is not None else ""


def method_name(call: Node) -> Optional[str]:
    """Property name of a method call, including computed string keys"""
    callee = call.callee
    if callee is None or callee.type != "MemberExpression":
        return None
    if not callee.computed:
        return callee.property.name
    key = literal_value(callee.property)
    return key if isinstance(key, str) else None


def find_rotation_wrappers(tree: Node) -> List[Tuple[Node, str]]:
    """
    Find IIFEs that rotate a string array with push(shift()) inside try

    Returns:
        (call expression, rotated array name) pairs
    """
    wrappers = []
    for node, _ in walk(tree):
        if node.type != "CallExpression" or node.callee.type not in ("FunctionExpression", "ArrowFunctionExpression"):
            continue
        has_try = False
        rotated = None
        for inner, _ in walk(node.callee):
            if inner.type == "TryStatement":
                has_try = True
            elif inner.type == "CallExpression" and method_name(inner) == "push" and inner.arguments:
                argument = inner.arguments[0]
                if argument.type == "CallExpression" and method_name(argument) == "shift":
                    rotated = member_path(inner.callee.object) or rotated
        if has_try and rotated is not None:
            array_name = rotated
            for argument in node.arguments:
                if argument.type == "Identifier":
                    array_name = argument.name
                    break
            wrappers.append((node, array_name))
    return wrappers


def loop_switch(loop: Node) -> Optional[Node]:
    """First switch statement directly inside an infinite loop body"""
    test = loop.test
    if test is not None:
        value = static_value(test)
        if value is MISSING or not js_truthy(value):
            return None
    body = loop.body
    if body.type == "SwitchStatement":
        return body
    if body.type == "BlockStatement":
        for statement in body.body:
            if statement.type == "SwitchStatement":
                return statement
    return None


def has_numeric_labels(switch: Node) -> bool:
    labels = [literal_value(case.test) for case in switch.cases if case.test is not None]
    numeric = [label for label in labels if is_number(label)]
    return bool(labels) and len(numeric) * 2 > len(labels)


def classify(code: str) -> List[str]:
    """
    Detect obfuscation techniques

    Args:
        code: JavaScript source

    Returns:
        Ordered, duplicate-free technique tags; ["unknown"] when nothing matches
    """
    tags: List[str] = []

    def add(tag: str) -> None:
        if tag not in tags:
            tags.append(tag)

    textual = text_signatures(code)
    try:
        tree = parse_js(code)
    except JSParseError as exc:
        logger.debug("Classifier could not parse input: %s", exc)
        payload = [tag for tag in textual if tag in PAYLOAD_TAGS]
        return payload or [UNKNOWN]

    for tag in textual:
        add(tag)

    names = set()
    dynamic_decode = False
    for node, parent in walk(tree):
        kind = node.type
        if kind == "Identifier":
            names.add(node.name)
            if node.name.startswith(WEBPACK_GLOBALS):
                add(WEBPACK)
        elif kind == "MemberExpression" and not node.computed and node.property.name.startswith(WEBPACK_GLOBALS):
            add(WEBPACK)
        elif kind in ("CallExpression", "NewExpression"):
            name = callee_name(node)
            if name in DYNAMIC_DECODERS:
                dynamic_decode = True
            if name == "eval" and node.arguments:
                argument = node.arguments[0]
                if is_string_literal(argument) or argument.type == "CallExpression":
                    add(EVAL_OBFUSCATION)
            if name == "atob" and node.arguments and is_string_literal(node.arguments[0]):
                if BASE64_LITERAL.match(node.arguments[0].value):
                    add(BASE64_ENCODING)
        elif kind in ("WhileStatement", "DoWhileStatement") or (
                kind == "ForStatement" and node.init is None and node.update is None):
            switch = loop_switch(node)
            if switch is not None:
                add(CONTROL_FLOW_FLATTENING)
                if has_numeric_labels(switch):
                    add(VM_PROTECTION)
        elif kind in ("IfStatement", "ConditionalExpression"):
            if static_value(node.test) is not MISSING:
                if node.test.type == "BinaryExpression":
                    add(OPAQUE_PREDICATES)
                else:
                    add(DEAD_CODE_INJECTION)
        elif kind == "Literal" and is_string_literal(node) and STRING_ESCAPE.search(node.raw or ""):
            add(HEX_ENCODING)

    if any(MANGLED_IDENTIFIER.match(name) for name in names):
        add(JAVASCRIPT_OBFUSCATOR)
    elif dynamic_decode and len(names) >= MIN_NAMES_FOR_RATIO:
        short = sum(1 for name in names if len(name) <= 2)
        if short / len(names) >= SHORT_NAME_RATIO:
            add(JAVASCRIPT_OBFUSCATOR)

    if find_rotation_wrappers(tree):
        add(STRING_ARRAY_ROTATION)

    return tags or [UNKNOWN]
