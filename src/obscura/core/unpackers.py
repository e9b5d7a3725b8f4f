"""
Generic Unpackers
Undo whole-payload encodings before any structural pass runs

Handles:
- Dean Edwards packer (eval(function(p,a,c,k,e,d){...}(...)))
- eval of literal strings and of atob("...") payloads
- AAEncode payloads that reduce to a constant string
- URL percent-encoding

UniversalUnpacker peels up to MAX_LAYERS layers, trying each unpacker in
turn. Unpackers never execute code: the packer dictionary substitution is
reimplemented and eval payloads are only inlined when they are constants.
"""

import base64
import binascii
import logging
import re
import urllib.parse
from dataclasses import dataclass, field
from typing import List, Optional

from esprima.nodes import Node

from .classifier import (
    AAENCODE_SIGNATURE, MIN_URL_ESCAPES, PACKER_SIGNATURE, PERCENT_ESCAPE, callee_name, method_name,
)
from .errors import JSParseError
from .jsparse import MISSING, as_integer, is_valid_javascript, literal_value, parse_js, walk
from .optimizer import static_value

logger = logging.getLogger(__name__)

MAX_LAYERS = 5
PACKER_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
PACKER_PARAMS = ("p", "a", "c", "k", "e")


@dataclass
class PackerParams:
    """Arguments of a packed invocation"""
    p: str
    a: int
    c: int
    k: List[str]


@dataclass
class UnpackResult:
    """Outcome of UniversalUnpacker.unpack()"""
    success: bool
    code: str
    type: str = "Unknown"
    layers: List[str] = field(default_factory=list)


class PackerUnpacker:
    """Dean Edwards p.a.c.k.e.r. unpacker"""

    name = "Packer"

    @staticmethod
    def detect(code: str) -> bool:
        return bool(PACKER_SIGNATURE.search(code))

    @staticmethod
    def base(number: int, radix: int) -> str:
        """
        Encode a number the way the packer's e() function does

        Digits above 35 use the upper-case letters, so base(61, 62) == 'Z'.
        """
        prefix = "" if number < radix else PackerUnpacker.base(number // radix, radix)
        return prefix + PACKER_ALPHABET[number % radix]

    @staticmethod
    def unbase(word: str, radix: int) -> int:
        """Inverse of base()"""
        if not 2 <= radix <= len(PACKER_ALPHABET):
            raise ValueError(f"Unsupported packer radix: {radix}")
        digits = PACKER_ALPHABET[:radix]
        value = 0
        for char in word:
            index = digits.find(char)
            if index < 0:
                raise ValueError(f"{word!r} is not a base {radix} packer symbol")
            value = value * radix + index
        return value

    def parse_packer_params(self, arguments: str) -> Optional[PackerParams]:
        """
        Parse the argument list of a packed invocation

        Args:
            arguments: Text between the parentheses, e.g. "'0 1',62,2,'a|b'.split('|'),0,{}"

        Returns:
            PackerParams, or None when the text is not a packer argument list
        """
        try:
            tree = parse_js(f"__unpack__({arguments})")
        except JSParseError:
            return None
        statement = tree.body[0] if len(tree.body) == 1 else None
        if statement is None or statement.type != "ExpressionStatement" \
                or statement.expression.type != "CallExpression":
            return None
        return self._params_from_arguments(statement.expression.arguments)

    def _params_from_arguments(self, arguments: List[Node]) -> Optional[PackerParams]:
        if len(arguments) < 4:
            return None
        payload = literal_value(arguments[0])
        radix = as_integer(literal_value(arguments[1]))
        count = as_integer(literal_value(arguments[2]))
        if not isinstance(payload, str) or radix is None or count is None:
            return None
        if not 2 <= radix <= len(PACKER_ALPHABET) or count < 0:
            return None
        words = self._keywords(arguments[3])
        if words is None:
            return None
        return PackerParams(p=payload, a=radix, c=count, k=words)

    @staticmethod
    def _keywords(node: Node) -> Optional[List[str]]:
        value = literal_value(node)
        if isinstance(value, str):
            return value.split("|")
        if node.type == "CallExpression" and method_name(node) == "split" and len(node.arguments) == 1:
            source = literal_value(node.callee.object)
            separator = literal_value(node.arguments[0])
            if isinstance(source, str) and isinstance(separator, str) and separator:
                return source.split(separator)
        return None

    def execute(self, params: PackerParams) -> str:
        """Apply the packer dictionary substitution to the payload"""
        def lookup(match):
            word = match.group(0)
            try:
                index = self.unbase(word, params.a)
            except ValueError:
                return word
            if index < len(params.k) and params.k[index]:
                return params.k[index]
            return word

        return re.sub(r"\b\w+\b", lookup, params.p, flags=re.ASCII)

    def unpack(self, code: str) -> str:
        """
        Unpack every packed invocation in code

        Returns:
            Code with each eval(packed) call replaced by its payload, or the
            input unchanged when nothing could be unpacked
        """
        try:
            tree = parse_js(code)
        except JSParseError:
            return code

        replacements = []
        for node, _ in walk(tree):
            if node.type != "CallExpression" or callee_name(node) != "eval" or len(node.arguments) != 1:
                continue
            inner = node.arguments[0]
            if inner.type != "CallExpression" or not self._is_packer_function(inner.callee):
                continue
            params = self._params_from_arguments(inner.arguments)
            if params is None:
                continue
            try:
                payload = self.execute(params)
            except ValueError as exc:
                logger.debug("Packer payload skipped: %s", exc)
                continue
            replacements.append((node.range[0], node.range[1], payload))

        for start, end, payload in sorted(replacements, reverse=True):
            code = code[:start] + payload + code[end:]
        return code

    @staticmethod
    def _is_packer_function(node: Node) -> bool:
        if node.type != "FunctionExpression" or len(node.params) < len(PACKER_PARAMS):
            return False
        names = [param.name for param in node.params if param.type == "Identifier"]
        return tuple(names[:len(PACKER_PARAMS)]) == PACKER_PARAMS


class EvalUnpacker:
    """Inline eval("...") and eval(atob("...")) whose payload is constant JavaScript"""

    name = "Eval"

    @staticmethod
    def detect(code: str) -> bool:
        return "eval" in code

    def unpack(self, code: str) -> str:
        try:
            tree = parse_js(code)
        except JSParseError:
            return code

        replacements = []
        for node, _ in walk(tree):
            if node.type != "ExpressionStatement" or node.expression.type != "CallExpression":
                continue
            call = node.expression
            if callee_name(call) != "eval" or len(call.arguments) != 1:
                continue
            payload = self._payload(call.arguments[0])
            if payload is not None and is_valid_javascript(payload):
                replacements.append((node.range[0], node.range[1], payload))

        for start, end, payload in sorted(replacements, reverse=True):
            code = code[:start] + payload + code[end:]
        return code

    @staticmethod
    def _payload(argument: Node) -> Optional[str]:
        value = static_value(argument)
        if isinstance(value, str):
            return value
        if argument.type == "CallExpression" and callee_name(argument) == "atob" and len(argument.arguments) == 1:
            encoded = static_value(argument.arguments[0])
            if not isinstance(encoded, str):
                return None
            try:
                return base64.b64decode(encoded, validate=True).decode("utf-8")
            except (binascii.Error, ValueError):
                return None
        return None


class AAEncodeDecoder:
    """AAEncode detection; decodes payloads that fold to a constant string"""

    name = "AAEncode"

    @staticmethod
    def detect(code: str) -> bool:
        return bool(AAENCODE_SIGNATURE.search(code))

    def unpack(self, code: str) -> str:
        try:
            tree = parse_js(code)
        except JSParseError:
            return code
        if len(tree.body) != 1 or tree.body[0].type != "ExpressionStatement":
            return code
        value = static_value(tree.body[0].expression)
        if value is MISSING or not isinstance(value, str):
            return code
        return value


class URLEncodeDecoder:
    """URL percent-encoding decoder"""

    name = "URLEncode"

    @staticmethod
    def detect(code: str) -> bool:
        return len(PERCENT_ESCAPE.findall(code)) > MIN_URL_ESCAPES

    def unpack(self, code: str) -> str:
        """
        Decode %XX sequences

        Returns:
            Decoded text, or code unchanged if the escapes are not valid UTF-8
        """
        try:
            return urllib.parse.unquote(code, errors="strict")
        except UnicodeDecodeError:
            return code


class UniversalUnpacker:
    """Peel encoding layers with whichever unpacker recognizes the input"""

    def __init__(self, max_layers: int = MAX_LAYERS):
        self.max_layers = max_layers
        self.unpackers = [PackerUnpacker(), EvalUnpacker(), AAEncodeDecoder(), URLEncodeDecoder()]

    def detect_type(self, code: str) -> str:
        for unpacker in self.unpackers:
            if unpacker.detect(code):
                return unpacker.name
        return "Unknown"

    def unpack(self, code: str) -> UnpackResult:
        """
        Unpack up to max_layers layers

        Returns:
            UnpackResult; type is the outermost encoding that was recognized
        """
        result = UnpackResult(success=False, code=code, type=self.detect_type(code))
        current = code
        for _ in range(self.max_layers):
            for unpacker in self.unpackers:
                if not unpacker.detect(current):
                    continue
                unpacked = unpacker.unpack(current)
                if unpacked != current:
                    logger.debug("Unpacked %s layer (%d -> %d chars)", unpacker.name, len(current), len(unpacked))
                    result.layers.append(unpacker.name)
                    current = unpacked
                    break
            else:
                break

        if result.layers:
            result.success = True
            result.code = current
            result.type = result.layers[0]
        return result
