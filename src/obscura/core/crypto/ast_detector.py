"""
Syntax Tree Crypto Detection
Single traversal that finds crypto primitives and their call parameters

Recognizes:
- Custom cipher loops (XOR over indexed bytes)
- Custom hash loops (fixed-iteration shift/XOR mixing)
- Asymmetric operations (modPow, new RSAKey, publicEncrypt, ...)
- Standard tables (AES S-box) and magic constants (MD5/SHA family)
- Library calls: CryptoJS, WebCrypto crypto.subtle, Node crypto, node-forge
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from esprima.nodes import Node

from ..errors import JSParseError
from ..jsparse import MISSING, as_integer, is_number, iter_child_nodes, literal_value, member_path, node_source, parse_js
from ..optimizer import static_value
from .models import (
    ASYMMETRIC, CUSTOM, HASH, SYMMETRIC, AstDetection, CodeLocation, CryptoAlgorithm, CryptoParameters,
)
from .rules import AES_SBOX, SBOX_PREFIX_LENGTH, CryptoRulesManager

logger = logging.getLogger(__name__)

CUSTOM_CIPHER = "Custom Symmetric Cipher"
CUSTOM_HASH = "Custom Hash Function"
ASYMMETRIC_ENCRYPTION = "Asymmetric Encryption"
AES_SBOX_NAME = "AES S-box"

LOOP_TYPES = frozenset(["ForStatement", "WhileStatement", "DoWhileStatement"])
FUNCTION_TYPES = frozenset(["FunctionDeclaration", "FunctionExpression", "ArrowFunctionExpression"])
SHIFT_OPERATORS = frozenset(["<<", ">>", ">>>"])
BOUND_OPERATORS = frozenset(["<", "<=", ">", ">=", "!=", "!=="])

ASYMMETRIC_CALLS = frozenset([
    "modPow", "modPowInt", "publicEncrypt", "privateDecrypt", "privateEncrypt", "publicDecrypt",
])
ASYMMETRIC_CONSTRUCTORS = frozenset(["RSAKey", "JSEncrypt", "NodeRSA"])

CRYPTOJS_CIPHERS = {
    "AES": "AES", "DES": "DES", "TripleDES": "3DES", "RC4": "RC4", "RC4Drop": "RC4",
    "Rabbit": "Rabbit", "RabbitLegacy": "Rabbit", "Blowfish": "Blowfish",
}
CRYPTOJS_HASHES = frozenset(["MD5", "SHA1", "SHA224", "SHA256", "SHA384", "SHA512", "SHA3", "RIPEMD160"])
CIPHER_METHODS = frozenset(["encrypt", "decrypt"])
SUBTLE_METHODS = frozenset([
    "encrypt", "decrypt", "sign", "verify", "digest", "generateKey", "deriveKey", "deriveBits",
    "importKey", "wrapKey", "unwrapKey",
])
NODE_CIPHER_FACTORIES = frozenset(["createCipheriv", "createDecipheriv", "createCipher", "createDecipher"])
NODE_KEY_PAIR = frozenset(["generateKeyPair", "generateKeyPairSync"])
CIPHER_NAMES = {
    "AES": "AES", "DES": "DES", "3DES": "3DES", "BF": "Blowfish", "BLOWFISH": "Blowfish",
    "RC4": "RC4", "CHACHA20": "ChaCha20", "CAMELLIA": "Camellia", "SM4": "SM4",
}
KEY_PAIR_NAMES = {"RSA": "RSA", "RSA-PSS": "RSA", "EC": "ECDSA", "ED25519": "Ed25519", "X25519": "ECDH"}
CIPHER_MODES = frozenset(["ECB", "CBC", "CTR", "GCM", "CFB", "OFB", "CCM", "XTS"])

MAX_IV_TEXT = 64
WORD_MASK = 0xFFFFFFFF


@dataclass
class _LoopFeatures:
    node: Node
    fixed_bound: bool
    xor: bool = False
    shift: bool = False
    indexed: bool = False


def normalize_algorithm_name(name: str) -> str:
    """SHA-256 -> SHA256, md5 -> MD5; WebCrypto names like AES-GCM are kept"""
    upper = name.upper()
    if re.match(r"^SHA-?\d", upper) or upper in ("MD5", "RIPEMD160"):
        return upper.replace("-", "")
    return name


def algorithm_type(name: str) -> str:
    """Infer the primitive family from an algorithm name"""
    upper = name.upper()
    if upper.startswith(("RSA", "EC", "ED25519", "X25519")):
        return ASYMMETRIC
    if upper.startswith(("SHA", "MD5", "HMAC", "PBKDF2", "HKDF", "RIPEMD")):
        return HASH
    return SYMMETRIC


def parse_cipher_spec(spec: str) -> Tuple[str, Optional[int], Optional[str]]:
    """
    Split a cipher spec like aes-256-cbc or AES-CBC

    Returns:
        (algorithm name, key size in bits or None, mode or None)
    """
    parts = spec.upper().split("-")
    name = CIPHER_NAMES.get(parts[0], parts[0])
    if parts[0] == "DES" and any(part.startswith("EDE") for part in parts[1:]):
        name = "3DES"
    key_size = next((int(part) for part in parts[1:] if part.isascii() and part.isdecimal()), None)
    mode = next((part for part in parts[1:] if part in CIPHER_MODES), None)
    return name, key_size, mode


def config_value(node: Node, key: str, source: str):
    """Static value of an option in a crypto config object, or MISSING"""
    value = static_value(node)
    if value is not MISSING:
        number = as_integer(value)
        return value if number is None else number
    path = member_path(node)
    if path and path.startswith("CryptoJS."):
        # CryptoJS.mode.ECB -> "ECB", CryptoJS.pad.Pkcs7 -> "Pkcs7"
        return path.rsplit(".", 1)[-1]
    if key == "iv":
        return node_source(source, node)[:MAX_IV_TEXT]
    return MISSING


def object_parameters(node: Optional[Node], source: str) -> Tuple[Optional[str], CryptoParameters]:
    """
    Read a crypto config object literal

    Returns:
        (value of its ``name`` property or None, remaining options as parameters)
    """
    data = {}
    if node is None or node.type != "ObjectExpression":
        return None, CryptoParameters()
    for prop in node.properties:
        if prop.type != "Property" or prop.computed:
            continue
        key = prop.key.name if prop.key.type == "Identifier" else literal_value(prop.key)
        if not isinstance(key, str):
            continue
        value = config_value(prop.value, key, source)
        if value is not MISSING:
            data[key] = value

    name = data.pop("name", None)
    params = CryptoParameters.from_dict(data)
    for size_key in ("modulusLength", "bits"):
        if size_key in params.extra and params.key_size is None:
            params.key_size = params.extra.pop(size_key)
    return (name if isinstance(name, str) else None), params


class _CryptoScanner:
    """Walks the tree once, tracking the innermost enclosing loop"""

    def __init__(self, source: str, rules: CryptoRulesManager, detection: AstDetection):
        self.source = source
        self.rules = rules
        self.detection = detection
        self.found: Dict[str, CryptoAlgorithm] = {}
        self.loops: List[_LoopFeatures] = []
        self.numbers: Dict[int, Node] = {}

    def scan(self, tree: Node) -> None:
        stack = [(tree, None)]
        while stack:
            node, loop = stack.pop()
            if node.type in LOOP_TYPES:
                loop = _LoopFeatures(node, fixed_bound=self._has_fixed_bound(node))
                self.loops.append(loop)
            elif node.type in FUNCTION_TYPES:
                loop = None
            self._visit(node, loop)
            for child in reversed(iter_child_nodes(node)):
                stack.append((child, loop))

        self._report_loops()
        self._report_constants()
        self.detection.algorithms.extend(self.found.values())

    # Recording

    def _add(self, name: str, kind: str, confidence: float, usage: str, node: Node) -> None:
        known = self.found.get(name)
        if known is not None and known.confidence >= confidence:
            return
        self.found[name] = CryptoAlgorithm(
            name=name,
            type=kind,
            confidence=confidence,
            usage=usage,
            location=CodeLocation(line=node.loc.start.line, column=node.loc.start.column + 1),
        )

    def _add_parameters(self, name: str, params: CryptoParameters) -> None:
        if params.is_empty():
            return
        existing = self.detection.parameters.get(name)
        if existing is None:
            self.detection.parameters[name] = params
        else:
            existing.update(params)

    # Node dispatch

    def _visit(self, node: Node, loop: Optional[_LoopFeatures]) -> None:
        kind = node.type
        if kind in ("BinaryExpression", "AssignmentExpression") and loop is not None:
            operator = node.operator[:-1] if kind == "AssignmentExpression" else node.operator
            if operator == "^":
                loop.xor = True
            elif operator in SHIFT_OPERATORS:
                loop.shift = True
        elif kind == "MemberExpression" and node.computed and loop is not None:
            loop.indexed = True
        elif kind == "Literal":
            self._note_number(literal_value(node), node)
        elif kind == "UnaryExpression" and node.operator == "-":
            value = literal_value(node.argument)
            if is_number(value):
                self._note_number(-value, node)
        elif kind == "ArrayExpression":
            self._match_table(node)
        elif kind == "CallExpression":
            self._match_call(node)
        elif kind == "NewExpression":
            name = member_path(node.callee).rsplit(".", 1)[-1]
            if name in ASYMMETRIC_CONSTRUCTORS:
                self._add(ASYMMETRIC_ENCRYPTION, ASYMMETRIC, 0.8, f"new {name}()", node)

    @staticmethod
    def _has_fixed_bound(loop: Node) -> bool:
        test = loop.test if loop.type == "ForStatement" else None
        if test is None or test.type != "BinaryExpression" or test.operator not in BOUND_OPERATORS:
            return False
        return is_number(literal_value(test.right)) or is_number(literal_value(test.left))

    def _note_number(self, value, node: Node) -> None:
        number = as_integer(value)
        if number is None or abs(number) > WORD_MASK:
            return
        self.numbers.setdefault(number & WORD_MASK, node)

    # Tables and constants

    def _match_table(self, node: Node) -> None:
        values = []
        for element in node.elements:
            number = as_integer(literal_value(element))
            if number is None:
                return
            values.append(number)

        if len(values) == len(AES_SBOX) and tuple(values) == AES_SBOX:
            self._add(AES_SBOX_NAME, SYMMETRIC, 0.95, "AES substitution box table", node)
        elif len(values) >= SBOX_PREFIX_LENGTH and tuple(values[:SBOX_PREFIX_LENGTH]) == AES_SBOX[:SBOX_PREFIX_LENGTH]:
            self._add(AES_SBOX_NAME, SYMMETRIC, 0.75, "Partial AES substitution box table", node)

    def _report_constants(self) -> None:
        matched: Set[int] = set()
        for rule in self.rules.get_constant_rules():
            values = {value & WORD_MASK for value in rule.values}
            if not values or not values <= set(self.numbers) or values <= matched:
                continue
            matched |= values
            first = min((self.numbers[value] for value in values), key=lambda n: n.range[0])
            self._add(rule.name, rule.type, rule.confidence, rule.description or "Magic constants", first)

    def _report_loops(self) -> None:
        for loop in self.loops:
            if loop.xor and loop.indexed:
                self._add(CUSTOM_CIPHER, CUSTOM, 0.6, "XOR over indexed bytes inside a loop", loop.node)
            elif loop.xor and loop.shift and loop.fixed_bound:
                self._add(CUSTOM_HASH, CUSTOM, 0.55, "Fixed-iteration shift/XOR mixing loop", loop.node)

    # Library calls

    def _match_call(self, node: Node) -> None:
        path = member_path(node.callee)
        if not path:
            return
        parts = path.split(".")
        method = parts[-1]

        if method in ASYMMETRIC_CALLS:
            self._add(ASYMMETRIC_ENCRYPTION, ASYMMETRIC, 0.75, f"{path}() call", node)
        if parts[0] == "CryptoJS":
            self._match_cryptojs(node, parts)
        elif parts[0] == "forge":
            self._match_forge(node, parts)
        elif "subtle" in parts[:-1] and method in SUBTLE_METHODS:
            self._match_webcrypto(node, method)
        else:
            self._match_node_crypto(node, method)

    def _match_cryptojs(self, node: Node, parts: List[str]) -> None:
        if len(parts) < 2:
            return
        usage = ".".join(parts)
        target = parts[1]
        if len(parts) == 3 and target in CRYPTOJS_CIPHERS and parts[2] in CIPHER_METHODS:
            name = CRYPTOJS_CIPHERS[target]
            _, params = object_parameters(node.arguments[2] if len(node.arguments) > 2 else None, self.source)
            self._add_parameters(name, params)
            self._add(name, SYMMETRIC, 0.9, usage, node)
        elif len(parts) == 2 and target in CRYPTOJS_HASHES:
            self._add(target, HASH, 0.9, usage, node)
        elif len(parts) == 2 and target.startswith("Hmac"):
            self._add(f"HMAC-{target[4:]}", HASH, 0.9, usage, node)
        elif len(parts) == 2 and target == "PBKDF2":
            _, params = object_parameters(node.arguments[2] if len(node.arguments) > 2 else None, self.source)
            self._add_parameters("PBKDF2", params)
            self._add("PBKDF2", HASH, 0.9, usage, node)

    def _match_webcrypto(self, node: Node, method: str) -> None:
        usage = f"crypto.subtle.{method}"
        arguments = node.arguments
        if method == "digest" and arguments:
            name = static_value(arguments[0])
            if isinstance(name, str):
                name = normalize_algorithm_name(name)
                self._add(name, algorithm_type(name), 0.9, usage, node)
        for argument in arguments:
            name, params = object_parameters(argument, self.source)
            if not name:
                continue
            name = normalize_algorithm_name(name)
            self._add_parameters(name, params)
            self._add(name, algorithm_type(name), 0.9, usage, node)

    def _match_node_crypto(self, node: Node, method: str) -> None:
        arguments = node.arguments
        first = static_value(arguments[0]) if arguments else MISSING
        usage = f"crypto.{method}"

        if method in NODE_CIPHER_FACTORIES and isinstance(first, str):
            name, key_size, mode = parse_cipher_spec(first)
            params = CryptoParameters(mode=mode, key_size=key_size)
            if method.endswith("iv") and len(arguments) > 2:
                params.iv = node_source(self.source, arguments[2])[:MAX_IV_TEXT]
            self._add_parameters(name, params)
            self._add(name, SYMMETRIC, 0.9, f"{usage}('{first}')", node)
        elif method == "createHash" and isinstance(first, str):
            name = normalize_algorithm_name(first)
            self._add(name, HASH, 0.9, f"{usage}('{first}')", node)
        elif method == "createHmac" and isinstance(first, str):
            self._add(f"HMAC-{normalize_algorithm_name(first)}", HASH, 0.9, f"{usage}('{first}')", node)
        elif method in ("pbkdf2", "pbkdf2Sync") and len(arguments) >= 4:
            params = CryptoParameters()
            iterations = as_integer(static_value(arguments[2]))
            key_length = as_integer(static_value(arguments[3]))
            if iterations is not None:
                params.iterations = iterations
            if key_length is not None:
                params.key_size = key_length * 8
            if len(arguments) > 4 and isinstance(static_value(arguments[4]), str):
                params.extra["digest"] = static_value(arguments[4])
            self._add_parameters("PBKDF2", params)
            self._add("PBKDF2", HASH, 0.9, usage, node)
        elif method in NODE_KEY_PAIR and isinstance(first, str):
            name = KEY_PAIR_NAMES.get(first.upper(), first.upper())
            _, params = object_parameters(arguments[1] if len(arguments) > 1 else None, self.source)
            self._add_parameters(name, params)
            self._add(name, ASYMMETRIC, 0.9, f"{usage}('{first}')", node)

    def _match_forge(self, node: Node, parts: List[str]) -> None:
        usage = ".".join(parts)
        arguments = node.arguments
        if len(parts) == 3 and parts[1] == "cipher" and parts[2] in ("createCipher", "createDecipher"):
            spec = static_value(arguments[0]) if arguments else MISSING
            if isinstance(spec, str):
                name, key_size, mode = parse_cipher_spec(spec)
                self._add_parameters(name, CryptoParameters(mode=mode, key_size=key_size))
                self._add(name, SYMMETRIC, 0.85, usage, node)
        elif len(parts) == 4 and parts[1] == "md" and parts[3] == "create":
            name = normalize_algorithm_name(parts[2])
            self._add(name, HASH, 0.85, usage, node)
        elif len(parts) >= 3 and parts[1] == "hmac":
            self._add("HMAC", HASH, 0.8, usage, node)
        elif parts[1:3] == ["pki", "rsa"] and parts[-1] == "generateKeyPair":
            params = CryptoParameters()
            size = static_value(arguments[0]) if arguments else MISSING
            if is_number(size):
                params.key_size = as_integer(size)
            elif arguments:
                _, params = object_parameters(arguments[0], self.source)
            self._add_parameters("RSA", params)
            self._add("RSA", ASYMMETRIC, 0.85, usage, node)


def detect_by_ast(code: str, rules: CryptoRulesManager) -> AstDetection:
    """
    Detect crypto primitives in one traversal of the syntax tree

    Args:
        code: JavaScript source
        rules: Rules supplying constant tables

    Returns:
        AstDetection with algorithms in first-seen order and a name-keyed
        parameter map; empty when the source does not parse
    """
    detection = AstDetection()
    try:
        tree = parse_js(code)
    except JSParseError as exc:
        logger.debug("AST crypto detection skipped: %s", exc)
        return detection

    _CryptoScanner(code, rules, detection).scan(tree)
    return detection


def merge_parameters(algorithms: List[CryptoAlgorithm], params_map: Dict[str, CryptoParameters]) -> None:
    """Attach parameters to every algorithm whose name is a key of params_map"""
    for algorithm in algorithms:
        params = params_map.get(algorithm.name)
        if params is not None:
            algorithm.parameters = params
