"""
Crypto Rules
Keyword, library, constant-table and security rules used by the crypto detector

The default tables live in code. A YAML document (same shape as
export_rules() produces) can override or extend any of them.
"""

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..errors import RuleError
from .models import ASYMMETRIC, CRITICAL, HASH, HIGH, MEDIUM, SYMMETRIC

logger = logging.getLogger(__name__)

MODE = "mode"
PADDING = "padding"

# AES forward substitution box (FIPS-197, figure 7)
AES_SBOX = tuple(bytes.fromhex(
    "637c777bf26b6fc53001672bfed7ab76"
    "ca82c97dfa5947f0add4a2af9ca472c0"
    "b7fd9326363ff7cc34a5e5f171d83115"
    "04c723c31896059a071280e2eb27b275"
    "09832c1a1b6e5aa0523bd6b329e32f84"
    "53d100ed20fcb15b6acbbe394a4c58cf"
    "d0efaafb434d338545f9027f503c9fa8"
    "51a3408f929d38f5bcb6da2110fff3d2"
    "cd0c13ec5f974417c4a77e3d645d1973"
    "60814fdc222a908846eeb814de5e0bdb"
    "e0323a0a4906245cc2d3ac629195e479"
    "e7c8376d8dd54ea96c56f4ea657aae08"
    "ba78252e1ca6b4c6e8dd741f4bbd8b8a"
    "703eb5664803f60e613557b986c11d9e"
    "e1f8981169d98e949b1e87e9ce5528df"
    "8ca1890dbfe6426841992d0fb054bb16"
))
SBOX_PREFIX_LENGTH = 8


@dataclass
class KeywordRule:
    """Literal names that indicate an algorithm, mode or padding"""
    name: str
    type: str
    keywords: List[str]
    confidence: float = 0.6


@dataclass
class LibraryRule:
    """Text patterns that indicate a crypto library"""
    name: str
    patterns: List[str]
    version_pattern: Optional[str] = None
    confidence: float = 0.8


@dataclass
class ConstantRule:
    """Magic initialization constants that identify a hash function"""
    name: str
    type: str
    values: List[int]
    description: str = ""
    confidence: float = 0.85


@dataclass
class SecurityRules:
    """Thresholds and blocklists used by the security evaluator"""
    broken_hashes: Dict[str, str] = field(default_factory=dict)
    broken_ciphers: Dict[str, str] = field(default_factory=dict)
    min_key_sizes: Dict[str, int] = field(default_factory=dict)
    padded_modes: List[str] = field(default_factory=list)


class CryptoRulesManager:
    """
    Holds the rule tables consulted during crypto detection

    Tables:
    - keyword rules: algorithm, mode and padding names
    - library rules: CryptoJS, WebCrypto, Node crypto, node-forge, ...
    - constant rules: MD5/SHA magic numbers
    - security rules: broken primitives and minimum key sizes
    """

    def __init__(self):
        """Initialize rule tables with defaults"""

        # Format: KeywordRule(name, type, [keywords], confidence)
        self.keyword_rules: List[KeywordRule] = [
            # Symmetric ciphers
            KeywordRule('AES', SYMMETRIC, ['AES', 'Rijndael'], 0.7),
            KeywordRule('DES', SYMMETRIC, ['DES'], 0.6),
            KeywordRule('3DES', SYMMETRIC, ['TripleDES', '3DES', 'DESede'], 0.7),
            KeywordRule('RC4', SYMMETRIC, ['RC4', 'ARC4'], 0.7),
            KeywordRule('Blowfish', SYMMETRIC, ['Blowfish'], 0.7),
            KeywordRule('ChaCha20', SYMMETRIC, ['ChaCha20', 'XChaCha20'], 0.7),
            KeywordRule('Rabbit', SYMMETRIC, ['Rabbit'], 0.5),
            KeywordRule('SM4', SYMMETRIC, ['SM4'], 0.6),

            # Asymmetric
            KeywordRule('RSA', ASYMMETRIC, ['RSA', 'RSAKey', 'JSEncrypt', 'NodeRSA'], 0.7),
            KeywordRule('ECDSA', ASYMMETRIC, ['ECDSA', 'secp256k1', 'secp256r1'], 0.7),
            KeywordRule('ECDH', ASYMMETRIC, ['ECDH', 'X25519'], 0.7),
            KeywordRule('Ed25519', ASYMMETRIC, ['Ed25519'], 0.7),
            KeywordRule('SM2', ASYMMETRIC, ['SM2'], 0.6),

            # Hashes and MACs
            KeywordRule('MD5', HASH, ['MD5', 'hex_md5'], 0.7),
            KeywordRule('SHA1', HASH, ['SHA1', 'SHA-1'], 0.7),
            KeywordRule('SHA256', HASH, ['SHA256', 'SHA-256'], 0.7),
            KeywordRule('SHA512', HASH, ['SHA512', 'SHA-512'], 0.7),
            KeywordRule('SHA3', HASH, ['SHA3', 'SHA-3', 'Keccak'], 0.7),
            KeywordRule('RIPEMD160', HASH, ['RIPEMD160', 'RIPEMD-160'], 0.7),
            KeywordRule('HMAC', HASH, ['HMAC', 'createHmac'], 0.6),
            KeywordRule('PBKDF2', HASH, ['PBKDF2', 'pbkdf2Sync'], 0.7),
            KeywordRule('SM3', HASH, ['SM3'], 0.6),

            # Modes and paddings (parameters, never reported as algorithms)
            KeywordRule('ECB', MODE, ['ECB'], 0.5),
            KeywordRule('CBC', MODE, ['CBC'], 0.5),
            KeywordRule('CTR', MODE, ['CTR'], 0.5),
            KeywordRule('GCM', MODE, ['GCM'], 0.5),
            KeywordRule('CFB', MODE, ['CFB'], 0.5),
            KeywordRule('OFB', MODE, ['OFB'], 0.5),
            KeywordRule('PKCS7', PADDING, ['PKCS7', 'Pkcs7', 'PKCS5'], 0.5),
            KeywordRule('NoPadding', PADDING, ['NoPadding'], 0.5),
            KeywordRule('ZeroPadding', PADDING, ['ZeroPadding'], 0.5),
        ]

        # Format: LibraryRule(name, [patterns], version_pattern, confidence)
        self.library_rules: List[LibraryRule] = [
            LibraryRule('CryptoJS', ['CryptoJS', 'crypto-js'],
                        r'CryptoJS\.version\s*=\s*["\']([\d.]+)["\']', 0.9),
            LibraryRule('WebCrypto', ['crypto.subtle', 'crypto.getRandomValues'], None, 0.9),
            LibraryRule('Node crypto', ['require("crypto")', "require('crypto')", 'createCipheriv',
                                        'createHash'], None, 0.85),
            LibraryRule('node-forge', ['forge.cipher', 'forge.md', 'forge.pki', 'forge.random', 'node-forge'],
                        r'forge\.version\s*=\s*["\']([\d.]+)["\']', 0.85),
            LibraryRule('JSEncrypt', ['JSEncrypt'], r'JSEncrypt\.version\s*=\s*["\']([\d.]+)["\']', 0.9),
            LibraryRule('SJCL', ['sjcl.cipher', 'sjcl.hash', 'sjcl.encrypt'], None, 0.85),
            LibraryRule('TweetNaCl', ['nacl.secretbox', 'nacl.box', 'nacl.sign'], None, 0.85),
            LibraryRule('jsrsasign', ['KJUR.crypto', 'jsrsasign'], None, 0.85),
            LibraryRule('sm-crypto', ['sm-crypto', 'sm2.doEncrypt', 'sm4.encrypt'], None, 0.8),
        ]

        # Format: ConstantRule(name, type, [values], description)
        # Ordered most specific first: SHA-1 shares MD5's first four words
        self.constant_rules: List[ConstantRule] = [
            ConstantRule('SHA256', HASH,
                         [0x6a09e667, 0xbb67ae85, 0x3c6ef372, 0xa54ff53a,
                          0x510e527f, 0x9b05688c, 0x1f83d9ab, 0x5be0cd19],
                         'SHA-256 initial hash values'),
            ConstantRule('SHA256', HASH,
                         [0x428a2f98, 0x71374491, 0xb5c0fbcf, 0xe9b5dba5],
                         'SHA-256 round constants'),
            ConstantRule('SHA1', HASH,
                         [0x67452301, 0xefcdab89, 0x98badcfe, 0x10325476, 0xc3d2e1f0],
                         'SHA-1 initial hash values'),
            ConstantRule('MD5', HASH,
                         [0x67452301, 0xefcdab89, 0x98badcfe, 0x10325476],
                         'MD5 initialization vector'),
            ConstantRule('MD5', HASH,
                         [0xd76aa478, 0xe8c7b756, 0x242070db, 0xc1bdceee],
                         'MD5 sine table'),
            ConstantRule('CRC32', HASH, [0xedb88320], 'CRC-32 reversed polynomial', 0.6),
        ]

        self.security_rules = SecurityRules(
            # Format: name -> severity
            broken_hashes={'MD5': HIGH, 'SHA1': MEDIUM},
            broken_ciphers={'RC4': CRITICAL, 'DES': CRITICAL},
            # Format: name -> minimum key size in bits
            min_key_sizes={'AES': 128, '3DES': 112, 'Blowfish': 128, 'RSA': 2048, 'ECDSA': 256, 'ECDH': 256},
            padded_modes=['ECB', 'CBC'],
        )

    def get_keyword_rules(self) -> List[KeywordRule]:
        return self.keyword_rules

    def get_library_rules(self) -> List[LibraryRule]:
        return self.library_rules

    def get_constant_rules(self) -> List[ConstantRule]:
        return self.constant_rules

    def get_security_rules(self) -> SecurityRules:
        return self.security_rules

    def keyword_names(self, rule_type: str) -> List[str]:
        """All keywords of the given rule type, e.g. every known mode name"""
        names = []
        for rule in self.keyword_rules:
            if rule.type == rule_type:
                names.extend(rule.keywords)
        return names

    def export_rules(self) -> str:
        """
        Serialize every rule table to YAML

        Returns:
            YAML document accepted by load_custom_rules()
        """
        document = {
            'keywords': [asdict(rule) for rule in self.keyword_rules],
            'libraries': [asdict(rule) for rule in self.library_rules],
            'constants': [asdict(rule) for rule in self.constant_rules],
            'security': asdict(self.security_rules),
        }
        return yaml.safe_dump(document, sort_keys=False, allow_unicode=True)

    def load_rules(self, path: Union[str, Path]) -> None:
        """
        Load rule overrides from a YAML file

        Raises:
            RuleError: If the file cannot be read or has the wrong shape
        """
        try:
            text = Path(path).read_text(encoding='utf-8')
        except OSError as exc:
            raise RuleError(f"Cannot read rules file {path}: {exc}") from exc
        self.load_custom_rules(text)
        logger.info("Loaded crypto rules from %s", path)

    def load_custom_rules(self, text: str) -> None:
        """
        Merge rules from a YAML document

        Rules are matched by name: a loaded rule replaces the default rules
        with the same name, new names are appended. Security entries are
        merged key by key.

        Raises:
            RuleError: If the document is not valid YAML or has the wrong shape
        """
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise RuleError(f"Invalid rules YAML: {exc}") from exc
        if document is None:
            return
        if not isinstance(document, dict):
            raise RuleError("Rules document must be a mapping")

        unknown = set(document) - {'keywords', 'libraries', 'constants', 'security'}
        if unknown:
            raise RuleError(f"Unknown rule sections: {', '.join(sorted(unknown))}")

        if 'keywords' in document:
            self.keyword_rules = self._merge(self.keyword_rules, document['keywords'], KeywordRule)
        if 'libraries' in document:
            self.library_rules = self._merge(self.library_rules, document['libraries'], LibraryRule)
        if 'constants' in document:
            self.constant_rules = self._merge(self.constant_rules, document['constants'], ConstantRule)
        if 'security' in document:
            self._merge_security(document['security'])

    @staticmethod
    def _merge(current: List[Any], entries: Any, rule_class) -> List[Any]:
        if not isinstance(entries, list):
            raise RuleError(f"{rule_class.__name__} section must be a list")

        loaded = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise RuleError(f"{rule_class.__name__} entries must be mappings")
            try:
                loaded.append(rule_class(**entry))
            except TypeError as exc:
                raise RuleError(f"Invalid {rule_class.__name__}: {exc}") from exc

        replaced = {rule.name for rule in loaded}
        return [rule for rule in current if rule.name not in replaced] + loaded

    def _merge_security(self, section: Any) -> None:
        if not isinstance(section, dict):
            raise RuleError("Security section must be a mapping")
        rules = self.security_rules
        for key, value in section.items():
            if key == 'padded_modes':
                if not isinstance(value, list):
                    raise RuleError("padded_modes must be a list")
                rules.padded_modes = list(value)
            elif key in ('broken_hashes', 'broken_ciphers', 'min_key_sizes'):
                if not isinstance(value, dict):
                    raise RuleError(f"{key} must be a mapping")
                getattr(rules, key).update(value)
            else:
                raise RuleError(f"Unknown security rule: {key}")
