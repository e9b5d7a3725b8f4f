"""
Security Evaluation
Rule-based weakness detection and strength scoring for detected crypto
"""

import re
from typing import Dict, List, Optional

from .models import (
    BROKEN, CRITICAL, HIGH, LOW, MEDIUM, MODERATE, STRONG, WEAK,
    CryptoAlgorithm, SecurityIssue, StrengthAssessment,
)
from .rules import CryptoRulesManager

SEVERITY_PENALTIES = {CRITICAL: 40, HIGH: 25, MEDIUM: 15, LOW: 5}

# Factor categories, matched in this order; implementation is the fallback
FACTOR_PATTERNS = (
    ('keySize', re.compile(r'key\s*size|keysize|key\s*length', re.IGNORECASE)),
    ('mode', re.compile(r'\b(?:mode|padding|ecb|iv)\b', re.IGNORECASE)),
    ('algorithm', re.compile(r'\b(?:md5|sha-?1|3?des|rc4|broken|weak|deprecated|algorithm)\b', re.IGNORECASE)),
)
FALLBACK_FACTOR = 'implementation'

BROKEN_MIN_CRITICAL = 3
BROKEN_MIN_FACTORS = 2
BROKEN_SCORE_CAP = 39

# CryptoJS counts key sizes in 32-bit words (keySize: 256 / 32)
MAX_WORD_KEY_SIZE = 16

NO_PADDING = ('nopadding', 'none')
RANDOM_SOURCE = re.compile(r'Math\.random\s*\(')
HARDCODED_KEY = re.compile(
    r'\.(?:encrypt|decrypt)\s*\(\s*[^,()]+,\s*(["\'])[^"\']{4,}\1'
    r'|create(?:De)?[Cc]ipheriv?\s*\(\s*(["\'])[^"\']+\2\s*,\s*(["\'])[^"\']{4,}\3'
)


def _rule_key(name: str, table: Dict) -> Optional[str]:
    """Rule table key for an algorithm name (AES-GCM -> AES)"""
    if name in table:
        return name
    base = name.split('-')[0].upper()
    for key in table:
        if key.upper() == base:
            return key
    return None


def key_size_bits(key_size: int) -> int:
    return key_size * 32 if 0 < key_size <= MAX_WORD_KEY_SIZE else key_size


def evaluate_security(algorithms: List[CryptoAlgorithm], code: str,
                      rules: CryptoRulesManager) -> List[SecurityIssue]:
    """
    Apply the security rules to detected algorithms and the source text

    Rules are independent, so one algorithm can produce several issues.

    Args:
        algorithms: Merged detections (with parameters attached)
        code: Source text, for code-level checks
        rules: Rules manager supplying blocklists and thresholds

    Returns:
        List of SecurityIssue
    """
    security = rules.get_security_rules()
    issues = []

    for algorithm in algorithms:
        name = algorithm.name

        hash_key = _rule_key(name, security.broken_hashes)
        if hash_key:
            issues.append(SecurityIssue(
                severity=security.broken_hashes[hash_key],
                issue=f"{name} is a broken hash function (practical collision attacks)",
                recommendation="Use SHA-256 or SHA-3; for passwords use PBKDF2, scrypt or Argon2",
                algorithm=name,
            ))

        cipher_key = _rule_key(name, security.broken_ciphers)
        if cipher_key:
            issues.append(SecurityIssue(
                severity=security.broken_ciphers[cipher_key],
                issue=f"{name} is a broken cipher",
                recommendation="Replace with AES-GCM or ChaCha20-Poly1305",
                algorithm=name,
            ))

        params = algorithm.parameters
        if params is None:
            continue

        mode = params.mode.upper() if isinstance(params.mode, str) else None
        if mode == 'ECB':
            issues.append(SecurityIssue(
                severity=HIGH,
                issue=f"ECB mode used with {name} leaks plaintext patterns",
                recommendation="Use an authenticated mode such as GCM, or CBC with a random IV and a MAC",
                algorithm=name,
            ))

        padding = params.padding.lower() if isinstance(params.padding, str) else None
        if padding in NO_PADDING or (padding is None and mode in security.padded_modes):
            issues.append(SecurityIssue(
                severity=MEDIUM if padding else LOW,
                issue=f"{name} in block mode with no padding",
                recommendation="Use PKCS#7 padding or a stream/authenticated mode (CTR, GCM)",
                algorithm=name,
            ))

        size_key = _rule_key(name, security.min_key_sizes)
        if size_key and isinstance(params.key_size, int) and not isinstance(params.key_size, bool):
            bits = key_size_bits(params.key_size)
            minimum = security.min_key_sizes[size_key]
            if bits < minimum:
                issues.append(SecurityIssue(
                    severity=HIGH,
                    issue=f"Key size is too short for {name}: {bits} bits (minimum {minimum})",
                    recommendation=f"Use at least {minimum}-bit keys",
                    algorithm=name,
                ))

    if algorithms and RANDOM_SOURCE.search(code):
        issues.append(SecurityIssue(
            severity=HIGH,
            issue="Math.random() is not a cryptographically secure random source",
            recommendation="Use crypto.getRandomValues() or crypto.randomBytes()",
        ))

    if HARDCODED_KEY.search(code):
        issues.append(SecurityIssue(
            severity=CRITICAL,
            issue="Hard-coded encryption key literal",
            recommendation="Derive keys at runtime or load them from a secure key store",
        ))

    return issues


def classify_issue(issue: SecurityIssue) -> str:
    """Strength factor an issue counts against"""
    for factor, pattern in FACTOR_PATTERNS:
        if pattern.search(issue.issue):
            return factor
    return FALLBACK_FACTOR


def analyze_strength(algorithms: List[CryptoAlgorithm], issues: List[SecurityIssue]) -> StrengthAssessment:
    """
    Score implementation strength from the security issues

    Every factor starts at 100 and loses the severity penalty of each issue
    classified into it. Three or more critical issues across at least two
    factors rate as broken regardless of the mean.

    Args:
        algorithms: Detected algorithms (an empty list scores like any other)
        issues: Output of evaluate_security()

    Returns:
        StrengthAssessment with score clamped to [0, 100]
    """
    assessment = StrengthAssessment()
    if not issues:
        return assessment

    factors = assessment.factors
    critical_factors = set()
    critical_count = 0
    for issue in issues:
        factor = classify_issue(issue)
        factors[factor] = max(0, factors[factor] - SEVERITY_PENALTIES.get(issue.severity, 0))
        if issue.severity == CRITICAL:
            critical_count += 1
            critical_factors.add(factor)

    score = round(sum(factors.values()) / len(factors))
    score = max(0, min(100, score))

    if critical_count >= BROKEN_MIN_CRITICAL and len(critical_factors) >= BROKEN_MIN_FACTORS:
        assessment.overall = BROKEN
        assessment.score = min(score, BROKEN_SCORE_CAP)
        return assessment

    assessment.score = score
    if score >= 85:
        assessment.overall = STRONG
    elif score >= 60:
        assessment.overall = MODERATE
    elif score >= 40:
        assessment.overall = WEAK
    else:
        assessment.overall = BROKEN
    return assessment
