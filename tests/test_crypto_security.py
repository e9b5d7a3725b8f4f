from obscura.core.crypto import (
    CodeLocation, CryptoAlgorithm, CryptoParameters, CryptoRulesManager, SecurityIssue, analyze_strength,
    evaluate_security,
)
from obscura.core.crypto.security import classify_issue, key_size_bits


def _algorithm(name, kind="symmetric", **params):
    return CryptoAlgorithm(
        name=name, type=kind, confidence=0.9, location=CodeLocation(),
        parameters=CryptoParameters(**params) if params else None,
    )


def _issues(algorithms, code=""):
    return evaluate_security(algorithms, code, CryptoRulesManager())


def test_no_issues_is_strong():
    assessment = analyze_strength([], [])
    assert assessment.overall == "strong"
    assert assessment.score == 100
    assert set(assessment.factors.values()) == {100}


def test_ecb_without_padding_and_short_key():
    issues = _issues([_algorithm("AES", mode="ECB", padding="NoPadding", key_size=64)])
    by_text = {issue.issue: issue.severity for issue in issues}
    assert by_text == {
        "ECB mode used with AES leaks plaintext patterns": "high",
        "AES in block mode with no padding": "medium",
        "Key size is too short for AES: 64 bits (minimum 128)": "high",
    }

    assessment = analyze_strength([], issues)
    assert assessment.factors["mode"] == 60
    assert assessment.factors["keySize"] == 75
    assert assessment.score == 84
    assert assessment.overall == "moderate"


def test_missing_padding_in_padded_mode_is_low():
    issues = _issues([_algorithm("AES", mode="CBC")])
    assert [(issue.severity, issue.issue) for issue in issues] == [("low", "AES in block mode with no padding")]
    assert _issues([_algorithm("AES", mode="GCM")]) == []


def test_word_key_sizes():
    assert key_size_bits(8) == 256
    assert key_size_bits(4) == 128
    assert key_size_bits(128) == 128
    assert _issues([_algorithm("AES", key_size=8)]) == []
    assert _issues([_algorithm("AES-GCM", key_size=2)])[0].issue == \
        "Key size is too short for AES-GCM: 64 bits (minimum 128)"


def test_broken_primitives():
    issues = _issues([_algorithm("MD5", "hash"), _algorithm("SHA1", "hash"), _algorithm("RC4"), _algorithm("DES")])
    assert [(issue.algorithm, issue.severity) for issue in issues] == [
        ("MD5", "high"), ("SHA1", "medium"), ("RC4", "critical"), ("DES", "critical"),
    ]
    assert _issues([_algorithm("SHA256", "hash")]) == []


def test_math_random_needs_a_detection():
    code = "var iv = Math.random().toString(16);"
    assert _issues([], code) == []
    issues = _issues([_algorithm("AES")], code)
    assert [issue.severity for issue in issues] == ["high"]
    assert "Math.random()" in issues[0].issue


def test_hard_coded_key():
    issues = _issues([], 'var c = CryptoJS.AES.encrypt(data, "0123456789abcdef");')
    assert [(issue.severity, issue.issue) for issue in issues] == [("critical", "Hard-coded encryption key literal")]
    node = _issues([], 'crypto.createCipheriv("aes-128-cbc", "supersecretkey!!", iv);')
    assert node and node[0].severity == "critical"
    assert _issues([], "CryptoJS.AES.encrypt(data, key);") == []


def test_issue_classification():
    assert classify_issue(SecurityIssue("high", "Key length below 2048")) == "keySize"
    assert classify_issue(SecurityIssue("high", "IV reused across messages")) == "mode"
    assert classify_issue(SecurityIssue("high", "MD5 is a broken hash function")) == "algorithm"
    assert classify_issue(SecurityIssue("critical", "Hard-coded encryption key literal")) == "implementation"


def test_three_critical_issues_across_factors_are_broken():
    issues = [
        SecurityIssue("critical", "RC4 is a broken cipher"),
        SecurityIssue("critical", "DES is a broken cipher"),
        SecurityIssue("critical", "Hard-coded encryption key literal"),
    ]
    assessment = analyze_strength([], issues)
    assert assessment.factors["algorithm"] == 20
    assert assessment.factors["implementation"] == 60
    assert assessment.overall == "broken"
    assert assessment.score == 39


def test_critical_issues_in_one_factor_rate_by_score():
    issues = [SecurityIssue("critical", "RC4 is a broken cipher")] * 3
    assessment = analyze_strength([], issues)
    # algorithm factor 0, the other three untouched
    assert assessment.score == 75
    assert assessment.overall == "moderate"


def test_boolean_key_size_is_not_a_key_length():
    assert _issues([_algorithm("AES", key_size=True)]) == []
