import json

import pytest

from obscura.core.crypto import (
    CodeLocation, CryptoAlgorithm, CryptoDetectOptions, CryptoDetector, escape_regex, find_line_number,
)


def _names(algorithms):
    return [algorithm.name for algorithm in algorithms]


def test_merge_keeps_highest_confidence():
    low = CryptoAlgorithm(name="AES", type="symmetric", confidence=0.5, location=CodeLocation(line=1))
    high = CryptoAlgorithm(name="AES", type="symmetric", confidence=0.9, location=CodeLocation(line=7))
    md5 = CryptoAlgorithm(name="MD5", type="hash", confidence=0.7)

    merged = CryptoDetector.merge_results([low, md5, high])
    assert _names(merged) == ["AES", "MD5"]
    assert merged[0] is high


def test_cryptojs_ecb_detection(cryptojs_ecb_code):
    result = CryptoDetector().detect(cryptojs_ecb_code)
    assert "AES" in _names(result.algorithms)
    assert [library.name for library in result.libraries] == ["CryptoJS"]

    texts = " | ".join(issue.issue for issue in result.security_issues)
    assert "ECB mode" in texts
    assert "no padding" in texts
    assert "Key size is too short" in texts
    assert result.strength.score < 100
    assert 0 < result.confidence <= 1

    document = result.to_dict()
    assert set(document) == {"algorithms", "libraries", "confidence", "securityIssues", "strength"}


def test_repeat_detection_is_cached(cryptojs_ecb_code):
    detector = CryptoDetector()
    first = detector.detect(cryptojs_ecb_code)
    assert detector.detect(cryptojs_ecb_code) is first
    detector.clear_cache()
    assert detector.detect(cryptojs_ecb_code) is not first


def test_keyword_detection():
    detector = CryptoDetector()
    found = detector.detect_by_keywords("var a = 1;\nvar digest = md5(input);\n")
    assert _names(found) == ["MD5"]
    assert found[0].location.line == 2
    assert found[0].usage == "Keyword 'MD5' found"


def test_keyword_detection_respects_identifier_boundaries():
    assert CryptoDetector().detect_by_keywords("var sides = modes;") == []


def test_mode_and_padding_names_are_not_algorithms():
    assert CryptoDetector().detect_by_keywords("var opts = { m: 'ECB', p: 'NoPadding' };") == []


def test_ai_detection(scripted_provider):
    reply = json.dumps({"algorithms": [
        {"name": "AES", "type": "symmetric", "confidence": 0.95, "usage": "encrypt", "parameters": {"mode": "CBC"}},
        {"name": "Speck", "type": "weird"},
        {"type": "hash"},
    ]})
    found = CryptoDetector(scripted_provider(reply)).detect_by_ai("var x = 1;")

    assert _names(found) == ["AES", "Speck"]
    assert found[0].confidence == 0.95
    assert found[0].parameters.mode == "CBC"
    assert found[0].location.file == "ai-analysis"
    assert found[1].type == "custom"
    assert found[1].confidence == 0.5


def test_ai_detection_failures_yield_nothing(scripted_provider, failing_provider):
    assert CryptoDetector().detect_by_ai("var x;") == []
    assert CryptoDetector(failing_provider).detect_by_ai("var x;") == []
    assert CryptoDetector(scripted_provider("no json here")).detect_by_ai("var x;") == []
    assert CryptoDetector(scripted_provider('{"algorithms": "AES"}')).detect_by_ai("var x;") == []


def test_ai_parameters_reach_security_evaluation(scripted_provider):
    reply = json.dumps({"algorithms": [{"name": "AES", "type": "symmetric", "parameters": {"mode": "ECB"}}]})
    detector = CryptoDetector(scripted_provider(reply))

    assert detector.detect("var x = 1;").algorithms == []
    result = detector.detect("var x = 1;", CryptoDetectOptions(use_ai=True))
    assert _names(result.algorithms) == ["AES"]
    assert any("ECB mode" in issue.issue for issue in result.security_issues)


def test_library_version():
    code = 'CryptoJS.version = "4.1.1";\nCryptoJS.SHA256(x);'
    libraries = CryptoDetector().detect_libraries(code)
    assert libraries[0].name == "CryptoJS"
    assert libraries[0].version == "4.1.1"


def test_helpers():
    assert escape_regex("a+b*c?") == "a\\+b\\*c\\?"
    assert find_line_number("one\ntwo\nthree", "three") == 3
    assert find_line_number("one", "four") == 0


def test_argument_validation():
    with pytest.raises(TypeError):
        CryptoDetector().detect(b"var x;")
    with pytest.raises(TypeError):
        CryptoDetectOptions(use_ai="yes")


def test_custom_rules_clear_the_cache():
    detector = CryptoDetector()
    code = "speck(block, roundKeys);"
    first = detector.detect(code)
    assert first.algorithms == []

    detector.load_custom_rules(
        "keywords:\n"
        "  - name: Speck\n"
        "    type: symmetric\n"
        "    keywords: [Speck]\n"
        "    confidence: 0.65\n"
    )
    second = detector.detect(code)
    assert second is not first
    assert _names(second.algorithms) == ["Speck"]


def test_triple_des_spec_is_not_reported_as_des():
    result = CryptoDetector().detect("crypto.createCipheriv('des-ede3-cbc', key, iv);")
    assert _names(result.algorithms) == ["3DES"]
    assert not any("DES is" in issue.issue for issue in result.security_issues)
    assert _names(CryptoDetector().detect_by_keywords("var c = 'des-cbc';")) == ["DES"]


def test_ai_confidence_is_clamped(scripted_provider):
    reply = '{"algorithms": [{"name": "AES", "confidence": ' + "9" * 400 + '}, {"name": "MD5", "confidence": -3}]}'
    found = CryptoDetector(scripted_provider(reply)).detect_by_ai("var x;")
    assert [algorithm.confidence for algorithm in found] == [1.0, 0.0]
