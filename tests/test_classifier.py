from obscura.core.classifier import classify, text_signatures


def test_plain_code_is_unknown():
    assert classify("function add(a, b) { return a + b; }") == ["unknown"]


def test_mangled_identifiers_and_hex_escapes(string_array_code, hex_string_code):
    assert "javascript-obfuscator" in classify(string_array_code)
    assert "hex-encoding" in classify(hex_string_code)


def test_flattened_loop_with_string_labels_is_not_vm(flattened_code):
    tags = classify(flattened_code)
    assert "control-flow-flattening" in tags
    assert "vm-protection" not in tags


def test_numeric_dispatch_switch_is_vm(vm_code):
    tags = classify(vm_code)
    assert "control-flow-flattening" in tags
    assert "vm-protection" in tags


def test_packer_and_eval(packed_code):
    tags = classify(packed_code)
    assert tags[0] == "packer"
    assert "eval-obfuscation" in tags


def test_constant_tests():
    assert "opaque-predicates" in classify("if (1 === 1) { a(); } else { b(); }")
    assert "dead-code-injection" in classify("if (false) { a(); }")


def test_base64_payload():
    assert "base64-encoding" in classify('eval(atob("YWxlcnQoJ2hlbGxvIHdvcmxkJyk7"));')


def test_rotation_wrapper():
    code = (
        'var _0xabc = ["a", "b", "c"];\n'
        '(function (arr, n) {\n'
        '  while (--n) {\n'
        '    try { arr.push(arr.shift()); } catch (e) { arr.push(arr.shift()); }\n'
        '  }\n'
        '})(_0xabc, 3);\n'
    )
    assert "string-array-rotation" in classify(code)


def test_webpack_runtime():
    assert "webpack" in classify("__webpack_require__(12);")


def test_tags_are_not_duplicated(hex_string_code):
    code = hex_string_code + 'var other = "\\x41";\n'
    tags = classify(code)
    assert len(tags) == len(set(tags))


def test_unparsable_input_is_unknown():
    assert classify("function (") == ["unknown"]


def test_unparsable_url_payload_keeps_its_tag():
    payload = "%61%6C%65%72%74%28%22%68%69%22%29%3B%20%7B"
    assert classify(payload) == ["urlencoded"]


def test_text_signatures():
    assert "jsfuck" in text_signatures("[][(![]+[])[+[]]+(![]+[])[!+[]+!+[]]+(!![]+[])[+[]]]" * 2)
    assert "invisible-unicode" in text_signatures("var a\u200b = 1;")
    assert "jjencode" in text_signatures("$=~[];$={___:++$};")
