import json

import pytest

from obscura.core.jsvmp import JSVMPDeobfuscator


def test_interpreter_features(vm_code):
    features = JSVMPDeobfuscator().detect_jsvmp(vm_code)
    assert features is not None
    assert features.instruction_count == 5
    assert features.has_switch
    assert features.has_program_counter
    assert features.has_instruction_array
    assert features.interpreter_location == "line 4 in run()"
    assert features.complexity == "low"


def test_small_switch_is_not_a_vm():
    code = "while (true) { switch (x) { case 1: a(); break; case 2: b(); break; } }"
    assert JSVMPDeobfuscator().detect_jsvmp(code) is None


def test_regex_fallback_for_unparsable_code():
    code = "while (1) { switch (op) { case 1: x(); case 2: y(); } } }}"
    features = JSVMPDeobfuscator().detect_jsvmp(code)
    assert features is not None
    assert features.instruction_count == 2


def test_vm_type_identification():
    jsvmp = JSVMPDeobfuscator()
    assert jsvmp.identify_vm_type("var _0x12ab = 1;") == "obfuscator.io"
    assert jsvmp.identify_vm_type("[][(![]+[])[+[]]]" * 10) == "jsfuck"
    assert jsvmp.identify_vm_type("$=~[];$={___:++$};") == "jjencode"
    assert jsvmp.identify_vm_type("var a = 1;") == "custom"


def test_instruction_extraction(vm_code):
    instructions = JSVMPDeobfuscator().extract_instructions(vm_code)
    assert [instruction.opcode for instruction in instructions] == [0, 1, 2, 3, 4]
    assert instructions[0].type == "stack"
    assert instructions[3].type == "call"
    assert instructions[0].name == "INST_0"


def test_obfuscator_io_restoration():
    code = 'var _0x1a2b = ["log", "Hello"];\nconsole[_0x1a2b[0]](_0x1a2b[1], 0x10);\n'
    restoration = JSVMPDeobfuscator().restore_obfuscator_io(code)
    assert 'console["log"]("Hello", 16);' in restoration.code
    assert restoration.confidence == pytest.approx(0.75)


def test_custom_vm_restoration_removes_debugger(vm_code):
    result = JSVMPDeobfuscator().deobfuscate("debugger;\n" + vm_code)
    assert result.is_jsvmp
    assert result.vm_type == "custom"
    assert "debugger" not in result.code
    assert result.confidence == 0.35
    assert result.unresolved_parts


def test_constant_jsfuck_payload_is_folded():
    code = '"a" + "b";' + " " * 10
    restoration = JSVMPDeobfuscator().restore_encoded(code, "jsfuck")
    assert restoration.code == "ab"


def test_encoded_payload_without_provider_is_unresolved():
    code = "[][(![]+[])[+[]]]"
    restoration = JSVMPDeobfuscator().restore_encoded(code, "jsfuck")
    assert restoration.code == code
    assert restoration.unresolved_parts


def test_encoded_payload_decoded_by_provider(scripted_provider):
    provider = scripted_provider(json.dumps({"decoded": "alert(1)", "confidence": 0.8}))
    restoration = JSVMPDeobfuscator(provider).restore_encoded("[][(![]+[])[+[]]]", "jsfuck")
    assert restoration.code == "alert(1)"
    assert restoration.confidence == 0.8


def test_provider_confidence_is_clamped(scripted_provider):
    reply = '{"decoded": "alert(1)", "confidence": ' + "9" * 400 + "}"
    restoration = JSVMPDeobfuscator(scripted_provider(reply)).restore_encoded("[][(![]+[])[+[]]]", "jsfuck")
    assert restoration.confidence == 0.9


def test_provider_failure_keeps_code(failing_provider):
    restoration = JSVMPDeobfuscator(failing_provider).restore_encoded("[][(![]+[])[+[]]]", "jsfuck")
    assert restoration.code == "[][(![]+[])[+[]]]"
    assert restoration.confidence == 0.1


def test_no_vm_means_no_change():
    result = JSVMPDeobfuscator().deobfuscate("var a = 1;")
    assert not result.is_jsvmp
    assert result.code == "var a = 1;"
