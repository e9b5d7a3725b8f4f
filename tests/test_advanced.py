import pytest

from obscura.core.advanced import VM_MARKER, AdvancedDeobfuscator, _BranchPruner


def _hide(text):
    return "".join("\u200c" if bit == "1" else "\u200b" for char in text for bit in format(ord(char), "08b"))


def test_invisible_unicode_is_decoded():
    code = f"var a = 1;//{_hide('hi')}\n"
    advanced = AdvancedDeobfuscator()
    assert advanced.detect_invisible_unicode(code)
    assert advanced.decode_invisible_unicode(code) == "var a = 1;//hi\n"


def test_vm_detection(vm_code):
    info = AdvancedDeobfuscator().detect_vm_protection(vm_code)
    assert info.detected
    assert info.type == "stack-vm"
    assert info.instruction_count == 5
    assert info.line == 4


def test_vm_structure(vm_code):
    structure = AdvancedDeobfuscator().analyze_vm_structure(vm_code)
    assert structure.has_interpreter
    assert structure.has_stack
    assert structure.interpreter_function == "run"
    assert structure.instruction_array == "bytecode"


def test_vm_left_in_place_without_aggressive_vm(vm_code):
    result = AdvancedDeobfuscator().deobfuscate(vm_code)
    assert "vm-protection" in result.detected_techniques
    assert "function run" in result.code
    assert any("left in place" in part.reason for part in result.unresolved_parts)


def test_aggressive_vm_strips_interpreter(vm_code):
    result = AdvancedDeobfuscator().deobfuscate(vm_code, aggressive_vm=True)
    assert f"/* {VM_MARKER}: run */" in result.code
    assert "/* VM bytecode removed: bytecode */" in result.code
    assert any(VM_MARKER in warning for warning in result.warnings)


def test_opaque_predicate_removal():
    code = "if (3 > 2) { live(); } else { dead(); }"
    result = AdvancedDeobfuscator().remove_opaque_predicates(code)
    assert "live();" in result
    assert "dead()" not in result


def test_dead_code_after_return_keeps_hoisted_declarations():
    code = "function f() {\n  return 1;\n  unreachable();\n  var x = 2;\n}\n"
    result = AdvancedDeobfuscator().remove_dead_code(code)
    assert "unreachable" not in result
    assert "var x;" in result
    assert "return 1;" in result


def test_rotation_wrapper_is_removed():
    code = (
        'var _0xabc = ["a", "b", "c"];\n'
        '(function (arr, n) {\n'
        '  while (--n) {\n'
        '    try { arr.push(arr.shift()); } catch (e) { arr.push(arr.shift()); }\n'
        '  }\n'
        '})(_0xabc, 3);\n'
        'use(_0xabc[0]);\n'
    )
    result = AdvancedDeobfuscator().deobfuscate(code)
    assert "string-array-rotation" in result.detected_techniques
    assert "shift" not in result.code
    assert "use(_0xabc[0]);" in result.code


def test_unparsable_input_produces_warnings_not_errors():
    result = AdvancedDeobfuscator().deobfuscate("function (")
    assert result.code == "function ("
    assert result.detected_techniques == []
    assert any("detection skipped" in warning for warning in result.warnings)


def test_confidence_is_clamped():
    advanced = AdvancedDeobfuscator()
    assert advanced.calculate_confidence([], ["w"] * 20, "a") == 0.1
    assert 0.1 <= advanced.calculate_confidence(["x"] * 10, [], "var a;") <= 0.95


def test_llm_cleanup_uses_fenced_reply(scripted_provider, flattened_code):
    provider = scripted_provider("Here you go:\n```javascript\nfirst();\nsecond();\n```")
    advanced = AdvancedDeobfuscator(provider)
    assert advanced.llm_cleanup(flattened_code, ["control-flow-flattening"]) == "first();\nsecond();"


def test_llm_cleanup_rejects_invalid_code(scripted_provider, failing_provider):
    code = "var a = 1;"
    assert AdvancedDeobfuscator(scripted_provider("```js\nfunction (\n```")).llm_cleanup(code, []) == code
    assert AdvancedDeobfuscator(failing_provider).llm_cleanup(code, []) == code
    assert AdvancedDeobfuscator().llm_cleanup(code, []) == code


def test_branch_pruner_needs_a_decision_rule():
    with pytest.raises(TypeError):
        _BranchPruner("if (1) { a(); }")
