import pytest

from obscura.core.deobfuscator import (
    ANALYSIS_UNAVAILABLE, DEFAULT_ANALYSIS, DeobfuscateOptions, Deobfuscator, TransformationRecord,
    confidence_score, merge_obfuscation_types, readability_score, should_run,
)
from obscura.core.errors import JSParseError, PipelineError
from obscura.core.jsparse import beautify_js, is_valid_javascript
from obscura.core.jsvmp import JSVMPResult

RAW = DeobfuscateOptions(beautify=False)


def test_should_run():
    assert should_run(None, True, ["packer"], ["packer"])
    assert not should_run(False, True, ["packer"], ["packer"])
    assert should_run(True, False, [], ["packer"])
    assert not should_run(None, False, ["packer"], ["packer"])
    assert not should_run(None, True, ["hex-encoding"], ["packer"])


def test_repeat_call_returns_cached_object(string_array_code):
    deobfuscator = Deobfuscator()
    first = deobfuscator.deobfuscate(string_array_code)
    assert deobfuscator.deobfuscate(string_array_code) is first
    assert deobfuscator.deobfuscate(string_array_code, DeobfuscateOptions()) is first
    assert deobfuscator.deobfuscate(string_array_code, RAW) is not first

    deobfuscator.clear_cache()
    assert deobfuscator.deobfuscate(string_array_code) is not first


def test_cache_is_per_instance(string_array_code):
    assert Deobfuscator().deobfuscate(string_array_code) is not Deobfuscator().deobfuscate(string_array_code)


def test_string_array_pipeline(string_array_code):
    result = Deobfuscator().deobfuscate(string_array_code, RAW)
    assert result.code == 'var _0x1a2b = ["log", "Hello"];\nconsole.log("Hello");\n'
    assert [record.type for record in result.transformations] == [
        "extract-string-arrays", "decrypt-arrays", "ast-optimize",
    ]
    assert all(record.success for record in result.transformations)
    assert result.obfuscation_types == ["javascript-obfuscator"]
    assert result.analysis == DEFAULT_ANALYSIS


def test_readable_preset_renames(string_array_code):
    options = DeobfuscateOptions.from_preset("readable", beautify=False)
    result = Deobfuscator().deobfuscate(string_array_code, options)
    assert "_0x" not in result.code
    assert result.transformations[-1].type == "rename-variables"


def test_ast_optimize_can_be_disabled(string_array_code):
    result = Deobfuscator().deobfuscate(string_array_code, DeobfuscateOptions(beautify=False, ast_optimize=False))
    assert 'console["log"]("Hello");' in result.code
    assert "ast-optimize" not in [record.type for record in result.transformations]


def test_packed_input_is_unpacked(packed_code):
    result = Deobfuscator().deobfuscate(packed_code, RAW)
    assert result.code == 'alert("hi")'
    unpack = result.transformations[0]
    assert unpack.type == "unpack"
    assert unpack.description == "Unpacked Packer obfuscation (Packer)"
    assert "packer" in result.obfuscation_types


def test_hex_strings_go_through_advanced_stage(hex_string_code):
    result = Deobfuscator().deobfuscate(hex_string_code, RAW)
    assert 'var greeting = "Hello";' in result.code
    advanced = result.transformations[0]
    assert advanced.type == "advanced"
    assert "string-encoding" in advanced.description


def test_vm_protected_input(vm_code):
    result = Deobfuscator().deobfuscate(vm_code)
    jsvmp = [record for record in result.transformations if record.type == "jsvmp"]
    assert jsvmp and jsvmp[0].success
    assert "type: custom" in jsvmp[0].description
    assert any(warning.startswith("[JSVMP] ") for warning in result.warnings)
    assert any(warning.startswith("[Advanced] ") for warning in result.warnings)
    assert "vm-protection" in result.obfuscation_types
    assert result.unresolved_parts


def test_conservative_preset_skips_vm_stages(vm_code):
    result = Deobfuscator().deobfuscate(vm_code, DeobfuscateOptions.from_preset("conservative"))
    types = [record.type for record in result.transformations]
    assert "jsvmp" not in types
    assert "advanced" not in types


def test_low_confidence_vm_restoration_is_discarded(monkeypatch):
    deobfuscator = Deobfuscator()
    monkeypatch.setattr(deobfuscator.jsvmp, "deobfuscate", lambda code, aggressive=False: JSVMPResult(
        is_jsvmp=True, code="replaced();", vm_type="custom", confidence=0.2))

    result = deobfuscator.deobfuscate("var a = 1;", DeobfuscateOptions(jsvmp=True, beautify=False))
    assert result.code == "var a = 1;"
    record = result.transformations[0]
    assert record.type == "jsvmp"
    assert not record.success
    assert any("confidence too low" in warning for warning in result.warnings)


def test_aggressive_forces_vm_and_advanced_stages(monkeypatch):
    deobfuscator = Deobfuscator()
    calls = []
    original_jsvmp = deobfuscator.jsvmp.deobfuscate
    original_advanced = deobfuscator.advanced.deobfuscate

    def jsvmp_spy(code, **kwargs):
        calls.append("jsvmp")
        return original_jsvmp(code, **kwargs)

    def advanced_spy(code, **kwargs):
        calls.append("advanced")
        return original_advanced(code, **kwargs)

    monkeypatch.setattr(deobfuscator.jsvmp, "deobfuscate", jsvmp_spy)
    monkeypatch.setattr(deobfuscator.advanced, "deobfuscate", advanced_spy)

    deobfuscator.deobfuscate("var a = 1;", DeobfuscateOptions(aggressive=True))
    assert calls == ["jsvmp", "advanced"]

    calls.clear()
    deobfuscator.deobfuscate("var a = 1;", DeobfuscateOptions(aggressive=True, jsvmp=False))
    assert calls == ["advanced"]


def test_unparsable_input_records_failures():
    result = Deobfuscator().deobfuscate("function (")
    assert result.code == "function ("
    assert len(result.transformations) == 6
    assert not any(record.success for record in result.transformations)
    assert all(record.description.startswith("Failed: ") for record in result.transformations)
    assert result.obfuscation_types == ["unknown"]


def test_parse_error_in_stage_becomes_failed_record(monkeypatch):
    deobfuscator = Deobfuscator()

    def broken(code):
        raise JSParseError("Unexpected token", line=1, column=3)

    monkeypatch.setattr(deobfuscator.unpacker, "unpack", broken)
    result = deobfuscator.deobfuscate("var a = 1;", DeobfuscateOptions(unpack=True, beautify=False))
    record = result.transformations[0]
    assert record.type == "unpack"
    assert not record.success
    assert "Unexpected token" in record.description
    assert result.code == "var a = 1;"


def test_other_stage_errors_abort_with_pipeline_error(monkeypatch):
    deobfuscator = Deobfuscator()

    def broken(code):
        raise RuntimeError("boom")

    monkeypatch.setattr(deobfuscator.unpacker, "unpack", broken)
    with pytest.raises(PipelineError) as excinfo:
        deobfuscator.deobfuscate("var a = 1;", DeobfuscateOptions(unpack=True))
    assert excinfo.value.stage == "unpack"
    assert isinstance(excinfo.value.cause, RuntimeError)


def test_llm_analysis(scripted_provider, string_array_code):
    provider = scripted_provider("Logs a greeting to the console.")
    result = Deobfuscator(provider).deobfuscate(string_array_code, DeobfuscateOptions(llm=True))
    assert result.analysis == "Logs a greeting to the console."
    assert result.transformations[-1].type == "llm-analysis"
    assert len(provider.calls) == 1


def test_llm_failure_is_a_warning(failing_provider, string_array_code):
    result = Deobfuscator(failing_provider).deobfuscate(string_array_code, DeobfuscateOptions(llm=True))
    assert result.analysis == ANALYSIS_UNAVAILABLE
    assert ANALYSIS_UNAVAILABLE in result.warnings


def test_llm_without_provider_is_skipped(string_array_code):
    result = Deobfuscator().deobfuscate(string_array_code, DeobfuscateOptions(llm=True))
    assert result.analysis == DEFAULT_ANALYSIS
    assert result.warnings == []


def test_output_is_beautified():
    result = Deobfuscator().deobfuscate("function f(){return 1}")
    assert "\n" in result.code
    assert is_valid_javascript(result.code)


def test_beautify_keeps_leading_string_table():
    code = "var _0x1a2b=['log','hi'];function _0x3c(i){return _0x1a2b[i];}console[_0x3c(0)](_0x3c(1));"
    pretty = beautify_js(code)
    assert "var _0x1a2b = ['log', 'hi'];" in pretty
    assert "console[_0x3c(0)](_0x3c(1));" in pretty
    assert is_valid_javascript(pretty)


def test_argument_validation():
    deobfuscator = Deobfuscator()
    with pytest.raises(TypeError):
        deobfuscator.deobfuscate(123)
    with pytest.raises(TypeError):
        deobfuscator.deobfuscate("var a;", {"auto": True})


def test_options():
    with pytest.raises(TypeError):
        DeobfuscateOptions(auto="yes")
    with pytest.raises(ValueError):
        DeobfuscateOptions.from_preset("nope")
    with pytest.raises(TypeError):
        DeobfuscateOptions.from_preset("readable", bogus=True)

    aggressive = DeobfuscateOptions.from_preset("aggressive", llm=True)
    assert aggressive.aggressive and aggressive.aggressive_vm and aggressive.llm
    assert DeobfuscateOptions().to_dict()["ast_optimize"] is None


def test_merge_obfuscation_types():
    records = [
        TransformationRecord("unpack", "Unpacked Packer obfuscation (Packer -> Eval)", True),
        TransformationRecord("jsvmp", "JSVMP detected but confidence too low", False),
        TransformationRecord("advanced", "Advanced deobfuscation applied: opaque-predicates", True),
    ]
    assert merge_obfuscation_types(["unknown"], records) == ["packer", "eval-obfuscation", "opaque-predicates"]
    assert merge_obfuscation_types(["unknown"], []) == ["unknown"]


def test_scores():
    assert readability_score("") == 20
    assert readability_score("var _0x1=1;") < readability_score("// sum\nvar total = first + second;\n")
    assert confidence_score([], 100, 0) == 0.4
    assert confidence_score([], 0, 50) == 0.1
    succeeded = [TransformationRecord("t", "d", True)] * 5
    assert confidence_score(succeeded, 100, 0) == 0.95
