import json

from obscura.core.deobfuscator import DeobfuscateOptions
from obscura.core.engine import ObscuraEngine
from obscura.utils.report_generator import ReportGenerator

RAW = DeobfuscateOptions(beautify=False)


def test_analyze_text_detects_crypto_in_recovered_code():
    code = 'var _0x1a2b = ["MD5", "log"];\nconsole[_0x1a2b[1]](CryptoJS[_0x1a2b[0]](data));\n'
    result = ObscuraEngine().analyze_text(code, options=RAW)

    assert "javascript-obfuscator" in result.obfuscation_types
    assert "CryptoJS.MD5(data)" in result.deobfuscation.code
    assert "MD5" in [algorithm.name for algorithm in result.crypto.algorithms]
    assert result.file_size == len(code)

    document = result.to_dict()
    assert document["metadata"]["inputFile"] == "text_input"
    assert document["deobfuscation"]["code"] == result.deobfuscation.code
    assert document["crypto"]["strength"]["overall"] == result.crypto.strength.overall


def test_verbose_progress(capsys, string_array_code):
    ObscuraEngine(verbose=True).analyze_text(string_array_code)
    out = capsys.readouterr().out
    assert "[*] Classifying obfuscation techniques..." in out
    assert "[+] Analysis complete!" in out


def test_analyze_file_and_export(tmp_path, string_array_code):
    source = tmp_path / "sample.js"
    source.write_text(string_array_code, encoding="utf-8")

    engine = ObscuraEngine()
    result = engine.analyze_file(str(source), options=RAW)
    assert result.input_file == "sample.js"
    assert result.file_size == source.stat().st_size

    out_dir = tmp_path / "out"
    engine.export_results(result, str(out_dir), "sample")
    assert (out_dir / "sample.deobfuscated.js").read_text(encoding="utf-8") == result.deobfuscation.code
    exported = json.loads((out_dir / "sample.json").read_text(encoding="utf-8"))
    assert exported["metadata"]["obfuscationTypes"] == result.obfuscation_types


def test_rules_file_is_loaded(tmp_path):
    rules = tmp_path / "rules.yaml"
    rules.write_text("keywords:\n  - {name: Speck, type: symmetric, keywords: [Speck]}\n", encoding="utf-8")
    engine = ObscuraEngine(rules_file=str(rules))
    assert [algorithm.name for algorithm in engine.detect_crypto("speck(x);").algorithms] == ["Speck"]


def test_summarize_files(tmp_path):
    path = tmp_path / "a.js"
    path.write_text("function hello() { return 1; }\n", encoding="utf-8")
    project = ObscuraEngine().summarize_files([str(path)])
    assert project.total_files == 1
    assert project.file_summaries[0].key_functions == ["hello"]


def test_markdown_report(cryptojs_ecb_code):
    result = ObscuraEngine().analyze_text(cryptojs_ecb_code, input_name="crypto.js")
    report = ReportGenerator().generate_markdown(result, "crypto.js")

    assert report.startswith("# Obscura Analysis Report: crypto.js")
    assert "**Input File**: `crypto.js`" in report
    for heading in ("## Summary", "## Transformations", "## Cryptographic Algorithms",
                    "## Crypto Libraries", "## Security Assessment", "### Issues", "## Recovered Code"):
        assert heading in report
    assert "[HIGH]" in report


def test_report_sections_without_code(string_array_code):
    result = ObscuraEngine().deobfuscate(string_array_code)
    report = ReportGenerator(include_code=False).generate_deobfuscation_markdown(result)
    assert "## Transformations" in report
    assert "| 1 | `extract-string-arrays` | applied |" in report
    assert "## Recovered Code" not in report
    assert "## Cryptographic Algorithms" not in report


def test_crypto_report_without_detections():
    result = ObscuraEngine().detect_crypto("var a = 1;")
    report = ReportGenerator().generate_crypto_markdown(result)
    assert "*No cryptographic primitives detected.*" in report
    assert "**Overall**: STRONG (100/100)" in report
    assert ReportGenerator._format_bytes(2048) == "2.0 KB"
