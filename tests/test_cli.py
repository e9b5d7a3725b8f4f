import io
import json

import pytest
import yaml

from obscura.cli import build_parser, main, options_from_args


@pytest.fixture
def script(tmp_path, string_array_code):
    path = tmp_path / "sample.js"
    path.write_text(string_array_code, encoding="utf-8")
    return path


def test_classify_json(script, capsys):
    assert main(["classify", str(script), "--format", "json"]) == 0
    assert json.loads(capsys.readouterr().out) == {"obfuscationType": ["javascript-obfuscator"]}


def test_deobfuscate_json(script, capsys):
    assert main(["deobfuscate", str(script), "--format", "json", "--no-beautify"]) == 0
    document = json.loads(capsys.readouterr().out)
    assert 'console.log("Hello");' in document["code"]
    assert document["transformations"][0]["type"] == "extract-string-arrays"


def test_deobfuscate_text_output_file(script, tmp_path, capsys):
    output = tmp_path / "clean.js"
    assert main(["deobfuscate", str(script), "--preset", "readable", "-o", str(output)]) == 0
    text = output.read_text(encoding="utf-8")
    assert text.startswith("// Obfuscation: javascript-obfuscator")
    assert "// [+] rename-variables:" in text
    assert "[+] Output written to" in capsys.readouterr().err


def test_deobfuscate_with_crypto(tmp_path, cryptojs_ecb_code, capsys):
    path = tmp_path / "crypto.js"
    path.write_text(cryptojs_ecb_code, encoding="utf-8")
    assert main(["deobfuscate", str(path), "--crypto", "--format", "json"]) == 0
    document = json.loads(capsys.readouterr().out)
    assert set(document) == {"metadata", "deobfuscation", "crypto"}
    assert document["crypto"]["securityIssues"]


def test_crypto_text(tmp_path, cryptojs_ecb_code, capsys):
    path = tmp_path / "crypto.js"
    path.write_text(cryptojs_ecb_code, encoding="utf-8")
    assert main(["crypto", str(path)]) == 0
    out = capsys.readouterr().out
    assert out.startswith("Crypto strength: ")
    assert "[library] CryptoJS" in out
    assert "[high] ECB mode used with AES leaks plaintext patterns" in out


def test_crypto_markdown(tmp_path, cryptojs_ecb_code, capsys):
    path = tmp_path / "crypto.js"
    path.write_text(cryptojs_ecb_code, encoding="utf-8")
    assert main(["crypto", str(path), "--format", "markdown"]) == 0
    assert "# Obscura Analysis Report: crypto.js" in capsys.readouterr().out


def test_export_rules(capsys):
    assert main(["crypto", "-", "--export-rules"]) == 0
    document = yaml.safe_load(capsys.readouterr().out)
    assert set(document) == {"keywords", "libraries", "constants", "security"}


def test_unpack(tmp_path, packed_code, capsys):
    path = tmp_path / "packed.js"
    path.write_text(packed_code, encoding="utf-8")
    assert main(["unpack", str(path), "--format", "json"]) == 0
    document = json.loads(capsys.readouterr().out)
    assert document == {"success": True, "type": "Packer", "layers": ["Packer"], "code": 'alert("hi")'}


def test_unpack_reads_stdin(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("var a = 1;"))
    assert main(["unpack", "-"]) == 0
    captured = capsys.readouterr()
    assert captured.out.strip() == "var a = 1;"
    assert "No unpackable layer found" in captured.err


def test_missing_file_exits_with_error(tmp_path, capsys):
    assert main(["classify", str(tmp_path / "missing.js")]) == 1
    assert "[!] Error:" in capsys.readouterr().err


def test_broken_rules_file_exits_with_error(tmp_path, script, capsys):
    rules = tmp_path / "rules.yaml"
    rules.write_text("nonsense: true\n", encoding="utf-8")
    assert main(["crypto", str(script), "--rules", str(rules)]) == 1
    assert "Unknown rule sections" in capsys.readouterr().err


def test_options_from_flags():
    parser = build_parser()
    options = options_from_args(parser.parse_args(["deobfuscate", "x.js", "--no-jsvmp", "--rename-variables"]))
    assert options.jsvmp is False
    assert options.rename_variables is True
    assert options.unpack is None

    preset = options_from_args(parser.parse_args(["deobfuscate", "x.js", "--preset", "aggressive", "--no-beautify"]))
    assert preset.aggressive_vm is True
    assert preset.beautify is False


def test_command_is_required(capsys):
    with pytest.raises(SystemExit):
        main([])
