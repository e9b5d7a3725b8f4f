import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient  # noqa: E402

from obscura.interfaces.api import app  # noqa: E402

client = TestClient(app)


def test_root_and_health():
    assert client.get("/").json()["endpoints"]["deobfuscate"] == "/api/deobfuscate"
    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert "readable" in health["presets"]


def test_deobfuscate(string_array_code):
    response = client.post("/api/deobfuscate", json={"code": string_array_code, "beautify": False})
    assert response.status_code == 200
    document = response.json()
    assert 'console.log("Hello");' in document["code"]
    assert document["obfuscationType"] == ["javascript-obfuscator"]
    assert set(document) == {
        "code", "transformations", "warnings", "unresolvedParts", "confidence", "obfuscationType",
        "readabilityScore", "analysis",
    }


def test_deobfuscate_with_preset(string_array_code):
    response = client.post("/api/deobfuscate", json={"code": string_array_code, "preset": "readable"})
    assert response.status_code == 200
    assert "_0x" not in response.json()["code"]


def test_unknown_preset_is_rejected():
    response = client.post("/api/deobfuscate", json={"code": "var a = 1;", "preset": "turbo"})
    assert response.status_code == 422


@pytest.mark.parametrize("path", ["/api/deobfuscate", "/api/crypto", "/api/classify"])
def test_empty_code_is_rejected(path):
    response = client.post(path, json={"code": "   "})
    assert response.status_code == 400


def test_crypto(cryptojs_ecb_code):
    response = client.post("/api/crypto", json={"code": cryptojs_ecb_code})
    assert response.status_code == 200
    document = response.json()
    assert "AES" in [algorithm["name"] for algorithm in document["algorithms"]]
    assert document["strength"]["score"] < 100
    assert any(issue["severity"] == "high" for issue in document["securityIssues"])


def test_classify(packed_code):
    response = client.post("/api/classify", json={"code": packed_code})
    assert response.status_code == 200
    assert "packer" in response.json()["obfuscationType"]
