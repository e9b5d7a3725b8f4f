import json

from obscura.core.summarizer import ANALYSIS_FAILED, AISummarizer, CodeFile

APP_JS = (
    'const axios = require("axios");\n'
    'import { render } from "./view";\n'
    'function login(user) {\n'
    '  const token = "abcd1234efgh";\n'
    '  return axios.post("/api/login", user);\n'
    '}\n'
    'const hashPassword = (pw) => md5(pw);\n'
    'document.getElementById("out").innerHTML = eval(input);\n'
)


def test_basic_analysis_without_provider():
    summary = AISummarizer().summarize_file(CodeFile(url="app.js", content=APP_JS))
    assert summary.summary == "Basic analysis: 9 lines, 2 functions, 2 dependencies"
    assert summary.key_functions == ["login", "hashPassword"]
    assert summary.dependencies == ["axios", "./view"]
    assert summary.has_encryption
    assert summary.has_api
    assert summary.has_obfuscation
    assert summary.complexity == "low"
    assert summary.security_risks == [
        "Dynamic code execution via eval()",
        "Direct innerHTML assignment (XSS risk)",
        "Hard-coded credential or secret",
    ]


def test_provider_summary(scripted_provider):
    reply = json.dumps({
        "summary": "Login form handler",
        "purpose": "Authentication",
        "keyFunctions": ["login"],
        "hasAPI": True,
        "complexity": "extreme",
    })
    summary = AISummarizer(scripted_provider(reply)).summarize_file(CodeFile(url="app.js", content=APP_JS))
    assert summary.summary == "Login form handler"
    assert summary.purpose == "Authentication"
    assert summary.key_functions == ["login"]
    assert summary.has_api
    assert not summary.has_encryption
    assert summary.complexity == "low"


def test_unusable_reply_falls_back(scripted_provider, failing_provider):
    file = CodeFile(url="app.js", content=APP_JS)
    for provider in (scripted_provider("I could not analyze this."), failing_provider):
        assert AISummarizer(provider).summarize_file(file).summary.startswith("Basic analysis: ")


def test_project_summary_without_provider():
    files = [CodeFile(url="a.js", content="var a = 1;"), CodeFile(url="b.js", content="var bb = 2;")]
    project = AISummarizer().summarize_project(files)
    assert project.main_purpose == ANALYSIS_FAILED
    assert project.total_files == 2
    assert project.total_size == 21
    assert [summary.url for summary in project.file_summaries] == ["a.js", "b.js"]


def test_project_summary_with_provider(scripted_provider):
    provider = scripted_provider(
        json.dumps({"summary": "Counter"}),
        json.dumps({"mainPurpose": "Demo app", "technologies": ["vanilla JS"], "architecture": "SPA"}),
    )
    project = AISummarizer(provider).summarize_project([CodeFile(url="a.js", content="var a = 1;")])
    assert project.main_purpose == "Demo app"
    assert project.architecture == "SPA"
    assert project.technologies == ["vanilla JS"]
    assert project.file_summaries[0].summary == "Counter"
    assert project.to_dict()["fileSummaries"][0]["url"] == "a.js"
    assert len(provider.calls) == 2
