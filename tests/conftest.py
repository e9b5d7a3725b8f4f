import sys
from pathlib import Path
from typing import List, Union

import pytest

# src/ layout: make the obscura package importable without installing it
repo_root = Path(__file__).resolve().parents[1]
src_dir = repo_root / "src"
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from obscura.core.completion import CompletionProvider, CompletionResponse  # noqa: E402
from obscura.core.errors import CompletionError  # noqa: E402


class ScriptedProvider(CompletionProvider):
    """Completion provider that replays canned replies in order

    A reply that is an Exception instance is raised instead of returned.
    Once the script is exhausted the last reply repeats.
    """

    def __init__(self, replies: List[Union[str, Exception]]):
        self.replies = list(replies)
        self.calls = []

    def chat(self, messages):
        self.calls.append(messages)
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        reply = self.replies[index]
        if isinstance(reply, Exception):
            raise reply
        return CompletionResponse(content=reply)


@pytest.fixture
def scripted_provider():
    """Factory: scripted_provider("reply", CompletionError("down"), ...)"""
    def make(*replies):
        return ScriptedProvider(list(replies))
    return make


@pytest.fixture
def failing_provider():
    return ScriptedProvider([CompletionError("provider offline")])


@pytest.fixture
def string_array_code():
    return 'var _0x1a2b = ["log", "Hello"];\nconsole[_0x1a2b[0]](_0x1a2b[1]);\n'


@pytest.fixture
def hex_string_code():
    return 'var greeting = "\\x48\\x65\\x6c\\x6c\\x6f";\nconsole.log(greeting);\n'


@pytest.fixture
def flattened_code():
    return (
        'var order = "2|0|1".split("|"), i = 0;\n'
        'while (true) {\n'
        '  switch (order[i++]) {\n'
        '    case "0": second(); continue;\n'
        '    case "1": third(); continue;\n'
        '    case "2": first(); continue;\n'
        '  }\n'
        '  break;\n'
        '}\n'
    )


@pytest.fixture
def vm_code():
    return (
        'var bytecode = [1, 5, 1, 7, 2, 3, 0, 4, 1, 2, 3];\n'
        'function run(code) {\n'
        '  var pc = 0, stack = [];\n'
        '  while (true) {\n'
        '    switch (code[pc++]) {\n'
        '      case 0: return stack.pop();\n'
        '      case 1: stack.push(code[pc++]); break;\n'
        '      case 2: stack.push(stack.pop() + stack.pop()); break;\n'
        '      case 3: console.log(stack[stack.length - 1]); break;\n'
        '      case 4: stack.push(stack.pop() * 2); break;\n'
        '    }\n'
        '  }\n'
        '}\n'
        'run(bytecode);\n'
    )


@pytest.fixture
def packed_code():
    return "eval(function(p,a,c,k,e,d){return p}('0(\"1\")',62,2,'alert|hi'.split('|'),0,{}))"


@pytest.fixture
def cryptojs_ecb_code():
    return (
        'var key = CryptoJS.enc.Utf8.parse(secret);\n'
        'var encrypted = CryptoJS.AES.encrypt(data, key, {\n'
        '  mode: CryptoJS.mode.ECB,\n'
        '  padding: CryptoJS.pad.NoPadding,\n'
        '  keySize: 64\n'
        '});\n'
    )
