import math

import pytest

from obscura.core.jsparse import MISSING
from obscura.core.optimizer import fold_binary, fold_unary, js_truthy, optimize


@pytest.mark.parametrize("source", [
    "",
    "function (",
    "var a = ;",
    "}}}{{{",
    "\x00\x01\x02",
    "var s = 'unterminated",
])
def test_unparsable_input_is_returned_unchanged(source):
    assert optimize(source) == source


def test_arithmetic_and_string_folding():
    assert optimize("var a = 1 + 2 * 3;") == "var a = 7;"
    assert optimize('var s = "ab" + "cd";') == 'var s = "abcd";'
    assert optimize('var s = "n" + 1;') == 'var s = "n1";'


def test_division_by_zero_is_not_folded():
    assert optimize("var a = 1 / 0;") == "var a = 1 / 0;"


def test_constant_if_keeps_live_branch():
    result = optimize("if (true) { keep(); } else { drop(); }")
    assert "keep()" in result
    assert "drop()" not in result


def test_false_if_without_alternate_is_dropped():
    result = optimize("before();\nif (false) { never(); }\nafter();")
    assert "never" not in result
    assert "before();" in result and "after();" in result


def test_computed_member_becomes_dot_access():
    assert optimize('console["log"](1);') == "console.log(1);"
    assert optimize('obj["not valid"];') == 'obj["not valid"];'


def test_double_negation():
    assert optimize("var b = !!x;") == "var b = Boolean(x);"
    assert optimize("var b = !![];") == "var b = true;"


def test_sequence_statement_is_split():
    assert optimize("a(), b();") == "a();\nb();"


def test_logical_short_circuit():
    assert optimize("var v = 0 || fallback;") == "var v = fallback;"


def test_untouched_code_is_identical():
    source = "// comment\nfunction f(x) {\n  return x.y;\n}\n"
    assert optimize(source) == source


def test_fold_helpers():
    assert fold_binary("|", 5, 2) == 7
    assert fold_binary(">>>", -1, 28) == 15
    assert fold_binary("==", 1, "1") is MISSING
    assert fold_binary("===", 1, "1") is False
    assert fold_unary("typeof", "x") == "string"
    assert fold_unary("~", 0) == -1
    assert not js_truthy(math.nan)
    assert js_truthy("0")
