import base64

from obscura.core.unpackers import (
    AAEncodeDecoder, EvalUnpacker, PackerUnpacker, UniversalUnpacker, URLEncodeDecoder,
)


def test_packer_radix_encoding():
    assert PackerUnpacker.base(61, 62) == "Z"
    assert PackerUnpacker.base(62, 62) == "10"
    assert PackerUnpacker.unbase("Z", 62) == 61
    assert PackerUnpacker.unbase("10", 62) == 62


def test_parse_packer_params():
    params = PackerUnpacker().parse_packer_params("'0 1',62,2,'a|b'.split('|'),0,{}")
    assert params.p == "0 1"
    assert params.a == 62
    assert params.c == 2
    assert params.k == ["a", "b"]
    assert PackerUnpacker().parse_packer_params("not, (valid") is None


def test_packer_payload_is_unpacked(packed_code):
    assert PackerUnpacker.detect(packed_code)
    assert PackerUnpacker().unpack(packed_code) == 'alert("hi")'


def test_universal_unpacker_reports_layers(packed_code):
    result = UniversalUnpacker().unpack(packed_code)
    assert result.success
    assert result.type == "Packer"
    assert result.layers == ["Packer"]
    assert result.code == 'alert("hi")'


def test_eval_of_constant_string():
    assert EvalUnpacker().unpack('eval("console.log(1)");') == "console.log(1)"


def test_eval_of_base64_payload():
    encoded = base64.b64encode(b"alert(1);").decode()
    assert EvalUnpacker().unpack(f'eval(atob("{encoded}"));') == "alert(1);"


def test_eval_of_dynamic_value_is_left_alone():
    code = "eval(payload);"
    assert EvalUnpacker().unpack(code) == code


def test_url_encoding():
    code = "%61%6C%65%72%74%28%31%29%3B%61%6C%65%72%74%28%32%29%3B"
    assert URLEncodeDecoder.detect(code)
    assert URLEncodeDecoder().unpack(code) == "alert(1);alert(2);"


def test_url_detection_needs_more_than_ten_escapes():
    assert not URLEncodeDecoder.detect("%20" * 10)
    assert URLEncodeDecoder.detect("%20" * 11)


def test_invalid_url_sequence_leaves_input_unchanged():
    code = "%E0%A4%A" + "%FF" * 11
    assert URLEncodeDecoder().unpack(code) == code


def test_aaencode_constant_payload():
    code = '"ﾟωﾟ" + "ﾉ";'
    decoder = AAEncodeDecoder()
    assert decoder.detect(code)
    assert decoder.unpack(code) == "ﾟωﾟﾉ"


def test_nothing_to_unpack():
    result = UniversalUnpacker().unpack("var a = 1;")
    assert not result.success
    assert result.type == "Unknown"
    assert result.layers == []
    assert result.code == "var a = 1;"


def test_nested_layers():
    inner = "alert(1);"
    encoded = base64.b64encode(inner.encode()).decode()
    outer = f'eval("eval(atob(\\"{encoded}\\"));");'
    result = UniversalUnpacker().unpack(outer)
    assert result.layers == ["Eval", "Eval"]
    assert result.code == inner


def test_packer_params_reject_unusable_numbers():
    unpacker = PackerUnpacker()
    assert unpacker.parse_packer_params("'0 1',1e400,2,'a|b'.split('|'),0,{}") is None
    assert unpacker.parse_packer_params("'0 1',62,1e400,'a|b'.split('|'),0,{}") is None
    assert unpacker.parse_packer_params("'0 1',99,2,'a|b'.split('|'),0,{}") is None
    assert unpacker.parse_packer_params("'0 1',1,2,'a|b'.split('|'),0,{}") is None
    assert unpacker.parse_packer_params("'0 1',62,-1,'a|b'.split('|'),0,{}") is None


def test_packer_with_infinite_radix_is_left_alone():
    code = "eval(function(p,a,c,k,e,d){return p}('0(\"1\")',1e400,2,'alert|hi'.split('|'),0,{}))"
    assert PackerUnpacker().unpack(code) == code
