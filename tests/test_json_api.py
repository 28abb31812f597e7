import base64
import json

import pytest

from livebooster.defs import Data, DataType
from livebooster.json_api import (
    JsonEncodeError,
    JsonWriter,
    check_type_names,
    data_type_from_str,
    data_type_to_str,
)


def test_type_names_consistent():
    assert check_type_names() == 0


@pytest.mark.parametrize(
    "data_type, name",
    [
        (DataType.INT32, "i32"),
        (DataType.UINT32, "u32"),
        (DataType.STRING_C, "str"),
        (DataType.FLOAT, "f64"),
        (DataType.BIN, "bin"),
    ],
)
def test_type_name_round_trip(data_type, name):
    assert data_type_to_str(data_type) == name
    assert data_type_from_str(name) == data_type


def test_type_to_str_out_of_range():
    assert data_type_to_str(6) == "BAD"
    assert data_type_to_str(DataType.UNKNOWN) == "unknown"


def test_type_from_str_rejects():
    assert data_type_from_str("") == DataType.UNKNOWN
    assert data_type_from_str("abcdefg") == DataType.UNKNOWN
    assert data_type_from_str("i32x") == DataType.UNKNOWN


def test_type_from_str_prefix():
    assert data_type_from_str("i") == DataType.INT32


def test_members_and_trailing_comma():
    writer = JsonWriter()
    writer.begin()
    writer.add_name_str("s", "stream")
    writer.add_name_int("cid", 5)
    writer.end()
    assert json.loads(writer.text()) == {"s": "stream", "cid": 5}
    assert ",}" not in writer.text()


def test_section_with_array_item():
    writer = JsonWriter()
    writer.begin_section("info")
    writer.add_item(Data(DataType.INT32, "a", [1, 2, 3], dim=3))
    writer.end_section()
    assert json.loads(writer.text()) == {"info": {"a": [1, 2, 3]}}


def test_nested_section_and_array_member():
    writer = JsonWriter()
    writer.begin()
    writer.add_name_array("loc", "1,2")
    writer.add_section_start("v")
    writer.add_item(Data(DataType.STRING_C, "name", "x"))
    writer.add_item(Data(DataType.UINT32, "n", 7))
    writer.add_section_end()
    writer.end()
    assert json.loads(writer.text()) == {"loc": [1, 2], "v": {"name": "x", "n": 7}}


def test_float_item_uses_six_decimals():
    writer = JsonWriter()
    writer.begin()
    writer.add_item(Data(DataType.FLOAT, "f", 1.5))
    writer.end()
    assert "1.500000" in writer.text()
    assert json.loads(writer.text())["f"] == pytest.approx(1.5)


@pytest.mark.parametrize(
    "data",
    [
        Data(DataType.INT32, "a", 1, dim=0),
        Data(DataType.INT32, "a", None),
        Data(DataType.BIN, "a", "x"),
        Data(DataType.UNKNOWN, "a", 1),
        Data(DataType.INT32, "a", [1], dim=2),
    ],
)
def test_add_item_errors(data):
    writer = JsonWriter()
    writer.begin()
    with pytest.raises(JsonEncodeError):
        writer.add_item(data)


def test_add_item_buffer_too_small():
    writer = JsonWriter(size=8)
    writer.begin()
    with pytest.raises(JsonEncodeError):
        writer.add_item(Data(DataType.INT32, "long_name", 1))


@pytest.mark.parametrize(
    "data, expected",
    [
        (Data(DataType.INT32, "p", -7), {"p": {"t": "i32", "v": -7}}),
        (Data(DataType.UINT32, "p", 7), {"p": {"t": "u32", "v": 7}}),
        (Data(DataType.STRING_C, "p", "abc"), {"p": {"t": "str", "v": "abc"}}),
    ],
)
def test_add_param(data, expected):
    writer = JsonWriter()
    writer.begin()
    writer.add_param(data)
    writer.end()
    assert json.loads(writer.text()) == expected


def test_add_param_float():
    writer = JsonWriter()
    writer.begin()
    writer.add_param(Data(DataType.FLOAT, "p", 2.25))
    writer.end()
    param = json.loads(writer.text())["p"]
    assert param["t"] == "f64"
    assert param["v"] == pytest.approx(2.25)


def test_add_param_binary_round_trip():
    writer = JsonWriter()
    writer.begin()
    writer.add_param(Data(DataType.BIN, "p", "hello"))
    writer.end()
    param = json.loads(writer.text())["p"]
    assert param["t"] == "bin"
    assert base64.b64decode(param["v"]) == b"hello"


def test_add_param_unknown_type():
    writer = JsonWriter()
    writer.begin()
    with pytest.raises(JsonEncodeError):
        writer.add_param(Data(DataType.UNKNOWN, "p", 1))


def test_begin_section_exact_fit_rejected():
    writer = JsonWriter(size=len('{"ab":{'))
    with pytest.raises(JsonEncodeError):
        writer.begin_section("ab")


def test_text_never_exceeds_capacity():
    writer = JsonWriter(size=10)
    writer.begin()
    writer.add_name_str("name", "a rather long value")
    writer.end()
    assert len(writer.text()) <= 9
    assert writer.text().startswith("{")


def test_int_member_wraps_to_32_bits():
    writer = JsonWriter()
    writer.begin()
    writer.add_name_int("n", 2**31)
    writer.end()
    assert json.loads(writer.text())["n"] == -(2**31)


def test_str_matches_text():
    writer = JsonWriter()
    writer.begin_section("res")
    writer.end_section()
    assert str(writer) == writer.text()
    assert json.loads(writer.text()) == {"res": {}}