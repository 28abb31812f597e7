"""Bounded JSON writer used to build the messages sent to the platform."""

from __future__ import annotations

import base64
import math
import struct
from typing import Any

from livebooster.defs import JSON_BUF_SZ, Data, DataType

_TYPE_NAMES = ("unknown", "i32", "u32", "str", "f64", "bin")

_TYPE_CODES = {
    DataType.UNKNOWN: "xxx",
    DataType.INT32: "i32",
    DataType.UINT32: "u32",
    DataType.STRING_C: "str",
    DataType.FLOAT: "f64",
    DataType.BIN: "bin",
}

_PARAM_TYPES = (
    DataType.INT32,
    DataType.UINT32,
    DataType.STRING_C,
    DataType.FLOAT,
    DataType.BIN,
)


class JsonEncodeError(ValueError):
    """A JSON element could not be written."""


def data_type_to_str(data_type: DataType | int) -> str:
    """Return the wire name of a data type, or "BAD" when out of range."""
    value = int(data_type)
    if 0 <= value < len(_TYPE_NAMES):
        return _TYPE_NAMES[value]
    return "BAD"


def data_type_from_str(text: str) -> DataType:
    """Return the data type whose wire name starts with ``text``."""
    if text and 0 < len(text) < 7:
        for data_type in DataType:
            if data_type is not DataType.UNKNOWN and _TYPE_NAMES[data_type].startswith(text):
                return data_type
    return DataType.UNKNOWN


def check_type_names() -> int:
    """Count the data types whose two name tables disagree."""
    return sum(
        1
        for data_type in DataType
        if data_type is not DataType.UNKNOWN and _TYPE_NAMES[data_type] != _TYPE_CODES[data_type]
    )


def _int32(value: Any) -> int:
    return ((int(value) + 2**31) % 2**32) - 2**31


def _uint32(value: Any) -> int:
    return int(value) % 2**32


def _float32(value: Any) -> float:
    number = float(value)
    try:
        return struct.unpack("<f", struct.pack("<f", number))[0]
    except OverflowError:
        return math.copysign(math.inf, number)


def _b64(value: Any) -> str:
    raw = value.encode("utf-8") if isinstance(value, str) else bytes(value)
    raw = raw.split(b"\0", 1)[0]
    return base64.b64encode(raw).decode("ascii")


class JsonWriter:
    """Append-only JSON text limited to ``size - 1`` characters; what does
    not fit is cut off."""

    def __init__(self, size: int = JSON_BUF_SZ) -> None:
        if size < 1:
            raise ValueError("buffer size must be positive")
        self.size = size
        self._buf = ""

    def __str__(self) -> str:
        return self._buf

    def text(self) -> str:
        """Return the text written so far."""
        return self._buf

    def _remaining(self) -> int:
        return self.size - len(self._buf)

    def _append(self, text: str) -> None:
        room = self.size - 1 - len(self._buf)
        if room > 0:
            self._buf += text[:room]

    def _strip_comma(self) -> None:
        if self._buf.endswith(","):
            self._buf = self._buf[:-1]

    def begin(self) -> None:
        """Start a new document with an opening brace."""
        self._buf = ""
        self._append("{")

    def end(self) -> None:
        """Close the document, dropping a trailing comma."""
        self._strip_comma()
        self._append("}")

    def begin_section(self, name: str) -> None:
        """Start a new document whose first member is the object ``name``."""
        text = f'{{"{name}":{{'
        if len(text) == self.size:
            raise JsonEncodeError(f"section {name!r} does not fit")
        self._buf = ""
        self._append(text)

    def end_section(self) -> None:
        """Close the section opened by begin_section and the document."""
        self._strip_comma()
        self._append("}}")

    def add_section_start(self, name: str) -> None:
        """Open a nested object member."""
        self._append(f'"{name}": {{')

    def add_section_end(self) -> None:
        """Close a nested object member."""
        self._strip_comma()
        self._append("},")

    def add_name_int(self, name: str, value: int) -> None:
        """Add a 32-bit signed integer member."""
        self._append(f'"{name}":{_int32(value)},')

    def add_name_str(self, name: str, value: str) -> None:
        """Add a string member; the value is written as is."""
        self._append(f'"{name}":"{value}",')

    def add_name_array(self, name: str, array: str) -> None:
        """Add an array member whose elements are already formatted."""
        self._append(f'"{name}":[{array}],')

    @staticmethod
    def _values(data: Data) -> list[Any]:
        if data.dim > 1:
            values = list(data.value)
            if len(values) < data.dim:
                raise JsonEncodeError(f"item {data.name!r} holds fewer than {data.dim} values")
            return values[: data.dim]
        value = data.value
        if isinstance(value, (list, tuple)):
            if not value:
                raise JsonEncodeError(f"item {data.name!r} has no value")
            value = value[0]
        return [value]

    @staticmethod
    def _format_value(data_type: DataType, value: Any) -> str:
        if data_type == DataType.INT32:
            return f"{_int32(value)},"
        if data_type == DataType.UINT32:
            return f"{_uint32(value)},"
        if data_type == DataType.FLOAT:
            return f"{_float32(value):f},"
        if data_type == DataType.STRING_C:
            return f'"{value}",'
        raise JsonEncodeError(f"unsupported item type {data_type!r}")

    def add_item(self, data: Data) -> None:
        """Add a data item: a single value, or an array when ``dim`` is above 1."""
        if data is None or data.name is None or data.value is None or data.dim <= 0:
            raise JsonEncodeError("invalid data item")
        self._append(f'"{data.name}":')
        if self._remaining() < 4:
            raise JsonEncodeError("buffer full")

        values = self._values(data)
        is_array = data.dim > 1
        if is_array:
            self._buf += "["
        for value in values:
            self._append(self._format_value(data.data_type, value))
            if is_array and self._remaining() < 2:
                raise JsonEncodeError("buffer full")

        if is_array:
            if not self._buf.endswith(",") or self._remaining() < 2:
                raise JsonEncodeError("buffer full")
            self._buf = self._buf[:-1] + "],"

    def add_param(self, data: Data) -> None:
        """Add a configuration parameter as ``"name":{"t":type,"v":value}``."""
        if data.data_type not in _PARAM_TYPES:
            raise JsonEncodeError(f"unsupported parameter type {data.data_type!r}")
        self._append(f'"{data.name}":{{')
        value = data.value
        if data.data_type == DataType.INT32:
            body = f'"t":"i32","v":{_int32(value)}}},'
        elif data.data_type == DataType.UINT32:
            body = f'"t":"u32","v":{_uint32(value)}}},'
        elif data.data_type == DataType.FLOAT:
            body = f'"t":"f64","v":{_float32(value):f}}},'
        elif data.data_type == DataType.STRING_C:
            body = f'"t":"str","v":"{value}"}},'
        else:
            body = f'"t":"bin","v":"{_b64(value)}"}},'
        self._append(body)