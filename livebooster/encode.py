"""Encoding of the JSON messages published to the platform.

Each encoder returns the message text, or None when there is nothing to
encode (no correlation id, no data). A data item that cannot be written
raises JsonEncodeError.
"""

from __future__ import annotations

import math
import struct
from typing import Optional, Sequence

from livebooster.defs import (
    JSON_BUF_SZ,
    Data,
    Param,
    Resource,
    ResourceRespCode,
    SetOfData,
    UpdatedParams,
)
from livebooster.json_api import JsonWriter

_RSC_RESULT_NAMES = (
    "OK",
    "INTERNAL_ERROR",
    "UNKNOWN_RESOURCE",
    "WRONG_SOURCE_VERSION",
    "INVALID_RESOURCE",
    "NOT_AUTHORIZED",
    "BUSY",
)
_RSC_RESULT_COUNT = len(ResourceRespCode)

_CMD_ERROR_NAMES = (
    "Invalid",
    "Bad format",
    "Not supported",
    "Not processed",
)


def _float32(value: float) -> float:
    number = float(value)
    try:
        return struct.unpack("<f", struct.pack("<f", number))[0]
    except OverflowError:
        return math.copysign(math.inf, number)


def _add_items(writer: JsonWriter, data: Sequence[Data]) -> None:
    for item in data:
        writer.add_item(item)


def encode_status(data: Sequence[Data]) -> Optional[str]:
    """Encode status items as ``{"info":{...}}``."""
    if not data:
        return None
    writer = JsonWriter(JSON_BUF_SZ)
    writer.begin_section("info")
    _add_items(writer, data)
    writer.end_section()
    return writer.text()


def encode_data(data_set: Optional[SetOfData]) -> Optional[str]:
    """Encode a set of collected data for the ``dev/data`` topic."""
    if data_set is None or not data_set.stream_id or not data_set.data:
        return None
    writer = JsonWriter(JSON_BUF_SZ)
    writer.begin()
    writer.add_name_str("s", data_set.stream_id)
    if data_set.timestamp:
        writer.add_name_str("ts", data_set.timestamp)
    if data_set.model:
        writer.add_name_str("m", data_set.model)
    gps = data_set.gps
    if gps is not None and gps.valid:
        location = f"{_float32(gps.lat):3.6f},{_float32(gps.lon):3.6f}"
        writer.add_name_array("loc", location[:78])
    writer.add_section_start("v")
    _add_items(writer, data_set.data)
    writer.add_section_end()
    if data_set.tags:
        writer.add_name_array("t", data_set.tags)
    writer.end()
    return writer.text()


def encode_resources(resources: Sequence[Resource]) -> Optional[str]:
    """Encode the resources and their versions for the ``dev/rsc`` topic."""
    if not resources:
        return None
    writer = JsonWriter(JSON_BUF_SZ)
    writer.begin_section("rsc")
    for resource in resources:
        writer.add_section_start(resource.name)
        writer.add_name_str("v", resource.version)
        writer.add_section_start("m")
        writer.add_section_end()
        writer.add_section_end()
    writer.end_section()
    return writer.text()


def encode_params_all(params: Sequence[Param], cid: int) -> Optional[str]:
    """Encode every configuration parameter, with ``cid`` when it is not 0."""
    if not params:
        return None
    writer = JsonWriter(JSON_BUF_SZ)
    writer.begin_section("cfg")
    for param in params:
        writer.add_param(param.data)
    if cid:
        writer.add_section_end()
        writer.add_name_int("cid", cid)
        writer.end()
    else:
        writer.end_section()
    return writer.text()


def encode_cmd_resp(cid: int, data: Optional[Sequence[Data]]) -> Optional[str]:
    """Encode a command response carrying result items."""
    if cid == 0:
        return None
    writer = JsonWriter(JSON_BUF_SZ)
    writer.begin_section("res")
    if data:
        _add_items(writer, data)
    writer.add_section_end()
    writer.add_name_int("cid", cid)
    writer.end()
    return writer.text()


def encode_rsc_result(cid: int, result: ResourceRespCode | int) -> Optional[str]:
    """Encode the answer to a resource update request."""
    if cid == 0:
        return None
    index = int(result)
    if not 0 <= index < _RSC_RESULT_COUNT:
        index = int(ResourceRespCode.ERR_INTERNAL_ERROR)
    writer = JsonWriter(JSON_BUF_SZ)
    writer.begin()
    writer.add_name_str("res", _RSC_RESULT_NAMES[index])
    writer.add_name_int("cid", cid)
    writer.end()
    return writer.text()


def encode_rsc_error(error: Optional[str], details: Optional[str]) -> Optional[str]:
    """Encode a resource transfer error."""
    if error is None or details is None:
        return None
    writer = JsonWriter(JSON_BUF_SZ)
    writer.begin()
    writer.add_name_str("errorCode", error)
    writer.add_name_str("errorDetails", details)
    writer.end()
    return writer.text()


def encode_params_update(updated: Optional[UpdatedParams]) -> Optional[str]:
    """Encode the parameters changed by the last update request."""
    if updated is None or updated.cid == 0:
        return None
    if not updated.params or updated.params[0] is None:
        return None
    writer = JsonWriter(JSON_BUF_SZ)
    writer.begin_section("cfg")
    for param in updated.params:
        if param is None:
            break
        writer.add_param(param.data)
    writer.add_section_end()
    writer.add_name_int("cid", updated.cid)
    writer.end()
    return writer.text()


def encode_cmd_result(cid: int, result: int) -> Optional[str]:
    """Encode the result of a command: an error code when negative, else OK."""
    if cid == 0:
        return None
    writer = JsonWriter(JSON_BUF_SZ)
    writer.begin_section("res")
    if result < 0:
        writer.add_name_int("LiveBooster_err_code", result)
        err_index = -result - 1
        if 0 <= err_index < len(_CMD_ERROR_NAMES):
            writer.add_name_str("LiveBooster_error", _CMD_ERROR_NAMES[err_index])
    else:
        writer.add_name_str("Result", "OK")
    writer.add_section_end()
    writer.add_name_int("cid", cid)
    writer.end()
    return writer.text()