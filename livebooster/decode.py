"""Decoding of the JSON requests received from the platform.

Three requests are understood: a resource update (``dev/rsc/upd``), a
configuration update (``dev/cfg/upd``) and a command (``dev/cmd``). A request
that cannot be processed raises DecodeError; its ``code`` is the value to
report back to the platform and its ``cid`` the correlation id read so far.
"""

from __future__ import annotations

import base64
import binascii
import logging
import math
import re
import string
import struct
from typing import Any, Optional, Sequence, Union

from livebooster.defs import (
    BIN64_BUF_SZ,
    MAX_OF_PARSED_PARAMS,
    MD5_SZ,
    RSC_URI_SZ,
    RSC_VERSION_SZ,
    CommandArg,
    CommandRequest,
    DataType,
    Param,
    ParamCallback,
    ResourceRespCode,
    SetOfCommands,
    SetOfParams,
    SetOfResources,
    UpdatedParams,
    UpdatedResource,
)
from livebooster.jsmn import JsmnError, JsmnType, Token, parse
from livebooster.json_api import data_type_from_str

log = logging.getLogger(__name__)

Payload = Union[str, bytes, bytearray]

RSC_REQ_TOKENS = 20
PARAMS_REQ_TOKENS = 5 + 6 * MAX_OF_PARSED_PARAMS + 1
CMD_REQ_TOKENS = 20

# Failure codes of the configuration and command requests.
ERR_INVALID = -1
ERR_BAD_FORMAT = -2
ERR_NOT_SUPPORTED = -3
ERR_NOT_PROCESSED = -4

_EMPTY = Token(JsmnType.UNDEFINED, 0, 0, 0)

_UINT = re.compile(r"\s*([+-]?)(\d+)")
_INT = re.compile(r"\s*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")
_FLOAT = re.compile(
    r"\s*([+-]?(?:inf(?:inity)?|nan|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?))",
    re.IGNORECASE,
)
_HEX = frozenset(string.hexdigits)


class DecodeError(ValueError):
    """A received request could not be processed."""

    def __init__(self, code: Any, cid: int = 0, message: Optional[str] = None) -> None:
        self.code = code
        self.cid = cid
        super().__init__(message or f"decode error {code!r}")


def _as_text(payload: Payload) -> str:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload).decode("latin-1")
    return payload


def _tok(tokens: Sequence[Token], index: int) -> Token:
    if 0 <= index < len(tokens):
        return tokens[index]
    return _EMPTY


def _is_string(token: Token, js: str, name: str) -> bool:
    return token.type == JsmnType.STRING and token.text(js) == name


def _tokenize(js: str, limit: int, code: Any) -> list[Token]:
    try:
        return parse(js, limit)
    except JsmnError as exc:
        raise DecodeError(code, message=f"malformed JSON: {exc}") from exc


def _scan_uint32(text: str) -> Optional[int]:
    match = _UINT.match(text)
    if match is None:
        return None
    value = int(match.group(2))
    if match.group(1) == "-":
        value = -value
    return value % 2**32


def _scan_int32(text: str) -> Optional[int]:
    match = _INT.match(text)
    if match is None:
        return None
    digits = match.group(2)
    if digits[:2] in ("0x", "0X"):
        value = int(digits[2:], 16)
    elif digits.startswith("0"):
        value = int(digits, 8)
    else:
        value = int(digits)
    if match.group(1) == "-":
        value = -value
    return ((value + 2**31) % 2**32) - 2**31


def _scan_float32(text: str) -> Optional[float]:
    match = _FLOAT.match(text)
    if match is None:
        return None
    number = float(match.group(1))
    try:
        return struct.unpack("<f", struct.pack("<f", number))[0]
    except OverflowError:
        return math.copysign(math.inf, number)


def _b64decode(text: str) -> bytes:
    try:
        return base64.b64decode(text + "=" * (-len(text) % 4))
    except (binascii.Error, ValueError):
        return b""


def parse_md5(text: str) -> bytes:
    """Convert the 32 leading hexadecimal digits of ``text`` to a 16-byte digest."""
    digits = text[: MD5_SZ * 2]
    if len(digits) != MD5_SZ * 2 or not all(char in _HEX for char in digits):
        raise DecodeError(ERR_INVALID, message=f"invalid MD5 value {text!r}")
    return bytes.fromhex(digits)


def correlation_id(payload: Payload, tokens: Sequence[Token]) -> int:
    """Return the value of the first ``"cid"`` member found among ``tokens``."""
    js = _as_text(payload)
    for index, token in enumerate(tokens):
        if token.type == JsmnType.STRING and token.size == 1 and token.text(js) == "cid":
            value = _tok(tokens, index + 1)
            if value.type == JsmnType.PRIMITIVE and value.size == 0:
                cid = _scan_int32(js[value.start:])
                if cid is not None:
                    return cid
            raise DecodeError(ERR_INVALID, message="invalid correlation id")
    raise DecodeError(ERR_INVALID, message="no correlation id")


def _resp_code(code: Any) -> Any:
    try:
        return ResourceRespCode(code)
    except ValueError:
        return code


def _find_resource(js: str, tokens: list[Token], resources: SetOfResources,
                   pending: UpdatedResource) -> None:
    count = len(tokens)
    idx = 0
    while idx < count - 1:
        key = tokens[idx]
        if key.type == JsmnType.STRING and key.size == 1 and key.text(js) == "id":
            idx += 1
            value = _tok(tokens, idx)
            if value.type != JsmnType.STRING or value.size != 0:
                raise DecodeError(ResourceRespCode.ERR_INTERNAL_ERROR, pending.cid,
                                  "resource id is not a string")
            name = value.text(js)
            found = next((rsc for rsc in resources.resources if rsc.name == name), None)
            if found is not None:
                pending.resource = found
            if pending.resource is None:
                break
        idx += 1
    if pending.resource is None and idx == count:
        raise DecodeError(ResourceRespCode.ERR_INVALID_RESOURCE, pending.cid, "unknown resource")


def _read_metadata(js: str, key: Token, value: Token, pending: UpdatedResource) -> None:
    name = key.text(js)
    if name == "size":
        size = _scan_uint32(js[value.start:])
        if size is None:
            raise DecodeError(ResourceRespCode.ERR_INTERNAL_ERROR, pending.cid, "invalid size")
        pending.size = size
    elif name == "uri":
        pending.uri = value.text(js)[: RSC_URI_SZ - 1]
    elif name == "md5":
        text = value.text(js)
        if len(text) == MD5_SZ * 2:
            try:
                pending.md5 = parse_md5(text)
            except DecodeError:
                pending.md5 = bytes(MD5_SZ)


def _read_fields(js: str, tokens: list[Token], pending: UpdatedResource) -> None:
    internal = ResourceRespCode.ERR_INTERNAL_ERROR
    size = tokens[0].size
    count = len(tokens)
    idx = 1
    while size > 0 and count > 0:
        key = _tok(tokens, idx)
        if key.type != JsmnType.STRING or key.size != 1:
            raise DecodeError(internal, pending.cid, "member name expected")
        size -= 1
        name = key.text(js)
        if name == "m":
            meta = _tok(tokens, idx + 1)
            if meta.type != JsmnType.OBJECT or meta.size < 3:
                raise DecodeError(internal, pending.cid, "invalid metadata")
            entries = meta.size
            idx += 2
            count -= 2
            while entries > 0:
                meta_key = _tok(tokens, idx)
                meta_value = _tok(tokens, idx + 1)
                if (meta_key.type != JsmnType.STRING or meta_key.size != 1
                        or meta_value.type != JsmnType.STRING or meta_value.size != 0):
                    raise DecodeError(internal, pending.cid, "invalid metadata entry")
                entries -= 1
                _read_metadata(js, meta_key, meta_value, pending)
                idx += 2
                count -= 2
        else:
            value = _tok(tokens, idx + 1)
            if value.size != 0 or value.type not in (JsmnType.STRING, JsmnType.PRIMITIVE):
                raise DecodeError(internal, pending.cid, f"invalid value of {name!r}")
            if name == "old":
                pending.version_old = value.text(js)[: RSC_VERSION_SZ - 1]
            elif name == "new":
                pending.version_new = value.text(js)[: RSC_VERSION_SZ - 1]
            idx += 2
            count -= 2


def decode_rsc_req(payload: Payload, resources: SetOfResources, pending: UpdatedResource) -> int:
    """Decode a resource update request into ``pending`` and return its
    correlation id (0 for an empty request)."""
    internal = ResourceRespCode.ERR_INTERNAL_ERROR
    if resources is None or pending is None or not payload:
        raise DecodeError(internal, message="no resource request")
    js = _as_text(payload)
    log.debug("resource request: %s", js)

    tokens = _tokenize(js, RSC_REQ_TOKENS, internal)
    if not tokens:
        return 0
    if tokens[0].type != JsmnType.OBJECT or tokens[0].size <= 0:
        raise DecodeError(internal, message="request is not an object")
    try:
        cid = correlation_id(js, tokens[1:])
    except DecodeError:
        raise DecodeError(internal, message="no correlation id") from None

    if pending.cid:
        raise DecodeError(ResourceRespCode.ERR_NOT_AUTHORIZED, cid, "a transfer is already running")

    pending.reset()
    pending.cid = cid
    _find_resource(js, tokens, resources, pending)
    _read_fields(js, tokens, pending)

    if resources.notify_cb is not None:
        code = resources.notify_cb(0, pending.resource, pending.version_old,
                                   pending.version_new, pending.size)
        if code:
            pending.cid = 0
            pending.resource = None
            raise DecodeError(_resp_code(code), cid, "transfer refused")

    log.debug("md5= %s", pending.md5.hex())
    pending.connected = False
    pending.offset = 0
    return cid


def _notify(callback: Optional[ParamCallback], param: Param, value: Any) -> int:
    if callback is None:
        return 0
    return callback(param, value)


def _update_param(js: str, token: Token, param: Param, callback: Optional[ParamCallback]) -> None:
    data = param.data
    if data.data_type == DataType.STRING_C:
        if token.type == JsmnType.STRING:
            _notify(callback, param, token.text(js))
        return
    if data.data_type == DataType.BIN:
        if token.type == JsmnType.STRING:
            encoded = token.text(js)
            if len(encoded) < BIN64_BUF_SZ:
                _notify(callback, param, _b64decode(encoded))
        return
    if token.type != JsmnType.PRIMITIVE:
        return
    text = js[token.start:]
    if data.data_type == DataType.UINT32:
        value: Any = _scan_uint32(text)
    elif data.data_type == DataType.INT32:
        value = _scan_int32(text)
    elif data.data_type == DataType.FLOAT:
        value = _scan_float32(text)
    else:
        return
    if value is None or data.value is None:
        return
    if _notify(callback, param, value) == 0:
        data.value = value


def decode_params_req(payload: Payload, params: SetOfParams, updated: UpdatedParams) -> None:
    """Apply a configuration update request to ``params`` and record in
    ``updated`` its correlation id and the parameters it named."""
    if params is None or updated is None or not payload:
        raise DecodeError(ERR_INVALID, message="no configuration request")
    updated.reset()
    js = _as_text(payload)

    tokens = _tokenize(js, PARAMS_REQ_TOKENS, ERR_INVALID)
    if not tokens:
        return
    if len(tokens) < 2:
        raise DecodeError(ERR_INVALID, message="request too short")
    if tokens[0].type != JsmnType.OBJECT or tokens[0].size <= 0:
        raise DecodeError(ERR_INVALID, message="request is not an object")
    updated.cid = correlation_id(js, tokens[1:])

    cfg_key, cfg = tokens[1], _tok(tokens, 2)
    if (cfg_key.type != JsmnType.STRING or cfg_key.size != 1
            or cfg.type != JsmnType.OBJECT or cfg.size < 0):
        raise DecodeError(ERR_INVALID, updated.cid, "configuration object expected")
    if not _is_string(cfg_key, js, "cfg"):
        raise DecodeError(ERR_INVALID, updated.cid, "'cfg' member expected")

    idx = 3
    count = len(tokens) - 3
    size = cfg.size
    while size > 0:
        name_tok, body, t_key, t_val, v_key, value = (_tok(tokens, idx + k) for k in range(6))
        if (count < 6
                or name_tok.type != JsmnType.STRING
                or body.type != JsmnType.OBJECT
                or t_key.type != JsmnType.STRING
                or t_val.type != JsmnType.STRING
                or v_key.type != JsmnType.STRING
                or value.type not in (JsmnType.PRIMITIVE, JsmnType.STRING)):
            raise DecodeError(ERR_BAD_FORMAT, updated.cid, "malformed parameter")
        if not _is_string(t_key, js, "t") or not _is_string(v_key, js, "v"):
            raise DecodeError(ERR_BAD_FORMAT, updated.cid, "malformed parameter")

        name = name_tok.text(js)
        param = next((p for p in params.params if p.data.name == name), None)
        if param is not None:
            data_type = data_type_from_str(t_val.text(js))
            if data_type == DataType.UNKNOWN:
                log.debug("unknown type of parameter %s", name)
            elif data_type != param.data.data_type:
                log.debug("type mismatch of parameter %s: %s != %s",
                          name, data_type, param.data.data_type)
            elif data_type == DataType.STRING_C and value.type != JsmnType.STRING:
                log.debug("string parameter %s has a non-string value", name)
            else:
                _update_param(js, value, param, params.callback)
                if len(updated.params) < MAX_OF_PARSED_PARAMS:
                    updated.params.append(param)
        size -= 1
        count -= 6
        idx += 6


def decode_cmd_req(payload: Payload, commands: SetOfCommands) -> tuple[int, int]:
    """Decode a command request, hand it to the command callback and return
    (callback result, correlation id); (0, 0) for an empty request."""
    if commands is None or payload is None:
        raise DecodeError(ERR_INVALID, message="no command request")
    js = _as_text(payload)
    log.debug("command request: %s", js)

    tokens = _tokenize(js, CMD_REQ_TOKENS, ERR_INVALID)
    if not tokens:
        return 0, 0
    if len(tokens) < 5:
        raise DecodeError(ERR_INVALID, message="request too short")
    if tokens[0].type != JsmnType.OBJECT or tokens[0].size <= 0:
        raise DecodeError(ERR_INVALID, message="request is not an object")
    cid = correlation_id(js, tokens[1:])

    req_key, req_name = tokens[1], tokens[2]
    if (tokens[0].size < 3
            or req_key.type != JsmnType.STRING or req_key.size != 1
            or req_name.type != JsmnType.STRING or req_name.size != 0):
        raise DecodeError(ERR_BAD_FORMAT, cid, "'req' member expected")
    if not _is_string(req_key, js, "req"):
        raise DecodeError(ERR_BAD_FORMAT, cid, "'req' member expected")

    name = req_name.text(js)
    command = next((cmd for cmd in commands.commands if cmd.name == name), None)
    if command is None:
        raise DecodeError(ERR_NOT_SUPPORTED, cid, f"unknown command {name!r}")
    if commands.callback is None:
        raise DecodeError(ERR_NOT_PROCESSED, cid, "no command callback")

    arg_key, arg_obj = tokens[3], tokens[4]
    if arg_key.type != JsmnType.STRING or arg_key.size != 1 or arg_obj.type != JsmnType.OBJECT:
        raise DecodeError(ERR_BAD_FORMAT, cid, "'arg' member expected")
    if not _is_string(arg_key, js, "arg"):
        raise DecodeError(ERR_BAD_FORMAT, cid, "'arg' member expected")

    size = arg_obj.size
    idx = 5
    count = len(tokens) - 5
    args: list[CommandArg] = []
    while count >= 2 and size > 0:
        key, value = _tok(tokens, idx), _tok(tokens, idx + 1)
        if (key.type != JsmnType.STRING or key.size != 1 or value.size != 0
                or value.type not in (JsmnType.STRING, JsmnType.PRIMITIVE)):
            raise DecodeError(ERR_BAD_FORMAT, cid, "malformed argument")
        args.append(CommandArg(key.text(js), value.text(js), value.type == JsmnType.STRING))
        size -= 1
        idx += 2
        count -= 2
    if size > 0:
        raise DecodeError(ERR_BAD_FORMAT, cid, "missing arguments")

    result = commands.callback(CommandRequest(command, cid, args))
    return result, cid