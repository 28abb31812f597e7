"""Shared definitions: return codes, data types, and the structures exchanged
between the application, the message codec and the device client."""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable

# Tunable limits.
MAX_OF_DATA_SET = 5
MAX_OF_PARSED_PARAMS = 5
JSON_BUF_SZ = 1024
BIN64_BUF_SZ = 550
SETOFDATA_STREAM_ID_SZ = 80
SETOFDATA_MODEL_SZ = 80
SETOFDATA_TAGS_SZ = 80
SETOFDATA_TIMESTAMP_SZ = 24

RSC_VERSION_SZ = 10
RSC_URI_SZ = 80
MD5_SZ = 16

SSL_NOT_ENABLE = 0
SSL_ENABLE = 1


class ReturnCode(enum.IntEnum):
    """Library return codes; every failure code is negative."""

    HTTP_STOPPED = -54
    HTTP_DATA_DISCONNECTED = -53
    HTTP_START_FAIL_CONNEXION = -52
    HTTP_START_URL_NOT_FOUND = -51
    HTTP_START_PORT_NOT_FOUND = -50
    HTTP_START_URI_ERROR = -49
    HTTP_START_NULL = -48
    HTTP_INCORRECT_CONTENT_LENGTH = -47
    HTTP_NULL_CONTENT_LENGTH = -46
    HTTP_QUERY_INCORRECT_CODE = -45
    HTTP_QUERY_INCORRECT_ANSWER = -44
    HTTP_QUERY_WRITE = -43
    HTTP_READ_LINE = -42
    HTTP_READ_LINE_SMALL_BUFFER = -41
    HTTP_READ_LINE_NULL = -40
    HANDLER_PROCESS_GET_RSC = -34
    GET_RESOURCES = -33
    PUSH_DATA = -32
    ATTACH_DATA = -31
    CYCLE = -30
    SUCCESS = 0


class DataType(enum.IntEnum):
    """Type of a user data item."""

    UNKNOWN = 0
    INT32 = 1
    UINT32 = 2
    STRING_C = 3
    FLOAT = 4
    BIN = 5


class ResourceRespCode(enum.IntEnum):
    """Response code of a resource update request."""

    OK = 0
    ERR_INTERNAL_ERROR = 1
    ERR_WRONG_SOURCE_VERSION = 2
    ERR_INVALID_RESOURCE = 3
    ERR_NOT_AUTHORIZED = 4
    ERR_BUSY = 5


class ClientState(enum.IntEnum):
    """State of the client towards the platform."""

    DISCONNECTED = 0
    CONNECTING = 1
    CONNECTED = 2
    DOWN = 3


class LiveBoosterError(Exception):
    """Failure carrying one of the negative ReturnCode values."""

    def __init__(self, code: ReturnCode | int, message: Optional[str] = None) -> None:
        try:
            code = ReturnCode(code)
        except ValueError:
            pass
        self.code = code
        name = code.name if isinstance(code, ReturnCode) else str(code)
        super().__init__(message or name)


@dataclass
class GpsFix:
    """A GPS position."""

    valid: bool = False
    lat: float = 0.0
    lon: float = 0.0


@dataclass
class Data:
    """A user data item; ``value`` is a sequence when ``dim`` is above 1."""

    data_type: DataType
    name: str
    value: Any
    dim: int = 1


@dataclass
class Param:
    """A configuration parameter."""

    uref: int
    data: Data


@dataclass
class Resource:
    """A user resource and its current version."""

    uref: int
    name: str
    version: str
    version_size: int = RSC_VERSION_SZ


@dataclass
class Command:
    """A user command entry."""

    uref: int
    name: str
    cid: int = 0


@dataclass
class CommandArg:
    """One argument of a received command; ``is_string`` tells a quoted value."""

    name: str
    value: str
    is_string: bool


@dataclass
class CommandRequest:
    """A command received from the platform, with its arguments."""

    command: Command
    cid: int
    args: list[CommandArg] = field(default_factory=list)


ParamCallback = Callable[[Param, Any], int]
CommandCallback = Callable[[CommandRequest], int]
ResourceNotifyCallback = Callable[[int, Resource, str, str, int], ResourceRespCode]
ResourceDataCallback = Callable[[Resource, int], int]


def _clip(text: str, size: int) -> str:
    return text[: size - 1]


@dataclass
class SetOfData:
    """A set of collected data published in a single stream."""

    data: list[Data] = field(default_factory=list)
    gps: Optional[GpsFix] = None
    stream_id: str = ""
    model: str = ""
    tags: str = ""
    timestamp: str = ""

    def set_stream_id(self, stream_id: str) -> None:
        """Store the stream id, truncated to the fixed field size."""
        self.stream_id = _clip(stream_id, SETOFDATA_STREAM_ID_SZ)


@dataclass
class SetOfParams:
    """The full set of configuration parameters and their update callback."""

    params: list[Param] = field(default_factory=list)
    callback: Optional[ParamCallback] = None


@dataclass
class UpdatedParams:
    """Parameters touched by the last configuration update request."""

    cid: int = 0
    params: list[Param] = field(default_factory=list)

    def reset(self) -> None:
        """Forget the correlation id and the updated parameters."""
        self.cid = 0
        self.params.clear()


@dataclass
class SetOfCommands:
    """The user commands and the callback that processes them."""

    commands: list[Command] = field(default_factory=list)
    callback: Optional[CommandCallback] = None


@dataclass
class SetOfResources:
    """The user resources and their transfer callbacks."""

    resources: list[Resource] = field(default_factory=list)
    notify_cb: Optional[ResourceNotifyCallback] = None
    data_cb: Optional[ResourceDataCallback] = None


@dataclass
class UpdatedResource:
    """State of a pending resource download."""

    cid: int = 0
    resource: Optional[Resource] = None
    version_old: str = ""
    version_new: str = ""
    md5: bytes = bytes(MD5_SZ)
    size: int = 0
    uri: str = ""
    connected: bool = False
    retry: int = 0
    offset: int = 0
    md5_ctx: Any = field(default_factory=hashlib.md5)

    def reset(self) -> None:
        """Return every field to its initial value."""
        self.cid = 0
        self.resource = None
        self.version_old = ""
        self.version_new = ""
        self.md5 = bytes(MD5_SZ)
        self.size = 0
        self.uri = ""
        self.connected = False
        self.retry = 0
        self.offset = 0
        self.md5_ctx = hashlib.md5()


@runtime_checkable
class SerialInterface(Protocol):
    """Byte stream to the modem."""

    def open(self) -> None: ...

    def available(self) -> int: ...

    def get(self) -> int: ...

    def write(self, data: bytes) -> None: ...


@runtime_checkable
class TimerInterface(Protocol):
    """Millisecond clock and delay."""

    def init(self) -> None: ...

    def millis(self) -> int: ...

    def delay(self, ms: int) -> None: ...


@runtime_checkable
class DebugInterface(Protocol):
    """Sink for trace messages."""

    def print(self, text: str) -> None: ...