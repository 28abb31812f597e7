"""Minimal HTTP GET over the modem TCP client, used to download resources."""

from __future__ import annotations

import re
from typing import Optional, Protocol, runtime_checkable

from livebooster.defs import SSL_NOT_ENABLE, LiveBoosterError, ReturnCode, TimerInterface

TIMEOUT_IN_MS = 500
HTTP_SERV_PORT = 80
HTTP_USER_AGENT = "LiveBooster"
HTTP_BUF_SZ = 400

_STATUS_LINE = re.compile(r"HTTP/\s*[+-]?\d+\.\s*[+-]?\d+\s*([+-]?\d+)")
_PORT = re.compile(r"\s*([+-]?\d+)")
_CONTENT_LENGTH = re.compile(r"\s*\+?(\d+)")
_LINE_ENDS = (ord("\n"), 0, 0xFF)


@runtime_checkable
class TcpClient(Protocol):
    """A TCP client connection."""

    def connect(self, host: str, port: int, ssl_enabled: int) -> int:
        """Open a connection; return a true value on success."""
        ...

    def stop(self) -> None:
        """Close the connection."""
        ...

    def connected(self) -> int:
        """Return a true value while the connection is open or data remains."""
        ...

    def available(self) -> int:
        """Number of bytes received and not read yet."""
        ...

    def read(self, max_size: int, timeout_ms: int) -> bytes:
        """Read up to ``max_size`` bytes."""
        ...

    def write(self, data: bytes) -> int:
        """Send ``data``; return the number of bytes sent, or -1."""
        ...


class HttpError(LiveBoosterError):
    """An HTTP download failed."""


def build_get_query(url: str, host: str, offset: int) -> str:
    """Build the GET request for ``url`` on ``host``."""
    if url.startswith("/"):
        url = url[1:]
    query = (
        f"GET /{url} HTTP/1.0\r\n"
        f"Host: {host}\r\n"
        f"User-Agent: {HTTP_USER_AGENT}\r\n"
        "Connection: keep-alive\r\n"
    )
    if offset <= 0:
        query += "\r\n"
    return query


def parse_uri(uri: str) -> tuple[str, int, str]:
    """Split an ``http://host[:port]/path`` URI into host, port and path."""
    if not uri:
        raise HttpError(ReturnCode.HTTP_START_NULL)
    if uri[:4].lower() != "http":
        raise HttpError(ReturnCode.HTTP_START_URI_ERROR)
    rest = uri[4:]
    if rest[:1] in ("s", "S") or not rest.startswith("://"):
        raise HttpError(ReturnCode.HTTP_START_URI_ERROR)
    rest = rest[3:]
    host_end = len(rest)
    for index, char in enumerate(rest):
        if char in ":/":
            host_end = index
            break
    host, rest = rest[:host_end], rest[host_end:]

    port = HTTP_SERV_PORT
    if rest.startswith(":"):
        rest = rest[1:]
        match = _PORT.match(rest)
        if match is None:
            raise HttpError(ReturnCode.HTTP_START_PORT_NOT_FOUND)
        port = int(match.group(1)) % 0x10000
        slash = rest.find("/")
        rest = rest[slash:] if slash != -1 else ""
    if not rest.startswith("/"):
        raise HttpError(ReturnCode.HTTP_START_URL_NOT_FOUND)
    return host, port, rest


class HttpDownloader:
    """Download of one resource through a TCP client."""

    def __init__(self, tcp: TcpClient, timer: TimerInterface) -> None:
        self.tcp = tcp
        self.timer = timer

    def read_line(self, max_len: int = HTTP_BUF_SZ) -> bytes:
        """Read one line, end-of-line byte included; empty when nothing came."""
        if max_len <= 0:
            raise HttpError(ReturnCode.HTTP_READ_LINE_NULL)
        line = bytearray()
        retry = 0
        while self.tcp.connected():
            chunk = self.tcp.read(1, TIMEOUT_IN_MS)
            if not chunk:
                retry += 1
                if retry < 20:
                    self.timer.delay(200)
                    continue
                break
            retry = 0
            byte = chunk[0]
            line.append(byte)
            if len(line) >= max_len:
                raise HttpError(ReturnCode.HTTP_READ_LINE_SMALL_BUFFER)
            if byte in _LINE_ENDS:
                break
        return bytes(line)

    def _next_line(self) -> str:
        try:
            return self.read_line(HTTP_BUF_SZ).decode("latin-1")
        except HttpError as exc:
            raise HttpError(ReturnCode.HTTP_READ_LINE) from exc

    def _query(self, path: str, host: str, size: int, offset: int) -> None:
        query = build_get_query(path, host, offset).encode("latin-1")
        if self.tcp.write(query) != len(query):
            raise HttpError(ReturnCode.HTTP_QUERY_WRITE)

        status_line = self._next_line()
        if not status_line:
            raise HttpError(ReturnCode.HTTP_READ_LINE)
        match = _STATUS_LINE.match(status_line)
        if match is None:
            raise HttpError(ReturnCode.HTTP_QUERY_INCORRECT_ANSWER)
        status = int(match.group(1))
        if status != 200 and not (status == 206 and offset > 0):
            raise HttpError(ReturnCode.HTTP_QUERY_INCORRECT_CODE)

        content_length = 0
        while True:
            line = self._next_line()
            colon = line.find(":")
            if colon == -1:
                break
            if line.lower().startswith("content-length:"):
                value = _CONTENT_LENGTH.match(line[colon + 1:])
                if value is not None:
                    content_length = int(value.group(1)) % 2**32

        if content_length == 0:
            raise HttpError(ReturnCode.HTTP_NULL_CONTENT_LENGTH)
        if content_length != size - offset:
            raise HttpError(ReturnCode.HTTP_INCORRECT_CONTENT_LENGTH)

    def start(self, uri: Optional[str], size: int, offset: int) -> None:
        """Connect to the server of ``uri`` and send the GET request."""
        if not uri or size == 0 or offset >= size:
            raise HttpError(ReturnCode.HTTP_START_NULL)
        host, _port, path = parse_uri(uri)
        # The server is always reached on the standard HTTP port.
        if not self.tcp.connect(host, HTTP_SERV_PORT, SSL_NOT_ENABLE):
            raise HttpError(ReturnCode.HTTP_START_FAIL_CONNEXION)
        try:
            self._query(path, host, size, offset)
        except HttpError:
            self.tcp.stop()
            raise

    def data(self, length: int) -> bytes:
        """Read up to ``length`` bytes of the body; empty when none came."""
        if not self.tcp.connected():
            raise HttpError(ReturnCode.HTTP_DATA_DISCONNECTED)
        return bytes(self.tcp.read(length, TIMEOUT_IN_MS))

    def close(self) -> None:
        """Close the connection."""
        self.tcp.stop()