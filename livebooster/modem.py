"""AT-command driver of the Heracles GSM modem.

The modem multiplexes up to GSM_MUX_COUNT TCP sockets. A socket is any
object with ``rx`` (a GsmFifo), ``sock_available`` and ``sock_connected``
attributes; the modem updates them as data and status arrive.
"""

from __future__ import annotations

import enum
import re
from typing import Any, Optional

from livebooster.defs import DebugInterface, SerialInterface, TimerInterface

DEFAULT_TIMEOUT = 10000
GSM_NL = "\r\n"
GSM_MUX_COUNT = 2
INVALID_MUX = 255
MAINTAIN_PERIOD_MS = 500
NETWORK_TIMEOUT_MS = 60000

_RESPONSE_BUF_SZ = 100
_INT_MAX_DIGITS = 8
_DEFAULT_RESPONSES: tuple[Optional[str], ...] = ("OK" + GSM_NL, "ERROR" + GSM_NL, None, None, None)
_INT = re.compile(r"\s*([+-]?\d+)")
_COMMA = ord(",")
_NEWLINE = ord("\n")

# (command, timeout in ms, whether an OK answer is required)
_GPRS_STEPS = (
    ('+SAPBR=3,1,"CONTYPE","GPRS"', DEFAULT_TIMEOUT, False),  # connection type
    ("+CGACT=1,1", 60000, False),  # activate the PDP context
    ("+SAPBR=1,1", 85000, False),  # open the bearer context
    ("+SAPBR=2,1", 30000, True),  # query the bearer context
    ("+CGATT=1", 75000, True),  # attach to GPRS
    ("+CIPMODE=0", DEFAULT_TIMEOUT, True),  # TCP mode
    ("+CIPMUX=1", DEFAULT_TIMEOUT, True),  # multiple connections
    ("+CIPQSEND=1", DEFAULT_TIMEOUT, True),  # quick send mode
    ("+CIPRXGET=1", DEFAULT_TIMEOUT, True),  # fetch received data manually
    ("+CSTT", 60000, True),  # default APN of the board
    ("+CIICR", 60000, True),  # bring up the wireless connection
    ("+CIFSR;E0", DEFAULT_TIMEOUT, True),  # local IP address
    ('+CDNSCFG="8.8.8.8","8.8.4.4"', DEFAULT_TIMEOUT, True),  # DNS servers
)


class SimStatus(enum.IntEnum):
    """State of the SIM card."""

    ERROR = 0
    READY = 1
    LOCKED = 2


class RegStatus(enum.IntEnum):
    """Network registration state reported by AT+CREG."""

    UNREGISTERED = 0
    OK_HOME = 1
    SEARCHING = 2
    DENIED = 3
    UNKNOWN = 4
    OK_ROAMING = 5


class ModemError(RuntimeError):
    """The modem did not answer a command as expected."""


class HeraclesModem:
    """Driver of one modem attached to a serial line."""

    def __init__(self, serial: SerialInterface, timer: TimerInterface, debug: DebugInterface) -> None:
        self.serial = serial
        self.timer = timer
        self.debug = debug
        self.sockets: list[Optional[Any]] = [None] * GSM_MUX_COUNT
        self.prev_check = 0

    def _next_byte(self) -> int:
        while not self.serial.available():
            pass
        return self.serial.get()

    def _command(self, command: str, timeout: int = DEFAULT_TIMEOUT) -> bool:
        self.send_at(command)
        return self.wait_response(timeout) == 1

    def send_at(self, command: str) -> None:
        """Send ``AT<command>`` followed by a line end."""
        self.serial.write(b"AT")
        self.serial.write(command.encode("latin-1"))
        self.serial.write(GSM_NL.encode("ascii"))

    def read_int(self) -> int:
        """Read a decimal integer ending at a comma or a line feed; 0 when none."""
        digits = ""
        byte = self._next_byte()
        while 0 <= byte < 0x80 and byte not in (_COMMA, _NEWLINE) and len(digits) < _INT_MAX_DIGITS:
            digits += chr(byte)
            byte = self._next_byte()
        match = _INT.match(digits)
        return int(match.group(1)) if match else 0

    def wait_response(self, timeout: int, *args: Optional[str]) -> int:
        """Wait for one of up to five responses and return its 1-based index,
        or 0 on timeout. Missing responses default to OK and ERROR."""
        given = list(args[:5])
        responses = given + list(_DEFAULT_RESPONSES[len(given):])
        buffer = ""
        start = self.timer.millis()
        while True:
            while self.serial.available() > 0:
                byte = self.serial.get()
                if byte <= 0 or byte >= 0x80:
                    continue
                if len(buffer) >= _RESPONSE_BUF_SZ - 1:
                    buffer = ""
                buffer += chr(byte)
                for index, expected in enumerate(responses, start=1):
                    if expected and expected in buffer:
                        return index
                if "+CIPRXGET:" + GSM_NL in buffer:
                    mode = self.read_int()
                    if mode == 1:
                        mux = self.read_int()
                        if 0 <= mux < GSM_MUX_COUNT and self.sockets[mux] is not None:
                            self.prev_check = 0
                        buffer = ""
                elif "CLOSED" + GSM_NL in buffer:
                    buffer = ""
            if self.timer.millis() - start >= timeout:
                return 0

    def test_at(self, timeout: int) -> bool:
        """Poll the modem with ``AT`` until it answers OK or time runs out."""
        start = self.timer.millis()
        while self.timer.millis() - start < timeout:
            self.send_at("")
            if self.wait_response(200) == 1:
                return True
            self.timer.delay(200)
        return False

    def sim_status(self, timeout: int) -> SimStatus:
        """Query the SIM card state."""
        start = self.timer.millis()
        while self.timer.millis() - start < timeout:
            self.send_at("+CPIN?")
            if self.wait_response(DEFAULT_TIMEOUT, GSM_NL + "+CPIN:") != 1:
                self.timer.delay(1000)
                continue
            status = self.wait_response(DEFAULT_TIMEOUT, "READY", "SIM PIN", "SIM PUK", "NOT INSERTED")
            self.wait_response(DEFAULT_TIMEOUT)
            if status in (2, 3):
                return SimStatus.LOCKED
            if status == 1:
                return SimStatus.READY
            return SimStatus.ERROR
        return SimStatus.ERROR

    def skip_until(self, terminator: str | int) -> None:
        """Drop received bytes up to and including ``terminator``."""
        wanted = ord(terminator) if isinstance(terminator, str) else terminator
        start = self.timer.millis()
        while self.timer.millis() - start < DEFAULT_TIMEOUT:
            if self._next_byte() == wanted:
                break

    def registration_status(self) -> RegStatus:
        """Query the network registration state."""
        self.send_at("+CREG?")
        if self.wait_response(DEFAULT_TIMEOUT, GSM_NL + "+CREG:") != 1:
            return RegStatus.UNKNOWN
        self.skip_until(",")
        status = self.read_int()
        self.wait_response(DEFAULT_TIMEOUT)
        try:
            return RegStatus(status)
        except ValueError:
            return RegStatus.UNKNOWN

    def is_network_connected(self) -> bool:
        """True when registered on the home network or roaming."""
        return self.registration_status() in (RegStatus.OK_HOME, RegStatus.OK_ROAMING)

    def wait_for_network(self) -> bool:
        """Wait up to a minute for the network registration."""
        start = self.timer.millis()
        while self.timer.millis() - start < NETWORK_TIMEOUT_MS:
            if self.is_network_connected():
                return True
            self.timer.delay(250)
        return False

    def attach_gprs(self) -> bool:
        """Bring up the GPRS connection and configure the TCP stack."""
        for command, timeout, required in _GPRS_STEPS:
            if not self._command(command, timeout) and required:
                return False
        return True

    def init(self, do_reset: bool) -> bool:
        """Open the interfaces, check the modem and optionally restart it."""
        self.prev_check = 0
        self.serial.open()
        self.debug.print("Serial interface initialized\n")
        self.timer.init()
        self.debug.print("Timer interface initialized\n")

        if not self.test_at(DEFAULT_TIMEOUT):
            return False
        if not do_reset:
            return True

        self.debug.print("Reset Heracles modem\n")
        self.sockets = [None] * GSM_MUX_COUNT
        if not (self._command("+CFUN=0") and self._command("+CFUN=1,1")):
            return False
        self.timer.delay(5000)
        # Manufacturer defaults, then echo off.
        if not (self._command("&F0") and self._command("E0")):
            return False
        self.sim_status(DEFAULT_TIMEOUT)
        # Refresh of time and time zone from the network.
        if not self._command("+CLTS=1"):
            return False
        if not self.wait_for_network():
            return False
        return self.attach_gprs()

    def socket_connected(self, mux: int) -> bool:
        """True when the connection on ``mux`` is established."""
        self.send_at(f"+CIPSTATUS={mux}")
        result = self.wait_response(
            DEFAULT_TIMEOUT, ',"CONNECTED"', ',"CLOSED"', ',"CLOSING"', ',"INITIAL"'
        )
        self.wait_response(DEFAULT_TIMEOUT)
        return result == 1

    def socket_available(self, mux: int) -> int:
        """Number of bytes waiting in the modem for ``mux``; refreshes the
        socket's connected flag when there are none."""
        self.send_at(f"+CIPRXGET=4,{mux}")
        result = 0
        if self.wait_response(DEFAULT_TIMEOUT, "+CIPRXGET:") == 1:
            self.skip_until(",")  # mode
            self.skip_until(",")  # mux
            result = self.read_int()
            self.wait_response(DEFAULT_TIMEOUT)
        if not result:
            sock = self.sockets[mux]
            if sock is not None:
                sock.sock_connected = self.socket_connected(mux)
        return result

    def maintain(self) -> None:
        """Refresh the state of the open sockets and drain unsolicited output."""
        if self.timer.millis() - self.prev_check > MAINTAIN_PERIOD_MS:
            self.prev_check = self.timer.millis()
            for mux, sock in enumerate(list(self.sockets)):
                if sock is not None:
                    sock.sock_available = self.socket_available(mux)
        while self.serial.available():
            self.wait_response(10, None, None)

    def connect(self, client: Any, host: str, port: int, ssl_enabled: int) -> tuple[bool, int]:
        """Open a connection on the first free mux; return (success, mux).
        The mux stays reserved for ``client`` even when the connection fails."""
        mux = next((index for index, sock in enumerate(self.sockets) if sock is None), INVALID_MUX)
        if mux == INVALID_MUX:
            return False, INVALID_MUX
        self.sockets[mux] = client

        self.send_at("+SSLOPT=0,0")  # root certificate
        self.wait_response(DEFAULT_TIMEOUT)
        self.send_at("+SSLOPT=1,1")  # client authentication
        self.wait_response(DEFAULT_TIMEOUT)
        self.send_at(f"+CIPSSL={int(ssl_enabled)}")
        response = self.wait_response(DEFAULT_TIMEOUT)
        if ssl_enabled and response != 1:
            return False, mux

        self.send_at(f'+CIPSTART={mux},"TCP","{host}",{port}')
        response = self.wait_response(
            75000,
            "CONNECT OK" + GSM_NL,
            "CONNECT FAIL" + GSM_NL,
            "ALREADY CONNECT" + GSM_NL,
            "ERROR" + GSM_NL,
            "CLOSE OK" + GSM_NL,  # failed HTTPS handshake
        )
        return response == 1, mux

    def disconnect(self, mux: int) -> None:
        """Close the connection on ``mux`` and free it."""
        self.send_at(f"+CIPCLOSE={mux}")
        self.wait_response(DEFAULT_TIMEOUT)
        if 0 <= mux < GSM_MUX_COUNT:
            self.sockets[mux] = None

    def send(self, data: bytes, mux: int) -> int:
        """Send ``data`` on ``mux``; return the byte count the modem accepted."""
        self.send_at(f"+CIPSEND={mux},{len(data)}")
        if self.wait_response(DEFAULT_TIMEOUT, ">") != 1:
            raise ModemError("modem did not prompt for data")
        self.serial.write(bytes(data))
        if self.wait_response(DEFAULT_TIMEOUT, "DATA ACCEPT:") != 1:
            raise ModemError("modem did not accept the data")
        self.skip_until(",")  # mux
        return self.read_int()

    def read(self, size: int, mux: int) -> int:
        """Fetch up to ``size`` bytes of ``mux`` into its socket's FIFO;
        return the number of bytes fetched."""
        self.send_at(f"+CIPRXGET=2,{mux},{size}")
        if self.wait_response(DEFAULT_TIMEOUT, "+CIPRXGET:") != 1:
            return 0
        self.skip_until(",")  # mode
        self.skip_until(",")  # mux
        length = self.read_int()
        remaining = self.read_int()
        sock = self.sockets[mux] if 0 <= mux < GSM_MUX_COUNT else None
        if sock is not None:
            sock.sock_available = remaining
        for _ in range(length):
            byte = self._next_byte() & 0xFF
            if sock is not None:
                sock.rx.put(byte)
        self.wait_response(DEFAULT_TIMEOUT)
        return length