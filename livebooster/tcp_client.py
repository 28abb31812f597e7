"""TCP client running over a Heracles modem socket."""

from __future__ import annotations

from livebooster.defs import DebugInterface, SerialInterface, TimerInterface
from livebooster.fifo import GsmFifo
from livebooster.modem import INVALID_MUX, HeraclesModem, ModemError

# One modem per serial line, shared by every client created on it.
_MODEMS: dict[int, HeraclesModem] = {}


def _modem_for(serial: SerialInterface, timer: TimerInterface, debug: DebugInterface) -> HeraclesModem:
    modem = _MODEMS.get(id(serial))
    if modem is None or modem.serial is not serial:
        modem = HeraclesModem(serial, timer, debug)
        _MODEMS[id(serial)] = modem
    else:
        modem.timer = timer
        modem.debug = debug
    return modem


class HeraclesTcpClient:
    """A TCP connection multiplexed on the modem; received data is buffered
    in ``rx``."""

    def __init__(self, modem: HeraclesModem, timer: TimerInterface, debug: DebugInterface) -> None:
        self.modem = modem
        self.timer = timer
        self.debug = debug
        self.mux = INVALID_MUX
        self.sock_available = 0
        self.sock_connected = False
        self.rx = GsmFifo()

    @classmethod
    def create(
        cls,
        serial: SerialInterface,
        timer: TimerInterface,
        debug: DebugInterface,
        do_reset: bool,
    ) -> "HeraclesTcpClient":
        """Initialise the modem on ``serial`` and return a client using it."""
        modem = _modem_for(serial, timer, debug)
        initialized = modem.init(do_reset)
        debug.print("HeraclesModem  ")
        debug.print("initialized\n" if initialized else "not initialized\n")
        return cls(modem, timer, debug)

    def connect(self, host: str, port: int, ssl_enabled: int = 0) -> bool:
        """Open the connection to ``host:port``."""
        self.rx.clear()
        self.sock_connected, self.mux = self.modem.connect(self, host, port, ssl_enabled)
        return self.sock_connected

    def stop(self) -> None:
        """Close the connection and drop buffered data."""
        self.modem.disconnect(self.mux)
        self.sock_connected = False
        self.rx.clear()

    def write(self, data: bytes) -> int:
        """Send ``data``; return the byte count sent, or -1 on failure."""
        self.modem.maintain()
        try:
            return self.modem.send(data, self.mux)
        except ModemError:
            return -1

    def available(self) -> int:
        """Bytes buffered here plus bytes waiting in the modem."""
        if not len(self.rx) and self.sock_connected:
            self.modem.maintain()
        return len(self.rx) + self.sock_available

    def read(self, max_size: int, timeout_ms: int) -> bytes:
        """Read up to ``max_size`` bytes, fetching from the modem as needed."""
        self.modem.maintain()
        received = bytearray()
        start = self.timer.millis()
        while len(received) < max_size:
            if self.timer.millis() - start > timeout_ms:
                break
            chunk = min(len(self.rx), max_size - len(received))
            if chunk > 0:
                received += self.rx.get(chunk)
                continue
            self.modem.maintain()
            if self.sock_available > 0:
                self.modem.read(self.rx.free_size(), self.mux)
            else:
                break
        return bytes(received)

    def connected(self) -> bool:
        """True while data remains to be read or the connection is open."""
        if self.available():
            return True
        return bool(self.sock_connected)