import pytest

from livebooster.fifo import GsmFifo
from livebooster.modem import (
    INVALID_MUX,
    HeraclesModem,
    ModemError,
    RegStatus,
    SimStatus,
)


class FakeSerial:
    def __init__(self, script=None, default=b"OK\r\n"):
        self.script = dict(script or {})
        self.default = default
        self.incoming = bytearray()
        self.written = bytearray()
        self.commands = []
        self.opened = False
        self._pending = b""

    def open(self):
        self.opened = True

    def available(self):
        return len(self.incoming)

    def get(self):
        byte = self.incoming[0]
        del self.incoming[0]
        return byte

    def feed(self, data):
        self.incoming += data

    def write(self, data):
        data = bytes(data)
        self.written += data
        if data == b"AT":
            self._pending = b"AT"
        elif data == b"\r\n" and self._pending:
            command = self._pending.decode("latin-1")
            self._pending = b""
            self.commands.append(command)
            self.feed(self._reply(command))
        elif self._pending:
            self._pending += data

    def _reply(self, command):
        for key in sorted(self.script, key=len, reverse=True):
            if command.startswith(key):
                reply = self.script[key]
                if isinstance(reply, list):
                    return reply.pop(0) if len(reply) > 1 else reply[0]
                return reply
        return self.default


class FakeTimer:
    def __init__(self, now=1000):
        self.now = now
        self.delays = []
        self.initialized = False

    def init(self):
        self.initialized = True

    def millis(self):
        self.now += 1
        return self.now

    def delay(self, ms):
        self.delays.append(ms)
        self.now += ms


class FakeDebug:
    def __init__(self):
        self.lines = []

    def print(self, text):
        self.lines.append(text)


class SocketStub:
    def __init__(self):
        self.rx = GsmFifo()
        self.sock_available = 0
        self.sock_connected = True


def make_modem(script=None, default=b"OK\r\n"):
    serial = FakeSerial(script, default)
    timer = FakeTimer()
    debug = FakeDebug()
    return HeraclesModem(serial, timer, debug), serial, timer, debug


CPIN_READY = b"\r\n+CPIN: READY\r\n\r\nOK\r\n"
CREG_HOME = b"\r\n+CREG: 0,1\r\n\r\nOK\r\n"


def test_send_at_writes_command_line():
    modem, serial, _, _ = make_modem(default=b"")
    modem.send_at("+CREG?")
    assert bytes(serial.written) == b"AT+CREG?\r\n"


def test_wait_response_defaults():
    modem, serial, _, _ = make_modem()
    serial.feed(b"\r\nOK\r\n")
    assert modem.wait_response(100) == 1
    serial.feed(b"\r\nERROR\r\n")
    assert modem.wait_response(100) == 2


def test_wait_response_custom_index():
    modem, serial, _, _ = make_modem()
    serial.feed(b"+X: B\r\n")
    assert modem.wait_response(100, "A", "B") == 2


def test_wait_response_timeout():
    modem, _, timer, _ = make_modem()
    before = timer.now
    assert modem.wait_response(100) == 0
    assert timer.now - before >= 100


def test_wait_response_skips_high_bytes():
    modem, serial, _, _ = make_modem()
    serial.feed(b"O\xffK\r\n")
    assert modem.wait_response(100) == 1


def test_wait_response_urc_resets_check_time():
    modem, serial, _, _ = make_modem()
    modem.sockets[0] = SocketStub()
    modem.prev_check = 999
    serial.feed(b"+CIPRXGET:\r\n1,0\nOK\r\n")
    assert modem.wait_response(100) == 1
    assert modem.prev_check == 0


def test_read_int_stops_at_comma():
    modem, serial, _, _ = make_modem()
    serial.feed(b"123,rest")
    assert modem.read_int() == 123
    assert bytes(serial.incoming) == b"rest"


def test_read_int_stops_at_high_byte():
    modem, serial, _, _ = make_modem()
    serial.feed(b"-42\xff9")
    assert modem.read_int() == -42
    assert bytes(serial.incoming) == b"9"


def test_skip_until_consumes_terminator():
    modem, serial, _, _ = make_modem()
    serial.feed(b" 0,1")
    modem.skip_until(",")
    assert bytes(serial.incoming) == b"1"


def test_test_at_success_and_failure():
    modem, serial, _, _ = make_modem()
    assert modem.test_at(1000) is True
    assert serial.commands == ["AT"]

    silent, _, timer, _ = make_modem(default=b"")
    assert silent.test_at(1000) is False
    assert 200 in timer.delays


@pytest.mark.parametrize(
    "reply, expected",
    [
        (CPIN_READY, SimStatus.READY),
        (b"\r\n+CPIN: SIM PIN\r\n\r\nOK\r\n", SimStatus.LOCKED),
        (b"\r\n+CPIN: SIM PUK\r\n\r\nOK\r\n", SimStatus.LOCKED),
        (b"\r\n+CPIN: NOT INSERTED\r\n\r\nOK\r\n", SimStatus.ERROR),
    ],
)
def test_sim_status(reply, expected):
    modem, _, _, _ = make_modem({"AT+CPIN?": reply})
    assert modem.sim_status(10000) == expected


def test_registration_status_home():
    modem, serial, _, _ = make_modem({"AT+CREG?": CREG_HOME})
    assert modem.registration_status() == RegStatus.OK_HOME
    assert modem.is_network_connected() is True
    assert serial.commands == ["AT+CREG?", "AT+CREG?"]


def test_registration_status_searching_is_not_connected():
    modem, _, _, _ = make_modem({"AT+CREG?": b"\r\n+CREG: 0,2\r\n\r\nOK\r\n"})
    assert modem.registration_status() == RegStatus.SEARCHING
    assert modem.is_network_connected() is False


def test_registration_status_without_answer():
    modem, _, _, _ = make_modem({"AT+CREG?": b"\r\nOK\r\n"})
    assert modem.registration_status() == RegStatus.UNKNOWN


def test_attach_gprs_stops_on_failure():
    modem, serial, _, _ = make_modem({"AT+CIPMUX=1": b"\r\nERROR\r\n"})
    assert modem.attach_gprs() is False
    assert serial.commands[-1] == "AT+CIPMUX=1"


def test_init_without_reset():
    modem, serial, timer, debug = make_modem()
    assert modem.init(False) is True
    assert serial.opened and timer.initialized
    assert debug.lines == ["Serial interface initialized\n", "Timer interface initialized\n"]


def test_init_fails_when_modem_silent():
    modem, _, _, _ = make_modem(default=b"")
    assert modem.init(False) is False


def test_init_with_reset_runs_full_sequence():
    modem, serial, timer, debug = make_modem({"AT+CPIN?": CPIN_READY, "AT+CREG?": CREG_HOME})
    modem.sockets[0] = SocketStub()
    assert modem.init(True) is True
    assert modem.sockets == [None, None]
    assert serial.commands[:3] == ["AT", "AT+CFUN=0", "AT+CFUN=1,1"]
    assert "AT+CIICR" in serial.commands
    assert serial.commands[-1] == 'AT+CDNSCFG="8.8.8.8","8.8.4.4"'
    assert 5000 in timer.delays
    assert "Reset Heracles modem\n" in debug.lines


def test_connect_allocates_muxes():
    reply = {"AT+CIPSTART": b"\r\nOK\r\n\r\n0, CONNECT OK\r\n"}
    modem, serial, _, _ = make_modem(reply)
    first, second, third = SocketStub(), SocketStub(), SocketStub()
    assert modem.connect(first, "example.com", 1883, 0) == (True, 0)
    assert modem.connect(second, "example.com", 1883, 0) == (True, 1)
    assert modem.connect(third, "example.com", 1883, 0) == (False, INVALID_MUX)
    assert 'AT+CIPSTART=0,"TCP","example.com",1883' in serial.commands
    assert modem.sockets == [first, second]


def test_connect_ssl_refused_keeps_slot():
    modem, serial, _, _ = make_modem({"AT+CIPSSL": b"\r\nERROR\r\n"})
    client = SocketStub()
    assert modem.connect(client, "example.com", 8883, 1) == (False, 0)
    assert "AT+CIPSSL=1" in serial.commands
    assert not any(command.startswith("AT+CIPSTART") for command in serial.commands)
    assert modem.sockets[0] is client


def test_connect_failure_reported():
    modem, _, _, _ = make_modem({"AT+CIPSTART": b"\r\nOK\r\n\r\n0, CONNECT FAIL\r\n"})
    assert modem.connect(SocketStub(), "example.com", 80, 0) == (False, 0)


def test_disconnect_frees_mux():
    modem, serial, _, _ = make_modem({"AT+CIPSTART": b"0, CONNECT OK\r\n"})
    modem.connect(SocketStub(), "example.com", 80, 0)
    modem.disconnect(0)
    assert modem.sockets[0] is None
    assert serial.commands[-1] == "AT+CIPCLOSE=0"
    assert modem.connect(SocketStub(), "example.com", 80, 0) == (True, 0)


def test_send_returns_accepted_count():
    modem, serial, _, _ = make_modem({"AT+CIPSEND": b"> DATA ACCEPT:0,5\r\n"})
    assert modem.send(b"hello", 0) == 5
    assert "AT+CIPSEND=0,5" in serial.commands
    assert b"hello" in serial.written


def test_send_without_prompt_raises():
    modem, _, _, _ = make_modem({"AT+CIPSEND": b"\r\nERROR\r\n"})
    with pytest.raises(ModemError):
        modem.send(b"hello", 0)


def test_read_fills_socket_fifo():
    modem, serial, _, _ = make_modem({"AT+CIPRXGET=2": b"\r\n+CIPRXGET: 2,0,5,0\r\nhello\r\nOK\r\n"})
    sock = SocketStub()
    sock.sock_available = 9
    modem.sockets[0] = sock
    assert modem.read(10, 0) == 5
    assert sock.rx.get(10) == b"hello"
    assert sock.sock_available == 0
    assert "AT+CIPRXGET=2,0,10" in serial.commands


def test_read_without_answer_returns_zero():
    modem, _, _, _ = make_modem({"AT+CIPRXGET=2": b"\r\nERROR\r\n"})
    modem.sockets[0] = SocketStub()
    assert modem.read(10, 0) == 0


def test_socket_available_reports_count():
    modem, serial, _, _ = make_modem({"AT+CIPRXGET=4": b"\r\n+CIPRXGET: 4,0,7\r\n\r\nOK\r\n"})
    modem.sockets[0] = SocketStub()
    assert modem.socket_available(0) == 7
    assert not any(command.startswith("AT+CIPSTATUS") for command in serial.commands)


def test_socket_available_zero_refreshes_connection():
    modem, serial, _, _ = make_modem(
        {
            "AT+CIPRXGET=4": b"\r\n+CIPRXGET: 4,0,0\r\n\r\nOK\r\n",
            "AT+CIPSTATUS": b'+CIPSTATUS: 0,0,"TCP","192.0.2.1","80","CLOSED"\r\n\r\nOK\r\n',
        }
    )
    sock = SocketStub()
    modem.sockets[0] = sock
    assert modem.socket_available(0) == 0
    assert sock.sock_connected is False
    assert "AT+CIPSTATUS=0" in serial.commands


def test_socket_connected():
    modem, _, _, _ = make_modem(
        {"AT+CIPSTATUS": b'+CIPSTATUS: 0,0,"TCP","192.0.2.1","80","CONNECTED"\r\n\r\nOK\r\n'}
    )
    assert modem.socket_connected(0) is True


def test_maintain_updates_open_sockets():
    modem, serial, _, _ = make_modem({"AT+CIPRXGET=4": b"\r\n+CIPRXGET: 4,1,3\r\n\r\nOK\r\n"})
    sock = SocketStub()
    modem.sockets[1] = sock
    modem.maintain()
    assert sock.sock_available == 3
    assert serial.commands == ["AT+CIPRXGET=4,1"]
    assert modem.prev_check > 0

    modem.maintain()
    assert serial.commands == ["AT+CIPRXGET=4,1"]


def test_maintain_drains_pending_output():
    modem, serial, _, _ = make_modem()
    modem.prev_check = 10**9
    serial.feed(b"garbage\r\n")
    modem.maintain()
    assert serial.available() == 0