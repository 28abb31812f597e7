"""Device client: attaches collected data, configuration parameters, commands
and resources, and exchanges them with the platform over MQTT."""

from __future__ import annotations

import hashlib
from typing import Any, Callable, Optional, Protocol, Sequence, runtime_checkable

from livebooster.decode import DecodeError, decode_cmd_req, decode_params_req, decode_rsc_req
from livebooster.defs import (
    MAX_OF_DATA_SET,
    SETOFDATA_MODEL_SZ,
    SETOFDATA_TAGS_SZ,
    SETOFDATA_TIMESTAMP_SZ,
    SSL_ENABLE,
    Command,
    CommandCallback,
    Data,
    DebugInterface,
    GpsFix,
    LiveBoosterError,
    Param,
    ParamCallback,
    Resource,
    ResourceDataCallback,
    ResourceNotifyCallback,
    ResourceRespCode,
    ReturnCode,
    SerialInterface,
    SetOfCommands,
    SetOfData,
    SetOfParams,
    SetOfResources,
    TimerInterface,
    UpdatedParams,
    UpdatedResource,
)
from livebooster.encode import (
    encode_cmd_result,
    encode_data,
    encode_params_all,
    encode_params_update,
    encode_resources,
    encode_rsc_error,
    encode_rsc_result,
)
from livebooster.http import HttpDownloader, HttpError
from livebooster.json_api import JsonEncodeError
from livebooster.tcp_client import HeraclesTcpClient

SERVER_PORT = 8883
MQTT_USER_NAME = "json+device"
MQTT_KEEPALIVE_SEC = 30
QOS0 = 0

TOPIC_CFG_UPD = "dev/cfg/upd"
TOPIC_CMD = "dev/cmd"
TOPIC_RSC_UPD = "dev/rsc/upd"
TOPIC_CFG = "dev/cfg"
TOPIC_RSC = "dev/rsc"
TOPIC_DATA = "dev/data"
TOPIC_CMD_RES = "dev/cmd/res"
TOPIC_RSC_UPD_RES = "dev/rsc/upd/res"
TOPIC_RSC_UPD_ERR = "dev/rsc/upd/err"

# Resource download stopped because the data callback read nothing.
_NO_DATA = -50

MessageHandler = Callable[[bytes], None]


@runtime_checkable
class MqttClient(Protocol):
    """MQTT session used to reach the platform; calls return 0 on success."""

    def connect(self, host: str, port: int, ssl_enabled: int, client_id: str,
                username: str, password: str, keep_alive: int) -> int: ...

    def is_connected(self) -> bool: ...

    def subscribe(self, topic: str, qos: int, handler: MessageHandler) -> int: ...

    def publish(self, topic: str, payload: bytes, qos: int) -> int: ...

    def yield_(self, timeout_ms: int) -> int: ...

    def disconnect(self) -> None: ...


def api_key_password(p1: int, p2: int) -> str:
    """Build the MQTT password from the two 64-bit halves of the API key."""
    mask = (1 << 64) - 1
    return f"{p1 & mask:016x}{p2 & mask:016x}"[:32]


def _clip(text: Optional[str], size: int) -> str:
    return (text or "")[: size - 1]


def _safe(encoder: Callable[..., Optional[str]], *args: Any) -> Optional[str]:
    try:
        return encoder(*args)
    except JsonEncodeError:
        return None


class LiveBooster:
    """One device connected to the platform."""

    def __init__(
        self,
        device_id: str,
        api_key_p1: int,
        api_key_p2: int,
        serial: SerialInterface,
        timer: TimerInterface,
        debug: DebugInterface,
        mqtt: MqttClient,
        host: str,
        port: int = SERVER_PORT,
        http_factory: Optional[Callable[[], HttpDownloader]] = None,
    ) -> None:
        self.device_id = device_id
        self.api_key_p1 = api_key_p1
        self.api_key_p2 = api_key_p2
        self.serial = serial
        self.timer = timer
        self.debug = debug
        self.mqtt = mqtt
        self.host = host
        self.port = port
        self._http_factory = http_factory or self._default_http
        self.http: Optional[HttpDownloader] = None

        self.params = SetOfParams()
        self.updated_params = UpdatedParams()
        self.commands = SetOfCommands()
        self.data_sets = [SetOfData() for _ in range(MAX_OF_DATA_SET)]
        self.resources = SetOfResources()
        self.updated_resource = UpdatedResource()
        self._handlers: dict[str, Optional[MessageHandler]] = {
            TOPIC_CFG_UPD: None,
            TOPIC_CMD: None,
            TOPIC_RSC_UPD: None,
        }

    def _default_http(self) -> HttpDownloader:
        tcp = HeraclesTcpClient.create(self.serial, self.timer, self.debug, False)
        return HttpDownloader(tcp, self.timer)

    def _publish(self, topic: str, payload: str) -> int:
        return self.mqtt.publish(topic, payload.encode("utf-8"), QOS0)

    # -- connection ------------------------------------------------------

    def connect(self) -> None:
        """Connect to the platform, subscribe the attached topics and publish
        the configuration and the resources."""
        self.debug.print("  ... MQTTConnect\n")
        res = self.mqtt.connect(
            host=self.host,
            port=self.port,
            ssl_enabled=SSL_ENABLE,
            client_id=self.device_id,
            username=MQTT_USER_NAME,
            password=api_key_password(self.api_key_p1, self.api_key_p2),
            keep_alive=MQTT_KEEPALIVE_SEC,
        )
        if res != 0:
            raise LiveBoosterError(res)

        for topic, handler in self._handlers.items():
            if handler is not None:
                self.debug.print("  ... MQTTSubscribe\n")
                res = self.mqtt.subscribe(topic, QOS0, handler)
                if res != 0:
                    raise LiveBoosterError(res)

        if self.params.params:
            message = _safe(encode_params_all, self.params.params, 0)
            if message is not None:
                res = self._publish(TOPIC_CFG, message)
                self.debug.print(f'>> Publish on "dev/cfg":  {message}\n')
        if self.resources.resources:
            message = _safe(encode_resources, self.resources.resources)
            if message is not None:
                res = self._publish(TOPIC_RSC, message)
                self.debug.print(f'>> Publish on "dev/rsc":  {message}\n')
        if res != 0:
            raise LiveBoosterError(res)

    def cycle(self, timeout_ms: int) -> None:
        """Publish pending answers, advance a resource download and process
        the messages received within ``timeout_ms``."""
        if not self.mqtt.is_connected():
            self.debug.print("MQTT Is not Connected\n")
            raise LiveBoosterError(ReturnCode.CYCLE)
        if self._handlers[TOPIC_CFG_UPD] is not None:
            self._process_config()
        if self._process_get_rsc() < 0:
            self.debug.print("WARNING: Problem on connection HTTP\n")
        res = self.mqtt.yield_(timeout_ms)
        if res < 0:
            raise LiveBoosterError(res)

    def close(self) -> None:
        """Disconnect from the platform when connected."""
        connected = self.mqtt.is_connected()
        self.debug.print(f"MQTT is connected: {int(connected)} {' =>Oui' if connected else ' =>Non'}\n")
        if connected:
            self.mqtt.disconnect()
            self.debug.print("Disconnected !\n")

    # -- collected data --------------------------------------------------

    def attach_data(self, stream_id: str, model: Optional[str], tags: Optional[str],
                    timestamp: Optional[str], gps: Optional[GpsFix], data: Sequence[Data]) -> int:
        """Register a set of collected data and return its handle."""
        if not stream_id or not data:
            raise LiveBoosterError(ReturnCode.ATTACH_DATA)
        for handle, slot in enumerate(self.data_sets):
            if not slot.stream_id:
                slot.set_stream_id(stream_id)
                slot.model = _clip(model, SETOFDATA_MODEL_SZ)
                slot.tags = _clip(tags, SETOFDATA_TAGS_SZ)
                slot.timestamp = _clip(timestamp, SETOFDATA_TIMESTAMP_SZ)
                slot.gps = gps
                slot.data = list(data)
                return handle
        raise LiveBoosterError(ReturnCode.ATTACH_DATA)

    def push_data(self, handle: int) -> None:
        """Publish the data set registered under ``handle``."""
        if 0 <= handle < MAX_OF_DATA_SET:
            data_set = self.data_sets[handle]
            if data_set.stream_id and data_set.data:
                message = _safe(encode_data, data_set)
                if message is not None:
                    self.debug.print(f"=> PUBLISH Data {message}\n")
                    res = self._publish(TOPIC_DATA, message)
                    if res != 0:
                        raise LiveBoosterError(res)
                    return
        self.debug.print("ERROR while publishing data !\n")
        raise LiveBoosterError(ReturnCode.PUSH_DATA)

    # -- attachments -----------------------------------------------------

    def attach_cfg_parameters(self, params: Sequence[Param], callback: Optional[ParamCallback]) -> None:
        """Register the configuration parameters and their update callback."""
        self.params.params = list(params)
        self.params.callback = callback
        self._handlers[TOPIC_CFG_UPD] = self._on_cfg_update
        self.updated_params.reset()

    def attach_commands(self, commands: Sequence[Command], callback: Optional[CommandCallback]) -> None:
        """Register the commands and the callback that processes them."""
        self.commands.commands = list(commands)
        self.commands.callback = callback
        self._handlers[TOPIC_CMD] = self._on_command

    def attach_resources(self, resources: Sequence[Resource],
                         notify_cb: Optional[ResourceNotifyCallback],
                         data_cb: Optional[ResourceDataCallback]) -> None:
        """Register the resources and their transfer callbacks."""
        self.resources.resources = list(resources)
        self.resources.notify_cb = notify_cb
        self.resources.data_cb = data_cb
        self._handlers[TOPIC_RSC_UPD] = self._on_rsc_update
        self.http = self._http_factory()

    def get_resources(self, resource: Resource, length: int) -> bytes:
        """Read up to ``length`` bytes of the running download of ``resource``."""
        pending = self.updated_resource
        if not pending.cid or pending.resource is not resource or self.http is None:
            self.debug.print("ERROR - No running resource download !\n")
            if self.http is not None:
                self.http.close()
            raise LiveBoosterError(ReturnCode.GET_RESOURCES)
        try:
            chunk = self.http.data(length)
        except HttpError as exc:
            self.debug.print(
                f"ERROR({int(exc.code)}) while reading {length} bytes "
                f"(offset={pending.offset}/{pending.size} of  {resource.name})"
            )
            raise
        if chunk:
            pending.md5_ctx.update(chunk)
            pending.offset += len(chunk)
        else:
            self.debug.print(
                f"No byte while reading {length} bytes "
                f"(offset={pending.offset}/{pending.size} of  {resource.name})\n"
            )
        return chunk

    # -- received messages -----------------------------------------------

    def _on_cfg_update(self, payload: bytes) -> None:
        try:
            decode_params_req(payload, self.params, self.updated_params)
        except DecodeError as exc:
            self.debug.print(f"Configuration request rejected: {exc}\n")

    def _on_command(self, payload: bytes) -> None:
        try:
            result, cid = decode_cmd_req(payload, self.commands)
        except DecodeError as exc:
            result, cid = exc.code, exc.cid
        if cid:
            message = _safe(encode_cmd_result, cid, result)
            if message is not None:
                self.debug.print(f"=> Publish  {message}\n")
                self._publish(TOPIC_CMD_RES, message)

    def _on_rsc_update(self, payload: bytes) -> None:
        result: Any = ResourceRespCode.OK
        try:
            cid = decode_rsc_req(payload, self.resources, self.updated_resource)
        except DecodeError as exc:
            result, cid = exc.code, exc.cid
        message = _safe(encode_rsc_result, cid, result)
        self.debug.print(f"=> Publish Resource {message}\n")
        if message is not None:
            self._publish(TOPIC_RSC_UPD_RES, message)

    # -- periodic processing ---------------------------------------------

    def _process_config(self) -> int:
        rc = 0
        updated = self.updated_params
        if self.params.params and updated.cid != 0:
            if updated.params and updated.params[0] is not None:
                message = _safe(encode_params_update, updated)
            else:
                message = _safe(encode_params_all, self.params.params, updated.cid)
            if message is not None:
                rc = self._publish(TOPIC_CFG, message)
                if rc == 0:
                    updated.cid = 0
            else:
                updated.cid = 0
        return rc

    def _publish_rsc_error(self, error: str, details: str) -> int:
        message = _safe(encode_rsc_error, error, details)
        self.debug.print(f"=> Publish Resource {message}\n")
        if message is None:
            return 0
        return self._publish(TOPIC_RSC_UPD_ERR, message)

    def _finish_download(self, pending: UpdatedResource) -> None:
        computed = pending.md5_ctx.digest()
        valid = computed == pending.md5
        if not valid:
            index = next(i for i, (a, b) in enumerate(zip(computed, pending.md5)) if a != b)
            self.debug.print(f"Computed MD5 {computed.hex()}\n")
            self.debug.print(f"LO Server MD5 {pending.md5.hex()}\n")
            self.debug.print(
                f"MD5 ERROR - [{index}] {computed[index]:02x} != {pending.md5[index]:02x}\n"
            )
        notify = self.resources.notify_cb
        if notify is None:
            return
        answer = notify(1 if valid else 2, pending.resource, pending.version_old,
                        pending.version_new, pending.size)
        if answer == ResourceRespCode.OK:
            if self.resources.resources:
                message = _safe(encode_resources, self.resources.resources)
                self.debug.print(f'>> Publish on "dev/rsc":  {message}\n')
                if message is not None:
                    self._publish(TOPIC_RSC, message)
        else:
            self._publish_rsc_error("INVALID_RESSOURCE", "md5 error")

    def _process_get_rsc(self) -> int:
        pending = self.updated_resource
        if not pending.cid or pending.resource is None:
            return 0
        rc = 0
        data_cb = self.resources.data_cb
        if data_cb is None:
            self.debug.print(
                f"PROCESS PENDING RESOURCE cid={pending.cid} - {pending.resource.name}"
                " => NO USER Callback => ABORT !\n"
            )
        elif pending.connected:
            rc = data_cb(pending.resource, pending.offset)
            if rc < 0:
                self.debug.print("ERROR returned by User callback function\n")
                rc = int(ReturnCode.HANDLER_PROCESS_GET_RSC)
            elif rc == 0:
                rc = _NO_DATA
            if pending.offset == pending.size:
                self._finish_download(pending)
                rc = int(ReturnCode.HANDLER_PROCESS_GET_RSC)
        else:
            self.debug.print(
                f"PROCESS PENDING RESOURCE {pending.resource.name} - cid={pending.cid} "
                f"retry={pending.retry} offset={pending.offset} => connect to {pending.uri} ...\n"
            )
            try:
                if self.http is None:
                    raise HttpError(ReturnCode.HTTP_START_FAIL_CONNEXION)
                self.http.start(pending.uri, pending.size, pending.offset)
            except HttpError as exc:
                rc = int(exc.code)
                self._publish_rsc_error("ERROR HTTP", "Failure HTTP connection or data not received")
            else:
                self.debug.print(
                    f"PROCESS RESOURCE {pending.resource.name} - cid={pending.cid} uri='{pending.uri}'\n"
                )
                pending.connected = True
                if pending.offset == 0:
                    pending.md5_ctx = hashlib.md5()

        if rc < 0:
            if pending.connected:
                if self.http is not None:
                    self.http.close()
                if rc == _NO_DATA and pending.offset != pending.size:
                    self._publish_rsc_error("ERROR HTTP", "All data not received")
            pending.cid = 0
            pending.resource = None
            pending.connected = False
            pending.retry = 0
            rc = 0
        return rc