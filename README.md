# livebooster

A device-side client library for sending telemetry to an MQTT-based IoT
platform and receiving configuration updates, commands and resource
downloads from it, with a driver for a GSM modem controlled by AT commands.

## Modules

- **`livebooster.defs`** – the data model: `Data`, `Param`, `Resource`,
  `Command`, `CommandArg`, `CommandRequest`, `GpsFix`, `SetOfData`,
  `SetOfParams`, `UpdatedParams`, `SetOfCommands`, `SetOfResources`,
  `UpdatedResource`; the `DataType`, `ReturnCode`, `ResourceRespCode` and
  `ClientState` enums; `LiveBoosterError`, which carries a `ReturnCode`; and
  the `SerialInterface`, `TimerInterface` and `DebugInterface` protocols that
  your platform supplies.
- **`livebooster.fifo`** – `GsmFifo`, a bounded byte queue holding at most 63
  bytes (`put`, `get`, `free_size`, `clear`, `len()`).
- **`livebooster.jsmn`** – a small, lenient tokenizing JSON parser: `parse`
  and `JsmnParser` return `Token` objects (kind, span, child count); errors
  are `JsmnNoMemoryError`, `JsmnInvalidError` and `JsmnPartialError`.
- **`livebooster.json_api`** – `JsonWriter`, a bounded writer of the compact
  JSON the platform expects, plus `data_type_to_str` and `data_type_from_str`.
- **`livebooster.encode`** – `encode_data`, `encode_status`,
  `encode_resources`, `encode_params_all`, `encode_params_update`,
  `encode_cmd_resp`, `encode_cmd_result`, `encode_rsc_result` and
  `encode_rsc_error`. Each returns the message text, or `None` when there is
  nothing to encode.
- **`livebooster.decode`** – `decode_params_req`, `decode_cmd_req` and
  `decode_rsc_req` for incoming configuration updates, commands and resource
  download requests; they raise `DecodeError`, whose `code` and `cid` are the
  values to report back.
- **`livebooster.modem`** – `HeraclesModem`, the AT-command driver of the GSM
  modem: initialisation, network registration, GPRS attachment and up to two
  multiplexed TCP sockets.
- **`livebooster.tcp_client`** – `HeraclesTcpClient`, a TCP connection on one
  modem socket (`HeraclesTcpClient.create(serial, timer, debug, do_reset)`).
- **`livebooster.http`** – `HttpDownloader`, a minimal HTTP/1.0 GET over a
  `TcpClient`, used to fetch resources; failures raise `HttpError`.
- **`livebooster.core`** – `LiveBooster`, which ties it all together, and the
  `MqttClient` protocol it publishes and subscribes through.

## Encoding a data message

```python
from livebooster.defs import Data, DataType, SetOfData
from livebooster.encode import encode_data

temperature = Data(DataType.FLOAT, "temp", 21.5)
data_set = SetOfData()
data_set.set_stream_id("urn:lo:nsid:sensor:demo!measures")
data_set.data = [temperature]

print(encode_data(data_set))
# {"s":"urn:lo:nsid:sensor:demo!measures","v": {"temp":21.500000}}
```

## Parsing JSON into tokens

```python
from livebooster.jsmn import parse

js = '{"cid": 42}'
for token in parse(js, 10):
    print(token.type.name, token.text(js))
```

## Running on a device

`LiveBooster(device_id, api_key_p1, api_key_p2, serial, timer, debug, mqtt, host)`
takes objects implementing `SerialInterface`, `TimerInterface`,
`DebugInterface` and `MqttClient`, and the host name of the platform (port
8883 by default). The MQTT password is built from the two 64-bit halves of
the API key by `api_key_password`.

Attach what the device offers with `attach_data`, `attach_cfg_parameters`,
`attach_commands` and `attach_resources`, then call `connect()` once and
`cycle(timeout_ms)` periodically. Publish a data set with
`push_data(handle)`, read a running resource download with
`get_resources(resource, length)`, and end with `close()`. Failures raise
`LiveBoosterError`.

## What the package does not do

- It contains no MQTT implementation: you supply an object satisfying the
  `MqttClient` protocol (`connect`, `is_connected`, `subscribe`, `publish`,
  `yield_`, `disconnect`, each returning 0 on success).
- It contains no serial port, clock or logging back end: you supply
  `SerialInterface`, `TimerInterface` and `DebugInterface` objects.
- It provides no command-line program.

## Tests

```
pip install livebooster[test]
pytest
```