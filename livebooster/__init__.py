"""Device-side IoT client: JSON message encoding and decoding, a GSM modem
AT-command driver with TCP sockets, and resource download over HTTP."""

__version__ = "0.1.0"