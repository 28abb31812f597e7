[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "livebooster"
version = "0.1.0"
description = "Device-side client for an MQTT IoT platform over a GSM modem: JSON message encoding and decoding, resource download over HTTP, and AT-command TCP sockets."
requires-python = ">=3.10"
dependencies = []
keywords = ["iot", "mqtt", "gsm", "modem", "at-commands", "json", "telemetry"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications",
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["livebooster"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
