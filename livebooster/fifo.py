"""Fixed-size byte FIFO used to buffer data received on a modem socket."""

from __future__ import annotations

FIFO_SIZE = 64


class GsmFifo:
    """Byte queue holding at most FIFO_SIZE - 1 bytes."""

    def __init__(self) -> None:
        self._data = bytearray()

    def clear(self) -> None:
        """Drop every buffered byte."""
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def free_size(self) -> int:
        """Number of bytes that can still be put."""
        return FIFO_SIZE - 1 - len(self._data)

    def put(self, byte: int) -> bool:
        """Append one byte; return False when the FIFO is full."""
        if not 0 <= byte <= 0xFF:
            raise ValueError(f"byte out of range: {byte}")
        if self.free_size() == 0:
            return False
        self._data.append(byte)
        return True

    def get(self, n: int) -> bytes:
        """Remove and return up to n bytes, oldest first."""
        if n < 0:
            raise ValueError("cannot get a negative number of bytes")
        chunk = bytes(self._data[:n])
        del self._data[:n]
        return chunk