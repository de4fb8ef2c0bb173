# MIT License
# recordosc/core/playback.py — curseur de relecture piloté par tick (boucle de rattrapage)
from __future__ import annotations

import ipaddress
import os
from typing import Any, BinaryIO, Callable, Optional

from recordosc.core.capture import FormatError, read_body, read_timestamp
from recordosc.net.dispatch import PacketCodec


class PlaybackCursor:
    """
    Sequential reader over the records of an open recording.
    - next_due : absolute clock value of the next unread record (None = exhausted)
    - release_due(now, inject, is_active) : delivers every record whose due time has passed
    The stream must be positioned right after the header.
    """

    def __init__(
        self,
        stream: BinaryIO,
        *,
        codec: PacketCodec,
        start_time: float,
        speed: float = 1.0,
    ):
        if speed <= 0:
            raise ValueError(f"speed must be > 0, got {speed}")
        self._stream = stream
        self._codec = codec
        self.start_time = start_time
        self.speed = speed
        self._size = os.fstat(stream.fileno()).st_size
        self.delivered = 0
        self.next_due: Optional[float] = None
        if not self._at_end():
            self.next_due = self._due(read_timestamp(stream))

    @property
    def exhausted(self) -> bool:
        return self.next_due is None

    def _at_end(self) -> bool:
        return self._stream.tell() >= self._size

    def _due(self, timestamp: float) -> float:
        return self.start_time + timestamp / self.speed

    def _read_packet(self) -> Any:
        address, port, payload = read_body(self._stream)
        packet = self._codec.decode(payload)
        ip = None
        if address is not None:
            try:
                ip = ipaddress.ip_address(address)
            except ValueError as e:
                raise FormatError(f"bad source address ({len(address)} bytes): {e}") from e
        packet.ip = ip
        packet.port = port
        return packet

    def release_due(
            self,
            now: float,
            inject: Callable[[Any], None],
            is_active: Optional[Callable[[], bool]] = None,
    ) -> int:
        """
        Catch-up loop: inject all records due at `now`, in file order.
        Stops early once `is_active()` turns false (an injected listener ended
        the session). Returns the number of packets injected during this call.
        """
        n = 0
        while self.next_due is not None and self.next_due <= now:
            inject(self._read_packet())
            n += 1
            self.delivered += 1
            if is_active is not None and not is_active():
                break
            if self._at_end():
                self.next_due = None
                break
            self.next_due = self._due(read_timestamp(self._stream))
        return n
