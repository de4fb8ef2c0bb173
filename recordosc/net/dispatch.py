# recordosc/net/dispatch.py
# MIT License
# Contrats des collaborateurs externes (dispatch + codec protocole)
# - Dispatcher  : bind(pattern, cb) / unbind(handle) / inject_as_received(packet)
# - PacketCodec : encode(packet) -> bytes / decode(bytes) -> packet
# - PacketBus   : dispatcher en processus (patterns shell, ordre de bind)
# - Datagram + DatagramCodec : paquet opaque (payload brut)
from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv6Address
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

IpAddress = Union[IPv4Address, IPv6Address]
PacketCallback = Callable[[Any], None]


class Dispatcher(Protocol):
    def bind(self, pattern: str, on_packet: PacketCallback) -> Any: ...

    def unbind(self, handle: Any) -> None: ...

    def inject_as_received(self, packet: Any) -> None: ...


class PacketCodec(Protocol):
    def encode(self, packet: Any) -> bytes: ...

    def decode(self, data: bytes) -> Any: ...


@dataclass
class Datagram:
    data: bytes
    address: str = ""
    ip: Optional[IpAddress] = None
    port: int = 0


class DatagramCodec:
    """Passe-through: the payload is the datagram body."""

    def encode(self, packet: Datagram) -> bytes:
        return bytes(packet.data)

    def decode(self, data: bytes) -> Datagram:
        return Datagram(data=bytes(data))


@dataclass(frozen=True)
class BindHandle:
    pattern: str
    seq: int


class PacketBus:
    """
    In-process dispatcher.
    - bind(pattern, cb) : shell-style pattern on packet.address ("*" = all)
    - deliver(packet)   : live ingress
    - inject_as_received(packet) : same fan-out, used by replay
    Listeners are called in bind order.
    """

    def __init__(self, *, key: Optional[Callable[[Any], str]] = None):
        self._key = key or (lambda p: str(getattr(p, "address", "") or ""))
        self._binds: Dict[BindHandle, PacketCallback] = {}
        self._seq = 0
        self.delivered = 0
        self.injected = 0

    def bind(self, pattern: str, on_packet: PacketCallback) -> BindHandle:
        handle = BindHandle(pattern=pattern, seq=self._seq)
        self._seq += 1
        self._binds[handle] = on_packet
        return handle

    def unbind(self, handle: BindHandle) -> None:
        if self._binds.pop(handle, None) is None:
            raise KeyError(f"unknown bind handle: {handle!r}")

    def __len__(self) -> int:
        return len(self._binds)

    def _fan_out(self, packet: Any) -> int:
        addr = self._key(packet)
        # Snapshot: a callback may bind/unbind while we iterate
        targets: List[PacketCallback] = [
            cb for h, cb in list(self._binds.items()) if fnmatch.fnmatchcase(addr, h.pattern)
        ]
        for cb in targets:
            cb(packet)
        return len(targets)

    def deliver(self, packet: Any) -> int:
        self.delivered += 1
        return self._fan_out(packet)

    def inject_as_received(self, packet: Any) -> None:
        self.injected += 1
        self._fan_out(packet)
