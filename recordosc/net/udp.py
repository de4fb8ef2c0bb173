# recordosc/net/udp.py
# MIT License
# Transport UDP réel (entrée live + sortie relecture)
# - UdpListener  : socket non bloquante, poll() par tick avec budget de datagrammes
# - UdpForwarder : renvoie les paquets rejoués vers une cible host:port
from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from recordosc.net.dispatch import PacketCodec

DEFAULT_MAX_DATAGRAM = 65535
DEFAULT_BUDGET_PER_TICK = 256


@dataclass
class ListenerStatsSnapshot:
    received: int
    bytes_received: int
    decode_errors: int


class UdpListener:
    """
    Live ingress.
    - poll(deliver) : drains up to `budget` datagrams, decodes them and hands
      each packet (with ip/port attached) to `deliver`
    - stats()       : counters snapshot
    """

    def __init__(
        self,
        *,
        codec: PacketCodec,
        host: str = "0.0.0.0",
        port: int = 0,
        budget: int = DEFAULT_BUDGET_PER_TICK,
        max_datagram: int = DEFAULT_MAX_DATAGRAM,
    ):
        self.codec = codec
        self.budget = budget
        self.max_datagram = max_datagram
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        self._sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            self._sock.bind((host, port))
            self._sock.setblocking(False)
        except OSError:
            self._sock.close()
            raise
        self._received = 0
        self._bytes = 0
        self._decode_errors = 0

    @property
    def address(self) -> Tuple[str, int]:
        host, port = self._sock.getsockname()[:2]
        return host, port

    def poll(self, deliver: Callable[[Any], Any]) -> int:
        n = 0
        while n < self.budget:
            try:
                data, addr = self._sock.recvfrom(self.max_datagram)
            except (BlockingIOError, InterruptedError):
                break
            self._received += 1
            self._bytes += len(data)
            try:
                packet = self.codec.decode(data)
            except ValueError:
                # datagramme illisible -> drop
                self._decode_errors += 1
                continue
            packet.ip = ipaddress.ip_address(addr[0].split("%", 1)[0])
            packet.port = int(addr[1])
            deliver(packet)
            n += 1
        return n

    def stats(self) -> ListenerStatsSnapshot:
        return ListenerStatsSnapshot(
            received=self._received,
            bytes_received=self._bytes,
            decode_errors=self._decode_errors,
        )

    def close(self) -> None:
        self._sock.close()


class UdpForwarder:
    """Sends every packet it is given to a fixed host:port."""

    def __init__(self, *, codec: PacketCodec, host: str, port: int):
        self.codec = codec
        self.target = (host, port)
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        self._sock = socket.socket(family, socket.SOCK_DGRAM)
        self.sent = 0

    def __call__(self, packet: Any) -> None:
        self._sock.sendto(self.codec.encode(packet), self.target)
        self.sent += 1

    def close(self) -> None:
        self._sock.close()


def parse_endpoint(text: str, default_host: str = "127.0.0.1") -> Tuple[str, int]:
    """'host:port', '[v6]:port' or bare 'port'."""
    text = text.strip()
    host: Optional[str]
    if text.startswith("["):
        host, _, rest = text[1:].partition("]")
        port_s = rest.lstrip(":")
    elif text.count(":") == 1:
        host, port_s = text.split(":", 1)
    else:
        host, port_s = None, text
    try:
        port = int(port_s)
    except ValueError as e:
        raise ValueError(f"bad endpoint {text!r}: port must be an integer") from e
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"bad endpoint {text!r}: port out of range")
    return (host or default_host), port
