# tests/net/test_dispatch.py
# MIT License
from __future__ import annotations

from typing import List

import pytest

from recordosc.net.dispatch import Datagram, DatagramCodec, PacketBus


def test_bus_patterns_and_bind_order():
    bus = PacketBus()
    seen: List[str] = []
    bus.bind("*", lambda p: seen.append("all:" + p.address))
    bus.bind("/synth/*", lambda p: seen.append("synth:" + p.address))
    bus.bind("/fx", lambda p: seen.append("fx:" + p.address))

    assert bus.deliver(Datagram(data=b"", address="/synth/freq")) == 2
    assert bus.deliver(Datagram(data=b"", address="/fx")) == 2
    assert bus.deliver(Datagram(data=b"", address="/other")) == 1
    assert seen == [
        "all:/synth/freq",
        "synth:/synth/freq",
        "all:/fx",
        "fx:/fx",
        "all:/other",
    ]


def test_unbind_and_unknown_handle():
    bus = PacketBus()
    seen: List[bytes] = []
    h = bus.bind("*", lambda p: seen.append(p.data))
    bus.deliver(Datagram(data=b"1"))
    bus.unbind(h)
    bus.deliver(Datagram(data=b"2"))
    assert seen == [b"1"]
    assert len(bus) == 0
    with pytest.raises(KeyError):
        bus.unbind(h)


def test_unbind_during_fan_out():
    """Un callback qui se désabonne pendant la diffusion ne casse pas l'itération."""
    bus = PacketBus()
    seen: List[str] = []
    handles = []

    def first(p):
        seen.append("first")
        bus.unbind(handles[0])

    handles.append(bus.bind("*", first))
    bus.bind("*", lambda p: seen.append("second"))
    bus.deliver(Datagram(data=b""))
    bus.deliver(Datagram(data=b""))
    assert seen == ["first", "second", "second"]


def test_inject_counts_separately():
    bus = PacketBus()
    got = []
    bus.bind("*", got.append)
    bus.inject_as_received(Datagram(data=b"r"))
    bus.deliver(Datagram(data=b"l"))
    assert bus.injected == 1
    assert bus.delivered == 1
    assert [p.data for p in got] == [b"r", b"l"]


def test_datagram_codec_passthrough():
    codec = DatagramCodec()
    pkt = codec.decode(bytearray(b"/x\x00\x00,\x00\x00\x00"))
    assert isinstance(pkt, Datagram)
    assert pkt.ip is None and pkt.port == 0
    assert codec.encode(pkt) == b"/x\x00\x00,\x00\x00\x00"
