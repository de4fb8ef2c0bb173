# tests/core/test_runner.py
# MIT License
from __future__ import annotations

import json
import socket
import time
from pathlib import Path
from typing import List

from recordosc.core.config import Endpoint, SessionConfig
from recordosc.core.recorder import Recorder
from recordosc.core.runner import EXIT_CONFIG, EXIT_FORMAT, EXIT_IO, EXIT_OK, Runner, main
from recordosc.core.summary import summarize
from recordosc.net.dispatch import Datagram, DatagramCodec, PacketBus


class FakeTime:
    """Horloge logique: sleep() avance l'horloge (+ une courte vraie pause pour le noyau)."""

    def __init__(self):
        self.t = 0.0
        self.on_sleep = None

    def clock(self) -> float:
        return self.t

    def sleep(self, s: float) -> None:
        if self.on_sleep is not None:
            self.on_sleep()
        self.t += s
        time.sleep(0.001)


def _cfg(tmp_path: Path, **kw) -> SessionConfig:
    cfg = SessionConfig.from_dict({"recordings_dir": str(tmp_path), "tick_ms": 10})
    for k, v in kw.items():
        setattr(cfg, k, v)
    return cfg


def _make_recording(path: Path, stamps: List[float]) -> None:
    ft = FakeTime()
    bus = PacketBus()
    rec = Recorder(dispatcher=bus, codec=DatagramCodec(), clock=ft.clock)
    rec.start_record(path)
    for i, ts in enumerate(stamps):
        ft.t = ts
        bus.deliver(Datagram(data=f"pkt{i}".encode()))
    rec.stop_record()


def test_record_session_with_sidecars(tmp_path: Path):
    cfg = _cfg(tmp_path, listen=Endpoint("127.0.0.1", 0), duration_s=0.5)
    ft = FakeTime()
    runner = Runner(config=cfg, ui_enabled=False, clock=ft.clock, sleep=ft.sleep)
    sent: List[bool] = []

    def _send_once():
        if sent:
            return
        tx = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            tx.sendto(b"/one", runner.listener.address)
            tx.sendto(b"/two", runner.listener.address)
        finally:
            tx.close()
        sent.append(True)

    ft.on_sleep = _send_once
    out = tmp_path / "live.oscrec"
    assert runner.record(out) == EXIT_OK

    s = summarize(out)
    assert s.finalized
    assert s.records == 2
    assert s.sources and all(k.startswith("127.0.0.1:") for k in s.sources)

    events = [json.loads(line) for line in (tmp_path / "live.events.jsonl").read_text().splitlines()]
    assert [e["type"] for e in events] == ["start_record", "stop_record"]
    assert events[-1]["payload"]["packet_count"] == 2
    assert (tmp_path / "live.ticks.csv").read_text().startswith("t_ms,state,ingress")
    assert "tick_ms: 10" in (tmp_path / "live.session.yaml").read_text()


def test_play_forwards_in_order(tmp_path: Path):
    p = tmp_path / "take.oscrec"
    _make_recording(p, [0.0, 0.05, 0.05, 0.2])

    rx = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    rx.bind(("127.0.0.1", 0))
    rx.settimeout(2.0)
    try:
        cfg = _cfg(tmp_path, forward=Endpoint("127.0.0.1", rx.getsockname()[1]), journal=False)
        ft = FakeTime()
        runner = Runner(config=cfg, ui_enabled=False, clock=ft.clock, sleep=ft.sleep)
        assert runner.play(p) == EXIT_OK
        assert runner.forwarder is not None and runner.forwarder.sent == 4
        got = [rx.recvfrom(1024)[0] for _ in range(4)]
    finally:
        rx.close()
    assert got == [b"pkt0", b"pkt1", b"pkt2", b"pkt3"]
    assert not (tmp_path / "take.play.events.jsonl").exists()


def test_cli_info(tmp_path: Path, capsys):
    p = tmp_path / "info.oscrec"
    _make_recording(p, [0.0, 0.5, 1.0])

    assert main(["info", str(p)]) == EXIT_OK
    out = capsys.readouterr().out
    assert "extOSC v0" in out
    assert "packets    : 3 (scanned 3)" in out

    assert main(["info", "--json", "--records", str(p)]) == EXIT_OK
    doc = json.loads(capsys.readouterr().out)
    assert doc["packet_count"] == 3
    assert [r["payload"] for r in doc["record_list"]] == [b"pkt0".hex(), b"pkt1".hex(), b"pkt2".hex()]


def test_cli_error_codes(tmp_path: Path, capsys):
    bad = tmp_path / "bad.oscrec"
    bad.write_bytes(b"\x03abc\x00\x00")
    assert main(["info", str(bad)]) == EXIT_FORMAT
    assert "[format]" in capsys.readouterr().err

    cfg = tmp_path / "cfg.yaml"
    cfg.write_text("tick_ms: -1\n", encoding="utf-8")
    assert main(["--config", str(cfg), "info", str(bad)]) == EXIT_CONFIG

    existing = tmp_path / "exists.oscrec"
    existing.write_bytes(b"keep")
    rc = main(["--no-ui", "record", str(existing), "--listen", "127.0.0.1:0", "--duration", "0.01"])
    assert rc == EXIT_IO
    assert existing.read_bytes() == b"keep"
    assert not (tmp_path / "exists.events.jsonl").exists()


def test_cli_rejects_out_of_range_tick(tmp_path: Path, capsys):
    p = tmp_path / "tick.oscrec"
    _make_recording(p, [0.0])
    for bad in ("0", "-5", "1001"):
        assert main(["--tick-ms", bad, "info", str(p)]) == EXIT_CONFIG
        assert "--tick-ms" in capsys.readouterr().err
    assert main(["--tick-ms", "1", "info", str(p)]) == EXIT_OK
