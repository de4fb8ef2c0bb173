# recordosc/core/runner.py
# MIT License
# recordosc Runner — boucle de tick temps réel autour du Recorder
# - record : UdpListener -> PacketBus -> Recorder (bind "*")
# - play   : Recorder.tick() -> PacketBus -> UdpForwarder / compteur
# - info   : en-tête + statistiques d'inter-arrivée
# - Sorties: <stem>.session.yaml, <stem>.events.jsonl, <stem>.ticks.csv

from __future__ import annotations

import argparse
import errno
import json
import pathlib
import sys
import time
from typing import Any, Callable, Dict, List, Optional

from recordosc.core.capture import FormatError
from recordosc.core.config import ConfigValidationError, Endpoint, SessionConfig
from recordosc.core.journal import SessionJournal
from recordosc.core.paths import resolve_recording_path
from recordosc.core.recorder import InvalidStateError, Recorder
from recordosc.core.summary import load_records, summarize
from recordosc.net.dispatch import DatagramCodec, PacketBus, PacketCodec
from recordosc.net.udp import UdpForwarder, UdpListener, parse_endpoint

# --- Codes de sortie ---
EXIT_OK = 0
EXIT_FORMAT = 3
EXIT_CONFIG = 4
EXIT_IO = 5
EXIT_STATE = 6


def _sidecar(path: pathlib.Path, suffix: str) -> pathlib.Path:
    return path.with_name(path.stem + suffix)


class Runner:
    def __init__(
            self,
            *,
            config: SessionConfig,
            codec: Optional[PacketCodec] = None,
            ui_enabled: bool = True,
            clock: Callable[[], float] = time.monotonic,
            sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.codec = codec or DatagramCodec()
        self.ui_enabled = ui_enabled
        self.clock = clock
        self.sleep = sleep
        self.bus = PacketBus()
        self.listener: Optional[UdpListener] = None
        self.forwarder: Optional[UdpForwarder] = None
        self.journal: Optional[SessionJournal] = None
        self._t0 = 0.0

    # --------- Helpers ----------
    def _t_ms(self) -> int:
        return int(round((self.clock() - self._t0) * 1000.0))

    def _open_journal(self, path: pathlib.Path, session: str, tag: str) -> SessionJournal:
        if self.config.journal:
            return SessionJournal(
                _sidecar(path, f"{tag}.events.jsonl"),
                _sidecar(path, f"{tag}.ticks.csv"),
                session=session,
                echo=self.ui_enabled,
            )
        return SessionJournal(None, session=session, echo=self.ui_enabled)

    def _on_event(self, typ: str, payload: Dict[str, Any]) -> None:
        if self.journal is not None:
            self.journal.write_event(self._t_ms(), typ, payload)

    def _make_recorder(self) -> Recorder:
        return Recorder(
            dispatcher=self.bus,
            codec=self.codec,
            clock=self.clock,
            on_event=self._on_event,
            speed=self.config.speed,
        )

    def _wait_next_tick(self, tick_start: float) -> None:
        remaining = self.config.tick_ms / 1000.0 - (self.clock() - tick_start)
        if remaining > 0:
            self.sleep(remaining)

    # --------- Record ----------
    def record(self, path: pathlib.Path) -> int:
        path = pathlib.Path(path)
        if path.exists():
            # checked before the sidecars are opened; start_record() re-checks atomically
            raise FileExistsError(errno.EEXIST, "recording already exists", str(path))
        path.parent.mkdir(parents=True, exist_ok=True)
        self.listener = UdpListener(
            codec=self.codec,
            host=self.config.listen.host,
            port=self.config.listen.port,
            budget=self.config.budget_per_tick,
        )
        recorder = self._make_recorder()
        self._t0 = self.clock()
        try:
            self.journal = self._open_journal(path, "record", "")
            host, port = self.listener.address
            self.journal.log("record", f"listening on {host}:{port} -> {path}")
            recorder.start_record(path)
            self.config.write_resolved_yaml(_sidecar(path, ".session.yaml"))
            duration = self.config.duration_s
            last_ui_print = -10_000
            while recorder.is_recording:
                tick_start = self.clock()
                if duration is not None and tick_start - self._t0 >= duration:
                    break
                n = self.listener.poll(self.bus.deliver)
                if n:
                    self.journal.write_tick(
                        t_ms=self._t_ms(),
                        state=recorder.state,
                        ingress=n,
                        packets_total=self.listener.stats().received,
                    )
                t_ms = self._t_ms()
                if (t_ms - last_ui_print) >= 1000:
                    st = self.listener.stats()
                    self.journal.log("record", f"{t_ms:6d} ms received={st.received} bytes={st.bytes_received}")
                    last_ui_print = t_ms
                self._wait_next_tick(tick_start)
            return EXIT_OK
        except KeyboardInterrupt:
            self.journal.log("record", "interrupted")
            return EXIT_OK
        finally:
            try:
                recorder.close()
            finally:
                self.listener.close()
                if self.journal is not None:
                    self.journal.close()

    # --------- Play ----------
    def play(self, path: pathlib.Path) -> int:
        path = pathlib.Path(path)
        recorder = self._make_recorder()
        delivered: List[int] = [0]

        def _count(_packet: Any) -> None:
            delivered[0] += 1

        self.bus.bind("*", _count)
        if self.config.forward is not None:
            self.forwarder = UdpForwarder(
                codec=self.codec, host=self.config.forward.host, port=self.config.forward.port
            )
            self.bus.bind("*", self.forwarder)

        self._t0 = self.clock()
        self.journal = self._open_journal(path, "play", ".play")
        try:
            recorder.start_play(path)
            last_ui_print = -10_000
            while recorder.is_playing:
                tick_start = self.clock()
                n = recorder.tick()
                if n:
                    self.journal.write_tick(
                        t_ms=self._t_ms(),
                        state=recorder.state,
                        injected=n,
                        forwarded=self.forwarder.sent if self.forwarder else 0,
                        packets_total=delivered[0],
                    )
                t_ms = self._t_ms()
                if (t_ms - last_ui_print) >= 1000:
                    self.journal.log("play", f"{t_ms:6d} ms delivered={delivered[0]}")
                    last_ui_print = t_ms
                if recorder.is_playing:
                    self._wait_next_tick(tick_start)
            return EXIT_OK
        except KeyboardInterrupt:
            self.journal.log("play", "interrupted")
            return EXIT_OK
        finally:
            try:
                recorder.close()
            finally:
                if self.forwarder is not None:
                    self.forwarder.close()
                self.journal.close()


# --------- CLI ----------
def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(prog="recordosc", description="Record and replay UDP/OSC packet streams")
    p.add_argument("--config", help="YAML session config path")
    p.add_argument("--tick-ms", type=int, default=None)
    p.add_argument("--ui", action="store_true", default=True)
    p.add_argument("--no-ui", action="store_false", dest="ui")
    p.add_argument("--no-journal", action="store_false", dest="journal", default=None,
                   help="Do not write .events.jsonl / .ticks.csv sidecars")
    sub = p.add_subparsers(dest="command", required=True)

    r = sub.add_parser("record", help="Capture live datagrams to a recording")
    r.add_argument("name", nargs="?", help="Output file (bare names go to the recordings dir)")
    r.add_argument("--listen", help="host:port to listen on")
    r.add_argument("--duration", type=float, default=None, help="Stop after N seconds")

    pl = sub.add_parser("play", help="Replay a recording with its original timing")
    pl.add_argument("path", help="Recording to replay")
    pl.add_argument("--forward", help="host:port to send replayed datagrams to")
    pl.add_argument("--speed", type=float, default=None, help="Playback speed factor")

    i = sub.add_parser("info", help="Show header and timing statistics")
    i.add_argument("path")
    i.add_argument("--records", action="store_true", help="Dump every record")
    i.add_argument("--json", action="store_true", help="Machine-readable output")
    return p.parse_args(argv)


def _resolve_config(args) -> SessionConfig:
    cfg = SessionConfig.from_yaml(args.config) if args.config else SessionConfig.from_dict({})
    if args.tick_ms is not None:
        if not 1 <= args.tick_ms <= 1000:
            raise ConfigValidationError("--tick-ms must be within 1..1000")
        cfg.tick_ms = args.tick_ms
    if args.journal is not None:
        cfg.journal = args.journal
    if getattr(args, "listen", None):
        host, port = parse_endpoint(args.listen, default_host=cfg.listen.host)
        cfg.listen = Endpoint(host=host, port=port)
    if getattr(args, "duration", None) is not None:
        cfg.duration_s = args.duration
    if getattr(args, "forward", None):
        host, port = parse_endpoint(args.forward)
        cfg.forward = Endpoint(host=host, port=port)
    if getattr(args, "speed", None) is not None:
        if args.speed <= 0:
            raise ConfigValidationError("--speed must be > 0")
        cfg.speed = args.speed
    return cfg


def _print_info(path: pathlib.Path, *, records: bool, as_json: bool) -> None:
    s = summarize(path)
    if as_json:
        doc = s.to_dict()
        if records:
            _, recs = load_records(path)
            doc["record_list"] = [
                {
                    "timestamp": r.timestamp,
                    "source_address": r.source_address.hex() if r.source_address else None,
                    "source_port": r.source_port,
                    "payload": r.payload.hex(),
                }
                for r in recs
            ]
        print(json.dumps(doc, indent=2))
        return

    print(f"{s.path}")
    print(f"  format     : {s.header.title} v{s.header.version}")
    print(f"  duration   : {s.header.duration:.3f} s")
    print(f"  packets    : {s.header.packet_count} (scanned {s.records})")
    if not s.finalized:
        print("  WARNING    : header not finalized (recording was not stopped cleanly)")
    print(f"  payload    : {s.payload_bytes} bytes")
    print(f"  gaps       : mean={s.gap_mean_ms:.2f} ms p95={s.gap_p95_ms:.2f} ms max={s.gap_max_ms:.2f} ms")
    for src, n in sorted(s.sources.items(), key=lambda kv: -kv[1]):
        print(f"  source     : {src} x{n}")
    if records:
        _, recs = load_records(path)
        for idx, r in enumerate(recs):
            print(f"  #{idx:<6d} t={r.timestamp:9.4f}s port={r.source_port:<5d} len={len(r.payload)}")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        cfg = _resolve_config(args)
    except (ConfigValidationError, ValueError) as e:
        sys.stderr.write(f"[config] invalid: {e}\n")
        return EXIT_CONFIG

    try:
        if args.command == "info":
            _print_info(pathlib.Path(args.path), records=args.records, as_json=args.json)
            return EXIT_OK

        runner = Runner(config=cfg, ui_enabled=args.ui)
        if args.command == "record":
            out = resolve_recording_path(args.name, cfg.recordings_dir)
            return runner.record(out)

        src = pathlib.Path(args.path)
        if not src.exists():
            src = resolve_recording_path(args.path, cfg.recordings_dir)
        return runner.play(src)
    except FormatError as e:
        sys.stderr.write(f"[format] {e}\n")
        return EXIT_FORMAT
    except InvalidStateError as e:
        sys.stderr.write(f"[state] {e}\n")
        return EXIT_STATE
    except ValueError as e:
        sys.stderr.write(f"[args] {e}\n")
        return EXIT_CONFIG
    except OSError as e:
        sys.stderr.write(f"[io] {e}\n")
        return EXIT_IO


if __name__ == "__main__":
    raise SystemExit(main())
