# MIT License
# recordosc/core/journal.py — journal de session: events.jsonl + ticks.csv + lignes stderr
from __future__ import annotations

import csv
import json
import pathlib
import sys
from typing import Any, Dict, Optional, TextIO

# Ordre des colonnes figé
CSV_HEADER = [
    "t_ms",
    "state",
    "ingress",
    "injected",
    "forwarded",
    "packets_total",
]


class SessionJournal:
    """
    Writes:
      - <stem>.events.jsonl (lines {"t_ms","session","type","payload"})
      - <stem>.ticks.csv    (fixed CSV_HEADER columns, one row per busy tick)
    and echoes events as "[type] k=v ..." on stderr when echo is on.
    """

    def __init__(
        self,
        events_path: Optional[pathlib.Path],
        csv_path: Optional[pathlib.Path] = None,
        *,
        session: str = "",
        echo: bool = True,
        err: Optional[TextIO] = None,
    ):
        self.session = session
        self.echo = echo
        self._err = err
        self._events_fp = open(events_path, "w", encoding="utf-8") if events_path else None
        self._csv_fp = None
        self._csv = None
        if csv_path is not None:
            self._csv_fp = open(csv_path, "w", newline="")
            self._csv = csv.DictWriter(self._csv_fp, fieldnames=CSV_HEADER)
            self._csv.writeheader()

    def log(self, tag: str, msg: str) -> None:
        if self.echo:
            print(f"[{tag}] {msg}", file=self._err or sys.stderr, flush=True)

    def write_event(self, t_ms: int, typ: str, payload: Dict[str, Any]) -> None:
        rec = {"t_ms": t_ms, "session": self.session, "type": typ, "payload": payload}
        if self._events_fp is not None:
            self._events_fp.write(json.dumps(rec, default=str) + "\n")
        details = " ".join(f"{k}={v}" for k, v in payload.items())
        self.log(typ, details)

    def write_tick(
        self,
        *,
        t_ms: int,
        state: str,
        ingress: int = 0,
        injected: int = 0,
        forwarded: int = 0,
        packets_total: int = 0,
    ) -> None:
        if self._csv is None:
            return
        self._csv.writerow({
            "t_ms": t_ms,
            "state": state,
            "ingress": ingress,
            "injected": injected,
            "forwarded": forwarded,
            "packets_total": packets_total,
        })

    def close(self) -> None:
        try:
            if self._csv_fp is not None:
                self._csv_fp.flush()
                self._csv_fp.close()
        finally:
            if self._events_fp is not None:
                self._events_fp.flush()
                self._events_fp.close()
