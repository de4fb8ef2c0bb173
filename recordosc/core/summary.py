# MIT License
# recordosc/core/summary.py — inspection d'un enregistrement (en-tête + scan des records)
from __future__ import annotations

import ipaddress
import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from recordosc.core.capture import FileHeader, PacketRecord, read_header, read_record


@dataclass
class RecordingSummary:
    path: str
    header: FileHeader
    records: int
    payload_bytes: int
    first_ts: Optional[float]
    last_ts: Optional[float]
    gap_mean_ms: float
    gap_p95_ms: float
    gap_max_ms: float
    sources: Dict[str, int] = field(default_factory=dict)

    @property
    def finalized(self) -> bool:
        """False when the header was never patched (session not stopped cleanly)."""
        return self.header.packet_count == self.records

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "title": self.header.title,
            "version": self.header.version,
            "duration_s": self.header.duration,
            "packet_count": self.header.packet_count,
            "records": self.records,
            "finalized": self.finalized,
            "payload_bytes": self.payload_bytes,
            "first_ts": self.first_ts,
            "last_ts": self.last_ts,
            "gap_mean_ms": self.gap_mean_ms,
            "gap_p95_ms": self.gap_p95_ms,
            "gap_max_ms": self.gap_max_ms,
            "sources": dict(self.sources),
        }


def _source_label(rec: PacketRecord) -> str:
    if rec.source_address is None:
        return f"-:{rec.source_port}"
    try:
        ip = str(ipaddress.ip_address(rec.source_address))
    except ValueError:
        ip = rec.source_address.hex()
    return f"{ip}:{rec.source_port}"


def load_records(path: Union[str, pathlib.Path]) -> Tuple[FileHeader, List[PacketRecord]]:
    with open(path, "rb") as fp:
        size = os.fstat(fp.fileno()).st_size
        header = read_header(fp)
        records: List[PacketRecord] = []
        while fp.tell() < size:
            records.append(read_record(fp))
    return header, records


def summarize(path: Union[str, pathlib.Path]) -> RecordingSummary:
    header, records = load_records(path)
    stamps: List[float] = []
    payload_bytes = 0
    sources: Dict[str, int] = {}
    for rec in records:
        stamps.append(rec.timestamp)
        payload_bytes += len(rec.payload)
        label = _source_label(rec)
        sources[label] = sources.get(label, 0) + 1

    ts = np.asarray(stamps, dtype=np.float64)
    if ts.size >= 2:
        gaps_ms = np.diff(ts) * 1000.0
        mean = float(np.mean(gaps_ms))
        p95 = float(np.percentile(gaps_ms, 95))
        mx = float(np.max(gaps_ms))
    else:
        mean = p95 = mx = 0.0

    return RecordingSummary(
        path=str(path),
        header=header,
        records=int(ts.size),
        payload_bytes=payload_bytes,
        first_ts=float(ts[0]) if ts.size else None,
        last_ts=float(ts[-1]) if ts.size else None,
        gap_mean_ms=mean,
        gap_p95_ms=p95,
        gap_max_ms=mx,
        sources=sources,
    )
