from __future__ import annotations

from ipaddress import IPv4Address
from pathlib import Path

import pytest

from recordosc.core.capture import FormatError, patch_header, write_header, write_record
from recordosc.core.summary import summarize


def _write(path: Path, stamps, *, finalize: bool = True) -> None:
    with open(path, "xb") as fp:
        pos = write_header(fp)
        for i, ts in enumerate(stamps):
            addr = IPv4Address("10.0.0.1").packed if i % 2 == 0 else None
            write_record(fp, ts, addr, 9000, b"p" * (i + 1))
        if finalize:
            patch_header(fp, pos, stamps[-1] if stamps else 0.0, len(stamps))


def test_summary_stats(tmp_path: Path):
    p = tmp_path / "s.oscrec"
    _write(p, [0.0, 0.25, 0.5, 1.5])
    s = summarize(p)
    assert s.records == 4
    assert s.finalized
    assert s.header.duration == 1.5
    assert s.payload_bytes == 1 + 2 + 3 + 4
    assert s.first_ts == 0.0 and s.last_ts == 1.5
    assert s.gap_mean_ms == pytest.approx(500.0)
    assert s.gap_max_ms == pytest.approx(1000.0)
    assert s.sources == {"10.0.0.1:9000": 2, "-:9000": 2}
    d = s.to_dict()
    assert d["packet_count"] == 4
    assert d["finalized"] is True


def test_summary_empty_and_unfinalized(tmp_path: Path):
    empty = tmp_path / "e.oscrec"
    _write(empty, [])
    s = summarize(empty)
    assert s.records == 0
    assert s.first_ts is None
    assert s.gap_mean_ms == 0.0
    assert s.finalized

    crashed = tmp_path / "c.oscrec"
    _write(crashed, [0.0, 0.1], finalize=False)
    s = summarize(crashed)
    assert s.records == 2
    assert s.header.packet_count == 0
    assert not s.finalized


def test_summary_rejects_foreign_file(tmp_path: Path):
    p = tmp_path / "foreign.bin"
    p.write_bytes(b"\x89PNG\r\n\x1a\n")
    with pytest.raises(FormatError):
        summarize(p)
