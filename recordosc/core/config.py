# MIT License
# recordosc/core/config.py — validateur & résolveur centralisé de la config de session (YAML)
from __future__ import annotations

import json
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

try:
    import yaml  # PyYAML
except ImportError as e:
    raise SystemExit("PyYAML is required. Install with `pip install pyyaml`") from e

try:
    import jsonschema
except ImportError as e:
    raise SystemExit("jsonschema is required. Install with `pip install jsonschema`") from e

from recordosc.core.paths import get_recordings_dir, resolve_resource_path

DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_LISTEN_PORT = 7001
DEFAULT_TICK_MS = 10
DEFAULT_BUDGET_PER_TICK = 256


class ConfigValidationError(Exception):
    """Raised when the session YAML fails schema validation."""


@dataclass
class Endpoint:
    host: str
    port: int


@dataclass
class SessionConfig:
    listen: Endpoint = field(default_factory=lambda: Endpoint(DEFAULT_LISTEN_HOST, DEFAULT_LISTEN_PORT))
    forward: Optional[Endpoint] = None
    tick_ms: int = DEFAULT_TICK_MS
    budget_per_tick: int = DEFAULT_BUDGET_PER_TICK
    speed: float = 1.0
    duration_s: Optional[float] = None
    recordings_dir: pathlib.Path = field(default_factory=get_recordings_dir)
    journal: bool = True

    # ---------- Loading & validation ----------

    @staticmethod
    def _load_schema() -> Dict[str, Any]:
        path = resolve_resource_path("schema", "session.schema.json")
        if path is None:
            raise FileNotFoundError(
                "Could not locate schema 'session.schema.json' (looked in package 'recordosc/schema')."
            )
        return json.loads(path.read_text(encoding="utf-8"))

    @staticmethod
    def _apply_defaults(doc: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(doc) if doc else {}
        # Non-mapping values are left as-is for the schema to reject
        listen = out.get("listen") or {}
        if isinstance(listen, dict):
            listen = dict(listen)
            listen.setdefault("host", DEFAULT_LISTEN_HOST)
            listen.setdefault("port", DEFAULT_LISTEN_PORT)
        out["listen"] = listen
        fwd = out.get("forward")
        if isinstance(fwd, dict):
            fwd = dict(fwd)
            fwd.setdefault("host", "127.0.0.1")
        out["forward"] = fwd
        out.setdefault("tick_ms", DEFAULT_TICK_MS)
        out.setdefault("budget_per_tick", DEFAULT_BUDGET_PER_TICK)
        out.setdefault("speed", 1.0)
        out.setdefault("duration_s", None)
        out.setdefault("recordings_dir", None)
        out.setdefault("journal", True)
        return out

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "SessionConfig":
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigValidationError("Session YAML must define a mapping at top level")

        doc = cls._apply_defaults(raw)
        try:
            jsonschema.validate(instance=doc, schema=cls._load_schema())
        except jsonschema.ValidationError as e:
            raise ConfigValidationError(e.message) from e

        fwd = doc["forward"]
        rec_dir = doc["recordings_dir"]
        return cls(
            listen=Endpoint(host=str(doc["listen"]["host"]), port=int(doc["listen"]["port"])),
            forward=Endpoint(host=str(fwd["host"]), port=int(fwd["port"])) if fwd else None,
            tick_ms=int(doc["tick_ms"]),
            budget_per_tick=int(doc["budget_per_tick"]),
            speed=float(doc["speed"]),
            duration_s=float(doc["duration_s"]) if doc["duration_s"] is not None else None,
            recordings_dir=pathlib.Path(rec_dir).expanduser() if rec_dir else get_recordings_dir(),
            journal=bool(doc["journal"]),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, pathlib.Path]) -> "SessionConfig":
        text = pathlib.Path(path).read_text(encoding="utf-8")
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"invalid YAML: {e}") from e
        return cls.from_dict(raw)

    # ---------- Serialization ----------

    def to_resolved_dict(self) -> Dict[str, Any]:
        return {
            "listen": {"host": self.listen.host, "port": self.listen.port},
            "forward": {"host": self.forward.host, "port": self.forward.port} if self.forward else None,
            "tick_ms": self.tick_ms,
            "budget_per_tick": self.budget_per_tick,
            "speed": self.speed,
            "duration_s": self.duration_s,
            "recordings_dir": str(self.recordings_dir),
            "journal": self.journal,
        }

    def write_resolved_yaml(self, out_path: Union[str, pathlib.Path]) -> None:
        p = pathlib.Path(out_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with open(p, "w", encoding="utf-8") as fp:
            yaml.safe_dump(self.to_resolved_dict(), fp, sort_keys=False)
