# MIT License
# recordosc/core/recorder.py — contrôleur de session (Idle / Recording / Playing)
# - Recording : bind "*" sur le dispatcher, un record écrit par paquet (synchrone)
# - Playing   : PlaybackCursor, injection via dispatcher.inject_as_received()
# - Un seul handle fichier, libéré sur tous les chemins de sortie
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Dict, Optional, Union

from recordosc.core.capture import (
    FormatError,
    RecorderError,
    patch_header,
    read_header,
    write_header,
    write_record,
)
from recordosc.core.playback import PlaybackCursor
from recordosc.net.dispatch import Dispatcher, PacketCodec

BIND_ALL = "*"

EVENT_START_RECORD = "start_record"
EVENT_STOP_RECORD = "stop_record"
EVENT_START_PLAY = "start_play"
EVENT_STOP_PLAY = "stop_play"
EVENT_ABORT = "abort"

EventHook = Callable[[str, Dict[str, Any]], None]


class InvalidStateError(RecorderError):
    """Raised when an operation is not allowed in the current session state."""


@dataclass
class Idle:
    name = "idle"


@dataclass
class Recording:
    path: str
    stream: BinaryIO
    patch_position: int
    start_time: float
    bind_handle: Any
    last_time: float = 0.0
    packet_count: int = 0
    name = "recording"


@dataclass
class Playing:
    path: str
    stream: BinaryIO
    cursor: PlaybackCursor
    duration: float
    packet_count: int
    name = "playing"


SessionState = Union[Idle, Recording, Playing]


def _source_bytes(packet: Any) -> Optional[bytes]:
    ip = getattr(packet, "ip", None)
    if ip is None:
        return None
    if isinstance(ip, (bytes, bytearray)):
        return bytes(ip)
    return ip.packed


class Recorder:
    """
    Records the packets seen by a dispatcher into a file and replays them.

    The host drives playback by calling tick() from its own loop; recording is
    driven by the dispatcher's delivery callback. Both must run on the host's
    thread.
    """

    def __init__(
        self,
        *,
        dispatcher: Optional[Dispatcher],
        codec: PacketCodec,
        clock: Callable[[], float] = time.monotonic,
        on_event: Optional[EventHook] = None,
        speed: float = 1.0,
    ):
        self._dispatcher = dispatcher
        self.codec = codec
        self.clock = clock
        self.speed = speed
        self._on_event = on_event
        self._state: SessionState = Idle()

    # --------- Queries ----------
    @property
    def state(self) -> str:
        return self._state.name

    @property
    def is_recording(self) -> bool:
        return isinstance(self._state, Recording)

    @property
    def is_playing(self) -> bool:
        return isinstance(self._state, Playing)

    @property
    def dispatcher(self) -> Optional[Dispatcher]:
        return self._dispatcher

    @dispatcher.setter
    def dispatcher(self, value: Optional[Dispatcher]) -> None:
        if value is self._dispatcher:
            return
        if not isinstance(self._state, Idle):
            raise InvalidStateError(f"cannot swap dispatcher while {self.state}")
        self._dispatcher = value

    def _emit(self, typ: str, **payload: Any) -> None:
        if self._on_event is not None:
            self._on_event(typ, payload)

    def _require_idle(self, op: str) -> None:
        if not isinstance(self._state, Idle):
            raise InvalidStateError(f"{op}: recorder is {self.state}")

    # --------- Record ----------
    def start_record(self, path) -> None:
        self._require_idle("start_record")
        if self._dispatcher is None:
            raise InvalidStateError("start_record: no dispatcher configured")

        # "xb": exclusive create, an existing file is never touched
        stream = open(path, "xb")
        try:
            position = write_header(stream)
            start = self.clock()
            state = Recording(
                path=str(path),
                stream=stream,
                patch_position=position,
                start_time=start,
                bind_handle=None,
            )
            self._state = state
            state.bind_handle = self._dispatcher.bind(BIND_ALL, self._capture)
        except BaseException:
            self._state = Idle()
            stream.close()
            raise
        self._emit(EVENT_START_RECORD, path=str(path))

    def _capture(self, packet: Any) -> None:
        state = self._state
        if not isinstance(state, Recording):
            # Late delivery after unbind
            return
        try:
            ts = self.clock() - state.start_time
            payload = self.codec.encode(packet)
            write_record(
                state.stream,
                ts,
                _source_bytes(packet),
                int(getattr(packet, "port", 0) or 0),
                payload,
            )
        except BaseException as e:
            self._abort_record(e)
            raise
        state.last_time = ts
        state.packet_count += 1

    def _abort_record(self, exc: BaseException) -> None:
        state = self._state
        if not isinstance(state, Recording):
            return
        self._state = Idle()
        try:
            self._dispatcher.unbind(state.bind_handle)
        finally:
            state.stream.close()
            self._emit(EVENT_ABORT, path=state.path, error=str(exc))

    def stop_record(self) -> None:
        state = self._state
        if not isinstance(state, Recording):
            raise InvalidStateError(f"stop_record: recorder is {self.state}")

        self._state = Idle()
        try:
            self._dispatcher.unbind(state.bind_handle)
            patch_header(state.stream, state.patch_position, state.last_time, state.packet_count)
            state.stream.flush()
        finally:
            state.stream.close()
        self._emit(
            EVENT_STOP_RECORD,
            path=state.path,
            duration=state.last_time,
            packet_count=state.packet_count,
        )

    # --------- Play ----------
    def start_play(self, path) -> None:
        self._require_idle("start_play")
        if self._dispatcher is None:
            raise InvalidStateError("start_play: no dispatcher configured")

        stream = open(path, "rb")
        try:
            header = read_header(stream)
            cursor = PlaybackCursor(stream, codec=self.codec, start_time=self.clock(), speed=self.speed)
            if header.packet_count == 0 and not cursor.exhausted:
                # records present but header never patched: recording was not stopped
                raise FormatError(f"{path}: header not finalized")
        except BaseException:
            stream.close()
            raise
        self._state = Playing(
            path=str(path),
            stream=stream,
            cursor=cursor,
            duration=header.duration,
            packet_count=header.packet_count,
        )
        self._emit(
            EVENT_START_PLAY,
            path=str(path),
            duration=header.duration,
            packet_count=header.packet_count,
        )

    def stop_play(self) -> None:
        state = self._state
        if not isinstance(state, Playing):
            raise InvalidStateError(f"stop_play: recorder is {self.state}")
        self._state = Idle()
        state.stream.close()
        self._emit(EVENT_STOP_PLAY, path=state.path, delivered=state.cursor.delivered)

    def tick(self) -> int:
        """Release every due packet. Returns how many were injected."""
        state = self._state
        if not isinstance(state, Playing):
            return 0

        # a listener may stop (or restart) playback from inside inject_as_received
        def _still_current() -> bool:
            return self._state is state

        try:
            n = state.cursor.release_due(
                self.clock(), self._dispatcher.inject_as_received, is_active=_still_current
            )
        except BaseException as e:
            if _still_current():
                self._state = Idle()
                state.stream.close()
                self._emit(EVENT_ABORT, path=state.path, error=str(e))
            raise
        if _still_current() and state.cursor.exhausted:
            self.stop_play()
        return n

    # --------- Teardown ----------
    def close(self) -> None:
        if isinstance(self._state, Recording):
            self.stop_record()
        elif isinstance(self._state, Playing):
            self.stop_play()

    def __enter__(self) -> "Recorder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
