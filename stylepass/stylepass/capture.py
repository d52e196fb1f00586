"""
Screen capture sessions recorded through an ffmpeg screen grabber.

Lifecycle of a session:

    IDLE -> NEGOTIATING -> ACTIVE -> FINALIZING -> COMPLETE
                 |            |            |
                 +------------+------------+--> FAILED

- NEGOTIATING: ffmpeg has been spawned; we wait (without a timeout) for the
  first bytes of media or for the process to exit. A stop() here terminates
  the grabber and fails the session.
- ACTIVE: a reader thread slices the ffmpeg stdout pipe into fixed-duration
  chunks and appends them in arrival order. The encoder writes a streamable
  container, so concatenating the chunks in that order yields a valid file.
- FINALIZING: ffmpeg is asked to quit, the pipes are drained and every handle
  is released before the blob is built.

Only one session may be live per manager. Capture quality is capped at
1280x720, 30 fps and ~1 Mbps whatever the configuration asks for.
"""

from __future__ import annotations

import collections
import logging
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from .config import CaptureConfig, get_capture_config
from .errors import (
    CaptureBusyError,
    CaptureCancelledError,
    CaptureDeviceNotFoundError,
    CaptureError,
    CapturePermissionError,
    CaptureUnsupportedError,
)
from .media import MediaBlob, list_encoders

logger = logging.getLogger(__name__)

READ_SIZE = 64 * 1024
STDERR_LINES_KEPT = 50
REGION_CAPABLE_BACKENDS = {"x11grab", "gdigrab"}

_PERMISSION_MARKERS = (
    "permission denied",
    "not authorized",
    "operation not permitted",
    "access denied",
    "authorization required",
)
_DEVICE_MARKERS = (
    "no such file or directory",
    "no such device",
    "cannot open display",
    "could not find",
    "input/output error",
    "device not found",
)
_UNSUPPORTED_MARKERS = (
    "unknown input format",
    "unknown encoder",
)


class CaptureState(str, Enum):
    IDLE = "IDLE"
    NEGOTIATING = "NEGOTIATING"
    ACTIVE = "ACTIVE"
    FINALIZING = "FINALIZING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


_TRANSITIONS: Dict[CaptureState, Set[CaptureState]] = {
    CaptureState.IDLE: {CaptureState.NEGOTIATING, CaptureState.FAILED},
    CaptureState.NEGOTIATING: {CaptureState.ACTIVE, CaptureState.FAILED},
    CaptureState.ACTIVE: {CaptureState.FINALIZING, CaptureState.FAILED},
    CaptureState.FINALIZING: {CaptureState.COMPLETE, CaptureState.FAILED},
    CaptureState.COMPLETE: set(),
    CaptureState.FAILED: set(),
}


@dataclass(frozen=True)
class Region:
    """Screen rectangle to narrow the capture to, in pixels."""

    x: int
    y: int
    width: int
    height: int

    @property
    def is_valid(self) -> bool:
        return self.width > 1 and self.height > 1 and self.x >= 0 and self.y >= 0

    def even(self) -> "Region":
        # Encoders reject odd frame dimensions.
        return Region(self.x, self.y, self.width - self.width % 2, self.height - self.height % 2)


@dataclass(frozen=True)
class CodecOption:
    """One entry of the encoding preference list."""

    mime_type: str
    container: str
    video_encoders: Tuple[str, ...]
    audio_encoders: Tuple[str, ...]
    container_args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NegotiatedCodec:
    mime_type: str
    container: str
    video_encoder: Optional[str]
    audio_encoder: Optional[str]
    container_args: Tuple[str, ...] = ()


# Hardware-friendly H.264 first, then VP9 for compression, then VP8, then MP4.
CODEC_PREFERENCES: Tuple[CodecOption, ...] = (
    CodecOption(
        mime_type="video/webm; codecs=h264",
        container="matroska",
        video_encoders=("h264_nvenc", "h264_qsv", "h264_videotoolbox", "libx264"),
        audio_encoders=("libopus", "libvorbis"),
    ),
    CodecOption(
        mime_type="video/webm; codecs=vp9",
        container="webm",
        video_encoders=("libvpx-vp9",),
        audio_encoders=("libopus", "libvorbis"),
    ),
    CodecOption(
        mime_type="video/webm; codecs=vp8",
        container="webm",
        video_encoders=("libvpx",),
        audio_encoders=("libopus", "libvorbis"),
    ),
    CodecOption(
        mime_type="video/mp4",
        container="mp4",
        video_encoders=("libx264", "mpeg4"),
        audio_encoders=("aac",),
        container_args=("-movflags", "frag_keyframe+empty_moov+default_base_moof"),
    ),
)

# Container defaults chosen by ffmpeg itself.
GENERIC_CODEC = NegotiatedCodec(
    mime_type="video/webm", container="webm", video_encoder=None, audio_encoder=None
)

ENCODER_ARGS: Dict[str, Tuple[str, ...]] = {
    "libx264": ("-preset", "veryfast", "-tune", "zerolatency", "-pix_fmt", "yuv420p"),
    "libvpx-vp9": ("-deadline", "realtime", "-cpu-used", "8", "-row-mt", "1"),
    "libvpx": ("-deadline", "realtime", "-cpu-used", "8"),
    "h264_nvenc": ("-pix_fmt", "yuv420p"),
    "h264_qsv": ("-pix_fmt", "nv12"),
    "h264_videotoolbox": ("-pix_fmt", "yuv420p"),
}


def negotiate_codec(
    supported_encoders: FrozenSet[str],
    preferences: Sequence[CodecOption] = CODEC_PREFERENCES,
    want_audio: bool = False,
) -> NegotiatedCodec:
    """Pick the first preference whose video encoder the local ffmpeg has."""
    for option in preferences:
        video_encoder = next((enc for enc in option.video_encoders if enc in supported_encoders), None)
        if video_encoder is None:
            continue
        audio_encoder = None
        if want_audio:
            audio_encoder = next(
                (enc for enc in option.audio_encoders if enc in supported_encoders), None
            )
            if audio_encoder is None:
                logger.warning(
                    "No audio encoder for %s among %s; recording without audio.",
                    option.mime_type, option.audio_encoders,
                )
        return NegotiatedCodec(
            mime_type=option.mime_type,
            container=option.container,
            video_encoder=video_encoder,
            audio_encoder=audio_encoder,
            container_args=option.container_args,
        )
    logger.warning("No preferred encoder available; falling back to %s", GENERIC_CODEC.mime_type)
    return GENERIC_CODEC


def resolve_region(backend: str, region: Optional[Region]) -> Optional[Region]:
    """Best-effort region crop: anything unusable means an uncropped capture."""
    if region is None:
        return None
    if backend not in REGION_CAPABLE_BACKENDS:
        logger.warning(
            "Region capture is not supported by the %s grabber; capturing the full display.",
            backend,
        )
        return None
    if not region.is_valid:
        logger.warning("Region capture failed: invalid region %s; capturing the full display.", region)
        return None
    return region.even()


def _input_args(cfg: CaptureConfig, region: Optional[Region]) -> List[str]:
    framerate = str(cfg.frame_rate)
    if cfg.backend == "x11grab":
        args = ["-f", "x11grab", "-framerate", framerate, "-draw_mouse", "1"]
        target = cfg.display
        if region is not None:
            args += ["-video_size", f"{region.width}x{region.height}"]
            target = f"{cfg.display}+{region.x},{region.y}"
        return args + ["-i", target]
    if cfg.backend == "gdigrab":
        args = ["-f", "gdigrab", "-framerate", framerate, "-draw_mouse", "1"]
        if region is not None:
            args += [
                "-offset_x", str(region.x),
                "-offset_y", str(region.y),
                "-video_size", f"{region.width}x{region.height}",
            ]
        return args + ["-i", cfg.display]
    if cfg.backend == "avfoundation":
        return [
            "-f", "avfoundation",
            "-framerate", framerate,
            "-capture_cursor", "1",
            "-i", f"{cfg.display}:none",
        ]
    raise CaptureUnsupportedError(f"Unknown capture backend '{cfg.backend}'.")


def _audio_input_args(audio_device: str) -> List[str]:
    """``pulse:default`` -> ``-f pulse -i default``."""
    fmt, _, device = audio_device.partition(":")
    if not device:
        return ["-f", fmt, "-i", "default"]
    return ["-f", fmt, "-i", device]


def build_capture_command(
    cfg: CaptureConfig,
    codec: NegotiatedCodec,
    region: Optional[Region] = None,
) -> List[str]:
    """Assemble the ffmpeg invocation that streams the capture to stdout."""
    cmd = [cfg.ffmpeg_binary, "-hide_banner", "-loglevel", "error", "-nostats"]
    cmd += _input_args(cfg, region)

    with_audio = bool(cfg.audio_device and codec.audio_encoder)
    if with_audio:
        cmd += _audio_input_args(cfg.audio_device or "")

    scale = (
        f"scale=w='min({cfg.max_width},iw)':h='min({cfg.max_height},ih)'"
        f":force_original_aspect_ratio=decrease:force_divisible_by=2"
    )
    cmd += ["-vf", f"{scale},fps={cfg.frame_rate}"]

    if codec.video_encoder:
        cmd += ["-c:v", codec.video_encoder]
        cmd += list(ENCODER_ARGS.get(codec.video_encoder, ()))
    bitrate = str(cfg.video_bitrate)
    cmd += ["-b:v", bitrate, "-maxrate", bitrate, "-bufsize", str(cfg.video_bitrate * 2)]

    if with_audio:
        cmd += ["-c:a", codec.audio_encoder or "", "-b:a", "96k"]
    else:
        cmd += ["-an"]

    cmd += list(codec.container_args)
    cmd += ["-f", codec.container, "pipe:1"]
    return cmd


def classify_start_failure(stderr_text: str, returncode: Optional[int] = None) -> CaptureError:
    """Map grabber diagnostics onto the capture failure taxonomy."""
    lowered = stderr_text.lower()
    detail = stderr_text.strip().splitlines()[-1] if stderr_text.strip() else f"exit code {returncode}"
    if any(marker in lowered for marker in _PERMISSION_MARKERS):
        return CapturePermissionError(f"Screen capture permission denied: {detail}")
    if any(marker in lowered for marker in _UNSUPPORTED_MARKERS):
        return CaptureUnsupportedError(f"Screen capture not supported by this ffmpeg build: {detail}")
    if any(marker in lowered for marker in _DEVICE_MARKERS):
        return CaptureDeviceNotFoundError(f"Capture device not found: {detail}")
    return CaptureError(f"Screen capture failed to start: {detail}")


def _default_process_factory(cmd: Sequence[str]):
    return subprocess.Popen(  # noqa: S603
        list(cmd),
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )


def _read_some(stream, size: int) -> bytes:
    reader = getattr(stream, "read1", None) or stream.read
    return reader(size)


@dataclass
class CaptureSession:
    """
    One screen recording. Owns the ffmpeg process and the chunk buffer until
    it is finalised; the resulting ``MediaBlob`` then belongs to the caller.
    """

    codec: NegotiatedCodec
    command: List[str]
    region: Optional[Region]
    video_bitrate: int
    slice_seconds: float
    stop_grace_seconds: float
    clock: Callable[[], float] = time.monotonic
    state: CaptureState = CaptureState.IDLE
    ended_early: bool = False
    _chunks: List[bytes] = field(default_factory=list, repr=False)
    _stderr: Deque[str] = field(default_factory=lambda: collections.deque(maxlen=STDERR_LINES_KEPT), repr=False)
    _process: Optional[object] = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _negotiated: threading.Event = field(default_factory=threading.Event, repr=False)
    _stop_requested: bool = False
    _reader: Optional[threading.Thread] = field(default=None, repr=False)
    _stderr_reader: Optional[threading.Thread] = field(default=None, repr=False)

    @property
    def mime_type(self) -> str:
        return self.codec.mime_type

    @property
    def is_active(self) -> bool:
        return self.state is CaptureState.ACTIVE

    @property
    def chunks(self) -> Tuple[bytes, ...]:
        with self._lock:
            return tuple(self._chunks)

    @property
    def stderr_text(self) -> str:
        with self._lock:
            return "\n".join(self._stderr)

    # -- state machine -----------------------------------------------------

    def _apply(self, new_state: CaptureState) -> None:
        # Caller holds self._lock.
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid capture transition {self.state.value} -> {new_state.value}")
        logger.debug("Capture session %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    def _transition(self, new_state: CaptureState) -> None:
        with self._lock:
            self._apply(new_state)

    def _fail(self) -> None:
        """Move to FAILED unless the session already reached a terminal state."""
        with self._lock:
            if self.state not in (CaptureState.COMPLETE, CaptureState.FAILED):
                self._apply(CaptureState.FAILED)

    # -- events from the reader threads -------------------------------------

    def _on_chunk(self, data: bytes) -> None:
        if not data:
            return
        with self._lock:
            self._chunks.append(data)

    def _on_first_data(self) -> None:
        with self._lock:
            if self.state is CaptureState.NEGOTIATING and not self._stop_requested:
                self._apply(CaptureState.ACTIVE)
        self._negotiated.set()

    def _on_stream_end(self) -> None:
        with self._lock:
            negotiating = self.state is CaptureState.NEGOTIATING
            if negotiating:
                self._apply(CaptureState.FAILED)
            elif self.state is CaptureState.ACTIVE and not self._stop_requested:
                self.ended_early = True
            kept = len(self._chunks)
        if negotiating:
            self._negotiated.set()
        elif self.ended_early:
            logger.warning("Capture stream ended before stop was requested; keeping %d chunks.", kept)

    def _pump_stdout(self, stream) -> None:
        pending = bytearray()
        slice_started = self.clock()
        first = True
        while True:
            data = _read_some(stream, READ_SIZE)
            if not data:
                break
            if first:
                first = False
                self._on_first_data()
                slice_started = self.clock()
            pending.extend(data)
            if self.clock() - slice_started >= self.slice_seconds:
                self._on_chunk(bytes(pending))
                pending.clear()
                slice_started = self.clock()
        if pending:
            self._on_chunk(bytes(pending))
        self._on_stream_end()

    def _pump_stderr(self, stream) -> None:
        for raw in iter(stream.readline, b""):
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                with self._lock:
                    self._stderr.append(line)

    # -- lifecycle -----------------------------------------------------------

    def _launch(self, process_factory: Callable[[Sequence[str]], object]) -> None:
        self._transition(CaptureState.NEGOTIATING)
        logger.debug("Starting capture: %s", " ".join(self.command))
        try:
            process = process_factory(self.command)
        except OSError as exc:
            self._fail()
            raise CaptureUnsupportedError(f"Could not launch the screen grabber: {exc}") from exc
        stderr_reader = threading.Thread(
            target=self._pump_stderr, args=(process.stderr,), name="capture-stderr", daemon=True
        )
        reader = threading.Thread(
            target=self._pump_stdout, args=(process.stdout,), name="capture-reader", daemon=True
        )
        # Published together so _release never sees a process without started readers.
        with self._lock:
            self._process = process
            self._stderr_reader = stderr_reader
            self._reader = reader
            stderr_reader.start()
            reader.start()

    def _wait_negotiated(self) -> None:
        self._negotiated.wait()
        if self._stop_requested and self.state in (CaptureState.NEGOTIATING, CaptureState.FAILED):
            # stop() may have run before the process existed.
            self._release(terminate=True)
            raise CaptureCancelledError()
        if self.state is CaptureState.FAILED:
            returncode = self._release()
            raise classify_start_failure(self.stderr_text, returncode)

    def _release(self, terminate: bool = False) -> Optional[int]:
        """Stop the grabber (if still running), join readers and close every pipe."""
        with self._lock:
            process, self._process = self._process, None
        if process is None:
            return None
        returncode = process.poll()
        if returncode is None and terminate:
            process.terminate()
        if returncode is None:
            try:
                returncode = process.wait(timeout=self.stop_grace_seconds)
            except subprocess.TimeoutExpired:
                logger.warning("Screen grabber did not exit in %.1fs; terminating.", self.stop_grace_seconds)
                process.terminate()
                try:
                    returncode = process.wait(timeout=self.stop_grace_seconds)
                except subprocess.TimeoutExpired:
                    process.kill()
                    returncode = process.wait()
        for thread in (self._reader, self._stderr_reader):
            if thread is not None and thread is not threading.current_thread():
                thread.join()
        for stream in (process.stdin, process.stdout, process.stderr):
            if stream is not None and not stream.closed:
                stream.close()
        return returncode

    def _cancel_negotiation(self) -> None:
        logger.info("Capture stopped before the grabber produced media; releasing it.")
        try:
            self._release(terminate=True)
        finally:
            self._fail()
            self._negotiated.set()

    def stop(self) -> Optional[MediaBlob]:
        """
        Finalise the recording into a single blob.

        Stopping while the grabber is still negotiating cancels the capture:
        the process is terminated, the session ends FAILED and the pending
        ``start`` raises ``CaptureCancelledError``. Returns None in that case
        and whenever the session is not active, so calling it twice never
        touches an already-released grabber.
        """
        with self._lock:
            state = self.state
            if state in (CaptureState.NEGOTIATING, CaptureState.ACTIVE):
                self._stop_requested = True
        if state is CaptureState.NEGOTIATING:
            self._cancel_negotiation()
            return None
        if state is not CaptureState.ACTIVE:
            logger.debug("stop() ignored; capture session is %s", state.value)
            return None
        self._transition(CaptureState.FINALIZING)

        process = self._process
        stdin = getattr(process, "stdin", None)
        if stdin is not None and not stdin.closed:
            try:
                stdin.write(b"q")
                stdin.flush()
            except (BrokenPipeError, ValueError, OSError) as exc:
                # Grabber already exited on its own.
                logger.debug("Could not signal the grabber to quit: %s", exc)
        try:
            self._release()
        except Exception:
            self._fail()
            raise

        chunks = self.chunks
        blob = MediaBlob(data=b"".join(chunks), mime_type=self.codec.mime_type, name="screen-capture")
        self._transition(CaptureState.COMPLETE)
        logger.info(
            "Capture finalised: %d chunks, %d bytes, %s", len(chunks), blob.size, blob.mime_type
        )
        return blob


class CaptureSessionManager:
    """
    Owns the single capture slot of the studio.

    ``start`` blocks until the grabber produces media or fails; ``stop``
    finalises the active session and is a no-op when there is none.
    """

    def __init__(
        self,
        config: Optional[CaptureConfig] = None,
        process_factory: Callable[[Sequence[str]], object] = _default_process_factory,
        which: Callable[[str], Optional[str]] = shutil.which,
        encoder_lister: Callable[[str], FrozenSet[str]] = list_encoders,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config
        self._process_factory = process_factory
        self._which = which
        self._encoder_lister = encoder_lister
        self._clock = clock
        self._lock = threading.Lock()
        self._session: Optional[CaptureSession] = None

    @property
    def config(self) -> CaptureConfig:
        if self._config is None:
            self._config = get_capture_config()
        return self._config

    @property
    def current_session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def is_recording(self) -> bool:
        session = self._session
        return session is not None and session.state in (CaptureState.NEGOTIATING, CaptureState.ACTIVE)

    def start(self, region: Optional[Region] = None) -> CaptureSession:
        """Acquire the display and begin recording."""
        cfg = self.config
        with self._lock:
            current = self._session
            if current is not None and current.state in (
                CaptureState.NEGOTIATING,
                CaptureState.ACTIVE,
                CaptureState.FINALIZING,
            ):
                raise CaptureBusyError()

            if self._which(cfg.ffmpeg_binary) is None:
                raise CaptureUnsupportedError(
                    f"Required binary '{cfg.ffmpeg_binary}' not found on PATH. Please install ffmpeg."
                )

            codec = negotiate_codec(
                self._encoder_lister(cfg.ffmpeg_binary),
                want_audio=bool(cfg.audio_device),
            )
            applied_region = resolve_region(cfg.backend, region)
            session = CaptureSession(
                codec=codec,
                command=build_capture_command(cfg, codec, applied_region),
                region=applied_region,
                video_bitrate=cfg.video_bitrate,
                slice_seconds=cfg.slice_seconds,
                stop_grace_seconds=cfg.stop_grace_seconds,
                clock=self._clock,
            )
            self._session = session

        logger.info(
            "Starting screen capture via %s (%s, %d bps, %s)",
            cfg.backend, codec.mime_type, cfg.video_bitrate,
            f"region {applied_region}" if applied_region else "full display",
        )
        session._launch(self._process_factory)
        session._wait_negotiated()
        logger.info("Screen capture active")
        return session

    def stop(self) -> Optional[MediaBlob]:
        """Finalise the active session. Returns None when nothing is recording."""
        session = self._session
        if session is None:
            return None
        return session.stop()


__all__ = [
    "CaptureState",
    "Region",
    "CodecOption",
    "NegotiatedCodec",
    "CODEC_PREFERENCES",
    "GENERIC_CODEC",
    "negotiate_codec",
    "resolve_region",
    "build_capture_command",
    "classify_start_failure",
    "CaptureSession",
    "CaptureSessionManager",
]
