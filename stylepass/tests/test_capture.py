"""
Tests for the screen capture session manager.

No ffmpeg is needed: the manager takes an injectable process factory, so each
test hands it a fake process whose stdout/stderr are in-memory streams.
"""

import io
import itertools
import threading

import pytest

from stylepass.capture import (
    CODEC_PREFERENCES,
    GENERIC_CODEC,
    CaptureSessionManager,
    CaptureState,
    Region,
    build_capture_command,
    classify_start_failure,
    negotiate_codec,
    resolve_region,
)
from stylepass.config import CaptureConfig
from stylepass.errors import (
    CaptureBusyError,
    CaptureCancelledError,
    CaptureDeviceNotFoundError,
    CaptureError,
    CapturePermissionError,
    CaptureUnsupportedError,
)


def _config(**overrides):
    values = dict(
        ffmpeg_binary="ffmpeg",
        backend="x11grab",
        display=":0.0",
        audio_device=None,
        max_width=1280,
        max_height=720,
        frame_rate=24,
        video_bitrate=1_000_000,
        slice_seconds=1.0,
        stop_grace_seconds=1.0,
    )
    values.update(overrides)
    return CaptureConfig(**values)


class FakeStdin:
    def __init__(self):
        self.writes = []
        self.closed = False

    def write(self, data):
        if self.closed:
            raise ValueError("write to closed file")
        self.writes.append(data)

    def flush(self):
        pass

    def close(self):
        self.closed = True


class PieceStream:
    """stdout that hands out one piece per read, like a pipe would."""

    def __init__(self, pieces):
        self._pieces = list(pieces)
        self.closed = False

    def read1(self, size):
        return self._pieces.pop(0) if self._pieces else b""

    def close(self):
        self.closed = True


class FakeProcess:
    def __init__(self, stdout=b"", stderr=b"", returncode=0):
        self.stdin = FakeStdin()
        self.stdout = stdout if hasattr(stdout, "read1") else io.BytesIO(stdout)
        self.stderr = io.BytesIO(stderr)
        self.returncode = None
        self._final_returncode = returncode
        self.terminated = False

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        self.returncode = self._final_returncode
        return self.returncode

    def terminate(self):
        self.terminated = True

    def kill(self):
        self.terminated = True


class SilentStream:
    """stdout of a grabber that never produces media until it is killed."""

    def __init__(self, killed):
        self._killed = killed
        self.closed = False

    def read1(self, size):
        self._killed.wait(timeout=5)
        return b""

    def close(self):
        self.closed = True


class HangingProcess(FakeProcess):
    def __init__(self):
        self._killed = threading.Event()
        super().__init__(stdout=SilentStream(self._killed), returncode=-15)

    def wait(self, timeout=None):
        self._killed.wait(timeout=timeout)
        return super().wait(timeout)

    def terminate(self):
        super().terminate()
        self._killed.set()


def _manager(process, encoders=frozenset({"libx264", "libopus"}), config=None, clock=None, launched=None):
    def factory(cmd):
        if launched is not None:
            launched.append(cmd)
        return process

    kwargs = {}
    if clock is not None:
        kwargs["clock"] = clock
    return CaptureSessionManager(
        config=config or _config(),
        process_factory=factory,
        which=lambda name: f"/usr/bin/{name}",
        encoder_lister=lambda binary: encoders,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Codec negotiation
# ---------------------------------------------------------------------------

class TestNegotiateCodec:
    def test_prefers_h264(self):
        codec = negotiate_codec(frozenset({"libx264", "libvpx-vp9", "libvpx"}))
        assert codec.mime_type == "video/webm; codecs=h264"
        assert codec.video_encoder == "libx264"
        assert codec.container == "matroska"

    def test_hardware_encoder_ranks_first_within_option(self):
        codec = negotiate_codec(frozenset({"libx264", "h264_nvenc"}))
        assert codec.video_encoder == "h264_nvenc"

    def test_falls_back_through_preferences(self):
        assert negotiate_codec(frozenset({"libvpx-vp9"})).mime_type == "video/webm; codecs=vp9"
        assert negotiate_codec(frozenset({"libvpx"})).mime_type == "video/webm; codecs=vp8"
        mp4 = negotiate_codec(frozenset({"mpeg4"}))
        assert mp4.mime_type == "video/mp4"
        assert "-movflags" in mp4.container_args

    def test_generic_container_when_nothing_matches(self):
        assert negotiate_codec(frozenset()) is GENERIC_CODEC

    def test_audio_encoder_only_when_wanted(self):
        encoders = frozenset({"libx264", "libopus"})
        assert negotiate_codec(encoders).audio_encoder is None
        assert negotiate_codec(encoders, want_audio=True).audio_encoder == "libopus"

    def test_missing_audio_encoder_records_silent(self):
        codec = negotiate_codec(frozenset({"libx264"}), want_audio=True)
        assert codec.video_encoder == "libx264"
        assert codec.audio_encoder is None

    def test_preference_order(self):
        assert [o.mime_type for o in CODEC_PREFERENCES] == [
            "video/webm; codecs=h264",
            "video/webm; codecs=vp9",
            "video/webm; codecs=vp8",
            "video/mp4",
        ]


# ---------------------------------------------------------------------------
# Command building and region crop
# ---------------------------------------------------------------------------

class TestBuildCommand:
    def test_caps_bitrate_and_quality(self):
        codec = negotiate_codec(frozenset({"libx264"}))
        cmd = build_capture_command(_config(), codec)
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-b:v") + 1] == "1000000"
        assert cmd[cmd.index("-maxrate") + 1] == "1000000"
        vf = cmd[cmd.index("-vf") + 1]
        assert "min(1280,iw)" in vf and "min(720,ih)" in vf
        assert vf.endswith("fps=24")
        assert "-an" in cmd
        assert cmd[-3:] == ["-f", "matroska", "pipe:1"]

    def test_region_is_applied_to_x11grab(self):
        codec = negotiate_codec(frozenset({"libx264"}))
        cmd = build_capture_command(_config(), codec, Region(10, 20, 641, 361))
        assert cmd[cmd.index("-video_size") + 1] == "641x361"
        assert cmd[cmd.index("-i") + 1] == ":0.0+10,20"

    def test_gdigrab_offsets(self):
        codec = negotiate_codec(frozenset({"libx264"}))
        cmd = build_capture_command(_config(backend="gdigrab", display="desktop"), codec, Region(5, 6, 100, 50))
        assert cmd[cmd.index("-offset_x") + 1] == "5"
        assert cmd[cmd.index("-offset_y") + 1] == "6"

    def test_audio_input_and_encoder(self):
        cfg = _config(audio_device="pulse:default")
        codec = negotiate_codec(frozenset({"libx264", "libopus"}), want_audio=True)
        cmd = build_capture_command(cfg, codec)
        assert "pulse" in cmd
        assert cmd[cmd.index("-c:a") + 1] == "libopus"
        assert "-an" not in cmd

    def test_unknown_backend_is_unsupported(self):
        with pytest.raises(CaptureUnsupportedError):
            build_capture_command(_config(backend="wayland"), GENERIC_CODEC)


class TestResolveRegion:
    def test_even_dimensions(self):
        assert resolve_region("x11grab", Region(0, 0, 641, 361)) == Region(0, 0, 640, 360)

    def test_unsupported_backend_captures_full_display(self, caplog):
        with caplog.at_level("WARNING"):
            assert resolve_region("avfoundation", Region(0, 0, 100, 100)) is None
        assert "not supported" in caplog.text

    def test_invalid_region_is_ignored(self, caplog):
        with caplog.at_level("WARNING"):
            assert resolve_region("x11grab", Region(-1, 0, 100, 100)) is None
        assert "Region capture failed" in caplog.text

    def test_no_region(self):
        assert resolve_region("x11grab", None) is None


# ---------------------------------------------------------------------------
# Failure classification
# ---------------------------------------------------------------------------

class TestClassifyStartFailure:
    def test_permission(self):
        err = classify_start_failure("[AVFoundation] Not authorized to capture screen\n", 1)
        assert isinstance(err, CapturePermissionError)
        assert "allow" in err.user_message

    def test_device_not_found(self):
        err = classify_start_failure("[x11grab] Cannot open display :9.0, error 1.\n", 1)
        assert isinstance(err, CaptureDeviceNotFoundError)

    def test_unsupported(self):
        err = classify_start_failure("Unknown input format: 'x11grab'\n", 1)
        assert isinstance(err, CaptureUnsupportedError)

    def test_generic(self):
        err = classify_start_failure("", 187)
        assert type(err) is CaptureError
        assert "exit code 187" in str(err)
        assert err.user_message == "Could not start the screen capture."
        assert err.recoverable is False


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------

class TestCaptureSessionManager:
    def test_start_then_stop_yields_blob(self):
        process = FakeProcess(stdout=b"\x1aE\xdf\xa3webm-bytes")
        manager = _manager(process)

        session = manager.start()
        assert session.state is CaptureState.ACTIVE
        assert manager.is_recording

        blob = manager.stop()
        assert blob is not None
        assert blob.data == b"\x1aE\xdf\xa3webm-bytes"
        assert blob.mime_type == "video/webm; codecs=h264"
        assert blob.base_mime_type == "video/webm"
        assert session.state is CaptureState.COMPLETE
        assert process.stdin.writes == [b"q"]
        assert process.stdin.closed
        assert process.stdout.closed
        assert not manager.is_recording

    def test_chunks_are_sliced_and_kept_in_order(self):
        ticks = itertools.count(0, 3)
        process = FakeProcess(stdout=PieceStream([b"aa", b"bb", b"cc"]))
        manager = _manager(process, config=_config(slice_seconds=5.0), clock=lambda: next(ticks))

        session = manager.start()
        blob = manager.stop()
        assert session.chunks == (b"aabb", b"cc")
        assert blob.data == b"aabbcc"

    def test_stop_twice_is_a_noop(self):
        process = FakeProcess(stdout=b"data")
        manager = _manager(process)
        manager.start()

        assert manager.stop() is not None
        assert manager.stop() is None
        assert process.stdin.writes == [b"q"]

    def test_stop_without_session(self):
        manager = _manager(FakeProcess())
        assert manager.stop() is None

    def test_stream_ending_early_keeps_chunks(self):
        process = FakeProcess(stdout=b"partial")
        manager = _manager(process)
        session = manager.start()
        session._reader.join()

        assert session.ended_early
        assert session.state is CaptureState.ACTIVE
        assert manager.stop().data == b"partial"

    def test_only_one_capture_at_a_time(self):
        manager = _manager(FakeProcess(stdout=b"data"))
        manager.start()
        with pytest.raises(CaptureBusyError, match="already in progress"):
            manager.start()
        manager.stop()

    def test_new_capture_allowed_after_stop(self):
        processes = [FakeProcess(stdout=b"one"), FakeProcess(stdout=b"two")]
        manager = CaptureSessionManager(
            config=_config(),
            process_factory=lambda cmd: processes.pop(0),
            which=lambda name: "/usr/bin/ffmpeg",
            encoder_lister=lambda binary: frozenset({"libx264"}),
        )
        manager.start()
        assert manager.stop().data == b"one"
        manager.start()
        assert manager.stop().data == b"two"

    def test_missing_ffmpeg_is_unsupported(self):
        manager = CaptureSessionManager(
            config=_config(),
            process_factory=lambda cmd: pytest.fail("must not launch"),
            which=lambda name: None,
            encoder_lister=lambda binary: frozenset(),
        )
        with pytest.raises(CaptureUnsupportedError) as exc_info:
            manager.start()
        assert "not supported" in exc_info.value.user_message

    def test_launch_failure_is_unsupported(self):
        def factory(cmd):
            raise FileNotFoundError("ffmpeg")

        manager = CaptureSessionManager(
            config=_config(),
            process_factory=factory,
            which=lambda name: "/usr/bin/ffmpeg",
            encoder_lister=lambda binary: frozenset({"libx264"}),
        )
        with pytest.raises(CaptureUnsupportedError):
            manager.start()
        assert manager.current_session.state is CaptureState.FAILED
        assert not manager.is_recording

    def test_permission_denied_during_negotiation(self):
        process = FakeProcess(stderr=b"Permission denied\n", returncode=1)
        manager = _manager(process)
        with pytest.raises(CapturePermissionError):
            manager.start()
        session = manager.current_session
        assert session.state is CaptureState.FAILED
        assert process.stdout.closed
        assert manager.stop() is None

    def test_missing_display_during_negotiation(self):
        process = FakeProcess(stderr=b"[x11grab] Cannot open display :0.0, error 1.\n", returncode=1)
        with pytest.raises(CaptureDeviceNotFoundError):
            _manager(process).start()

    def test_region_reaches_the_command(self):
        launched = []
        manager = _manager(FakeProcess(stdout=b"x"), launched=launched)
        session = manager.start(Region(100, 50, 400, 300))
        manager.stop()
        assert session.region == Region(100, 50, 400, 300)
        assert "400x300" in launched[0]

    def test_reader_threads_are_joined_on_stop(self):
        manager = _manager(FakeProcess(stdout=b"data"))
        session = manager.start()
        manager.stop()
        assert not session._reader.is_alive()
        assert not session._stderr_reader.is_alive()

    def test_stop_while_negotiating_cancels_the_start(self):
        process = HangingProcess()
        manager = _manager(process)
        starter, outcome = _start_in_background(manager)
        assert manager.current_session.state is CaptureState.NEGOTIATING
        assert manager.is_recording

        assert manager.stop() is None
        starter.join(timeout=5)

        assert not starter.is_alive()
        assert isinstance(outcome["error"], CaptureCancelledError)
        assert "cancelled" in outcome["error"].user_message
        assert process.terminated
        assert process.stdout.closed
        assert manager.current_session.state is CaptureState.FAILED
        assert not manager.is_recording
        assert manager.stop() is None

    def test_new_capture_allowed_after_a_cancelled_one(self):
        processes = [HangingProcess(), FakeProcess(stdout=b"two")]
        manager = CaptureSessionManager(
            config=_config(),
            process_factory=lambda cmd: processes.pop(0),
            which=lambda name: "/usr/bin/ffmpeg",
            encoder_lister=lambda binary: frozenset({"libx264"}),
        )
        starter, outcome = _start_in_background(manager)
        manager.stop()
        starter.join(timeout=5)
        assert isinstance(outcome["error"], CaptureCancelledError)

        manager.start()
        assert manager.stop().data == b"two"

    def test_busy_start_is_a_distinct_error(self):
        manager = _manager(FakeProcess(stdout=b"data"))
        manager.start()
        with pytest.raises(CaptureBusyError) as exc_info:
            manager.start()
        assert exc_info.value.user_message == "A capture is already in progress."
        assert isinstance(exc_info.value, CaptureError)
        manager.stop()


def _start_in_background(manager):
    """Run manager.start() on a thread and return once the grabber is launched."""
    outcome = {}

    def start():
        try:
            outcome["session"] = manager.start()
        except CaptureError as exc:
            outcome["error"] = exc

    starter = threading.Thread(target=start, daemon=True)
    starter.start()
    launched = threading.Event()
    for _ in range(500):
        session = manager.current_session
        if session is not None and session._reader is not None:
            break
        launched.wait(0.01)
    return starter, outcome
