import itertools
import os
import subprocess
import tempfile
import threading
import time
import unittest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest import mock

from camera import (
    CameraConfig,
    build_still_args,
    create_camera,
    parse_still_args,
    resolve_exposure_mode,
)
from camera.save_utils import (
    format_debug_filename,
    inspect_image_bytes,
    prune_debug_images,
    save_debug_copy,
)
from core.config import CaptureSettings, ConfigSnapshot, ConfigurationHub, DebugSettings

JPEG_BYTES = b"\xff\xd8" + b"\x00" * 6000


def _fake_popen(payload: bytes, returncode: int = 0, stderr: bytes = b""):
    calls = []

    def _popen(cmd, **kwargs):
        calls.append(cmd)
        out_path = cmd[cmd.index("--output") + 1]
        if returncode == 0:
            with open(out_path, "wb") as f:
                f.write(payload)
        return SimpleNamespace(
            communicate=lambda timeout=None: (b"", stderr),
            returncode=returncode,
            kill=lambda: None,
        )

    return _popen, calls


def _which_all(name):
    return f"/usr/bin/{name}"


class StillArgsTests(unittest.TestCase):
    def test_round_trip_recovers_core_values(self):
        for width, height, quality, rotation in (
            (1920, 1080, 95, 0),
            (640, 480, 50, 90),
            (4096, 2160, 100, 270),
        ):
            with self.subTest(width=width, rotation=rotation):
                settings = CaptureSettings(
                    width=width, height=height, quality=quality, rotation=rotation
                )
                parsed = parse_still_args(build_still_args(settings, "/tmp/x.jpg"))
                self.assertEqual(parsed["width"], width)
                self.assertEqual(parsed["height"], height)
                self.assertEqual(parsed["quality"], quality)
                self.assertEqual(parsed.get("rotation", 0), rotation)
                self.assertEqual(parsed["output"], "/tmp/x.jpg")

    def test_defaults_emit_minimal_args(self):
        args = build_still_args(CaptureSettings(), "/tmp/x.jpg")
        self.assertIn("--immediate", args)
        self.assertIn("--nopreview", args)
        for opt in ("--rotation", "--brightness", "--contrast", "--gain", "--exposure", "--awb"):
            self.assertNotIn(opt, args)
        self.assertEqual(args[args.index("--timeout") + 1], "2000")

    def test_scaled_values(self):
        settings = CaptureSettings(
            brightness=75, contrast=-20, saturation=10, gain=2.5, warmup_ms=3000
        )
        parsed = parse_still_args(build_still_args(settings, "/tmp/x.jpg"))
        self.assertAlmostEqual(parsed["brightness"], 0.75)
        self.assertAlmostEqual(parsed["contrast"], -0.2)
        self.assertAlmostEqual(parsed["saturation"], 0.1)
        self.assertAlmostEqual(parsed["gain"], 2.5)
        self.assertNotIn("immediate", parsed)

    def test_exposure_policy(self):
        self.assertIsNone(resolve_exposure_mode(CaptureSettings()))
        self.assertEqual(resolve_exposure_mode(CaptureSettings(exposure_mode="night")), "night")
        self.assertEqual(resolve_exposure_mode(CaptureSettings(shutter_us=10000)), "normal")
        self.assertEqual(resolve_exposure_mode(CaptureSettings(auto_exposure=False)), "normal")
        args = build_still_args(CaptureSettings(auto_white_balance=False), "/tmp/x.jpg")
        self.assertEqual(args[args.index("--awb") + 1], "auto")

    def test_parse_rejects_malformed(self):
        with self.assertRaises(ValueError):
            parse_still_args(["--width"])
        with self.assertRaises(ValueError):
            parse_still_args(["width", "10"])


class StillCameraTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.temp_dir = self._tmp.name
        self.hub = ConfigurationHub()
        self.camera = create_camera(
            "still", CameraConfig(temp_dir=self.temp_dir), self.hub
        )

    def tearDown(self):
        self._tmp.cleanup()

    def test_zero_byte_output_from_both_backends_fails(self):
        popen, calls = _fake_popen(b"")
        with mock.patch("camera.still.shutil.which", side_effect=_which_all), mock.patch(
            "camera.still.subprocess.Popen", side_effect=popen
        ):
            result = self.camera.capture_once()
        self.assertFalse(result.success)
        self.assertIsNone(result.image)
        self.assertEqual(result.attempts, ["libcamera-still", "rpicam-still"])
        self.assertIn("output file is empty", result.error)
        self.assertEqual(len(calls), 2)
        self.assertEqual(os.listdir(self.temp_dir), [])

    def test_first_backend_success(self):
        popen, calls = _fake_popen(JPEG_BYTES)
        with mock.patch("camera.still.shutil.which", side_effect=_which_all), mock.patch(
            "camera.still.subprocess.Popen", side_effect=popen
        ):
            result = self.camera.capture_once()
        self.assertTrue(result.success)
        self.assertEqual(result.image.data, JPEG_BYTES)
        self.assertEqual(result.image.backend, "libcamera-still")
        self.assertEqual(calls[0][0], "/usr/bin/libcamera-still")
        self.assertEqual(os.listdir(self.temp_dir), [])

    def test_missing_binary_falls_back(self):
        popen, _ = _fake_popen(JPEG_BYTES)

        def which(name):
            return None if name == "libcamera-still" else f"/usr/bin/{name}"

        with mock.patch("camera.still.shutil.which", side_effect=which), mock.patch(
            "camera.still.subprocess.Popen", side_effect=popen
        ):
            result = self.camera.capture_once()
        self.assertTrue(result.success)
        self.assertEqual(result.image.backend, "rpicam-still")
        self.assertEqual(result.attempts, ["libcamera-still", "rpicam-still"])

    def test_nonzero_exit_reports_stderr(self):
        popen, _ = _fake_popen(b"", returncode=1, stderr=b"no cameras available")
        with mock.patch("camera.still.shutil.which", side_effect=_which_all), mock.patch(
            "camera.still.subprocess.Popen", side_effect=popen
        ):
            result = self.camera.capture_once()
        self.assertFalse(result.success)
        self.assertIn("exit code 1", result.error)
        self.assertIn("no cameras available", result.error)

    def _hanging_popen(self, on_wait=None):
        procs = []

        def _popen(cmd, **kwargs):
            out_path = cmd[cmd.index("--output") + 1]
            with open(out_path, "wb") as f:
                f.write(b"partial")
            proc = SimpleNamespace(returncode=None, kills=0)

            def communicate(timeout=None):
                if timeout is None:
                    return b"", b""
                if on_wait is not None:
                    on_wait()
                raise subprocess.TimeoutExpired(cmd, timeout)

            def kill():
                proc.kills += 1
                proc.returncode = -9

            proc.communicate = communicate
            proc.kill = kill
            procs.append(proc)
            return proc

        return _popen, procs

    def test_hard_timeout_kills_and_falls_back(self):
        popen, procs = self._hanging_popen()
        clock = itertools.count(0.0, 10.0)
        fake_time = SimpleNamespace(
            monotonic=lambda: next(clock), perf_counter=time.perf_counter
        )
        with mock.patch("camera.still.shutil.which", side_effect=_which_all), mock.patch(
            "camera.still.subprocess.Popen", side_effect=popen
        ), mock.patch("camera.still.time", fake_time):
            result = self.camera.capture_once()
        self.assertFalse(result.success)
        self.assertEqual(result.attempts, ["libcamera-still", "rpicam-still"])
        self.assertIn("timed out", result.error)
        self.assertEqual([p.kills for p in procs], [1, 1])
        self.assertEqual(os.listdir(self.temp_dir), [])

    def test_cancel_while_running_kills_process(self):
        cancel = threading.Event()
        popen, procs = self._hanging_popen(on_wait=cancel.set)
        with mock.patch("camera.still.shutil.which", side_effect=_which_all), mock.patch(
            "camera.still.subprocess.Popen", side_effect=popen
        ):
            result = self.camera.capture_once(cancel)
        self.assertFalse(result.success)
        self.assertEqual(result.error, "cancelled")
        self.assertEqual(result.attempts, ["libcamera-still"])
        self.assertEqual(procs[0].kills, 1)
        self.assertEqual(os.listdir(self.temp_dir), [])

    def test_zero_exit_without_output_file_fails(self):
        calls = []

        def popen(cmd, **kwargs):
            calls.append(cmd)
            return SimpleNamespace(
                communicate=lambda timeout=None: (b"", b""),
                returncode=0,
                kill=lambda: None,
            )

        with mock.patch("camera.still.shutil.which", side_effect=_which_all), mock.patch(
            "camera.still.subprocess.Popen", side_effect=popen
        ):
            result = self.camera.capture_once()
        self.assertFalse(result.success)
        self.assertIn("output file missing", result.error)
        self.assertEqual(len(calls), 2)
        self.assertEqual(os.listdir(self.temp_dir), [])

    def test_cancelled_before_start(self):
        cancel = threading.Event()
        cancel.set()
        with mock.patch("camera.still.subprocess.Popen") as popen:
            result = self.camera.capture_once(cancel)
        self.assertFalse(result.success)
        self.assertEqual(result.error, "cancelled")
        popen.assert_not_called()

    def test_debug_copy_written_when_enabled(self):
        debug_dir = os.path.join(self.temp_dir, "debug")
        self.hub.replace(
            ConfigSnapshot(
                camera=CaptureSettings(debug_image_path=debug_dir),
                debug=DebugSettings(image_save_enabled=True),
            )
        )
        popen, _ = _fake_popen(JPEG_BYTES)
        with mock.patch("camera.still.shutil.which", side_effect=_which_all), mock.patch(
            "camera.still.subprocess.Popen", side_effect=popen
        ):
            result = self.camera.capture_once()
        self.assertTrue(result.success)
        saved = os.listdir(debug_dir)
        self.assertEqual(len(saved), 1)
        self.assertTrue(saved[0].startswith("pump_reading_"))


class FileCameraTests(unittest.TestCase):
    def test_replays_in_natural_order_and_loops(self):
        with tempfile.TemporaryDirectory() as d:
            for name, payload in (("img10.jpg", b"b"), ("img2.jpg", b"a"), ("notes.txt", b"x")):
                with open(os.path.join(d, name), "wb") as f:
                    f.write(payload)
            camera = create_camera("file", CameraConfig(image_dir=d), ConfigurationHub())
            with camera.session():
                seen = [camera.capture_once().image.data for _ in range(3)]
        self.assertEqual(seen, [b"a", b"b", b"a"])

    def test_empty_directory_fails_session(self):
        with tempfile.TemporaryDirectory() as d:
            camera = create_camera("file", CameraConfig(image_dir=d), ConfigurationHub())
            with self.assertRaises(RuntimeError):
                with camera.session():
                    pass

    def test_unknown_camera_type(self):
        with self.assertRaises(ValueError):
            create_camera("nope", CameraConfig(), ConfigurationHub())


class SaveUtilsTests(unittest.TestCase):
    def test_debug_filename(self):
        ts = datetime(2024, 3, 5, 7, 8, 9, tzinfo=timezone.utc)
        self.assertEqual(
            format_debug_filename("pump_reading", ts), "pump_reading_20240305_070809_000.jpg"
        )
        self.assertEqual(
            format_debug_filename("pump_reading", ts.replace(microsecond=456789)),
            "pump_reading_20240305_070809_456.jpg",
        )

    def test_same_timestamp_copies_do_not_overwrite(self):
        ts = datetime(2024, 3, 5, 7, 8, 9, tzinfo=timezone.utc)
        with tempfile.TemporaryDirectory() as d:
            first = save_debug_copy(b"a", d, ts_utc=ts)
            second = save_debug_copy(b"b", d, ts_utc=ts)
            self.assertNotEqual(first, second)
            self.assertEqual(os.path.basename(second), "pump_reading_20240305_070809_000_1.jpg")
            with open(first, "rb") as f:
                self.assertEqual(f.read(), b"a")

    def test_inspect_image_bytes(self):
        self.assertEqual(inspect_image_bytes(JPEG_BYTES), [])
        warnings = inspect_image_bytes(b"abc")
        self.assertEqual(len(warnings), 2)

    def test_prune_removes_only_expired_jpgs(self):
        with tempfile.TemporaryDirectory() as d:
            old = os.path.join(d, "pump_reading_old.jpg")
            new = os.path.join(d, "pump_reading_new.jpg")
            other = os.path.join(d, "keep.txt")
            for p in (old, new, other):
                with open(p, "wb") as f:
                    f.write(b"x")
            now = datetime.now(timezone.utc).timestamp()
            aged = now - timedelta(days=10).total_seconds()
            os.utime(old, (aged, aged))
            os.utime(other, (aged, aged))
            removed = prune_debug_images(d, 7, now=now)
            self.assertEqual(removed, 1)
            self.assertEqual(sorted(os.listdir(d)), ["keep.txt", "pump_reading_new.jpg"])


if __name__ == "__main__":
    unittest.main()
