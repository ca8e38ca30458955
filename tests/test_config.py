import json
import os
import tempfile
import unittest
from types import SimpleNamespace

from core.config import (
    CaptureSettings,
    ConfigError,
    ConfigSnapshot,
    ConfigurationHub,
    FileConfigSource,
    OcrSettings,
    decode_document,
    load_config,
    sanitize_snapshot,
    validate_config,
)

MINIMAL_MAIN = """
runtime:
  save_dir: data
remote:
  enabled: true
  source_path: desired.json
camera:
  width: 1280
  height: 720
ocr:
  provider: offline
  tesseract:
    page_segmentation_mode: 8
analysis:
  dry_keywords: "Dry, Empty"
"""


def _make_cfg(**runtime):
    base = dict(
        save_dir="data",
        max_runtime_s=0.0,
        history_size=50,
        opencv_num_threads=0,
        camera_type="still",
        capture_backends=["libcamera-still", "rpicam-still"],
    )
    base.update(runtime)
    return SimpleNamespace(
        runtime=SimpleNamespace(**base),
        remote=SimpleNamespace(enabled=False, source_path=""),
    )


class ValidateConfigTests(unittest.TestCase):
    def test_valid_config_passes(self):
        validate_config(_make_cfg())

    def test_invalid_runtime_values(self):
        cases = [
            {"save_dir": ""},
            {"max_runtime_s": -1},
            {"history_size": 0},
            {"opencv_num_threads": -1},
            {"camera_type": " "},
            {"capture_backends": []},
            {"capture_backends": "libcamera-still"},
        ]
        for override in cases:
            with self.subTest(override=override):
                with self.assertRaises(ConfigError):
                    validate_config(_make_cfg(**override))

    def test_remote_requires_source_path(self):
        cfg = _make_cfg()
        cfg.remote.enabled = True
        with self.assertRaises(ConfigError):
            validate_config(cfg)


class SanitizeTests(unittest.TestCase):
    def test_out_of_range_fields_fall_back_individually(self):
        snapshot = sanitize_snapshot(
            ConfigSnapshot(
                camera=CaptureSettings(width=10000, height=720, quality=0, rotation=45),
                ocr=OcrSettings(minimum_confidence=1.5, max_retry_attempts=2),
            )
        )
        defaults = ConfigSnapshot()
        self.assertEqual(snapshot.camera.width, defaults.camera.width)
        self.assertEqual(snapshot.camera.height, 720)
        self.assertEqual(snapshot.camera.quality, defaults.camera.quality)
        self.assertEqual(snapshot.camera.rotation, 0)
        self.assertEqual(snapshot.ocr.minimum_confidence, defaults.ocr.minimum_confidence)
        self.assertEqual(snapshot.ocr.max_retry_attempts, 2)

    def test_rejection_is_logged_at_warning(self):
        with self.assertLogs("pump_runtime.config", level="WARNING") as logs:
            sanitize_snapshot(ConfigSnapshot(camera=CaptureSettings(width=1)))
        self.assertTrue(any("camera.width" in line for line in logs.output))

    def test_provider_alias_and_keyword_string(self):
        doc = {"ocr": {"provider": "azure"}, "analysis": {"dry_keywords": "Dry, No Water"}}
        snapshot = sanitize_snapshot(decode_document(doc))
        self.assertEqual(snapshot.ocr.provider, "cloud")
        self.assertEqual(snapshot.analysis.dry_keywords, ("Dry", "No Water"))

    def test_non_finite_numbers_fall_back_individually(self):
        for width in (float("inf"), float("-inf"), "1e999", float("nan")):
            with self.subTest(width=width):
                snapshot = sanitize_snapshot(
                    ConfigSnapshot(
                        camera=CaptureSettings(width=width, quality=80),
                        ocr=OcrSettings(minimum_confidence=float("inf")),
                    )
                )
                self.assertEqual(snapshot.camera.width, CaptureSettings().width)
                self.assertEqual(snapshot.camera.quality, 80)
                self.assertEqual(snapshot.ocr.minimum_confidence, OcrSettings().minimum_confidence)

    def test_hub_installs_valid_fields_next_to_infinite_one(self):
        hub = ConfigurationHub()
        self.assertTrue(hub.apply_document({"Camera": {"Width": float("inf"), "Quality": 80}}))
        self.assertEqual(hub.current().camera.width, CaptureSettings().width)
        self.assertEqual(hub.current().camera.quality, 80)

    def test_timeout_not_above_warmup_uses_defaults(self):
        with self.assertLogs("pump_runtime.config", level="WARNING") as logs:
            snapshot = sanitize_snapshot(
                ConfigSnapshot(camera=CaptureSettings(timeout_ms=3000, warmup_ms=5000))
            )
        defaults = CaptureSettings()
        self.assertEqual(
            (snapshot.camera.timeout_ms, snapshot.camera.warmup_ms),
            (defaults.timeout_ms, defaults.warmup_ms),
        )
        self.assertTrue(any("camera.timeout_ms" in line for line in logs.output))

    def test_inverted_normal_band_uses_defaults(self):
        snapshot = sanitize_snapshot(
            decode_document({"analysis": {"normal_current_min": 9, "normal_current_max": 4}})
        )
        defaults = ConfigSnapshot().analysis
        self.assertEqual(snapshot.analysis.normal_current_min, defaults.normal_current_min)
        self.assertEqual(snapshot.analysis.normal_current_max, defaults.normal_current_max)


class DecodeTests(unittest.TestCase):
    def test_nested_document(self):
        doc = {
            "Camera": {"Width": 1024, "WarmupTimeMs": 1500},
            "Ocr": {"Tesseract": {"Language": "deu"}, "Azure": {"Endpoint": "https://x"}},
            "PumpAnalysis": {"StatusMessageCaseSensitive": True},
        }
        snapshot = decode_document(doc)
        self.assertEqual(snapshot.camera.width, 1024)
        self.assertEqual(snapshot.camera.warmup_ms, 1500)
        self.assertEqual(snapshot.ocr.tesseract.language, "deu")
        self.assertEqual(snapshot.ocr.cloud.endpoint, "https://x")
        self.assertTrue(snapshot.analysis.case_sensitive)

    def test_legacy_flat_document(self):
        doc = {"cameraWidth": 800, "ocrProvider": "null", "debugImageSaveEnabled": True, "logLevel": "warning"}
        snapshot = decode_document(doc)
        self.assertEqual(snapshot.camera.width, 800)
        self.assertEqual(snapshot.ocr.provider, "null")
        self.assertTrue(snapshot.debug.image_save_enabled)
        self.assertEqual(snapshot.debug.log_level, "warning")

    def test_nested_wins_over_flat(self):
        doc = {"cameraWidth": 800, "camera": {"width": 1600}}
        self.assertEqual(decode_document(doc).camera.width, 1600)

    def test_missing_keys_keep_base_values(self):
        base = decode_document({"camera": {"quality": 80}})
        snapshot = decode_document({"camera": {"width": 640}}, base)
        self.assertEqual(snapshot.camera.quality, 80)
        self.assertEqual(snapshot.camera.width, 640)

    def test_unknown_keys(self):
        doc = {"$version": 3, "bogus": 1, "camera": {"zoom": 2}}
        snapshot = decode_document(doc)
        self.assertEqual(snapshot, ConfigSnapshot())
        with self.assertRaises(ConfigError):
            decode_document(doc, strict=True)


class HubTests(unittest.TestCase):
    def test_replace_is_idempotent_and_notifies_once(self):
        hub = ConfigurationHub()
        events = []
        hub.subscribe(lambda old, new: events.append((old, new)))
        snapshot = ConfigSnapshot(camera=CaptureSettings(width=1280))
        self.assertTrue(hub.replace(snapshot))
        first = hub.current()
        self.assertFalse(hub.replace(snapshot))
        self.assertEqual(hub.current(), first)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0][1].camera.width, 1280)
        self.assertEqual(hub.version, 1)

    def test_replace_sanitizes(self):
        hub = ConfigurationHub()
        hub.replace(ConfigSnapshot(camera=CaptureSettings(width=99999)))
        self.assertEqual(hub.current().camera.width, CaptureSettings().width)

    def test_unsubscribe_and_failing_subscriber(self):
        hub = ConfigurationHub()
        events = []

        def boom(old, new):
            raise RuntimeError("subscriber bug")

        hub.subscribe(boom)
        unsubscribe = hub.subscribe(lambda old, new: events.append(new))
        with self.assertLogs("pump_runtime.config", level="ERROR"):
            self.assertTrue(hub.apply_document({"camera": {"quality": 70}}))
        unsubscribe()
        hub.apply_document({"camera": {"quality": 60}})
        self.assertEqual(len(events), 1)
        self.assertEqual(hub.current().camera.quality, 60)


class LoaderTests(unittest.TestCase):
    def test_load_config_from_directory(self):
        with tempfile.TemporaryDirectory() as d:
            with open(os.path.join(d, "main_pump.yaml"), "w", encoding="utf-8") as f:
                f.write(MINIMAL_MAIN)
            cfg = load_config(d)
        self.assertEqual(cfg.runtime.save_dir, "data")
        self.assertEqual(cfg.snapshot.camera.width, 1280)
        self.assertEqual(cfg.snapshot.ocr.provider, "tesseract")
        self.assertEqual(cfg.snapshot.ocr.tesseract.page_segmentation_mode, 8)
        self.assertEqual(cfg.snapshot.analysis.dry_keywords, ("Dry", "Empty"))
        self.assertEqual(cfg.remote.source_path, os.path.join(d, "desired.json"))
        self.assertEqual(cfg.paths["main"], os.path.join(d, "main_pump.yaml"))

    def test_missing_or_duplicate_main(self):
        with tempfile.TemporaryDirectory() as d:
            with self.assertRaises(ConfigError):
                load_config(d)
            for name in ("main_a.yaml", "main_b.yml"):
                with open(os.path.join(d, name), "w", encoding="utf-8") as f:
                    f.write("runtime: {}\n")
            with self.assertRaises(ConfigError):
                load_config(d)

    def test_unknown_local_field_is_fatal(self):
        with tempfile.TemporaryDirectory() as d:
            with open(os.path.join(d, "main_x.yaml"), "w", encoding="utf-8") as f:
                f.write("runtime:\n  bogus: 1\n")
            with self.assertRaises(ConfigError):
                load_config(d)
            with open(os.path.join(d, "main_x.yaml"), "w", encoding="utf-8") as f:
                f.write("camera:\n  zoom: 2\n")
            with self.assertRaises(ConfigError):
                load_config(d)

    def test_invalid_yaml(self):
        with tempfile.TemporaryDirectory() as d:
            with open(os.path.join(d, "main_x.yaml"), "w", encoding="utf-8") as f:
                f.write("runtime: [unclosed\n")
            with self.assertRaises(ConfigError):
                load_config(d)

    def test_repo_config_loads(self):
        repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
        cfg = load_config(os.path.join(repo_root, "config"))
        validate_config(cfg)
        self.assertEqual(cfg.snapshot, sanitize_snapshot(ConfigSnapshot(
            camera=CaptureSettings(debug_image_path="/tmp/pump-runtime-debug"),
        )))


class FileConfigSourceTests(unittest.TestCase):
    def test_returns_document_only_when_changed(self):
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "desired.json")
            source = FileConfigSource(path)
            self.assertIsNone(source.fetch_latest())
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"cameraWidth": 800}, f)
            self.assertEqual(source.fetch_latest(), {"cameraWidth": 800})
            self.assertIsNone(source.fetch_latest())
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"cameraWidth": 640}, f)
            os.utime(path, (1, 1))
            self.assertEqual(source.fetch_latest(), {"cameraWidth": 640})


if __name__ == "__main__":
    unittest.main()
