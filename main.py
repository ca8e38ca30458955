import argparse
import logging
import time

import cv2

from camera import create_camera_from_loaded_config
from core.config import ConfigError, ConfigurationHub, load_config, validate_config
from core.runtime import build_runtime_from_loaded_config
from ocr import OcrPipeline


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Pump display monitor (capture, OCR, status analysis)",
    )
    p.add_argument(
        "--config-dir", default="config", help="Directory containing main_*.yaml"
    )
    p.add_argument("--verbose", action="store_true", help="Debug log")
    p.add_argument(
        "--log-level", default="", help="Override log level (debug/info/warning/error)"
    )
    mode = p.add_mutually_exclusive_group()
    mode.add_argument(
        "--once", action="store_true", help="Run a single monitoring cycle and exit"
    )
    mode.add_argument(
        "--test-capture",
        action="store_true",
        help="Write an exposure test image to the debug path and exit",
    )
    mode.add_argument(
        "--test-ocr", action="store_true", help="Self-check OCR providers and exit"
    )
    return p.parse_args(argv)


def setup_logging(verbose: bool, log_level: str = ""):
    if verbose:
        level = logging.DEBUG
    else:
        level_map = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "information": logging.INFO,
            "warning": logging.WARNING,
            "warn": logging.WARNING,
            "error": logging.ERROR,
            "critical": logging.CRITICAL,
        }
        level = level_map.get(str(log_level or "").strip().lower(), logging.INFO)
    # UTC for all %(asctime)s timestamps.
    logging.Formatter.converter = time.gmtime
    logging.basicConfig(
        level=level, format="%(asctime)sZ [%(levelname)s] %(message)s", force=True
    )
    if not verbose:
        for name in ("urllib3", "PIL"):
            logging.getLogger(name).setLevel(logging.WARNING)


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose, args.log_level)
    try:
        cfg = load_config(args.config_dir)
        validate_config(cfg)
    except ConfigError as e:
        logging.error("Config invalid: %s", e)
        raise SystemExit(1) from e
    if cfg.runtime.opencv_num_threads > 0:
        cv2.setNumThreads(int(cfg.runtime.opencv_num_threads))
    # Config-driven log level (unless overridden by CLI).
    if not args.verbose and not args.log_level:
        setup_logging(False, cfg.snapshot.debug.log_level)

    hub = ConfigurationHub(cfg.snapshot)
    snapshot = hub.current()
    logging.info(
        "Starting: camera=%s backends=%s ocr=%s interval=%ss runtime=%s",
        cfg.runtime.camera_type,
        ",".join(cfg.runtime.capture_backends),
        snapshot.ocr.provider,
        snapshot.monitoring.interval_seconds,
        f"{cfg.runtime.max_runtime_s}s" if cfg.runtime.max_runtime_s else "unlimited",
    )
    logging.info(
        "Config files: main=%s remote=%s",
        cfg.paths.get("main"),
        cfg.paths.get("remote") or "off",
    )

    try:
        camera = create_camera_from_loaded_config(cfg, hub)
    except ValueError as e:
        logging.error("Config invalid: %s", e)
        raise SystemExit(1) from e

    if args.test_capture:
        with camera.session():
            path = camera.capture_test_image()
        raise SystemExit(0 if path else 1)

    pipeline = OcrPipeline(hub)
    if args.test_ocr:
        results = pipeline.test_providers()
        pipeline.dispose()
        for name, ok in results.items():
            print(f"{name}: {'ok' if ok else 'FAILED'}")
        ok = any(v for k, v in results.items() if k != "null")
        raise SystemExit(0 if ok else 1)

    runtime = build_runtime_from_loaded_config(camera, cfg, hub, pipeline=pipeline)
    if args.once:
        try:
            with camera.session():
                reading = runtime.cycle.run_once()
        finally:
            runtime.stop()
        if reading is None:
            print("No reading (capture failed)")
            raise SystemExit(1)
        amps = "-" if reading.current_amps is None else f"{reading.current_amps:.2f}A"
        print(
            f"status={reading.status.value} current={amps} "
            f"confidence={reading.confidence:.2f} valid={reading.is_valid} "
            f"text={reading.raw_text!r}"
        )
        return

    try:
        runtime.start()
        runtime.run(
            runtime_limit_s=cfg.runtime.max_runtime_s
            if cfg.runtime.max_runtime_s > 0
            else None
        )
        logging.info("Done")
    except KeyboardInterrupt:
        logging.info("Service STOPPED by user (Ctrl+C)")
        runtime.stop()
    except Exception:
        logging.exception("Error")
        raise


if __name__ == "__main__":
    main()
