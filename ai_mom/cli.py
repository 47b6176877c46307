#!/usr/bin/env python3
"""AI Mom launcher.

    ai-mom run [--mode eating]     # headless loop on the local webcam
    ai-mom serve [--port 5577]     # control API under uvicorn
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading

from ai_mom.api.services.gemini import create_gemini_client
from ai_mom.config import load_settings
from ai_mom.model.errors import MissingCredential, SourceUnavailable
from ai_mom.model.models import MonitoringMode, MonitorStatus
from ai_mom.monitor.loop import MonitorLoop
from ai_mom.storage.events import create_event_sink
from ai_mom.ui.speech import AnnouncementChannel
from ai_mom.watchers.camera import FrameSampler, open_camera
from ai_mom.watchers.logger import LOG_FORMAT, logger, setup_file_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ai-mom", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="monitor the local webcam")
    run.add_argument("--mode", choices=[m.value for m in MonitoringMode])
    run.add_argument("--camera", type=int, help="camera index")
    run.add_argument("--interval", type=float, help="seconds between cycles")

    serve = sub.add_parser("serve", help="start the control API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5577)
    return parser


def _print_status(status: MonitorStatus) -> None:
    logger.info("[%s] %s", status.state.value.upper(), status.message)


def run_monitor(args: argparse.Namespace) -> int:
    settings = load_settings()
    setup_file_logging(settings.log_file)

    mode = MonitoringMode(args.mode) if args.mode else settings.mode
    camera_index = settings.camera_index if args.camera is None else args.camera
    interval = settings.interval_sec if args.interval is None else args.interval

    try:
        camera = open_camera(camera_index)
    except SourceUnavailable as e:
        logger.error("Camera unavailable: %s", e)
        return 1

    sink = create_event_sink(settings.event_sink_config)
    monitor = MonitorLoop(
        sampler=FrameSampler(camera, jpeg_quality=settings.jpeg_quality),
        client=create_gemini_client(settings.base_url, settings.model_name),
        announcer=AnnouncementChannel(),
        sink=sink,
        interval_sec=interval,
        subject_id=settings.subject_id,
    )
    monitor.subscribe(_print_status)

    try:
        monitor.start(mode, settings.api_key)
    except MissingCredential:
        logger.error("GEMINI_API_KEY が設定されていません (.env.local)")
        camera.release()
        return 1

    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("監視を中断しました")
    finally:
        monitor.close()
        sink.close()
        camera.release()
    return 0


def serve_api(args: argparse.Namespace) -> int:
    import uvicorn  # noqa: PLC0415

    uvicorn.run("ai_mom.api.main:app", host=args.host, port=args.port)
    return 0


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "run" and args.interval is not None and args.interval <= 0:
        parser.error(f"--interval must be positive, got {args.interval}")
    if args.command == "run":
        return run_monitor(args)
    return serve_api(args)


if __name__ == "__main__":
    sys.exit(main())
