from __future__ import annotations

import argparse
import asyncio
import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from speech_bridge.app.server import RelayServer
from speech_bridge.app.wav_client import WavStreamClient
from speech_bridge.app.wiring import create_recognition_provider
from speech_bridge.config.paths import default_log_path, default_settings_path
from speech_bridge.config.settings import AppSettings, LoggingSettings, apply_env_overrides, load_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def configure_logging(settings: LoggingSettings) -> None:
    logging.basicConfig(level=settings.level_no, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    if settings.file_path:
        path = Path(settings.file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path,
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="speech-bridge")
    parser.add_argument("--version", action="store_true", help="Print version and exit")

    parser.add_argument(
        "--config",
        type=Path,
        default=default_settings_path(),
        help="Path to settings JSON (default: user config dir)",
    )

    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the speech bridge WebSocket server (default)")
    serve.add_argument("--host", help="Interface to bind (overrides settings)")
    serve.add_argument("--port", type=int, help="Port to listen on (overrides settings and $PORT)")
    serve.add_argument(
        "--log-file",
        nargs="?",
        const=str(default_log_path()),
        help="Also log to a rotating file (default path: user config dir)",
    )

    wav = sub.add_parser("stream-wav", help="Stream a WAV file through a running bridge")
    wav.add_argument("url", help="Bridge URL, e.g. ws://127.0.0.1:3000")
    wav.add_argument("wav", type=Path, help="WAV file to send (converted to 16 kHz mono PCM16)")
    wav.add_argument("--key", required=True, help="Recognition credential key")
    wav.add_argument("--region", required=True, help="Recognition service region")
    wav.add_argument("--language", default="en-US", help="Recognition language tag")
    wav.add_argument("--frame-ms", type=int, default=100, help="Audio frame duration in ms")
    wav.add_argument("--fast", action="store_true", help="Send frames without real-time pacing")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from . import __version__

        print(__version__)
        return 0

    try:
        settings = apply_env_overrides(_load_settings_or_default(args.config))
    except ValueError as exc:
        print(f"Error: invalid settings: {exc}", flush=True)
        return 2
    log_file = getattr(args, "log_file", None)
    if log_file:
        settings.logging.file_path = log_file
    configure_logging(settings.logging)

    if args.command == "stream-wav":
        client = WavStreamClient(
            url=args.url,
            key=args.key,
            region=args.region,
            language=args.language,
            frame_ms=args.frame_ms,
            realtime=not args.fast,
        )
        try:
            asyncio.run(client.run(args.wav, on_event=lambda ev: print(json.dumps(ev, ensure_ascii=False), flush=True)))
        except KeyboardInterrupt:
            return 0
        return 0

    if args.command in (None, "serve"):
        host = getattr(args, "host", None) or settings.server.host
        port = getattr(args, "port", None)
        server = RelayServer(
            provider=create_recognition_provider(settings),
            host=host,
            port=settings.server.port if port is None else port,
            stop_timeout_s=settings.session.stop_timeout_s,
            max_message_bytes=settings.server.max_message_bytes,
            ping_interval_s=settings.server.ping_interval_s,
        )
        try:
            asyncio.run(server.serve_forever())
        except KeyboardInterrupt:
            return 0
        return 0

    parser.print_help()
    return 2


def _load_settings_or_default(path: Path) -> AppSettings:
    if path.exists():
        return load_settings(path)
    return AppSettings()


if __name__ == "__main__":
    raise SystemExit(main())
