from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

import tomlkit

from .config import RelayRuntimeConfig, apply_config_data, load_toml
from .logging_config import configure_logging
from .paths import default_config_path, ensure_private_dir
from .service import RelayService
from .util import expand_path


def build_default_config_document() -> tomlkit.TOMLDocument:
    defaults = RelayRuntimeConfig()

    doc = tomlkit.document()
    doc.add(tomlkit.comment("chatrelay configuration (TOML)"))
    doc.add(tomlkit.comment(""))
    doc.add(tomlkit.comment("This file was created on first run. Edit it, then restart chatrelayd."))
    doc.add(tomlkit.nl())

    relay = tomlkit.table()
    relay.add(tomlkit.comment("Address and port the relay listens on."))
    relay.add("host", defaults.host)
    relay.add("port", defaults.port)
    relay.add(tomlkit.nl())
    relay.add(tomlkit.comment("Room used for connections to /chat/{client_id}."))
    relay.add("default_room", defaults.default_room)
    relay.add(tomlkit.comment("Text of the directed welcome message; {client_id} is substituted."))
    relay.add("welcome_template", defaults.welcome_template)
    relay.add(tomlkit.nl())
    relay.add(tomlkit.comment("WebSocket ping interval in seconds (0 disables)."))
    relay.add("heartbeat_s", defaults.heartbeat_s)
    relay.add(tomlkit.comment("Largest accepted frame. Voice notes are inline base64."))
    relay.add("max_frame_bytes", defaults.max_frame_bytes)
    doc.add("relay", relay)

    logging_tbl = tomlkit.table()
    logging_tbl.add(tomlkit.comment("Log level for chatrelay itself."))
    logging_tbl.add("level", defaults.log_level)
    logging_tbl.add(tomlkit.comment("Log level for the aiohttp library loggers."))
    logging_tbl.add("aiohttp_level", defaults.log_aiohttp_level)
    logging_tbl.add(tomlkit.comment("Log level for aiohttp.access (one line per HTTP request)."))
    logging_tbl.add("access_level", defaults.log_access_level)
    logging_tbl.add(tomlkit.comment("Log to stderr (systemd/journald friendly)."))
    logging_tbl.add("console", defaults.log_console)
    logging_tbl.add(tomlkit.comment("Optional file path for logs (leave empty to disable)."))
    logging_tbl.add("file", "")
    logging_tbl.add("format", defaults.log_format)
    logging_tbl.add("datefmt", "")
    doc.add("logging", logging_tbl)

    return doc


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(tomlkit.dumps(build_default_config_document()))


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chatrelayd", description="Run a chat relay server")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--host", default=None, help="Listen address (default: 0.0.0.0)")
    p.add_argument("--port", type=int, default=None, help="Listen port (default: 8080)")
    p.add_argument(
        "--default-room", default=None, help="Room for connections that name none"
    )
    p.add_argument(
        "--heartbeat",
        type=float,
        default=None,
        help="WebSocket ping interval seconds (0 disables)",
    )
    p.add_argument(
        "--max-frame-bytes", type=int, default=None, help="Largest accepted frame"
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def load_runtime_config(args: argparse.Namespace) -> RelayRuntimeConfig:
    config_path = expand_path(str(args.config))

    cfg = RelayRuntimeConfig(config_path=config_path)
    if config_path and os.path.exists(config_path):
        cfg = apply_config_data(cfg, load_toml(config_path))

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.default_room is not None:
        cfg = replace(cfg, default_room=str(args.default_room))
    if args.heartbeat is not None:
        cfg = replace(cfg, heartbeat_s=float(args.heartbeat))
    if args.max_frame_bytes is not None:
        cfg = replace(cfg, max_frame_bytes=int(args.max_frame_bytes))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = expand_path(str(args.config))
    if config_path and not os.path.exists(config_path):
        _write_default_config(config_path)
        print(f"Created default chatrelay config: {config_path}", file=sys.stderr)

    cfg = load_runtime_config(args)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = RelayService(cfg)
    svc.run_forever()


if __name__ == "__main__":
    main()
