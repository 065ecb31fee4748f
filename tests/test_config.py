"""Config file handling, CLI overrides and logging setup."""
import logging
import tomllib
from pathlib import Path

import tomlkit

from chatrelay.cli import (
    _build_arg_parser,
    _write_default_config,
    build_default_config_document,
    load_runtime_config,
)
from chatrelay.config import RelayRuntimeConfig, apply_config_data
from chatrelay.logging_config import configure_logging


def test_default_document_matches_defaults() -> None:
    data = tomllib.loads(tomlkit.dumps(build_default_config_document()))
    assert apply_config_data(RelayRuntimeConfig(), data) == RelayRuntimeConfig()


def test_relay_and_logging_tables_are_applied() -> None:
    data = {
        "relay": {"host": "127.0.0.1", "port": "9000", "default_room": "lobby", "heartbeat_s": 5},
        "logging": {"level": "DEBUG", "file": "/tmp/relay.log", "datefmt": ""},
        "unknown": 1,
    }
    cfg = apply_config_data(RelayRuntimeConfig(), data)

    assert cfg.host == "127.0.0.1"
    assert cfg.port == 9000
    assert cfg.default_room == "lobby"
    assert cfg.heartbeat_s == 5.0
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file == "/tmp/relay.log"
    assert cfg.log_datefmt is None


def test_config_path_is_not_overridable() -> None:
    base = RelayRuntimeConfig(config_path="/etc/chatrelay.toml")
    cfg = apply_config_data(base, {"config_path": "/elsewhere.toml"})
    assert cfg.config_path == "/etc/chatrelay.toml"


def test_cli_flags_override_file(tmp_path: Path) -> None:
    path = tmp_path / "chatrelay.toml"
    path.write_text('[relay]\nport = 7000\nhost = "10.0.0.1"\n\n[logging]\nlevel = "DEBUG"\n')

    args = _build_arg_parser().parse_args(["--config", str(path), "--port", "9001"])
    cfg = load_runtime_config(args)

    assert cfg.config_path == str(path)
    assert cfg.port == 9001
    assert cfg.host == "10.0.0.1"
    assert cfg.log_level == "DEBUG"


def test_write_default_config_creates_loadable_file(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "chatrelay.toml"
    _write_default_config(str(path))

    args = _build_arg_parser().parse_args(["--config", str(path)])
    cfg = load_runtime_config(args)

    assert cfg.port == 8080
    assert cfg.log_file is None


def test_configure_logging_levels_and_file(tmp_path: Path) -> None:
    """Level override applies to the root, file logging works, and reconfiguring closes old handlers."""
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    first = tmp_path / "logs" / "first.log"
    second = tmp_path / "second.log"
    cfg = RelayRuntimeConfig(
        log_console=False,
        log_file=str(first),
        log_aiohttp_level="ERROR",
        log_access_level="CRITICAL",
    )
    try:
        configure_logging(cfg, override_level="DEBUG")
        (first_handler,) = root.handlers
        assert isinstance(first_handler, logging.FileHandler)
        assert root.level == logging.DEBUG
        assert logging.getLogger("aiohttp.server").level == logging.ERROR
        assert logging.getLogger("aiohttp.access").level == logging.CRITICAL

        logging.getLogger("chatrelay.test").info("hello from the relay")
        first_handler.flush()
        assert "hello from the relay" in first.read_text(encoding="utf-8")

        configure_logging(cfg, override_file=str(second))
        assert first_handler.stream is None
        (second_handler,) = root.handlers
        assert second_handler.baseFilename == str(second)
        assert root.level == logging.INFO
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.captureWarnings(False)
