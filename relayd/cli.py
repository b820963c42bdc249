from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path

import tomlkit

from .config import RelayRuntimeConfig, apply_config_data, load_toml, validate_config
from .constants import DEFAULT_HOST, DEFAULT_PORT, FRAMING_MODES, FRAMING_RAW
from .logging_config import configure_logging
from .paths import default_config_path, ensure_private_dir
from .service import ListenError, RelayServer


def _default_config_document() -> tomlkit.TOMLDocument:
    doc = tomlkit.document()
    doc.add(tomlkit.comment("relayd configuration (TOML)"))
    doc.add(tomlkit.comment(""))
    doc.add(tomlkit.comment("This file was created on first run."))
    doc.add(tomlkit.comment("Edit it, then start relayd again."))
    doc.add(tomlkit.nl())

    relay = tomlkit.table()
    relay.add(tomlkit.comment("Address and TCP port to listen on."))
    relay.add("host", DEFAULT_HOST)
    relay.add("port", DEFAULT_PORT)
    relay.add(tomlkit.nl())
    relay.add(tomlkit.comment("Wire framing; every peer must use the same mode."))
    relay.add(tomlkit.comment("  raw:    no boundaries, each read is one message (reference peers)"))
    relay.add(tomlkit.comment("  line:   newline-terminated, escaped messages"))
    relay.add(tomlkit.comment("  length: 4-byte big-endian length prefix"))
    relay.add("framing", FRAMING_RAW)
    relay.add(tomlkit.nl())
    relay.add(tomlkit.comment("Bytes per receive; 0 picks the framing default (raw: 100)."))
    relay.add("recv_buffer_size", 0)
    relay.add(tomlkit.nl())
    relay.add(tomlkit.comment("Name used for server-originated text: 'From <name>: ...'."))
    relay.add("server_name", "server")
    doc.add("relay", relay)

    log_table = tomlkit.table()
    log_table.add(tomlkit.comment("Log level for relayd."))
    log_table.add("level", "INFO")
    log_table.add(tomlkit.comment("Log to stderr."))
    log_table.add("console", True)
    log_table.add(tomlkit.comment("Optional file path for logs (leave empty to disable)."))
    log_table.add("file", "")
    log_table.add("format", "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s")
    log_table.add("datefmt", "")
    doc.add("logging", log_table)
    return doc


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(tomlkit.dumps(_default_config_document()))


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="relayd", description="Run a TCP text relay server")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--host", default=None, help="Listen address (default: 0.0.0.0)")
    p.add_argument("--port", type=int, default=None, help="Listen port (default: 8050)")
    p.add_argument(
        "--framing",
        choices=FRAMING_MODES,
        default=None,
        help="Wire framing mode (default: raw)",
    )
    p.add_argument(
        "--recv-buffer",
        type=int,
        default=None,
        help="Bytes per receive (raw mode: also the maximum message size)",
    )
    p.add_argument("--server-name", default=None, help="Sender name for server text")

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


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    if not os.path.exists(config_path):
        _write_default_config(config_path)
        print(
            "Created default relayd config. Edit it before starting:\n"
            f"- Config: {config_path}\n"
            "\nThen re-run relayd.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = RelayRuntimeConfig(config_path=config_path)
    try:
        cfg = apply_config_data(cfg, load_toml(config_path))
    except (OSError, ValueError) as e:
        print(f"relayd: invalid config {config_path}: {e}", file=sys.stderr)
        raise SystemExit(2) from e

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.framing is not None:
        cfg = replace(cfg, framing=str(args.framing))
    if args.recv_buffer is not None:
        cfg = replace(cfg, recv_buffer_size=int(args.recv_buffer) or None)
    if args.server_name is not None:
        cfg = replace(cfg, server_name=str(args.server_name))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    try:
        validate_config(cfg)
    except ValueError as e:
        print(f"relayd: {e}", file=sys.stderr)
        raise SystemExit(2) from e

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = RelayServer(cfg)
    try:
        svc.start()
    except ListenError:
        logging.getLogger("relayd").error("relayd not started")
        raise SystemExit(1)

    svc.run_forever()
    logging.getLogger("relayd").info(svc.format_stats())


if __name__ == "__main__":
    main()
