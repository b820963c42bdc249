from __future__ import annotations

from dataclasses import asdict, dataclass, replace

from .constants import (
    DEFAULT_BACKLOG,
    DEFAULT_HOST,
    DEFAULT_PORT,
    FRAMING_MODES,
    FRAMING_RAW,
    MAX_FRAME_BYTES,
)


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    backlog: int = DEFAULT_BACKLOG
    framing: str = FRAMING_RAW
    # None picks the framing mode's own default read size.
    recv_buffer_size: int | None = None
    max_frame_bytes: int = MAX_FRAME_BYTES
    server_name: str = "server"
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: RelayRuntimeConfig, data: dict) -> RelayRuntimeConfig:
    relay = data.get("relay") if isinstance(data, dict) else None
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        if "level" in log_table:
            mapped["log_level"] = log_table.get("level")
        if "console" in log_table:
            mapped["log_console"] = log_table.get("console")
        if "file" in log_table:
            mapped["log_file"] = log_table.get("file")
        if "format" in log_table:
            mapped["log_format"] = log_table.get("format")
        if "datefmt" in log_table:
            mapped["log_datefmt"] = log_table.get("datefmt")
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config was loaded from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    if "log_file" in updates and updates["log_file"] == "":
        updates["log_file"] = None
    if "log_datefmt" in updates and updates["log_datefmt"] == "":
        updates["log_datefmt"] = None
    if "recv_buffer_size" in updates and not updates["recv_buffer_size"]:
        updates["recv_buffer_size"] = None

    cfg = replace(base, **updates) if updates else base
    validate_config(cfg)
    return cfg


def validate_config(cfg: RelayRuntimeConfig) -> None:
    if str(cfg.framing).strip().lower() not in FRAMING_MODES:
        raise ValueError(
            f"framing must be one of {', '.join(FRAMING_MODES)}; got {cfg.framing!r}"
        )
    if not isinstance(cfg.port, int) or not 0 <= cfg.port <= 65535:
        raise ValueError(f"port out of range: {cfg.port!r}")
    if cfg.recv_buffer_size is not None and int(cfg.recv_buffer_size) <= 0:
        raise ValueError("recv_buffer_size must be positive")
    if int(cfg.max_frame_bytes) <= 0:
        raise ValueError("max_frame_bytes must be positive")
    if int(cfg.backlog) <= 0:
        raise ValueError("backlog must be positive")
