import logging
import os
import socket
import stat
from dataclasses import replace

import pytest
import tomlkit

from relayd import cli
from relayd.config import RelayRuntimeConfig, apply_config_data, load_toml, validate_config
from relayd.logging_config import configure_logging


def test_defaults_match_reference_peers() -> None:
    cfg = RelayRuntimeConfig()
    assert cfg.port == 8050
    assert cfg.framing == "raw"
    assert cfg.recv_buffer_size is None
    validate_config(cfg)


def test_apply_config_reads_relay_and_logging_tables() -> None:
    data = {
        "relay": {"port": 9000, "framing": "line", "recv_buffer_size": 0},
        "logging": {"level": "DEBUG", "file": "", "datefmt": ""},
        "config_path": "/elsewhere.toml",
        "unknown_key": 1,
    }
    cfg = apply_config_data(RelayRuntimeConfig(config_path="/here.toml"), data)
    assert cfg.port == 9000
    assert cfg.framing == "line"
    assert cfg.recv_buffer_size is None
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file is None
    assert cfg.log_datefmt is None
    assert cfg.config_path == "/here.toml"


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValueError):
        apply_config_data(RelayRuntimeConfig(), {"relay": {"framing": "json"}})
    with pytest.raises(ValueError):
        validate_config(replace(RelayRuntimeConfig(), port=70000))
    with pytest.raises(ValueError):
        validate_config(replace(RelayRuntimeConfig(), recv_buffer_size=-1))


def test_first_run_writes_loadable_default_config(tmp_path) -> None:
    path = tmp_path / "conf" / "relayd.toml"

    with pytest.raises(SystemExit) as exc:
        cli.main(["--config", str(path)])
    assert exc.value.code == 0
    assert path.exists()

    doc = tomlkit.parse(path.read_text(encoding="utf-8"))
    assert doc["relay"]["port"] == 8050
    assert "Wire framing" in path.read_text(encoding="utf-8")

    cfg = apply_config_data(RelayRuntimeConfig(), load_toml(str(path)))
    assert cfg == RelayRuntimeConfig()


def test_cli_rejects_bad_config(tmp_path) -> None:
    path = tmp_path / "relayd.toml"
    path.write_text('[relay]\nframing = "carrier-pigeon"\n', encoding="utf-8")

    with pytest.raises(SystemExit) as exc:
        cli.main(["--config", str(path)])
    assert exc.value.code == 2


def test_cli_exits_when_port_is_taken(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(cli, "configure_logging", lambda *a, **k: None)
    path = tmp_path / "relayd.toml"
    path.write_text('[relay]\nhost = "127.0.0.1"\n', encoding="utf-8")

    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", 0))
    blocker.listen(1)
    port = blocker.getsockname()[1]
    try:
        with pytest.raises(SystemExit) as exc:
            cli.main(["--config", str(path), "--port", str(port)])
        assert exc.value.code == 1
    finally:
        blocker.close()


def test_configure_logging_replaces_root_handlers(tmp_path) -> None:
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    log_file = tmp_path / "logs" / "relayd.log"
    try:
        cfg = RelayRuntimeConfig(log_console=False, log_file=str(log_file), log_level="WARNING")
        configure_logging(cfg)
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0], logging.FileHandler)

        configure_logging(cfg, override_level="debug")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1

        logging.getLogger("relayd.test").warning("written")
        root.handlers[0].flush()
        assert "written" in log_file.read_text(encoding="utf-8")
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)


@pytest.mark.skipif(os.name != "posix", reason="file modes are POSIX-only")
def test_log_file_is_private(tmp_path) -> None:
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    log_file = tmp_path / "relayd.log"
    try:
        configure_logging(RelayRuntimeConfig(log_console=False, log_file=str(log_file)))
        assert stat.S_IMODE(log_file.stat().st_mode) == 0o600
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
