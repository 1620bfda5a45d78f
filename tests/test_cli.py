"""Tests for the command-line entry point."""

from __future__ import annotations

import pytest

from picolm_gateway import config as config_module
from picolm_gateway.__main__ import build_parser, main


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module, "default_config_path", lambda: tmp_path / "absent.toml")
    monkeypatch.delenv("PICOLM_API_KEY", raising=False)


def _write_config(tmp_path, binary: str, model: str) -> str:
    path = tmp_path / "config.toml"
    path.write_text(f'[picolm]\nbinary = "{binary}"\nmodel_path = "{model}"\n')
    return str(path)


class TestParser:
    def test_flags(self):
        args = build_parser().parse_args(
            ["--config", "c.toml", "--host", "127.0.0.1", "--port", "9000", "-v", "--prompt", "hi"]
        )
        assert args.config == "c.toml"
        assert args.host == "127.0.0.1"
        assert args.port == 9000
        assert args.verbose is True
        assert args.prompt == "hi"

    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.config is None
        assert args.port is None
        assert args.prompt is None


class TestStartup:
    def test_missing_config_file(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(["--config", str(tmp_path / "nope.toml")])
        assert excinfo.value.code == 1
        assert "failed to load config" in capsys.readouterr().err

    def test_unconfigured_binary(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main([])
        assert excinfo.value.code == 1
        assert "binary path is required" in capsys.readouterr().err

    def test_missing_model(self, tmp_path, make_engine, capsys):
        config = _write_config(tmp_path, make_engine("print('x')\n"), str(tmp_path / "none.bin"))
        with pytest.raises(SystemExit) as excinfo:
            main(["--config", config])
        assert excinfo.value.code == 1
        assert "model not found" in capsys.readouterr().err

    def test_prompt_mode(self, tmp_path, make_engine, model_file, capsys):
        engine = make_engine("sys.stdin.read(); print('Paris is the capital.')\n")
        config = _write_config(tmp_path, engine, model_file)
        with pytest.raises(SystemExit) as excinfo:
            main(["--config", config, "--prompt", "Capital of France?"])
        assert excinfo.value.code == 0
        captured = capsys.readouterr()
        assert "Paris is the capital." in captured.out
        assert "[finish_reason] stop" in captured.err
