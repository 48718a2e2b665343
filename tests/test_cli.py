"""CLI tests using click's CliRunner.

No API keys are available, so ``discover`` runs the offline pipeline:
filename heuristics, canned facts and template replies, text only.
"""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from wondertalk import __version__
from wondertalk.cli.main import main

from conftest import make_image_bytes


@pytest.fixture(autouse=True)
def offline(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
    package_logger = logging.getLogger("wondertalk")
    handlers, propagate = package_logger.handlers[:], package_logger.propagate
    level = package_logger.level
    with patch("wondertalk.config.keyring.get_password", return_value=None):
        yield
    package_logger.handlers = handlers
    package_logger.propagate = propagate
    package_logger.setLevel(level)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "wondertalk.yaml"
    path.write_text(f"paths:\n  data_dir: {tmp_path / 'data'}\n")
    return path


@pytest.fixture
def photo(tmp_path: Path) -> Path:
    path = tmp_path / "eiffel.jpg"
    path.write_bytes(make_image_bytes(fmt="JPEG"))
    return path


class TestMainGroup:
    def test_version(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self) -> None:
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("serve", "discover", "config"):
            assert command in result.output

    def test_bad_config_file_exits(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad.yaml"
        bad.write_text("- not\n- a mapping\n")
        result = CliRunner().invoke(main, ["--config", str(bad), "config", "show"])
        assert result.exit_code == 1
        assert "mapping" in result.output


class TestDiscover:
    def test_discover_prints_entity_and_reply(self, config_file: Path, photo: Path) -> None:
        result = CliRunner().invoke(main, ["--config", str(config_file), "discover", str(photo)])

        assert result.exit_code == 0, result.output
        assert "Eiffel Tower" in result.output
        assert "landmark" in result.output
        assert "text only" in result.output

    def test_discover_chat_until_quit(self, config_file: Path, photo: Path) -> None:
        result = CliRunner().invoke(
            main,
            ["--config", str(config_file), "discover", str(photo), "--chat"],
            input="How tall are you?\nquit\n",
        )

        assert result.exit_code == 0, result.output
        assert "Want another surprising fact?" in result.output

    def test_unsupported_file_type(self, config_file: Path, tmp_path: Path) -> None:
        notes = tmp_path / "notes.txt"
        notes.write_text("not a photo")
        result = CliRunner().invoke(main, ["--config", str(config_file), "discover", str(notes)])
        assert result.exit_code == 1


class TestConfigCommands:
    def test_show(self, config_file: Path) -> None:
        result = CliRunner().invoke(main, ["--config", str(config_file), "config", "show"])

        assert result.exit_code == 0, result.output
        assert "WonderTalk Configuration" in result.output
        assert "gemini API key: not configured" in result.output
        assert "parent-mode" not in result.output

    def test_set_key_rejects_short_keys(self) -> None:
        with patch("wondertalk.config.keyring.set_password") as set_password:
            result = CliRunner().invoke(main, ["config", "set-key", "gemini"], input="short\n")
        assert result.exit_code == 1
        set_password.assert_not_called()

    def test_set_key_stores_in_keyring(self) -> None:
        with patch("wondertalk.config.keyring.set_password") as set_password:
            result = CliRunner().invoke(
                main, ["config", "set-key", "elevenlabs"], input="sk_abcdef123456\n"
            )
        assert result.exit_code == 0, result.output
        set_password.assert_called_once_with("wondertalk", "elevenlabs", "sk_abcdef123456")
