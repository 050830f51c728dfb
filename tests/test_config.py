from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from cinestream.config import ConfigManager, Settings


def _manager(tmp_path):
    return ConfigManager(tmp_path / "config.json", dotenv_path=tmp_path / ".env")


def test_defaults_without_file_or_env(tmp_path, clean_env) -> None:
    s = _manager(tmp_path).load(interactive=False)

    assert s.player == "mpv"
    assert s.resolve_deadline == 120.0
    assert not s.unlock_enabled


def test_file_values_are_loaded(tmp_path, clean_env) -> None:
    (tmp_path / "config.json").write_text(json.dumps({"realdebrid_token": "abc", "player": "vlc"}), encoding="utf-8")

    s = _manager(tmp_path).load(interactive=False)

    assert s.player == "vlc"
    assert s.unlock_enabled


def test_env_overrides_file(tmp_path, clean_env) -> None:
    (tmp_path / "config.json").write_text(json.dumps({"realdebrid_token": "from-file"}), encoding="utf-8")
    clean_env.setenv("REALDEBRID", " from-env ")
    clean_env.setenv("CINESTREAM_PLAYER", "clapper")

    s = _manager(tmp_path).load(interactive=False)

    assert s.realdebrid_token == "from-env"
    assert s.player == "clapper"


def test_dotenv_fills_missing_variables_only(tmp_path, clean_env) -> None:
    (tmp_path / ".env").write_text('REALDEBRID="dotenv-token"\nCINESTREAM_PLAYER=vlc\n', encoding="utf-8")
    clean_env.setenv("CINESTREAM_PLAYER", "clapper")

    s = _manager(tmp_path).load(interactive=False)

    assert s.realdebrid_token == "dotenv-token"
    assert s.player == "clapper"


def test_blank_token_disables_unlock() -> None:
    assert not Settings(realdebrid_token="   ").unlock_enabled


def test_invalid_config_raises_when_not_interactive(tmp_path, clean_env) -> None:
    (tmp_path / "config.json").write_text(json.dumps({"player": "winamp"}), encoding="utf-8")

    with pytest.raises(ValidationError):
        _manager(tmp_path).load(interactive=False)


def test_invalid_config_runs_setup_and_saves(tmp_path, clean_env, monkeypatch) -> None:
    (tmp_path / "config.json").write_text(json.dumps({"player": "winamp"}), encoding="utf-8")
    answers = iter(["vlc", "rd-token", ""])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))

    s = _manager(tmp_path).load()

    assert s.player == "vlc"
    assert s.realdebrid_token == "rd-token"
    saved = json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))
    assert saved["player"] == "vlc"


def test_unreadable_config_file_is_ignored(tmp_path, clean_env) -> None:
    (tmp_path / "config.json").write_text("{not json", encoding="utf-8")

    assert _manager(tmp_path).load(interactive=False).player == "mpv"
