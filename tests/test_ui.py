from __future__ import annotations

from cinestream import ui


def test_numbered_fallback_without_fzf(monkeypatch, capsys) -> None:
    monkeypatch.setattr(ui, "ensure_binary", lambda name: False)
    monkeypatch.setattr("builtins.input", lambda prompt="": "2")

    assert ui.pick_index(["a", "b", "c"], header="Stream") == 1
    assert "  2. b" in capsys.readouterr().out


def test_out_of_range_or_blank_answer_picks_nothing(monkeypatch) -> None:
    monkeypatch.setattr(ui, "ensure_binary", lambda name: False)
    for answer in ("9", "", "x"):
        monkeypatch.setattr("builtins.input", lambda prompt="", a=answer: a)
        assert ui.pick_index(["a", "b"]) is None


def test_empty_options_never_prompt(monkeypatch) -> None:
    monkeypatch.setattr("builtins.input", lambda prompt="": (_ for _ in ()).throw(AssertionError("prompted")))

    assert ui.pick_index([]) is None
