"""Tests for the click command-line interface."""

from __future__ import annotations

import json
import signal
from pathlib import Path

import pytest
from click.testing import CliRunner
from PIL import Image, ImageDraw

from pixelmend._version import __version__
from pixelmend.cli.heal_cmd import cancel_on_signals
from pixelmend.cli.main import cli
from pixelmend.core.models import KnowledgeBaseEntry, Outcome
from pixelmend.knowledge.store import SqliteKnowledgeStore


def _page(path: Path, color: str) -> None:
    img = Image.new("RGB", (100, 100), "white")
    ImageDraw.Draw(img).rectangle([40, 40, 59, 59], fill=color)
    path.parent.mkdir(parents=True, exist_ok=True)
    img.save(path)


class RecordingController:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    (tmp_path / "public").mkdir()
    (tmp_path / "public" / "site.css").write_text(".header {\n  color: #ff0000;\n}\n")
    (tmp_path / "modified.txt").write_text("public/site.css\n")
    (tmp_path / "elements.json").write_text(json.dumps({
        "home": [{"selector": ".header", "className": "header", "tagName": "DIV",
                  "boundingBox": {"x": 40, "y": 40, "width": 20, "height": 20}}],
    }))
    _page(tmp_path / "baseline" / "home.png", "#333333")
    _page(tmp_path / "current" / "home.png", "#ff0000")
    return tmp_path


class TestCli:
    def test_version(self, runner: CliRunner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_localize_json(self, runner: CliRunner, project: Path):
        result = runner.invoke(cli, [
            "localize",
            "--target", str(project),
            "--baseline-dir", str(project / "baseline"),
            "--current-dir", str(project / "current"),
            "--elements", str(project / "elements.json"),
            "--modified", str(project / "modified.txt"),
            "--json",
        ])

        assert result.exit_code == 0, result.output
        issues = json.loads(result.output)
        assert [i["issueId"] for i in issues] == ["home#1"]
        assert issues[0]["region"] == {"x": 40, "y": 40, "width": 20, "height": 20}
        top = issues[0]["codeReferences"][0]
        assert top["location"].endswith("site.css:1")
        assert top["confidence"] == 0.9

    def test_localize_requires_input(self, runner: CliRunner, project: Path):
        result = runner.invoke(cli, ["localize", "--target", str(project)])
        assert result.exit_code == 2
        assert "--results" in result.output

    def test_heal_requires_render_command(self, runner: CliRunner, project: Path):
        result = runner.invoke(cli, [
            "heal",
            "--target", str(project),
            "--baseline-dir", str(project / "baseline"),
            "--current-dir", str(project / "current"),
        ])
        assert result.exit_code == 2
        assert "render_command" in result.output

    def test_invalid_config(self, runner: CliRunner, project: Path):
        (project / "pixelmend.toml").write_text("[verify]\nrender_comand = 'x'\n")
        result = runner.invoke(cli, ["heal", "--target", str(project)])
        assert result.exit_code == 1
        assert "Unknown option [verify] render_comand" in result.output

    def test_undo_list_empty(self, runner: CliRunner, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(cli, ["undo", "--list"])
        assert result.exit_code == 0
        assert "No undoable fixes found" in result.output

    def test_kb_stats(self, runner: CliRunner, tmp_path: Path, monkeypatch):
        store = SqliteKnowledgeStore(tmp_path / ".pixelmend" / "knowledge.db")
        for outcome in (Outcome.SUCCESS, Outcome.SUCCESS, Outcome.FAILURE):
            store.append(KnowledgeBaseEntry("COLOR|.header|site.css", "Revert color", outcome, 0.0))
        monkeypatch.chdir(tmp_path)

        result = runner.invoke(cli, ["kb", "--stats"])

        assert result.exit_code == 0, result.output
        assert "COLOR|.header|site.css" in result.output
        assert "2" in result.output and "1" in result.output


class TestCancelOnSignals:
    def test_sigterm_cancels_controller(self):
        controller = RecordingController()
        original = signal.getsignal(signal.SIGTERM)

        with cancel_on_signals(controller):
            signal.raise_signal(signal.SIGTERM)
            assert controller.cancelled

        assert signal.getsignal(signal.SIGTERM) is original

    def test_first_sigint_cancels_without_interrupting(self):
        controller = RecordingController()
        original = signal.getsignal(signal.SIGINT)

        with cancel_on_signals(controller):
            signal.raise_signal(signal.SIGINT)
            assert controller.cancelled
            assert signal.getsignal(signal.SIGINT) is signal.default_int_handler

        assert signal.getsignal(signal.SIGINT) is original
