"""Tests for pixelmend.toml loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from pixelmend.core.config import (
    PixelmendConfig,
    ensure_gitignore,
    get_pixelmend_dir,
    load_config,
)
from pixelmend.core.errors import ConfigError


class TestLoadConfig:
    def test_defaults_without_file(self, tmp_path: Path):
        config = load_config(tmp_path)

        assert isinstance(config, PixelmendConfig)
        assert config.source.root == "public"
        assert config.verify.pass_threshold == 0.1
        assert config.fix.generation_threshold == 0.80
        assert config.localize.max_issues_per_type == 3
        assert config.heal.max_workers == 1
        assert "node_modules/" in config.exclude

    def test_section_overrides(self, tmp_path: Path):
        (tmp_path / "pixelmend.toml").write_text(
            "[source]\n"
            'root = "src"\n'
            "use_git = false\n"
            "\n"
            "[verify]\n"
            'render_command = "node shot.js {surface} {output}"\n'
            "pass_threshold = 0.5\n"
            "\n"
            "[heal]\n"
            "max_workers = 4\n"
        )
        config = load_config(tmp_path)

        assert config.source.root == "src"
        assert config.source.use_git is False
        assert config.verify.render_command == "node shot.js {surface} {output}"
        assert config.verify.pass_threshold == 0.5
        assert config.heal.max_workers == 4
        # Untouched sections keep their defaults.
        assert config.fix.max_candidates == 5

    def test_general_exclude(self, tmp_path: Path):
        (tmp_path / "pixelmend.toml").write_text('[general]\nexclude = ["vendor/"]\n')
        assert load_config(tmp_path).exclude == ["vendor/"]

    def test_unknown_option(self, tmp_path: Path):
        (tmp_path / "pixelmend.toml").write_text("[fix]\nmax_candidatez = 2\n")
        with pytest.raises(ConfigError, match=r"\[fix\] max_candidatez"):
            load_config(tmp_path)

    def test_invalid_toml(self, tmp_path: Path):
        (tmp_path / "pixelmend.toml").write_text("[verify\npass_threshold = ")
        with pytest.raises(ConfigError, match="Invalid pixelmend.toml"):
            load_config(tmp_path)


class TestProjectFiles:
    def test_pixelmend_dir_created(self, tmp_path: Path):
        path = get_pixelmend_dir(tmp_path)
        assert path == tmp_path / ".pixelmend"
        assert path.is_dir()

    def test_gitignore_created(self, tmp_path: Path):
        ensure_gitignore(tmp_path)
        assert (tmp_path / ".gitignore").read_text() == ".pixelmend/\n"

    def test_gitignore_appended_once(self, tmp_path: Path):
        (tmp_path / ".gitignore").write_text("node_modules/")
        ensure_gitignore(tmp_path)
        ensure_gitignore(tmp_path)
        assert (tmp_path / ".gitignore").read_text() == "node_modules/\n.pixelmend/\n"
