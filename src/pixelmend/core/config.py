"""Configuration management for pixelmend (pixelmend.toml parsing + defaults)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    try:
        import tomli as tomllib  # type: ignore[no-redef]
    except ImportError:
        tomllib = None  # type: ignore[assignment]

from pixelmend.core.errors import ConfigError


@dataclass
class SourceConfig:
    root: str = "public"
    extensions: list[str] = field(
        default_factory=lambda: [
            ".html",
            ".htm",
            ".css",
            ".scss",
            ".less",
            ".js",
            ".jsx",
            ".ts",
            ".tsx",
            ".vue",
        ]
    )
    use_git: bool = True


@dataclass
class SegmentConfig:
    min_region_pixels: int = 1


@dataclass
class LocalizeConfig:
    min_overlap: float = 0.10
    similarity_threshold: float = 0.70
    max_issues_per_type: int = 3


@dataclass
class FixConfig:
    generation_threshold: float = 0.80
    max_candidates: int = 5
    context_lines: int = 5
    fuzzy_window: int = 3
    fuzzy_threshold: float = 0.80
    kb_weight: float = 0.30
    keep_backups: bool = True


@dataclass
class VerifyConfig:
    pass_threshold: float = 0.1
    pixel_threshold: float = 0.1
    accept_partial_improvement: bool = False
    min_improvement: float = 1.0
    render_timeout: float = 60.0
    diff_timeout: float = 30.0
    render_command: str = ""


@dataclass
class GenerationConfig:
    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 2000
    timeout: float = 120.0
    ollama_endpoint: str = "http://localhost:11434/api"
    ollama_model: str = "llama3.2"
    classify_differences: bool = False


@dataclass
class HealConfig:
    max_workers: int = 1
    lock_timeout: float = 30.0


@dataclass
class KnowledgeConfig:
    path: str = ".pixelmend/knowledge.db"


@dataclass
class PixelmendConfig:
    """Complete pixelmend configuration."""

    exclude: list[str] = field(
        default_factory=lambda: [
            "node_modules/",
            "dist/",
            "build/",
            ".pixelmend/",
            ".git/",
        ]
    )
    source: SourceConfig = field(default_factory=SourceConfig)
    segment: SegmentConfig = field(default_factory=SegmentConfig)
    localize: LocalizeConfig = field(default_factory=LocalizeConfig)
    fix: FixConfig = field(default_factory=FixConfig)
    verify: VerifyConfig = field(default_factory=VerifyConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    heal: HealConfig = field(default_factory=HealConfig)
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)


_SECTIONS = ("source", "segment", "localize", "fix", "verify", "generation", "heal", "knowledge")


def load_config(project_path: Path | None = None) -> PixelmendConfig:
    """Load configuration from pixelmend.toml if present, otherwise return defaults."""
    config = PixelmendConfig()

    if project_path is None:
        project_path = Path.cwd()

    config_file = project_path / "pixelmend.toml"
    if not config_file.exists():
        return config

    if tomllib is None:
        return config

    try:
        with open(config_file, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid {config_file.name}: {e}") from e

    if "general" in data:
        gen = data["general"]
        if "exclude" in gen:
            config.exclude = gen["exclude"]

    for name in _SECTIONS:
        if name not in data:
            continue
        section = getattr(config, name)
        for key, value in data[name].items():
            if not hasattr(section, key):
                raise ConfigError(f"Unknown option [{name}] {key}")
            setattr(section, key, value)

    return config


def get_pixelmend_dir(project_path: Path | None = None) -> Path:
    """Get or create the .pixelmend directory."""
    if project_path is None:
        project_path = Path.cwd()
    pixelmend_dir = project_path / ".pixelmend"
    pixelmend_dir.mkdir(exist_ok=True)
    return pixelmend_dir


def ensure_gitignore(project_path: Path | None = None) -> None:
    """Add .pixelmend/ to .gitignore if not already present."""
    if project_path is None:
        project_path = Path.cwd()
    gitignore = project_path / ".gitignore"
    entry = ".pixelmend/"

    if gitignore.exists():
        content = gitignore.read_text()
        if entry in content:
            return
        if not content.endswith("\n"):
            content += "\n"
        content += f"{entry}\n"
        gitignore.write_text(content)
    else:
        gitignore.write_text(f"{entry}\n")
