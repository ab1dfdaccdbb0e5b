"""TOML configuration loader."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"
DEFAULT_GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_EXPORT_FILENAME = "product_recognition_results.csv"


@dataclass
class GeminiVisionConfig:
    api_key: str = ""
    model: str = DEFAULT_GEMINI_MODEL
    api_base: str = DEFAULT_GEMINI_API_BASE


@dataclass
class ClaudeVisionConfig:
    api_key: str = ""
    model: str = DEFAULT_CLAUDE_MODEL


@dataclass
class VisionConfig:
    backend: str = "gemini"
    gemini: GeminiVisionConfig = field(default_factory=GeminiVisionConfig)
    claude: ClaudeVisionConfig = field(default_factory=ClaudeVisionConfig)


@dataclass
class RecognitionConfig:
    max_attempts: int = 3
    timeout: float = 30.0
    backoff_base: float = 0.5
    backoff_max: float = 8.0
    jitter: float = 0.25
    concurrency: int = 1


@dataclass
class IngestConfig:
    max_files: int = 1000
    max_file_bytes: int = 20 * 1024 * 1024


@dataclass
class ExportConfig:
    filename: str = DEFAULT_EXPORT_FILENAME


@dataclass
class AppConfig:
    vision: VisionConfig = field(default_factory=VisionConfig)
    recognition: RecognitionConfig = field(default_factory=RecognitionConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    def api_key(self) -> str:
        """Return the API key of the selected backend ("" when unset)."""
        match self.vision.backend:
            case "gemini":
                return self.vision.gemini.api_key
            case "claude":
                return self.vision.claude.api_key
            case _:
                return ""


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from a TOML file.

    Falls back to defaults if no path is given or the file doesn't exist.
    API keys missing from the file are taken from GEMINI_API_KEY and
    ANTHROPIC_API_KEY.
    """
    raw: dict = {}

    if path is not None:
        p = Path(path)
        if p.exists():
            try:
                with open(p, "rb") as f:
                    raw = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigError(f"Invalid config file {p}: {e}") from e

    vis = raw.get("vision", {})
    rec = raw.get("recognition", {})
    ing = raw.get("ingest", {})
    exp = raw.get("export", {})

    gemini_cfg = vis.get("gemini", {})
    claude_cfg = vis.get("claude", {})

    # Resolve API keys: config file → environment variable
    gemini_api_key = gemini_cfg.get("api_key", "") or os.environ.get(
        "GEMINI_API_KEY", ""
    )
    claude_api_key = claude_cfg.get("api_key", "") or os.environ.get(
        "ANTHROPIC_API_KEY", ""
    )

    config = AppConfig(
        vision=VisionConfig(
            backend=vis.get("backend", "gemini"),
            gemini=GeminiVisionConfig(
                api_key=gemini_api_key.strip(),
                model=gemini_cfg.get("model", DEFAULT_GEMINI_MODEL),
                api_base=gemini_cfg.get("api_base", DEFAULT_GEMINI_API_BASE),
            ),
            claude=ClaudeVisionConfig(
                api_key=claude_api_key.strip(),
                model=claude_cfg.get("model", DEFAULT_CLAUDE_MODEL),
            ),
        ),
        recognition=RecognitionConfig(
            max_attempts=int(rec.get("max_attempts", 3)),
            timeout=float(rec.get("timeout", 30.0)),
            backoff_base=float(rec.get("backoff_base", 0.5)),
            backoff_max=float(rec.get("backoff_max", 8.0)),
            jitter=float(rec.get("jitter", 0.25)),
            concurrency=int(rec.get("concurrency", 1)),
        ),
        ingest=IngestConfig(
            max_files=int(ing.get("max_files", 1000)),
            max_file_bytes=int(ing.get("max_file_bytes", 20 * 1024 * 1024)),
        ),
        export=ExportConfig(
            filename=exp.get("filename", DEFAULT_EXPORT_FILENAME),
        ),
    )
    validate_config(config)
    return config


def validate_config(config: AppConfig) -> None:
    """Reject settings the pipeline cannot run with."""
    rc = config.recognition
    if rc.max_attempts < 1:
        raise ConfigError("recognition.max_attempts must be at least 1")
    if rc.concurrency < 1:
        raise ConfigError("recognition.concurrency must be at least 1")
    if rc.timeout <= 0:
        raise ConfigError("recognition.timeout must be positive")
    if rc.backoff_base < 0 or rc.backoff_max < 0 or rc.jitter < 0:
        raise ConfigError("recognition backoff settings must not be negative")
    if config.ingest.max_files < 1:
        raise ConfigError("ingest.max_files must be at least 1")
