from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.json"

LLM_PROVIDERS = ("openai", "anthropic", "ollama")

DEFAULTS = {
    "llm_provider": "openai",
    "llm_model": "gpt-3.5-turbo",
    "ollama_url": "http://localhost:11434",
    "temperature": 0.7,
    "generation_timeout": 120.0,
    "db_path": "studyquiz.db",
    "session_days": 7,
    "max_upload_bytes": 5 * 1024 * 1024,
    "admin_emails": [],
}

# Fields PUT /api/settings may change; the rest only come from config.json.
EDITABLE_FIELDS = (
    "llm_provider",
    "llm_model",
    "ollama_url",
    "temperature",
    "generation_timeout",
    "session_days",
    "max_upload_bytes",
)


class SettingsError(ValueError):
    """A settings value has the wrong type or is out of range."""

    def __init__(self, field_name: str, message: str):
        super().__init__(f"{field_name}: {message}")
        self.field = field_name


@dataclass
class Settings:
    llm_provider: str = DEFAULTS["llm_provider"]
    llm_model: str = DEFAULTS["llm_model"]
    ollama_url: str = DEFAULTS["ollama_url"]
    temperature: float = DEFAULTS["temperature"]
    generation_timeout: float = DEFAULTS["generation_timeout"]
    db_path: str = DEFAULTS["db_path"]
    session_days: int = DEFAULTS["session_days"]
    max_upload_bytes: int = DEFAULTS["max_upload_bytes"]
    admin_emails: list[str] = field(default_factory=lambda: list(DEFAULTS["admin_emails"]))

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def db_full_path(self) -> Path:
        return self.project_root / self.db_path

    def is_admin(self, email: str) -> bool:
        return email.lower() in {e.strip().lower() for e in self.admin_emails}

    def to_dict(self) -> dict:
        return {
            "llm_provider": self.llm_provider,
            "llm_model": self.llm_model,
            "ollama_url": self.ollama_url,
            "temperature": self.temperature,
            "generation_timeout": self.generation_timeout,
            "db_path": self.db_path,
            "session_days": self.session_days,
            "max_upload_bytes": self.max_upload_bytes,
            "admin_emails": list(self.admin_emails),
        }


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _text(name: str, value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise SettingsError(name, "must be a non-empty string")
    return value.strip()


def check_value(name: str, value):
    """Return the normalized value for a settings field, or raise SettingsError."""
    if name == "llm_provider":
        if value not in LLM_PROVIDERS:
            raise SettingsError(name, f"must be one of {', '.join(LLM_PROVIDERS)}")
        return value
    if name in ("llm_model", "ollama_url", "db_path"):
        return _text(name, value)
    if name == "temperature":
        if not _is_number(value) or not 0 <= value <= 2:
            raise SettingsError(name, "must be a number between 0 and 2")
        return float(value)
    if name == "generation_timeout":
        if not _is_number(value) or value <= 0:
            raise SettingsError(name, "must be a positive number of seconds")
        return float(value)
    if name in ("session_days", "max_upload_bytes"):
        if not _is_int(value) or value < 1:
            raise SettingsError(name, "must be a positive integer")
        return value
    if name == "admin_emails":
        if not isinstance(value, list) or not all(isinstance(e, str) for e in value):
            raise SettingsError(name, "must be a list of email addresses")
        return [e.strip().lower() for e in value if e.strip()]
    raise SettingsError(name, "unknown setting")


def update_settings(settings: Settings, changes: dict) -> Settings:
    """Apply editable changes, all or nothing. Unknown keys are ignored."""
    values = settings.to_dict()
    for name in EDITABLE_FIELDS:
        if name in changes:
            values[name] = check_value(name, changes[name])
    return Settings(**values)


def load_settings() -> Settings:
    if CONFIG_PATH.exists():
        raw = json.loads(CONFIG_PATH.read_text())
        known = {f.name for f in Settings.__dataclass_fields__.values()}
        filtered = {k: check_value(k, v) for k, v in raw.items() if k in known}
        return Settings(**filtered)
    return Settings()


def save_settings(settings: Settings) -> None:
    CONFIG_PATH.write_text(json.dumps(settings.to_dict(), indent=4) + "\n")


def make_llm(settings: Settings):
    """Instantiate the configured LLM provider."""
    timeout = settings.generation_timeout
    if settings.llm_provider == "openai":
        from studyquiz.providers.llm_openai import OpenAIProvider
        return OpenAIProvider(model=settings.llm_model, timeout=timeout)
    elif settings.llm_provider == "anthropic":
        from studyquiz.providers.llm_anthropic import AnthropicProvider
        return AnthropicProvider(model=settings.llm_model, timeout=timeout)
    elif settings.llm_provider == "ollama":
        from studyquiz.providers.llm_ollama import OllamaProvider
        return OllamaProvider(base_url=settings.ollama_url, model=settings.llm_model, timeout=timeout)
    raise ValueError(f"Unknown LLM provider: {settings.llm_provider}")
