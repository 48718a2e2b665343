"""Central Configuration System for WonderTalk.

This module is the single source of truth for application configuration.
Every other module that needs settings receives an ``AppConfig`` built here.

The configuration system supports:
- Multi-source configuration (environment variables > config file > defaults)
- API key lookup for Gemini and ElevenLabs (env > system keyring)
- Safety defaults that stay strict unless explicitly relaxed

Example:
    >>> from wondertalk.config import get_config, get_api_key
    >>>
    >>> cfg = get_config()
    >>> print(cfg.gemini.model)  # gemini-2.0-flash
    >>> key = get_api_key("gemini")  # SecretStr | None

Config File Format (YAML):
    ```yaml
    gemini:
      model: gemini-2.0-flash
      tts_model: gemini-2.5-flash-preview-tts
      request_timeout_seconds: 6
      identity_refinement: true

    voice:
      provider: gemini  # gemini | elevenlabs | auto
      request_timeout_seconds: 6

    safety:
      strict_safety: true

    research:
      fact_cache_ttl_minutes: 1440
      min_fact_confidence: 0.55

    server:
      port: 8787
      api_base_url: http://localhost:8787
      admin_key: parent-mode

    paths:
      data_dir: ./data
    ```

Every field can also be set from the environment with the ``WONDERTALK_``
prefix and ``__`` between sections, e.g. ``WONDERTALK_VOICE__PROVIDER=auto``.
"""

from __future__ import annotations

import functools
import logging
import os
from pathlib import Path
from typing import Any, Literal

import keyring
import keyring.errors
import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class ConfigError(Exception):
    """Base exception for configuration errors."""

    pass


class ConfigFileError(ConfigError):
    """Raised when a config file exists but cannot be read or parsed."""

    pass


class APIKeyNotFoundError(ConfigError):
    """Raised when an API key is required but no source provides one."""

    pass


# =============================================================================
# Configuration Sections
# =============================================================================


ProviderName = Literal["gemini", "elevenlabs"]
VoiceProviderPreference = Literal["gemini", "elevenlabs", "auto"]


class GeminiConfig(BaseModel):
    """Settings for every Gemini call the pipeline makes.

    Attributes:
        model: Model used for vision, research, replies and transcription.
        tts_model: Model used for speech synthesis.
        request_timeout_seconds: Hard deadline per call.
        temperature: Sampling temperature for text generation.
        identity_refinement: Ask the model to confirm depicted-person identity.
    """

    model: str = Field(default="gemini-2.0-flash", description="Text and vision model.")
    tts_model: str = Field(
        default="gemini-2.5-flash-preview-tts", description="Text-to-speech model."
    )
    request_timeout_seconds: float = Field(
        default=6.0, gt=0, le=120, description="Deadline for a single Gemini call."
    )
    temperature: float = Field(default=0.4, ge=0.0, le=2.0, description="Sampling temperature.")
    identity_refinement: bool = Field(
        default=True, description="Run the second identity-refinement call when enabled."
    )


class VoiceConfig(BaseModel):
    """Settings for the text-to-speech provider chain."""

    provider: VoiceProviderPreference = Field(
        default="gemini", description="Preferred TTS provider: gemini, elevenlabs or auto."
    )
    request_timeout_seconds: float = Field(default=6.0, gt=0, le=120)

    gemini_voice_default: str = "Leda"
    gemini_voice_playful: str = "Leda"
    gemini_voice_wise: str = "Kore"
    gemini_voice_adventurous: str = "Aoede"
    gemini_voice_inventor: str = "Orus"

    elevenlabs_model: str = "eleven_turbo_v2_5"
    elevenlabs_default_voice_id: str = "EXAVITQu4vr4xnSDxMaL"
    elevenlabs_voice_playful: str | None = None
    elevenlabs_voice_wise: str | None = None
    elevenlabs_voice_adventurous: str | None = None
    elevenlabs_voice_inventor: str | None = None
    elevenlabs_base_url: str = "https://api.elevenlabs.io"

    @field_validator("provider", mode="before")
    @classmethod
    def normalize_provider(cls, v: Any) -> Any:
        """Accept mixed case and fall back to gemini for unknown values."""
        if isinstance(v, str):
            value = v.strip().lower()
            if value not in ("gemini", "elevenlabs", "auto"):
                logger.warning(f"Unknown voice provider {v!r}, using gemini")
                return "gemini"
            return value
        return v

    def gemini_voice_for(self, archetype: str) -> str:
        return getattr(self, f"gemini_voice_{archetype}", None) or self.gemini_voice_default

    def elevenlabs_voice_for(self, archetype: str) -> str:
        return (
            getattr(self, f"elevenlabs_voice_{archetype}", None)
            or self.elevenlabs_default_voice_id
        )


class SafetyConfig(BaseModel):
    """Content-safety switches.

    Attributes:
        strict_safety: When True, a blocked topic in model output replaces the
            reply with a safe redirect. When False the reply is kept, an incident
            is recorded and a warning is logged.
        blocked_topics: Topic names shown to admins as the active policy. Display
            only: moderation matches its built-in topic patterns regardless.
    """

    strict_safety: bool = Field(default=True, description="Rewrite unsafe model output.")
    blocked_topics: list[str] = Field(
        default_factory=lambda: [
            "violence",
            "sexual",
            "self-harm",
            "illegal instructions",
            "personal data",
            "hate speech",
        ]
    )
    max_reply_seconds: int = Field(default=18, ge=1, le=120)


class ResearchConfig(BaseModel):
    """Fact research and caching settings."""

    fact_cache_ttl_minutes: int = Field(default=1440, ge=1)
    audience_tag: str = Field(
        default="age-7-10:en-US:strict-safety-v1",
        description="Suffix appended to every fact-pack cache key.",
    )
    min_fact_confidence: float = Field(default=0.55, ge=0.0, le=1.0)
    allowed_source_domains: list[str] = Field(
        default_factory=lambda: [
            "nasa.gov",
            "nationalgeographic.com",
            "smithsonianmag.com",
            "britannica.com",
            "wikipedia.org",
            "noaa.gov",
            "usgs.gov",
        ]
    )


class SessionConfig(BaseModel):
    """Lifetimes and size limits for sessions and uploads."""

    session_ttl_minutes: int = Field(default=60, ge=1)
    upload_ttl_minutes: int = Field(default=10, ge=1)
    max_image_bytes: int = Field(default=8 * 1024 * 1024, ge=1024)


class ServerConfig(BaseModel):
    """HTTP surface settings."""

    host: str = "0.0.0.0"
    port: int = Field(default=8787, ge=1, le=65535)
    api_base_url: str = "http://localhost:8787"
    web_base_url: str = "http://localhost:5173"
    admin_key: SecretStr = SecretStr("parent-mode")
    rate_limit_requests: int = Field(default=90, ge=1)
    rate_limit_window_seconds: int = Field(default=60, ge=1)

    @field_validator("api_base_url", "web_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class PathsConfig(BaseModel):
    """Filesystem locations for uploads and generated audio."""

    data_dir: Path = Field(default_factory=lambda: Path.cwd() / "data")

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path:
        """Expand ~ and resolve path."""
        if isinstance(v, (str, Path)):
            return Path(v).expanduser().resolve()
        return v

    @property
    def uploads_dir(self) -> Path:
        return self.data_dir / "uploads"

    @property
    def audio_dir(self) -> Path:
        return self.data_dir / "audio"

    def ensure_dirs_exist(self) -> None:
        for directory in (self.data_dir, self.uploads_dir, self.audio_dir):
            directory.mkdir(parents=True, exist_ok=True)


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Configuration priority (highest wins):
    1. Environment variables (WONDERTALK_*)
    2. Config file (YAML), passed in as keyword arguments by ``load_config``
    3. In-code defaults

    Example:
        >>> config = AppConfig(voice={"provider": "elevenlabs"})
        >>> config.voice.provider
        'elevenlabs'
    """

    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    voice: VoiceConfig = Field(default_factory=VoiceConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    research: ResearchConfig = Field(default_factory=ResearchConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    log_level: str = Field(default="INFO", description="Log level for the wondertalk logger.")
    debug: bool = Field(default=False, description="Enable debug mode.")

    model_config = {
        "env_prefix": "WONDERTALK_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment outranks file values handed in as init kwargs.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    def to_summary(self) -> dict[str, Any]:
        """Return a loggable view of the configuration with secrets masked."""
        return self.model_dump(mode="json")


# =============================================================================
# API Key Management
# =============================================================================


class APIKeyManager:
    """Looks up provider API keys from the environment, then the system keyring.

    Keys are wrapped in SecretStr and never logged.

    Example:
        >>> manager = APIKeyManager()
        >>> key = manager.get_key("elevenlabs")
        >>> if key:
        ...     headers = {"xi-api-key": key.get_secret_value()}
    """

    KEYRING_SERVICE = "wondertalk"
    ENV_VARS: dict[str, str] = {
        "gemini": "GEMINI_API_KEY",
        "elevenlabs": "ELEVENLABS_API_KEY",
    }

    def __init__(self) -> None:
        self._cache: dict[str, SecretStr | None] = {}

    def get_key(self, provider: ProviderName) -> SecretStr | None:
        """Return the key for ``provider`` or None when no source has one."""
        if provider in self._cache:
            return self._cache[provider]

        raw = self._read_from_environment(provider) or self._read_from_keyring(provider)
        key = SecretStr(raw) if raw else None
        self._cache[provider] = key
        if key is None:
            logger.debug(f"No API key configured for {provider}")
        return key

    def store_key(self, provider: ProviderName, key: str) -> None:
        """Persist a key in the system keyring.

        Raises:
            ConfigError: If the keyring backend rejects the write.
        """
        try:
            keyring.set_password(self.KEYRING_SERVICE, provider, key.strip())
        except keyring.errors.KeyringError as e:
            raise ConfigError(f"Could not store {provider} key in keyring: {type(e).__name__}") from e
        self._cache.pop(provider, None)

    def _read_from_environment(self, provider: str) -> str | None:
        key = os.environ.get(self.ENV_VARS[provider])
        if key and key.strip():
            return key.strip()
        return None

    def _read_from_keyring(self, provider: str) -> str | None:
        try:
            return keyring.get_password(self.KEYRING_SERVICE, provider)
        except keyring.errors.KeyringError as e:
            logger.debug(f"Keyring access failed: {type(e).__name__}")
            return None


# =============================================================================
# Loading
# =============================================================================


DEFAULT_CONFIG_PATHS = [
    Path("./wondertalk.yaml"),
    Path("./wondertalk.yml"),
    Path.home() / ".wondertalk" / "config.yaml",
]


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigFileError(f"Cannot read config file {path}: {e}") from e

    if not content.strip():
        return {}

    try:
        loaded = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigFileError(f"Malformed YAML in {path}: {e}") from e

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigFileError(f"Config file {path} must contain a mapping at the top level")
    return loaded


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from file, environment, and defaults.

    An explicit ``path`` must exist. Without one the default locations are
    searched and a missing file simply means defaults.

    Args:
        path: Optional path to a YAML config file.

    Returns:
        Fully-populated AppConfig instance.

    Raises:
        ConfigFileError: If the config file exists but is unreadable or malformed.
    """
    if path is not None and not path.exists():
        raise ConfigFileError(f"Config file not found: {path}")

    candidates = [path] if path is not None else DEFAULT_CONFIG_PATHS
    config_file = next((p for p in candidates if p is not None and p.exists()), None)

    file_data: dict[str, Any] = {}
    if config_file is not None:
        file_data = _read_config_file(config_file)
        logger.debug(f"Loaded configuration from {config_file}")

    config = AppConfig(**file_data)
    if not config.safety.strict_safety:
        logger.warning(
            "strict_safety is disabled: unsafe model output will be logged as an "
            "incident but still delivered"
        )
    return config


@functools.lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Get the cached configuration singleton."""
    return load_config()


@functools.lru_cache(maxsize=1)
def get_key_manager() -> APIKeyManager:
    return APIKeyManager()


def get_api_key(provider: ProviderName) -> SecretStr | None:
    """Convenience lookup of a provider key through the shared manager."""
    return get_key_manager().get_key(provider)


def require_api_key(provider: ProviderName) -> SecretStr:
    """Like ``get_api_key`` but raises when the key is missing.

    Raises:
        APIKeyNotFoundError: If no source provides the key.
    """
    key = get_api_key(provider)
    if key is None:
        raise APIKeyNotFoundError(
            f"No {provider} API key found. Set {APIKeyManager.ENV_VARS[provider]} "
            "or store it with 'wondertalk config set-key'."
        )
    return key


def reset_config() -> None:
    """Clear the configuration and key caches (used by tests)."""
    get_config.cache_clear()
    get_key_manager.cache_clear()
