"""Settings dataclass and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..utils.file_io import read_json, write_json, write_text

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".arbor"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_EnvParser = Callable[[str], Any]

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


def _env_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


# Environment variable -> (Settings field, parser).
_ENV_OVERRIDES: Mapping[str, tuple[str, _EnvParser]] = {
    "ARBOR_API_KEY": ("api_key", str),
    "ARBOR_BASE_URL": ("base_url", str),
    "ARBOR_MODEL": ("model", str),
    "ARBOR_ORGANIZATION": ("organization", str),
    "ARBOR_RESEARCH_ENDPOINT": ("research_endpoint", str),
    "ARBOR_DOCUMENT_PATH": ("document_path", str),
    "ARBOR_DEBUG_LOGGING": ("debug_logging", _env_bool),
    "ARBOR_REQUEST_TIMEOUT": ("request_timeout", float),
    "ARBOR_TEMPERATURE": ("temperature", float),
    "ARBOR_AUTOSAVE_INTERVAL": ("autosave_interval", float),
    "ARBOR_HISTORY_CAPACITY": ("history_capacity", int),
    "ARBOR_MAX_MESSAGE_LENGTH": ("max_message_length", int),
    "ARBOR_MAX_RESEARCH_FOLLOW_UPS": ("max_research_follow_ups", int),
}
_API_KEY_FIELD = "api_key_ciphertext"


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, str] = field(default_factory=dict)
    history_capacity: int = 100
    max_message_length: int = 4_000
    context_history_turns: int = 5
    generation_temperature: float = 0.7
    generation_max_tokens: int = 1_000
    research_endpoint: str = "https://api.duckduckgo.com/"
    research_max_results: int = 5
    research_timeout: float = 15.0
    max_research_follow_ups: int = 1
    autosave_interval: float = 60.0
    document_path: str | None = None
    debug_logging: bool = False


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Read the settings file, then layer CLI overrides and ``ARBOR_*`` variables on top.

        A plaintext ``api_key`` left by an older file, or a file written under a
        different schema version, is re-saved immediately in the current format.
        """

        payload = self._read_payload()
        settings = Settings()
        if payload:
            api_key, rewrite = self._recover_api_key(payload)
            try:
                settings = Settings(**_known_fields(payload))
            except TypeError as exc:
                LOGGER.warning("Ignoring malformed settings in %s: %s", self._path, exc)
            if api_key:
                settings = replace(settings, api_key=api_key)
            if rewrite or payload.get("version") != _SETTINGS_VERSION:
                self._rewrite(settings)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")
        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Write ``settings`` atomically, storing the API key only as ciphertext."""

        record = asdict(settings)
        api_key = record.pop("api_key") or ""
        if api_key:
            record[_API_KEY_FIELD] = self._vault.encrypt(api_key)
        record["version"] = _SETTINGS_VERSION
        write_json(self._path, record)
        LOGGER.debug("Settings written to %s", self._path)
        return self._path

    def _rewrite(self, settings: Settings) -> None:
        try:
            self.save(settings)
        except OSError as exc:  # pragma: no cover
            LOGGER.warning("Could not upgrade settings file %s: %s", self._path, exc)

    def _read_payload(self) -> Dict[str, Any]:
        try:
            payload = read_json(self._path)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            LOGGER.warning("Could not read settings from %s: %s", self._path, exc)
            return {}
        if isinstance(payload, dict):
            return payload
        LOGGER.warning("Settings file %s does not hold a JSON object", self._path)
        return {}

    def _recover_api_key(self, payload: Dict[str, Any]) -> tuple[str, bool]:
        """Pop the stored key from ``payload``; the flag asks for a rewrite."""

        ciphertext = payload.pop(_API_KEY_FIELD, None)
        plaintext = payload.pop("api_key", None)
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Stored API key could not be decrypted: %s", exc)
                return "", False
        if plaintext:
            LOGGER.info("Encrypting plaintext API key found in %s", self._path)
            return str(plaintext), True
        return "", False

    def _apply_overrides(self, settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
        names = {item.name for item in fields(Settings)}
        accepted = {key: value for key, value in overrides.items() if key in names and value is not None}
        if not accepted:
            return settings
        LOGGER.debug("Applying %s overrides for %s", source, ", ".join(sorted(accepted)))
        return replace(settings, **accepted)

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, (field_name, parser) in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = parser(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not valid for %s", env_name, value, field_name)
        return self._apply_overrides(settings, overrides, source="environment")


class SecretVault:
    """Fernet-backed encryption for secrets kept in the settings file.

    Tokens carry a ``fernet:`` prefix. The key is generated on first use and
    stored next to the settings file with owner-only permissions.
    """

    name = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._cipher: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.name}:{token}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        scheme, separator, body = token.partition(":")
        if not separator:
            scheme, body = self.name, token
        if scheme != self.name:
            raise ValueError(f"Unsupported secret scheme {scheme!r}")
        try:
            return self._fernet().decrypt(body.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Secret token failed verification") from exc

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._read_key() or self._create_key())
        return self._cipher

    def _read_key(self) -> bytes | None:
        try:
            return self._key_path.read_bytes().strip() or None
        except FileNotFoundError:
            return None

    def _create_key(self) -> bytes:
        key = Fernet.generate_key()
        write_text(self._key_path, key.decode("ascii"))
        if os.name == "posix":
            self._key_path.chmod(0o600)
        LOGGER.info("Generated new settings key at %s", self._key_path)
        return key


def _known_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    names = {item.name for item in fields(Settings)}
    names.discard("api_key")
    return {key: payload[key] for key in payload.keys() & names}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
