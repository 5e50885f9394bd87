"""Configuration for TabPFN, read from defaults, a ``.env`` file and the environment."""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

ENV_PREFIX = "TABPFN"
ENV_SEPARATOR = "__"
DEFAULT_CUDA_ALLOC_CONF = "max_split_size_mb:512"

_TRUE_WORDS = {"true", "1", "yes", "on"}
_FALSE_WORDS = {"false", "0", "no", "off"}


class SettingsError(ValueError):
    """Raised when configuration values cannot be turned into settings."""


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise SettingsError(f"invalid boolean for {key}: {value!r}")


def _parse_str(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise SettingsError(f"invalid string for {key}: {value!r}")
    return value


def _parse_optional_path(key: str, value: Any) -> Path | None:
    if value is None:
        return None
    if isinstance(value, (str, os.PathLike)):
        return Path(value)
    raise SettingsError(f"invalid path for {key}: {value!r}")


@dataclass(frozen=True)
class TabPFNSettings:
    """Settings specific to TabPFN models."""

    model_cache_dir: Path | None = None
    """Directory for cached models; the platform cache directory when unset."""
    allow_cpu_large_dataset: bool = False
    """Allow running on CPU with more than 1000 samples."""


@dataclass(frozen=True)
class PytorchSettings:
    """Settings for the tensor runtime."""

    pytorch_cuda_alloc_conf: str = DEFAULT_CUDA_ALLOC_CONF


@dataclass(frozen=True)
class TestingSettings:
    """Settings used during development and continuous integration."""

    __test__ = False

    force_consistency_tests: bool = False
    ci: bool = False


_FIELDS = {
    "tabpfn": {
        "model_cache_dir": _parse_optional_path,
        "allow_cpu_large_dataset": _parse_bool,
    },
    "testing": {
        "force_consistency_tests": _parse_bool,
        "ci": _parse_bool,
    },
    "pytorch": {
        "pytorch_cuda_alloc_conf": _parse_str,
    },
}

_SECTION_TYPES = {
    "tabpfn": TabPFNSettings,
    "testing": TestingSettings,
    "pytorch": PytorchSettings,
}


def _read_env_file(path: Path) -> dict[str, str]:
    """Read ``KEY=VALUE`` lines, skipping blanks and comments."""
    entries: dict[str, str] = {}
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, sep, value = line.partition("=")
        if not sep:
            raise SettingsError(f"malformed line in {path}: {raw!r}")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        entries[key.strip()] = value
    return entries


def _dotted_key(key: str) -> str | None:
    """Map a prefixed environment name or a dotted key to ``section.field``."""
    prefix = ENV_PREFIX + ENV_SEPARATOR
    if key.upper().startswith(prefix):
        parts = key[len(prefix):].lower().split(ENV_SEPARATOR)
        return ".".join(parts)
    if "." in key:
        return key.lower()
    return None


def _apply(values: dict[str, dict[str, Any]], entries: Mapping[str, str]) -> None:
    for key, value in entries.items():
        dotted = _dotted_key(key)
        if dotted is None:
            continue
        section, _, name = dotted.partition(".")
        if section in _FIELDS and name in _FIELDS[section]:
            values[section][name] = value


@dataclass(frozen=True)
class Settings:
    """All settings, grouped by area."""

    tabpfn: TabPFNSettings = field(default_factory=TabPFNSettings)
    testing: TestingSettings = field(default_factory=TestingSettings)
    pytorch: PytorchSettings = field(default_factory=PytorchSettings)

    @classmethod
    def from_environment(
        cls,
        environ: Mapping[str, str] | None = None,
        env_file: str | os.PathLike[str] | None = ".env",
    ) -> Settings:
        """Build settings from defaults, an optional env file, then the environment.

        Environment names take the form ``TABPFN__<SECTION>__<FIELD>``; the env
        file may use the same names or ``section.field`` keys. A missing env file
        is ignored. Invalid values raise :class:`SettingsError`.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, dict[str, Any]] = {section: {} for section in _FIELDS}
        if env_file is not None:
            path = Path(env_file)
            if path.is_file():
                _apply(values, _read_env_file(path))
        _apply(values, environ)
        return cls._build(values, require_all=False)

    @classmethod
    def _build(cls, data: Mapping[str, Any], *, require_all: bool) -> Settings:
        sections = {}
        for section, parsers in _FIELDS.items():
            raw = data.get(section)
            if raw is None:
                if require_all:
                    raise SettingsError(f"missing field {section}")
                raw = {}
            if not isinstance(raw, Mapping):
                raise SettingsError(f"section {section} must be a mapping")
            kwargs = {}
            for name, parse in parsers.items():
                key = f"{section}.{name}"
                if name in raw:
                    kwargs[name] = parse(key, raw[name])
                elif require_all:
                    raise SettingsError(f"missing field {key}")
            sections[section] = _SECTION_TYPES[section](**kwargs)
        return cls(**sections)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        """Return a plain nested dictionary of all fields."""
        cache_dir = self.tabpfn.model_cache_dir
        return {
            "tabpfn": {
                "model_cache_dir": None if cache_dir is None else str(cache_dir),
                "allow_cpu_large_dataset": self.tabpfn.allow_cpu_large_dataset,
            },
            "testing": {
                "force_consistency_tests": self.testing.force_consistency_tests,
                "ci": self.testing.ci,
            },
            "pytorch": {
                "pytorch_cuda_alloc_conf": self.pytorch.pytorch_cuda_alloc_conf,
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Settings:
        """Build settings from a nested dictionary holding every field."""
        if not isinstance(data, Mapping):
            raise SettingsError("settings data must be a mapping")
        for section, parsers in _FIELDS.items():
            raw = data.get(section)
            if isinstance(raw, Mapping):
                for name, value in raw.items():
                    if name in parsers and name != "model_cache_dir" and isinstance(value, str) \
                            and parsers[name] is _parse_bool:
                        raise SettingsError(f"invalid boolean for {section}.{name}: {value!r}")
        return cls._build(data, require_all=True)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str) -> Settings:
        """Deserialise from a JSON string produced by :meth:`to_json`."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SettingsError(f"invalid JSON: {exc}") from exc
        return cls.from_dict(data)


_settings: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use.

    Falls back to the defaults if the configuration cannot be read.
    """
    global _settings
    if _settings is None:
        with _settings_lock:
            if _settings is None:
                try:
                    _settings = Settings.from_environment()
                except (SettingsError, OSError):
                    _settings = Settings()
    return _settings