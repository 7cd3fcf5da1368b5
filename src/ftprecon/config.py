from __future__ import annotations

import dataclasses
import getpass
import json
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable

from .constants import DEFAULT_FTP_PORT, DEFAULT_TIMEOUT_S
from .errors import FtpReconError
from .existence import RetryPolicy


class ConfigError(FtpReconError):
    pass


@dataclass(frozen=True, slots=True)
class FtpSettings:
    server: str
    port: int = DEFAULT_FTP_PORT
    username: str = "anonymous"
    password: str = ""
    root: str = ""
    passive: bool = True
    tls: bool = False
    timeout_s: float = DEFAULT_TIMEOUT_S
    # Pre-known clock offsets in seconds, keyed by server; these skip calibration.
    clock_offsets: dict[str, float] = field(default_factory=dict)
    retry: RetryPolicy = RetryPolicy()

    def preset_offsets(self) -> dict[str, timedelta]:
        return {server: timedelta(seconds=s) for server, s in self.clock_offsets.items()}

    def with_overrides(self, **overrides: Any) -> "FtpSettings":
        """Replace every field given a value other than ``None``."""
        return dataclasses.replace(self, **{k: v for k, v in overrides.items() if v is not None})


def settings_from_dict(raw: dict[str, Any]) -> FtpSettings:
    data = dict(raw)
    names = {f.name for f in dataclasses.fields(FtpSettings)}
    unknown = sorted(set(data) - names)
    if unknown:
        raise ConfigError(f"unknown settings: {', '.join(unknown)}")
    if not data.get("server"):
        raise ConfigError("settings need a server")

    retry = data.pop("retry", None)
    if retry is not None:
        try:
            data["retry"] = RetryPolicy(**retry)
        except TypeError as e:
            raise ConfigError(f"bad retry settings: {e}") from e
    return FtpSettings(**data)


def load_settings(path: str) -> FtpSettings:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot read settings from {path!r}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"settings in {path!r} must be a JSON object")
    return settings_from_dict(raw)


def ensure_password(settings: FtpSettings, prompt: Callable[[str], str] = getpass.getpass) -> FtpSettings:
    """Ask for a password, naming the server, when none is configured."""
    if settings.password or settings.username == "anonymous":
        return settings
    password = prompt(f"FTP password for {settings.username}@{settings.server}: ")
    return dataclasses.replace(settings, password=password)
