from __future__ import annotations

"""Credential lookup: environment first, then the OS keyring."""

import os

import keyring
from keyring.errors import KeyringError

from dngSync.core.errors import ConfigError

SERVICE = "dngSync"


def get_secret(name: str, *, required: bool = False) -> str | None:
    value = os.getenv(name)
    if value:
        return value
    try:
        value = keyring.get_password(SERVICE, name)
    except KeyringError:
        value = None
    if not value and required:
        raise ConfigError(f"Missing required credential '{name}' (set the env var or store it in the keyring)")
    return value or None


__all__ = ["SERVICE", "get_secret"]
