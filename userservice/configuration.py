"""Service configuration read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import cache
from typing import Mapping, Optional

DATABASE_URL_VARIABLE = "USERS_DATABASE_URL"
DATABASE_NAME_VARIABLE = "USERS_DATABASE_NAME"


class ConfigurationError(RuntimeError):
    """Raised when a required configuration value is missing."""


@dataclass(frozen=True)
class Configuration:
    """Connection settings for the user database."""

    database_url: str
    database_name: Optional[str] = None


def load_configuration(environ: Mapping[str, str]) -> Configuration:
    """Build a configuration from an environment mapping."""
    try:
        database_url = environ[DATABASE_URL_VARIABLE]
    except KeyError:
        raise ConfigurationError(
            f"environment variable {DATABASE_URL_VARIABLE} is not set"
        ) from None
    return Configuration(
        database_url=database_url,
        database_name=environ.get(DATABASE_NAME_VARIABLE),
    )


@cache
def configured() -> Configuration:
    """Return the process-wide configuration, loading it on first use."""
    return load_configuration(os.environ)