"""
Configuration for the run tracker.

Settings come from RUNTRACKER_* environment variables (optionally loaded
from a .env file) and are validated with CONFIG_SCHEMA.
"""
from __future__ import annotations

import dataclasses
import logging
import os
from typing import Any, Mapping

import voluptuous as vol
from dotenv import load_dotenv

from .const import (
    CALORIE_MODEL_DISTANCE,
    CALORIE_MODEL_MET,
    DEFAULT_WEIGHT_KG,
    QUEUE_MAX_RETRIES,
    QUEUE_RETRY_INTERVAL,
    REQUEST_TIMEOUT,
)
from .errors import ConfigError

_LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "RUNTRACKER_"

positive_float = vol.All(vol.Coerce(float), vol.Range(min=0.1))
optional_string = vol.Any(None, vol.All(str, vol.Length(min=1)))

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required("supabase_url"): vol.All(str, vol.Url()),
        vol.Required("supabase_key"): vol.All(str, vol.Length(min=1)),
        vol.Optional("access_token", default=None): optional_string,
        vol.Optional("user_id", default=None): optional_string,
        vol.Optional("storage_path", default=".runtracker/storage.json"): vol.All(str, vol.Length(min=1)),
        vol.Optional("queue_retry_interval", default=QUEUE_RETRY_INTERVAL): positive_float,
        vol.Optional("queue_max_retries", default=QUEUE_MAX_RETRIES): vol.All(vol.Coerce(int), vol.Range(min=1)),
        vol.Optional("calorie_model", default=CALORIE_MODEL_DISTANCE): vol.In(
            [CALORIE_MODEL_DISTANCE, CALORIE_MODEL_MET]
        ),
        vol.Optional("weight_kg", default=DEFAULT_WEIGHT_KG): vol.All(
            vol.Coerce(float), vol.Range(min=20, max=400)
        ),
        vol.Optional("request_timeout", default=REQUEST_TIMEOUT): vol.All(vol.Coerce(int), vol.Range(min=1)),
    }
)


@dataclasses.dataclass(frozen=True)
class TrackerConfig:
    supabase_url: str
    supabase_key: str
    access_token: str | None = None
    user_id: str | None = None
    storage_path: str = ".runtracker/storage.json"
    queue_retry_interval: float = QUEUE_RETRY_INTERVAL
    queue_max_retries: int = QUEUE_MAX_RETRIES
    calorie_model: str = CALORIE_MODEL_DISTANCE
    weight_kg: float = DEFAULT_WEIGHT_KG
    request_timeout: int = REQUEST_TIMEOUT

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TrackerConfig":
        try:
            validated = CONFIG_SCHEMA(dict(data))
        except vol.Invalid as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc
        return cls(**validated)


def load_config(env: Mapping[str, str] | None = None, dotenv_path: str | None = None) -> TrackerConfig:
    """
    Build a TrackerConfig from the environment.

    When env is None the process environment is used, after loading a .env
    file if one is present. Empty variables count as unset.
    """
    if env is None:
        load_dotenv(dotenv_path)
        env = os.environ

    raw = {}
    for key in CONFIG_SCHEMA.schema:
        name = f"{ENV_PREFIX}{str(key).upper()}"
        value = env.get(name)
        if value is not None and value.strip():
            raw[str(key)] = value.strip()

    config = TrackerConfig.from_dict(raw)
    _LOGGER.debug("Loaded configuration for %s", config.supabase_url)
    return config
