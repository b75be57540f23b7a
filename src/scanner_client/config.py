"""
Settings for the scanner client.

Values come from (lowest to highest priority): defaults, config.yaml,
environment variables (the nearest .env file, searched upward from the
working directory, is loaded first). Relative defaults resolve against the
working directory.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field


CONFIG_PATH = Path("config.yaml")

load_dotenv(find_dotenv(usecwd=True))

CACHE_KEY = "crypto_scanner_results"
CACHE_TTL_MS = 60 * 60 * 1000

ENV_VARS = {
    "api_url": "SCANNER_API_URL",
    "ws_url": "SCANNER_WS_URL",
    "cache_path": "SCANNER_CACHE_PATH",
    "log_level": "SCANNER_LOG_LEVEL",
    "top_n": "SCANNER_TOP_N",
}


class Settings(BaseModel):
    api_url: str = Field("http://localhost:5001", description="Scanner API base URL")
    ws_url: str = Field("ws://localhost:5002", description="Live price WebSocket URL")
    cache_path: str = Field(
        default_factory=lambda: str(Path.cwd() / "scanner_cache.db"),
        description="sqlite file for the result cache",
    )
    cache_ttl_ms: int = CACHE_TTL_MS
    poll_interval: float = Field(2.0, description="Seconds between status polls")
    settle_delay: float = Field(1.0, description="Seconds to wait after a stream 'complete' event")
    reconnect_delay: float = Field(5.0, description="Seconds before a price feed reconnect")
    request_timeout: float = 10.0
    top_n: int = 10
    log_level: str = "INFO"


def load_settings(config_path: Optional[Path] = None) -> Settings:
    path = Path(config_path) if config_path else CONFIG_PATH
    values = {}
    if path.exists():
        with open(path, "r") as f:
            values = yaml.safe_load(f) or {}

    for field, env_name in ENV_VARS.items():
        env_value = os.getenv(env_name)
        if env_value:
            values[field] = env_value.strip()

    return Settings.model_validate(values)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
