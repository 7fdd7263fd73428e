"""
Capture settings for Spacerec.

Provides:
- Pydantic settings read from SPACEREC_* environment variables and .env
- Optional YAML config file layered underneath explicit overrides
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


class CaptureSettings(BaseSettings):
    output_dir: Path = Field(default=Path("."), alias="SPACEREC_OUTPUT_DIR")
    poll_interval: float = Field(default=2.0, gt=0, alias="SPACEREC_POLL_INTERVAL")
    state_interval: float = Field(default=10.0, gt=0, alias="SPACEREC_STATE_INTERVAL")
    workers: int = Field(default=3, ge=1, alias="SPACEREC_WORKERS")
    queue_size: int = Field(default=10, ge=1, alias="SPACEREC_QUEUE_SIZE")
    max_poll_errors: int = Field(default=30, ge=0, alias="SPACEREC_MAX_POLL_ERRORS")
    http_timeout: float = Field(default=10.0, gt=0, alias="SPACEREC_HTTP_TIMEOUT")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, alias="SPACEREC_USER_AGENT")
    metrics_port: int = Field(default=0, ge=0, alias="SPACEREC_METRICS_PORT")  # 0 disables
    log_level: str = Field(default="INFO", alias="SPACEREC_LOG_LEVEL")
    remux: bool = Field(default=True, alias="SPACEREC_REMUX")

    model_config = {
        "extra": "ignore",
        "env_file": ".env",
        "case_sensitive": False,
        "populate_by_name": True,
    }


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    p = Path(config_path)
    with p.open("r") as f:
        data = yaml.safe_load(f)
    return data or {}


def load_settings(config_path: Optional[str | Path] = None, **overrides: Any) -> CaptureSettings:
    """Build settings from env/.env, then the YAML file, then explicit overrides.

    Overrides whose value is ``None`` are skipped so CLI options left unset do
    not mask the file or environment.
    """
    values: dict[str, Any] = {}
    if config_path is not None:
        known = set(CaptureSettings.model_fields)
        values.update({k: v for k, v in load_yaml_config(config_path).items() if k in known})
    values.update({k: v for k, v in overrides.items() if v is not None})
    return CaptureSettings(**values)
