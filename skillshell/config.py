"""Settings for Skill Shell.

Values come from, in increasing priority: built-in defaults, an optional YAML
file (``config/skillshell.yaml`` by default), and the environment (after
``load_dotenv()``). Secrets such as API keys belong in ``.env``, never in the
YAML file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger

DEFAULT_CONFIG_PATH = Path("config") / "skillshell.yaml"
DEFAULT_BASE_URL = "https://api.deepseek.com"
DEFAULT_MODEL = "deepseek-chat"

_ENV_KEYS = {
    "skills_dir": "SKILLS_DIR",
    "workspace_dir": "WORKSPACE_DIR",
    "destination": "SANDBOX_DESTINATION",
    "command_timeout": "COMMAND_TIMEOUT",
    "max_output_chars": "MAX_OUTPUT_CHARS",
    "log_level": "LOG_LEVEL",
    "llm_base_url": "LLM_BASE_URL",
    "llm_model": "LLM_MODEL",
    "agent_max_steps": "AGENT_MAX_STEPS",
}
_API_KEY_VARS = ("LLM_API_KEY", "DEEPSEEK_API_KEY", "OPENAI_API_KEY")


@dataclass
class Settings:
    skills_dir: str = "skills"
    workspace_dir: str = "workspace"
    destination: str = "/"
    command_timeout: float = 30.0
    max_output_chars: int = 30_000
    log_level: str = "INFO"
    llm_base_url: str = DEFAULT_BASE_URL
    llm_model: str = DEFAULT_MODEL
    llm_api_key: Optional[str] = None
    agent_max_steps: int = 20


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        logger.exception("Failed to parse config file {path}", path=str(path))
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping.")
    return data


def _coerce(name: str, raw: Any, default: Any) -> Any:
    try:
        if isinstance(default, bool):
            return str(raw).lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for {name}: {raw!r}") from None
    return str(raw)


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Build :class:`Settings` from defaults, YAML and the environment."""
    load_dotenv()
    settings = Settings()
    defaults = {f.name: getattr(settings, f.name) for f in fields(Settings)}

    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if config_path and not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    for key, value in _load_yaml(path).items():
        if key == "llm_api_key":
            logger.warning("Ignoring llm_api_key in {path}; set it in the environment", path=str(path))
            continue
        if key not in defaults:
            logger.warning("Unknown config key {key} in {path}", key=key, path=str(path))
            continue
        setattr(settings, key, _coerce(key, value, defaults[key]))

    for key, env_name in _ENV_KEYS.items():
        raw = os.environ.get(env_name)
        if raw:
            setattr(settings, key, _coerce(env_name, raw, defaults[key]))

    for env_name in _API_KEY_VARS:
        if os.environ.get(env_name):
            settings.llm_api_key = os.environ[env_name]
            break

    return settings
