"""
Service settings loader.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_SETTINGS_PATH = Path("configs/taweret.yaml")
ENV_PREFIX = "TAWERET_"


def _default_api_server() -> str:
    host = os.getenv("KUBERNETES_SERVICE_HOST")
    port = os.getenv("KUBERNETES_SERVICE_PORT", "443")
    if host:
        return f"https://{host}:{port}"
    return "https://kubernetes.default.svc"


class KubernetesConfig(BaseModel):
    """Kubernetes API connection settings."""
    api_server: str = Field(default_factory=_default_api_server)
    token_path: str = "/var/run/secrets/kubernetes.io/serviceaccount/token"
    ca_path: str = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"
    request_timeout_seconds: float = 30.0
    max_retries: int = Field(3, ge=1)
    retry_backoff_seconds: float = Field(1.0, ge=0)


class TaweretSettings(BaseModel):
    """Retention service settings."""
    config_namespace: str = "kanister"
    config_key: str = "backup-config.yaml"
    evaluation_interval_minutes: int = Field(10, ge=1)
    evaluate_on_start: bool = False
    metrics_host: str = "0.0.0.0"
    metrics_port: int = 2112
    poll_initial_seconds: float = Field(5.0, gt=0)
    poll_max_interval_seconds: float = Field(60.0, gt=0)
    poll_timeout_seconds: float = Field(1800.0, gt=0)
    poll_max_attempts: int = Field(500, ge=1)
    dry_run: bool = False
    log_level: str = "INFO"
    kubernetes: KubernetesConfig = Field(default_factory=KubernetesConfig)


def _env_overrides(model: type, prefix: str) -> Dict[str, Any]:
    overrides = {}
    for field_name in model.model_fields:
        value = os.getenv(f"{prefix}{field_name.upper()}")
        if value is not None:
            overrides[field_name] = value
    return overrides


def load_settings(config_path: Optional[Path] = None) -> TaweretSettings:
    """
    Load service settings.

    Values come from the YAML settings file when present, overridden by
    TAWERET_* environment variables (a .env file is honoured).
    """
    load_dotenv()

    explicit = config_path is not None
    if config_path is None:
        config_path = DEFAULT_SETTINGS_PATH

    config_data: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    elif explicit:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    kubernetes_data = dict(config_data.get("kubernetes") or {})
    kubernetes_data.update(_env_overrides(KubernetesConfig, f"{ENV_PREFIX}KUBERNETES_"))

    settings_data = {k: v for k, v in config_data.items() if k != "kubernetes"}
    settings_data.update(_env_overrides(TaweretSettings, ENV_PREFIX))
    settings_data.pop("kubernetes", None)

    return TaweretSettings(kubernetes=KubernetesConfig(**kubernetes_data), **settings_data)
