"""
Backup configuration loading for the retention system.

Each schedule is described by a backup-config.yaml document stored in a
ConfigMap. This module finds those documents and validates them into
RetentionConfig objects.
"""

from typing import Any, Dict, List

import structlog
import yaml
from pydantic import ValidationError

from taweret.connectors.base import ConfigMapSource, ResourceStoreError
from .retention_errors import ConfigParseError
from .retention_models import RetentionConfig

logger = structlog.get_logger(__name__)


def parse_backup_config(document: str, source: str = "<string>") -> RetentionConfig:
    """
    Parse one backup-config.yaml document.

    Raises:
        ConfigParseError: If the YAML is invalid or a field fails validation
    """
    try:
        config_data = yaml.safe_load(document)
    except yaml.YAMLError as e:
        raise ConfigParseError(f"{source}: invalid YAML: {e}", source) from e

    if not isinstance(config_data, dict):
        raise ConfigParseError(f"{source}: expected a mapping at the top level", source)

    try:
        return RetentionConfig.model_validate(config_data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        raise ConfigParseError(f"{source}: {problems}", source) from e


class RetentionConfigManager:
    """Supplies the retention configs of every schedule once per cycle."""

    def __init__(self, source: ConfigMapSource, namespace: str = "kanister",
                 config_key: str = "backup-config.yaml"):
        self.source = source
        self.namespace = namespace
        self.config_key = config_key

    async def get_configs(self) -> List[RetentionConfig]:
        """
        Load all backup configs.

        Raises:
            ConfigParseError: If the ConfigMaps cannot be read or a document is invalid
        """
        try:
            config_maps = await self.source.list_config_maps(self.namespace)
        except ResourceStoreError as e:
            raise ConfigParseError(f"error listing configmaps in {self.namespace}: {e}") from e

        configs: List[RetentionConfig] = []
        for config_map in config_maps:
            data: Dict[str, Any] = config_map.get("data") or {}
            document = data.get(self.config_key)
            if not document:
                continue

            config = parse_backup_config(document, source=f"{self.namespace}/{config_map.get('name')}")
            configs.append(config)
            logger.info("Backup config loaded", **config.summary())

        return configs
