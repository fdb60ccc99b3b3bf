import logging
import yaml
from pathlib import Path
from typing import Optional, Union
from vtq.config.models import AppConfig

logger = logging.getLogger(__name__)

def load_config(path: Optional[Union[str, Path]] = None) -> AppConfig:
    """Loads AppConfig from a YAML file. Missing file means defaults."""
    if path is None:
        return AppConfig()

    path = Path(path)
    if not path.exists():
        logger.info(f"Config {path} not found, using defaults")
        return AppConfig()

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config {path} must contain a mapping at top level")

    return AppConfig(**data)
