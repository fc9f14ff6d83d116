"""
Extraction config loading.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from packages.shared.models import ExtractionConfig

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "EXTRACTION_CONFIG"


def load_config(path: str | Path | None = None) -> ExtractionConfig:
    """
    Load an ExtractionConfig from *path*, or from the file named by the
    EXTRACTION_CONFIG environment variable. Defaults when neither is set.
    """
    raw_path = path or os.environ.get(CONFIG_PATH_ENV)
    if not raw_path:
        return ExtractionConfig()

    config_path = Path(raw_path)
    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    config = ExtractionConfig(**data)
    logger.info(f"Loaded extraction config from {config_path}")
    return config
