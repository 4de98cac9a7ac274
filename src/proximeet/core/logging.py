"""
Logging configuration.

We use a YAML logging config (`src/proximeet/config/logging.yaml`) and then apply
runtime overrides from settings (e.g., `PROXIMEET_LOG_LEVEL`).
"""

from __future__ import annotations

import copy
import logging.config

from proximeet.config.settings import get_logging_config, get_settings


def configure_logging(level: str | None = None) -> None:
    """Configure the Python logging system based on packaged YAML config + settings.

    `level` wins over the settings value (used by the CLI `--log-level` flag).
    """
    settings = get_settings()
    config = copy.deepcopy(get_logging_config())

    resolved = (level or settings.app.log_level).upper()
    config["root"] = {**config.get("root", {}), "level": resolved}
    for handler in config.get("handlers", {}).values():
        if isinstance(handler, dict) and "level" in handler:
            handler["level"] = resolved

    logging.config.dictConfig(config)
