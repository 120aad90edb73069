"""Configuration system for shipr.

Key Components:
    - EffectiveConfig: merged configuration of the selected environment
    - ShiprSettings: process-level run settings read from SHIPR_* variables
    - resolve_config: merge a multi-environment document for one environment
    - load_environment_document: read a YAML environment document

Example:
    >>> from shipr.config import resolve_config
    >>> config = resolve_config({"default": {}, "staging": {"servers": "deploy@web"}}, "staging")
    >>> config.server_list
    ['deploy@web']
"""

from shipr.config.settings import (
    EffectiveConfig,
    ShiprSettings,
    load_environment_document,
    resolve_config,
)

__all__ = ["EffectiveConfig", "ShiprSettings", "load_environment_document", "resolve_config"]
