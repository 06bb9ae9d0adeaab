"""Configuration: YAML + env overlay + command-line values."""

from xmppcheck.config.loader import _deep_update, load_config, load_config_with_env
from xmppcheck.config.schema import Config, split_jid

__all__ = ["Config", "_deep_update", "load_config", "load_config_with_env", "split_jid"]
