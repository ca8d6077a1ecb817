from clientdesk.config.loader import AppConfig, ConfigError, config_from_dict, load_config

__all__ = ["AppConfig", "ConfigError", "config_from_dict", "load_config"]
