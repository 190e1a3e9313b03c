class ConfigError(Exception):
    """Settings file exists but cannot be read as switcher configuration."""
