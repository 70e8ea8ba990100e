"""Config module."""

from .models import RepoConfig, Settings, Stack, StackboiConfig

def default_config() -> StackboiConfig:
    """Get default config without reading the repository."""
    return StackboiConfig()

__all__ = ['RepoConfig', 'Settings', 'Stack', 'StackboiConfig', 'default_config']
