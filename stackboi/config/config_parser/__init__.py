"""Config parser logic."""

import logging
import os
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from ..models import RepoConfig, Stack, StackboiConfig
from ...errors import StackboiError

# Get module logger
logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".stackboi.yaml"

def config_file_path(git_root: str) -> str:
    """Get path to the stack config file for a repository."""
    return os.path.join(git_root, CONFIG_FILE_NAME)

def parse_remote_url(remote_url: str) -> Optional[Tuple[str, str, str]]:
    """Split a remote URL into (host, owner, name).

    Handles ``git@host:owner/repo.git`` and ``https://host/owner/repo.git``.
    """
    url = remote_url.strip()
    if not url:
        return None
    if "://" in url:
        rest = url.split("://", 1)[1]
        # Drop credentials in https://user@host/...
        rest = rest.split("@", 1)[-1]
        host, _, path = rest.partition("/")
    elif "@" in url and ":" in url:
        # SSH format: git@github.com:owner/repo.git
        host_part, _, path = url.partition(":")
        host = host_part.split("@", 1)[-1]
    else:
        return None
    if path.endswith(".git"):
        path = path[:-4]
    parts = [p for p in path.split("/") if p]
    if len(parts) < 2:
        return None
    return host, parts[-2], parts[-1]

def parse_config(raw: Optional[Dict[str, Any]], remote_url: Optional[str] = None,
                 remote: str = "origin") -> StackboiConfig:
    """Validate raw YAML data into a StackboiConfig and attach repo coordinates."""
    try:
        config = StackboiConfig.model_validate(raw or {})
    except ValidationError as e:
        raise StackboiError(f"Invalid {CONFIG_FILE_NAME}: {e}") from e

    repo = RepoConfig(github_remote=remote)
    if remote_url:
        parsed = parse_remote_url(remote_url)
        if parsed:
            host, owner, name = parsed
            repo = RepoConfig(github_remote=remote, github_host=host,
                              github_repo_owner=owner, github_repo_name=name)
        else:
            logger.warning(f"Could not parse remote url: {remote_url}")
    return config.model_copy(update={'repo': repo})

def dump_config(config: StackboiConfig) -> Dict[str, Any]:
    """Serialize the persisted part of the config (repo is derived, never written)."""
    return config.model_dump(by_alias=True, exclude={'repo'})

class ConfigStore:
    """YAML-backed store for stacks and settings."""

    def __init__(self, git_root: str, remote_url_for: Optional[Callable[[str], Optional[str]]] = None):
        """remote_url_for maps the configured remote name to its URL."""
        self.path = config_file_path(git_root)
        self.remote_url_for = remote_url_for

    def load(self) -> StackboiConfig:
        raw: Optional[Dict[str, Any]] = None
        try:
            with open(self.path, 'r') as f:
                logger.debug(f"Loading {self.path}")
                raw = yaml.safe_load(f)
        except FileNotFoundError:
            logger.info(f"No {CONFIG_FILE_NAME} found, using defaults")
        except yaml.YAMLError as e:
            raise StackboiError(f"Could not parse {self.path}: {e}") from e
        if raw is not None and not isinstance(raw, dict):
            raise StackboiError(f"Invalid {CONFIG_FILE_NAME}: expected a mapping at the top level")
        remote = "origin"
        if raw and isinstance(raw.get('settings'), dict):
            remote = raw['settings'].get('remote', remote)
        remote_url = self.remote_url_for(remote) if self.remote_url_for else None
        return parse_config(raw, remote_url, remote)

    def save(self, config: StackboiConfig) -> None:
        data = dump_config(config)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, 'w') as f:
            yaml.safe_dump(data, f, sort_keys=False)
        os.replace(tmp_path, self.path)
        logger.debug(f"Saved {len(config.stacks)} stacks to {self.path}")

    def load_stacks(self) -> List[Stack]:
        return list(self.load().stacks)

    def save_stacks(self, stacks: List[Stack]) -> None:
        config = self.load()
        self.save(config.model_copy(update={'stacks': list(stacks)}))
