"""Config parser logic."""

import os
from pathlib import Path
from typing import Dict, Union, Any
import logging
import yaml

from ...typing import ConfigError, JJInterface, JJSprError
from ...github import get_repo_from_remote

# Get module logger
logger = logging.getLogger(__name__)

ConfigValue = Union[str, bool]
RepoConfig = Dict[str, Any]  # Use Any since yaml can return various types
Config = Dict[str, RepoConfig]

CONFIG_FILE_NAME = ".jjspr.yaml"

def parse_config(jj_cmd: JJInterface) -> Config:
    """Parse config from defaults, the workspace config file and the remote URL."""
    config: Config = {
        'repo': {
            'github_remote': 'origin',
            'github_host': 'github.com',
            'trunk_branch': 'main',
            'default_revset': '@',
            'show_pr_titles_in_stack': False,
        },
        'user': {},
        'tool': {
            'jjspr': {
                'concurrency': 8,
            }
        }
    }

    # Per-user file first, workspace file wins
    for config_path in (user_config_file_path(), os.path.join(jj_cmd.root(), CONFIG_FILE_NAME)):
        try:
            with open(config_path, 'r') as f:
                logger.info(f"Found {config_path}, loading...")
                file_config = yaml.safe_load(f)
        except FileNotFoundError:
            logger.debug(f"No {config_path} found")
            continue
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        logger.debug(f"Config from {config_path}: {file_config}")
        if isinstance(file_config, dict):
            merge_config(config, file_config)

    # Extract repo owner/name from the jj git remote if not in config
    if not config['repo'].get('github_repo_owner') or not config['repo'].get('github_repo_name'):
        remote_name = config['repo']['github_remote']
        try:
            remote_url = jj_cmd.get_remote_url(remote_name)
            repo = get_repo_from_remote(remote_url, host=config['repo']['github_host'])
            if not config['repo'].get('github_repo_owner'):
                config['repo']['github_repo_owner'] = repo.owner
            if not config['repo'].get('github_repo_name'):
                config['repo']['github_repo_name'] = repo.name
        except JJSprError as e:
            logger.error(f"Failed to parse remote {remote_name!r}: {e}")

    return config

def merge_config(config: Config, file_config: Dict[str, Any]) -> None:
    """Merge the known sections of a loaded config file into config."""
    for section in ('repo', 'user'):
        if isinstance(file_config.get(section), dict):
            config[section].update(file_config[section])
    tool_section = file_config.get('tool')
    if isinstance(tool_section, dict) and isinstance(tool_section.get('jjspr'), dict):
        config['tool']['jjspr'].update(tool_section['jjspr'])

def user_config_file_path() -> str:
    """Get path to the per-user config file."""
    return str(Path.home() / CONFIG_FILE_NAME)
