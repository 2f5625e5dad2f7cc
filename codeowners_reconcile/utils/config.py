import os
from collections.abc import Mapping
from typing import Any

import toml
from pydantic import (
    BaseModel,
    field_validator,
)

from codeowners_reconcile.utils.raw_github_api import GH_BASE_URL

MERGE_METHODS = ("merge", "squash", "rebase")

ENV_FALLBACKS = {
    "token": "GITHUB_TOKEN",
    "username": "GITHUB_USERNAME",
    "email": "GITHUB_EMAIL",
    "gpg_private_key": "GITHUB_GPG_KEY",
    "gpg_passphrase": "GITHUB_GPG_PASSPHRASE",
    "commit_message_prefix": "GITHUB_COMMIT_MESSAGE_PREFIX",
    "api_url": "GITHUB_API",
}
REQUIRED = ("token", "username", "email")

_config: dict[str, Any] | None = None


class ConfigNotFound(Exception):
    pass


def get_config() -> dict[str, Any] | None:
    return _config


def init(config: dict[str, Any]) -> dict[str, Any]:
    global _config  # noqa: PLW0603
    _config = config
    return _config


def init_from_toml(configfile: str) -> dict[str, Any]:
    return init(toml.load(configfile))


def merge_method(value: str | None) -> str:
    if value in MERGE_METHODS:
        return value
    return "merge"


def format_commit_message(prefix: str, message: str) -> str:
    if not prefix:
        return message
    return f"{prefix.strip()} {message}"


class GithubSettings(BaseModel):
    token: str
    username: str
    email: str
    gpg_private_key: str = ""
    gpg_passphrase: str = ""
    commit_message_prefix: str = ""
    api_url: str = GH_BASE_URL
    merge_method: str = "merge"
    max_retries: int = 3
    retry_backoff: float = 5.0

    @field_validator("merge_method", mode="before")
    @classmethod
    def known_merge_method(cls, v: Any) -> str:
        return merge_method(v)


def get_github_settings(config: Mapping[str, Any] | None = None) -> GithubSettings:
    """
    Build the github settings from the `[github]` section of the config
    file, falling back to environment variables for unset values.
    """
    if config is None:
        config = get_config() or {}
    section = dict(config.get("github", {}))
    for key, env_var in ENV_FALLBACKS.items():
        if not section.get(key) and os.environ.get(env_var):
            section[key] = os.environ[env_var]

    missing = [key for key in REQUIRED if not section.get(key)]
    if missing:
        raise ConfigNotFound(
            f"github settings missing in config file and environment: {missing}"
        )
    return GithubSettings(**section)
