import logging
import os
import sys

from codeowners_reconcile.utils import config

CODEOWNERS_CONFIG = "CODEOWNERS_CONFIG"
CODEOWNERS_LOG_LEVEL = "CODEOWNERS_LOG_LEVEL"

LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def log_fmt(dry_run: bool | None = None) -> str:
    log_fmt = (
        "[%(asctime)s] [%(levelname)s] [DRY-RUN] "
        if dry_run
        else "[%(asctime)s] [%(levelname)s] "
    )

    log_fmt += "[%(filename)s:%(funcName)s:%(lineno)d] - %(message)s"

    return log_fmt


def init_env(
    log_level: str | None = None,
    config_file: str | None = None,
    dry_run: bool | None = None,
) -> None:
    # store env configs in environment variables. this way child processes
    # will inherit them and a compatible environment can be setup in a child
    # process easily by running `init_env()` with no parameters.
    if log_level:
        os.environ[CODEOWNERS_LOG_LEVEL] = log_level
    if config_file:
        os.environ[CODEOWNERS_CONFIG] = config_file

    # init loglevel
    logging.basicConfig(
        format=log_fmt(dry_run=dry_run),
        datefmt=LOG_DATEFMT,
        level=getattr(logging, os.environ.get(CODEOWNERS_LOG_LEVEL, "INFO")),
    )

    # init basic config
    config_file = os.environ.get(CODEOWNERS_CONFIG)
    if not config_file:
        logging.fatal("no config file for codeowners-reconcile specified")
        sys.exit(1)
    config.init_from_toml(config_file)
