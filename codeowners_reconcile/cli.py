import logging
import os
import sys
import traceback
from collections.abc import Callable
from typing import Any

import click
import sentry_sdk
import yaml
from sentry_sdk.integrations.logging import LoggingIntegration

import codeowners_reconcile.codeowners_file
from codeowners_reconcile.codeowners_file import (
    CodeownersFileResource,
    File,
)
from codeowners_reconcile.desired_state import DesiredState
from codeowners_reconcile.status import ExitCodes
from codeowners_reconcile.utils.config import get_github_settings
from codeowners_reconcile.utils.environment import init_env
from codeowners_reconcile.utils.exceptions import NotFoundError

# Enable Sentry
if os.getenv("SENTRY_DSN"):
    match os.environ.get("SENTRY_EVENT_LEVEL", "CRITICAL").upper():
        case "CRITICAL":
            sentry_event_level = logging.CRITICAL
        case "ERROR":
            sentry_event_level = logging.ERROR
        case _:
            raise ValueError(
                "Invalid value for SENTRY_EVENT_LEVEL. Must be CRITICAL or ERROR."
            )

    sentry_sdk.init(
        os.environ["SENTRY_DSN"],
        integrations=[
            LoggingIntegration(event_level=sentry_event_level),
        ],
    )


def config_file(function: Callable) -> Callable:
    help_msg = "Path to configuration file in toml format."
    function = click.option(
        "--config",
        "configfile",
        required=True,
        default=os.environ.get("CODEOWNERS_CONFIG"),
        help=help_msg,
    )(function)
    return function


def log_level(function: Callable) -> Callable:
    function = click.option(
        "--log-level",
        help="log-level of the command. Defaults to INFO.",
        type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    )(function)
    return function


def dry_run(function: Callable) -> Callable:
    help_msg = (
        "If `true`, it will only print the planned actions "
        "that would be performed, without executing them."
    )

    function = click.option("--dry-run/--no-dry-run", default=False, help=help_msg)(
        function
    )
    return function


def threaded(default: int = 10) -> Callable:
    def f(function: Callable) -> Callable:
        opt = "--thread-pool-size"
        msg = "number of threads to run in parallel."
        function = click.option(opt, type=int, default=default, help=msg)(function)
        return function

    return f


def desired_state(function: Callable) -> Callable:
    function = click.option(
        "--desired-state",
        "desired_state_file",
        required=True,
        type=click.Path(exists=True, dir_okay=False),
        help="YAML file listing the desired CODEOWNERS files.",
    )(function)
    return function


def run_integration(
    func: Callable, ctx: click.Context, *args: Any, **kwargs: Any
) -> None:
    try:
        func(ctx.obj["dry_run"], *args, **kwargs)
    except NotFoundError as e:
        sys.stderr.write(str(e) + "\n")
        sys.exit(ExitCodes.NOT_FOUND)
    except Exception:
        traceback.print_exc(file=sys.stderr)
        sys.exit(ExitCodes.ERROR)


@click.group()
@config_file
@dry_run
@log_level
@click.pass_context
def integration(
    ctx: click.Context,
    configfile: str,
    dry_run: bool,
    log_level: str | None,
) -> None:
    ctx.ensure_object(dict)
    init_env(log_level=log_level, config_file=configfile, dry_run=dry_run)
    ctx.obj["dry_run"] = dry_run


@integration.command(short_help="Manage CODEOWNERS files of GitHub repositories.")
@desired_state
@threaded()
@click.pass_context
def codeowners_file(
    ctx: click.Context, desired_state_file: str, thread_pool_size: int
) -> None:
    run_integration(
        codeowners_reconcile.codeowners_file.run,
        ctx,
        desired_state_file,
        thread_pool_size,
    )


def _import_file(dry_run: bool, identity: str) -> None:
    resource = CodeownersFileResource(get_github_settings())
    file = resource.import_file(identity)
    desired = DesiredState(files=[file.to_desired()])
    click.echo(yaml.safe_dump(desired.model_dump(), sort_keys=False), nl=False)


@integration.command(
    short_help="Print the desired state of an existing CODEOWNERS file."
)
@click.argument("identity")
@click.pass_context
def codeowners_import(ctx: click.Context, identity: str) -> None:
    """IDENTITY is <owner>/<name>:<branch>, with an empty branch for the
    default one."""
    run_integration(_import_file, ctx, identity)


def _delete_file(dry_run: bool, identity: str) -> None:
    file = File.from_id(identity)
    logging.info(["delete_codeowners", file.id])
    if not dry_run:
        CodeownersFileResource(get_github_settings()).delete(file)


@integration.command(short_help="Delete the CODEOWNERS file of a repository.")
@click.argument("identity")
@click.pass_context
def codeowners_delete(ctx: click.Context, identity: str) -> None:
    """IDENTITY is <owner>/<name>:<branch>, with an empty branch for the
    default one."""
    run_integration(_delete_file, ctx, identity)
