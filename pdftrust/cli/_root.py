import logging
from typing import Optional, Tuple

import click

from .. import __version__
from ..config import (
    FETCHER_LOGGER_NAME,
    LogConfig,
    parse_cli_config,
    parse_logging_config,
)
from ..config_utils import ConfigurationError
from ._ctx import CLIContext
from .runtime import DEFAULT_CONFIG_FILE, logging_setup

__all__ = ['cli_root']


def _read_config(config) -> Tuple[Optional[str], Optional[str]]:
    """
    Read the configuration text, either from the file passed on the
    command line or from the default location.

    :return:
        The configuration text and its origin, or ``(None, None)`` if
        there is no configuration to read.
    """
    if config is not None:
        try:
            return config.read(), config.name
        except IOError as e:
            raise click.ClickException(f"Failed to read configuration: {e}")
    try:
        with open(DEFAULT_CONFIG_FILE, 'r') as inf:
            return inf.read(), DEFAULT_CONFIG_FILE
    except FileNotFoundError:
        return None, None
    except IOError as e:
        raise click.ClickException(
            f"Failed to read {DEFAULT_CONFIG_FILE}: {e}"
        )


@click.group()
@click.version_option(prog_name='pdftrust', version=__version__)
@click.option(
    '--config',
    help=(
        'YAML file to load configuration from '
        f'[default: {DEFAULT_CONFIG_FILE}]'
    ),
    required=False,
    type=click.File('r'),
)
@click.option(
    '--verbose',
    help='Log debug output, including stack traces',
    required=False,
    default=False,
    type=bool,
    is_flag=True,
)
@click.pass_context
def _root(ctx: click.Context, config, verbose):
    config_text, origin = _read_config(config)

    ctx.ensure_object(CLIContext)
    ctx_obj: CLIContext = ctx.obj
    if config_text is None:
        log_config = parse_logging_config({})
    else:
        try:
            ctx_obj.config = parse_cli_config(config_text)
        except ConfigurationError as e:
            raise click.ClickException(f"Configuration problem: {e}")
        log_config = ctx_obj.config.log_config

    root_output = log_config[None].output
    if verbose:
        log_config[None] = LogConfig(level=logging.DEBUG, output=root_output)
    elif FETCHER_LOGGER_NAME not in log_config:
        # online revocation fetches are chatty at INFO
        log_config[FETCHER_LOGGER_NAME] = LogConfig(
            level=logging.WARNING, output=root_output
        )
    logging_setup(log_config, verbose)

    if origin is not None:
        logging.debug("Read configuration from %s.", origin)
    else:
        logging.debug("No configuration file found, using defaults.")


cli_root: click.Group = _root
