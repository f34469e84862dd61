from ._root import cli_root
from .commands.validate_cert import *
from .runtime import DEFAULT_CONFIG_FILE

__all__ = ['launch', 'cli_root', 'cli', 'DEFAULT_CONFIG_FILE']

cli = cli_root


def launch():
    cli_root(prog_name='pdftrust')
