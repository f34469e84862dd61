import logging
import sys
from contextlib import contextmanager
from typing import Dict, Optional

import click

from ..config import LogConfig, StdLogOutput
from ..config_utils import ConfigurationError
from ..errors import PdfTrustError
from .utils import logger

__all__ = [
    'DEFAULT_CONFIG_FILE',
    'logging_setup',
    'validation_exception_manager',
]

DEFAULT_CONFIG_FILE = 'pdftrust.yml'

LOG_FORMAT_STRING = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class NoStackTraceFormatter(logging.Formatter):
    def formatException(self, ei) -> str:
        return ""


class _CLIHandlerMixin:
    """Marks handlers installed by :func:`logging_setup`."""


class _CLIStreamHandler(_CLIHandlerMixin, logging.StreamHandler):
    pass


class _CLIFileHandler(_CLIHandlerMixin, logging.FileHandler):
    pass


def _make_handler(output, verbose: bool) -> logging.Handler:
    if not isinstance(output, StdLogOutput):
        handler: logging.Handler = _CLIFileHandler(output)
        handler.setFormatter(logging.Formatter(LOG_FORMAT_STRING))
        return handler
    stream = sys.stdout if output == StdLogOutput.STDOUT else sys.stderr
    handler = _CLIStreamHandler(stream)
    # stack traces only end up on the console in verbose mode
    formatter_cls = logging.Formatter if verbose else NoStackTraceFormatter
    handler.setFormatter(formatter_cls(LOG_FORMAT_STRING))
    return handler


def logging_setup(log_configs: Dict[Optional[str], LogConfig], verbose: bool):
    """
    Apply a logging configuration. Handlers set up by an earlier call are
    replaced.
    """
    for module, log_config in log_configs.items():
        module_logger = logging.getLogger(module)
        for old in [
            h for h in module_logger.handlers if isinstance(h, _CLIHandlerMixin)
        ]:
            module_logger.removeHandler(old)
            old.close()
        module_logger.setLevel(log_config.level)
        module_logger.addHandler(_make_handler(log_config.output, verbose))


def _error_message(e: Exception) -> str:
    if isinstance(e, ConfigurationError):
        return f"Configuration problem: {e}"
    if isinstance(e, PdfTrustError):
        return f"Error raised during validation: {e.msg}"
    if isinstance(e, OSError):
        return f"Failed to read input: {e}"
    return "Generic processing error."


@contextmanager
def validation_exception_manager():
    """
    Turn exceptions into ``click`` errors with a readable message. The
    full traceback goes to the log.
    """
    try:
        yield
    except click.ClickException:
        raise
    except Exception as e:
        msg = _error_message(e)
        logger.error(msg, exc_info=e)
        raise click.ClickException(msg) from e
