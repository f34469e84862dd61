import logging
from datetime import datetime

import click
import tzlocal
from dateutil.parser import isoparse

__all__ = ['logger', 'readable_file', 'parse_validation_time']

logger = logging.getLogger('pdftrust.cli')

readable_file = click.Path(exists=True, readable=True, dir_okay=False)


def parse_validation_time(value: str) -> datetime:
    """
    Parse an ISO 8601 date or datetime from the command line. Values
    without a UTC offset are taken to be in the local time zone.
    """
    try:
        moment = isoparse(value)
    except ValueError:
        raise click.ClickException(f"datetime {value!r} could not be parsed")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=tzlocal.get_localzone())
    return moment
