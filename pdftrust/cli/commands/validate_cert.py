from datetime import datetime
from typing import Iterable, Iterator

import click

from ...builder import ValidatorChainBuilder
from ...context import CertificateSource, TimeBasedContext, ValidationContext
from ...fetchers.validation_clients import (
    ValidationCrlClient,
    ValidationOcspClient,
)
from ...report import ValidationResult
from ...util import (
    load_basic_ocsp_response,
    load_certs_from_pemder,
    load_crl,
    load_der_or_pem,
    now,
)
from .._ctx import CLIContext
from .._root import cli_root
from ..runtime import validation_exception_manager
from ..utils import parse_validation_time, readable_file

__all__ = ['validate_cert']


def _option_name(source: CertificateSource) -> str:
    return source.name.lower().replace('_', '-')


SOURCES_BY_OPTION = {_option_name(s): s for s in CertificateSource}


def _der_payloads(file_names: Iterable[str]) -> Iterator[bytes]:
    for file_name in file_names:
        with open(file_name, 'rb') as inf:
            yield from load_der_or_pem(inf.read())


def _parse_each(file_names, loader, what: str):
    for der in _der_payloads(file_names):
        try:
            yield loader(der)
        except (ValueError, TypeError, KeyError) as e:
            raise click.ClickException(f"Could not parse {what}: {e}")


def _register_revinfo(
    builder: ValidatorChainBuilder,
    crl_files,
    ocsp_files,
    generation_date: datetime,
    time_based_context: TimeBasedContext,
):
    """
    Make revocation data from local files available to the validators.
    The data is treated as if it was obtained at ``generation_date``.
    """
    revinfo_validator = builder.revocation_data_validator
    if crl_files:
        crl_client = ValidationCrlClient()
        for certificate_list in _parse_each(crl_files, load_crl, 'CRL'):
            crl_client.add_crl(
                certificate_list, generation_date, time_based_context
            )
        revinfo_validator.add_crl_client(crl_client)
    if ocsp_files:
        ocsp_client = ValidationOcspClient()
        responses = _parse_each(
            ocsp_files, load_basic_ocsp_response, 'OCSP response'
        )
        for basic_response in responses:
            ocsp_client.add_response(
                basic_response, generation_date, time_based_context
            )
        revinfo_validator.add_ocsp_client(ocsp_client)


@cli_root.command(name='validate-cert', help='validate a certificate chain')
@click.argument('cert', type=readable_file)
@click.option(
    '--trust',
    help='trust root certificates (multiple allowed)',
    required=False,
    multiple=True,
    type=readable_file,
)
@click.option(
    '--other-certs',
    help='untrusted certificates to build the chain from',
    required=False,
    multiple=True,
    type=readable_file,
)
@click.option(
    '--crl',
    help='CRL to use for revocation checks (multiple allowed)',
    required=False,
    multiple=True,
    type=readable_file,
)
@click.option(
    '--ocsp',
    help='OCSP response to use for revocation checks (multiple allowed)',
    required=False,
    multiple=True,
    type=readable_file,
)
@click.option(
    '--validation-time',
    help=(
        'validate as of this ISO 8601 date instead of now; values without '
        'an offset are taken to be local time'
    ),
    type=str,
    required=False,
)
@click.option(
    '--source',
    help='role in which the certificate is used',
    type=click.Choice(list(SOURCES_BY_OPTION)),
    default=_option_name(CertificateSource.SIGNER_CERT),
    show_default=True,
)
@click.option(
    '--offline',
    help='never fetch revocation data over the network',
    type=bool,
    is_flag=True,
    default=False,
    show_default=True,
)
@click.pass_context
def validate_cert(
    ctx: click.Context,
    cert,
    trust,
    other_certs,
    crl,
    ocsp,
    validation_time,
    source,
    offline,
):
    ctx_obj: CLIContext = ctx.obj
    if validation_time is None:
        validation_date = now()
        time_based_context = TimeBasedContext.PRESENT
    else:
        validation_date = parse_validation_time(validation_time)
        time_based_context = TimeBasedContext.HISTORICAL

    with validation_exception_manager():
        builder = ctx_obj.create_chain_builder()
        if offline:
            builder.with_online_crl_client(None)
            builder.with_online_ocsp_client(None)
        if trust:
            builder.with_trusted_certificates(load_certs_from_pemder(trust))
        if other_certs:
            builder.with_known_certificates(
                load_certs_from_pemder(other_certs)
            )
        _register_revinfo(
            builder, crl, ocsp, validation_date, time_based_context
        )

        certs = list(load_certs_from_pemder([cert]))
        if not certs:
            raise click.ClickException(f"No certificate found in {cert}")
        # a chain file: the first certificate is the one to validate
        leaf, *extra_certs = certs
        if extra_certs:
            builder.with_known_certificates(extra_certs)

        context = ValidationContext.for_chain_validation(
            SOURCES_BY_OPTION[source], time_based_context
        )
        report = builder.certificate_chain_validator.validate_certificate(
            context, leaf, validation_date
        )

    click.echo(str(report))
    if report.validation_result != ValidationResult.VALID:
        ctx.exit(1)
