from datetime import datetime
from typing import Iterable

from pdftrust.builder import ValidatorChainBuilder
from pdftrust.context import TimeBasedContext
from pdftrust.fetchers.validation_clients import (
    ValidationCrlClient,
    ValidationOcspClient,
)

from .pki import ROOT, VALIDATION_TIME, Party


def offline_builder(
    trusted: Iterable[Party] = (ROOT,), known: Iterable[Party] = ()
) -> ValidatorChainBuilder:
    """
    Builder that never goes online, trusting the test root by default.
    """
    return (
        ValidatorChainBuilder()
        .with_online_crl_client(None)
        .with_online_ocsp_client(None)
        .with_trusted_certificates([p.cert for p in trusted])
        .with_known_certificates([p.cert for p in known])
    )


def add_ocsp_responses(
    builder: ValidatorChainBuilder,
    *responses,
    generation_date: datetime = VALIDATION_TIME,
    time_based_context: TimeBasedContext = TimeBasedContext.PRESENT,
) -> ValidationOcspClient:
    client = ValidationOcspClient()
    for response in responses:
        client.add_response(response, generation_date, time_based_context)
    builder.revocation_data_validator.add_ocsp_client(client)
    return client


def add_crls(
    builder: ValidatorChainBuilder,
    *crls,
    generation_date: datetime = VALIDATION_TIME,
    time_based_context: TimeBasedContext = TimeBasedContext.PRESENT,
) -> ValidationCrlClient:
    client = ValidationCrlClient()
    for certificate_list in crls:
        client.add_crl(certificate_list, generation_date, time_based_context)
    builder.revocation_data_validator.add_crl_client(client)
    return client


def messages(report):
    return [item.message for item in report.logs]
