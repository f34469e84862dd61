import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, List, Union

from asn1crypto import crl, ocsp, x509

from ..context import (
    CertificateSource,
    TimeBasedContext,
    ValidationContext,
    ValidatorContext,
)
from ..fetchers.api import CrlClient, OcspClient
from ..fetchers.validation_clients import (
    ValidationCrlClient,
    ValidationOcspClient,
)
from ..properties import OnlineFetching
from ..report import (
    CertificateReportItem,
    ReportItem,
    ReportItemStatus,
    ValidationReport,
    ValidationResult,
)
from ..util import (
    ensure_aware,
    is_self_signed,
    load_basic_ocsp_response,
    load_crl,
    now,
)
from .validate_crl import CRLValidator
from .validate_ocsp import OCSPValidator

if TYPE_CHECKING:
    from ..builder import ValidatorChainBuilder

__all__ = ['RevocationDataValidator']

logger = logging.getLogger(__name__)

VALIDITY_ASSURED_SHORT_TERM_OID = '0.4.0.194121.2.1'
OCSP_NO_CHECK_OID = '1.3.6.1.5.5.7.48.1.5'

# messages about evidence that simply does not concern the certificate
_IRRELEVANT_EVIDENCE_MESSAGES = frozenset(
    [
        OCSPValidator.SERIAL_NUMBERS_DO_NOT_MATCH,
        CRLValidator.CRL_ISSUER_NO_COMMON_ROOT,
    ]
)
_CRL_ISSUER_MISMATCH_PREFIX = CRLValidator.CRL_ISSUER_DOES_NOT_MATCH.split(
    '{', 1
)[0]


def _is_irrelevant_evidence_item(item: ReportItem) -> bool:
    return item.message in _IRRELEVANT_EVIDENCE_MESSAGES or (
        item.message.startswith(_CRL_ISSUER_MISMATCH_PREFIX)
    )


@dataclass(frozen=True)
class _OcspEvidence:
    single_response: ocsp.SingleResponse
    basic_response: ocsp.BasicOCSPResponse
    trusted_generation_date: datetime
    time_based_context: TimeBasedContext

    @property
    def this_update(self) -> datetime:
        return self.single_response['this_update'].native


@dataclass(frozen=True)
class _CrlEvidence:
    certificate_list: crl.CertificateList
    trusted_generation_date: datetime
    time_based_context: TimeBasedContext

    @property
    def this_update(self) -> datetime:
        return self.certificate_list['tbs_cert_list']['this_update'].native


def _has_extension(cert: x509.Certificate, oid: str) -> bool:
    return any(
        ext['extn_id'].dotted == oid
        for ext in cert['tbs_certificate']['extensions'] or ()
    )


class RevocationDataValidator:
    """
    Gathers revocation evidence for a certificate and delegates its
    evaluation to :class:`.OCSPValidator` and :class:`.CRLValidator`.

    Evidence is tried from most to least recent. The first item that yields
    a conclusive verdict (valid or invalid) wins; indeterminate outcomes are
    retained as informational entries.
    """

    REVOCATION_DATA_CHECK = "Revocation data check."
    NO_REVOCATION_DATA = (
        "Certificate revocation status cannot be checked: no revocation data "
        "available or the status cannot be determined."
    )
    SELF_SIGNED_CERTIFICATE = (
        "Certificate is self-signed. Revocation data check will be skipped."
    )
    TRUSTED_OCSP_RESPONDER = (
        "Authorized OCSP Responder certificate has id-pkix-ocsp-nocheck "
        "extension so it is trusted by the definition and no revocation "
        "checking is performed."
    )
    VALIDITY_ASSURED = (
        "Certificate is trusted due to validity assured - short term "
        "extension."
    )
    CANNOT_PARSE_OCSP = (
        "OCSP response from \"{0}\" OCSP client cannot be parsed."
    )
    CANNOT_PARSE_CRL = "CRL response from \"{0}\" CRL client cannot be parsed."

    def __init__(self, builder: 'ValidatorChainBuilder'):
        self._builder = builder
        self.crl_clients: List[CrlClient] = []
        self.ocsp_clients: List[OcspClient] = []

    def add_crl_client(self, client: CrlClient) -> 'RevocationDataValidator':
        self.crl_clients.append(client)
        return self

    def add_ocsp_client(
        self, client: OcspClient
    ) -> 'RevocationDataValidator':
        self.ocsp_clients.append(client)
        return self

    def _info(self, report, certificate, message, cause=None):
        report.add_report_item(
            CertificateReportItem(
                check_name=self.REVOCATION_DATA_CHECK,
                message=message,
                status=ReportItemStatus.INFO,
                exception_cause=cause,
                certificate=certificate,
            )
        )

    def validate(
        self,
        report: ValidationReport,
        context: ValidationContext,
        certificate: x509.Certificate,
        validation_date: datetime,
    ) -> ValidationReport:
        """
        Check the revocation status of a certificate.

        :param report:
            Report to which findings are added.
        :param context:
            The context in which the certificate is validated.
        :param certificate:
            The certificate to check.
        :param validation_date:
            The date against which the revocation status is checked.
        :return:
            The report.
        """
        local_context = context.set_validator_context(
            ValidatorContext.REVOCATION_DATA_VALIDATOR
        )
        validation_date = ensure_aware(validation_date)
        if is_self_signed(certificate):
            self._info(report, certificate, self.SELF_SIGNED_CERTIFICATE)
            return report
        if _has_extension(certificate, VALIDITY_ASSURED_SHORT_TERM_OID):
            self._info(report, certificate, self.VALIDITY_ASSURED)
            return report
        if (
            local_context.certificate_source == CertificateSource.OCSP_ISSUER
            and _has_extension(certificate, OCSP_NO_CHECK_OID)
        ):
            self._info(report, certificate, self.TRUSTED_OCSP_RESPONDER)
            return report

        ocsp_evidence = self._retrieve_ocsp_evidence(
            report, local_context, certificate
        )
        ocsp_evidence.sort(key=lambda e: e.this_update, reverse=True)
        crl_evidence = self._retrieve_crl_evidence(
            report, local_context, certificate
        )
        crl_evidence.sort(key=lambda e: e.this_update, reverse=True)

        self._validate_evidence(
            report,
            local_context,
            certificate,
            validation_date,
            ocsp_evidence,
            crl_evidence,
        )
        return report

    def _validate_evidence(
        self,
        report: ValidationReport,
        context: ValidationContext,
        certificate: x509.Certificate,
        validation_date: datetime,
        ocsp_evidence: List[_OcspEvidence],
        crl_evidence: List[_CrlEvidence],
    ):
        i = j = 0
        while i < len(ocsp_evidence) or j < len(crl_evidence):
            sub_report = ValidationReport()
            evidence: Union[_OcspEvidence, _CrlEvidence]
            take_ocsp = i < len(ocsp_evidence) and (
                j >= len(crl_evidence)
                or ocsp_evidence[i].this_update > crl_evidence[j].this_update
            )
            if take_ocsp:
                evidence = ocsp_evidence[i]
                i += 1
                self._builder.ocsp_validator.validate(
                    sub_report,
                    context.set_time_based_context(
                        evidence.time_based_context
                    ),
                    certificate,
                    evidence.single_response,
                    evidence.basic_response,
                    validation_date,
                    evidence.trusted_generation_date,
                )
            else:
                evidence = crl_evidence[j]
                j += 1
                self._builder.crl_validator.validate(
                    sub_report,
                    context.set_time_based_context(
                        evidence.time_based_context
                    ),
                    certificate,
                    evidence.certificate_list,
                    validation_date,
                    evidence.trusted_generation_date,
                    reasons_scope=report,
                )
            if sub_report.validation_result == ValidationResult.INDETERMINATE:
                for item in sub_report.logs:
                    if _is_irrelevant_evidence_item(item):
                        continue
                    report.add_report_item(
                        replace(item, status=ReportItemStatus.INFO)
                    )
            else:
                report.merge(sub_report)
                return
        report.add_report_item(
            CertificateReportItem(
                check_name=self.REVOCATION_DATA_CHECK,
                message=self.NO_REVOCATION_DATA,
                status=ReportItemStatus.INDETERMINATE,
                certificate=certificate,
            )
        )

    def _online_fetching_applies(
        self, context: ValidationContext, have_data: bool
    ) -> bool:
        mode = self._builder.properties.get_revocation_online_fetching(context)
        return mode == OnlineFetching.ALWAYS_FETCH or (
            mode == OnlineFetching.FETCH_IF_NO_OTHER_DATA and not have_data
        )

    def _retrieve_ocsp_evidence(
        self,
        report: ValidationReport,
        context: ValidationContext,
        certificate: x509.Certificate,
    ) -> List[_OcspEvidence]:
        result: List[_OcspEvidence] = []
        issuer = None
        issuer_looked_up = False

        def _issuer():
            nonlocal issuer, issuer_looked_up
            if not issuer_looked_up:
                retriever = self._builder.certificate_retriever
                issuer = retriever.retrieve_issuer_certificate(certificate)
                issuer_looked_up = True
            return issuer

        def _fill(basic_response, generation_date, time_based_context):
            for single_response in basic_response['tbs_response_data'][
                'responses'
            ]:
                result.append(
                    _OcspEvidence(
                        single_response,
                        basic_response,
                        generation_date,
                        time_based_context,
                    )
                )

        def _query(client: OcspClient):
            encoded = client.get_encoded(certificate, _issuer())
            if encoded is None:
                return
            try:
                basic_response = load_basic_ocsp_response(encoded)
            except (ValueError, TypeError, KeyError) as e:
                logger.warning(
                    "Could not parse OCSP response from %s",
                    type(client).__name__,
                    exc_info=e,
                )
                self._info(
                    report,
                    certificate,
                    self.CANNOT_PARSE_OCSP.format(type(client).__name__),
                    cause=e,
                )
                return
            _fill(basic_response, now(), TimeBasedContext.PRESENT)

        for client in self.ocsp_clients:
            if isinstance(client, ValidationOcspClient):
                for entry in client.get_responses():
                    _fill(
                        entry.data,
                        entry.trusted_generation_date,
                        entry.time_based_context,
                    )
            else:
                _query(client)

        ocsp_context = context.set_validator_context(
            ValidatorContext.OCSP_VALIDATOR
        )
        if self._online_fetching_applies(ocsp_context, bool(result)):
            online_client = self._builder.online_ocsp_client
            if online_client is not None:
                _query(online_client)
        return result

    def _retrieve_crl_evidence(
        self,
        report: ValidationReport,
        context: ValidationContext,
        certificate: x509.Certificate,
    ) -> List[_CrlEvidence]:
        result: List[_CrlEvidence] = []

        def _query(client: CrlClient):
            for encoded in client.get_encoded(certificate, None):
                try:
                    certificate_list = load_crl(encoded)
                except (ValueError, TypeError, KeyError) as e:
                    logger.warning(
                        "Could not parse CRL from %s",
                        type(client).__name__,
                        exc_info=e,
                    )
                    self._info(
                        report,
                        certificate,
                        self.CANNOT_PARSE_CRL.format(type(client).__name__),
                        cause=e,
                    )
                    continue
                result.append(
                    _CrlEvidence(
                        certificate_list, now(), TimeBasedContext.PRESENT
                    )
                )

        for client in self.crl_clients:
            if isinstance(client, ValidationCrlClient):
                result.extend(
                    _CrlEvidence(
                        entry.data,
                        entry.trusted_generation_date,
                        entry.time_based_context,
                    )
                    for entry in client.get_crls()
                )
            else:
                _query(client)

        crl_context = context.set_validator_context(
            ValidatorContext.CRL_VALIDATOR
        )
        if self._online_fetching_applies(crl_context, bool(result)):
            online_client = self._builder.online_crl_client
            if online_client is not None:
                _query(online_client)
        return result
