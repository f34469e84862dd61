import logging
import weakref
from datetime import datetime
from typing import TYPE_CHECKING, Dict, FrozenSet, Optional

from asn1crypto import core, crl, x509

from ..context import CertificateSource, ValidationContext, ValidatorContext
from ..report import (
    CertificateReportItem,
    ReportItemStatus,
    ValidationReport,
)
from ..util import (
    cert_fingerprint,
    ensure_aware,
    is_self_signed,
    signature_verifies,
    verify_crl_signature,
)

if TYPE_CHECKING:
    from ..builder import ValidatorChainBuilder

__all__ = ['CRLValidator', 'ALL_REASONS']

logger = logging.getLogger(__name__)

ALL_REASONS: FrozenSet[str] = frozenset(
    [
        'key_compromise',
        'ca_compromise',
        'affiliation_changed',
        'superseded',
        'cessation_of_operation',
        'certificate_hold',
        'privilege_withdrawn',
        'aa_compromise',
    ]
)

EXPIRED_CERTS_ON_CRL_OID = '2.5.29.60'


class CRLValidator:
    """
    Validates a single CRL as evidence for the revocation status of a
    certificate.
    """

    CRL_CHECK = "CRL response check."
    ATTRIBUTE_CERTS_ASSERTED = (
        "The onlyContainsAttributeCerts is asserted. Conforming CRLs issuers "
        "MUST set the onlyContainsAttributeCerts boolean to FALSE."
    )
    CERTIFICATE_IS_EXPIRED = (
        "Certificate is expired on {0}. Its revocation status could have "
        "been removed from the CRL."
    )
    CERTIFICATE_IS_NOT_IN_THE_CRL_SCOPE = (
        "Certificate isn't in the current CRL scope."
    )
    CERTIFICATE_IS_UNREVOKED = "The certificate was unrevoked."
    CERTIFICATE_REVOKED = "Certificate was revoked by {0} on {1}."
    CRL_ISSUER_NOT_FOUND = (
        "Unable to validate CRL response: no issuer certificate found."
    )
    CRL_ISSUER_NO_COMMON_ROOT = (
        "The CRL issuer does not share the root of the inspected certificate."
    )
    CRL_ISSUER_DOES_NOT_MATCH = (
        "CRL issuer {0} does not match the issuer {1} of the inspected "
        "certificate."
    )
    CRL_INVALID = "CRL response is invalid."
    FRESHNESS_CHECK = (
        "CRL response is not fresh enough: this update: {0}, validation "
        "date: {1}, freshness: {2}."
    )
    ONLY_SOME_REASONS_CHECKED = (
        "Revocation status cannot be determined since not all reason codes "
        "are covered by the current CRL."
    )
    SAME_REASONS_CHECK = (
        "CRLs that cover the same reason codes were already verified."
    )
    SELF_SIGNED_CERTIFICATE = (
        "Certificate is self-signed. CRL check will be skipped."
    )
    UPDATE_DATE_BEFORE_CHECK_DATE = (
        "nextUpdate: {0} of CRLResponse is before validation date {1}."
    )
    VALID_CERTIFICATE_IS_REVOKED = (
        "The certificate is valid on {0}, but it was revoked on {1}."
    )

    def __init__(self, builder: 'ValidatorChainBuilder'):
        self._builder = builder
        self._checked_reasons: 'weakref.WeakKeyDictionary' = (
            weakref.WeakKeyDictionary()
        )

    def _report(
        self,
        report: ValidationReport,
        certificate: x509.Certificate,
        message: str,
        status: ReportItemStatus,
        exception_cause: Optional[BaseException] = None,
    ):
        report.add_report_item(
            CertificateReportItem(
                check_name=self.CRL_CHECK,
                message=message,
                status=status,
                exception_cause=exception_cause,
                certificate=certificate,
            )
        )

    def validate(
        self,
        report: ValidationReport,
        context: ValidationContext,
        certificate: x509.Certificate,
        certificate_list: crl.CertificateList,
        validation_date: datetime,
        response_generation_date: Optional[datetime] = None,
        reasons_scope: Optional[object] = None,
    ) -> ValidationReport:
        """
        Validate a CRL against a certificate.

        :param report:
            Report to which findings are added.
        :param context:
            The context in which the CRL is validated.
        :param certificate:
            The certificate whose revocation status is checked.
        :param certificate_list:
            The CRL.
        :param validation_date:
            The date against which the revocation status is checked.
        :param response_generation_date:
            The moment at which the CRL is known to have existed; the CRL
            issuer is validated at that moment. Defaults to
            ``validation_date``.
        :param reasons_scope:
            Object under which the revocation reasons covered by earlier
            CRLs are tracked. Defaults to ``report``.
        :return:
            The report.
        """
        local_context = context.set_validator_context(
            ValidatorContext.CRL_VALIDATOR
        )
        validation_date = ensure_aware(validation_date)
        if response_generation_date is None:
            response_generation_date = validation_date
        if reasons_scope is None:
            reasons_scope = report

        if is_self_signed(certificate):
            self._report(
                report,
                certificate,
                self.SELF_SIGNED_CERTIFICATE,
                ReportItemStatus.INFO,
            )
            return report

        tbs = certificate_list['tbs_cert_list']
        this_update: datetime = tbs['this_update'].native
        next_update: Optional[datetime] = tbs['next_update'].native

        freshness = self._builder.properties.get_freshness(local_context)
        if this_update < validation_date - freshness:
            self._report(
                report,
                certificate,
                self.FRESHNESS_CHECK.format(
                    this_update, validation_date, freshness
                ),
                ReportItemStatus.INDETERMINATE,
            )
            return report

        if next_update is not None and validation_date > next_update:
            self._report(
                report,
                certificate,
                self.UPDATE_DATE_BEFORE_CHECK_DATE.format(
                    next_update, validation_date
                ),
                ReportItemStatus.INDETERMINATE,
            )
            return report

        not_after = certificate['tbs_certificate']['validity'][
            'not_after'
        ].native
        expired_certs_cutoff = _expired_certs_on_crl(certificate_list)
        if expired_certs_cutoff is not None:
            if expired_certs_cutoff > not_after:
                self._report(
                    report,
                    certificate,
                    self.CERTIFICATE_IS_EXPIRED.format(not_after),
                    ReportItemStatus.INDETERMINATE,
                )
                return report
        elif not_after < this_update:
            self._report(
                report,
                certificate,
                self.CERTIFICATE_IS_EXPIRED.format(not_after),
                ReportItemStatus.INDETERMINATE,
            )
            return report

        idp = certificate_list.issuing_distribution_point_value
        if not _crl_issuer_applies(certificate, certificate_list, idp):
            self._report(
                report,
                certificate,
                self.CRL_ISSUER_DOES_NOT_MATCH.format(
                    certificate_list.issuer.human_friendly,
                    certificate.issuer.human_friendly,
                ),
                ReportItemStatus.INDETERMINATE,
            )
            return report

        if not self._check_scope(report, certificate, idp):
            return report

        interim_reasons = _compute_interim_reasons(certificate, idp)
        scope_map: Dict[bytes, FrozenSet[str]] = (
            self._checked_reasons.setdefault(reasons_scope, {})
        )
        fingerprint = cert_fingerprint(certificate)
        already_checked = scope_map.get(fingerprint, frozenset())
        if already_checked and interim_reasons <= already_checked:
            self._report(
                report,
                certificate,
                self.SAME_REASONS_CHECK,
                ReportItemStatus.INFO,
            )
            return report
        covered = already_checked | interim_reasons
        if covered != ALL_REASONS:
            self._report(
                report,
                certificate,
                self.ONLY_SOME_REASONS_CHECKED,
                ReportItemStatus.INDETERMINATE,
            )
        failure_count = len(report.failures)

        retriever = self._builder.certificate_retriever
        crl_issuer = retriever.retrieve_crl_issuer_certificate(
            certificate_list
        )
        if crl_issuer is None:
            self._report(
                report,
                certificate,
                self.CRL_ISSUER_NOT_FOUND,
                ReportItemStatus.INDETERMINATE,
            )
            return report
        if not signature_verifies(
            verify_crl_signature, certificate_list, crl_issuer
        ):
            self._report(
                report,
                certificate,
                self.CRL_INVALID,
                ReportItemStatus.INDETERMINATE,
            )
            return report
        if not retriever.share_common_root(certificate, crl_issuer):
            self._report(
                report,
                certificate,
                self.CRL_ISSUER_NO_COMMON_ROOT,
                ReportItemStatus.INDETERMINATE,
            )
            return report

        logger.debug(
            "Validating CRL issuer %s", crl_issuer.subject.human_friendly
        )
        self._builder.certificate_chain_validator.validate(
            report,
            local_context.set_certificate_source(CertificateSource.CRL_ISSUER),
            crl_issuer,
            response_generation_date,
        )

        self._check_revocation_entry(
            report, certificate, certificate_list, validation_date
        )
        # only a CRL that checked out counts towards reason coverage
        if len(report.failures) == failure_count:
            scope_map[fingerprint] = covered
        return report

    def _check_scope(
        self,
        report: ValidationReport,
        certificate: x509.Certificate,
        idp: Optional[crl.IssuingDistributionPoint],
    ) -> bool:
        if idp is None:
            return True
        if idp['only_contains_attribute_certs'].native:
            self._report(
                report,
                certificate,
                self.ATTRIBUTE_CERTS_ASSERTED,
                ReportItemStatus.INDETERMINATE,
            )
            return False
        is_ca = bool(certificate.ca)
        if (idp['only_contains_ca_certs'].native and not is_ca) or (
            idp['only_contains_user_certs'].native and is_ca
        ):
            self._report(
                report,
                certificate,
                self.CERTIFICATE_IS_NOT_IN_THE_CRL_SCOPE,
                ReportItemStatus.INDETERMINATE,
            )
            return False
        return True

    def _check_revocation_entry(
        self,
        report: ValidationReport,
        certificate: x509.Certificate,
        certificate_list: crl.CertificateList,
        validation_date: datetime,
    ):
        entry = _find_revoked_entry(certificate, certificate_list)
        if entry is None:
            self._report(
                report,
                certificate,
                self.CERTIFICATE_IS_UNREVOKED,
                ReportItemStatus.INFO,
            )
            return
        reason = entry.crl_reason_value
        if reason is not None and reason.native == 'remove_from_crl':
            self._report(
                report,
                certificate,
                self.CERTIFICATE_IS_UNREVOKED,
                ReportItemStatus.INFO,
            )
            return
        revocation_date: datetime = entry['revocation_date'].native
        if revocation_date <= validation_date:
            self._report(
                report,
                certificate,
                self.CERTIFICATE_REVOKED.format(
                    certificate_list.issuer.human_friendly, revocation_date
                ),
                ReportItemStatus.INVALID,
            )
        else:
            self._report(
                report,
                certificate,
                self.VALID_CERTIFICATE_IS_REVOKED.format(
                    validation_date, revocation_date
                ),
                ReportItemStatus.INFO,
            )


def _expired_certs_on_crl(
    certificate_list: crl.CertificateList,
) -> Optional[datetime]:
    extensions = certificate_list['tbs_cert_list']['crl_extensions']
    for ext in extensions or ():
        if ext['extn_id'].dotted == EXPIRED_CERTS_ON_CRL_OID:
            return core.GeneralizedTime.load(ext['extn_value'].contents).native
    return None


def _directory_names(names) -> list:
    return [
        gname.chosen.hashable
        for gname in names or ()
        if gname.name == 'directory_name'
    ]


def _crl_issuer_applies(
    certificate: x509.Certificate,
    certificate_list: crl.CertificateList,
    idp: Optional[crl.IssuingDistributionPoint],
) -> bool:
    crl_issuer_name = certificate_list.issuer.hashable
    if crl_issuer_name == certificate.issuer.hashable:
        return True
    # indirect CRL issued by an entity named in the certificate's CRL
    # distribution points
    if idp is None or not idp['indirect_crl'].native:
        return False
    for dp in certificate.crl_distribution_points_value or ():
        if crl_issuer_name in _directory_names(dp['crl_issuer']):
            return True
    return False


def _compute_interim_reasons(
    certificate: x509.Certificate,
    idp: Optional[crl.IssuingDistributionPoint],
) -> FrozenSet[str]:
    idp_reasons = ALL_REASONS
    if idp is not None:
        only_some = idp['only_some_reasons'].native
        if only_some is not None:
            idp_reasons = frozenset(only_some) & ALL_REASONS

    dps = certificate.crl_distribution_points_value
    if not dps:
        return idp_reasons
    dp_reasons = frozenset()
    for dp in dps:
        reasons = dp['reasons'].native
        if reasons is None:
            dp_reasons = ALL_REASONS
            break
        dp_reasons |= frozenset(reasons) & ALL_REASONS
    return idp_reasons & dp_reasons


def _find_revoked_entry(
    certificate: x509.Certificate, certificate_list: crl.CertificateList
) -> Optional[crl.RevokedCertificate]:
    revoked_certificates = certificate_list['tbs_cert_list'][
        'revoked_certificates'
    ]
    serial = certificate.serial_number
    for revoked_cert in revoked_certificates or ():
        if revoked_cert['user_certificate'].native == serial:
            return revoked_cert
    return None
