from datetime import timedelta

import pytest
from cryptography import x509 as cx509

from pdftrust.context import (
    CertificateSource,
    ValidationContext,
    ValidatorContext,
)
from pdftrust.fetchers.api import CrlClient, OcspClient
from pdftrust.properties import OnlineFetching
from pdftrust.report import (
    ReportItemStatus,
    ValidationReport,
    ValidationResult,
)
from pdftrust.revinfo.validate_crl import CRLValidator
from pdftrust.revinfo.validate_ocsp import OCSPValidator
from pdftrust.revinfo.validator import RevocationDataValidator

from .pki import (
    ROOT,
    SIGNER,
    VALIDATION_TIME,
    days,
    issue,
    make_basic_ocsp_response,
    make_crl,
)
from .validation_commons import (
    add_crls,
    add_ocsp_responses,
    messages,
    offline_builder,
)

R = RevocationDataValidator

CONTEXT = ValidationContext(
    ValidatorContext.CERTIFICATE_CHAIN_VALIDATOR, CertificateSource.SIGNER_CERT
)


class StaticCrlClient(CrlClient):
    def __init__(self, *crls: bytes):
        self.crls = list(crls)
        self.calls = 0

    def get_encoded(self, certificate, issuer):
        self.calls += 1
        return list(self.crls)


class StaticOcspClient(OcspClient):
    def __init__(self, response):
        self.response = response
        self.calls = 0

    def get_encoded(self, certificate, issuer):
        self.calls += 1
        return self.response


def _validate(builder, cert=SIGNER):
    report = ValidationReport()
    builder.revocation_data_validator.validate(
        report, CONTEXT, cert.cert, VALIDATION_TIME
    )
    return report


def _crl(this_update, revoked=()):
    return make_crl(
        ROOT,
        this_update=this_update,
        next_update=this_update + days(7),
        revoked=revoked,
    )


def _ocsp(this_update, status='good'):
    return make_basic_ocsp_response(
        SIGNER,
        ROOT,
        this_update=this_update,
        next_update=this_update + days(7),
        status=status,
    )


def test_self_signed():
    report = _validate(offline_builder(), cert=ROOT)
    assert messages(report) == [R.SELF_SIGNED_CERTIFICATE]
    assert report.validation_result == ValidationResult.VALID


def test_no_revocation_data():
    report = _validate(offline_builder())
    (item,) = report.logs
    assert item.message == R.NO_REVOCATION_DATA
    assert item.status == ReportItemStatus.INDETERMINATE


def test_newer_good_ocsp_beats_revoked_crl():
    builder = offline_builder()
    add_crls(
        builder,
        _crl(
            VALIDATION_TIME - days(1),
            revoked=[(SIGNER, VALIDATION_TIME - days(3))],
        ),
    )
    add_ocsp_responses(builder, _ocsp(VALIDATION_TIME - timedelta(hours=2)))
    report = _validate(builder)
    assert report.validation_result == ValidationResult.VALID, str(report)


def test_newer_revoked_crl_beats_good_ocsp():
    builder = offline_builder()
    add_crls(
        builder,
        _crl(
            VALIDATION_TIME - timedelta(hours=2),
            revoked=[(SIGNER, VALIDATION_TIME - days(3))],
        ),
    )
    add_ocsp_responses(builder, _ocsp(VALIDATION_TIME - days(1)))
    report = _validate(builder)
    assert report.validation_result == ValidationResult.INVALID


def test_indeterminate_evidence_is_downgraded():
    builder = offline_builder()
    add_crls(builder, _crl(VALIDATION_TIME - days(1)))
    add_ocsp_responses(
        builder, _ocsp(VALIDATION_TIME - timedelta(hours=2), status='unknown')
    )
    report = _validate(builder)
    assert report.validation_result == ValidationResult.VALID, str(report)
    unknown = next(
        item
        for item in report.logs
        if item.message == OCSPValidator.CERT_STATUS_IS_UNKNOWN
    )
    assert unknown.status == ReportItemStatus.INFO


def test_irrelevant_evidence_is_dropped():
    builder = offline_builder()
    other = make_basic_ocsp_response(
        ROOT,
        ROOT,
        this_update=VALIDATION_TIME - days(1),
        next_update=VALIDATION_TIME + days(6),
    )
    add_ocsp_responses(builder, other)
    report = _validate(builder)
    assert messages(report) == [R.NO_REVOCATION_DATA]


def test_unparseable_crl():
    builder = offline_builder()
    builder.revocation_data_validator.add_crl_client(
        StaticCrlClient(b'garbage')
    )
    report = _validate(builder)
    assert messages(report) == [
        R.CANNOT_PARSE_CRL.format('StaticCrlClient'),
        R.NO_REVOCATION_DATA,
    ]
    assert report.logs[0].exception_cause is not None


def test_unparseable_ocsp():
    builder = offline_builder()
    builder.revocation_data_validator.add_ocsp_client(
        StaticOcspClient(b'not an OCSP response')
    )
    report = _validate(builder)
    assert messages(report)[0] == R.CANNOT_PARSE_OCSP.format(
        'StaticOcspClient'
    )


def test_other_client_data_is_used():
    builder = offline_builder()
    builder.revocation_data_validator.add_crl_client(
        StaticCrlClient(_crl(VALIDATION_TIME - days(1)).dump())
    )
    report = _validate(builder)
    assert report.validation_result == ValidationResult.VALID, str(report)


@pytest.mark.parametrize(
    'mode,have_data,expected_calls',
    [
        (OnlineFetching.NEVER_FETCH, False, 0),
        (OnlineFetching.FETCH_IF_NO_OTHER_DATA, False, 1),
        (OnlineFetching.FETCH_IF_NO_OTHER_DATA, True, 0),
        (OnlineFetching.ALWAYS_FETCH, True, 1),
    ],
)
def test_online_fetching_policy(mode, have_data, expected_calls):
    online = StaticCrlClient(_crl(VALIDATION_TIME - days(1)).dump())
    builder = offline_builder().with_online_crl_client(online)
    builder.properties.set_revocation_online_fetching(mode)
    if have_data:
        add_crls(builder, _crl(VALIDATION_TIME - days(2)))
    report = _validate(builder)
    assert online.calls == expected_calls
    if have_data or expected_calls:
        assert report.validation_result == ValidationResult.VALID
    else:
        assert messages(report) == [R.NO_REVOCATION_DATA]


def test_online_fetching_policy_type_check():
    builder = offline_builder()
    with pytest.raises(TypeError):
        builder.properties.set_revocation_online_fetching('never')


def test_forged_crl_does_not_hide_revocation():
    imposter = issue(
        'Test Root',
        None,
        serial=1,
        ca=True,
        key_usage=('key_cert_sign', 'crl_sign'),
    )
    builder = offline_builder()
    add_crls(
        builder,
        make_crl(
            imposter,
            this_update=VALIDATION_TIME - days(1),
            next_update=VALIDATION_TIME + days(6),
        ),
        _crl(
            VALIDATION_TIME - days(2),
            revoked=[(SIGNER, VALIDATION_TIME - days(10))],
        ),
    )
    report = builder.certificate_chain_validator.validate_certificate(
        ValidationContext.for_chain_validation(CertificateSource.SIGNER_CERT),
        SIGNER.cert,
        VALIDATION_TIME,
    )
    assert report.validation_result == ValidationResult.INVALID, str(report)
    assert CRLValidator.SAME_REASONS_CHECK not in messages(report)


def _partial_crl(this_update, reasons):
    return make_crl(
        ROOT,
        this_update=this_update,
        next_update=this_update + days(7),
        idp=cx509.IssuingDistributionPoint(
            full_name=None,
            relative_name=None,
            only_contains_user_certs=False,
            only_contains_ca_certs=False,
            only_some_reasons=frozenset(reasons),
            indirect_crl=False,
            only_contains_attribute_certs=False,
        ),
    )


SOME_REASONS = (
    cx509.ReasonFlags.key_compromise,
    cx509.ReasonFlags.ca_compromise,
)
OTHER_REASONS = (
    cx509.ReasonFlags.affiliation_changed,
    cx509.ReasonFlags.superseded,
    cx509.ReasonFlags.cessation_of_operation,
    cx509.ReasonFlags.certificate_hold,
    cx509.ReasonFlags.privilege_withdrawn,
    cx509.ReasonFlags.aa_compromise,
)


def test_partial_crl_alone_is_not_enough():
    builder = offline_builder()
    add_crls(builder, _partial_crl(VALIDATION_TIME - days(1), SOME_REASONS))
    report = _validate(builder)
    assert report.validation_result == ValidationResult.INDETERMINATE
    assert CRLValidator.ONLY_SOME_REASONS_CHECKED in messages(report)


def test_complementary_partial_crls():
    builder = offline_builder()
    add_crls(
        builder,
        _partial_crl(VALIDATION_TIME - days(1), SOME_REASONS),
        _partial_crl(VALIDATION_TIME - days(2), OTHER_REASONS),
    )
    report = _validate(builder)
    assert report.validation_result == ValidationResult.VALID, str(report)
    assert report.logs[-1].message == CRLValidator.CERTIFICATE_IS_UNREVOKED


def test_validity_assured_short_term():
    short_term = issue(
        'Short Term Signer',
        ROOT,
        serial=1003,
        key_usage=('digital_signature',),
        validity_assured=True,
    )
    report = _validate(offline_builder(), cert=short_term)
    assert messages(report) == [R.VALIDITY_ASSURED]
    assert report.validation_result == ValidationResult.VALID
