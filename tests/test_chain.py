from datetime import datetime, timedelta, timezone

import pytest

from pdftrust.chain import CertificateChainValidator
from pdftrust.context import CertificateSource, ValidationContext
from pdftrust.extensions import ExtendedKeyUsageExtension
from pdftrust.report import ReportItemStatus, ValidationResult
from pdftrust.revinfo.validator import RevocationDataValidator

from .pki import (
    EXPIRED_SIGNER,
    INTERMEDIATE,
    INTERMEDIATE_SIGNER,
    ROOT,
    SIGNER,
    TSA,
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

C = CertificateChainValidator

SIGNER_CONTEXT = ValidationContext.for_chain_validation(
    CertificateSource.SIGNER_CERT
)
TIMESTAMP_CONTEXT = ValidationContext.for_chain_validation(
    CertificateSource.TIMESTAMP
)


def _good_ocsp(subject, issuer, this_update=VALIDATION_TIME - days(1)):
    return make_basic_ocsp_response(
        subject,
        issuer,
        this_update=this_update,
        next_update=this_update + days(7),
    )


def test_signer_valid_with_ocsp():
    builder = offline_builder()
    add_ocsp_responses(builder, _good_ocsp(SIGNER, ROOT))
    report = builder.certificate_chain_validator.validate_certificate(
        SIGNER_CONTEXT, SIGNER.cert, VALIDATION_TIME
    )
    assert report.validation_result == ValidationResult.VALID, str(report)
    assert messages(report) == [
        C.CERTIFICATE_TRUSTED.format(ROOT.cert.subject.human_friendly)
    ]


def test_intermediate_chain_with_ocsp_and_crl():
    builder = offline_builder(known=(INTERMEDIATE,))
    add_ocsp_responses(
        builder,
        _good_ocsp(
            INTERMEDIATE_SIGNER,
            INTERMEDIATE,
            this_update=VALIDATION_TIME - timedelta(hours=1),
        ),
    )
    add_crls(
        builder,
        make_crl(
            ROOT,
            this_update=VALIDATION_TIME - days(1),
            next_update=VALIDATION_TIME + days(6),
        ),
    )
    report = builder.certificate_chain_validator.validate_certificate(
        SIGNER_CONTEXT, INTERMEDIATE_SIGNER.cert, VALIDATION_TIME
    )
    assert report.validation_result == ValidationResult.VALID, str(report)
    checked = {
        item.certificate.subject.native['common_name']
        for item in report.certificate_logs
    }
    assert {'Test Intermediate', 'Test Root'} <= checked


def test_untrusted_issuer_missing():
    builder = offline_builder(trusted=())
    report = builder.certificate_chain_validator.validate_certificate(
        SIGNER_CONTEXT, SIGNER.cert, VALIDATION_TIME
    )
    assert report.validation_result == ValidationResult.INDETERMINATE
    assert RevocationDataValidator.NO_REVOCATION_DATA in messages(report)
    assert report.logs[-1].message == C.ISSUER_MISSING.format(
        SIGNER.cert.subject.human_friendly
    )


def test_trusted_for_timestamps_only():
    builder = offline_builder(trusted=())
    store = builder.certificate_retriever.get_trusted_certificates_store()
    store.add_timestamp_trusted_certificates([TSA.cert])

    report = builder.certificate_chain_validator.validate_certificate(
        SIGNER_CONTEXT, TSA.cert, VALIDATION_TIME
    )
    first = report.logs[0]
    assert first.message == C.CERTIFICATE_TRUSTED_FOR_DIFFERENT_CONTEXT.format(
        TSA.cert.subject.human_friendly, 'timestamp generation'
    )
    assert first.status == ReportItemStatus.INFO
    assert report.validation_result != ValidationResult.VALID

    report = builder.certificate_chain_validator.validate_certificate(
        TIMESTAMP_CONTEXT, TSA.cert, VALIDATION_TIME
    )
    assert report.validation_result == ValidationResult.VALID, str(report)
    assert messages(report) == [
        C.CERTIFICATE_TRUSTED.format(TSA.cert.subject.human_friendly)
    ]


@pytest.mark.parametrize(
    'source,expected',
    [
        (CertificateSource.CRL_ISSUER, ValidationResult.VALID),
        (CertificateSource.OCSP_ISSUER, ValidationResult.INDETERMINATE),
        (CertificateSource.TIMESTAMP, ValidationResult.INDETERMINATE),
    ],
)
def test_trusted_for_crl_only(source, expected):
    builder = offline_builder(trusted=())
    store = builder.certificate_retriever.get_trusted_certificates_store()
    store.add_crl_trusted_certificates([ROOT.cert])
    builder.properties.set_required_extensions(
        [], certificate_sources=[source]
    )

    report = builder.certificate_chain_validator.validate_certificate(
        ValidationContext.for_chain_validation(source),
        ROOT.cert,
        VALIDATION_TIME,
    )
    assert report.validation_result == expected, str(report)
    subject = ROOT.cert.subject.human_friendly
    if expected == ValidationResult.VALID:
        assert messages(report) == [C.CERTIFICATE_TRUSTED.format(subject)]
    else:
        assert report.logs[0].message == (
            C.CERTIFICATE_TRUSTED_FOR_DIFFERENT_CONTEXT.format(
                subject, 'CRL generation'
            )
        )


@pytest.mark.parametrize(
    'continue_after_failure,failures', [(True, 3), (False, 1)]
)
def test_expired_certificate(continue_after_failure, failures):
    builder = offline_builder(trusted=())
    builder.properties.set_continue_after_failure(continue_after_failure)
    report = builder.certificate_chain_validator.validate_certificate(
        SIGNER_CONTEXT, EXPIRED_SIGNER.cert, VALIDATION_TIME
    )
    assert report.validation_result == ValidationResult.INVALID
    assert len(report.failures) == failures
    first = report.failures[0]
    assert first.check_name == C.VALIDITY_CHECK
    assert first.message == C.EXPIRED_CERTIFICATE.format(
        EXPIRED_SIGNER.cert.subject.human_friendly
    )


def test_not_yet_valid_certificate():
    builder = offline_builder()
    report = builder.certificate_chain_validator.validate_certificate(
        SIGNER_CONTEXT,
        SIGNER.cert,
        datetime(2022, 6, 1, tzinfo=timezone.utc),
    )
    assert C.NOT_YET_VALID_CERTIFICATE.format(
        SIGNER.cert.subject.human_friendly
    ) in messages(report)
    assert report.validation_result == ValidationResult.INVALID


def test_required_extension_missing_on_trusted_cert():
    builder = offline_builder()
    report = builder.certificate_chain_validator.validate_certificate(
        TIMESTAMP_CONTEXT, ROOT.cert, VALIDATION_TIME
    )
    eku = ExtendedKeyUsageExtension('time_stamping')
    failure = report.failures[0]
    assert failure.check_name == C.EXTENSIONS_CHECK
    assert failure.message == C.EXTENSION_MISSING.format(eku.extension_oid)
    assert report.validation_result == ValidationResult.INVALID


def test_issuer_signature_mismatch():
    # same name as the real root, different key
    imposter = issue(
        'Test Root',
        None,
        serial=1,
        ca=True,
        key_usage=('key_cert_sign', 'crl_sign', 'digital_signature'),
    )
    builder = offline_builder(trusted=(imposter,))
    report = builder.certificate_chain_validator.validate_certificate(
        SIGNER_CONTEXT, SIGNER.cert, VALIDATION_TIME
    )
    assert report.logs[-1].message == C.ISSUER_CANNOT_BE_VERIFIED.format(
        imposter.cert.subject.human_friendly,
        SIGNER.cert.subject.human_friendly,
    )
    assert report.validation_result == ValidationResult.INVALID


def test_revoked_signer():
    builder = offline_builder()
    add_crls(
        builder,
        make_crl(
            ROOT,
            this_update=VALIDATION_TIME - days(1),
            next_update=VALIDATION_TIME + days(6),
            revoked=[(SIGNER, VALIDATION_TIME - days(2))],
        ),
    )
    report = builder.certificate_chain_validator.validate_certificate(
        SIGNER_CONTEXT, SIGNER.cert, VALIDATION_TIME
    )
    assert report.validation_result == ValidationResult.INVALID
    assert report.failures[0].certificate.dump() == SIGNER.cert.dump()


class RecordingRevocationValidator:
    def __init__(self):
        self.checked = []

    def validate(self, report, context, certificate, validation_date):
        self.checked.append(
            (
                certificate.subject.native['common_name'],
                context.certificate_source,
            )
        )
        return report


def test_revocation_checks_along_the_chain():
    recorder = RecordingRevocationValidator()
    builder = offline_builder(
        known=(INTERMEDIATE,)
    ).with_revocation_data_validator_factory(lambda b: recorder)
    report = builder.certificate_chain_validator.validate_certificate(
        SIGNER_CONTEXT, INTERMEDIATE_SIGNER.cert, VALIDATION_TIME
    )
    assert report.validation_result == ValidationResult.VALID, str(report)
    # the trusted root is not checked
    assert recorder.checked == [
        ('Intermediate Signer', CertificateSource.SIGNER_CERT),
        ('Test Intermediate', CertificateSource.CERT_ISSUER),
    ]
