from datetime import timedelta

from pdftrust.context import (
    CertificateSource,
    ValidationContext,
    ValidatorContext,
)
from pdftrust.report import (
    ReportItemStatus,
    ValidationReport,
    ValidationResult,
)
from pdftrust.revinfo.validate_ocsp import OCSPValidator
from pdftrust.revinfo.validator import RevocationDataValidator

from .pki import (
    EXPIRED_SIGNER,
    OCSP_RESPONDER,
    ROGUE_ROOT,
    ROOT,
    SIGNER,
    VALIDATION_TIME,
    days,
    make_basic_ocsp_response,
)
from .validation_commons import messages, offline_builder

CONTEXT = ValidationContext(
    ValidatorContext.REVOCATION_DATA_VALIDATOR, CertificateSource.SIGNER_CERT
)

THIS_UPDATE = VALIDATION_TIME - days(1)


def _response(subject=SIGNER, issuer=ROOT, **kwargs):
    kwargs.setdefault('this_update', THIS_UPDATE)
    kwargs.setdefault('next_update', THIS_UPDATE + days(7))
    return make_basic_ocsp_response(subject, issuer, **kwargs)


def _validate(basic_response, cert=SIGNER, builder=None):
    builder = builder or offline_builder()
    report = ValidationReport()
    single_response = basic_response['tbs_response_data']['responses'][0]
    builder.ocsp_validator.validate(
        report,
        CONTEXT,
        cert.cert,
        single_response,
        basic_response,
        VALIDATION_TIME,
    )
    return report


def test_good_response_signed_by_issuer():
    report = _validate(_response())
    assert report.validation_result == ValidationResult.VALID, str(report)
    assert len(report) == 0


def test_revoked_before_validation_date():
    report = _validate(
        _response(status='revoked', revocation_time=THIS_UPDATE - days(1))
    )
    assert messages(report) == [OCSPValidator.CERT_IS_REVOKED]
    assert report.validation_result == ValidationResult.INVALID


def test_revoked_after_validation_date():
    revocation_time = VALIDATION_TIME + timedelta(hours=2)
    report = _validate(
        _response(
            status='revoked',
            revocation_time=revocation_time,
            this_update=VALIDATION_TIME + timedelta(hours=3),
        )
    )
    assert messages(report) == [
        OCSPValidator.VALID_CERTIFICATE_IS_REVOKED.format(
            VALIDATION_TIME, revocation_time
        )
    ]
    assert report.validation_result == ValidationResult.VALID


def test_unknown_status():
    report = _validate(_response(status='unknown'))
    assert messages(report) == [OCSPValidator.CERT_STATUS_IS_UNKNOWN]
    assert report.validation_result == ValidationResult.INDETERMINATE


def test_serial_number_mismatch():
    report = _validate(_response(subject=EXPIRED_SIGNER))
    assert messages(report) == [OCSPValidator.SERIAL_NUMBERS_DO_NOT_MATCH]
    assert report.validation_result == ValidationResult.INDETERMINATE


def test_response_no_longer_valid():
    report = _validate(
        _response(
            this_update=VALIDATION_TIME - days(3),
            next_update=VALIDATION_TIME - days(2),
        )
    )
    (item,) = report.logs
    assert item.message.startswith('OCSP is no longer valid')
    assert item.status == ReportItemStatus.INDETERMINATE


def test_stale_response():
    builder = offline_builder()
    builder.properties.set_freshness(
        timedelta(hours=12),
        validator_contexts=[ValidatorContext.OCSP_VALIDATOR],
    )
    report = _validate(_response(), builder=builder)
    (item,) = report.logs
    assert item.message == OCSPValidator.FRESHNESS_CHECK.format(
        THIS_UPDATE, VALIDATION_TIME, timedelta(hours=12)
    )


def test_delegated_responder():
    report = _validate(
        _response(responder=OCSP_RESPONDER, embed_responder=True)
    )
    assert report.validation_result == ValidationResult.VALID, str(report)
    assert RevocationDataValidator.TRUSTED_OCSP_RESPONDER in messages(report)


def test_delegated_responder_not_embedded():
    # the responder cannot be located
    report = _validate(_response(responder=OCSP_RESPONDER))
    assert messages(report) == [OCSPValidator.OCSP_COULD_NOT_BE_VERIFIED]
    assert report.validation_result == ValidationResult.INDETERMINATE


def test_rogue_embedded_responder():
    report = _validate(_response(responder=ROGUE_ROOT, embed_responder=True))
    assert messages(report) == [OCSPValidator.INVALID_OCSP]
    assert report.validation_result == ValidationResult.INVALID


def test_self_signed_certificate():
    report = _validate(_response(subject=ROOT, issuer=ROOT), cert=ROOT)
    assert messages(report) == [OCSPValidator.SELF_SIGNED_CERTIFICATE]
