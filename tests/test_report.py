import pytest

from pdftrust.report import (
    CertificateReportItem,
    ReportItem,
    ReportItemStatus,
    ValidationReport,
    ValidationResult,
)

from .pki import SIGNER


def _item(status, message='msg', check='Some check.'):
    return ReportItem(check_name=check, message=message, status=status)


def test_status_ordering():
    assert ReportItemStatus.INFO < ReportItemStatus.INDETERMINATE
    assert ReportItemStatus.INDETERMINATE < ReportItemStatus.INVALID
    assert ReportItemStatus.INVALID >= ReportItemStatus.INVALID
    assert max(ReportItemStatus) == ReportItemStatus.INVALID
    assert ReportItemStatus.INFO != ValidationResult.VALID
    with pytest.raises(TypeError):
        ReportItemStatus.INFO < ValidationResult.INVALID


def test_empty_report_is_valid():
    report = ValidationReport()
    assert report.validation_result == ValidationResult.VALID
    assert len(report) == 0
    assert report.failures == []


@pytest.mark.parametrize(
    'statuses,expected',
    [
        ([ReportItemStatus.INFO], ValidationResult.VALID),
        (
            [ReportItemStatus.INFO, ReportItemStatus.INDETERMINATE],
            ValidationResult.INDETERMINATE,
        ),
        (
            [
                ReportItemStatus.INVALID,
                ReportItemStatus.INDETERMINATE,
                ReportItemStatus.INFO,
            ],
            ValidationResult.INVALID,
        ),
    ],
)
def test_result_is_worst_status(statuses, expected):
    report = ValidationReport()
    for status in statuses:
        report.add_report_item(_item(status))
    assert report.validation_result == expected


def test_failures_and_certificate_items():
    cert_item = CertificateReportItem(
        check_name='Certificate check.',
        message='bad',
        status=ReportItemStatus.INVALID,
        certificate=SIGNER.cert,
    )
    report = ValidationReport(
        [_item(ReportItemStatus.INFO), cert_item, _item(ReportItemStatus.INFO)]
    )
    assert report.failures == [cert_item]
    assert report.certificate_logs == [cert_item]
    assert report.certificate_failures == [cert_item]
    assert 'Test Signer' in str(cert_item)


def test_merge_preserves_order():
    first = ValidationReport([_item(ReportItemStatus.INFO, message='a')])
    second = ValidationReport(
        [
            _item(ReportItemStatus.INDETERMINATE, message='b'),
            _item(ReportItemStatus.INFO, message='c'),
        ]
    )
    assert first.merge(second) is first
    assert [item.message for item in first.logs] == ['a', 'b', 'c']
    assert first.validation_result == ValidationResult.INDETERMINATE
    # the other report is left alone
    assert len(second) == 2


def test_report_str():
    report = ValidationReport(
        [_item(ReportItemStatus.INVALID, message='broken', check='X check.')]
    )
    lines = str(report).splitlines()
    assert lines[0] == 'Validation result: INVALID'
    assert lines[1].strip() == 'X check.: broken (INVALID)'


def test_items_compare_without_cause():
    with_cause = ReportItem(
        check_name='c',
        message='m',
        status=ReportItemStatus.INFO,
        exception_cause=ValueError('x'),
    )
    assert with_cause == _item(ReportItemStatus.INFO, message='m', check='c')
    assert 'caused by' in str(with_cause)
