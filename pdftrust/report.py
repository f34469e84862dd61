"""
Report model for trust and document validation.

All validators in this package record their findings as
:class:`ReportItem` objects appended to a shared :class:`ValidationReport`.
Policy violations never raise; the overall verdict is derived from the
items at query time.
"""

import enum
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from asn1crypto import x509

from .util import OrderedEnum

__all__ = [
    'ReportItemStatus',
    'ValidationResult',
    'ReportItem',
    'CertificateReportItem',
    'ValidationReport',
]


@enum.unique
class ReportItemStatus(OrderedEnum):
    """
    Severity of a single report item, ordered from least to most severe.
    """

    INFO = 0
    """
    Informational entry, does not affect the outcome.
    """

    INDETERMINATE = 1
    """
    The check could not be completed conclusively.
    """

    INVALID = 2
    """
    The check failed.
    """


@enum.unique
class ValidationResult(enum.Enum):
    """
    Overall verdict of a :class:`ValidationReport`.
    """

    VALID = 0
    INDETERMINATE = 1
    INVALID = 2

    @classmethod
    def from_status(cls, status: ReportItemStatus) -> 'ValidationResult':
        if status == ReportItemStatus.INVALID:
            return cls.INVALID
        elif status == ReportItemStatus.INDETERMINATE:
            return cls.INDETERMINATE
        return cls.VALID


@dataclass(frozen=True)
class ReportItem:
    """
    A single finding produced by a validator.
    """

    check_name: str
    """
    Name of the check that produced this item.
    """

    message: str
    """
    Human-readable, fully formatted message.
    """

    status: ReportItemStatus
    """
    Severity of the finding.
    """

    exception_cause: Optional[BaseException] = field(
        default=None, compare=False
    )
    """
    Exception that caused this finding, if any.
    """

    def __str__(self):
        result = f"{self.check_name}: {self.message} ({self.status.name})"
        if self.exception_cause is not None:
            result += f"; caused by {self.exception_cause!r}"
        return result


@dataclass(frozen=True)
class CertificateReportItem(ReportItem):
    """
    A finding about a particular certificate.
    """

    certificate: Optional[x509.Certificate] = field(
        default=None, compare=False
    )
    """
    The certificate this finding is about.
    """

    def __str__(self):
        base = super().__str__()
        if self.certificate is None:
            return base
        subject = self.certificate.subject.human_friendly
        return f"{base} [certificate: {subject}]"


class ValidationReport:
    """
    Insertion-ordered collection of report items.

    The validation result is never stored; it is computed from the items
    every time it is requested.
    """

    def __init__(self, items: Optional[Iterable[ReportItem]] = None):
        self._items: List[ReportItem] = list(items or ())

    def add_report_item(self, item: ReportItem) -> 'ValidationReport':
        """
        Append a report item.

        :param item:
            The item to add.
        :return:
            This report, to allow chaining.
        """
        self._items.append(item)
        return self

    def merge(self, other: 'ValidationReport') -> 'ValidationReport':
        """
        Append all items of another report, preserving their order.
        """
        for item in other.logs:
            self.add_report_item(item)
        return self

    @property
    def logs(self) -> List[ReportItem]:
        return list(self._items)

    @property
    def failures(self) -> List[ReportItem]:
        return [
            item
            for item in self._items
            if item.status != ReportItemStatus.INFO
        ]

    @property
    def certificate_logs(self) -> List[CertificateReportItem]:
        return [
            item
            for item in self._items
            if isinstance(item, CertificateReportItem)
        ]

    @property
    def certificate_failures(self) -> List[CertificateReportItem]:
        return [
            item
            for item in self.certificate_logs
            if item.status != ReportItemStatus.INFO
        ]

    @property
    def validation_result(self) -> ValidationResult:
        worst = max(
            (item.status for item in self._items),
            default=ReportItemStatus.INFO,
        )
        return ValidationResult.from_status(worst)

    def __len__(self):
        return len(self._items)

    def __str__(self):
        lines = [f"Validation result: {self.validation_result.name}"]
        lines.extend(f"  {item}" for item in self._items)
        return '\n'.join(lines)
