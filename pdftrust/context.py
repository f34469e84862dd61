import enum
from dataclasses import dataclass, replace
from typing import FrozenSet

__all__ = [
    'ValidatorContext',
    'CertificateSource',
    'TimeBasedContext',
    'ValidationContext',
]


@enum.unique
class ValidatorContext(enum.Enum):
    """
    Identifies the validator that is currently active.
    """

    OCSP_VALIDATOR = enum.auto()
    CRL_VALIDATOR = enum.auto()
    REVOCATION_DATA_VALIDATOR = enum.auto()
    CERTIFICATE_CHAIN_VALIDATOR = enum.auto()
    SIGNATURE_VALIDATOR = enum.auto()
    DOCUMENT_REVISIONS_VALIDATOR = enum.auto()

    @classmethod
    def all(cls) -> FrozenSet['ValidatorContext']:
        return frozenset(cls)


@enum.unique
class CertificateSource(enum.Enum):
    """
    Role of the certificate under validation.
    """

    SIGNER_CERT = enum.auto()
    CERT_ISSUER = enum.auto()
    CRL_ISSUER = enum.auto()
    OCSP_ISSUER = enum.auto()
    TIMESTAMP = enum.auto()
    ROOT_CERT = enum.auto()

    @classmethod
    def all(cls) -> FrozenSet['CertificateSource']:
        return frozenset(cls)


@enum.unique
class TimeBasedContext(enum.Enum):
    """
    Whether the validation date is the present moment or a point in the
    past established by some proof of existence.
    """

    PRESENT = enum.auto()
    HISTORICAL = enum.auto()

    @classmethod
    def all(cls) -> FrozenSet['TimeBasedContext']:
        return frozenset(cls)


@dataclass(frozen=True)
class ValidationContext:
    """
    Immutable description of where in the validation process a check
    happens. The ``set_*`` methods return a modified copy.
    """

    validator_context: ValidatorContext
    """
    The validator currently executing.
    """

    certificate_source: CertificateSource
    """
    The role of the certificate being validated.
    """

    time_based_context: TimeBasedContext = TimeBasedContext.PRESENT
    """
    Whether the validation date is the current time.
    """

    def set_validator_context(
        self, validator_context: ValidatorContext
    ) -> 'ValidationContext':
        return replace(self, validator_context=validator_context)

    def set_certificate_source(
        self, certificate_source: CertificateSource
    ) -> 'ValidationContext':
        return replace(self, certificate_source=certificate_source)

    def set_time_based_context(
        self, time_based_context: TimeBasedContext
    ) -> 'ValidationContext':
        return replace(self, time_based_context=time_based_context)

    @classmethod
    def for_chain_validation(
        cls,
        certificate_source: CertificateSource,
        time_based_context: TimeBasedContext = TimeBasedContext.PRESENT,
    ) -> 'ValidationContext':
        return cls(
            ValidatorContext.CERTIFICATE_CHAIN_VALIDATOR,
            certificate_source,
            time_based_context,
        )

    def __str__(self):
        return (
            f"{self.validator_context.name}/{self.certificate_source.name}/"
            f"{self.time_based_context.name}"
        )
