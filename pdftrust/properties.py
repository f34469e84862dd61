"""
Validation policy, expressed as a table of rules keyed by sets of
validation contexts.

Each rule applies to a set of validator contexts, a set of certificate
sources and a set of time-based contexts, and sets one policy parameter.
When a parameter is looked up for a particular
:class:`~pdftrust.context.ValidationContext`, rules set by the user take
precedence over the defaults. Among the matching rules, the most specific
one wins, i.e. the one that covers the fewest context combinations;
ties are resolved in favour of the rule that was added last.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Iterable, List, Optional, Tuple

from .context import (
    CertificateSource,
    TimeBasedContext,
    ValidationContext,
    ValidatorContext,
)
from .extensions import (
    BasicConstraintsExtension,
    CertificateExtension,
    ExtendedKeyUsageExtension,
    KeyUsageExtension,
)

__all__ = [
    'OnlineFetching',
    'ContextSelector',
    'PolicyRule',
    'SignatureValidationProperties',
    'DEFAULT_FRESHNESS_PRESENT',
    'DEFAULT_FRESHNESS_HISTORICAL',
]

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_PRESENT = timedelta(days=30)
DEFAULT_FRESHNESS_HISTORICAL = timedelta(minutes=1)


@enum.unique
class OnlineFetching(enum.Enum):
    """
    Whether revocation data may be fetched from the network.
    """

    ALWAYS_FETCH = enum.auto()
    """
    Always query online sources, in addition to other available data.
    """

    FETCH_IF_NO_OTHER_DATA = enum.auto()
    """
    Only go online when no other revocation data is available.
    """

    NEVER_FETCH = enum.auto()
    """
    Only use revocation data supplied beforehand.
    """


class _Param(enum.Enum):
    CONTINUE_AFTER_FAILURE = 'continue_after_failure'
    FRESHNESS = 'freshness'
    REQUIRED_EXTENSIONS = 'required_extensions'
    ONLINE_FETCHING = 'revocation_online_fetching'


@dataclass(frozen=True)
class ContextSelector:
    """
    Selects a set of validation contexts by means of three sets.
    """

    validator_contexts: frozenset = field(
        default_factory=ValidatorContext.all
    )
    certificate_sources: frozenset = field(
        default_factory=CertificateSource.all
    )
    time_based_contexts: frozenset = field(
        default_factory=TimeBasedContext.all
    )

    @classmethod
    def of(
        cls,
        validator_contexts: Optional[Iterable[ValidatorContext]] = None,
        certificate_sources: Optional[Iterable[CertificateSource]] = None,
        time_based_contexts: Optional[Iterable[TimeBasedContext]] = None,
    ) -> 'ContextSelector':
        """
        Build a selector; any axis left as ``None`` matches everything.
        """
        return cls(
            validator_contexts=(
                ValidatorContext.all()
                if validator_contexts is None
                else frozenset(validator_contexts)
            ),
            certificate_sources=(
                CertificateSource.all()
                if certificate_sources is None
                else frozenset(certificate_sources)
            ),
            time_based_contexts=(
                TimeBasedContext.all()
                if time_based_contexts is None
                else frozenset(time_based_contexts)
            ),
        )

    def matches(self, context: ValidationContext) -> bool:
        return (
            context.validator_context in self.validator_contexts
            and context.certificate_source in self.certificate_sources
            and context.time_based_context in self.time_based_contexts
        )

    @property
    def coverage(self) -> int:
        return (
            len(self.validator_contexts)
            * len(self.certificate_sources)
            * len(self.time_based_contexts)
        )


@dataclass(frozen=True)
class PolicyRule:
    selector: ContextSelector
    parameter: _Param
    value: Any
    user_defined: bool = True


def _default_rules() -> List[PolicyRule]:
    def rule(param, value, **kwargs):
        return PolicyRule(
            ContextSelector.of(**kwargs), param, value, user_defined=False
        )

    return [
        rule(_Param.CONTINUE_AFTER_FAILURE, True),
        rule(
            _Param.FRESHNESS,
            DEFAULT_FRESHNESS_PRESENT,
            time_based_contexts=[TimeBasedContext.PRESENT],
        ),
        rule(
            _Param.FRESHNESS,
            DEFAULT_FRESHNESS_HISTORICAL,
            time_based_contexts=[TimeBasedContext.HISTORICAL],
        ),
        rule(_Param.ONLINE_FETCHING, OnlineFetching.FETCH_IF_NO_OTHER_DATA),
        rule(_Param.REQUIRED_EXTENSIONS, []),
        rule(
            _Param.REQUIRED_EXTENSIONS,
            [KeyUsageExtension('crl_sign')],
            certificate_sources=[CertificateSource.CRL_ISSUER],
        ),
        rule(
            _Param.REQUIRED_EXTENSIONS,
            [ExtendedKeyUsageExtension('ocsp_signing')],
            certificate_sources=[CertificateSource.OCSP_ISSUER],
        ),
        rule(
            _Param.REQUIRED_EXTENSIONS,
            [ExtendedKeyUsageExtension('time_stamping')],
            certificate_sources=[CertificateSource.TIMESTAMP],
        ),
        rule(
            _Param.REQUIRED_EXTENSIONS,
            [KeyUsageExtension('key_cert_sign'), BasicConstraintsExtension()],
            certificate_sources=[CertificateSource.CERT_ISSUER],
        ),
    ]


class SignatureValidationProperties:
    """
    Policy table consulted by all validators.

    The setters accept ``None`` for any axis to mean "all values".
    They return ``self`` so calls can be chained.
    """

    def __init__(self):
        self._rules: List[PolicyRule] = _default_rules()

    def _add_rule(
        self,
        param: _Param,
        value,
        validator_contexts=None,
        certificate_sources=None,
        time_based_contexts=None,
    ) -> 'SignatureValidationProperties':
        selector = ContextSelector.of(
            validator_contexts, certificate_sources, time_based_contexts
        )
        logger.debug(
            "Adding policy rule %s=%r for %s", param.value, value, selector
        )
        self._rules.append(PolicyRule(selector, param, value))
        return self

    def _lookup(self, param: _Param, context: ValidationContext):
        best: Optional[Tuple[Tuple[int, int, int], PolicyRule]] = None
        for ix, rule in enumerate(self._rules):
            if rule.parameter != param or not rule.selector.matches(context):
                continue
            # user rules beat defaults, then narrower beats broader,
            # then later beats earlier
            rank = (int(rule.user_defined), -rule.selector.coverage, ix)
            if best is None or rank > best[0]:
                best = (rank, rule)
        if best is None:  # pragma: nocover
            raise KeyError(f"No policy rule for {param.value} in {context}")
        return best[1].value

    def set_continue_after_failure(
        self,
        value: bool,
        validator_contexts: Optional[Iterable[ValidatorContext]] = None,
        certificate_sources: Optional[Iterable[CertificateSource]] = None,
        time_based_contexts: Optional[Iterable[TimeBasedContext]] = None,
    ) -> 'SignatureValidationProperties':
        return self._add_rule(
            _Param.CONTINUE_AFTER_FAILURE,
            bool(value),
            validator_contexts,
            certificate_sources,
            time_based_contexts,
        )

    def set_freshness(
        self,
        value: timedelta,
        validator_contexts: Optional[Iterable[ValidatorContext]] = None,
        certificate_sources: Optional[Iterable[CertificateSource]] = None,
        time_based_contexts: Optional[Iterable[TimeBasedContext]] = None,
    ) -> 'SignatureValidationProperties':
        if not isinstance(value, timedelta):
            raise TypeError("Freshness must be a timedelta")
        return self._add_rule(
            _Param.FRESHNESS,
            value,
            validator_contexts,
            certificate_sources,
            time_based_contexts,
        )

    def set_required_extensions(
        self,
        value: Iterable[CertificateExtension],
        validator_contexts: Optional[Iterable[ValidatorContext]] = None,
        certificate_sources: Optional[Iterable[CertificateSource]] = None,
        time_based_contexts: Optional[Iterable[TimeBasedContext]] = None,
    ) -> 'SignatureValidationProperties':
        return self._add_rule(
            _Param.REQUIRED_EXTENSIONS,
            list(value),
            validator_contexts,
            certificate_sources,
            time_based_contexts,
        )

    def set_revocation_online_fetching(
        self,
        value: OnlineFetching,
        validator_contexts: Optional[Iterable[ValidatorContext]] = None,
        certificate_sources: Optional[Iterable[CertificateSource]] = None,
        time_based_contexts: Optional[Iterable[TimeBasedContext]] = None,
    ) -> 'SignatureValidationProperties':
        if not isinstance(value, OnlineFetching):
            raise TypeError("Online fetching mode must be an OnlineFetching")
        return self._add_rule(
            _Param.ONLINE_FETCHING,
            value,
            validator_contexts,
            certificate_sources,
            time_based_contexts,
        )

    def get_continue_after_failure(self, context: ValidationContext) -> bool:
        return self._lookup(_Param.CONTINUE_AFTER_FAILURE, context)

    def get_freshness(self, context: ValidationContext) -> timedelta:
        return self._lookup(_Param.FRESHNESS, context)

    def get_required_extensions(
        self, context: ValidationContext
    ) -> List[CertificateExtension]:
        return list(self._lookup(_Param.REQUIRED_EXTENSIONS, context))

    def get_revocation_online_fetching(
        self, context: ValidationContext
    ) -> OnlineFetching:
        return self._lookup(_Param.ONLINE_FETCHING, context)
