"""
YAML configuration for the ``pdftrust`` command line tool.

The configuration file has three top-level sections, all optional:
``logging``, ``trust`` and ``validation``.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import yaml
from asn1crypto import x509

from .builder import ValidatorChainBuilder
from .config_utils import (
    ConfigurableMixin,
    ConfigurationError,
    check_config_keys,
    process_bit_string_flags,
    process_bool,
    process_enum,
    process_enum_list,
    process_file_list,
    process_oids,
    process_seconds,
)
from .context import CertificateSource, TimeBasedContext, ValidatorContext
from .extensions import extensions_from_usage
from .properties import OnlineFetching, SignatureValidationProperties
from .util import load_certs_from_pemder

__all__ = [
    'StdLogOutput',
    'LogConfig',
    'DEFAULT_ROOT_LOGGER_LEVEL',
    'parse_logging_config',
    'TrustConfig',
    'parse_validation_config',
    'CLIConfig',
    'parse_cli_config',
]

logger = logging.getLogger(__name__)


class StdLogOutput(enum.Enum):
    STDERR = enum.auto()
    STDOUT = enum.auto()


@dataclass(frozen=True)
class LogConfig:
    level: Union[int, str]
    """
    Level for the logger, in any form :meth:`logging.Logger.setLevel`
    accepts.
    """

    output: Union[StdLogOutput, str]
    """
    Standard stream to log to, or the name of a log file.
    """

    @staticmethod
    def parse_output_spec(spec) -> Union[StdLogOutput, str]:
        """
        ``stderr`` and ``stdout`` (in any case) select a standard stream,
        anything else is taken as a file name.
        """
        if not isinstance(spec, str):
            raise ConfigurationError(
                f"Log output must be a string, not {type(spec)}."
            )
        try:
            return StdLogOutput[spec.upper()]
        except KeyError:
            return spec


DEFAULT_ROOT_LOGGER_LEVEL = logging.INFO

FETCHER_LOGGER_NAME = 'pdftrust.fetchers'


def _log_level(value, where: str) -> Union[int, str]:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigurationError(
            f"Log level for {where} must be a name or a number, "
            f"not {value!r}."
        )
    return value


def _module_log_config(module, settings) -> LogConfig:
    if not isinstance(module, str):
        raise ConfigurationError(
            f"Logger names in logging.by-module must be strings, "
            f"not {module!r}."
        )
    where = f"logging.by-module.{module}"
    check_config_keys(where, ('level', 'output'), settings)
    if 'level' not in settings:
        raise ConfigurationError(f"No log level given for {where}.")
    return LogConfig(
        level=_log_level(settings['level'], where),
        output=LogConfig.parse_output_spec(settings.get('output', 'stderr')),
    )


def parse_logging_config(log_config_spec) -> Dict[Optional[str], LogConfig]:
    """
    Parse the ``logging`` section of the configuration.

    :param log_config_spec:
        A dictionary with the optional keys ``root-level``, ``root-output``
        and ``by-module``.
    :return:
        A dictionary mapping logger names to :class:`LogConfig` objects.
        The root logger is keyed by ``None``.
    """
    check_config_keys(
        'logging', ('root-level', 'root-output', 'by-module'), log_config_spec
    )
    root_level = log_config_spec.get('root-level', DEFAULT_ROOT_LOGGER_LEVEL)
    root_output = log_config_spec.get('root-output', 'stderr')
    result: Dict[Optional[str], LogConfig] = {
        None: LogConfig(
            level=_log_level(root_level, 'the root logger'),
            output=LogConfig.parse_output_spec(root_output),
        )
    }
    by_module = log_config_spec.get('by-module', {})
    if not isinstance(by_module, dict):
        raise ConfigurationError(
            "logging.by-module must map logger names to settings."
        )
    for module, settings in by_module.items():
        result[module] = _module_log_config(module, settings)
    return result


_TRUST_FIELDS = (
    'trusted',
    'ca_trusted',
    'ocsp_trusted',
    'crl_trusted',
    'timestamp_trusted',
    'known',
)


@dataclass(frozen=True)
class TrustConfig(ConfigurableMixin):
    """
    Certificate files to load into the trust store.
    Each entry accepts a single file name or a list of file names;
    files may contain DER or (multiple) PEM certificates.
    """

    trusted: List[str] = field(default_factory=list)
    """Certificates trusted for every purpose."""

    ca_trusted: List[str] = field(default_factory=list)
    """Certificates trusted to issue other certificates."""

    ocsp_trusted: List[str] = field(default_factory=list)
    """Certificates trusted to sign OCSP responses."""

    crl_trusted: List[str] = field(default_factory=list)
    """Certificates trusted to sign CRLs."""

    timestamp_trusted: List[str] = field(default_factory=list)
    """Certificates trusted to sign timestamp tokens."""

    known: List[str] = field(default_factory=list)
    """Untrusted certificates available for path building."""

    @classmethod
    def process_entries(cls, config_dict):
        super().process_entries(config_dict)
        for key in _TRUST_FIELDS:
            if key in config_dict:
                config_dict[key] = process_file_list(
                    config_dict[key], key.replace('_', '-')
                )

    @staticmethod
    def _load(files, param_name) -> list:
        try:
            return list(load_certs_from_pemder(files))
        except (IOError, ValueError) as e:
            raise ConfigurationError(
                f"Failed to load certificates for '{param_name}': {e}"
            ) from e

    def apply_to(self, builder: ValidatorChainBuilder) -> ValidatorChainBuilder:
        """
        Load the configured certificates into a validator chain builder.

        :raises ConfigurationError:
            if one of the files cannot be read or parsed.
        """
        if self.trusted:
            builder.with_trusted_certificates(self._load(self.trusted, 'trusted'))
        if self.known:
            builder.with_known_certificates(self._load(self.known, 'known'))
        store = builder.certificate_retriever.get_trusted_certificates_store()
        if self.ca_trusted:
            store.add_ca_trusted_certificates(
                self._load(self.ca_trusted, 'ca-trusted')
            )
        if self.ocsp_trusted:
            store.add_ocsp_trusted_certificates(
                self._load(self.ocsp_trusted, 'ocsp-trusted')
            )
        if self.crl_trusted:
            store.add_crl_trusted_certificates(
                self._load(self.crl_trusted, 'crl-trusted')
            )
        if self.timestamp_trusted:
            store.add_timestamp_trusted_certificates(
                self._load(self.timestamp_trusted, 'timestamp-trusted')
            )
        return builder


_SELECTOR_KEYS = (
    'validator-contexts',
    'certificate-sources',
    'time-based-contexts',
)

_PARAMETER_KEYS = ('continue-after-failure', 'freshness', 'online-fetching')


def _selector_kwargs(rule_spec, where) -> dict:
    return {
        'validator_contexts': process_enum_list(
            ValidatorContext,
            rule_spec.get('validator-contexts'),
            f'{where}.validator-contexts',
        ),
        'certificate_sources': process_enum_list(
            CertificateSource,
            rule_spec.get('certificate-sources'),
            f'{where}.certificate-sources',
        ),
        'time_based_contexts': process_enum_list(
            TimeBasedContext,
            rule_spec.get('time-based-contexts'),
            f'{where}.time-based-contexts',
        ),
    }


def _apply_parameters(
    properties: SignatureValidationProperties, spec, where, **selector
):
    if 'continue-after-failure' in spec:
        properties.set_continue_after_failure(
            process_bool(
                spec['continue-after-failure'],
                f'{where}.continue-after-failure',
            ),
            **selector,
        )
    if 'freshness' in spec:
        properties.set_freshness(
            process_seconds(spec['freshness'], f'{where}.freshness'),
            **selector,
        )
    if 'online-fetching' in spec:
        properties.set_revocation_online_fetching(
            process_enum(
                OnlineFetching,
                spec['online-fetching'],
                f'{where}.online-fetching',
            ),
            **selector,
        )


def _parse_required_extensions(spec, where):
    check_config_keys(
        where, _SELECTOR_KEYS + ('key-usage', 'extended-key-usage', 'ca'), spec
    )
    key_usage = list(
        process_bit_string_flags(
            x509.KeyUsage, spec.get('key-usage', ()), f'{where}.key-usage'
        )
    )
    extended_key_usage = list(
        process_oids(
            x509.KeyPurposeId,
            spec.get('extended-key-usage', ()),
            f'{where}.extended-key-usage',
        )
    )
    ca = process_bool(spec.get('ca', False), f'{where}.ca')
    return extensions_from_usage(key_usage, extended_key_usage, ca)


def parse_validation_config(
    validation_spec,
    properties: Optional[SignatureValidationProperties] = None,
) -> SignatureValidationProperties:
    """
    Parse the ``validation`` section of the configuration into a policy
    table.

    Top-level parameters apply to every context. Entries under ``rules``
    and ``required-extensions`` are scoped by the optional keys
    ``validator-contexts``, ``certificate-sources`` and
    ``time-based-contexts``; an absent key matches every value.

    :param validation_spec:
        The configuration dictionary.
    :param properties:
        Policy table to add rules to. A fresh one is created if omitted.
    :return:
        The policy table.
    """
    if properties is None:
        properties = SignatureValidationProperties()
    check_config_keys(
        'validation',
        _PARAMETER_KEYS + ('rules', 'required-extensions'),
        validation_spec,
    )
    _apply_parameters(properties, validation_spec, 'validation')

    rules = validation_spec.get('rules', [])
    if not isinstance(rules, list):
        raise ConfigurationError("'validation.rules' must be a list.")
    for ix, rule_spec in enumerate(rules):
        where = f'validation.rules[{ix}]'
        check_config_keys(where, _SELECTOR_KEYS + _PARAMETER_KEYS, rule_spec)
        _apply_parameters(
            properties, rule_spec, where, **_selector_kwargs(rule_spec, where)
        )

    required_extensions = validation_spec.get('required-extensions', [])
    if not isinstance(required_extensions, list):
        raise ConfigurationError(
            "'validation.required-extensions' must be a list."
        )
    for ix, ext_spec in enumerate(required_extensions):
        where = f'validation.required-extensions[{ix}]'
        extensions = _parse_required_extensions(ext_spec, where)
        properties.set_required_extensions(
            extensions, **_selector_kwargs(ext_spec, where)
        )
    return properties


@dataclass
class CLIConfig:
    log_config: Dict[Optional[str], LogConfig]
    trust: TrustConfig
    validation_properties: SignatureValidationProperties
    raw_config: dict = field(default_factory=dict)

    def create_chain_builder(self) -> ValidatorChainBuilder:
        """
        Create a validator chain builder populated with the configured
        policy and trust settings.
        """
        builder = ValidatorChainBuilder().with_signature_validation_properties(
            self.validation_properties
        )
        return self.trust.apply_to(builder)


def parse_cli_config(yaml_str) -> CLIConfig:
    config_dict = yaml.safe_load(yaml_str) or {}
    check_config_keys('pdftrust', ('logging', 'trust', 'validation'), config_dict)

    log_config = parse_logging_config(config_dict.get('logging', {}))
    trust = TrustConfig.from_config(config_dict.get('trust', {}))
    validation_properties = parse_validation_config(
        config_dict.get('validation', {})
    )
    logger.debug("Parsed configuration with sections %s", sorted(config_dict))
    return CLIConfig(
        log_config=log_config,
        trust=trust,
        validation_properties=validation_properties,
        raw_config=config_dict,
    )
