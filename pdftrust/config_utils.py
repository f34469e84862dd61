"""
Helpers to turn user-provided configuration (typically parsed from YAML)
into validation settings.

.. note::
    Keys in configuration files use hyphens. They are converted to
    underscores before being passed to Python code.
"""

import dataclasses
import enum
import re
from datetime import timedelta
from typing import Iterable, Iterator, List, Optional, Type, TypeVar

from asn1crypto.core import BitString, ObjectIdentifier

__all__ = [
    'ConfigurationError',
    'ConfigurableMixin',
    'check_config_keys',
    'process_enum',
    'process_enum_list',
    'process_seconds',
    'process_bool',
    'process_file_list',
    'OID_REGEX',
    'process_oids',
    'process_bit_string_flags',
]

E = TypeVar('E', bound=enum.Enum)


class ConfigurationError(ValueError):
    """Signal configuration errors."""

    pass


def _to_yaml_keys(keys: Iterable[str]):
    return {key.replace('_', '-') for key in keys}


def _describe_keys(keys) -> str:
    noun = 'key' if len(keys) == 1 else 'keys'
    return f"{noun} {', '.join(sorted(keys))}"


def check_config_keys(config_name, expected_keys, config_dict):
    """
    Make sure a configuration dictionary only has the keys we expect.
    Whether required keys are present is not checked here.

    :raises ConfigurationError:
        if ``config_dict`` is not a dictionary, or has unexpected keys.
    """
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            f"{config_name} requires a dictionary to initialise."
        )
    unexpected = _to_yaml_keys(config_dict.keys()) - _to_yaml_keys(
        expected_keys
    )
    if unexpected:
        raise ConfigurationError(
            f"Unexpected {_describe_keys(unexpected)} "
            f"in configuration for {config_name}."
        )


@dataclasses.dataclass(frozen=True)
class ConfigurableMixin:
    """
    Mixin for dataclasses that can be instantiated from a configuration
    dictionary.
    """

    @classmethod
    def process_entries(cls, config_dict):
        """
        Hook to convert or validate values in the configuration dictionary
        before the dataclass is instantiated. Keys have already been
        converted to underscore form at this point.

        Overrides should call ``super().process_entries()``.

        :raises ConfigurationError:
            when an entry has an invalid value.
        """
        pass

    @classmethod
    def from_config(cls, config_dict):
        """
        Instantiate the class from a configuration dictionary.

        :raises ConfigurationError:
            when a key is unexpected or missing, or when one of the values
            cannot be processed.
        """
        fields = dataclasses.fields(cls)
        check_config_keys(cls.__name__, {f.name for f in fields}, config_dict)
        config_dict = {
            key.replace('-', '_'): value for key, value in config_dict.items()
        }
        cls.process_entries(config_dict)
        missing = _to_yaml_keys(
            f.name
            for f in fields
            if f.default is dataclasses.MISSING
            and f.default_factory is dataclasses.MISSING
            and f.name not in config_dict
        )
        if missing:
            raise ConfigurationError(
                f"Missing required {_describe_keys(missing)} "
                f"in configuration for {cls.__name__}."
            )
        return cls(**config_dict)


def process_enum(enum_class: Type[E], value, param_name) -> E:
    """
    Look up an enum member by its configuration name, i.e. the member name
    in lower case with hyphens, e.g. ``crl-validator`` for
    ``ValidatorContext.CRL_VALIDATOR``.
    """
    if not isinstance(value, str):
        raise ConfigurationError(
            f"'{param_name}' entries must be strings, not {type(value)}."
        )
    try:
        return enum_class[value.upper().replace('-', '_')]
    except KeyError:
        valid = ', '.join(
            sorted(member.name.lower().replace('_', '-') for member in enum_class)
        )
        raise ConfigurationError(
            f"'{value}' in '{param_name}' is not valid; expected one of {valid}."
        )


def process_enum_list(
    enum_class: Type[E], values, param_name
) -> Optional[List[E]]:
    """
    Process a single enum name or a list of them. ``None`` is passed
    through, meaning "all values".
    """
    if values is None:
        return None
    return [
        process_enum(enum_class, v, param_name)
        for v in _ensure_strings(values, param_name)
    ]


def process_seconds(value, param_name) -> timedelta:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(
            f"'{param_name}' must be a number of seconds, not {value!r}."
        )
    return timedelta(seconds=value)


def process_bool(value, param_name) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"'{param_name}' must be a boolean.")
    return value


def process_file_list(value, param_name) -> List[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(
        isinstance(x, str) for x in value
    ):
        raise ConfigurationError(
            f"'{param_name}' must be a file name or a list of file names."
        )
    return list(value)


def _ensure_strings(strings, param_name):
    if isinstance(strings, str):
        return (strings,)
    if not isinstance(strings, (list, tuple)):
        raise ConfigurationError(
            f"'{param_name}' must be a string or a list of strings."
        )
    return strings


OID_REGEX = re.compile(r'\d(\.\d+)+')


def process_oids(
    asn1crypto_class: Type[ObjectIdentifier], strings, param_name
) -> Iterator[str]:
    """
    Process OIDs given either in dotted form or by their ``asn1crypto``
    name. Dotted OIDs with a known name are translated to that name.
    """
    for id_string in _ensure_strings(strings, param_name):
        if not isinstance(id_string, str):
            raise ConfigurationError(
                f"Identifier {id_string!r} in '{param_name}' is not a string."
            )
        if OID_REGEX.fullmatch(id_string):
            yield asn1crypto_class.map(id_string)
            continue
        try:
            asn1crypto_class.unmap(id_string)
        except ValueError:
            raise ConfigurationError(
                f"'{id_string}' in '{param_name}' is not a valid "
                f"{asn1crypto_class.__name__}."
            )
        yield id_string


def process_bit_string_flags(
    asn1crypto_class: Type[BitString], strings, param_name
) -> Iterator[str]:
    """
    Process flag names of an ``asn1crypto`` bit string type, e.g.
    ``crl_sign`` for :class:`asn1crypto.x509.KeyUsage`.
    """
    valid_values = set(asn1crypto_class._map.values())
    for flag_string in _ensure_strings(strings, param_name):
        if not isinstance(flag_string, str) or flag_string not in valid_values:
            raise ConfigurationError(
                f"{flag_string!r} in '{param_name}' is not a valid "
                f"{asn1crypto_class.__name__} flag name."
            )
        yield flag_string
