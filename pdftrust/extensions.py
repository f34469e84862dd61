"""
Predicates expressing certificate extension requirements.
"""

from typing import Iterable, Optional

from asn1crypto import x509

__all__ = [
    'CertificateExtension',
    'KeyUsageExtension',
    'ExtendedKeyUsageExtension',
    'BasicConstraintsExtension',
    'extensions_from_usage',
]


KEY_USAGE_OID = '2.5.29.15'
EXTENDED_KEY_USAGE_OID = '2.5.29.37'
BASIC_CONSTRAINTS_OID = '2.5.29.19'


class CertificateExtension:
    """
    A certificate extension that is required to be present with a
    particular value.

    :param extension_oid:
        Dotted OID of the extension, used in report messages.
    """

    def __init__(self, extension_oid: str):
        self.extension_oid = extension_oid

    def exists_in_certificate(self, certificate: x509.Certificate) -> bool:
        """
        Check whether the certificate satisfies this requirement.

        :param certificate:
            The certificate to inspect.
        :return:
            ``True`` if the requirement holds.
        """
        raise NotImplementedError

    def __eq__(self, other):
        return type(self) is type(other) and self.__dict__ == other.__dict__

    def __hash__(self):
        return hash((type(self), self.extension_oid))

    def __repr__(self):
        return f"{type(self).__name__}({self.extension_oid})"


class KeyUsageExtension(CertificateExtension):
    """
    Require a set of key usage bits, as named by
    :class:`asn1crypto.x509.KeyUsage`.
    """

    def __init__(self, *key_usage: str):
        super().__init__(KEY_USAGE_OID)
        self.key_usage = frozenset(key_usage)

    def exists_in_certificate(self, certificate: x509.Certificate) -> bool:
        ku_value = certificate.key_usage_value
        if ku_value is None:
            return False
        return self.key_usage <= set(ku_value.native)

    def __repr__(self):
        return f"KeyUsageExtension({', '.join(sorted(self.key_usage))})"


class ExtendedKeyUsageExtension(CertificateExtension):
    """
    Require a set of extended key usage purposes, as named by
    :class:`asn1crypto.x509.KeyPurposeId`.
    A certificate with ``any_extended_key_usage`` satisfies every
    requirement of this kind.
    """

    ANY_EXTENDED_KEY_USAGE = 'any_extended_key_usage'

    def __init__(self, *extended_key_usage: str):
        super().__init__(EXTENDED_KEY_USAGE_OID)
        self.extended_key_usage = frozenset(extended_key_usage)

    def exists_in_certificate(self, certificate: x509.Certificate) -> bool:
        eku_value = certificate.extended_key_usage_value
        if eku_value is None:
            return False
        purposes = set(eku_value.native)
        if self.ANY_EXTENDED_KEY_USAGE in purposes:
            return True
        return self.extended_key_usage <= purposes

    def __repr__(self):
        return (
            f"ExtendedKeyUsageExtension("
            f"{', '.join(sorted(self.extended_key_usage))})"
        )


class BasicConstraintsExtension(CertificateExtension):
    """
    Require the certificate to be a CA certificate.

    :param path_length:
        If not ``None``, the certificate must allow at least this many
        intermediate certificates below it.
    """

    def __init__(self, path_length: Optional[int] = None):
        super().__init__(BASIC_CONSTRAINTS_OID)
        self.path_length = path_length

    def exists_in_certificate(self, certificate: x509.Certificate) -> bool:
        bc_value = certificate.basic_constraints_value
        if bc_value is None or not bc_value['ca'].native:
            return False
        if self.path_length is None:
            return True
        cert_path_len = bc_value['path_len_constraint'].native
        return cert_path_len is None or cert_path_len >= self.path_length

    def __repr__(self):
        return f"BasicConstraintsExtension(path_length={self.path_length})"


def extensions_from_usage(
    key_usage: Iterable[str] = (),
    extended_key_usage: Iterable[str] = (),
    ca: bool = False,
):
    """
    Build a list of extension requirements.

    :param key_usage:
        Key usage bits to require.
    :param extended_key_usage:
        Extended key usage purposes to require.
    :param ca:
        Whether to require the CA flag.
    :return:
        A list of :class:`CertificateExtension` objects.
    """
    result = []
    key_usage = tuple(key_usage)
    extended_key_usage = tuple(extended_key_usage)
    if key_usage:
        result.append(KeyUsageExtension(*key_usage))
    if extended_key_usage:
        result.append(ExtendedKeyUsageExtension(*extended_key_usage))
    if ca:
        result.append(BasicConstraintsExtension())
    return result
