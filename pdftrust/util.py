import functools
import hashlib
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Iterator, List

from asn1crypto import algos, crl, ocsp, pem, x509
from asn1crypto.keys import PublicKeyInfo
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import (
    dsa,
    ec,
    ed448,
    ed25519,
    padding,
    rsa,
)

from .errors import CertificateExpiredError, CertificateNotYetValidError

__all__ = [
    'validate_sig',
    'verify_certificate_signature',
    'verify_crl_signature',
    'verify_ocsp_signature',
    'is_self_signed',
    'check_validity',
    'cert_fingerprint',
    'get_pyca_cryptography_hash',
    'load_certs_from_pemder',
    'ensure_aware',
    'now',
    'signature_verifies',
    'load_der_or_pem',
    'load_crl',
    'load_basic_ocsp_response',
    'OrderedEnum',
]

logger = logging.getLogger(__name__)


def now() -> datetime:
    return datetime.now(tz=timezone.utc)


def ensure_aware(moment: datetime) -> datetime:
    """
    Interpret naive datetimes as UTC.
    """
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def get_pyca_cryptography_hash(algorithm: str) -> hashes.HashAlgorithm:
    """
    Translate an ``asn1crypto`` digest name into a ``cryptography`` hash.
    """
    if algorithm.lower() == 'shake256':
        return hashes.SHAKE256(digest_size=64)
    return getattr(hashes, algorithm.upper())()


def _pss_padding(parameters) -> padding.PSS:
    if not isinstance(parameters, algos.RSASSAPSSParams):
        raise InvalidSignature("RSASSA-PSS signature without parameters")
    mgf = parameters['mask_gen_algorithm']
    if mgf['algorithm'].native != 'mgf1':
        raise NotImplementedError("Only MGF1 is supported for RSASSA-PSS")
    mgf_hash = get_pyca_cryptography_hash(mgf['parameters']['algorithm'].native)
    return padding.PSS(
        mgf=padding.MGF1(algorithm=mgf_hash),
        salt_length=parameters['salt_length'].native,
    )


def _verify_rsa_pkcs1(key, signature, data, hash_algo, parameters):
    key.verify(
        signature, data, padding.PKCS1v15(), get_pyca_cryptography_hash(hash_algo)
    )


def _verify_rsa_pss(key, signature, data, hash_algo, parameters):
    key.verify(
        signature,
        data,
        _pss_padding(parameters),
        get_pyca_cryptography_hash(hash_algo),
    )


def _verify_dsa(key, signature, data, hash_algo, parameters):
    key.verify(signature, data, get_pyca_cryptography_hash(hash_algo))


def _verify_ecdsa(key, signature, data, hash_algo, parameters):
    key.verify(
        signature, data, ec.ECDSA(get_pyca_cryptography_hash(hash_algo))
    )


def _verify_eddsa(key, signature, data, hash_algo, parameters):
    key.verify(signature, data)


# signature mechanism -> (expected key type, verification routine)
_VERIFIERS = {
    'rsassa_pkcs1v15': (rsa.RSAPublicKey, _verify_rsa_pkcs1),
    'rsassa_pss': (rsa.RSAPublicKey, _verify_rsa_pss),
    'dsa': (dsa.DSAPublicKey, _verify_dsa),
    'ecdsa': (ec.EllipticCurvePublicKey, _verify_ecdsa),
    'ed25519': (ed25519.Ed25519PublicKey, _verify_eddsa),
    'ed448': (ed448.Ed448PublicKey, _verify_eddsa),
}


def _load_public_key(public_key_info: PublicKeyInfo, parameters):
    if public_key_info.algorithm == 'rsassa_pss':
        # cryptography only loads PSS-restricted keys as plain RSA keys
        key_params = public_key_info['algorithm']['parameters'].native
        if (
            key_params is not None
            and parameters is not None
            and key_params != parameters.native
        ):
            raise InvalidSignature(
                "PSS parameters of the key and the signature differ"
            )
        public_key_info = public_key_info.copy()
        public_key_info['algorithm'] = {'algorithm': 'rsa'}
    return serialization.load_der_public_key(public_key_info.dump())


def validate_sig(
    signature: bytes,
    signed_data: bytes,
    public_key_info: PublicKeyInfo,
    sig_algo: str,
    hash_algo: str,
    parameters=None,
):
    """
    Verify a signature with a public key.

    :param sig_algo:
        Signature mechanism, as named by
        :attr:`asn1crypto.algos.SignedDigestAlgorithm.signature_algo`.
    :param hash_algo:
        Digest algorithm name. Ignored for EdDSA.
    :param parameters:
        Algorithm parameters, only relevant for RSASSA-PSS.
    :raises InvalidSignature:
        if the signature does not verify.
    :raises NotImplementedError:
        if the signature mechanism is not supported.
    """
    try:
        key_type, verify = _VERIFIERS[sig_algo]
    except KeyError:
        raise NotImplementedError(
            f"Signature mechanism {sig_algo} is not supported."
        )
    key = _load_public_key(public_key_info, parameters)
    if not isinstance(key, key_type):
        raise InvalidSignature(
            f"{type(key).__name__} cannot verify {sig_algo} signatures"
        )
    verify(key, signature, signed_data, hash_algo, parameters)


def _verify_signed_object(tbs, signature_algorithm, signature, signer_key):
    validate_sig(
        signature=signature,
        signed_data=tbs.dump(),
        public_key_info=signer_key,
        sig_algo=signature_algorithm.signature_algo,
        hash_algo=signature_algorithm.hash_algo,
        parameters=signature_algorithm['parameters'],
    )


def verify_certificate_signature(
    cert: x509.Certificate, issuer: x509.Certificate
):
    """
    Verify the signature on a certificate using the public key of a
    purported issuer.

    :raises InvalidSignature:
        if the signature does not verify.
    """
    _verify_signed_object(
        cert['tbs_certificate'],
        cert['signature_algorithm'],
        cert['signature_value'].native,
        issuer.public_key,
    )


def verify_crl_signature(
    certificate_list: crl.CertificateList, issuer: x509.Certificate
):
    _verify_signed_object(
        certificate_list['tbs_cert_list'],
        certificate_list['signature_algorithm'],
        certificate_list['signature'].native,
        issuer.public_key,
    )


def verify_ocsp_signature(
    basic_response: ocsp.BasicOCSPResponse, responder: x509.Certificate
):
    _verify_signed_object(
        basic_response['tbs_response_data'],
        basic_response['signature_algorithm'],
        basic_response['signature'].native,
        responder.public_key,
    )


def signature_verifies(verify_fn, *args) -> bool:
    """
    Run one of the ``verify_*`` functions, returning a boolean instead of
    raising.
    """
    try:
        verify_fn(*args)
    except (InvalidSignature, ValueError, NotImplementedError) as e:
        logger.debug("Signature verification failed", exc_info=e)
        return False
    return True


def is_self_signed(cert: x509.Certificate) -> bool:
    """
    Check whether a certificate is self-issued and verifiable with its own
    public key.
    """
    return cert.subject == cert.issuer and signature_verifies(
        verify_certificate_signature, cert, cert
    )


def check_validity(cert: x509.Certificate, moment: datetime):
    """
    Check whether ``moment`` lies within the validity period of ``cert``.

    :raises CertificateExpiredError:
        if the certificate expired before ``moment``.
    :raises CertificateNotYetValidError:
        if the certificate only becomes valid after ``moment``.
    """
    validity = cert['tbs_certificate']['validity']
    not_before = validity['not_before'].native
    not_after = validity['not_after'].native
    if moment > not_after:
        raise CertificateExpiredError(
            f"Certificate expired on {not_after.isoformat()}", moment
        )
    if moment < not_before:
        raise CertificateNotYetValidError(
            f"Certificate not valid until {not_before.isoformat()}", moment
        )


def cert_fingerprint(cert: x509.Certificate) -> bytes:
    return hashlib.sha256(cert.dump()).digest()


def load_der_or_pem(data: bytes) -> List[bytes]:
    """
    Return the DER payloads contained in a blob that is either DER, or
    PEM with one or more blocks.
    """
    if not pem.detect(data):
        return [data]
    return [der for _, _, der in pem.unarmor(data, multiple=True)]


def load_certs_from_pemder(
    cert_files: Iterable[str],
) -> Iterator[x509.Certificate]:
    """
    Load certificates from files. Each file holds either a single
    DER-encoded certificate, or any number of PEM blocks. PEM blocks that
    do not contain certificates are skipped.
    """
    for fname in cert_files:
        with open(fname, 'rb') as inf:
            data = inf.read()
        if not pem.detect(data):
            yield x509.Certificate.load(data)
            continue
        for block_type, _, der in pem.unarmor(data, multiple=True):
            if block_type.upper() in ('CERTIFICATE', 'X509 CERTIFICATE'):
                yield x509.Certificate.load(der)
            else:
                logger.debug("Skipping %s block in %s", block_type, fname)


def load_crl(data: bytes) -> crl.CertificateList:
    """
    Parse a DER-encoded CRL, forcing the parse of its validity dates.
    """
    result = crl.CertificateList.load(data)
    result['tbs_cert_list']['this_update'].native
    return result


def load_basic_ocsp_response(data: bytes) -> ocsp.BasicOCSPResponse:
    """
    Parse a DER-encoded OCSP response and return its basic response.

    :raises ValueError:
        if the response status is not 'successful', or the data
        is malformed.
    """
    response = ocsp.OCSPResponse.load(data)
    status = response['response_status'].native
    if status != 'successful':
        raise ValueError(f"OCSP response status is '{status}'")
    basic = response.basic_ocsp_response
    # force parsing of the parts we rely on
    basic['tbs_response_data']['produced_at'].native
    len(basic['tbs_response_data']['responses'])
    return basic


@functools.total_ordering
class OrderedEnum(Enum):
    """
    Enum whose members compare by value, within the same enum.
    """

    def __lt__(self, other):
        if self.__class__ is other.__class__:
            return self.value < other.value
        return NotImplemented
