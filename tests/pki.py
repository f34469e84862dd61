"""
A small PKI for testing, generated on import.

All certificates use ECDSA P-256 keys. The hierarchy looks like this::

    Test Root
    +-- Test Intermediate
    |   +-- Intermediate Signer
    +-- Test Signer
    +-- Expired Signer
    +-- Test OCSP Responder  (ocsp_signing, id-pkix-ocsp-nocheck)
    +-- Test TSA             (time_stamping)

    Rogue Root (self-signed, unrelated)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Tuple

from asn1crypto import algos, cms, crl, ocsp, tsp, x509
from cryptography import x509 as cx509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509 import ocsp as cocsp
from cryptography.x509.oid import (
    AuthorityInformationAccessOID,
    ExtendedKeyUsageOID,
    NameOID,
)

from pdftrust.util import load_basic_ocsp_response, load_crl

VALIDATION_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

VALIDITY_ASSURED_OID = cx509.ObjectIdentifier('0.4.0.194121.2.1')

KEY_USAGE_FLAGS = (
    'digital_signature',
    'content_commitment',
    'key_encipherment',
    'data_encipherment',
    'key_agreement',
    'key_cert_sign',
    'crl_sign',
    'encipher_only',
    'decipher_only',
)


def _naive(moment: datetime) -> datetime:
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def _name(common_name: str) -> cx509.Name:
    return cx509.Name(
        [
            cx509.NameAttribute(NameOID.ORGANIZATION_NAME, 'pdftrust tests'),
            cx509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )


def _sha256(data: bytes) -> bytes:
    md = hashes.Hash(hashes.SHA256())
    md.update(data)
    return md.finalize()


@dataclass(frozen=True)
class Party:
    key: ec.EllipticCurvePrivateKey
    crypto_cert: cx509.Certificate
    cert: x509.Certificate

    def sign(self, data: bytes) -> bytes:
        return self.key.sign(data, ec.ECDSA(hashes.SHA256()))


def issue(
    common_name: str,
    issuer: Optional[Party],
    *,
    serial: int,
    not_before: datetime = datetime(2020, 1, 1, tzinfo=timezone.utc),
    not_after: datetime = datetime(2040, 1, 1, tzinfo=timezone.utc),
    ca: bool = False,
    key_usage: Iterable[str] = (),
    extended_key_usage: Iterable[cx509.ObjectIdentifier] = (),
    ocsp_no_check: bool = False,
    validity_assured: bool = False,
    crl_url: Optional[str] = None,
    ocsp_url: Optional[str] = None,
) -> Party:
    """
    Issue a certificate. If ``issuer`` is ``None``, the certificate is
    self-signed. ``crl_url`` and ``ocsp_url`` end up in the CRL
    distribution points and authority information access extensions.
    ``validity_assured`` adds the ETSI validity-assured short-term
    extension.
    """
    key = ec.generate_private_key(ec.SECP256R1())
    subject = _name(common_name)
    if issuer is None:
        issuer_name, signing_key = subject, key
    else:
        issuer_name, signing_key = issuer.crypto_cert.subject, issuer.key
    builder = (
        cx509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(serial)
        .not_valid_before(_naive(not_before))
        .not_valid_after(_naive(not_after))
        .add_extension(
            cx509.BasicConstraints(ca=ca, path_length=None), critical=True
        )
        .add_extension(
            cx509.SubjectKeyIdentifier.from_public_key(key.public_key()),
            critical=False,
        )
    )
    key_usage = set(key_usage)
    if key_usage:
        builder = builder.add_extension(
            cx509.KeyUsage(**{f: f in key_usage for f in KEY_USAGE_FLAGS}),
            critical=True,
        )
    extended_key_usage = list(extended_key_usage)
    if extended_key_usage:
        builder = builder.add_extension(
            cx509.ExtendedKeyUsage(extended_key_usage), critical=False
        )
    if ocsp_no_check:
        builder = builder.add_extension(cx509.OCSPNoCheck(), critical=False)
    if validity_assured:
        builder = builder.add_extension(
            cx509.UnrecognizedExtension(VALIDITY_ASSURED_OID, b'\x05\x00'),
            critical=False,
        )
    if crl_url:
        builder = builder.add_extension(
            cx509.CRLDistributionPoints(
                [
                    cx509.DistributionPoint(
                        full_name=[cx509.UniformResourceIdentifier(crl_url)],
                        relative_name=None,
                        reasons=None,
                        crl_issuer=None,
                    )
                ]
            ),
            critical=False,
        )
    if ocsp_url:
        builder = builder.add_extension(
            cx509.AuthorityInformationAccess(
                [
                    cx509.AccessDescription(
                        AuthorityInformationAccessOID.OCSP,
                        cx509.UniformResourceIdentifier(ocsp_url),
                    )
                ]
            ),
            critical=False,
        )
    crypto_cert = builder.sign(signing_key, hashes.SHA256())
    cert = x509.Certificate.load(
        crypto_cert.public_bytes(serialization.Encoding.DER)
    )
    return Party(key=key, crypto_cert=crypto_cert, cert=cert)


ROOT = issue(
    'Test Root',
    None,
    serial=1,
    ca=True,
    key_usage=('key_cert_sign', 'crl_sign', 'digital_signature'),
)
INTERMEDIATE = issue(
    'Test Intermediate',
    ROOT,
    serial=2,
    not_after=datetime(2035, 1, 1, tzinfo=timezone.utc),
    ca=True,
    key_usage=('key_cert_sign', 'crl_sign', 'digital_signature'),
)
SIGNER = issue(
    'Test Signer',
    ROOT,
    serial=1001,
    not_before=datetime(2023, 1, 1, tzinfo=timezone.utc),
    not_after=datetime(2030, 1, 1, tzinfo=timezone.utc),
    key_usage=('digital_signature', 'content_commitment'),
)
EXPIRED_SIGNER = issue(
    'Expired Signer',
    ROOT,
    serial=1002,
    not_after=datetime(2021, 1, 1, tzinfo=timezone.utc),
    key_usage=('digital_signature', 'content_commitment'),
)
INTERMEDIATE_SIGNER = issue(
    'Intermediate Signer',
    INTERMEDIATE,
    serial=2001,
    not_before=datetime(2023, 1, 1, tzinfo=timezone.utc),
    not_after=datetime(2030, 1, 1, tzinfo=timezone.utc),
    key_usage=('digital_signature', 'content_commitment'),
)
OCSP_RESPONDER = issue(
    'Test OCSP Responder',
    ROOT,
    serial=3001,
    key_usage=('digital_signature',),
    extended_key_usage=(ExtendedKeyUsageOID.OCSP_SIGNING,),
    ocsp_no_check=True,
)
TSA = issue(
    'Test TSA',
    ROOT,
    serial=4001,
    key_usage=('digital_signature',),
    extended_key_usage=(ExtendedKeyUsageOID.TIME_STAMPING,),
)
ROGUE_ROOT = issue(
    'Rogue Root',
    None,
    serial=666,
    ca=True,
    key_usage=('key_cert_sign', 'crl_sign', 'digital_signature'),
)


def make_crl(
    issuer: Party,
    *,
    this_update: datetime,
    next_update: datetime,
    revoked: Iterable[Tuple] = (),
    idp: Optional[cx509.IssuingDistributionPoint] = None,
) -> crl.CertificateList:
    """
    Produce a CRL. Entries of ``revoked`` are ``(party, revocation_date)``
    pairs, optionally followed by a :class:`cryptography.x509.ReasonFlags`
    reason code.
    """
    builder = (
        cx509.CertificateRevocationListBuilder()
        .issuer_name(issuer.crypto_cert.subject)
        .last_update(_naive(this_update))
        .next_update(_naive(next_update))
    )
    if idp is not None:
        builder = builder.add_extension(idp, critical=True)
    for party, revocation_date, *reason in revoked:
        entry = (
            cx509.RevokedCertificateBuilder()
            .serial_number(party.crypto_cert.serial_number)
            .revocation_date(_naive(revocation_date))
        )
        if reason:
            entry = entry.add_extension(
                cx509.CRLReason(reason[0]), critical=False
            )
        builder = builder.add_revoked_certificate(entry.build())
    certificate_list = builder.sign(issuer.key, hashes.SHA256())
    return load_crl(certificate_list.public_bytes(serialization.Encoding.DER))


_OCSP_STATUSES = {
    'good': cocsp.OCSPCertStatus.GOOD,
    'revoked': cocsp.OCSPCertStatus.REVOKED,
    'unknown': cocsp.OCSPCertStatus.UNKNOWN,
}


def make_ocsp_response(
    subject: Party,
    issuer: Party,
    *,
    this_update: datetime,
    next_update: datetime,
    status: str = 'good',
    revocation_time: Optional[datetime] = None,
    responder: Optional[Party] = None,
    embed_responder: bool = False,
) -> bytes:
    """
    Produce a DER-encoded OCSP response. The response is signed by the
    issuer unless another responder is given.
    """
    responder = responder or issuer
    builder = cocsp.OCSPResponseBuilder().add_response(
        cert=subject.crypto_cert,
        issuer=issuer.crypto_cert,
        algorithm=hashes.SHA1(),
        cert_status=_OCSP_STATUSES[status],
        this_update=_naive(this_update),
        next_update=_naive(next_update),
        revocation_time=(
            _naive(revocation_time) if revocation_time is not None else None
        ),
        revocation_reason=None,
    )
    builder = builder.responder_id(
        cocsp.OCSPResponderEncoding.HASH, responder.crypto_cert
    )
    if embed_responder:
        builder = builder.certificates([responder.crypto_cert])
    response = builder.sign(responder.key, hashes.SHA256())
    return response.public_bytes(serialization.Encoding.DER)


def make_basic_ocsp_response(*args, **kwargs) -> ocsp.BasicOCSPResponse:
    return load_basic_ocsp_response(make_ocsp_response(*args, **kwargs))


def simple_cms_attribute(attr_type, value):
    return cms.CMSAttribute(
        {'type': cms.CMSAttributeType(attr_type), 'values': (value,)}
    )


def _signer_info(party: Party, signed_attrs, signature, unsigned_attrs=None):
    signer_info = {
        'version': 'v1',
        'sid': cms.SignerIdentifier(
            {
                'issuer_and_serial_number': cms.IssuerAndSerialNumber(
                    {
                        'issuer': party.cert.issuer,
                        'serial_number': party.cert.serial_number,
                    }
                )
            }
        ),
        'digest_algorithm': algos.DigestAlgorithm({'algorithm': 'sha256'}),
        'signature_algorithm': algos.SignedDigestAlgorithm(
            {'algorithm': 'sha256_ecdsa'}
        ),
        'signed_attrs': signed_attrs,
        'signature': signature,
    }
    if unsigned_attrs is not None:
        signer_info['unsigned_attrs'] = unsigned_attrs
    return cms.SignerInfo(signer_info)


def timestamp_token(
    tsa: Party, message: bytes, gen_time: datetime, serial: int = 1
) -> cms.ContentInfo:
    """
    Produce an RFC 3161 timestamp token with a message imprint over
    ``message``.
    """
    tst_info = tsp.TSTInfo(
        {
            'version': 'v1',
            'policy': tsp.ObjectIdentifier('1.3.6.1.4.1.4146.2.2'),
            'message_imprint': tsp.MessageImprint(
                {
                    'hash_algorithm': algos.DigestAlgorithm(
                        {'algorithm': 'sha256'}
                    ),
                    'hashed_message': _sha256(message),
                }
            ),
            'serial_number': serial,
            'gen_time': gen_time,
            'tsa': x509.GeneralName(
                name='directory_name', value=tsa.cert.subject
            ),
        }
    )
    tst_info_data = tst_info.dump()
    signed_attrs = cms.CMSAttributes(
        [
            simple_cms_attribute('content_type', 'tst_info'),
            simple_cms_attribute('message_digest', _sha256(tst_info_data)),
        ]
    )
    signer_info = _signer_info(tsa, signed_attrs, tsa.sign(signed_attrs.dump()))
    signed_data = {
        # v3 is needed for the encapsulated content
        'version': 'v3',
        'digest_algorithms': cms.DigestAlgorithms(
            (algos.DigestAlgorithm({'algorithm': 'sha256'}),)
        ),
        'encap_content_info': cms.EncapsulatedContentInfo(
            {
                'content_type': cms.ContentType('tst_info'),
                'content': cms.ParsableOctetString(tst_info_data),
            }
        ),
        'certificates': [tsa.cert],
        'signer_infos': [signer_info],
    }
    return cms.ContentInfo(
        {
            'content_type': cms.ContentType('signed_data'),
            'content': cms.SignedData(signed_data),
        }
    )


def sign_detached(
    party: Party,
    data: bytes,
    *,
    timestamp: Optional[Tuple[Party, datetime]] = None,
    extra_certs: Iterable[x509.Certificate] = (),
    timestamp_message: Optional[bytes] = None,
) -> bytes:
    """
    Produce a DER-encoded detached CMS signature over ``data``, optionally
    with a signature timestamp issued by the given TSA at the given time.
    The timestamp covers the signature value, unless
    ``timestamp_message`` is given.
    """
    signed_attrs = cms.CMSAttributes(
        [
            simple_cms_attribute('content_type', 'data'),
            simple_cms_attribute('message_digest', _sha256(data)),
        ]
    )
    signature = party.sign(signed_attrs.dump())
    unsigned_attrs = None
    if timestamp is not None:
        tsa, gen_time = timestamp
        unsigned_attrs = cms.CMSAttributes(
            [
                simple_cms_attribute(
                    'signature_time_stamp_token',
                    timestamp_token(
                        tsa, timestamp_message or signature, gen_time
                    ),
                )
            ]
        )
    signed_data = {
        'version': 'v1',
        'digest_algorithms': cms.DigestAlgorithms(
            (algos.DigestAlgorithm({'algorithm': 'sha256'}),)
        ),
        'encap_content_info': {'content_type': 'data'},
        'certificates': [party.cert, *extra_certs],
        'signer_infos': [
            _signer_info(party, signed_attrs, signature, unsigned_attrs)
        ],
    }
    return cms.ContentInfo(
        {'content_type': 'signed_data', 'content': cms.SignedData(signed_data)}
    ).dump()


def signer(party: Party, **kwargs):
    """
    Signing callback for :class:`.documents.DocumentWriter`.
    """

    def _sign(data: bytes) -> bytes:
        return sign_detached(party, data, **kwargs)

    return _sign


def document_timestamper(tsa: Party, gen_time: datetime):
    """
    Document timestamp callback for :class:`.documents.DocumentWriter`.
    """

    def _stamp(data: bytes) -> bytes:
        return timestamp_token(tsa, data, gen_time).dump()

    return _stamp


def days(n) -> timedelta:
    return timedelta(days=n)
