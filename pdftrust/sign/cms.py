"""
Access to CMS signature containers and RFC 3161 timestamp tokens embedded
in PDF signatures.

This module only checks the cryptographic integrity of signatures and
timestamp tokens; whether the signer is to be trusted is for
:class:`~pdftrust.chain.CertificateChainValidator` to decide.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from asn1crypto import cms, core, crl, ocsp
from asn1crypto import pdf as asn1_pdf  # noqa: F401 registers revinfo attr
from asn1crypto import tsp, x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes

from ..errors import SignatureContainerError
from ..util import get_pyca_cryptography_hash, validate_sig

__all__ = ['SignatureContainer', 'digest']

logger = logging.getLogger(__name__)


def digest(data: bytes, md_algorithm: str) -> bytes:
    md = hashes.Hash(get_pyca_cryptography_hash(md_algorithm))
    md.update(data)
    return md.finalize()


def _single_attribute_value(attrs, attr_type: str):
    """
    Look up a CMS attribute that may occur at most once, with exactly one
    value.

    :return:
        The value, or ``None`` if the attribute is absent.
    :raises SignatureContainerError:
        if the attribute is repeated or does not have exactly one value.
    """
    matches = [
        attr['values'] for attr in attrs or () if attr['type'].native == attr_type
    ]
    if not matches:
        return None
    if len(matches) > 1:
        raise SignatureContainerError(f"Attribute {attr_type} is repeated.")
    (values,) = matches
    if len(values) != 1:
        raise SignatureContainerError(
            f"Attribute {attr_type} has {len(values)} values, expected one."
        )
    return values[0]


def _issued_as(cert: x509.Certificate, issuer_serial) -> bool:
    if cert.serial_number != issuer_serial['serial_number'].native:
        return False
    expected = issuer_serial['issuer']
    if expected.dump() == cert.issuer.dump():
        return True
    # fall back to the normalising comparison, which not every name survives
    try:
        return expected == cert.issuer
    except ValueError:
        return False


def _successful_basic_responses(responses) -> List[ocsp.BasicOCSPResponse]:
    return [
        response.basic_ocsp_response
        for response in responses
        if response['response_status'].native == 'successful'
    ]


class SignatureContainer:
    """
    Wrapper around a CMS ``SignedData`` value with a single signer.

    :param content_info:
        The ``ContentInfo`` value wrapping the signed data.
    """

    def __init__(self, content_info: cms.ContentInfo):
        if content_info['content_type'].native != 'signed_data':
            raise SignatureContainerError(
                "CMS container does not contain signed data."
            )
        self.content_info = content_info
        self.signed_data: cms.SignedData = content_info['content']
        signer_infos = self.signed_data['signer_infos']
        if len(signer_infos) != 1:
            raise SignatureContainerError(
                f"Expected a single signer, found {len(signer_infos)}."
            )
        self.signer_info: cms.SignerInfo = signer_infos[0]
        self._signer_cert: Optional[x509.Certificate] = None

    @classmethod
    def load(cls, data: bytes) -> 'SignatureContainer':
        """
        Parse a DER-encoded ``ContentInfo``. Trailing null padding, as found
        in PDF signature ``/Contents`` entries, is ignored.

        :raises SignatureContainerError:
            if the data cannot be parsed.
        """
        try:
            content_info = cms.ContentInfo.load(data)
            len(content_info['content']['signer_infos'])
        except ValueError as e:
            raise SignatureContainerError(
                "Could not parse CMS signature container."
            ) from e
        return cls(content_info)

    @property
    def certificates(self) -> List[x509.Certificate]:
        return [
            choice.chosen.untag()
            for choice in self.signed_data['certificates'] or ()
            if choice.name == 'certificate'
        ]

    @property
    def signer_cert(self) -> x509.Certificate:
        """
        The signer's certificate, located through the signer identifier.

        :raises SignatureContainerError:
            if the signer's certificate is not included in the signed data.
        """
        if self._signer_cert is not None:
            return self._signer_cert
        sid = self.signer_info['sid']
        if sid.name == 'issuer_and_serial_number':
            candidates = [
                c for c in self.certificates if _issued_as(c, sid.chosen)
            ]
        elif sid.name == 'subject_key_identifier':
            key_id = sid.chosen.native
            candidates = [
                c for c in self.certificates if c.key_identifier == key_id
            ]
        else:
            raise SignatureContainerError(
                f"Unsupported signer identifier {sid.name}"
            )
        if not candidates:
            raise SignatureContainerError(
                "Signer certificate not included in signature."
            )
        self._signer_cert = candidates[0]
        return self._signer_cert

    @property
    def digest_algorithm(self) -> str:
        return self.signer_info['digest_algorithm']['algorithm'].native

    @property
    def content_type(self) -> str:
        return self.signed_data['encap_content_info']['content_type'].native

    @property
    def is_timestamp_token(self) -> bool:
        return self.content_type == 'tst_info'

    @property
    def tst_info(self) -> tsp.TSTInfo:
        """
        The ``TSTInfo`` value of a timestamp token.

        :raises SignatureContainerError:
            if this container is not a timestamp token.
        """
        if not self.is_timestamp_token:
            raise SignatureContainerError(
                "CMS container is not a timestamp token."
            )
        return self.signed_data['encap_content_info']['content'].parsed

    @property
    def gen_time(self) -> datetime:
        return self.tst_info['gen_time'].native

    @property
    def signed_data_crls(self) -> List[crl.CertificateList]:
        """
        CRLs included in the (unsigned) ``crls`` field of the signed data.
        """
        return [
            choice.chosen
            for choice in self.signed_data['crls'] or ()
            if choice.name == 'crl'
        ]

    @property
    def signed_data_ocsps(self) -> List[ocsp.BasicOCSPResponse]:
        """
        OCSP responses stored as "other revocation info" in the ``crls``
        field of the signed data.
        """
        responses = [
            choice.chosen['other_rev_info']
            for choice in self.signed_data['crls'] or ()
            if choice.name == 'other'
            and choice.chosen['other_rev_info_format'].native
            == 'ocsp_response'
        ]
        return _successful_basic_responses(responses)

    @property
    def signed_revocation_info(
        self,
    ) -> Tuple[List[ocsp.BasicOCSPResponse], List[crl.CertificateList]]:
        """
        Revocation data from the Adobe ``revocationInfoArchival`` signed
        attribute, as a tuple of basic OCSP responses and CRLs. Both lists
        are empty if the attribute is absent or malformed.
        """
        try:
            archival = _single_attribute_value(
                self.signer_info['signed_attrs'],
                'adobe_revocation_info_archival',
            )
        except SignatureContainerError as e:
            logger.warning("Ignoring revocation info attribute", exc_info=e)
            archival = None
        if archival is None:
            return [], []
        ocsps = _successful_basic_responses(archival['ocsp'] or ())
        return ocsps, list(archival['crl'] or ())

    @property
    def signature_timestamp(self) -> Optional['SignatureContainer']:
        """
        The signature timestamp token from the unsigned attributes, if any.
        """
        try:
            token = _single_attribute_value(
                self.signer_info['unsigned_attrs'],
                'signature_time_stamp_token',
            )
        except SignatureContainerError as e:
            logger.warning("Ignoring signature timestamp", exc_info=e)
            return None
        return None if token is None else SignatureContainer(token)

    def compute_digest(self, data: bytes) -> bytes:
        return digest(data, self.digest_algorithm)

    def _signed_attributes(self) -> cms.CMSAttributes:
        signed_attrs = self.signer_info['signed_attrs']
        if signed_attrs is core.VOID or not len(signed_attrs):
            raise SignatureContainerError(
                "Signatures without signed attributes are not supported."
            )
        return signed_attrs

    def _message_digest_matches(self, content_digest: bytes) -> bool:
        signed_attrs = self._signed_attributes()
        content_type = _single_attribute_value(signed_attrs, 'content_type')
        message_digest = _single_attribute_value(
            signed_attrs, 'message_digest'
        )
        if content_type is None or message_digest is None:
            raise SignatureContainerError(
                "Signed attributes lack a content type or message digest."
            )
        if content_type.native != self.content_type:
            raise SignatureContainerError(
                f"Signed content type {content_type.native} does not match "
                f"encapsulated content type {self.content_type}."
            )
        return message_digest.native == content_digest

    def _signature_verifies(self) -> bool:
        # the signature covers the attributes with a universal SET OF tag
        signed_bytes = self._signed_attributes().untag().dump()
        algorithm = self.signer_info['signature_algorithm']
        try:
            validate_sig(
                signature=self.signer_info['signature'].native,
                signed_data=signed_bytes,
                public_key_info=self.signer_cert.public_key,
                sig_algo=algorithm.signature_algo,
                hash_algo=self.digest_algorithm,
                parameters=algorithm['parameters'],
            )
        except InvalidSignature:
            return False
        return True

    def verify_integrity(self, data: Optional[bytes] = None) -> bool:
        """
        Verify the integrity of the signature.

        :param data:
            The signed data, for detached signatures. For timestamp tokens,
            this is the data the timestamp was taken over, which is checked
            against the message imprint.
            If ``None``, the encapsulated content is used.
        :return:
            ``True`` if the digest matches and the signature verifies.
        :raises SignatureContainerError:
            if the container is malformed.
        """
        if self.is_timestamp_token or data is None:
            encap = self.signed_data['encap_content_info']['content']
            if encap is None or isinstance(encap, core.Void):
                raise SignatureContainerError(
                    "No encapsulated content to verify."
                )
            content = encap.contents
        else:
            content = data
        digest_ok = self._message_digest_matches(self.compute_digest(content))
        signature_ok = self._signature_verifies()
        if not (digest_ok and signature_ok):
            logger.debug(
                "CMS digest matches: %s, signature verifies: %s",
                digest_ok,
                signature_ok,
            )
            return False
        if self.is_timestamp_token and data is not None:
            return self.verify_message_imprint(data)
        return True

    def verify_message_imprint(self, data: bytes) -> bool:
        """
        Check the message imprint of a timestamp token against some data.
        """
        imprint = self.tst_info['message_imprint']
        md_algorithm = imprint['hash_algorithm']['algorithm'].native
        return imprint['hashed_message'].native == digest(data, md_algorithm)

    def verify_timestamp_imprint(self) -> bool:
        """
        Check whether the message imprint of the signature timestamp token
        matches this signature's value.

        :raises SignatureContainerError:
            if there is no signature timestamp.
        """
        timestamp = self.signature_timestamp
        if timestamp is None:
            raise SignatureContainerError("No signature timestamp present.")
        return timestamp.verify_message_imprint(
            self.signer_info['signature'].native
        )
