"""
Signed PDF documents, as seen by the validators.

A :class:`SignedDocument` combines the revisions of a document with its
raw bytes, which are needed to check the byte range coverage of
signatures and to compute their digests.
"""

import logging
from typing import Dict, Iterator, List, Optional, Tuple

from ..errors import PdfReadError
from ..pdf_utils import generic
from ..pdf_utils.revisions import DocumentRevision, RevisionReader
from .cms import SignatureContainer

__all__ = [
    'SignedDocument',
    'EmbeddedSignature',
    'DocumentSecurityStore',
    'enumerate_form_fields',
    'extract_contents',
]

logger = logging.getLogger(__name__)


def enumerate_form_fields(
    fields: Optional[generic.ArrayObject], prefix: Optional[str] = None
) -> Iterator[Tuple[str, generic.DictionaryObject]]:
    """
    Enumerate the form fields in a field array, depth-first, together with
    their fully qualified names.
    Widget annotations without a partial name are not reported as fields.

    :param fields:
        A ``/Fields`` or ``/Kids`` array.
    :param prefix:
        Fully qualified name of the parent field, if any.
    """
    for field in fields or ():
        if not isinstance(field, generic.DictionaryObject):
            continue
        partial_name = field.get('/T')
        if partial_name is None:
            continue
        name = (
            str(partial_name) if prefix is None else f"{prefix}.{partial_name}"
        )
        yield name, field
        yield from enumerate_form_fields(field.get('/Kids'), name)


def _field_type(field: generic.DictionaryObject) -> Optional[str]:
    # /FT is inheritable
    while field is not None:
        field_type = field.get('/FT')
        if field_type is not None:
            return field_type
        field = field.get('/Parent')
    return None


def extract_contents(sig_object: generic.DictionaryObject) -> bytes:
    """
    Internal function to extract the (DER-encoded) signature bytes from a PDF
    signature dictionary.

    :param sig_object:
        A signature dictionary.
    :return:
        The extracted contents as a byte string.
    """
    try:
        cms_content = sig_object.raw_get('/Contents')
    except KeyError:
        raise PdfReadError('Could not read /Contents entry in signature')
    if not isinstance(
        cms_content, (generic.TextStringObject, generic.ByteStringObject)
    ):
        raise PdfReadError('/Contents must be string-like')
    return cms_content.original_bytes


class DocumentSecurityStore:
    """
    Read-only access to the validation-related information in a
    document security store.
    """

    def __init__(self, dss_dict: generic.DictionaryObject):
        self.dss_dict = dss_dict

    def _streams(self, key) -> List[generic.StreamObject]:
        arr = self.dss_dict.get_typed(key, generic.ArrayObject)
        if arr is None:
            return []
        return [obj for obj in arr if isinstance(obj, generic.StreamObject)]

    @property
    def certs(self) -> List[generic.StreamObject]:
        return self._streams('/Certs')

    @property
    def ocsps(self) -> List[generic.StreamObject]:
        return self._streams('/OCSPs')

    @property
    def crls(self) -> List[generic.StreamObject]:
        return self._streams('/CRLs')


class EmbeddedSignature:
    """
    Class modelling a signature embedded in a PDF document.
    """

    sig_field: generic.DictionaryObject
    """
    The field dictionary of the form field containing the signature.
    """

    sig_object: generic.DictionaryObject
    """
    The signature dictionary.
    """

    def __init__(
        self,
        document: 'SignedDocument',
        sig_field: generic.DictionaryObject,
        fq_name: str,
    ):
        self.document = document
        self.sig_field = sig_field
        self.fq_name = fq_name
        sig_object = sig_field['/V']
        if not isinstance(sig_object, generic.DictionaryObject):
            raise PdfReadError(
                f"Signature value of field {fq_name} is not a dictionary"
            )
        self.sig_object = sig_object
        try:
            self.byte_range = [int(x) for x in sig_object['/ByteRange']]
        except (KeyError, TypeError, ValueError):
            raise PdfReadError('Could not read /ByteRange entry in signature')
        self._container: Optional[SignatureContainer] = None

    @property
    def contents(self) -> bytes:
        return extract_contents(self.sig_object)

    @property
    def container(self) -> SignatureContainer:
        """
        The CMS signature container. Parsed on first access.

        :raises SignatureContainerError:
            if the container cannot be parsed.
        """
        if self._container is None:
            self._container = SignatureContainer.load(self.contents)
        return self._container

    @property
    def sig_object_type(self) -> generic.NameObject:
        """
        Returns the type of the embedded signature object.
        For ordinary signatures, this will be ``/Sig``.
        In the case of a document timestamp, ``/DocTimeStamp`` is returned.
        """
        return self.sig_object.get('/Type', generic.NameObject('/Sig'))

    @property
    def sub_filter(self) -> Optional[generic.NameObject]:
        return self.sig_object.get('/SubFilter')

    @property
    def is_timestamp(self) -> bool:
        return (
            self.sig_object_type == '/DocTimeStamp'
            or self.sub_filter == '/ETSI.RFC3161'
        )

    def _reference_dict(self, method) -> Optional[generic.DictionaryObject]:
        refs = self.sig_object.get_typed('/Reference', generic.ArrayObject)
        for ref in refs or ():
            if (
                isinstance(ref, generic.DictionaryObject)
                and ref.get('/TransformMethod') == method
            ):
                return ref
        return None

    @property
    def is_certification_signature(self) -> bool:
        """
        Whether this is a certification signature, i.e. a signature with a
        DocMDP transform. Timestamps are never certification signatures.
        """
        if self.is_timestamp:
            return False
        refs = self.sig_object.get_typed('/Reference', generic.ArrayObject)
        for ref in refs or ():
            if isinstance(ref, generic.DictionaryObject):
                return ref.get('/TransformMethod') == '/DocMDP'
        return False

    @property
    def docmdp_transform_params(self) -> Optional[generic.DictionaryObject]:
        ref = self._reference_dict('/DocMDP')
        if ref is None:
            return None
        return ref.get_typed('/TransformParams', generic.DictionaryObject)

    @property
    def field_lock(self) -> Optional[generic.DictionaryObject]:
        """
        The ``/Lock`` dictionary of the signature field, if any.
        """
        return self.sig_field.get_typed('/Lock', generic.DictionaryObject)

    @property
    def coverage_end(self) -> int:
        if len(self.byte_range) != 4:
            return -1
        return self.byte_range[2] + self.byte_range[3]

    def covered_data(self) -> bytes:
        data = self.document.data
        chunks = []
        byte_range = self.byte_range
        for ix in range(0, len(byte_range) - 1, 2):
            lo, length = byte_range[ix], byte_range[ix + 1]
            chunks.append(data[lo : lo + length])
        return b''.join(chunks)

    def covers_whole_document(self) -> bool:
        """
        Check whether the signature's byte range covers the entire document,
        with a single gap for the signature contents.
        """
        if len(self.byte_range) != 4 or self.byte_range[0] != 0:
            return False
        _, len1, start2, len2 = self.byte_range
        # the * 2 is because of the ASCII hex encoding, and the + 2
        # is the wrapping <>
        embedded_sig_content = len(self.contents) * 2 + 2
        return (
            start2 == len1 + embedded_sig_content
            and start2 + len2 == len(self.document.data)
        )

    def __repr__(self):
        return f"<EmbeddedSignature {self.fq_name}>"


class SignedDocument:
    """
    A document with its revisions and raw bytes.

    :param revisions:
        The revisions of the document, oldest first.
    :param data:
        The bytes of the document.
    """

    def __init__(self, revisions: List[DocumentRevision], data: bytes):
        if not revisions:
            raise PdfReadError("A document needs at least one revision.")
        self.revisions = list(revisions)
        self.data = data

    @classmethod
    def from_reader(
        cls, reader: RevisionReader, data: bytes
    ) -> 'SignedDocument':
        return cls(reader.get_all_revisions(), data)

    @property
    def latest_revision(self) -> DocumentRevision:
        return self.revisions[-1]

    @property
    def root(self) -> generic.DictionaryObject:
        return self.latest_revision.root

    @property
    def dss(self) -> Optional[DocumentSecurityStore]:
        dss_dict = self.root.get_typed('/DSS', generic.DictionaryObject)
        if dss_dict is None:
            return None
        return DocumentSecurityStore(dss_dict)

    def _signature_fields(self) -> Dict[str, generic.DictionaryObject]:
        acroform = self.root.get_typed('/AcroForm', generic.DictionaryObject)
        if acroform is None:
            return {}
        return {
            name: field
            for name, field in enumerate_form_fields(acroform.get('/Fields'))
            if _field_type(field) == '/Sig'
            and isinstance(field.get('/V'), generic.DictionaryObject)
        }

    @property
    def embedded_signatures(self) -> List[EmbeddedSignature]:
        """
        The signatures in the document, ordered by the extent of their
        coverage.
        """
        sigs = [
            EmbeddedSignature(self, field, name)
            for name, field in self._signature_fields().items()
        ]
        return sorted(sigs, key=lambda sig: sig.coverage_end)

    def get_signature_names(self) -> List[str]:
        return [sig.fq_name for sig in self.embedded_signatures]

    def get_signature(self, name: str) -> Optional[EmbeddedSignature]:
        field = self._signature_fields().get(name)
        if field is None:
            return None
        return EmbeddedSignature(self, field, name)

    def find_revision(self, name: str) -> Optional[int]:
        """
        Find the index of the revision ending where the coverage of a
        signature ends.
        """
        sig = self.get_signature(name)
        if sig is None:
            return None
        end = sig.coverage_end
        for ix, revision in enumerate(self.revisions):
            if revision.eof_offset == end:
                return ix
        return None

    def extract_revision(self, name: str) -> 'SignedDocument':
        """
        Return the document as it was when a signature was applied.

        :raises PdfReadError:
            if the signature does not exist or its coverage does not match
            a revision.
        """
        ix = self.find_revision(name)
        if ix is None:
            raise PdfReadError(
                f"Could not find revision covered by signature {name}."
            )
        revisions = self.revisions[: ix + 1]
        return SignedDocument(revisions, self.data[: revisions[-1].eof_offset])
