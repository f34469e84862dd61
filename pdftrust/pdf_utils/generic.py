"""
PDF object types, as seen by the revision analysis code.

Objects only live in memory: this package neither parses nor serialises
PDF syntax. Each revision of a document is a graph of these objects, see
:mod:`.revisions`. Containers resolve indirect references on access;
the ``raw_*`` accessors return what is actually stored.
"""
import codecs
import decimal
from dataclasses import dataclass, field
from typing import Optional, Union

from ..errors import PdfReadError

__all__ = [
    'Reference',
    'PdfObject',
    'IndirectObject',
    'NullObject',
    'BooleanObject',
    'FloatObject',
    'NumberObject',
    'ByteStringObject',
    'TextStringObject',
    'NameObject',
    'ArrayObject',
    'DictionaryObject',
    'StreamObject',
    'pdf_name',
]


@dataclass(frozen=True)
class Reference:
    """
    Object number and generation, bound to the revision (or other object
    table) that can resolve it. The table is not taken into account when
    comparing references.
    """

    idnum: int
    generation: int = 0
    pdf: object = field(repr=False, hash=False, compare=False, default=None)

    def get_object(self) -> 'PdfObject':
        if self.pdf is None:
            return NullObject()
        return self.pdf.get_object(self).get_object()

    def __str__(self):
        return f"{self.idnum} {self.generation} R"


class PdfObject:
    def get_object(self):
        """
        Resolve indirect references. Direct objects return themselves.
        """
        return self


class NullObject(PdfObject):
    """
    The PDF ``null`` object. Null objects compare equal to one another and
    are falsy.
    """

    def __eq__(self, other):
        return isinstance(other, NullObject)

    def __hash__(self):
        return hash(None)

    def __bool__(self):
        return False

    def __repr__(self):
        return 'null'


class BooleanObject(PdfObject):
    def __init__(self, value):
        self.value = bool(value)

    def __bool__(self):
        return self.value

    def __eq__(self, other):
        if isinstance(other, (BooleanObject, bool)):
            return self.value == bool(other)
        return NotImplemented

    def __hash__(self):
        return hash(self.value)

    def __repr__(self):
        return 'true' if self.value else 'false'


class FloatObject(decimal.Decimal, PdfObject):
    """
    PDF real number, stored as a decimal to avoid rounding artifacts when
    comparing values across revisions.
    """

    def __new__(cls, value='0'):
        return super().__new__(cls, str(value))


class NumberObject(int, PdfObject):
    """PDF integer."""

    def __new__(cls, value):
        return super().__new__(cls, int(value))


class ByteStringObject(bytes, PdfObject):
    @property
    def original_bytes(self) -> bytes:
        return bytes(self)


class TextStringObject(str, PdfObject):
    @property
    def original_bytes(self) -> bytes:
        """
        The string as PDFDocEncoding would store it, approximated by
        Latin-1, or as UTF-16BE with a byte order mark for anything else.
        """
        try:
            return self.encode('latin-1')
        except UnicodeEncodeError:
            return codecs.BOM_UTF16_BE + self.encode('utf-16be')


class NameObject(str, PdfObject):
    """
    PDF name, including the leading slash. Names and text strings are
    different things in PDF, even when their contents coincide.
    """


pdf_name = NameObject


class IndirectObject(PdfObject):
    """
    A reference to an object, as it appears inside a container.
    """

    def __init__(self, idnum, generation, pdf):
        self.reference = Reference(idnum, generation, pdf)

    @property
    def idnum(self) -> int:
        return self.reference.idnum

    @property
    def generation(self) -> int:
        return self.reference.generation

    def get_object(self):
        obj = self.reference.get_object()
        # chains of references are allowed, if unusual
        while isinstance(obj, IndirectObject):
            obj = obj.reference.get_object()
        return obj

    def __eq__(self, other):
        return (
            isinstance(other, IndirectObject)
            and self.reference == other.reference
        )

    def __hash__(self):
        return hash(self.reference)

    def __repr__(self):
        return f"IndirectObject({self.idnum}, {self.generation})"


class ArrayObject(list, PdfObject):
    """
    PDF array. Indexing and iteration resolve indirect references.
    """

    def __getitem__(self, index):
        return self.raw_get(index).get_object()

    def __iter__(self):
        return (value.get_object() for value in self.raw_values())

    def raw_get(self, index):
        return list.__getitem__(self, index)

    def raw_values(self):
        return list.__iter__(self)


def _as_name(key) -> NameObject:
    if isinstance(key, NameObject):
        return key
    if isinstance(key, str):
        return NameObject(key)
    raise ValueError(f"Dictionary keys must be names, not {type(key)}")


class DictionaryObject(dict, PdfObject):
    """
    PDF dictionary, keyed by names. Item access resolves indirect
    references, :meth:`raw_get` does not.
    """

    def __init__(self, dict_data=None):
        super().__init__()
        for key, value in (dict_data or {}).items():
            self[key] = value

    def __setitem__(self, key, value):
        if not isinstance(value, PdfObject):
            raise ValueError(
                f"Dictionary values must be PDF objects, not {type(value)}"
            )
        dict.__setitem__(self, _as_name(key), value)

    def __getitem__(self, key):
        return self.raw_get(key).get_object()

    def raw_get(self, key: Union[NameObject, str]):
        return dict.__getitem__(self, key)

    def get(self, key, default=None):
        try:
            return self[key]
        except KeyError:
            return default

    def get_typed(self, key, cls):
        """
        Return the (resolved) value for a key if it has the expected type.

        :param key:
            The key to look up.
        :param cls:
            A type, or tuple of types.
        :return:
            The value, or ``None`` if it is missing or has another type.
        """
        value = self.get(key)
        return value if isinstance(value, cls) else None

    def get_value_as_reference(self, key, optional=False) -> Optional[Reference]:
        """
        Return the reference stored under a key.

        :raises KeyError:
            if the key is absent and ``optional`` is false.
        :raises PdfReadError:
            if the value is a direct object.
        """
        try:
            value = self.raw_get(key)
        except KeyError:
            if optional:
                return None
            raise
        if not isinstance(value, IndirectObject):
            raise PdfReadError(f"Entry {key} is not an indirect reference.")
        return value.reference

    def without(self, *keys) -> 'DictionaryObject':
        """
        Shallow copy without the given keys. Values are copied as stored.
        """
        result = self._empty_copy()
        excluded = {_as_name(k) for k in keys}
        for k, v in dict.items(self):
            if k not in excluded:
                dict.__setitem__(result, k, v)
        return result

    def _empty_copy(self) -> 'DictionaryObject':
        return DictionaryObject()


class StreamObject(DictionaryObject):
    """
    PDF stream: a dictionary with (decoded) data attached.
    """

    def __init__(
        self,
        dict_data: Optional[dict] = None,
        stream_data: Optional[bytes] = None,
    ):
        super().__init__(dict_data)
        self._data = stream_data or b''

    @property
    def data(self) -> bytes:
        return self._data

    def _empty_copy(self) -> 'DictionaryObject':
        return StreamObject(stream_data=self._data)
