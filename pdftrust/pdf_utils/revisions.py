"""
Document revisions.

A :class:`DocumentRevision` is an immutable view on the object graph of a
PDF document as it stood after one of its incremental updates, together
with the cross-reference information of that update.
Parsing PDF syntax is not done here: revisions are produced by a
:class:`RevisionReader`, and :class:`RevisionHistoryBuilder` allows
callers that read PDF files with another library to assemble them.
"""

import logging
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from ..errors import PdfReadError
from . import generic

__all__ = [
    'DocumentRevision',
    'RevisionReader',
    'InMemoryRevisionReader',
    'RevisionHistoryBuilder',
]

logger = logging.getLogger(__name__)

_ObjKey = Tuple[int, int]


class DocumentRevision:
    """
    Snapshot of a document's object graph after an incremental update.

    All indirect references in objects retrieved from a revision resolve
    within that revision.

    :param objects:
        The objects in use in this revision, keyed by
        ``(idnum, generation)``.
    :param trailer:
        The trailer dictionary of this revision.
    :param updated_refs:
        References to objects that were written in this revision.
    :param freed_refs:
        References to objects that were freed in this revision.
    :param eof_offset:
        Offset of the end of this revision in the document's bytes.
    :param revision:
        Index of this revision, starting at ``0``.
    """

    def __init__(
        self,
        objects: Dict[_ObjKey, generic.PdfObject],
        trailer: generic.DictionaryObject,
        updated_refs: Iterable[generic.Reference],
        freed_refs: Iterable[generic.Reference],
        eof_offset: int,
        revision: int = 0,
    ):
        self._objects = {
            key: self._subsume_object(obj) for key, obj in objects.items()
        }
        self._trailer = self._subsume_object(trailer)
        self.updated_refs: FrozenSet[generic.Reference] = frozenset(
            generic.Reference(ref.idnum, ref.generation, self)
            for ref in updated_refs
        )
        self.freed_refs: FrozenSet[generic.Reference] = frozenset(
            generic.Reference(ref.idnum, ref.generation, self)
            for ref in freed_refs
        )
        self.eof_offset = eof_offset
        self.revision = revision

    def _subsume_object(self, obj):
        # replace all PDF handler references in the object with references
        # to this revision, so that indirect references resolve here
        if isinstance(obj, generic.IndirectObject):
            return generic.IndirectObject(
                idnum=obj.idnum, generation=obj.generation, pdf=self
            )
        elif isinstance(obj, generic.StreamObject):
            return generic.StreamObject(
                {k: self._subsume_object(v) for k, v in obj.items()},
                stream_data=obj.data,
            )
        elif isinstance(obj, generic.DictionaryObject):
            return generic.DictionaryObject(
                {k: self._subsume_object(v) for k, v in obj.items()}
            )
        elif isinstance(obj, generic.ArrayObject):
            return generic.ArrayObject(
                self._subsume_object(v) for v in obj.raw_values()
            )
        else:
            # primitives are immutable
            return obj

    @property
    def trailer_view(self) -> generic.DictionaryObject:
        return self._trailer

    @property
    def root_ref(self) -> generic.Reference:
        return self._trailer.get_value_as_reference('/Root')

    @property
    def root(self) -> generic.DictionaryObject:
        """
        The document catalog as of this revision.
        """
        return self._trailer['/Root']

    def get_object(self, ref: generic.Reference) -> generic.PdfObject:
        try:
            return self._objects[(ref.idnum, ref.generation)]
        except KeyError:
            logger.debug("Reference %s is not in use in revision", ref)
            return generic.NullObject()

    def get_object_by_number(self, idnum: int) -> Optional[generic.PdfObject]:
        """
        Look up an object by its ID, regardless of its generation number.

        :return:
            The object, or ``None`` if no object with that ID is in use in
            this revision.
        """
        for (obj_idnum, _), obj in self._objects.items():
            if obj_idnum == idnum:
                return obj
        return None

    def __call__(self, ref: generic.Reference):
        return self.get_object(ref)

    def __repr__(self):
        return (
            f"<DocumentRevision {self.revision} ending at {self.eof_offset}, "
            f"{len(self.updated_refs)} updated, {len(self.freed_refs)} freed>"
        )


class RevisionReader:
    """
    Provides the revisions of a document.
    """

    def get_all_revisions(self) -> List[DocumentRevision]:
        """
        Return all revisions of the document, oldest first.

        :raises PdfReadError:
            if the revisions cannot be read.
        """
        raise NotImplementedError


class InMemoryRevisionReader(RevisionReader):
    def __init__(self, revisions: Iterable[DocumentRevision]):
        self._revisions = list(revisions)

    def get_all_revisions(self) -> List[DocumentRevision]:
        return list(self._revisions)


class RevisionHistoryBuilder:
    """
    Assemble a list of document revisions in memory.

    The builder keeps the current state of the document; objects can be
    added, replaced and freed, and :meth:`commit_revision` takes a snapshot
    of the state as a new :class:`.DocumentRevision`.
    Indirect objects returned by the builder resolve against its current
    state.
    """

    def __init__(self):
        self._objects: Dict[_ObjKey, generic.PdfObject] = {}
        self._next_idnum = 1
        self._updated: Dict[_ObjKey, generic.Reference] = {}
        self._freed: Dict[_ObjKey, generic.Reference] = {}
        self._revisions: List[DocumentRevision] = []
        self.trailer = generic.DictionaryObject()

    def get_object(self, ref: generic.Reference) -> generic.PdfObject:
        return self._objects.get(
            (ref.idnum, ref.generation), generic.NullObject()
        )

    def add_object(self, obj: generic.PdfObject) -> generic.IndirectObject:
        """
        Register a new indirect object.

        :return:
            An indirect reference to the object.
        """
        idnum = self._next_idnum
        self._next_idnum += 1
        key = (idnum, 0)
        self._objects[key] = obj
        self._updated[key] = generic.Reference(idnum, 0, self)
        return generic.IndirectObject(idnum, 0, self)

    def update_object(self, ref, obj: Optional[generic.PdfObject] = None):
        """
        Mark an object as written in the next revision, optionally replacing
        it.

        :param ref:
            A :class:`.generic.Reference` or :class:`.generic.IndirectObject`.
        :param obj:
            The new value of the object. If ``None``, the current value is
            kept, which allows objects to be modified in place.
        """
        if isinstance(ref, generic.IndirectObject):
            ref = ref.reference
        key = (ref.idnum, ref.generation)
        if key not in self._objects:
            raise PdfReadError(f"Object {ref} is not in use.")
        if obj is not None:
            self._objects[key] = obj
        self._updated[key] = generic.Reference(ref.idnum, ref.generation, self)

    def free_object(self, ref):
        """
        Free an object in the next revision.
        """
        if isinstance(ref, generic.IndirectObject):
            ref = ref.reference
        key = (ref.idnum, ref.generation)
        if self._objects.pop(key, None) is None:
            raise PdfReadError(f"Object {ref} is not in use.")
        self._updated.pop(key, None)
        self._freed[key] = generic.Reference(ref.idnum, ref.generation, self)

    def set_root(self, root: generic.IndirectObject):
        self.trailer['/Root'] = root

    def commit_revision(self, eof_offset: int) -> DocumentRevision:
        """
        Take a snapshot of the current state as a new revision.

        :param eof_offset:
            Offset of the end of the revision in the document's bytes.
        :return:
            The new :class:`.DocumentRevision`.
        """
        if '/Root' not in self.trailer:
            raise PdfReadError("Trailer does not reference a catalog.")
        if self._revisions and eof_offset <= self._revisions[-1].eof_offset:
            raise PdfReadError(
                "Revisions must end after the end of the previous revision."
            )
        result = DocumentRevision(
            objects=self._objects,
            trailer=self.trailer,
            updated_refs=self._updated.values(),
            freed_refs=self._freed.values(),
            eof_offset=eof_offset,
            revision=len(self._revisions),
        )
        self._revisions.append(result)
        self._updated = {}
        self._freed = {}
        return result

    @property
    def revisions(self) -> List[DocumentRevision]:
        return list(self._revisions)

    def get_reader(self) -> InMemoryRevisionReader:
        return InMemoryRevisionReader(self._revisions)
