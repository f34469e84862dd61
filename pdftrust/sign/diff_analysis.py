"""
Validation of the modifications made to a document after it was signed.

Every incremental update following the first signature is compared with
the revision preceding it. Which changes are acceptable depends on the
``/DocMDP`` level of the certification signature (if any), on the
``/Lock`` dictionaries of the signature fields, and on the level
explicitly requested by the caller.

The analysis works in two stages. First, the structures that are allowed
to change (document catalog, developer extensions, permissions, DSS,
AcroForm and page tree) are compared with the previous revision. Then,
every object written by the update is checked against the set of objects
that may legitimately appear in an incremental update at the current
access level.
"""

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple

from ..context import ValidationContext, ValidatorContext
from ..errors import PdfReadError
from ..pdf_utils import generic
from ..pdf_utils.revisions import DocumentRevision
from ..report import (
    ReportItem,
    ReportItemStatus,
    ValidationReport,
    ValidationResult,
)
from ..util import OrderedEnum
from .document import EmbeddedSignature, SignedDocument, enumerate_form_fields

if TYPE_CHECKING:
    from ..builder import ValidatorChainBuilder

__all__ = [
    'AccessPermissions',
    'DocumentRevisionsValidator',
    'compare_pdf_objects',
    'FORM_FIELD_KEYS',
]

logger = logging.getLogger(__name__)

_ObjKey = Tuple[int, int]


class AccessPermissions(OrderedEnum):
    """
    Indicates a ``/DocMDP`` access level, ordered from most to least
    restrictive.
    """

    NO_CHANGES_PERMITTED = 1
    """
    No changes to the document are allowed, except for DSS updates and
    the addition of document timestamps.
    """

    FORM_FIELDS_MODIFICATION = 2
    """
    Form filling and signing are allowed.
    """

    ANNOTATION_MODIFICATION = 3
    """
    Form filling, signing and commenting are allowed.
    """

    UNSPECIFIED = 4
    """
    No level requested; the level is derived from the document.
    """

    @classmethod
    def from_level(cls, level) -> Optional['AccessPermissions']:
        """
        Map a ``/P`` value to an access level.

        :return:
            The access level, or ``None`` if the value is not a defined level.
        """
        if isinstance(level, int) and 1 <= level <= 3:
            return cls(int(level))
        return None


FORM_FIELD_KEYS = frozenset(
    {
        '/FT',
        '/Parent',
        '/Kids',
        '/T',
        '/TU',
        '/TM',
        '/Ff',
        '/V',
        '/DV',
        '/AA',
        '/DA',
        '/Q',
        '/DS',
        '/RV',
        '/Opt',
        '/MaxLen',
        '/TI',
        '/I',
        '/Lock',
        '/SV',
    }
)
"""
Keys that belong to the field part of a field dictionary; all other keys
of a merged field belong to its widget annotation.
"""


def _raw(dictionary, key):
    if dictionary is None:
        return None
    try:
        value = dictionary.raw_get(key)
    except KeyError:
        return None
    return None if isinstance(value, generic.NullObject) else value


def _deref(value):
    if value is None:
        return None
    value = value.get_object()
    return None if isinstance(value, generic.NullObject) else value


def _text(value) -> str:
    if isinstance(value, generic.TextStringObject):
        return str(value)
    elif isinstance(value, generic.ByteStringObject):
        return value.decode('latin-1')
    return ''


def _is_form_field(dictionary: generic.DictionaryObject) -> bool:
    return '/FT' in dictionary or '/T' in dictionary


def _is_widget(dictionary: generic.DictionaryObject) -> bool:
    return dictionary.get('/Subtype') == '/Widget'


def _is_pure_widget(dictionary: generic.DictionaryObject) -> bool:
    return _is_widget(dictionary) and not _is_form_field(dictionary)


def _form_fields(fields) -> List[generic.DictionaryObject]:
    result = []
    for field in fields or ():
        if isinstance(field, generic.DictionaryObject) and _is_form_field(
            field
        ):
            if not any(field is other for other in result):
                result.append(field)
    return result


def _widget_annotations(fields) -> List[generic.DictionaryObject]:
    return [
        annot
        for annot in fields or ()
        if isinstance(annot, generic.DictionaryObject)
        and _is_pure_widget(annot)
    ]


def compare_pdf_objects(obj1, obj2, visited: Optional[Set[int]] = None):
    """
    Deep comparison of two PDF objects taken from different revisions.

    The objects are expected as they are stored in their containers, i.e.
    without resolving indirect references first. Indirect references are
    followed, but an object is never considered equal to one that changed
    from being direct to indirect or vice versa.

    :param obj1:
        An object from the previous revision, or ``None``.
    :param obj2:
        An object from the current revision, or ``None``.
    :param visited:
        Identities of containers already compared in this traversal.
    :return:
        ``True`` if the objects are equivalent.
    """
    if visited is None:
        visited = set()
    if obj1 is obj2:
        return True
    if obj1 is None or obj2 is None:
        return False
    obj1_indirect = isinstance(obj1, generic.IndirectObject)
    if obj1_indirect != isinstance(obj2, generic.IndirectObject):
        return False
    if obj1_indirect:
        return compare_pdf_objects(
            obj1.get_object(), obj2.get_object(), visited
        )
    if type(obj1) is not type(obj2):
        return False
    if isinstance(obj1, (generic.DictionaryObject, generic.ArrayObject)):
        if id(obj1) in visited:
            return True
        visited.add(id(obj1))
    if isinstance(obj1, generic.StreamObject):
        return obj1.data == obj2.data and _compare_dicts(obj1, obj2, visited)
    elif isinstance(obj1, generic.DictionaryObject):
        return _compare_dicts(obj1, obj2, visited)
    elif isinstance(obj1, generic.ArrayObject):
        return len(obj1) == len(obj2) and all(
            compare_pdf_objects(x, y, visited)
            for x, y in zip(obj1.raw_values(), obj2.raw_values())
        )
    return obj1 == obj2


def _compare_dicts(dict1, dict2, visited) -> bool:
    if set(dict1.keys()) != set(dict2.keys()):
        return False
    return all(
        compare_pdf_objects(dict1.raw_get(key), dict2.raw_get(key), visited)
        for key in dict1.keys()
    )


def _add_reference(allowed: Set[_ObjKey], raw_value):
    if isinstance(raw_value, generic.IndirectObject):
        allowed.add((raw_value.idnum, raw_value.generation))


def _add_array_entries(allowed: Set[_ObjKey], container, key):
    arr = container.get_typed(key, generic.ArrayObject)
    if arr is None:
        return
    _add_reference(allowed, _raw(container, key))
    for entry in arr.raw_values():
        _add_reference(allowed, entry)


def _add_nested_entries(allowed: Set[_ObjKey], raw_value):
    if isinstance(raw_value, generic.IndirectObject):
        key = (raw_value.idnum, raw_value.generation)
        if key in allowed:
            return
        allowed.add(key)
    value = raw_value.get_object()
    if isinstance(value, generic.DictionaryObject):
        for entry in value.values():
            _add_nested_entries(allowed, entry)
    elif isinstance(value, generic.ArrayObject):
        for entry in value.raw_values():
            _add_nested_entries(allowed, entry)


def _add_nested_dictionary_entries(
    allowed: Set[_ObjKey], dictionary: generic.DictionaryObject
):
    # dict.values() does not dereference
    for entry in dictionary.values():
        _add_nested_entries(allowed, entry)


class DocumentRevisionsValidator:
    """
    Validates the modifications made in the incremental updates of a
    document against the DocMDP and FieldMDP restrictions of its
    signatures.

    The access level and locked fields discovered while walking the
    revisions are stored on the instance, and reset on every call to
    :meth:`validate_all_document_revisions`.
    """

    DOC_MDP_CHECK = "DocMDP check."
    FIELD_MDP_CHECK = "FieldMDP check."

    ACCESS_PERMISSIONS_ADDED = (
        "Access permissions level specified for \"{0}\" approval signature "
        "is higher than previous one specified. These access permissions "
        "will be ignored."
    )
    ACROFORM_REMOVED = "AcroForm dictionary was removed from catalog."
    ANNOTATIONS_MODIFIED = (
        "Field annotations were removed, added or unexpectedly modified."
    )
    DEVELOPER_EXTENSION_REMOVED = (
        "Developer extension \"{0}\" dictionary was removed or unexpectedly "
        "modified."
    )
    DIRECT_OBJECT = "{0} must be an indirect reference."
    DOCUMENT_WITHOUT_SIGNATURES = "Document doesn't contain any signatures."
    DSS_REMOVED = "DSS dictionary was removed from catalog."
    EXTENSIONS_REMOVED = "Extensions dictionary was removed from the catalog."
    EXTENSIONS_TYPE = "Developer extensions must be a dictionary."
    EXTENSION_LEVEL_DECREASED = (
        "Extension level number in developer extension \"{0}\" dictionary "
        "was decreased."
    )
    FIELD_NOT_DICTIONARY = (
        "Form field \"{0}\" or one of its widgets is not a dictionary. It "
        "will not be validated."
    )
    FIELD_REMOVED = "Form field {0} was removed or unexpectedly modified."
    LOCKED_FIELD_KIDS_ADDED = "Kids were added to locked form field \"{0}\"."
    LOCKED_FIELD_KIDS_REMOVED = (
        "Kids were removed from locked form field \"{0}\" ."
    )
    LOCKED_FIELD_MODIFIED = (
        "Locked form field \"{0}\" or one of its widgets was modified."
    )
    LOCKED_FIELD_REMOVED = (
        "Locked form field \"{0}\" was removed from the document."
    )
    NOT_ALLOWED_ACROFORM_CHANGES = (
        "PDF document AcroForm contains changes other than document "
        "timestamp (docMDP level >= 1), form fill-in and digital signatures "
        "(docMDP level >= 2), adding or editing annotations (docMDP level 3), "
        "which are not allowed."
    )
    NOT_ALLOWED_CATALOG_CHANGES = (
        "PDF document catalog contains changes other than DSS dictionary and "
        "DTS addition (docMDP level >= 1), form fill-in and digital "
        "signatures (docMDP level >= 2), adding or editing annotations "
        "(docMDP level 3)."
    )
    OBJECT_REMOVED = (
        "Object \"{0}\", which is not allowed to be removed, was removed from "
        "the document through XREF table."
    )
    PAGES_MODIFIED = "Pages structure was unexpectedly modified."
    PAGE_ANNOTATIONS_MODIFIED = "Page annotations were unexpectedly modified."
    PAGE_MODIFIED = "Page was unexpectedly modified."
    PERMISSIONS_REMOVED = "Permissions dictionary was removed from the catalog."
    PERMISSIONS_TYPE = "Permissions must be a dictionary."
    PERMISSION_REMOVED = (
        "Permission \"{0}\" dictionary was removed or unexpectedly modified."
    )
    REFERENCE_REMOVED = (
        "Signature reference dictionary was removed or unexpectedly modified."
    )
    REVISIONS_READING_EXCEPTION = (
        "Unexpected error occurred during document revisions reading."
    )
    SIGNATURE_MODIFIED = "Signature {0} was unexpectedly modified."
    SIGNATURE_REVISION_NOT_FOUND = (
        "Not possible to identify document revision corresponding to the "
        "first signature in the document."
    )
    TOO_MANY_CERTIFICATION_SIGNATURES = (
        "Document contains more than one certification signature."
    )
    UNEXPECTED_ENTRY_IN_XREF = (
        "New PDF document revision contains unexpected entry \"{0}\" in XREF "
        "table."
    )
    UNEXPECTED_FORM_FIELD = (
        "New PDF document revision contains unexpected form field \"{0}\"."
    )
    UNKNOWN_ACCESS_PERMISSIONS = (
        "Access permissions level number specified for \"{0}\" signature is "
        "undefined. Default level 2 will be used instead."
    )
    UNRECOGNIZED_ACTION = (
        "Signature field lock dictionary contains unrecognized \"Action\" "
        "value \"{0}\". \"All\" will be used instead."
    )

    def __init__(self, builder: 'ValidatorChainBuilder'):
        self._builder = builder
        self._locked_fields: Set[str] = set()
        self._access_permissions = AccessPermissions.ANNOTATION_MODIFICATION
        self._requested_access_permissions = AccessPermissions.UNSPECIFIED
        self._unexpected_xref_changes_status = ReportItemStatus.INFO
        # identity sets
        self._checked_annots: Dict[int, generic.DictionaryObject] = {}
        self._newly_added_fields: Dict[int, generic.DictionaryObject] = {}

    def set_access_permissions(
        self, access_permissions: AccessPermissions
    ) -> 'DocumentRevisionsValidator':
        """
        Set the access level to validate against. Unless the level is
        :attr:`.AccessPermissions.UNSPECIFIED`, the levels specified by
        the signatures in the document are ignored.
        """
        self._requested_access_permissions = access_permissions
        return self

    def set_unexpected_xref_changes_status(
        self, status: ReportItemStatus
    ) -> 'DocumentRevisionsValidator':
        """
        Set the status of report items about unexpected objects written or
        freed by an incremental update. The default is
        :attr:`.ReportItemStatus.INFO`.
        """
        self._unexpected_xref_changes_status = status
        return self

    @property
    def access_permissions(self) -> AccessPermissions:
        """
        The access level currently in effect.
        """
        if self._requested_access_permissions != AccessPermissions.UNSPECIFIED:
            return self._requested_access_permissions
        return self._access_permissions

    @property
    def locked_fields(self) -> Set[str]:
        return set(self._locked_fields)

    def _report(self, report, check_name, message, status, cause=None):
        report.add_report_item(
            ReportItem(
                check_name=check_name,
                message=message,
                status=status,
                exception_cause=cause,
            )
        )

    def _invalid(self, report, message, check_name=None):
        self._report(
            report,
            check_name or self.DOC_MDP_CHECK,
            message,
            ReportItemStatus.INVALID,
        )

    def _stop_validation(
        self, report: ValidationReport, context: ValidationContext
    ) -> bool:
        return (
            not self._builder.properties.get_continue_after_failure(context)
            and report.validation_result == ValidationResult.INVALID
        )

    def _reset(self):
        self._locked_fields.clear()
        self._access_permissions = AccessPermissions.ANNOTATION_MODIFICATION
        self._checked_annots = {}
        self._newly_added_fields = {}

    def validate_all_document_revisions(
        self, context: ValidationContext, document: SignedDocument
    ) -> ValidationReport:
        """
        Validate all revisions of a document following the revision covered
        by its first signature.

        :param context:
            The context in which the validation takes place.
        :param document:
            The document to validate.
        :return:
            A new :class:`.ValidationReport`.
        """
        self._reset()
        local_context = context.set_validator_context(
            ValidatorContext.DOCUMENT_REVISIONS_VALIDATOR
        )
        report = ValidationReport()
        revisions = document.revisions
        pending = document.embedded_signatures
        if not pending:
            self._report(
                report,
                self.DOC_MDP_CHECK,
                self.DOCUMENT_WITHOUT_SIGNATURES,
                ReportItemStatus.INFO,
            )
            return report

        signature_found = False
        certification_signature_found = False
        for ix, revision in enumerate(revisions):
            if pending and self._revision_contains_signature(
                document, ix, pending[0].fq_name
            ):
                signature = pending.pop(0)
                logger.debug(
                    "Signature %s covers revision %d",
                    signature.fq_name,
                    ix,
                )
                signature_found = True
                if signature.is_certification_signature:
                    if certification_signature_found:
                        self._report(
                            report,
                            self.DOC_MDP_CHECK,
                            self.TOO_MANY_CERTIFICATION_SIGNATURES,
                            ReportItemStatus.INDETERMINATE,
                        )
                    else:
                        certification_signature_found = True
                        self._update_certification_access_permissions(
                            signature, report
                        )
                self._update_approval_access_permissions(
                    signature.sig_field, report
                )
                self._update_field_lock(revision, signature.sig_field, report)
            if signature_found and ix < len(revisions) - 1:
                self.validate_revision(
                    revision, revisions[ix + 1], report, local_context
                )
            if self._stop_validation(report, local_context):
                break

        if not signature_found:
            self._invalid(report, self.SIGNATURE_REVISION_NOT_FOUND)
        return report

    def validate_revision(
        self,
        previous: DocumentRevision,
        current: DocumentRevision,
        report: ValidationReport,
        context: ValidationContext,
    ):
        """
        Validate the changes made by an incremental update.

        :param previous:
            The revision preceding the update.
        :param current:
            The revision produced by the update.
        :param report:
            Report to which findings are added.
        :param context:
            The context in which the validation takes place.
        """
        if previous is current:
            return
        try:
            if not self._compare_catalogs(previous, current, report, context):
                return
            current_allowed = self._create_allowed_references(current)
            previous_allowed = self._create_allowed_references(previous)
            self._check_freed_references(
                previous, current, previous_allowed, current_allowed, report
            )
            self._check_updated_references(
                previous, current, previous_allowed, current_allowed, report
            )
        except Exception as e:
            logger.warning(
                "Failed to compare revision %d with revision %d",
                previous.revision,
                current.revision,
                exc_info=e,
            )
            self._report(
                report,
                self.DOC_MDP_CHECK,
                self.REVISIONS_READING_EXCEPTION,
                ReportItemStatus.INDETERMINATE,
                cause=e,
            )

    def _check_freed_references(
        self, previous, current, previous_allowed, current_allowed, report
    ):
        for ref in sorted(
            current.freed_refs, key=lambda r: (r.idnum, r.generation)
        ):
            if ref.idnum == 0 and ref.generation == 65535:
                continue
            # an object may only be freed if the structure referencing it
            # was moved to another object in this update
            allowed_to_be_removed = any(
                idnum == ref.idnum for idnum, _ in previous_allowed
            ) and not any(idnum == ref.idnum for idnum, _ in current_allowed)
            was_in_previous = (
                previous.get_object_by_number(ref.idnum) is not None
            )
            if was_in_previous and not allowed_to_be_removed:
                self._report(
                    report,
                    self.DOC_MDP_CHECK,
                    self.OBJECT_REMOVED.format(ref.idnum),
                    self._unexpected_xref_changes_status,
                )

    def _check_updated_references(
        self, previous, current, previous_allowed, current_allowed, report
    ):
        for ref in sorted(
            current.updated_refs, key=lambda r: (r.idnum, r.generation)
        ):
            key = (ref.idnum, ref.generation)
            if key in current_allowed and (
                previous.get_object_by_number(ref.idnum) is None
                or key in previous_allowed
            ):
                continue
            obj = current.get_object_by_number(ref.idnum)
            if isinstance(obj, generic.StreamObject) and obj.get('/Type') in (
                '/XRef',
                '/ObjStm',
            ):
                continue
            self._report(
                report,
                self.DOC_MDP_CHECK,
                self.UNEXPECTED_ENTRY_IN_XREF.format(ref.idnum),
                self._unexpected_xref_changes_status,
            )

    # Access permissions

    def _revision_contains_signature(
        self, document: SignedDocument, ix: int, name: str
    ) -> bool:
        revisions = document.revisions[: ix + 1]
        partial = SignedDocument(
            revisions, document.data[: revisions[-1].eof_offset]
        )
        try:
            signature = partial.get_signature(name)
            return signature is not None and signature.covers_whole_document()
        except PdfReadError as e:
            logger.debug(
                "Could not evaluate coverage of %s in revision %d: %s",
                name,
                ix,
                e,
            )
            return False

    def _update_certification_access_permissions(
        self, signature: EmbeddedSignature, report: ValidationReport
    ):
        params = signature.docmdp_transform_params
        level = (
            None
            if params is None
            else params.get_typed('/P', generic.NumberObject)
        )
        if level is None:
            self._access_permissions = (
                AccessPermissions.FORM_FIELDS_MODIFICATION
            )
            return
        access_permissions = AccessPermissions.from_level(level)
        if access_permissions is None:
            self._report(
                report,
                self.DOC_MDP_CHECK,
                self.UNKNOWN_ACCESS_PERMISSIONS.format(signature.fq_name),
                ReportItemStatus.INDETERMINATE,
            )
            access_permissions = AccessPermissions.FORM_FIELDS_MODIFICATION
        self._access_permissions = access_permissions

    def _update_approval_access_permissions(
        self, signature_field: generic.DictionaryObject, report
    ):
        field_lock = signature_field.get_typed('/Lock', generic.DictionaryObject)
        if field_lock is None:
            return
        new_access_permissions = AccessPermissions.from_level(
            field_lock.get_typed('/P', generic.NumberObject)
        )
        if new_access_permissions is None:
            return
        if self._access_permissions < new_access_permissions:
            self._report(
                report,
                self.DOC_MDP_CHECK,
                self.ACCESS_PERMISSIONS_ADDED.format(
                    _text(signature_field.get('/T'))
                ),
                ReportItemStatus.INDETERMINATE,
            )
        else:
            self._access_permissions = new_access_permissions

    def _update_field_lock(
        self,
        revision: DocumentRevision,
        signature_field: generic.DictionaryObject,
        report: ValidationReport,
    ):
        field_lock = signature_field.get_typed('/Lock', generic.DictionaryObject)
        if field_lock is None:
            return
        action = field_lock.get_typed('/Action', generic.NameObject)
        if action is None:
            return
        fields = field_lock.get_typed('/Fields', generic.ArrayObject)
        field_names = [
            _text(name)
            for name in fields or ()
            if isinstance(
                name, (generic.TextStringObject, generic.ByteStringObject)
            )
        ]
        if action == '/Include':
            self._locked_fields.update(field_names)
        elif action == '/Exclude':
            self._lock_all_form_fields(revision, field_names)
        else:
            if action != '/All':
                self._invalid(
                    report,
                    self.UNRECOGNIZED_ACTION.format(action[1:]),
                    check_name=self.FIELD_MDP_CHECK,
                )
            self._lock_all_form_fields(revision, ())

    def _lock_all_form_fields(self, revision: DocumentRevision, excluded):
        acroform = revision.root.get_typed('/AcroForm', generic.DictionaryObject)
        if acroform is None:
            return
        fields = acroform.get_typed('/Fields', generic.ArrayObject)
        for name, _ in enumerate_form_fields(fields):
            if name not in excluded:
                self._locked_fields.add(name)

    # Catalog comparison

    def _compare_catalogs(
        self,
        previous: DocumentRevision,
        current: DocumentRevision,
        report: ValidationReport,
        context: ValidationContext,
    ) -> bool:
        previous_catalog = previous.root
        current_catalog = current.root
        excluded = (
            '/Metadata',
            '/Extensions',
            '/Perms',
            '/DSS',
            '/AcroForm',
            '/Pages',
        )
        if not compare_pdf_objects(
            previous_catalog.without(*excluded),
            current_catalog.without(*excluded),
        ):
            self._invalid(report, self.NOT_ALLOWED_CATALOG_CHANGES)
            return False
        # the first check to fail terminates the chain; the stop rule
        # only determines whether its findings are final
        result = self._compare_extensions(
            _raw(previous_catalog, '/Extensions'),
            _raw(current_catalog, '/Extensions'),
            report,
        )
        if self._stop_validation(report, context):
            return result
        result = result and self._compare_permissions(
            _raw(previous_catalog, '/Perms'),
            _raw(current_catalog, '/Perms'),
            report,
        )
        if self._stop_validation(report, context):
            return result
        result = result and self._compare_dss(
            _raw(previous_catalog, '/DSS'),
            _raw(current_catalog, '/DSS'),
            report,
        )
        if self._stop_validation(report, context):
            return result
        result = result and self._compare_acroforms_with_field_mdp(
            previous, current, report
        )
        if self._stop_validation(report, context):
            return result
        result = result and self._compare_acroforms(
            previous_catalog.get_typed('/AcroForm', generic.DictionaryObject),
            current_catalog.get_typed('/AcroForm', generic.DictionaryObject),
            report,
        )
        if self._stop_validation(report, context):
            return result
        return result and self._compare_pages(
            previous_catalog.get_typed('/Pages', generic.DictionaryObject),
            current_catalog.get_typed('/Pages', generic.DictionaryObject),
            report,
        )

    def _compare_extensions(self, previous_raw, current_raw, report) -> bool:
        if previous_raw is None or compare_pdf_objects(
            previous_raw, current_raw
        ):
            return True
        if current_raw is None:
            self._invalid(report, self.EXTENSIONS_REMOVED)
            return False
        previous_extensions = _deref(previous_raw)
        current_extensions = _deref(current_raw)
        if not isinstance(
            previous_extensions, generic.DictionaryObject
        ) or not isinstance(current_extensions, generic.DictionaryObject):
            self._invalid(report, self.EXTENSIONS_TYPE)
            return False
        result = True
        for key in previous_extensions.keys():
            previous_extension = previous_extensions.get_typed(
                key, generic.DictionaryObject
            )
            current_extension = current_extensions.get_typed(
                key, generic.DictionaryObject
            )
            if previous_extension is None or current_extension is None:
                self._invalid(
                    report, self.DEVELOPER_EXTENSION_REMOVED.format(key)
                )
                result = False
                continue
            # apart from the extension level, nothing may change
            if not compare_pdf_objects(
                previous_extension.without('/ExtensionLevel'),
                current_extension.without('/ExtensionLevel'),
            ):
                self._invalid(
                    report, self.DEVELOPER_EXTENSION_REMOVED.format(key)
                )
                result = False
                continue
            previous_level = previous_extension.get_typed(
                '/ExtensionLevel', generic.NumberObject
            )
            current_level = current_extension.get_typed(
                '/ExtensionLevel', generic.NumberObject
            )
            if previous_level is not None and (
                current_level is None or previous_level > current_level
            ):
                self._invalid(
                    report, self.EXTENSION_LEVEL_DECREASED.format(key)
                )
                result = False
        return result

    def _compare_permissions(self, previous_raw, current_raw, report) -> bool:
        if previous_raw is None or compare_pdf_objects(
            previous_raw, current_raw
        ):
            return True
        if current_raw is None:
            self._invalid(report, self.PERMISSIONS_REMOVED)
            return False
        previous_perms = _deref(previous_raw)
        current_perms = _deref(current_raw)
        if not isinstance(
            previous_perms, generic.DictionaryObject
        ) or not isinstance(current_perms, generic.DictionaryObject):
            self._invalid(report, self.PERMISSIONS_TYPE)
            return False
        result = True
        for key in previous_perms.keys():
            current_permission = current_perms.get_typed(
                key, generic.DictionaryObject
            )
            # permission values are signature dictionaries
            if current_permission is None or not (
                self._compare_signature_dictionaries(
                    previous_perms.get(key), current_permission, report
                )
            ):
                self._invalid(report, self.PERMISSION_REMOVED.format(key))
                result = False
        return result

    def _compare_dss(self, previous_raw, current_raw, report) -> bool:
        if previous_raw is None:
            return True
        if current_raw is None:
            self._invalid(report, self.DSS_REMOVED)
            return False
        return True

    def _compare_acroforms_with_field_mdp(
        self,
        previous: DocumentRevision,
        current: DocumentRevision,
        report: ValidationReport,
    ) -> bool:
        previous_acroform = previous.root.get_typed(
            '/AcroForm', generic.DictionaryObject
        )
        current_acroform = current.root.get_typed(
            '/AcroForm', generic.DictionaryObject
        )
        if previous_acroform is None or current_acroform is None:
            return True
        if self.access_permissions == AccessPermissions.NO_CHANGES_PERMITTED:
            # covered by the DocMDP checks
            return True
        current_fields = dict(
            enumerate_form_fields(
                current_acroform.get_typed('/Fields', generic.ArrayObject)
            )
        )
        result = True
        for name, previous_field in enumerate_form_fields(
            previous_acroform.get_typed('/Fields', generic.ArrayObject)
        ):
            if name not in self._locked_fields:
                continue
            current_field = current_fields.get(name)
            if current_field is None:
                self._invalid(
                    report,
                    self.LOCKED_FIELD_REMOVED.format(name),
                    check_name=self.FIELD_MDP_CHECK,
                )
                result = False
                continue
            if not self._compare_locked_field(
                previous_field, current_field, name, report
            ):
                result = False
        return result

    def _compare_locked_field(
        self,
        previous_field: generic.DictionaryObject,
        current_field: generic.DictionaryObject,
        name: str,
        report: ValidationReport,
    ) -> bool:
        def modified():
            self._invalid(
                report,
                self.LOCKED_FIELD_MODIFIED.format(name),
                check_name=self.FIELD_MDP_CHECK,
            )
            return False

        excluded = ('/Kids', '/P', '/Parent', '/V')
        if not compare_pdf_objects(
            previous_field.without(*excluded), current_field.without(*excluded)
        ):
            return modified()
        if current_field.get('/FT') == '/Sig':
            if not self._compare_signature_dictionaries(
                _deref(_raw(previous_field, '/V')),
                _deref(_raw(current_field, '/V')),
                report,
            ):
                return modified()
        elif not compare_pdf_objects(
            _raw(previous_field, '/V'), _raw(current_field, '/V')
        ):
            return modified()
        if not self._compare_references(
            _raw(previous_field, '/P'),
            _raw(current_field, '/P'),
            report,
            "Page object with which field annotation is associated",
        ) or not self._compare_references(
            _raw(previous_field, '/Parent'),
            _raw(current_field, '/Parent'),
            report,
            "Form field parent",
        ):
            return modified()

        previous_kids = previous_field.get_typed('/Kids', generic.ArrayObject)
        current_kids = current_field.get_typed('/Kids', generic.ArrayObject)
        if previous_kids is None and current_kids is None:
            return True
        if previous_kids is None or len(previous_kids) < len(current_kids):
            self._invalid(
                report,
                self.LOCKED_FIELD_KIDS_ADDED.format(name),
                check_name=self.FIELD_MDP_CHECK,
            )
            return False
        if current_kids is None or len(previous_kids) > len(current_kids):
            self._invalid(
                report,
                self.LOCKED_FIELD_KIDS_REMOVED.format(name),
                check_name=self.FIELD_MDP_CHECK,
            )
            return False
        for previous_kid, current_kid in zip(previous_kids, current_kids):
            if not isinstance(
                previous_kid, generic.DictionaryObject
            ) or not isinstance(current_kid, generic.DictionaryObject):
                self._report(
                    report,
                    self.FIELD_MDP_CHECK,
                    self.FIELD_NOT_DICTIONARY.format(name),
                    ReportItemStatus.INDETERMINATE,
                )
                continue
            if _is_pure_widget(previous_kid) and not self._compare_locked_field(
                previous_kid, current_kid, name, report
            ):
                return False
        return True

    def _compare_acroforms(self, previous_acroform, current_acroform, report):
        self._checked_annots = {}
        self._newly_added_fields = {}
        if previous_acroform is None:
            if current_acroform is None:
                return True
            fields = current_acroform.get_typed('/Fields', generic.ArrayObject)
            for field in fields or ():
                if not isinstance(
                    field, generic.DictionaryObject
                ) or not self._is_allowed_signature_field(field, report):
                    self._invalid(report, self.NOT_ALLOWED_ACROFORM_CHANGES)
                    return False
            return True
        if current_acroform is None:
            self._invalid(report, self.ACROFORM_REMOVED)
            return False

        excluded = ('/Fields', '/DR', '/DA')
        previous_fields = previous_acroform.get_typed(
            '/Fields', generic.ArrayObject
        )
        current_fields = current_acroform.get_typed(
            '/Fields', generic.ArrayObject
        )
        if (
            not compare_pdf_objects(
                previous_acroform.without(*excluded),
                current_acroform.without(*excluded),
            )
            or len(previous_fields or ()) > len(current_fields or ())
            or not self._compare_form_fields(
                previous_fields, current_fields, report
            )
        ):
            self._invalid(report, self.NOT_ALLOWED_ACROFORM_CHANGES)
            return False
        return True

    def _compare_form_fields(self, previous_fields, current_fields, report):
        current_set = _form_fields(current_fields)
        for previous_field in _form_fields(previous_fields):
            current_field = self._retrieve_same_field(
                current_set, previous_field
            )
            if current_field is None or not self._compare_fields(
                previous_field, current_field, report
            ):
                self._invalid(
                    report,
                    self.FIELD_REMOVED.format(_text(previous_field.get('/T'))),
                )
                return False
            if _is_widget(previous_field):
                self._checked_annots[id(previous_field)] = previous_field
            if _is_widget(current_field):
                self._checked_annots[id(current_field)] = current_field
            current_set = [f for f in current_set if f is not current_field]
        for field in current_set:
            if not self._is_allowed_signature_field(field, report):
                return False
        return self._compare_widgets(previous_fields, current_fields, report)

    def _retrieve_same_field(self, current_fields, previous_field):
        previous_copy = self._copy_field_dictionary(previous_field)
        for current_field in current_fields:
            if compare_pdf_objects(
                previous_copy, self._copy_field_dictionary(current_field)
            ):
                return current_field
        return None

    def _compare_fields(self, previous_field, current_field, report) -> bool:
        # DocMDP level 2 and up allows filling in fields, and updating their
        # appearances accordingly, but not changing the form's structure
        previous_value = _raw(previous_field, '/V')
        current_value = _raw(current_field, '/V')
        if (
            previous_value is None
            and current_value is None
            and current_field.get('/FT') == '/Ch'
        ):
            # the selected items of a choice field can be given by /I
            previous_value = _raw(previous_field, '/I')
            current_value = _raw(current_field, '/I')
        if current_field.get('/FT') == '/Sig':
            if not self._compare_signature_dictionaries(
                _deref(previous_value), _deref(current_value), report
            ):
                self._invalid(
                    report,
                    self.SIGNATURE_MODIFIED.format(
                        _text(current_field.get('/T'))
                    ),
                )
                return False
        elif (
            self.access_permissions == AccessPermissions.NO_CHANGES_PERMITTED
            and not compare_pdf_objects(previous_value, current_value)
        ):
            return False
        return self._compare_form_fields(
            previous_field.get_typed('/Kids', generic.ArrayObject),
            current_field.get_typed('/Kids', generic.ArrayObject),
            report,
        )

    def _compare_signature_dictionaries(
        self, previous_sig, current_sig, report
    ) -> bool:
        if previous_sig is None:
            return True
        if current_sig is None:
            return False
        if not isinstance(
            previous_sig, generic.DictionaryObject
        ) or not isinstance(current_sig, generic.DictionaryObject):
            return False
        if not compare_pdf_objects(
            previous_sig.without('/Reference'),
            current_sig.without('/Reference'),
        ):
            return False
        return self._compare_signature_references(
            previous_sig.get_typed('/Reference', generic.ArrayObject),
            current_sig.get_typed('/Reference', generic.ArrayObject),
            report,
        )

    def _compare_signature_references(
        self, previous_refs, current_refs, report
    ) -> bool:
        if previous_refs is None or compare_pdf_objects(
            previous_refs, current_refs
        ):
            return True
        if current_refs is None or len(previous_refs) != len(current_refs):
            self._invalid(report, self.REFERENCE_REMOVED)
            return False
        for previous_ref, current_ref in zip(previous_refs, current_refs):
            # /Data points to the object the modification analysis applies
            # to, which is expected to be a different revision of itself
            if (
                not isinstance(previous_ref, generic.DictionaryObject)
                or not isinstance(current_ref, generic.DictionaryObject)
                or not compare_pdf_objects(
                    previous_ref.without('/Data'), current_ref.without('/Data')
                )
                or not self._compare_references(
                    _raw(previous_ref, '/Data'),
                    _raw(current_ref, '/Data'),
                    report,
                    "Data entry in the signature reference dictionary",
                )
            ):
                self._invalid(report, self.REFERENCE_REMOVED)
                return False
        return True

    def _compare_widgets(self, previous_fields, current_fields, report):
        if self.access_permissions == AccessPermissions.ANNOTATION_MODIFICATION:
            return True
        previous_annots = _widget_annotations(previous_fields)
        current_annots = _widget_annotations(current_fields)
        if len(previous_annots) != len(current_annots):
            self._invalid(report, self.ANNOTATIONS_MODIFIED)
            return False
        for previous_annot, current_annot in zip(
            previous_annots, current_annots
        ):
            if (
                not compare_pdf_objects(
                    self._remove_appearance_related_properties(previous_annot),
                    self._remove_appearance_related_properties(current_annot),
                )
                or not self._compare_references(
                    _raw(previous_annot, '/P'),
                    _raw(current_annot, '/P'),
                    report,
                    "Page object with which annotation is associated",
                )
                or not self._compare_references(
                    _raw(previous_annot, '/Parent'),
                    _raw(current_annot, '/Parent'),
                    report,
                    "Annotation parent",
                )
            ):
                self._invalid(report, self.ANNOTATIONS_MODIFIED)
                return False
            self._checked_annots[id(previous_annot)] = previous_annot
            self._checked_annots[id(current_annot)] = current_annot
        return True

    def _compare_pages(self, previous_pages, current_pages, report) -> bool:
        if (previous_pages is None) != (current_pages is None):
            self._invalid(report, self.PAGES_MODIFIED)
            return False
        if previous_pages is None:
            return True
        excluded = ('/Kids', '/Parent')
        if not compare_pdf_objects(
            previous_pages.without(*excluded), current_pages.without(*excluded)
        ) or not self._compare_references(
            _raw(previous_pages, '/Parent'),
            _raw(current_pages, '/Parent'),
            report,
            "Page tree node parent",
        ):
            self._invalid(report, self.PAGES_MODIFIED)
            return False
        previous_kids = (
            previous_pages.get_typed('/Kids', generic.ArrayObject) or ()
        )
        current_kids = current_pages.get_typed('/Kids', generic.ArrayObject) or ()
        if len(previous_kids) != len(current_kids):
            self._invalid(report, self.PAGES_MODIFIED)
            return False
        for previous_kid, current_kid in zip(previous_kids, current_kids):
            if not isinstance(
                previous_kid, generic.DictionaryObject
            ) or not isinstance(current_kid, generic.DictionaryObject):
                self._invalid(report, self.PAGES_MODIFIED)
                return False
            if previous_kid.get('/Type') == '/Pages':
                if not self._compare_pages(previous_kid, current_kid, report):
                    return False
                continue
            excluded = ('/Annots', '/Parent')
            if not compare_pdf_objects(
                previous_kid.without(*excluded), current_kid.without(*excluded)
            ) or not self._compare_references(
                _raw(previous_kid, '/Parent'),
                _raw(current_kid, '/Parent'),
                report,
                "Page parent",
            ):
                self._invalid(report, self.PAGE_MODIFIED)
                return False
            if not self._compare_page_annotations(
                self._annots_not_allowed_to_be_modified(previous_kid),
                self._annots_not_allowed_to_be_modified(current_kid),
                report,
            ):
                self._invalid(report, self.PAGE_ANNOTATIONS_MODIFIED)
                return False
        return True

    def _compare_page_annotations(
        self, previous_annots, current_annots, report
    ) -> bool:
        if previous_annots is None and current_annots is None:
            return True
        if (
            previous_annots is None
            or current_annots is None
            or len(previous_annots) != len(current_annots)
        ):
            return False
        excluded = ('/P', '/Parent')
        for previous_annot, current_annot in zip(
            previous_annots, current_annots
        ):
            if not isinstance(
                previous_annot, generic.DictionaryObject
            ) or not isinstance(current_annot, generic.DictionaryObject):
                return False
            if (
                not compare_pdf_objects(
                    previous_annot.without(*excluded),
                    current_annot.without(*excluded),
                )
                or not self._compare_references(
                    _raw(previous_annot, '/P'),
                    _raw(current_annot, '/P'),
                    report,
                    "Page object with which annotation is associated",
                )
                or not self._compare_references(
                    _raw(previous_annot, '/Parent'),
                    _raw(current_annot, '/Parent'),
                    report,
                    "Annotation parent",
                )
            ):
                return False
        return True

    def _compare_references(
        self, previous_raw, current_raw, report, description
    ) -> bool:
        if (previous_raw is None) != (current_raw is None):
            return False
        if previous_raw is None:
            return True
        if not isinstance(
            previous_raw, generic.IndirectObject
        ) or not isinstance(current_raw, generic.IndirectObject):
            self._invalid(report, self.DIRECT_OBJECT.format(description))
            return False
        return previous_raw.reference == current_raw.reference

    def _is_allowed_signature_field(self, field, report) -> bool:
        # level 1 only allows document timestamps to be added, level 2 also
        # allows signature fields, provided that they are signed
        value = field.get_typed('/V', generic.DictionaryObject)
        if (
            field.get('/FT') != '/Sig'
            or value is None
            or (
                self.access_permissions
                == AccessPermissions.NO_CHANGES_PERMITTED
                and value.get('/Type') != '/DocTimeStamp'
            )
        ):
            self._invalid(
                report, self.UNEXPECTED_FORM_FIELD.format(_text(field.get('/T')))
            )
            return False
        if _is_widget(field):
            self._checked_annots[id(field)] = field
        else:
            for annot in _widget_annotations(
                field.get_typed('/Kids', generic.ArrayObject)
            ):
                self._checked_annots[id(annot)] = annot
        self._newly_added_fields[id(field)] = field
        return True

    def _annots_not_allowed_to_be_modified(self, page):
        annots = page.get_typed('/Annots', generic.ArrayObject)
        if (
            annots is None
            or self.access_permissions
            == AccessPermissions.ANNOTATION_MODIFICATION
        ):
            return None
        # widgets of form fields were already validated with the AcroForm
        return [
            annot for annot in annots if id(annot) not in self._checked_annots
        ]

    def _copy_field_dictionary(self, field):
        return self._remove_appearance_related_properties(
            field.without('/V', '/I', '/Parent', '/Kids')
        )

    def _remove_appearance_related_properties(self, annot):
        excluded = ['/P', '/Parent']
        access_permissions = self.access_permissions
        if access_permissions == AccessPermissions.FORM_FIELDS_MODIFICATION:
            excluded.extend(('/AP', '/AS', '/M', '/F'))
        elif access_permissions == AccessPermissions.ANNOTATION_MODIFICATION:
            excluded.extend(k for k in annot.keys() if k not in FORM_FIELD_KEYS)
        return annot.without(*excluded)

    # Allowed references

    def _create_allowed_references(
        self, revision: DocumentRevision
    ) -> Set[_ObjKey]:
        """
        Collect the objects that an incremental update may write at the
        current access level, as ``(idnum, generation)`` pairs.
        """
        allowed: Set[_ObjKey] = set()
        trailer = revision.trailer_view
        _add_reference(allowed, _raw(trailer, '/Info'))
        catalog = trailer.get_typed('/Root', generic.DictionaryObject)
        if catalog is None:
            return allowed
        _add_reference(allowed, _raw(trailer, '/Root'))
        _add_reference(allowed, _raw(catalog, '/Metadata'))

        dss = catalog.get_typed('/DSS', generic.DictionaryObject)
        if dss is not None:
            _add_reference(allowed, _raw(catalog, '/DSS'))
            self._add_dss_entries(allowed, dss)

        acroform = catalog.get_typed('/AcroForm', generic.DictionaryObject)
        if acroform is not None:
            _add_reference(allowed, _raw(catalog, '/AcroForm'))
            _add_reference(allowed, _raw(acroform, '/Fields'))
            self._add_form_field_entries(
                allowed, acroform.get_typed('/Fields', generic.ArrayObject)
            )
            resources = acroform.get_typed('/DR', generic.DictionaryObject)
            if resources is not None:
                _add_reference(allowed, _raw(acroform, '/DR'))
                _add_nested_dictionary_entries(allowed, resources)

        pages = catalog.get_typed('/Pages', generic.DictionaryObject)
        if pages is not None:
            _add_reference(allowed, _raw(catalog, '/Pages'))
            self._add_pages_entries(allowed, pages)
        return allowed

    def _add_dss_entries(self, allowed, dss):
        for key in ('/Certs', '/OCSPs', '/CRLs'):
            _add_array_entries(allowed, dss, key)
        vris = dss.get_typed('/VRI', generic.DictionaryObject)
        if vris is None:
            return
        _add_reference(allowed, _raw(dss, '/VRI'))
        for vri_raw in vris.values():
            _add_reference(allowed, vri_raw)
            vri = vri_raw.get_object()
            if isinstance(vri, generic.DictionaryObject):
                for key in ('/Cert', '/OCSP', '/CRL'):
                    _add_array_entries(allowed, vri, key)
                _add_reference(allowed, _raw(vri, '/TS'))

    def _add_pages_entries(self, allowed, pages):
        kids = pages.get_typed('/Kids', generic.ArrayObject)
        if kids is None:
            return
        _add_reference(allowed, _raw(pages, '/Kids'))
        for kid_raw in kids.raw_values():
            _add_reference(allowed, kid_raw)
            node = kid_raw.get_object()
            if not isinstance(node, generic.DictionaryObject):
                continue
            if node.get('/Type') == '/Pages':
                self._add_pages_entries(allowed, node)
                continue
            annots_raw = _raw(node, '/Annots')
            if annots_raw is None:
                continue
            _add_reference(allowed, annots_raw)
            annots = annots_raw.get_object()
            if (
                self.access_permissions
                == AccessPermissions.ANNOTATION_MODIFICATION
                and isinstance(annots, generic.ArrayObject)
            ):
                for annot_raw in annots.raw_values():
                    _add_nested_entries(allowed, annot_raw)

    def _add_form_field_entries(self, allowed, fields, prefix=None):
        for field_raw in (fields.raw_values() if fields is not None else ()):
            field = field_raw.get_object()
            if not isinstance(field, generic.DictionaryObject):
                continue
            if not _is_form_field(field):
                self._add_widget_annotation(allowed, field_raw, field)
                continue
            value_raw = _raw(field, '/V')
            value = _deref(value_raw)
            is_timestamp = (
                isinstance(value, generic.DictionaryObject)
                and value.get('/Type') == '/DocTimeStamp'
            )
            if (
                self.access_permissions
                == AccessPermissions.NO_CHANGES_PERMITTED
                and not is_timestamp
            ):
                continue
            _add_reference(allowed, field_raw)
            partial_name = _text(field.get('/T'))
            if prefix is None:
                name = partial_name
            else:
                name = f"{prefix}.{partial_name}" if partial_name else prefix
            if id(field) in self._newly_added_fields:
                # everything belonging to a new field may be added
                _add_nested_dictionary_entries(allowed, field)
            elif name not in self._locked_fields:
                # existing fields may only have their value and appearance
                # updated
                _add_reference(allowed, value_raw)
                if _is_widget(field):
                    self._add_widget_annotation(allowed, field_raw, field)
                else:
                    self._add_form_field_entries(
                        allowed,
                        field.get_typed('/Kids', generic.ArrayObject),
                        name,
                    )

    def _add_widget_annotation(self, allowed, annot_raw, annot):
        _add_reference(allowed, annot_raw)
        if self.access_permissions == AccessPermissions.ANNOTATION_MODIFICATION:
            _add_nested_dictionary_entries(
                allowed, annot.without(*FORM_FIELD_KEYS)
            )
            return
        appearance_raw = _raw(annot, '/AP')
        if appearance_raw is not None:
            _add_reference(allowed, appearance_raw)
            appearance = appearance_raw.get_object()
            if isinstance(appearance, generic.DictionaryObject):
                _add_nested_dictionary_entries(allowed, appearance)
        _add_reference(allowed, _raw(annot, '/AS'))
        _add_reference(allowed, _raw(annot, '/M'))
