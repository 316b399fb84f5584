"""Storage layout compatibility checks for upgradeable-deployments library."""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from .logging import get_logger
from .logging_tags import STORAGE
from .types import IssueKind, Severity, StorageIssue, StorageSlot, TypeInfo, WarningKind

logger = get_logger(__name__)


class _LayoutWalker:
    """
    Walks two layouts position by position and collects issues.

    Slots at the same position must hold the same variable with a
    storage-compatible type. Variables may only be appended. The same rule
    applies to struct members, with one difference: a struct stored inline
    or as an array element cannot grow, since everything after it would
    shift, while a struct that is a mapping value lives in its own storage
    region and can.
    """

    def __init__(
        self,
        old_types: Mapping[str, TypeInfo],
        new_types: Mapping[str, TypeInfo],
        accepted_reorders: Set[str],
    ):
        self.old_types = old_types
        self.new_types = new_types
        self.accepted_reorders = accepted_reorders
        self.issues: List[StorageIssue] = []

    def _add(self, severity: Severity, kind: IssueKind, slot_name: str, path: str, position: int) -> None:
        self.issues.append(StorageIssue(severity, kind, slot_name, path, position))

    def walk_slots(self, old_slots: Sequence[StorageSlot], new_slots: Sequence[StorageSlot]) -> None:
        self._walk(old_slots, new_slots, prefix=None, top=None, own_region=True)

    def _walk(
        self,
        old_seq: Sequence[StorageSlot],
        new_seq: Sequence[StorageSlot],
        prefix: Optional[str],
        top: Optional[StorageSlot],
        own_region: bool,
    ) -> None:
        old_by_position = {slot.position: slot for slot in old_seq}
        new_by_position = {slot.position: slot for slot in new_seq}
        old_names = {slot.name for slot in old_seq}
        new_names = {slot.name for slot in new_seq}
        old_end = max(old_by_position) + 1 if old_by_position else 0

        for position in sorted(set(old_by_position) | set(new_by_position)):
            old = old_by_position.get(position)
            new = new_by_position.get(position)
            anchor = top or old or new
            slot_name = anchor.name
            slot_position = anchor.position

            def path_of(name: str) -> str:
                return name if prefix is None else f"{prefix}.{name}"

            if old is None:
                if position >= old_end:
                    # Appended variable or struct member
                    if top is not None and not own_region:
                        self._add(
                            Severity.FATAL, IssueKind.TYPE_CHANGE, slot_name, path_of(new.name), slot_position
                        )
                    continue
                # Filling a hole below the old end changes what is stored there
                self._add(Severity.FATAL, IssueKind.TYPE_CHANGE, slot_name, path_of(new.name), slot_position)
                continue

            if new is None:
                self._add(Severity.FATAL, IssueKind.MISSING_VARIABLE, slot_name, path_of(old.name), slot_position)
                continue

            if old.name != new.name and (old.name in new_names or new.name in old_names):
                moved = old.name if old.name in new_names else new.name
                path = path_of(moved)
                accepted = moved in self.accepted_reorders or path in self.accepted_reorders
                self._add(
                    Severity.WARNING if accepted else Severity.FATAL,
                    IssueKind.REORDERED,
                    moved if top is None else slot_name,
                    path,
                    slot_position,
                )
                continue

            if old.name != new.name:
                self._add(Severity.WARNING, IssueKind.RENAMED, slot_name, path_of(old.name), slot_position)

            # A value held directly in this sequence is stored inline
            self._compare_types(old.type_ref, new.type_ref, path_of(new.name), top or new, False)

    def _compare_types(
        self, old_id: str, new_id: str, path: str, top: StorageSlot, own_region: bool
    ) -> None:
        old_type = self.old_types.get(old_id)
        new_type = self.new_types.get(new_id)

        def fatal() -> None:
            self._add(Severity.FATAL, IssueKind.TYPE_CHANGE, top.name, path, top.position)

        if old_type is None or new_type is None:
            # Without type information only identical ids are accepted
            if old_type is not None or new_type is not None or old_id != new_id:
                fatal()
            return

        if old_type.kind != new_type.kind:
            fatal()
            return

        if (
            old_type.number_of_bytes is not None
            and new_type.number_of_bytes is not None
            and old_type.number_of_bytes != new_type.number_of_bytes
            and not (old_type.kind == "struct" and own_region)
        ):
            fatal()
            return

        if old_type.kind == "primitive":
            if old_type.label != new_type.label:
                fatal()
        elif old_type.kind == "contract":
            pass
        elif old_type.kind == "array":
            if old_type.length != new_type.length:
                fatal()
                return
            # Elements are packed back to back, so a growing element shifts its successors
            self._compare_nested(old_type.value_type, new_type.value_type, f"{path}[]", top, False)
        elif old_type.kind == "mapping":
            # Keys are hashed into the slot, they take no storage of their own
            self._compare_nested(old_type.value_type, new_type.value_type, f"{path}[*]", top, True)
        elif old_type.kind == "struct":
            if old_type.members is None or new_type.members is None:
                fatal()
                return
            self._walk(old_type.members, new_type.members, prefix=path, top=top, own_region=own_region)
        else:
            fatal()

    def _compare_nested(
        self, old_id: Optional[str], new_id: Optional[str], path: str, top: StorageSlot, own_region: bool
    ) -> None:
        if old_id is None or new_id is None:
            if old_id != new_id:
                self._add(Severity.FATAL, IssueKind.TYPE_CHANGE, top.name, path, top.position)
            return
        self._compare_types(old_id, new_id, path, top, own_region)


def compare_storage_layouts(
    old_slots: Sequence[StorageSlot],
    old_types: Mapping[str, TypeInfo],
    new_slots: Sequence[StorageSlot],
    new_types: Mapping[str, TypeInfo],
    accepted_reorders: Iterable[str] = (),
) -> List[StorageIssue]:
    """
    Diff two storage layouts of the same contract lineage.

    Args:
        old_slots: Layout recorded at the previous push
        old_types: Type table of the previous layout
        new_slots: Freshly compiled layout
        new_types: Type table of the new layout
        accepted_reorders: Variable names (or nested paths) whose reorder the
                           caller explicitly accepts; those are reported as
                           warnings instead of fatal issues

    Returns:
        Issues ordered by position. An empty old layout always yields none.
    """
    walker = _LayoutWalker(old_types, new_types, set(accepted_reorders))
    walker.walk_slots(old_slots, new_slots)

    for issue in walker.issues:
        if issue.is_fatal:
            logger.debug(f"{STORAGE} {issue}")
        else:
            logger.warning(f"{STORAGE} {issue}")

    return walker.issues


def fatal_issues(issues: Iterable[StorageIssue]) -> List[StorageIssue]:
    """Return only the issues that must block a push."""
    return [issue for issue in issues if issue.is_fatal]


_WARNING_KINDS: Dict[IssueKind, WarningKind] = {
    IssueKind.RENAMED: WarningKind.STORAGE_RENAMED,
    IssueKind.REORDERED: WarningKind.STORAGE_REORDER_ACCEPTED,
}


def warning_kinds(issues: Iterable[StorageIssue]) -> Set[WarningKind]:
    """Map non-fatal issues to the warning kinds recorded on a contract."""
    return {
        _WARNING_KINDS[issue.kind]
        for issue in issues
        if not issue.is_fatal and issue.kind in _WARNING_KINDS
    }
