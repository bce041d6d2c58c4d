"""
Document lifecycle state machine.

Draft -> Posted -> {Reversed | Deleted}; a draft may also be deleted.
Reversed and Deleted are terminal.
"""

from enum import Enum

from ledger_kernel.exceptions import ForbiddenReason, ModificationForbiddenError


class DocumentState(str, Enum):
    DRAFT = "draft"
    POSTED = "posted"
    REVERSED = "reversed"
    DELETED = "deleted"


_TRANSITIONS: dict[DocumentState, frozenset[DocumentState]] = {
    DocumentState.DRAFT: frozenset({DocumentState.POSTED, DocumentState.DELETED}),
    DocumentState.POSTED: frozenset({DocumentState.REVERSED, DocumentState.DELETED}),
    DocumentState.REVERSED: frozenset(),
    DocumentState.DELETED: frozenset(),
}


def can_transition(current: DocumentState | str, target: DocumentState | str) -> bool:
    return DocumentState(target) in _TRANSITIONS[DocumentState(current)]


def transition(
    current: DocumentState | str,
    target: DocumentState | str,
    *,
    document_id: str,
    action: str,
) -> DocumentState:
    """
    Return ``target`` if the move is legal.

    Raises:
        ModificationForbiddenError: reason INVALID_STATE otherwise.
    """
    if not can_transition(current, target):
        raise ModificationForbiddenError(
            document_id,
            action,
            ForbiddenReason.INVALID_STATE,
            detail=f"document is {DocumentState(current).value}",
        )
    return DocumentState(target)


def is_terminal(state: DocumentState | str) -> bool:
    return not _TRANSITIONS[DocumentState(state)]
