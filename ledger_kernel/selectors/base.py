"""
Module: ledger_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    exceptions.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never add, delete, flush or commit.
    - DTO return convention: selectors return frozen dataclasses, not ORM rows.
    - The caller owns the session and its transaction scope.

Audit relevance:
    There are no stored balances.  Every balance is derived from
    journal_entry_lines at query time.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Contract:
        Accepts a Session from the caller and performs read-only queries.
    """

    def __init__(self, session: Session):
        self.session = session
