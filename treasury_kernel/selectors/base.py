"""
Module: treasury_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/.  Module
    selectors subclass it.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller but MUST NOT
      call session.add(), session.delete(), session.commit(), or session.flush().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.  Row-locking reads used by a service's write path are the
      one exception and are named ``lock_*``.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC
from uuid import UUID

from sqlalchemy.orm import Session

from treasury_kernel.exceptions import NotFoundError


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs or computed results.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def parse_id(value: str | UUID, error_cls: type[NotFoundError]) -> UUID:
        """Coerce an external id; an unparseable id is simply not found."""
        if isinstance(value, UUID):
            return value
        try:
            return UUID(str(value))
        except ValueError as e:
            raise error_cls(str(value)) from e
