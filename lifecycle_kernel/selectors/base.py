"""
Module: lifecycle_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.  Selectors
    form the query side of the kernel: structured read access to units, stages,
    and the transition log without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, models/, and
    the pure domain DTOs.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: Selectors accept a Session from the caller but MUST NOT
      call session.add(), session.delete(), session.commit(), or session.flush().
    - DTO return convention: Selectors return frozen dataclasses, never ORM
      instances.
    - Session ownership: the caller owns the session and its transaction scope,
      so a snapshot is consistent with whatever that transaction sees.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from lifecycle_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Guarantees:
        - session is stored as a public attribute for subclass query use.
        - No commit, flush, add, or delete operations are performed.
    """

    def __init__(self, session: Session):
        self.session = session
