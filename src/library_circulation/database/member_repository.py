"""
Member registry: library accounts, their roles and borrow limits.

Authorization in the engine is a matter of comparing a member's role with the
closed ``MemberRole`` enumeration. The registry is the single place those
checks are made, so every ledger asks it rather than reading role strings.
"""

import logging

from sqlalchemy import func, select

from ..models.member import Member as MemberModel
from ..models.status import OPEN_LOAN_STATUSES, MemberRole
from .repository import (
    BaseLedger,
    DuplicateError,
    InvalidRequestError,
    InvalidTransitionError,
    UnauthorizedError,
    new_id,
)
from .schema import Loan as LoanDB
from .schema import Member as MemberDB

logger = logging.getLogger(__name__)


class MemberRegistry(BaseLedger):
    """Session-bound access to member accounts."""

    def get_row(self, member_id: str) -> MemberDB:
        return self._get(MemberDB, member_id, "Member")

    def get(self, member_id: str) -> MemberModel:
        return MemberModel.model_validate(self.get_row(member_id))

    def list_members(self, role: MemberRole | None = None) -> list[MemberModel]:
        query = select(MemberDB).order_by(MemberDB.name, MemberDB.id)
        if role is not None:
            query = query.where(MemberDB.role == MemberRole(role))
        return [MemberModel.model_validate(m) for m in self._all(query, "Failed to list members")]

    def register(
        self,
        name: str,
        role: MemberRole = MemberRole.MEMBER,
        email: str | None = None,
        max_borrow: int | None = None,
        member_id: str | None = None,
    ) -> MemberModel:
        """
        Create a member account.

        The borrow limit defaults to the configured limit for the role;
        cancelled accounts always get 0.

        Raises:
            InvalidRequestError: Negative borrow limit
            DuplicateError: If the id or email is already registered
        """
        role = MemberRole(role)
        if max_borrow is not None and max_borrow < 0:
            raise InvalidRequestError(f"max_borrow must be >= 0, got {max_borrow}")
        if member_id and self.session.get(MemberDB, member_id) is not None:
            raise DuplicateError(f"Member {member_id} already exists")
        if email:
            taken = self._first(
                select(MemberDB).where(MemberDB.email == email), "Failed to check member email"
            )
            if taken is not None:
                raise DuplicateError(f"Email {email} is already registered")

        if role == MemberRole.CANCELLED:
            limit = 0
        elif max_borrow is not None:
            limit = max_borrow
        else:
            limit = self.config.max_borrow_for(role.value)

        member = MemberDB(
            id=member_id or new_id("member"),
            name=name,
            email=email,
            role=role,
            max_borrow=limit,
            borrowed_count=0,
            created_at=self.now(),
            updated_at=self.now(),
        )
        self.session.add(member)
        self.session.flush()
        logger.info("Registered %s %s (limit %d)", role.value, member.id, limit)
        return MemberModel.model_validate(member)

    def set_role(self, member_id: str, role: MemberRole) -> MemberModel:
        """
        Change a member's role and reset the borrow limit to the role default.

        Raises:
            InvalidTransitionError: Cancelling an account that still has open loans
        """
        role = MemberRole(role)
        member = self.get_row(member_id)
        if role == MemberRole.CANCELLED and self.open_loan_count(member_id) > 0:
            raise InvalidTransitionError(
                f"Member {member_id} has open loans and cannot be cancelled"
            )
        member.role = role
        member.max_borrow = max(self.config.max_borrow_for(role.value), member.borrowed_count)
        member.updated_at = self.now()
        self.session.flush()
        return MemberModel.model_validate(member)

    def role_of(self, member_id: str) -> MemberRole:
        return MemberRole(self.get_row(member_id).role)

    def require_librarian(self, member_id: str | None) -> MemberDB:
        """
        Resolve the acting librarian.

        Raises:
            UnauthorizedError: No acting member, or the member is not a librarian
            NotFoundError: Unknown member id
        """
        if not member_id:
            raise UnauthorizedError("A librarian must be identified for this action")
        member = self.get_row(member_id)
        if member.role != MemberRole.LIBRARIAN:
            raise UnauthorizedError(f"Member {member_id} is not a librarian")
        return member

    def require_active(self, member_id: str) -> MemberDB:
        """Resolve a member that has not been cancelled."""
        member = self.get_row(member_id)
        if member.role == MemberRole.CANCELLED:
            raise UnauthorizedError(f"Member {member_id} account is cancelled")
        return member

    def open_loan_count(self, member_id: str) -> int:
        query = (
            select(func.count())
            .select_from(LoanDB)
            .where(LoanDB.member_id == member_id, LoanDB.status.in_(OPEN_LOAN_STATUSES))
        )
        return self._scalar(query, "Failed to count open loans") or 0
