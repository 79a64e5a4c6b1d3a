"""
auth/authorization.py -- Role-hierarchy rules for privileged mutations.

Rules (ADMIN > CHEFE > BOMBEIRO):
  - ADMIN may delete, or assign, any role.
  - Every other role may only act on roles strictly below its own.
    A CHEFE can manage BOMBEIRO records but not another CHEFE or an ADMIN;
    a BOMBEIRO can manage nobody.

Pure and stateless: no I/O, no logging of its own. Callers log denials.
"""

from __future__ import annotations

from auth.errors import ForbiddenError, ValidationError
from auth.models import Role


class AuthorizationValidator:
    def validate_deletion_permission(self, subject_role: Role | str, acting_role: Role | str) -> None:
        """Raise ForbiddenError unless acting_role may delete a user holding subject_role."""
        subject, actor = _role(subject_role), _role(acting_role)
        if not _may_act_on(actor, subject):
            raise ForbiddenError(f"Role {actor.value} cannot delete a user with role {subject.value}.")

    def validate_role_assignment(self, target_role: Role | str, acting_role: Role | str) -> None:
        """Raise ForbiddenError unless acting_role may grant target_role."""
        target, actor = _role(target_role), _role(acting_role)
        if not _may_act_on(actor, target):
            raise ForbiddenError(f"Role {actor.value} cannot assign role {target.value}.")


def _may_act_on(actor: Role, subject: Role) -> bool:
    return actor is Role.ADMIN or actor.outranks(subject)


def _role(value: Role | str) -> Role:
    try:
        return Role(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown role: {value!r}.") from exc
