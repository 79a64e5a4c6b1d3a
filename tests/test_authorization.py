"""Unit tests for auth/authorization.py -- role hierarchy checks."""

import pytest

from auth.authorization import AuthorizationValidator
from auth.errors import ForbiddenError, ValidationError
from auth.models import Role

validator = AuthorizationValidator()


@pytest.mark.parametrize("subject", list(Role))
def test_admin_may_delete_any_role(subject):
    validator.validate_deletion_permission(subject, Role.ADMIN)


def test_chefe_may_delete_bombeiro():
    validator.validate_deletion_permission(Role.BOMBEIRO, Role.CHEFE)


@pytest.mark.parametrize("subject", [Role.ADMIN, Role.CHEFE])
def test_chefe_may_not_delete_equal_or_higher(subject):
    with pytest.raises(ForbiddenError) as excinfo:
        validator.validate_deletion_permission(subject, Role.CHEFE)
    assert excinfo.value.status_code == 403


@pytest.mark.parametrize("subject", list(Role))
def test_bombeiro_may_delete_nobody(subject):
    with pytest.raises(ForbiddenError):
        validator.validate_deletion_permission(subject, Role.BOMBEIRO)


@pytest.mark.parametrize("target", list(Role))
def test_admin_may_assign_any_role(target):
    validator.validate_role_assignment(target, Role.ADMIN)


def test_chefe_may_assign_only_lower_roles():
    validator.validate_role_assignment(Role.BOMBEIRO, Role.CHEFE)
    with pytest.raises(ForbiddenError):
        validator.validate_role_assignment(Role.CHEFE, Role.CHEFE)
    with pytest.raises(ForbiddenError):
        validator.validate_role_assignment(Role.ADMIN, Role.CHEFE)


def test_plain_strings_are_accepted():
    validator.validate_deletion_permission("BOMBEIRO", "CHEFE")
    with pytest.raises(ForbiddenError):
        validator.validate_role_assignment("ADMIN", "CHEFE")


def test_unknown_role_is_a_validation_error():
    with pytest.raises(ValidationError):
        validator.validate_role_assignment("GENERAL", Role.ADMIN)
