from typing import Iterable, Sequence

from rest_framework.permissions import BasePermission

OPERATOR_SUPPORT = "operator_support"
OPERATOR_FINANCE = "operator_finance"
OPERATOR_ADMIN = "operator_admin"

OPERATOR_ROLES = (OPERATOR_SUPPORT, OPERATOR_FINANCE, OPERATOR_ADMIN)
# Roles allowed to move money (payout release, deposit refunds, paid cancellations).
FINANCE_ROLES = (OPERATOR_FINANCE, OPERATOR_ADMIN)


class IsOperator(BasePermission):
    """
    Allows access only to authenticated staff users.
    """

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and user.is_staff)


class HasOperatorRole(BasePermission):
    """
    Allows access to staff users in any of the required roles (groups).
    Superusers pass regardless of group membership.
    """

    required_roles: Sequence[str] = ()

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not (user and user.is_authenticated and user.is_staff):
            return False
        if user.is_superuser:
            return True
        if not self.required_roles:
            return False
        return user.groups.filter(name__in=self.required_roles).exists()

    @classmethod
    def with_roles(cls, roles: Iterable[str]):
        role_tuple = tuple(roles)

        class _HasOperatorRole(cls):
            required_roles = role_tuple

        _HasOperatorRole.__name__ = f"{cls.__name__}WithRoles"
        return _HasOperatorRole
