"""Custom DRF permissions for the CRM API."""
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import BasePermission

from companies.services import get_user_company


class IsCompanyMember(BasePermission):
    """Allow authenticated users attached to an active company."""

    message = "Aucune entreprise active pour cet utilisateur."

    def has_permission(self, request, view):
        return bool(
            request.user
            and request.user.is_authenticated
            and get_user_company(request.user) is not None
        )


class IsAdmin(BasePermission):
    """Allow access to users with the ADMIN role."""

    message = "Action reservee aux administrateurs."

    def has_permission(self, request, view):
        return request.user.is_authenticated and (
            request.user.is_superuser or request.user.role == "ADMIN"
        )


class IsManagerOrAdmin(BasePermission):
    """Allow access to users with the ADMIN or MANAGER role."""

    message = "Action reservee aux administrateurs et gestionnaires."

    def has_permission(self, request, view):
        return request.user.is_authenticated and (
            request.user.is_superuser or request.user.role in ("ADMIN", "MANAGER")
        )


def resolve_company(request):
    """Return the caller's active company or raise PermissionDenied."""
    company = get_user_company(request.user)
    if company is None:
        raise PermissionDenied(IsCompanyMember.message)
    return company
