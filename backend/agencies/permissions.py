from rest_framework.permissions import BasePermission

from accounts.models import AgencyMembership


def user_can_manage_agency(user, agency_id) -> bool:
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    return AgencyMembership.objects.filter(
        user=user,
        agency_id=agency_id,
        is_active=True,
    ).exists()


def managed_agency_ids(user) -> list[int]:
    return list(
        AgencyMembership.objects.filter(user=user, is_active=True).values_list("agency_id", flat=True)
    )


class IsPlatformAdmin(BasePermission):
    """
    Allow access only to platform administrators.
    Superusers automatically pass.
    """

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        return user.is_superuser or user.is_platform_admin
