from django.contrib.auth.models import AbstractUser
from django.db import models
from django.utils import timezone


class User(AbstractUser):
    CUSTOMER = "CUSTOMER"
    AGENCY = "AGENCY"
    ADMIN = "ADMIN"
    ROLES = [
        (CUSTOMER, "Customer"),
        (AGENCY, "Agency"),
        (ADMIN, "Admin"),
    ]

    display_name = models.CharField(max_length=120, blank=True)
    phone = models.CharField(max_length=30, blank=True)
    role = models.CharField(max_length=20, choices=ROLES, default=CUSTOMER)

    @property
    def full_name(self) -> str:
        return self.display_name or self.get_full_name() or self.email

    @property
    def is_platform_admin(self) -> bool:
        return self.role == self.ADMIN


class AgencyMembership(models.Model):
    OWNER = "OWNER"
    MANAGER = "MANAGER"
    STAFF = "STAFF"
    ROLES = [
        (OWNER, "Owner"),
        (MANAGER, "Manager"),
        (STAFF, "Staff"),
    ]

    user = models.ForeignKey("User", on_delete=models.CASCADE, related_name="agency_memberships")
    agency = models.ForeignKey(
        "agencies.Agency",
        on_delete=models.CASCADE,
        related_name="memberships",
    )
    role = models.CharField(max_length=20, choices=ROLES, default=STAFF)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ("user", "agency")

    def __str__(self):
        return f"{self.user} @ {self.agency}"
