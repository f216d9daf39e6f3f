from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils import timezone

from accounts.models import AgencyMembership, User
from agencies.models import Agency
from tours.models import TourPackage


SEED_PASSWORD = "TripDesk123!"
SUPERUSER_EMAIL = "admin@tripdesk.test"
SUPERUSER_PASSWORD = "AdminTripDesk123!"


class Command(BaseCommand):
    help = "Populate the local development database with sample data."

    def handle(self, *args, **options):
        if not settings.DEBUG:
            raise CommandError("Refusing to seed data while DEBUG is False.")

        with transaction.atomic():
            self.stdout.write(self.style.MIGRATE_HEADING("Ensuring admin superuser"))
            self._ensure_superuser()

            self.stdout.write(self.style.MIGRATE_HEADING("Creating agencies"))
            himalaya = self._ensure_agency(
                slug="himalaya-trails",
                name="Himalaya Trails",
                email="hello@himalayatrails.test",
                phone="555-0100",
            )
            coastal = self._ensure_agency(
                slug="coastal-escapes",
                name="Coastal Escapes",
                email="info@coastalescapes.test",
                phone="555-0200",
            )

            self.stdout.write(self.style.MIGRATE_HEADING("Creating users & memberships"))
            owner = self._ensure_user(
                email="owner@himalayatrails.test",
                first_name="Olivia",
                last_name="Owner",
                role=User.AGENCY,
            )
            staff = self._ensure_user(
                email="staff@coastalescapes.test",
                first_name="Sam",
                last_name="Staff",
                role=User.AGENCY,
            )
            self._ensure_user(
                email="customer@example.test",
                first_name="Casey",
                last_name="Customer",
                role=User.CUSTOMER,
            )
            self._ensure_membership(owner, himalaya, AgencyMembership.OWNER)
            self._ensure_membership(staff, coastal, AgencyMembership.STAFF)

            self.stdout.write(self.style.MIGRATE_HEADING("Creating tour packages"))
            today = timezone.localdate()
            self._ensure_package(
                agency=himalaya,
                title="Everest Base Camp Trek",
                destination="Nepal",
                duration_days=12,
                price_per_person=Decimal("85000.00"),
                start_date=today + timedelta(days=30),
                max_group_size=12,
            )
            self._ensure_package(
                agency=himalaya,
                title="Valley of Flowers",
                destination="Uttarakhand",
                duration_days=6,
                price_per_person=Decimal("18500.00"),
                start_date=today + timedelta(days=45),
                max_group_size=16,
            )
            self._ensure_package(
                agency=coastal,
                title="Goa Beach Weekend",
                destination="Goa",
                duration_days=3,
                price_per_person=Decimal("1000.00"),
                start_date=today + timedelta(days=14),
                max_group_size=None,
            )

        self.stdout.write(self.style.SUCCESS("Development seed data created."))
        self.stdout.write(self.style.NOTICE(f"Sample login accounts use password: {SEED_PASSWORD}"))
        self.stdout.write(self.style.NOTICE(f"Admin superuser {SUPERUSER_EMAIL} password: {SUPERUSER_PASSWORD}"))

    def _ensure_agency(self, slug: str, name: str, email: str, phone: str) -> Agency:
        agency, _ = Agency.objects.get_or_create(
            slug=slug,
            defaults={"name": name, "contact_email": email, "contact_phone": phone},
        )
        if agency.name != name or agency.contact_email != email or agency.contact_phone != phone:
            agency.name = name
            agency.contact_email = email
            agency.contact_phone = phone
            agency.save(update_fields=["name", "contact_email", "contact_phone"])
        return agency

    def _ensure_user(self, email: str, first_name: str, last_name: str, role: str) -> User:
        user, created = User.objects.get_or_create(
            email=email,
            defaults={
                "username": email,
                "first_name": first_name,
                "last_name": last_name,
                "display_name": f"{first_name} {last_name}",
                "role": role,
            },
        )
        if created or not user.has_usable_password():
            user.set_password(SEED_PASSWORD)
            user.save(update_fields=["password"])
        return user

    def _ensure_membership(self, user: User, agency: Agency, role: str) -> AgencyMembership:
        membership, created = AgencyMembership.objects.get_or_create(
            user=user,
            agency=agency,
            defaults={"role": role, "is_active": True},
        )
        if not membership.is_active:
            membership.is_active = True
            membership.save(update_fields=["is_active", "updated_at"])
        if created:
            self.stdout.write(self.style.NOTICE(f"Added {user.email} as {role} for {agency.name}"))
        return membership

    def _ensure_package(self, *, agency: Agency, title: str, start_date, duration_days: int, **fields) -> TourPackage:
        package, _ = TourPackage.objects.update_or_create(
            agency=agency,
            title=title,
            defaults={
                "description": f"Sample itinerary for {title}.",
                "duration_days": duration_days,
                "start_date": start_date,
                "end_date": start_date + timedelta(days=duration_days - 1),
                "is_active": True,
                **fields,
            },
        )
        return package

    def _ensure_superuser(self) -> User:
        user, created = User.objects.get_or_create(
            email=SUPERUSER_EMAIL,
            defaults={
                "username": SUPERUSER_EMAIL,
                "first_name": "Admin",
                "last_name": "User",
                "display_name": "Admin User",
                "role": User.ADMIN,
                "is_staff": True,
                "is_superuser": True,
            },
        )
        if created or not user.has_usable_password():
            user.set_password(SUPERUSER_PASSWORD)
            user.save(update_fields=["password"])
        return user
