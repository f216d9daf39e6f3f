from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from core.exceptions import NotFoundError

from .models import TourPackage


@dataclass(frozen=True)
class PackageQuote:
    """The slice of a tour package the booking flow depends on."""

    package_id: int
    title: str
    rate_per_person: Decimal
    agency_id: int
    start_date: Optional[date]
    end_date: Optional[date]
    max_group_size: Optional[int] = None
    duration_days: int = 1


def get_package(package_id) -> PackageQuote:
    try:
        package = TourPackage.objects.get(pk=package_id, is_active=True)
    except (TourPackage.DoesNotExist, ValueError, TypeError):
        raise NotFoundError("Tour package not found.")

    return PackageQuote(
        package_id=package.pk,
        title=package.title,
        rate_per_person=package.price_per_person,
        agency_id=package.agency_id,
        start_date=package.start_date,
        end_date=package.end_date,
        max_group_size=package.max_group_size,
        duration_days=package.duration_days,
    )
