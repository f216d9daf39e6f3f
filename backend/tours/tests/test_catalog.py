from decimal import Decimal

import pytest

from core.exceptions import NotFoundError
from tours.catalog import get_package


@pytest.mark.django_db
def test_get_package_returns_quote(package, agency):
    quote = get_package(package.pk)

    assert quote.package_id == package.pk
    assert quote.title == "Everest Base Camp"
    assert quote.rate_per_person == Decimal("1000.00")
    assert quote.agency_id == agency.pk
    assert quote.duration_days == 5
    assert quote.max_group_size == 10


@pytest.mark.django_db
def test_inactive_package_is_not_found(package):
    package.is_active = False
    package.save(update_fields=["is_active"])

    with pytest.raises(NotFoundError):
        get_package(package.pk)


@pytest.mark.django_db
@pytest.mark.parametrize("package_id", [999999, "abc", None])
def test_unknown_package_is_not_found(package_id):
    with pytest.raises(NotFoundError):
        get_package(package_id)
