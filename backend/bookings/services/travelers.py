from __future__ import annotations

from typing import Any, Dict, Iterable, List

from core.exceptions import InvalidInputError
from bookings.models import Booking, Traveler, TravelerDocument


def _clean(value) -> str:
    return (value or "").strip()


def normalize_traveler(data: Dict[str, Any]) -> Dict[str, Any]:
    full_name = _clean(data.get("full_name"))
    if not full_name:
        raise InvalidInputError("Traveler name is required.")

    documents = []
    for document in data.get("documents") or []:
        number = _clean(document.get("document_number"))
        if not number:
            raise InvalidInputError(f"Document number is required for {full_name}.")
        documents.append(
            {
                "document_type": document.get("document_type") or TravelerDocument.OTHER,
                "document_number": number,
                "file_url": _clean(document.get("file_url")),
            }
        )

    return {
        "full_name": full_name,
        "age": data.get("age"),
        "gender": _clean(data.get("gender")),
        "email": _clean(data.get("email")).lower(),
        "phone_number": _clean(data.get("phone_number")),
        "documents": documents,
    }


def create_travelers(booking: Booking, travelers: Iterable[Dict[str, Any]]) -> List[Traveler]:
    """Persist travelers and their identity documents; the first traveler is the primary one."""
    created = []
    for index, data in enumerate(travelers):
        documents = data.get("documents", [])
        traveler = Traveler.objects.create(
            booking=booking,
            full_name=data["full_name"],
            age=data.get("age"),
            gender=data.get("gender", ""),
            email=data.get("email", ""),
            phone_number=data.get("phone_number", ""),
            is_primary=index == 0,
        )
        TravelerDocument.objects.bulk_create(
            [TravelerDocument(traveler=traveler, **document) for document in documents]
        )
        created.append(traveler)
    return created
