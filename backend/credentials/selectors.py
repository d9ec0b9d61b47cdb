from __future__ import annotations

from typing import Any

from events.models import AccreditationRequest

from .models import Credential


def get_credentials_for_printing(filters: dict[str, Any]) -> list[Credential]:
    """Active credentials of approved requests matching the batch filters, ordered by id."""
    queryset = Credential.objects.select_related(
        "accreditation_request",
        "accreditation_request__event",
        "accreditation_request__employee",
        "accreditation_request__employee__provider",
        "accreditation_request__employee__provider__area",
    ).filter(
        is_active=True,
        accreditation_request__event_id=filters["event_id"],
        accreditation_request__status=AccreditationRequest.Status.APPROVED,
    )

    area_ids = list(filters.get("area_id") or [])
    if area_ids:
        queryset = queryset.filter(accreditation_request__employee__provider__area_id__in=area_ids)

    provider_ids = list(filters.get("provider_id") or [])
    if provider_ids:
        queryset = queryset.filter(accreditation_request__employee__provider_id__in=provider_ids)

    if filters.get("only_unprinted", True):
        queryset = queryset.filter(printed_at__isnull=True)

    return list(queryset.order_by("id"))
