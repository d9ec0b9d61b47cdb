from __future__ import annotations

from rest_framework import serializers

from events.models import Area, Event, Provider


def _dedupe(values: list[int]) -> list[int]:
    return list(dict.fromkeys(int(value) for value in values))


class PrintBatchFiltersSerializer(serializers.Serializer):
    event_id = serializers.IntegerField(min_value=1)
    area_id = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        required=False,
        allow_empty=True,
        default=list,
    )
    provider_id = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        required=False,
        allow_empty=True,
        default=list,
    )
    only_unprinted = serializers.BooleanField(required=False, default=True)

    def validate_event_id(self, value: int) -> int:
        if not Event.objects.filter(id=value).exists():
            raise serializers.ValidationError("The selected event does not exist.")
        return value

    def validate_area_id(self, value: list[int]) -> list[int]:
        area_ids = _dedupe(value)
        existing = set(Area.objects.filter(id__in=area_ids).values_list("id", flat=True))
        missing = [area_id for area_id in area_ids if area_id not in existing]
        if missing:
            raise serializers.ValidationError(
                "Unknown area id(s): " + ", ".join(str(area_id) for area_id in missing)
            )
        return area_ids

    def validate_provider_id(self, value: list[int]) -> list[int]:
        provider_ids = _dedupe(value)
        existing = set(Provider.objects.filter(id__in=provider_ids).values_list("id", flat=True))
        missing = [provider_id for provider_id in provider_ids if provider_id not in existing]
        if missing:
            raise serializers.ValidationError(
                "Unknown provider id(s): " + ", ".join(str(provider_id) for provider_id in missing)
            )
        return provider_ids
