from __future__ import annotations

from typing import Any

from django.conf import settings
from django.core.cache import cache


class TemplateCache:
    """Default-template snapshots keyed by event, invalidated on every template write."""

    prefix = "credentials:template:default"

    @classmethod
    def key(cls, event_id: int) -> str:
        return f"{cls.prefix}:{event_id}"

    @classmethod
    def get(cls, event_id: int) -> dict[str, Any] | None:
        return cache.get(cls.key(event_id))

    @classmethod
    def set(cls, event_id: int, snapshot: dict[str, Any]) -> None:
        cache.set(
            cls.key(event_id),
            snapshot,
            timeout=int(settings.CREDENTIAL_TEMPLATE_CACHE_TTL),
        )

    @classmethod
    def invalidate(cls, event_id: int) -> None:
        cache.delete(cls.key(event_id))
