from __future__ import annotations

import logging

from django.db.models.signals import post_delete, post_save
from django.dispatch import Signal, receiver

from .cache import TemplateCache
from .models import Template

logger = logging.getLogger(__name__)

# sender=Credential, kwargs: credential, status_before, status_after
credential_status_changed = Signal()
# sender=AccreditationRequest, kwargs: accreditation_request, status_before, status_after, actor
accreditation_status_changed = Signal()


@receiver(post_save, sender=Template)
@receiver(post_delete, sender=Template)
def invalidate_template_cache(sender, instance: Template, **kwargs):
    TemplateCache.invalidate(instance.event_id)


@receiver(credential_status_changed)
def log_credential_status_change(sender, credential, status_before, status_after, **kwargs):
    logger.debug(
        "Credential status changed",
        extra={
            "credential_id": credential.id,
            "status_before": status_before,
            "status_after": status_after,
        },
    )
