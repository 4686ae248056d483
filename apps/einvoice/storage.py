"""
Durable storage for generated e-invoice XML.

Files are written through Django's default storage backend under
``{prefix}{organization tax id}/einvoice/{provider}/{YYYY}/{MM}/{invoice id}.xml``.
The path is deterministic, so a resubmission overwrites the previous file
for the same provider instead of piling up copies.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.core.files.base import ContentFile
from django.core.files.storage import Storage, default_storage
from django.utils import timezone

from .settings import einvoice_settings

if TYPE_CHECKING:
    from apps.billing.models import Invoice

logger = logging.getLogger(__name__)


def build_xml_path(invoice: Invoice, provider: str) -> str:
    issued = timezone.localtime(invoice.issued_at) if invoice.issued_at else timezone.localtime()
    tax_id = invoice.organization.numeric_tax_id or str(invoice.organization_id)
    return (
        f"{einvoice_settings.storage_prefix}{tax_id}/einvoice/{provider}/"
        f"{issued:%Y}/{issued:%m}/{invoice.pk}.xml"
    )


def store_xml(invoice: Invoice, provider: str, xml: bytes, storage: Storage | None = None) -> str:
    """Write the XML and return the stored path."""
    storage = storage or default_storage
    path = build_xml_path(invoice, provider)
    if storage.exists(path):
        storage.delete(path)
    stored_path = storage.save(path, ContentFile(xml))
    logger.info(f"[e-Invoice] Stored XML for invoice {invoice.number} at {stored_path}")
    return stored_path


def read_xml(path: str, storage: Storage | None = None) -> bytes:
    storage = storage or default_storage
    with storage.open(path, "rb") as handle:
        return handle.read()
