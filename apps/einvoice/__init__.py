"""
e-Invoice submission and status reconciliation.

Turns an issued invoice into a UBL 2.1 document, delivers it through a
pluggable provider (ANAF e-Factura, XRechnung/ZRE) and follows the
submission until the authority validates or rejects it.

Components:
- ubl: document model, per-field schema table, XML serializer/deserializer
- builder / validator: Invoice -> InvoiceDocument mapping and business rules
- models: EInvoiceSubmission state machine, per-organization provider config
- providers: handler/checker interfaces, registry and implementations
- quota: shared per-provider rate-limit guard
- scheduler: delayed re-enqueue through Django-Q2
- service: submission orchestrator and status poller
- tasks: Django-Q2 entry points
- storage: durable XML storage
- settings / metrics: configuration and Prometheus metrics

Usage:
    from django_q.tasks import async_task
    async_task("apps.einvoice.tasks.submit_einvoice_task", invoice_id, "anaf")
"""
