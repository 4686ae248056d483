"""
Generic UBL 2.1 serializer / deserializer driven by the field table.

    xml_bytes = serialize(document)
    document = deserialize(xml_bytes)

Formatting rules:
- Numeric values are written with exactly two decimals ("123.40")
- Every amount carries ``currencyID`` equal to the document currency
- Repeated aggregates keep their original order
- Unset optional values are omitted, never written as empty elements
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from lxml import etree

from .document import CENT, DocumentType, DocumentValidationError, InvoiceDocument
from .schema import CAC, NAMESPACES, NUMERIC_KINDS, ROOT_ELEMENTS, SCHEMA, Field, Kind, qualified

logger = logging.getLogger(__name__)

XML_DECLARATION = b'<?xml version="1.0" encoding="UTF-8"?>\n'


# ===============================================================================
# VALIDATION
# ===============================================================================


def validate_document(document: InvoiceDocument) -> None:
    """
    Check required fields, numeric types and tax invariants.

    Raises:
        DocumentValidationError: with every problem found, not just the first
    """
    errors: list[str] = []
    credit_note = document.is_credit_note
    _collect_errors(document, SCHEMA[InvoiceDocument], "Invoice", credit_note, errors)

    if credit_note and document.due_date is not None:
        errors.append("Invoice.DueDate is not allowed on a credit note")

    for index, line in enumerate(document.lines, start=1):
        if line.quantity is not None and not line.unit_code:
            errors.append(f"InvoiceLine[{index}].unitCode is required")

    # Structural problems make the arithmetic checks meaningless
    if not errors:
        errors.extend(_check_tax_invariants(document))

    if errors:
        raise DocumentValidationError(errors)


def _collect_errors(obj: Any, fields: tuple[Field, ...], path: str, credit_note: bool, errors: list[str]) -> None:
    for f in fields:
        if not f.applies_to(credit_note):
            continue
        value = getattr(obj, f.attr)
        field_path = f"{path}.{f.tag_for(credit_note)}"

        if value is None or (f.many and not value):
            if f.required:
                errors.append(f"{field_path} is required")
            continue

        values = value if f.many else [value]
        for position, item in enumerate(values, start=1):
            item_path = f"{field_path}[{position}]" if f.many else field_path
            if f.kind is Kind.OBJECT:
                _collect_errors(item, SCHEMA[f.type], item_path, credit_note, errors)
            elif f.kind in NUMERIC_KINDS:
                if not isinstance(item, Decimal):
                    errors.append(f"{item_path} must be a Decimal, got {type(item).__name__}")
                elif not item.is_finite() or item != item.quantize(CENT):
                    errors.append(f"{item_path} must have at most two decimal places: {item}")
            elif f.kind is Kind.DATE and not isinstance(item, date):
                errors.append(f"{item_path} must be a date")
            elif f.kind is Kind.TEXT and not str(item).strip():
                if f.required:
                    errors.append(f"{item_path} is required")


def _check_tax_invariants(document: InvoiceDocument) -> list[str]:
    errors: list[str] = []
    tax_total = document.tax_total

    line_nets: dict[tuple[str, Decimal | None], Decimal] = {}
    for line in document.lines:
        category = line.tax_category
        key = (category.id, category.percent)
        line_nets[key] = line_nets.get(key, Decimal("0")) + line.line_extension_amount

    subtotal_keys: set[tuple[str, Decimal | None]] = set()
    for subtotal in tax_total.subtotals:
        key = (subtotal.tax_category.id, subtotal.tax_category.percent)
        subtotal_keys.add(key)
        if key not in line_nets:
            errors.append(f"TaxSubtotal {key[0]}/{key[1]} has no invoice lines in that category")
            continue
        if subtotal.taxable_amount != line_nets[key]:
            errors.append(
                f"TaxSubtotal {key[0]}/{key[1]} taxable amount {subtotal.taxable_amount} "
                f"does not match sum of line amounts {line_nets[key]}"
            )

    for key in line_nets:
        if key not in subtotal_keys:
            errors.append(f"TaxSubtotal is missing for line tax category {key[0]}/{key[1]}")

    subtotal_tax = sum((s.tax_amount for s in tax_total.subtotals), Decimal("0"))
    if tax_total.tax_amount != subtotal_tax:
        errors.append(f"TaxTotal amount {tax_total.tax_amount} does not match sum of subtotals {subtotal_tax}")

    totals = document.legal_monetary_total
    if totals.tax_exclusive_amount + tax_total.tax_amount != totals.tax_inclusive_amount:
        errors.append(
            f"TaxInclusiveAmount {totals.tax_inclusive_amount} does not equal "
            f"TaxExclusiveAmount {totals.tax_exclusive_amount} + TaxAmount {tax_total.tax_amount}"
        )

    return errors


# ===============================================================================
# SERIALIZATION
# ===============================================================================


def format_decimal(value: Decimal) -> str:
    """Fixed two-decimal notation, never scientific."""
    return f"{value.quantize(CENT):f}"


def serialize(document: InvoiceDocument) -> bytes:
    """
    Render the document as UTF-8 UBL 2.1 XML.

    Raises:
        DocumentValidationError: if the document is incomplete or inconsistent
    """
    validate_document(document)

    credit_note = document.is_credit_note
    root_tag, root_ns = ROOT_ELEMENTS[DocumentType(document.document_type)]
    nsmap = {
        None: root_ns,
        "cac": NAMESPACES["cac"],
        "cbc": NAMESPACES["cbc"],
    }
    root = etree.Element(f"{{{root_ns}}}{root_tag}", nsmap=nsmap)
    _write_fields(root, document, SCHEMA[InvoiceDocument], document.currency, credit_note)

    body = etree.tostring(root, pretty_print=True, xml_declaration=False, encoding="UTF-8")
    logger.debug(f"[UBL] Serialized {root_tag} {document.id} ({len(document.lines)} lines)")
    return XML_DECLARATION + body


def _write_fields(
    parent: etree._Element, obj: Any, fields: tuple[Field, ...], currency: str, credit_note: bool
) -> None:
    for f in fields:
        if not f.applies_to(credit_note):
            continue
        value = getattr(obj, f.attr)
        if value is None or (f.many and not value):
            continue

        items = value if f.many else [value]
        if f.kind is Kind.TEXT and not f.required:
            # Blank optional text is treated as unset
            items = [item for item in items if str(item).strip()]
            if not items:
                continue

        container = parent
        if f.wrapper:
            container = etree.SubElement(parent, qualified(CAC, f.wrapper))

        for item in items:
            element = etree.SubElement(container, qualified(f.ns, f.tag_for(credit_note)))
            if f.kind is Kind.OBJECT:
                _write_fields(element, item, SCHEMA[f.type], currency, credit_note)
            else:
                element.text = _format_value(f.kind, item)
            if f.kind is Kind.AMOUNT:
                element.set("currencyID", currency)
            for xml_attr, attr in f.attributes:
                attr_value = getattr(obj, attr)
                if attr_value is not None:
                    element.set(xml_attr, str(attr_value))


def _format_value(kind: Kind, value: Any) -> str:
    if kind in NUMERIC_KINDS:
        return format_decimal(value)
    if kind is Kind.DATE:
        return value.strftime("%Y-%m-%d")
    return str(value)


# ===============================================================================
# DESERIALIZATION
# ===============================================================================


def deserialize(data: bytes) -> InvoiceDocument:
    """
    Parse UBL 2.1 Invoice or CreditNote XML into an ``InvoiceDocument``.

    Absent optional elements come back as ``None``. Amounts whose
    ``currencyID`` disagrees with DocumentCurrencyCode are rejected.
    """
    parser = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)
    try:
        root = etree.fromstring(data, parser)
    except etree.XMLSyntaxError as e:
        raise DocumentValidationError(f"Malformed XML: {e}") from e

    name = etree.QName(root)
    document_type = next(
        (dt for dt, (tag, ns) in ROOT_ELEMENTS.items() if tag == name.localname and ns == name.namespace),
        None,
    )
    if document_type is None:
        raise DocumentValidationError(f"Unsupported root element: {root.tag}")

    credit_note = document_type == DocumentType.CREDIT_NOTE
    currency_element = root.find(qualified("cbc", "DocumentCurrencyCode"))
    currency = currency_element.text.strip() if currency_element is not None and currency_element.text else None

    values = _read_fields(root, SCHEMA[InvoiceDocument], currency, credit_note)
    return InvoiceDocument(document_type=document_type, **values)


def _read_fields(
    element: etree._Element, fields: tuple[Field, ...], currency: str | None, credit_note: bool
) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for f in fields:
        if not f.applies_to(credit_note):
            continue

        container = element
        if f.wrapper:
            container = element.find(qualified(CAC, f.wrapper))
            if container is None:
                values[f.attr] = [] if f.many else None
                continue

        children = container.findall(qualified(f.ns, f.tag_for(credit_note)))
        if not children:
            values[f.attr] = [] if f.many else None
            continue

        parsed = [_read_value(child, f, currency, credit_note) for child in children]
        values[f.attr] = parsed if f.many else parsed[0]

        for xml_attr, attr in f.attributes:
            values[attr] = children[0].get(xml_attr)

    return values


def _read_value(element: etree._Element, f: Field, currency: str | None, credit_note: bool) -> Any:
    if f.kind is Kind.OBJECT:
        return f.type(**_read_fields(element, SCHEMA[f.type], currency, credit_note))

    text = (element.text or "").strip()

    if f.kind is Kind.AMOUNT:
        currency_id = element.get("currencyID")
        if currency_id != currency:
            raise DocumentValidationError(
                f"{f.tag} currencyID {currency_id!r} does not match document currency {currency!r}"
            )

    if f.kind in NUMERIC_KINDS:
        try:
            return Decimal(text)
        except InvalidOperation as e:
            raise DocumentValidationError(f"{f.tag} is not a decimal: {text!r}") from e

    if f.kind is Kind.DATE:
        try:
            return date.fromisoformat(text)
        except ValueError as e:
            raise DocumentValidationError(f"{f.tag} is not an ISO date: {text!r}") from e

    return text
