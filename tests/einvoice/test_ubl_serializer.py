"""
Tests for the UBL 2.1 document model and its XML serializer
"""

from datetime import date
from decimal import Decimal

from django.test import SimpleTestCase
from lxml import etree

from apps.einvoice.ubl import DocumentType, DocumentValidationError, deserialize, serialize, validate_document
from apps.einvoice.ubl.document import (
    BillingReference,
    Country,
    InvoiceDocument,
    InvoiceLine,
    Item,
    LegalMonetaryTotal,
    Party,
    PartyLegalEntity,
    PartyTaxScheme,
    PostalAddress,
    Price,
    TaxCategory,
    TaxScheme,
    TaxSubtotal,
    TaxTotal,
    to_money,
)
from apps.einvoice.ubl.schema import NAMESPACES, qualified


def make_party(name, tax_id, country="RO"):
    return Party(
        endpoint_id=f"billing@{name.lower().replace(' ', '')}.ro",
        endpoint_scheme_id="EM",
        party_name=name,
        postal_address=PostalAddress(street_name="Str. Test 1", city_name="Bucuresti", country=Country(country)),
        party_tax_scheme=PartyTaxScheme(company_id=tax_id, tax_scheme=TaxScheme()),
        party_legal_entity=PartyLegalEntity(registration_name=name),
    )


def make_document(**overrides):
    """One line of 2 x 10.00 at 21% VAT"""
    category = TaxCategory(id="S", percent=Decimal("21.00"), tax_scheme=TaxScheme())
    line = InvoiceLine(
        id="1",
        quantity=Decimal("2.00"),
        unit_code="C62",
        line_extension_amount=Decimal("20.00"),
        item=Item(name="Web hosting", classified_tax_category=category),
        price=Price(price_amount=Decimal("10.00")),
    )
    values = {
        "id": "INV-2024-001",
        "issue_date": date(2024, 3, 15),
        "due_date": date(2024, 4, 14),
        "currency": "RON",
        "type_code": "380",
        "seller": make_party("Seller SRL", "RO12345678"),
        "buyer": make_party("Buyer SRL", "RO87654321"),
        "tax_total": TaxTotal(
            tax_amount=Decimal("4.20"),
            subtotals=[
                TaxSubtotal(
                    taxable_amount=Decimal("20.00"),
                    tax_amount=Decimal("4.20"),
                    tax_category=TaxCategory(id="S", percent=Decimal("21.00"), tax_scheme=TaxScheme()),
                )
            ],
        ),
        "legal_monetary_total": LegalMonetaryTotal(
            line_extension_amount=Decimal("20.00"),
            tax_exclusive_amount=Decimal("20.00"),
            tax_inclusive_amount=Decimal("24.20"),
            payable_amount=Decimal("24.20"),
        ),
        "lines": [line],
    }
    values.update(overrides)
    return InvoiceDocument(**values)


def find_text(root, *path):
    return root.find("/".join(path), namespaces=NAMESPACES).text


class UBLSerializeTestCase(SimpleTestCase):
    """Test XML rendering of a valid document"""

    def setUp(self):
        self.xml = serialize(make_document())
        self.root = etree.fromstring(self.xml)

    def test_declares_utf8_and_invoice_root(self):
        """Test output starts with the XML declaration and uses the Invoice-2 root"""
        self.assertTrue(self.xml.startswith(b'<?xml version="1.0" encoding="UTF-8"?>\n'))
        self.assertEqual(self.root.tag, qualified("ubl", "Invoice"))
        self.assertEqual(self.root.nsmap[None], NAMESPACES["ubl"])
        self.assertEqual(self.root.nsmap["cbc"], NAMESPACES["cbc"])
        self.assertEqual(self.root.nsmap["cac"], NAMESPACES["cac"])

    def test_line_and_tax_amounts(self):
        """Test 2 x 10.00 at 21% renders net 20.00 and VAT 4.20"""
        self.assertEqual(find_text(self.root, "cac:InvoiceLine", "cbc:LineExtensionAmount"), "20.00")
        self.assertEqual(find_text(self.root, "cac:TaxTotal", "cbc:TaxAmount"), "4.20")
        self.assertEqual(find_text(self.root, "cac:LegalMonetaryTotal", "cbc:PayableAmount"), "24.20")

    def test_every_amount_carries_document_currency(self):
        """Test all amount elements have currencyID equal to DocumentCurrencyCode"""
        amounts = self.root.xpath("//*[@currencyID]")
        self.assertGreater(len(amounts), 5)
        self.assertEqual({element.get("currencyID") for element in amounts}, {"RON"})
        tax_amount = self.root.find("cac:TaxTotal/cbc:TaxAmount", namespaces=NAMESPACES)
        self.assertEqual(tax_amount.get("currencyID"), "RON")

    def test_quantity_has_unit_code_and_two_decimals(self):
        """Test InvoicedQuantity is fixed-point with its unitCode attribute"""
        quantity = self.root.find("cac:InvoiceLine/cbc:InvoicedQuantity", namespaces=NAMESPACES)
        self.assertEqual(quantity.text, "2.00")
        self.assertEqual(quantity.get("unitCode"), "C62")
        self.assertIsNone(quantity.get("currencyID"))

    def test_percent_is_fixed_point(self):
        """Test tax percent is written as 21.00, never in exponent notation"""
        self.assertEqual(find_text(self.root, "cac:TaxTotal", "cac:TaxSubtotal", "cac:TaxCategory", "cbc:Percent"), "21.00")

    def test_unset_optional_elements_are_omitted(self):
        """Test optional aggregates without a value produce no element at all"""
        for tag in ("cbc:Note", "cac:PaymentMeans", "cac:PaymentTerms", "cac:BillingReference", "cac:OrderReference"):
            self.assertIsNone(self.root.find(tag, namespaces=NAMESPACES), tag)
        self.assertIsNone(self.root.find(".//cac:Contact", namespaces=NAMESPACES))
        self.assertIsNone(self.root.find(".//cbc:PrepaidAmount", namespaces=NAMESPACES))

    def test_blank_optional_text_is_omitted(self):
        """Test an empty or whitespace-only optional text value writes no element"""
        root = etree.fromstring(serialize(make_document(note="  ", buyer_reference="")))
        self.assertIsNone(root.find("cbc:Note", namespaces=NAMESPACES))
        self.assertIsNone(root.find("cbc:BuyerReference", namespaces=NAMESPACES))

    def test_header_element_order(self):
        """Test header children follow the UBL 2.1 sequence"""
        local_names = [etree.QName(child).localname for child in self.root]
        expected = [
            "CustomizationID",
            "ProfileID",
            "ID",
            "IssueDate",
            "DueDate",
            "InvoiceTypeCode",
            "DocumentCurrencyCode",
            "AccountingSupplierParty",
            "AccountingCustomerParty",
            "TaxTotal",
            "LegalMonetaryTotal",
            "InvoiceLine",
        ]
        self.assertEqual(local_names, expected)

    def test_endpoint_scheme_attribute(self):
        """Test EndpointID carries its schemeID attribute"""
        endpoint = self.root.find(
            "cac:AccountingSupplierParty/cac:Party/cbc:EndpointID", namespaces=NAMESPACES
        )
        self.assertEqual(endpoint.text, "billing@sellersrl.ro")
        self.assertEqual(endpoint.get("schemeID"), "EM")

    def test_multiple_lines_keep_order(self):
        """Test repeated lines are written in their original order"""
        document = make_document()
        first = document.lines[0]
        second = InvoiceLine(
            id="2",
            quantity=Decimal("1.00"),
            unit_code="HUR",
            line_extension_amount=Decimal("0.00"),
            item=Item(name="Support", classified_tax_category=first.item.classified_tax_category),
            price=Price(price_amount=Decimal("0.00")),
        )
        document.lines.append(second)
        root = etree.fromstring(serialize(document))
        ids = [line.find("cbc:ID", namespaces=NAMESPACES).text for line in root.findall("cac:InvoiceLine", namespaces=NAMESPACES)]
        self.assertEqual(ids, ["1", "2"])


class UBLCreditNoteTestCase(SimpleTestCase):
    """Test the CreditNote flavour of the wire format"""

    def setUp(self):
        self.document = make_document(
            id="CN-2024-001",
            document_type=DocumentType.CREDIT_NOTE,
            type_code="381",
            due_date=None,
            billing_reference=BillingReference(id="INV-2024-001", issue_date=date(2024, 3, 15)),
        )

    def test_credit_note_tags(self):
        """Test root, type code, line and quantity use the CreditNote names"""
        root = etree.fromstring(serialize(self.document))
        self.assertEqual(root.tag, qualified("cn", "CreditNote"))
        self.assertEqual(root.nsmap[None], NAMESPACES["cn"])
        self.assertEqual(find_text(root, "cbc:CreditNoteTypeCode"), "381")
        self.assertIsNotNone(root.find("cac:CreditNoteLine/cbc:CreditedQuantity", namespaces=NAMESPACES))
        self.assertIsNone(root.find("cac:InvoiceLine", namespaces=NAMESPACES))
        self.assertIsNone(root.find("cbc:InvoiceTypeCode", namespaces=NAMESPACES))

    def test_billing_reference_written(self):
        """Test the corrected invoice is referenced"""
        root = etree.fromstring(serialize(self.document))
        self.assertEqual(
            find_text(root, "cac:BillingReference", "cac:InvoiceDocumentReference", "cbc:ID"), "INV-2024-001"
        )

    def test_due_date_rejected_on_credit_note(self):
        """Test a credit note with a header DueDate fails validation"""
        self.document.due_date = date(2024, 4, 1)
        with self.assertRaises(DocumentValidationError) as ctx:
            validate_document(self.document)
        self.assertIn("Invoice.DueDate is not allowed on a credit note", ctx.exception.errors)

    def test_credit_note_round_trip(self):
        """Test a credit note parses back to an equal document"""
        parsed = deserialize(serialize(self.document))
        self.assertEqual(parsed.document_type, DocumentType.CREDIT_NOTE)
        self.assertEqual(parsed, self.document)


class UBLDeserializeTestCase(SimpleTestCase):
    """Test XML parsing back into the document model"""

    def test_round_trip(self):
        """Test serialize then deserialize yields an equal document"""
        document = make_document(note="Thank you")
        parsed = deserialize(serialize(document))
        self.assertEqual(parsed, document)
        self.assertEqual(parsed.lines[0].vat_amount, Decimal("4.20"))

    def test_absent_optionals_are_none(self):
        """Test elements missing from the XML come back as None"""
        parsed = deserialize(serialize(make_document()))
        self.assertIsNone(parsed.payment_means)
        self.assertIsNone(parsed.note)
        self.assertIsNone(parsed.seller.contact)
        self.assertIsNone(parsed.legal_monetary_total.prepaid_amount)

    def test_malformed_xml(self):
        """Test unparseable input raises a validation error"""
        with self.assertRaises(DocumentValidationError) as ctx:
            deserialize(b"<Invoice><unclosed></Invoice>")
        self.assertIn("Malformed XML", str(ctx.exception))

    def test_unsupported_root(self):
        """Test a root element other than Invoice or CreditNote is refused"""
        with self.assertRaises(DocumentValidationError) as ctx:
            deserialize(b'<Order xmlns="urn:oasis:names:specification:ubl:schema:xsd:Order-2"/>')
        self.assertIn("Unsupported root element", str(ctx.exception))

    def test_currency_mismatch(self):
        """Test an amount in another currency than the document is refused"""
        xml = serialize(make_document()).replace(b'currencyID="RON">4.20', b'currencyID="EUR">4.20', 1)
        with self.assertRaises(DocumentValidationError) as ctx:
            deserialize(xml)
        self.assertIn("does not match document currency", str(ctx.exception))


class UBLValidationTestCase(SimpleTestCase):
    """Test structural and arithmetic validation"""

    def test_missing_required_fields_are_all_reported(self):
        """Test every missing mandatory field is listed, not only the first"""
        document = make_document(id=None, currency=None, seller=None)
        with self.assertRaises(DocumentValidationError) as ctx:
            validate_document(document)
        errors = ctx.exception.errors
        self.assertIn("Invoice.ID is required", errors)
        self.assertIn("Invoice.DocumentCurrencyCode is required", errors)
        self.assertIn("Invoice.Party is required", errors)

    def test_missing_lines(self):
        """Test a document without lines is invalid"""
        with self.assertRaises(DocumentValidationError) as ctx:
            validate_document(make_document(lines=[]))
        self.assertIn("Invoice.InvoiceLine is required", ctx.exception.errors)

    def test_missing_unit_code(self):
        """Test a quantity without unitCode is invalid"""
        document = make_document()
        document.lines[0].unit_code = None
        with self.assertRaises(DocumentValidationError) as ctx:
            validate_document(document)
        self.assertIn("InvoiceLine[1].unitCode is required", ctx.exception.errors)

    def test_float_amount_rejected(self):
        """Test binary floats are never accepted as amounts"""
        document = make_document()
        document.lines[0].price.price_amount = 10.0
        with self.assertRaises(DocumentValidationError) as ctx:
            validate_document(document)
        self.assertTrue(any("must be a Decimal, got float" in error for error in ctx.exception.errors))

        with self.assertRaises(DocumentValidationError):
            to_money(10.0)

    def test_excess_precision_rejected(self):
        """Test amounts with more than two decimals are invalid"""
        document = make_document()
        document.lines[0].price.price_amount = Decimal("10.005")
        with self.assertRaises(DocumentValidationError) as ctx:
            validate_document(document)
        self.assertTrue(any("must have at most two decimal places" in error for error in ctx.exception.errors))

    def test_tax_total_must_match_subtotals(self):
        """Test TaxTotal equal to the sum of its subtotals"""
        document = make_document()
        document.tax_total.tax_amount = Decimal("4.21")
        document.legal_monetary_total.tax_inclusive_amount = Decimal("24.21")
        with self.assertRaises(DocumentValidationError) as ctx:
            validate_document(document)
        self.assertTrue(any("does not match sum of subtotals" in error for error in ctx.exception.errors))

    def test_line_category_without_subtotal(self):
        """Test every line tax category needs a TaxSubtotal, even when the breakdown is empty"""
        document = make_document()
        document.tax_total.subtotals = []
        with self.assertRaises(DocumentValidationError) as ctx:
            serialize(document)
        self.assertIn("TaxSubtotal is missing for line tax category S/21.00", ctx.exception.errors)

    def test_subtotal_without_lines(self):
        """Test a TaxSubtotal for a category no line uses is invalid"""
        document = make_document()
        document.tax_total.subtotals.append(
            TaxSubtotal(
                taxable_amount=Decimal("0.00"),
                tax_amount=Decimal("0.00"),
                tax_category=TaxCategory(id="Z", percent=Decimal("0.00"), tax_scheme=TaxScheme()),
            )
        )
        with self.assertRaises(DocumentValidationError) as ctx:
            validate_document(document)
        self.assertIn("TaxSubtotal Z/0.00 has no invoice lines in that category", ctx.exception.errors)

    def test_inclusive_amount_must_add_up(self):
        """Test TaxInclusiveAmount = TaxExclusiveAmount + TaxAmount"""
        document = make_document()
        document.legal_monetary_total.tax_inclusive_amount = Decimal("25.00")
        with self.assertRaises(DocumentValidationError) as ctx:
            validate_document(document)
        self.assertTrue(any(error.startswith("TaxInclusiveAmount 25.00") for error in ctx.exception.errors))

    def test_serialize_refuses_invalid_document(self):
        """Test nothing is rendered for an invalid document"""
        with self.assertRaises(DocumentValidationError):
            serialize(make_document(issue_date=None))

    def test_to_money_rounds_half_even(self):
        """Test banker's rounding on quantization"""
        self.assertEqual(to_money(Decimal("0.125")), Decimal("0.12"))
        self.assertEqual(to_money(Decimal("0.135")), Decimal("0.14"))
        self.assertEqual(to_money("3"), Decimal("3.00"))
