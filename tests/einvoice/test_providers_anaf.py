"""
Tests for the ANAF e-Factura client, submission handler and status checker
"""

from unittest.mock import MagicMock, patch

import requests
from django.test import SimpleTestCase, TestCase

from apps.einvoice.models import EInvoiceSubmissionStatus
from apps.einvoice.providers import ProviderAuthenticationError, ProviderTransportError
from apps.einvoice.providers.anaf import (
    AnafClient,
    AnafEnvironment,
    AnafStatusChecker,
    AnafSubmissionHandler,
    StatusResponse,
    UploadResponse,
)
from apps.einvoice.quota import RateLimitExceededError
from apps.einvoice.storage import read_xml
from apps.einvoice.ubl import DocumentValidationError
from tests.factories.billing import create_credit_note, create_invoice
from tests.factories.einvoice import create_provider_config, create_submission

UPLOAD_OK = b"""<?xml version="1.0" encoding="UTF-8"?>
<header xmlns="mfp:anaf:dgti:spv:respUploadFisier:v1" dateResponse="202403151000" ExecutionStatus="0" index_incarcare="5001130147"/>
"""

UPLOAD_ERROR = b"""<?xml version="1.0" encoding="UTF-8"?>
<header xmlns="mfp:anaf:dgti:spv:respUploadFisier:v1" dateResponse="202403151000" ExecutionStatus="1">
    <Errors errorMessage="E: validari globale sistem cod: BR-RO-010"/>
    <Errors errorMessage="CIF introdus= 123 nu este un numar"/>
</header>
"""

STATUS_OK = b'<header xmlns="mfp:anaf:dgti:efactura:stareMesajFactura:v1" stare="ok" id_descarcare="3001474425"/>'
STATUS_NOK = b'<header xmlns="mfp:anaf:dgti:efactura:stareMesajFactura:v1" stare="nok" id_descarcare="3001474426"/>'
STATUS_PROCESSING = b'<header xmlns="mfp:anaf:dgti:efactura:stareMesajFactura:v1" stare="in prelucrare"/>'
STATUS_LOOKUP_ERROR = (
    b'<header xmlns="mfp:anaf:dgti:efactura:stareMesajFactura:v1">'
    b'<Errors errorMessage="Nu aveti dreptul de consultare a starii acestui upload."/></header>'
)


def make_response(status_code=200, content=b""):
    response = requests.Response()
    response.status_code = status_code
    response._content = content
    return response


class AnafResponseParsingTestCase(SimpleTestCase):
    """Test parsing of ANAF header responses"""

    def test_upload_indexed(self):
        """Test a successful upload yields the upload index"""
        result = UploadResponse.from_response(make_response(content=UPLOAD_OK))
        self.assertTrue(result.success)
        self.assertEqual(result.upload_index, "5001130147")

    def test_upload_errors(self):
        """Test every Errors element is collected"""
        result = UploadResponse.from_response(make_response(content=UPLOAD_ERROR))
        self.assertFalse(result.success)
        self.assertEqual(len(result.errors), 2)
        self.assertEqual(
            result.message, "E: validari globale sistem cod: BR-RO-010; CIF introdus= 123 nu este un numar"
        )

    def test_upload_without_index(self):
        """Test an answer without index_incarcare is a failure"""
        result = UploadResponse.from_response(make_response(content=b'<header ExecutionStatus="0"/>'))
        self.assertFalse(result.success)
        self.assertIn("upload not indexed", result.message)

    def test_status_states(self):
        """Test stare values map to accepted, rejected and processing"""
        ok = StatusResponse.from_response(make_response(content=STATUS_OK))
        self.assertTrue(ok.is_accepted)
        self.assertEqual(ok.download_id, "3001474425")

        nok = StatusResponse.from_response(make_response(content=STATUS_NOK))
        self.assertTrue(nok.is_rejected)
        self.assertEqual(nok.message, "ANAF status: nok")

        processing = StatusResponse.from_response(make_response(content=STATUS_PROCESSING))
        self.assertTrue(processing.is_processing)

        xml_errors = StatusResponse(state="XML cu erori nepreluat de sistem")
        self.assertTrue(xml_errors.is_rejected)

    def test_status_lookup_refused(self):
        """Test a bare Errors answer is a rejection carrying the message"""
        result = StatusResponse.from_response(make_response(content=STATUS_LOOKUP_ERROR))
        self.assertTrue(result.is_rejected)
        self.assertEqual(result.message, "Nu aveti dreptul de consultare a starii acestui upload.")

    def test_unreadable_response(self):
        """Test a non-XML body is a transport error"""
        with self.assertRaises(ProviderTransportError):
            StatusResponse.from_response(make_response(content=b"<html>Gateway"))


class AnafClientTestCase(SimpleTestCase):
    """Test ANAF API calls"""

    def setUp(self):
        self.session = MagicMock()
        self.guard = MagicMock()
        self.client = AnafClient("token-123", environment="test", guard=self.guard, session=self.session)

    def test_base_url(self):
        """Test environment selects the API root"""
        self.assertEqual(self.client.base_url, "https://api.anaf.ro/test/FCTEL/rest")
        self.assertEqual(AnafEnvironment.PRODUCTION.base_url, "https://api.anaf.ro/prod/FCTEL/rest")

    def test_upload(self):
        """Test upload posts the XML with standard and cif parameters"""
        self.session.request.return_value = make_response(content=UPLOAD_OK)

        result = self.client.upload(b"<Invoice/>", cif="12345678")

        self.assertTrue(result.success)
        self.guard.consume.assert_called_once_with("anaf", ["global"])
        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ("POST", "https://api.anaf.ro/test/FCTEL/rest/upload"))
        self.assertEqual(kwargs["params"], {"standard": "UBL", "cif": "12345678"})
        self.assertEqual(kwargs["data"], b"<Invoice/>")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer token-123")

    def test_upload_credit_note(self):
        """Test credit notes use standard=CN"""
        self.session.request.return_value = make_response(content=UPLOAD_OK)
        self.client.upload(b"<CreditNote/>", cif="12345678", credit_note=True)
        self.assertEqual(self.session.request.call_args.kwargs["params"]["standard"], "CN")

    def test_get_status(self):
        """Test status queries consume the global and per-upload budgets"""
        self.session.request.return_value = make_response(content=STATUS_OK)

        result = self.client.get_status("5001130147")

        self.assertTrue(result.is_accepted)
        self.guard.consume.assert_called_once_with("anaf", ["global", "status"], key="5001130147")
        self.assertEqual(self.session.request.call_args.kwargs["params"], {"id_incarcare": "5001130147"})

    def test_guard_refusal_skips_call(self):
        """Test nothing is sent when the guard refuses"""
        self.guard.consume.side_effect = RateLimitExceededError("status", 3600, provider="anaf")
        with self.assertRaises(RateLimitExceededError):
            self.client.get_status("5001130147")
        self.session.request.assert_not_called()


class AnafSubmissionHandlerTestCase(TestCase):
    """Test build, store and upload for ANAF"""

    def setUp(self):
        self.invoice = create_invoice()
        self.submission = create_submission(invoice=self.invoice)
        self.handler = AnafSubmissionHandler()

    def _client(self, client_class):
        return client_class.return_value.__enter__.return_value

    @patch.object(AnafSubmissionHandler, "client_class")
    def test_upload_accepted(self, client_class):
        """Test a successful upload moves the submission to ACCEPTED"""
        create_provider_config(self.invoice.organization, credentials={"access_token": "token-123"})
        self._client(client_class).upload.return_value = UploadResponse(success=True, upload_index="5001130147")

        submission = self.handler.handle(self.invoice, self.submission)

        self.assertEqual(submission.status, EInvoiceSubmissionStatus.ACCEPTED)
        self.assertEqual(submission.external_id, "5001130147")
        self.assertIn("submittedAt", submission.metadata)
        self.assertEqual(submission.metadata["xmlPath"], submission.xml_path)
        client_class.assert_called_once_with("token-123")
        kwargs = self._client(client_class).upload.call_args.kwargs
        self.assertEqual(kwargs, {"cif": "12345678", "credit_note": False})

    @patch.object(AnafSubmissionHandler, "client_class")
    def test_xml_is_stored_before_upload(self, client_class):
        """Test the generated XML is kept under the organization's folder"""
        create_provider_config(self.invoice.organization, credentials={"access_token": "token-123"})
        self._client(client_class).upload.return_value = UploadResponse(success=True, upload_index="1")

        submission = self.handler.handle(self.invoice, self.submission)

        self.assertTrue(submission.xml_path.startswith("12345678/einvoice/anaf/"))
        xml = read_xml(submission.xml_path)
        self.assertIn(b"CIUS-RO:1.0.1", xml)
        self.assertEqual(self._client(client_class).upload.call_args.args[0], xml)

    @patch.object(AnafSubmissionHandler, "client_class")
    def test_upload_rejected(self, client_class):
        """Test an upload answered with errors ends in ERROR"""
        create_provider_config(self.invoice.organization, credentials={"access_token": "token-123"})
        self._client(client_class).upload.return_value = UploadResponse(success=False, errors=["CIF invalid"])

        submission = self.handler.handle(self.invoice, self.submission)

        self.assertEqual(submission.status, EInvoiceSubmissionStatus.ERROR)
        self.assertEqual(submission.error_message, "CIF invalid")
        self.assertEqual(submission.metadata["uploadErrors"], ["CIF invalid"])
        self.assertTrue(submission.xml_path)

    @patch.object(AnafSubmissionHandler, "client_class")
    def test_without_token_is_xml_only(self, client_class):
        """Test no API call is made without an access token"""
        submission = self.handler.handle(self.invoice, self.submission)

        self.assertEqual(submission.status, EInvoiceSubmissionStatus.PENDING)
        self.assertIsNone(submission.external_id)
        self.assertEqual(submission.metadata["note"], AnafSubmissionHandler.xml_only_note)
        self.assertTrue(submission.xml_path)
        client_class.assert_not_called()

    @patch.object(AnafSubmissionHandler, "client_class")
    def test_credit_note_upload(self, client_class):
        """Test credit notes are uploaded with the CN standard flag"""
        credit_note = create_credit_note(self.invoice)
        submission = create_submission(invoice=credit_note)
        create_provider_config(self.invoice.organization, credentials={"access_token": "token-123"})
        self._client(client_class).upload.return_value = UploadResponse(success=True, upload_index="2")

        self.handler.handle(credit_note, submission)

        self.assertTrue(self._client(client_class).upload.call_args.kwargs["credit_note"])

    def test_invalid_invoice(self):
        """Test validation fails before anything is written"""
        invoice = create_invoice(number="INV-TEST-002", bill_to_tax_id="")
        submission = create_submission(invoice=invoice)
        with self.assertRaises(DocumentValidationError):
            self.handler.handle(invoice, submission)
        submission.refresh_from_db()
        self.assertEqual(submission.xml_path, "")


class AnafStatusCheckerTestCase(TestCase):
    """Test one ANAF status probe"""

    def setUp(self):
        self.invoice = create_invoice()
        create_provider_config(self.invoice.organization, credentials={"access_token": "token-123"})
        self.submission = create_submission(invoice=self.invoice, status="accepted", external_id="5001130147")
        self.checker = AnafStatusChecker()
        self.context = MagicMock(attempt=0)

    def _check(self, client_class, response):
        client_class.return_value.__enter__.return_value.get_status.return_value = response
        return self.checker.check(self.submission, self.context)

    @patch.object(AnafStatusChecker, "client_class")
    def test_validated(self, client_class):
        """Test stare=ok validates the submission"""
        outcome = self._check(client_class, StatusResponse(state="ok", download_id="3001474425"))
        self.assertEqual(outcome.status, EInvoiceSubmissionStatus.VALIDATED)
        self.assertEqual(outcome.metadata["downloadId"], "3001474425")
        self.assertEqual(outcome.metadata["providerStatus"], "ok")
        self.assertIn("lastCheckedAt", outcome.metadata)

    @patch.object(AnafStatusChecker, "client_class")
    def test_rejected(self, client_class):
        """Test stare=nok rejects with ANAF's message"""
        outcome = self._check(client_class, StatusResponse(state="nok", errors=["BR-RO-010"]))
        self.assertEqual(outcome.status, EInvoiceSubmissionStatus.REJECTED)
        self.assertEqual(outcome.error_message, "BR-RO-010")

    @patch.object(AnafStatusChecker, "client_class")
    def test_processing(self, client_class):
        """Test in prelucrare keeps the submission in flight"""
        outcome = self._check(client_class, StatusResponse(state="in prelucrare"))
        self.assertIsNone(outcome.status)
        self.assertFalse(outcome.is_terminal)
        client_class.return_value.__enter__.return_value.get_status.assert_called_once_with("5001130147")

    def test_missing_token(self):
        """Test a probe without credentials is an operational failure"""
        self.invoice.organization.einvoice_configs.update(credentials={})
        with self.assertRaises(ProviderAuthenticationError):
            self.checker.check(self.submission, self.context)
