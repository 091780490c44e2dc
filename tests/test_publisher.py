import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from playwright.async_api import Error as PlaywrightError

from fakes import FakeStorage, html_as_pdf
from rental_service.app import publisher
from rental_service.app.publisher import DocumentKind, DocumentPublishError, DocumentPublisher, document_path


def fake_playwright(browser):
    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser)
    manager = MagicMock()
    manager.__aenter__ = AsyncMock(return_value=playwright)
    manager.__aexit__ = AsyncMock(return_value=False)
    return manager


class DocumentPathTests(unittest.TestCase):
    def test_storage_paths(self):
        self.assertEqual(document_path(DocumentKind.CONTRACT, "u1", "r1", True), "signed/u1/rental_r1_signed.pdf")
        self.assertEqual(document_path(DocumentKind.CONTRACT, "u1", "r1", False), "drafts/u1/rental_r1.pdf")
        self.assertEqual(document_path(DocumentKind.RETURN_ACT, "u1", "r1", False), "returns/u1/return_act_r1.pdf")
        self.assertEqual(
            document_path(DocumentKind.RETURN_ACT, "u1", "r1", True), "returns/u1/return_act_r1_signed.pdf"
        )


class DocumentPublisherTests(unittest.IsolatedAsyncioTestCase):
    async def test_publish_wraps_body_in_page_shell(self):
        storage = FakeStorage()
        url = await DocumentPublisher(storage, html_as_pdf).publish(
            DocumentKind.CONTRACT, "u1", "r1", True, "<p>body</p>"
        )
        self.assertEqual(url, "https://storage.test/signed/u1/rental_r1_signed.pdf")
        content = storage.files["signed/u1/rental_r1_signed.pdf"].decode("utf-8")
        self.assertTrue(content.startswith("<!DOCTYPE html>"))
        self.assertIn("<body><p>body</p></body>", content)
        self.assertIn("DejaVu Sans", content)

    async def test_publishing_same_coordinates_twice_overwrites(self):
        storage = FakeStorage()
        docs = DocumentPublisher(storage, html_as_pdf)
        first = await docs.publish(DocumentKind.RETURN_ACT, "u1", "r1", False, "<p>first</p>")
        second = await docs.publish(DocumentKind.RETURN_ACT, "u1", "r1", False, "<p>second</p>")
        self.assertEqual(first, second)
        self.assertEqual(list(storage.files), ["returns/u1/return_act_r1.pdf"])
        self.assertIn("<p>second</p>", storage.files["returns/u1/return_act_r1.pdf"].decode("utf-8"))

    async def test_upload_failure_raises_publish_error(self):
        docs = DocumentPublisher(FakeStorage(fail=True), html_as_pdf)
        with self.assertRaises(DocumentPublishError):
            await docs.publish(DocumentKind.CONTRACT, "u1", "r1", True, "<p>x</p>")

    async def test_render_failure_skips_upload(self):
        storage = FakeStorage()
        renderer = AsyncMock(side_effect=PlaywrightError("chromium crashed"))
        with self.assertRaises(DocumentPublishError):
            await DocumentPublisher(storage, renderer).publish(DocumentKind.CONTRACT, "u1", "r1", True, "<p>x</p>")
        self.assertEqual(storage.uploads, [])


class RenderPdfTests(unittest.IsolatedAsyncioTestCase):
    async def test_renders_a4_with_background(self):
        page = MagicMock()
        page.set_content = AsyncMock()
        page.pdf = AsyncMock(return_value=b"%PDF-1.4")
        context = MagicMock()
        context.new_page = AsyncMock(return_value=page)
        browser = MagicMock()
        browser.new_context = AsyncMock(return_value=context)
        browser.close = AsyncMock()

        with patch.object(publisher, "async_playwright", return_value=fake_playwright(browser)):
            data = await publisher.render_pdf("<p>x</p>")

        self.assertEqual(data, b"%PDF-1.4")
        page.set_content.assert_awaited_once_with("<p>x</p>", wait_until="load")
        page.pdf.assert_awaited_once_with(format="A4", print_background=True)
        browser.close.assert_awaited_once()

    async def test_browser_closed_when_rendering_fails(self):
        browser = MagicMock()
        browser.new_context = AsyncMock(side_effect=PlaywrightError("boom"))
        browser.close = AsyncMock()

        with patch.object(publisher, "async_playwright", return_value=fake_playwright(browser)):
            with self.assertRaises(PlaywrightError):
                await publisher.render_pdf("<p>x</p>")

        browser.close.assert_awaited_once()


if __name__ == "__main__":
    unittest.main()
