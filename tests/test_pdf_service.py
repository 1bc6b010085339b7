import io
import math

import pytest
from PIL import Image
from pypdf import PdfReader

from despachante.errors import RenderError
from despachante.services.pdf_service import (
    PlaywrightRasterizer,
    PdfService,
    build_print_document,
    sanitize_html,
    slice_into_pages,
)

from conftest import FakeRasterizer


def page_count(pdf_bytes):
    return len(PdfReader(io.BytesIO(pdf_bytes)).pages)


def test_document_of_two_and_a_half_pages_yields_three(app_ctx):
    pdf = PdfService(rasterizer=FakeRasterizer(pages=2.4)).render('<p>texto</p>')
    assert pdf.startswith(b'%PDF')
    assert page_count(pdf) == 3


def test_short_document_yields_single_page(app_ctx):
    pdf = PdfService(rasterizer=FakeRasterizer(pages=0.3)).render('<p>curto</p>')
    assert page_count(pdf) == 1


def test_exact_multiple_has_no_blank_trailing_page(app_ctx):
    pdf = PdfService(rasterizer=FakeRasterizer(pages=2)).render('<p>x</p>')
    assert page_count(pdf) == 2


def test_slice_last_band_keeps_natural_height():
    bitmap = Image.new('RGB', (210, 297 * 2 + 50))
    bands = slice_into_pages(bitmap, 297)
    assert [b.size for b in bands] == [(210, 297), (210, 297), (210, 50)]


def test_slice_rejects_empty_bitmap():
    with pytest.raises(RenderError):
        slice_into_pages(Image.new('RGB', (210, 0)), 297)


def test_fractional_scale_one_viewport_stays_one_page(app_ctx):
    class OneViewport:
        def rasterize(self, html, width_px, height_px, scale):
            # Chromium rounds the device-pixel height up
            return Image.new('RGB', (int(width_px * scale), math.ceil(height_px * scale)), 'white')

    pdf = PdfService(rasterizer=OneViewport(), scale=1.5).render('<p>uma página</p>')
    assert page_count(pdf) == 1


def test_rasterizer_gets_a4_viewport_at_configured_scale(app_ctx):
    seen = {}

    class Recorder(FakeRasterizer):
        def rasterize(self, html, width_px, height_px, scale):
            seen.update(width=width_px, height=height_px, scale=scale)
            return super().rasterize(html, width_px, height_px, scale)

    PdfService(rasterizer=Recorder(), scale=3).render('<p>x</p>')
    assert seen == {'width': 794, 'height': 1123, 'scale': 3}


def test_rasterize_failure_surfaces_as_render_error(app_ctx):
    service = PdfService(rasterizer=FakeRasterizer(fail_stage=RenderError.RASTERIZE))
    with pytest.raises(RenderError) as exc:
        service.render('<p>x</p>')
    assert exc.value.stage == RenderError.RASTERIZE


def test_unexpected_rasterizer_error_is_wrapped(app_ctx):
    class Broken:
        def rasterize(self, *args):
            raise MemoryError('sem memória')

    with pytest.raises(RenderError) as exc:
        PdfService(rasterizer=Broken()).render('<p>x</p>')
    assert exc.value.stage == RenderError.RASTERIZE


def test_unknown_page_size(app_ctx):
    with pytest.raises(ValueError):
        PdfService(rasterizer=FakeRasterizer()).render('<p>x</p>', page_size='A3')


def test_print_document_is_sanitized():
    html = build_print_document(
        '<p onclick="steal()">Olá</p><script>alert(1)</script>'
        '<a href="javascript:alert(1)">link</a><iframe src="x"></iframe>'
    )
    assert '<script' not in html
    assert 'onclick' not in html
    assert 'javascript:' not in html
    assert '<iframe' not in html
    assert '<p>Olá</p>' in html
    assert '@page { size: A4; margin: 0; }' in html


def test_sanitize_keeps_formatting():
    html = '<h1>Título</h1><table><tr><td><strong>a</strong></td></tr></table>'
    assert sanitize_html(html) == html


class FakeContext:
    def __init__(self, page):
        self.page = page
        self.closed = False

    def new_page(self):
        return self.page

    def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, context):
        self.context = context
        self.closed = False

    def new_context(self, **kwargs):
        self.context.options = kwargs
        return self.context

    def close(self):
        self.closed = True


class ExplodingPage:
    def set_content(self, html, **kwargs):
        pass

    def emulate_media(self, **kwargs):
        pass

    def screenshot(self, **kwargs):
        raise RuntimeError('GPU process crashed')


class FakePlaywright:
    def __init__(self, browser):
        self.chromium = self
        self.browser = browser

    def launch(self, **kwargs):
        return self.browser

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_playwright_surface_released_when_screenshot_fails(monkeypatch):
    context = FakeContext(ExplodingPage())
    browser = FakeBrowser(context)
    monkeypatch.setattr('playwright.sync_api.sync_playwright', lambda: FakePlaywright(browser))

    with pytest.raises(RenderError) as exc:
        PlaywrightRasterizer().rasterize('<html></html>', 794, 1123, 2)

    assert exc.value.stage == RenderError.RASTERIZE
    assert context.closed
    assert browser.closed
    assert context.options == {'viewport': {'width': 794, 'height': 1123}, 'device_scale_factor': 2}
