import io
import logging
import math
import re
from typing import Protocol

from flask import current_app
from fpdf import FPDF
from PIL import Image

from despachante.errors import RenderError

logger = logging.getLogger(__name__)

CSS_PX_PER_MM = 96 / 25.4

# (width, height) in mm
PAGE_SIZES = {
    'A4': (210.0, 297.0),
    'Letter': (215.9, 279.4),
}

# Fixed print stylesheet. Must not depend on the application theme.
PRINT_STYLESHEET = """
@page { size: A4; margin: 0; }
html, body { margin: 0; padding: 0; background: #ffffff; }
body {
    box-sizing: border-box;
    width: 100%;
    padding: 20mm;
    color: #000000;
    font-family: Arial, Helvetica, sans-serif;
    font-size: 12pt;
    line-height: 1.6;
    text-align: justify;
}
h1 { font-size: 20pt; margin: 0 0 12pt 0; text-align: center; }
h2 { font-size: 16pt; margin: 14pt 0 8pt 0; }
h3 { font-size: 13pt; margin: 12pt 0 6pt 0; }
p { margin: 0 0 8pt 0; }
strong, b { font-weight: bold; }
table { width: 100%; border-collapse: collapse; margin: 8pt 0; }
th, td { border: 1px solid #000000; padding: 4pt 6pt; vertical-align: top; }
th { background: #f2f2f2; }
blockquote { margin: 8pt 0 8pt 24pt; padding-left: 8pt; border-left: 2px solid #999999; }
ul, ol { margin: 6pt 0 6pt 24pt; padding: 0; }
li { margin-bottom: 4pt; }
img { max-width: 100%; }
hr { border: none; border-top: 1px solid #000000; margin: 12pt 0; }
"""

_DANGEROUS_BLOCKS = re.compile(r'<(script|style|iframe|object|embed)\b[^>]*>.*?</\1\s*>', re.IGNORECASE | re.DOTALL)
_DANGEROUS_TAGS = re.compile(r'<(script|iframe|object|embed|link|meta|base)\b[^>]*/?>', re.IGNORECASE)
_EVENT_ATTRS = re.compile(r'\s+on[a-z]+\s*=\s*("[^"]*"|\'[^\']*\'|[^\s>]+)', re.IGNORECASE)
_JS_URLS = re.compile(r'(href|src)\s*=\s*(["\'])\s*javascript:[^"\']*\2', re.IGNORECASE)


def sanitize_html(html):
    """Strips active content before the HTML reaches the rendering surface."""
    html = html or ''
    html = _DANGEROUS_BLOCKS.sub('', html)
    html = _DANGEROUS_TAGS.sub('', html)
    html = _EVENT_ATTRS.sub('', html)
    html = _JS_URLS.sub(r'\1=\2#\2', html)
    return html


def build_print_document(content):
    return (
        '<!DOCTYPE html><html lang="pt-BR"><head><meta charset="utf-8">'
        f'<style>{PRINT_STYLESHEET}</style></head>'
        f'<body>{sanitize_html(content)}</body></html>'
    )


class Rasterizer(Protocol):
    def rasterize(self, html: str, width_px: int, height_px: int, scale: float) -> Image.Image:
        """Renders a full HTML document to one tall bitmap `width_px * scale` pixels wide."""


class PlaywrightRasterizer:
    """Headless Chromium page used as the off-screen rendering surface."""

    def __init__(self, browser_args=None, timeout_ms=30000):
        self.browser_args = browser_args or ['--no-sandbox']
        self.timeout_ms = timeout_ms

    def rasterize(self, html, width_px, height_px, scale):
        from playwright.sync_api import sync_playwright

        with sync_playwright() as p:
            try:
                browser = p.chromium.launch(args=self.browser_args)
            except Exception as e:
                raise RenderError(RenderError.SURFACE, str(e)) from e

            try:
                try:
                    context = browser.new_context(
                        viewport={'width': width_px, 'height': height_px},
                        device_scale_factor=scale,
                    )
                    page = context.new_page()
                except Exception as e:
                    raise RenderError(RenderError.SURFACE, str(e)) from e

                try:
                    page.set_content(html, wait_until='load', timeout=self.timeout_ms)
                    page.emulate_media(media='print')
                    png = page.screenshot(full_page=True, type='png', timeout=self.timeout_ms)
                except Exception as e:
                    raise RenderError(RenderError.RASTERIZE, str(e)) from e
                finally:
                    context.close()
            finally:
                browser.close()

        logger.debug(f"Rasterized document: {len(png)} bytes of PNG")
        return Image.open(io.BytesIO(png))


def slice_into_pages(bitmap, band_height):
    """
    Cuts a tall bitmap into bands `band_height` device pixels high (one
    viewport page at the render scale). The last band keeps its natural
    height. Content crossing a band edge is split between pages.
    """
    width, height = bitmap.size
    if width <= 0 or height <= 0 or band_height <= 0:
        raise RenderError(RenderError.RASTERIZE, 'bitmap vazio')

    pages = max(1, math.ceil(height / band_height))

    bands = []
    for index in range(pages):
        top = index * band_height
        bottom = min(top + band_height, height)
        bands.append(bitmap.crop((0, top, width, bottom)))
    return bands


def assemble_pdf(bands, page_width_mm, page_height_mm):
    pdf = FPDF(orientation='P', unit='mm', format=(page_width_mm, page_height_mm))
    pdf.set_auto_page_break(auto=False)
    pdf.set_margins(0, 0, 0)

    for band in bands:
        band_width, band_height = band.size
        pdf.add_page()
        pdf.image(
            band.convert('RGB'),
            x=0,
            y=0,
            w=page_width_mm,
            h=min(band_height * page_width_mm / band_width, page_height_mm),
        )
    return bytes(pdf.output())


class PdfService:
    def __init__(self, rasterizer=None, scale=None):
        self.rasterizer = rasterizer
        self.scale = scale

    def _get_rasterizer(self):
        if self.rasterizer is None:
            self.rasterizer = PlaywrightRasterizer(
                browser_args=current_app.config.get('PDF_BROWSER_ARGS')
            )
        return self.rasterizer

    def render(self, content, page_size='A4'):
        """
        Renders contract HTML into a multi-page PDF.
        The document is rasterized once and sliced into page-high bands.
        """
        if page_size not in PAGE_SIZES:
            raise ValueError(f"Unsupported page size: {page_size}")

        page_width_mm, page_height_mm = PAGE_SIZES[page_size]
        scale = self.scale or current_app.config.get('PDF_RENDER_SCALE', 2)
        width_px = int(round(page_width_mm * CSS_PX_PER_MM))
        height_px = int(round(page_height_mm * CSS_PX_PER_MM))
        # Chromium rounds device pixels up; a one-viewport document must stay one page
        band_height = math.ceil(height_px * scale)

        current_app.logger.info(f"Rendering PDF ({page_size}, scale {scale})")
        html = build_print_document(content)

        try:
            bitmap = self._get_rasterizer().rasterize(html, width_px, height_px, scale)
        except RenderError:
            raise
        except Exception as e:
            current_app.logger.error(f"Rasterization failed: {e}")
            raise RenderError(RenderError.RASTERIZE, str(e)) from e

        try:
            bands = slice_into_pages(bitmap, band_height)
            pdf_bytes = assemble_pdf(bands, page_width_mm, page_height_mm)
        except RenderError:
            raise
        except Exception as e:
            current_app.logger.error(f"Error assembling PDF (FPDF): {e}")
            raise RenderError(RenderError.ASSEMBLE, str(e)) from e

        current_app.logger.info(f"PDF rendered: {len(bands)} page(s), {len(pdf_bytes)} bytes")
        return pdf_bytes
