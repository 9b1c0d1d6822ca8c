"""
PDF rendering of certificates.

The renderer is pure: it takes everything it prints as a `CertificateRenderContext`
and returns the document bytes. Persisting the bytes is up to the caller.
"""
import logging
from io import BytesIO
from typing import Dict, Optional

import qrcode
import qrcode.image.svg
from pydantic import BaseModel
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4, landscape
from reportlab.pdfgen import canvas

from ..models.enums import CertificateTemplate

logger = logging.getLogger(__name__)

TEMPLATE_PALETTES: Dict[str, Dict[str, str]] = {
    CertificateTemplate.STANDARD.value: {"accent": "#1e3a8a", "accent_light": "#dbeafe"},
    CertificateTemplate.PROFESSIONAL.value: {"accent": "#111827", "accent_light": "#e5e7eb"},
    CertificateTemplate.ACADEMIC.value: {"accent": "#7c2d12", "accent_light": "#fef3c7"},
    CertificateTemplate.TECHNICAL.value: {"accent": "#065f46", "accent_light": "#d1fae5"},
    CertificateTemplate.LANGUAGE_PROFICIENCY.value: {"accent": "#6d28d9", "accent_light": "#ede9fe"},
}


class CertificateRenderContext(BaseModel):
    recipient_name: str
    test_name: str
    title: str
    score: int
    proficiency_level: Optional[str] = None
    issue_date: str
    expiry_date: Optional[str] = None
    verification_code: str
    verification_url: str
    template_type: str = CertificateTemplate.STANDARD.value
    organization_name: str
    authority_name: str


class CertificateRenderError(Exception):
    pass


def qr_svg(data: str) -> str:
    """SVG markup of a QR code for `data`, stored with the certificate."""
    img = qrcode.make(data, image_factory=qrcode.image.svg.SvgPathImage, box_size=10, border=2)
    buf = BytesIO()
    img.save(buf)
    return buf.getvalue().decode("utf-8")


class CertificateRenderer:
    page_size = landscape(A4)

    def render(self, context: CertificateRenderContext) -> bytes:
        try:
            return self._draw(context)
        except Exception as e:
            logger.error(f"Failed to render certificate {context.verification_code}: {e}")
            raise CertificateRenderError(str(e)) from e

    def _draw(self, ctx: CertificateRenderContext) -> bytes:
        palette = TEMPLATE_PALETTES.get(ctx.template_type, TEMPLATE_PALETTES[CertificateTemplate.STANDARD.value])
        accent = HexColor(palette["accent"])
        accent_light = HexColor(palette["accent_light"])

        buf = BytesIO()
        c = canvas.Canvas(buf, pagesize=self.page_size)
        c.setTitle(ctx.title)
        c.setAuthor(ctx.organization_name)
        width, height = self.page_size

        # frame
        c.setLineWidth(3)
        c.setStrokeColor(accent)
        c.roundRect(30, 30, width - 60, height - 60, 16, stroke=1, fill=0)
        c.setLineWidth(1)
        c.roundRect(40, 40, width - 80, height - 80, 12, stroke=1, fill=0)

        # header band
        c.setFillColor(accent_light)
        c.roundRect(40, height - 150, width - 80, 80, 12, stroke=0, fill=1)
        c.setFillColor(accent)
        c.setFont("Helvetica-Bold", 30)
        c.drawCentredString(width / 2, height - 110, "CERTIFICATE")
        c.setFont("Helvetica", 13)
        c.drawCentredString(width / 2, height - 135, ctx.organization_name)

        c.setFillColor(HexColor("#000000"))
        c.setFont("Helvetica", 14)
        c.drawCentredString(width / 2, height - 195, "This is to certify that")
        c.setFont("Helvetica-Bold", 28)
        c.drawCentredString(width / 2, height - 235, ctx.recipient_name)
        c.setFont("Helvetica", 14)
        c.drawCentredString(width / 2, height - 270, "has successfully completed")
        c.setFont("Helvetica-Bold", 18)
        c.drawCentredString(width / 2, height - 300, ctx.test_name)

        result_line = f"Score: {ctx.score}%"
        if ctx.proficiency_level:
            result_line += f"  |  Level: {ctx.proficiency_level}"
        c.setFont("Helvetica", 14)
        c.drawCentredString(width / 2, height - 335, result_line)

        y = 150
        c.setFont("Helvetica", 11)
        c.drawString(70, y, f"Issued: {ctx.issue_date}")
        c.drawString(70, y - 18, f"Valid until: {ctx.expiry_date or 'No expiry'}")
        c.drawString(70, y - 36, f"Verification code: {ctx.verification_code}")

        # signature
        c.line(width / 2 - 110, 110, width / 2 + 110, 110)
        c.setFont("Helvetica", 10)
        c.drawCentredString(width / 2, 95, ctx.authority_name)

        self._draw_qr(c, ctx.verification_url, x=width - 190, y=70, size=120)
        c.setFont("Helvetica", 8)
        c.drawCentredString(width - 130, 60, "Scan to verify")

        c.showPage()
        c.save()
        buf.seek(0)
        return buf.getvalue()

    def _draw_qr(self, c: canvas.Canvas, data: str, x: float, y: float, size: float) -> None:
        qr = qrcode.QRCode(border=1)
        qr.add_data(data)
        qr.make(fit=True)
        matrix = qr.get_matrix()
        cell = size / len(matrix)

        c.setFillColor(HexColor("#000000"))
        for row_index, row in enumerate(matrix):
            for col_index, dark in enumerate(row):
                if dark:
                    c.rect(
                        x + col_index * cell,
                        y + size - (row_index + 1) * cell,
                        cell,
                        cell,
                        stroke=0,
                        fill=1,
                    )
