"""Certificate artifact renderer.

Turns a credential into PDF bytes on a fixed A4-landscape canvas.  Layout
is computed first as a list of text placements (a pure function, easy to
assert on), then drawn with reportlab.  The canvas is created with
``invariant=1`` so reportlab omits its creation timestamp and random
document id: identical inputs produce byte-identical output.

Long names never overflow the frame.  The recipient and achievement
fields start at a maximum size and shrink in fixed steps until they fit
the usable width, stopping at a floor.  Below the floor the text is
allowed to look tight rather than becoming unreadable.

No I/O happens here.  Callers on the event loop should go through
``render_async``, which pushes the CPU work onto a worker thread.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from io import BytesIO

from reportlab.lib.colors import HexColor
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from cert_service.core.metrics import RENDER_DURATION
from cert_service.models.credential import AchievementType

PAGE_WIDTH = 842.0
PAGE_HEIGHT = 595.0
TEXT_MAX_WIDTH = PAGE_WIDTH - 120

GOLD = HexColor("#B8860B")
BLUE = HexColor("#1E3A8A")
DARK = HexColor("#1F2937")
MUTED = HexColor("#6B7280")

OUTER_MARGIN = 30
INNER_MARGIN = 40
CORNER_DOT_RADIUS = 4

NAME_MAX_SIZE, NAME_MIN_SIZE = 36, 20
ACHIEVEMENT_MAX_SIZE, ACHIEVEMENT_MIN_SIZE = 24, 14
SHRINK_STEP = 2


@dataclass(frozen=True, slots=True)
class TextPlacement:
    """One centered line of text.  ``top`` is the baseline distance from
    the top edge of the page."""

    text: str
    font: str
    size: float
    top: float
    color: str = "dark"


@dataclass(frozen=True, slots=True)
class CertificateContent:
    credential_id: str
    recipient_name: str
    achievement_name: str
    issued_at: int
    achievement_type: AchievementType
    issuer_name: str = "AI Genius Lab"


def fit_font_size(
    text: str,
    font: str,
    *,
    max_size: float,
    min_size: float,
    step: float = SHRINK_STEP,
    max_width: float = TEXT_MAX_WIDTH,
) -> float:
    size = max_size
    while size > min_size and stringWidth(text, font, size) > max_width:
        size = max(min_size, size - step)
    return size


def format_issue_date(issued_at: int) -> str:
    # "October 19, 2026"; no locale-dependent %-d so it works on every platform.
    dt = datetime.fromtimestamp(issued_at, tz=UTC)
    return f"{dt.strftime('%B')} {dt.day}, {dt.year}"


def layout(content: CertificateContent) -> list[TextPlacement]:
    name_size = fit_font_size(
        content.recipient_name,
        "Times-Bold",
        max_size=NAME_MAX_SIZE,
        min_size=NAME_MIN_SIZE,
    )
    achievement_size = fit_font_size(
        content.achievement_name,
        "Times-Bold",
        max_size=ACHIEVEMENT_MAX_SIZE,
        min_size=ACHIEVEMENT_MIN_SIZE,
    )
    return [
        TextPlacement("CERTIFICATE OF COMPLETION", "Times-Bold", 28, 100, "blue"),
        TextPlacement("This is to certify that", "Times-Roman", 14, 170, "muted"),
        TextPlacement(content.recipient_name, "Times-Bold", name_size, 220),
        TextPlacement("has successfully completed the", "Times-Roman", 14, 280, "muted"),
        TextPlacement(content.achievement_type.label, "Times-Bold", 16, 310, "gold"),
        TextPlacement(content.achievement_name, "Times-Bold", achievement_size, 350, "blue"),
        TextPlacement(
            f"Issued on {format_issue_date(content.issued_at)}",
            "Helvetica",
            12,
            420,
            "muted",
        ),
        TextPlacement(content.issuer_name, "Times-Bold", 20, 470, "gold"),
        TextPlacement("Authorized Signature", "Helvetica", 10, 520, "muted"),
        TextPlacement(
            f"Certificate ID: {content.credential_id}",
            "Helvetica",
            9,
            PAGE_HEIGHT - 50,
            "muted",
        ),
    ]


_COLORS = {"dark": DARK, "muted": MUTED, "blue": BLUE, "gold": GOLD}


def _draw_frame(c: canvas.Canvas) -> None:
    c.setStrokeColor(GOLD)
    c.setLineWidth(3)
    c.rect(
        OUTER_MARGIN,
        OUTER_MARGIN,
        PAGE_WIDTH - 2 * OUTER_MARGIN,
        PAGE_HEIGHT - 2 * OUTER_MARGIN,
    )
    c.setStrokeColor(BLUE)
    c.setLineWidth(1)
    c.rect(
        INNER_MARGIN,
        INNER_MARGIN,
        PAGE_WIDTH - 2 * INNER_MARGIN,
        PAGE_HEIGHT - 2 * INNER_MARGIN,
    )
    c.setFillColor(GOLD)
    for x in (INNER_MARGIN, PAGE_WIDTH - INNER_MARGIN):
        for y in (INNER_MARGIN, PAGE_HEIGHT - INNER_MARGIN):
            c.circle(x, y, CORNER_DOT_RADIUS, stroke=0, fill=1)


def render(content: CertificateContent) -> bytes:
    """Render the certificate and return the PDF document bytes."""
    started = time.perf_counter()
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=(PAGE_WIDTH, PAGE_HEIGHT), invariant=1)
    c.setTitle(f"Certificate {content.credential_id}")
    c.setAuthor(content.issuer_name)

    _draw_frame(c)

    center_x = PAGE_WIDTH / 2
    for item in layout(content):
        c.setFont(item.font, item.size)
        c.setFillColor(_COLORS[item.color])
        c.drawCentredString(center_x, PAGE_HEIGHT - item.top, item.text)

    # Signature line sits just above its caption.
    c.setStrokeColor(MUTED)
    c.setLineWidth(0.5)
    c.line(center_x - 100, PAGE_HEIGHT - 505, center_x + 100, PAGE_HEIGHT - 505)

    c.showPage()
    c.save()
    RENDER_DURATION.observe(time.perf_counter() - started)
    return buf.getvalue()


async def render_async(content: CertificateContent) -> bytes:
    return await asyncio.to_thread(render, content)
