import logging
import os
import re
import subprocess
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import Any, Optional

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.platypus import Flowable, PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from backend.chart_engine import (
    CENTER_CELLS,
    GRID_SIZE,
    SIGN_NAMES,
    center_label,
    chart_grid,
    classify_dignity,
)
from backend.chart_models import Chart, Dignity, GridCell

logger = logging.getLogger("kundli_gpt")

MODULE_DIR = Path(__file__).resolve().parent
REPO_ROOT = MODULE_DIR.parent

PDF_FILENAME = "Kundli_GPT_Reading.pdf"
PDF_DISCLAIMER = (
    "This reading is generated by an AI model for reflection and entertainment. "
    "Chart positions are estimated by the model, not computed from an ephemeris."
)

# ------------------------------------------------------------------------------
# Devanagari font setup
# ------------------------------------------------------------------------------
FONT_CANDIDATES = [
    MODULE_DIR / "fonts" / "NotoSansDevanagari-Regular.ttf",
    REPO_ROOT / "assets" / "fonts" / "NotoSansDevanagari-Regular.ttf",
    Path("/usr/share/fonts/truetype/noto/NotoSansDevanagari-Regular.ttf"),
    Path("/usr/share/fonts/opentype/noto/NotoSansDevanagari-Regular.ttf"),
    Path("/usr/share/fonts/truetype/lohit-devanagari/Lohit-Devanagari.ttf"),
]

DEVANAGARI_FONT_AVAILABLE = False
PDF_FONT_REG = "Helvetica"
PDF_FONT_BOLD = "Helvetica-Bold"

DIGNITY_COLORS = {
    Dignity.exalted: colors.HexColor("#15803D"),
    Dignity.debilitated: colors.HexColor("#B91C1C"),
    Dignity.own_sign: colors.HexColor("#1D4ED8"),
    Dignity.ordinary: colors.HexColor("#4B5563"),
}
STRENGTH_COLORS = {
    "high": colors.HexColor("#F59E0B"),
    "medium": colors.HexColor("#FBBF24"),
    "low": colors.HexColor("#FDE68A"),
    "minimal": colors.HexColor("#E5E7EB"),
}
ACCENT = colors.HexColor("#7C2D12")
SEPARATOR = colors.HexColor("#E7D7C1")
PANEL_BG = colors.HexColor("#FFF7ED")


def _first_existing_path(candidates: list[Path]) -> Optional[Path]:
    for candidate in candidates:
        if candidate.exists() and candidate.is_file():
            return candidate
    return None


def _fontconfig_match(family: str) -> Optional[Path]:
    try:
        result = subprocess.run(
            ["fc-match", "-f", "%{file}\n", family],
            check=False,
            capture_output=True,
            text=True,
            timeout=2,
        )
    except (OSError, subprocess.SubprocessError):
        return None

    raw = result.stdout.strip() if result.returncode == 0 else ""
    if not raw or not raw.lower().endswith(".ttf"):
        return None
    candidate = Path(raw)
    return candidate if candidate.is_file() else None


def discover_devanagari_font() -> Optional[Path]:
    configured = os.getenv("PDF_FONT_PATH", "").strip()
    if configured:
        path = Path(configured)
        if path.is_file():
            return path
        logger.warning("PDF_FONT_PATH=%s does not exist; searching defaults", configured)

    direct = _first_existing_path(FONT_CANDIDATES)
    if direct:
        return direct
    return _fontconfig_match("Noto Sans Devanagari")


def init_fonts() -> None:
    """Register a Devanagari-capable font, falling back to Helvetica."""
    global DEVANAGARI_FONT_AVAILABLE, PDF_FONT_REG, PDF_FONT_BOLD

    DEVANAGARI_FONT_AVAILABLE = False
    PDF_FONT_REG = "Helvetica"
    PDF_FONT_BOLD = "Helvetica-Bold"

    font_path = discover_devanagari_font()
    if font_path is None:
        logger.warning("No Devanagari font found; Hindi text in PDFs will not render correctly.")
        return
    try:
        pdfmetrics.registerFont(TTFont("Devanagari", str(font_path)))
    except Exception as e:
        logger.error("Font registration failed for %s: %s", font_path, e)
        return

    DEVANAGARI_FONT_AVAILABLE = True
    PDF_FONT_REG = "Devanagari"
    PDF_FONT_BOLD = "Devanagari"
    logger.info("Devanagari font loaded: %s", font_path)


# ------------------------------------------------------------------------------
# Chart drawing
# ------------------------------------------------------------------------------
class SouthIndianChart(Flowable):
    """Fixed 4x4 South-Indian grid; the centre 2x2 carries the chart label."""

    def __init__(self, chart: Chart, size: float = 340):
        Flowable.__init__(self)
        self.chart = chart
        self.grid = chart_grid(chart)
        self.width = size
        self.height = size

    def _cell_origin(self, row: int, col: int) -> tuple[float, float]:
        step = self.width / GRID_SIZE
        # PDF y grows upwards; grid rows grow downwards.
        return col * step, self.height - (row + 1) * step

    def _draw_cell(self, cell: GridCell) -> None:
        c = self.canv
        step = self.width / GRID_SIZE
        x, y = self._cell_origin(cell.row, cell.col)

        c.setFillColor(colors.HexColor("#FFFBEB") if cell.is_ascendant else colors.white)
        c.setStrokeColor(ACCENT)
        c.setLineWidth(1.6 if cell.is_ascendant else 0.8)
        c.rect(x, y, step, step, stroke=1, fill=1)

        c.setFillColor(colors.HexColor("#9A3412"))
        c.setFont(PDF_FONT_BOLD, 7)
        c.drawString(x + 4, y + step - 10, cell.abbreviation)
        c.drawRightString(x + step - 4, y + step - 10, f"H{cell.house}")
        if cell.is_ascendant:
            c.drawCentredString(x + step / 2, y + step - 10, "Asc")

        c.setFillColor(colors.black)
        c.setFont(PDF_FONT_REG, 8)
        for i, body in enumerate(cell.occupants):
            c.drawCentredString(x + step / 2, y + step - 24 - i * 10, body.short_label)

        bar_width = (step - 8) * cell.strength / 100.0
        c.setFillColor(STRENGTH_COLORS[cell.strength_band])
        c.rect(x + 4, y + 4, bar_width, 3, stroke=0, fill=1)

    def draw(self):
        for cell in self.grid.values():
            self._draw_cell(cell)

        c = self.canv
        step = self.width / GRID_SIZE
        label = center_label()
        rows = {r for r, _ in CENTER_CELLS}
        cols = {col for _, col in CENTER_CELLS}
        x, y = self._cell_origin(max(rows), min(cols))
        span = step * len(cols)
        c.setFillColor(PANEL_BG)
        c.setStrokeColor(SEPARATOR)
        c.rect(x, y, span, step * len(rows), stroke=1, fill=1)
        c.setFillColor(ACCENT)
        c.setFont(PDF_FONT_BOLD, 13)
        c.drawCentredString(x + span / 2, y + step + 10, label.title)
        c.setFont(PDF_FONT_REG, 8)
        c.drawCentredString(x + span / 2, y + step - 6, label.subtitle)
        if self.chart.rashi:
            c.drawCentredString(x + span / 2, y + step - 20, f"Rashi: {self.chart.rashi}")


# ------------------------------------------------------------------------------
# Text rendering
# ------------------------------------------------------------------------------
def create_pdf_styles():
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        name="ReadingTitle",
        parent=styles["Title"],
        fontName=PDF_FONT_BOLD,
        fontSize=22,
        leading=28,
        alignment=TA_CENTER,
        textColor=ACCENT,
        spaceAfter=6,
    ))
    styles.add(ParagraphStyle(
        name="ReadingSubtitle",
        parent=styles["Normal"],
        fontName=PDF_FONT_REG,
        fontSize=10,
        leading=14,
        alignment=TA_CENTER,
        textColor=colors.HexColor("#6B7280"),
        spaceAfter=12,
    ))
    styles.add(ParagraphStyle(
        name="SectionTitle",
        parent=styles["Heading2"],
        fontName=PDF_FONT_BOLD,
        fontSize=15,
        leading=20,
        textColor=ACCENT,
        spaceBefore=6,
        spaceAfter=8,
    ))
    styles.add(ParagraphStyle(
        name="SubSection",
        parent=styles["Heading3"],
        fontName=PDF_FONT_BOLD,
        fontSize=12.5,
        leading=17,
        textColor=colors.HexColor("#9A3412"),
        spaceAfter=6,
    ))
    styles.add(ParagraphStyle(
        name="Body",
        parent=styles["Normal"],
        fontName=PDF_FONT_REG,
        fontSize=11,
        leading=17,
        alignment=TA_JUSTIFY,
        spaceAfter=7,
    ))
    styles.add(ParagraphStyle(
        name="Small",
        parent=styles["Normal"],
        fontName=PDF_FONT_REG,
        fontSize=8,
        leading=10,
        alignment=TA_CENTER,
        textColor=colors.grey,
    ))
    return styles


_ITALIC_RE = re.compile(r"(?<!\*)\*(?!\s)(.+?)(?<!\s)\*(?!\*)")


def sanitize_pdf_text(value: Any) -> str:
    """Escape text for ReportLab's mini-markup."""
    if value is None:
        return ""
    return str(value).replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def convert_markdown_inline(text: str) -> str:
    """Escape, then turn ***bold italic***, **bold** and *italic* markers into ReportLab tags."""
    text = sanitize_pdf_text(text)
    text = re.sub(r"\*\*\*(.+?)\*\*\*", r"<b><i>\1</i></b>", text)
    text = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", text)
    # italics never span a bold boundary
    pieces = re.split(r"(</?b>)", text)
    return "".join(
        piece if piece in ("<b>", "</b>") else _ITALIC_RE.sub(r"<i>\1</i>", piece)
        for piece in pieces
    )


def _body_paragraph(markup: str, line: str, style) -> Paragraph:
    try:
        return Paragraph(markup, style)
    except ValueError:
        logger.warning("Unbalanced markup in reading line; rendering as plain text")
        return Paragraph(sanitize_pdf_text(line.replace("*", "")), style)


def parse_markdown_to_flowables(text: str, styles) -> list:
    """Convert the prediction markdown into flowables (headings, bullets, paragraphs)."""
    flowables: list = []
    for raw_line in (text or "").split("\n"):
        line = raw_line.strip()
        if not line:
            flowables.append(Spacer(1, 0.15 * cm))
            continue
        if line in {"---", "***"}:
            flowables.append(Spacer(1, 0.3 * cm))
        elif line.startswith("### "):
            flowables.append(Paragraph(sanitize_pdf_text(line[4:].replace("**", "")), styles["SubSection"]))
        elif line.startswith("## "):
            flowables.append(Paragraph(sanitize_pdf_text(line[3:].replace("**", "")), styles["SectionTitle"]))
        elif line.startswith("# "):
            flowables.append(Paragraph(sanitize_pdf_text(line[2:].replace("**", "")), styles["ReadingTitle"]))
        elif line.startswith(("- ", "* ", "• ")):
            flowables.append(_body_paragraph("&bull; " + convert_markdown_inline(line[2:]), line, styles["Body"]))
        elif bullet := re.match(r"^(\d+)[.)]\s+(.*)$", line):
            flowables.append(_body_paragraph(f"{bullet.group(1)}. " + convert_markdown_inline(bullet.group(2)), line, styles["Body"]))
        else:
            flowables.append(_body_paragraph(convert_markdown_inline(line), line, styles["Body"]))
    return flowables


def positions_table(chart: Chart) -> Table:
    header = ["Planet", "Sign", "House", "Retro", "Dignity"]
    rows: list[list[Any]] = [header]
    dignity_rows: list[tuple[int, Dignity]] = []
    for index, body in enumerate(chart.bodies, start=1):
        dignity = classify_dignity(body.name, body.sign_id)
        dignity_rows.append((index, dignity))
        rows.append([
            body.name,
            f"{SIGN_NAMES[body.sign_id]} ({body.sign_id})",
            str(body.house),
            "R" if body.is_retrograde else "-",
            dignity.value,
        ])

    table = Table(rows, colWidths=[3 * cm, 4.2 * cm, 2 * cm, 2 * cm, 3.3 * cm])
    style = [
        ("FONTNAME", (0, 0), (-1, 0), PDF_FONT_BOLD),
        ("FONTNAME", (0, 1), (-1, -1), PDF_FONT_REG),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("BACKGROUND", (0, 0), (-1, 0), ACCENT),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("GRID", (0, 0), (-1, -1), 0.5, SEPARATOR),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, PANEL_BG]),
        ("LEFTPADDING", (0, 0), (-1, -1), 6),
        ("RIGHTPADDING", (0, 0), (-1, -1), 6),
    ]
    for row_index, dignity in dignity_rows:
        style.append(("TEXTCOLOR", (4, row_index), (4, row_index), DIGNITY_COLORS[dignity]))
    table.setStyle(TableStyle(style))
    return table


def generate_kundli_pdf(*, chart: Chart, markdown: str, name: str = "", generated_at: Optional[datetime] = None) -> bytes:
    """Render chart grid, positions and reading into a single PDF."""
    styles = create_pdf_styles()
    stamp = (generated_at or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M UTC")

    with BytesIO() as buffer:
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=48,
            leftMargin=48,
            topMargin=40,
            bottomMargin=40,
            title="Kundli GPT Reading",
        )

        story: list = [
            Paragraph("Kundli GPT Reading", styles["ReadingTitle"]),
            Paragraph(sanitize_pdf_text(name) if name else "Vedic Lagna Chart", styles["ReadingSubtitle"]),
        ]

        meta = [
            ["Ascendant", f"{SIGN_NAMES[chart.ascendant.sign_id]} ({chart.ascendant.sign_id})"],
            ["Moon Sign (Rashi)", chart.rashi or "-"],
            ["Day of Birth", chart.day or "-"],
        ]
        meta_table = Table(meta, colWidths=[4.5 * cm, 10 * cm])
        meta_table.setStyle(TableStyle([
            ("FONTNAME", (0, 0), (0, -1), PDF_FONT_BOLD),
            ("FONTNAME", (1, 0), (1, -1), PDF_FONT_REG),
            ("FONTSIZE", (0, 0), (-1, -1), 9.5),
            ("BACKGROUND", (0, 0), (-1, -1), PANEL_BG),
            ("BOX", (0, 0), (-1, -1), 0.7, SEPARATOR),
            ("INNERGRID", (0, 0), (-1, -1), 0.3, SEPARATOR),
        ]))
        story.extend([meta_table, Spacer(1, 0.5 * cm)])

        story.append(Paragraph("Lagna Chart", styles["SectionTitle"]))
        story.extend([SouthIndianChart(chart), Spacer(1, 0.5 * cm)])

        story.append(Paragraph("Planetary Positions", styles["SectionTitle"]))
        story.extend([positions_table(chart), PageBreak()])

        story.extend(parse_markdown_to_flowables(markdown, styles))
        story.extend([Spacer(1, 0.6 * cm), Paragraph(PDF_DISCLAIMER, styles["Small"])])

        def _draw_footer(canvas, _doc):
            canvas.saveState()
            canvas.setFont(PDF_FONT_REG, 8)
            canvas.setFillColor(colors.grey)
            canvas.drawString(_doc.leftMargin, _doc.bottomMargin - 20, f"Kundli GPT  |  {stamp}")
            canvas.drawRightString(A4[0] - _doc.rightMargin, _doc.bottomMargin - 20, f"Page {canvas.getPageNumber()}")
            canvas.restoreState()

        doc.build(story, onFirstPage=_draw_footer, onLaterPages=_draw_footer)
        return buffer.getvalue()
