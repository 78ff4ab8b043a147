from __future__ import annotations

import unittest
from unittest.mock import patch

from reportlab.platypus import Paragraph, Spacer

from backend import pdf_service
from backend.chart_models import Chart

CHART = Chart.model_validate({
    "ascendant": {"sign_id": 1, "sign_name": "Aries"},
    "rashi": "Taurus (Vrish)",
    "day": "Friday (Shukravaar)",
    "planets": [
        {"name": "Sun", "sign_id": 1, "house": 1},
        {"name": "Moon", "sign_id": 8, "house": 8},
        {"name": "Saturn", "sign_id": 10, "house": 10, "is_retro": True},
    ],
})


class TestMarkdownFlowables(unittest.TestCase):
    def test_inline_markup_is_escaped_then_converted(self) -> None:
        self.assertEqual(pdf_service.convert_markdown_inline("**Jupiter** & <Moon>"), "<b>Jupiter</b> &amp; &lt;Moon&gt;")
        self.assertEqual(pdf_service.convert_markdown_inline("a *soft* word"), "a <i>soft</i> word")

    def test_bold_italic_tags_nest(self) -> None:
        self.assertEqual(pdf_service.convert_markdown_inline("***शनि देव***"), "<b><i>शनि देव</i></b>")
        self.assertEqual(
            pdf_service.convert_markdown_inline("*Om* and ***Shani*** on **Saturday**"),
            "<i>Om</i> and <b><i>Shani</i></b> on <b>Saturday</b>",
        )

    def test_italic_never_crosses_bold(self) -> None:
        self.assertEqual(pdf_service.convert_markdown_inline("**a *b** c*"), "<b>a *b</b> c*")

    def test_overlapping_markers_still_parse(self) -> None:
        styles = pdf_service.create_pdf_styles()
        flowables = pdf_service.parse_markdown_to_flowables("- ***शनि देव*** की पूजा करें\n**a *b** c*", styles)
        self.assertEqual([p.style.name for p in flowables], ["Body", "Body"])
        self.assertIn("<b><i>शनि देव</i></b>", flowables[0].text)

    def test_unparseable_markup_falls_back_to_plain_text(self) -> None:
        styles = pdf_service.create_pdf_styles()
        with patch.object(pdf_service, "convert_markdown_inline", return_value="<b><i>Shani</b></i>"):
            flowables = pdf_service.parse_markdown_to_flowables("***Shani*** puja", styles)
        self.assertEqual(len(flowables), 1)
        self.assertEqual(flowables[0].text, "Shani puja")

    def test_headings_bullets_and_blanks(self) -> None:
        styles = pdf_service.create_pdf_styles()
        flowables = pdf_service.parse_markdown_to_flowables(
            "## Hari Om, Asha!\n\n### Remedies\n- Chant **daily**\n1. Donate on Saturday\nPlain text",
            styles,
        )
        self.assertIsInstance(flowables[1], Spacer)
        paragraphs = [f for f in flowables if isinstance(f, Paragraph)]
        self.assertEqual([p.style.name for p in paragraphs], ["SectionTitle", "SubSection", "Body", "Body", "Body"])
        self.assertIn("<b>daily</b>", paragraphs[2].text)
        self.assertTrue(paragraphs[3].text.startswith("1. "))

    def test_empty_markdown(self) -> None:
        flowables = pdf_service.parse_markdown_to_flowables("", pdf_service.create_pdf_styles())
        self.assertEqual(len(flowables), 1)
        self.assertIsInstance(flowables[0], Spacer)


class TestPositionsTable(unittest.TestCase):
    def test_one_row_per_body_with_dignity(self) -> None:
        table = pdf_service.positions_table(CHART)
        rows = table._cellvalues
        self.assertEqual(len(rows), 4)
        self.assertEqual(rows[1], ["Sun", "Aries (1)", "1", "-", "Exalted"])
        self.assertEqual(rows[3][3], "R")
        self.assertEqual(rows[3][4], "Own Sign")


class TestGenerateKundliPdf(unittest.TestCase):
    def test_renders_pdf_bytes(self) -> None:
        data = pdf_service.generate_kundli_pdf(chart=CHART, markdown="## Welcome\nA calm year ahead.", name="Asha")
        self.assertTrue(data.startswith(b"%PDF"))
        self.assertGreater(len(data), 1000)

    def test_renders_bold_italic_reading(self) -> None:
        data = pdf_service.generate_kundli_pdf(chart=CHART, markdown="- ***शनि देव*** की पूजा करें")
        self.assertTrue(data.startswith(b"%PDF"))

    def test_chart_flowable_uses_grid(self) -> None:
        flowable = pdf_service.SouthIndianChart(CHART, size=200)
        self.assertEqual(flowable.wrap(500, 500), (200, 200))
        self.assertEqual(len(flowable.grid), 12)


class TestFonts(unittest.TestCase):
    def test_missing_font_falls_back_to_helvetica(self) -> None:
        with patch.object(pdf_service, "discover_devanagari_font", return_value=None):
            pdf_service.init_fonts()
        self.assertFalse(pdf_service.DEVANAGARI_FONT_AVAILABLE)
        self.assertEqual(pdf_service.PDF_FONT_REG, "Helvetica")

    def test_configured_font_path_must_exist(self) -> None:
        with patch.dict("os.environ", {"PDF_FONT_PATH": "/nonexistent/font.ttf"}), \
                patch.object(pdf_service, "FONT_CANDIDATES", []), \
                patch.object(pdf_service, "_fontconfig_match", return_value=None):
            self.assertIsNone(pdf_service.discover_devanagari_font())


if __name__ == "__main__":
    unittest.main()
