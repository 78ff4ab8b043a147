"""Endpoint tests through FastAPI's TestClient; oracle calls are mocked."""

from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from backend import main
from backend.chart_models import KundliResponse, SearchAnswer, SourceLink
from backend.llm_service import ORACLE_UNAVAILABLE_MESSAGE, OracleUnavailableError

CHART_WIRE = {
    "ascendant": {"sign_id": 5, "sign_name": "Leo"},
    "rashi": "Cancer (Kark)",
    "day": "Monday (Somvaar)",
    "planets": [
        {"name": "Sun", "sign_id": 1, "house": 9, "is_retro": False},
        {"name": "Mars", "sign_id": 1, "house": 9, "is_retro": False},
        {"name": "Moon", "sign_id": 4, "house": 12, "is_retro": False},
    ],
}
BIRTH = {"name": "Asha", "birthDate": "1990-01-01", "birthTime": "06:30", "birthPlace": "Pune, India"}


class TestApi(unittest.TestCase):
    def setUp(self) -> None:
        main.cache.clear()
        self.client = TestClient(main.app)

    def test_health(self) -> None:
        body = self.client.get("/health").json()
        self.assertEqual(body["status"], "ok")
        self.assertIn("openai_configured", body)

    def test_shutdown_closes_openai_http_client(self) -> None:
        http_client = AsyncMock()
        with patch.object(main, "OPENAI_HTTP_CLIENT", http_client):
            with TestClient(main.app):
                http_client.aclose.assert_not_awaited()
        http_client.aclose.assert_awaited_once()

    def test_kundli_is_cached(self) -> None:
        reading = KundliResponse.model_validate({"prediction_markdown": "Hari Om", "chart_data": CHART_WIRE})
        with patch("backend.llm_service.generate_prediction", new=AsyncMock(return_value=reading)) as mock_generate:
            first = self.client.post("/kundli", json=BIRTH)
            second = self.client.post("/kundli", json=BIRTH)

        self.assertEqual(first.status_code, 200)
        self.assertFalse(first.json()["cached"])
        self.assertTrue(second.json()["cached"])
        self.assertEqual(mock_generate.await_count, 1)
        body = first.json()
        self.assertEqual(body["markdown"], "Hari Om")
        self.assertEqual(body["chart_data"]["planets"][0]["name"], "Sun")
        self.assertEqual(len(body["grid"]["cells"]), 12)

    def test_kundli_bypasses_cache_on_request(self) -> None:
        reading = KundliResponse.model_validate({"prediction_markdown": "Hari Om", "chart_data": CHART_WIRE})
        with patch("backend.llm_service.generate_prediction", new=AsyncMock(return_value=reading)) as mock_generate:
            self.client.post("/kundli", json=BIRTH)
            self.client.post("/kundli", json={**BIRTH, "use_cache": False})
        self.assertEqual(mock_generate.await_count, 2)

    def test_kundli_oracle_failure_is_503(self) -> None:
        with patch("backend.llm_service.generate_prediction", new=AsyncMock(side_effect=OracleUnavailableError())):
            response = self.client.post("/kundli", json=BIRTH)
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["detail"], ORACLE_UNAVAILABLE_MESSAGE)

    def test_kundli_requires_birth_fields(self) -> None:
        response = self.client.post("/kundli", json={"name": "Asha"})
        self.assertEqual(response.status_code, 422)

    def test_chart_grid(self) -> None:
        body = self.client.post("/chart/grid", json=CHART_WIRE).json()
        aries = next(c for c in body["cells"] if c["sign_id"] == 1)
        self.assertEqual(aries["house"], 9)
        self.assertEqual([o["name"] for o in aries["occupants"]], ["Sun", "Mars"])
        self.assertEqual(body["center"]["hint"], "Select house for aspects")

    def test_chart_grid_rejects_bad_sign(self) -> None:
        bad = {**CHART_WIRE, "planets": [{"name": "Sun", "sign_id": 0, "house": 1}]}
        self.assertEqual(self.client.post("/chart/grid", json=bad).status_code, 422)

    def test_selection_cell_then_dismiss(self) -> None:
        selected = self.client.post("/chart/selection", json={
            "chart": CHART_WIRE,
            "event": {"type": "cell", "sign_id": 1},
        }).json()
        self.assertEqual(selected["state"]["kind"], "house")
        self.assertEqual(selected["detail"]["house"], 9)
        self.assertEqual(len(selected["detail"]["aspect_lines"]), 3)

        dismissed = self.client.post("/chart/selection", json={
            "chart": CHART_WIRE,
            "state": selected["state"],
            "event": {"type": "dismiss"},
        }).json()
        self.assertEqual(dismissed["state"], {"kind": "none"})
        self.assertIsNone(dismissed["detail"])

    def test_selection_body_row(self) -> None:
        body = self.client.post("/chart/selection", json={
            "chart": CHART_WIRE,
            "event": {"type": "body_row", "body_index": 2},
        }).json()
        self.assertEqual(body["state"]["selection"]["house"], 12)
        self.assertEqual([b["name"] for b in body["detail"]["bodies"]], ["Moon"])

    def test_selection_body_row_out_of_range(self) -> None:
        response = self.client.post("/chart/selection", json={
            "chart": CHART_WIRE,
            "event": {"type": "body_row", "body_index": 9},
        })
        self.assertEqual(response.status_code, 400)

    def test_dignity(self) -> None:
        self.assertEqual(self.client.get("/dignity", params={"body": "Sun", "sign_id": 1}).json()["dignity"], "Exalted")
        self.assertEqual(self.client.get("/dignity", params={"body": "Pluto", "sign_id": 1}).json()["dignity"], "Ordinary")
        self.assertEqual(self.client.get("/dignity", params={"body": "Sun", "sign_id": 13}).status_code, 400)

    def test_aspects(self) -> None:
        body = self.client.get("/aspects", params={"house": 1, "body": "Mars"}).json()
        self.assertEqual(body["aspected_houses"], [4, 7, 8])
        self.assertEqual(self.client.get("/aspects", params={"house": 0, "body": "Mars"}).status_code, 400)

    def test_chat_plain(self) -> None:
        with patch("backend.llm_service.chat_with_oracle", new=AsyncMock(return_value="Om Shanti")) as mock_chat:
            body = self.client.post("/chat", json={
                "history": [{"role": "model", "text": "Hari Om", "isError": False}],
                "message": "Bless me",
            }).json()
        self.assertEqual(body["text"], "Om Shanti")
        self.assertEqual(mock_chat.await_args.kwargs["history"][0].role, "model")

    def test_chat_with_search_appends_sources(self) -> None:
        answer = SearchAnswer(text="Diwali is on 8 Nov.", sources=[SourceLink(title="Calendar", url="https://c.example")])
        with patch("backend.llm_service.search_based_answer", new=AsyncMock(return_value=answer)):
            body = self.client.post("/chat", json={"message": "When is Diwali?", "use_search": True}).json()
        self.assertTrue(body["text"].endswith("**Sources:** [Calendar](https://c.example)"))
        self.assertEqual(body["sources"], [{"title": "Calendar", "url": "https://c.example"}])

    def test_insight_is_cached(self) -> None:
        with patch("backend.llm_service.quick_insight", new=AsyncMock(return_value="Tat tvam asi.")) as mock_insight:
            first = self.client.get("/insight").json()
            second = self.client.get("/insight").json()
        self.assertEqual(first, {"text": "Tat tvam asi.", "cached": False})
        self.assertTrue(second["cached"])
        self.assertEqual(mock_insight.await_count, 1)

    def test_image_generate(self) -> None:
        with patch("backend.llm_service.generate_spiritual_image", new=AsyncMock(return_value="data:image/png;base64,QUJD")) as mock_image:
            body = self.client.post("/image/generate", json={"prompt": "Ganga at dawn", "size": "2K"}).json()
        self.assertEqual(body["image"], "data:image/png;base64,QUJD")
        self.assertEqual(mock_image.await_args.kwargs["size"].value, "2K")

    def test_image_generate_rejects_unknown_size(self) -> None:
        response = self.client.post("/image/generate", json={"prompt": "x", "size": "8K"})
        self.assertEqual(response.status_code, 422)

    def test_image_analyze(self) -> None:
        with patch("backend.llm_service.analyze_palm_or_face", new=AsyncMock(return_value="Strong heart line.")):
            body = self.client.post("/image/analyze", json={"image": "AAAA"}).json()
        self.assertEqual(body["text"], "Strong heart line.")

    def test_pdf_export(self) -> None:
        response = self.client.post("/kundli/pdf", json={
            "name": "Asha",
            "markdown": "## Welcome\n- **Remedy** one",
            "chart_data": CHART_WIRE,
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], "application/pdf")
        self.assertIn("Kundli_GPT_Reading.pdf", response.headers["content-disposition"])
        self.assertTrue(response.content.startswith(b"%PDF"))

    def test_pdf_export_with_bold_italic_markdown(self) -> None:
        response = self.client.post("/kundli/pdf", json={
            "markdown": "- ***शनि*** मंत्र\n**a *b** c*",
            "chart_data": CHART_WIRE,
        })
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.content.startswith(b"%PDF"))


if __name__ == "__main__":
    unittest.main()
