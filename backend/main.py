#!/usr/bin/env python3
"""Kundli GPT backend (FastAPI).

- Chart view: deterministic South-Indian grid, aspects, dignity, selection
- Readings, chat, search, images: OpenAI
- PDF export: ReportLab
"""

import os
from pathlib import Path

from dotenv import load_dotenv

MODULE_DIR = Path(__file__).resolve().parent
REPO_ROOT = MODULE_DIR.parent
# Priority: existing process env > backend/.env > repo/.env
load_dotenv(dotenv_path=MODULE_DIR / ".env", override=False)
load_dotenv(dotenv_path=REPO_ROOT / ".env", override=False)

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backend import llm_service, pdf_service
from backend.cache_manager import cache, reading_cache_key
from backend.chart_engine import (
    ENGINE_VERSION,
    aspected_houses,
    classify_dignity,
    grid_payload,
)
from backend.chart_models import (
    BirthDetails,
    Chart,
    ChatMessage,
    ImageSize,
    InvalidRangeError,
    KundliResponse,
    require_zodiac_range,
)
from backend.chart_selection import NoSelection, SelectionEvent, SelectionState, detail_for, transition
from backend.engine_integrity import validate_engine_integrity
from backend.llm_service import OracleUnavailableError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s - %(message)s",
)

logger = logging.getLogger("kundli_gpt")

AI_CACHE_TTL = int(os.getenv("AI_CACHE_TTL", "1800"))
INSIGHT_CACHE_TTL = 3600
INSIGHT_CACHE_KEY = "insight:daily"

validate_engine_integrity()
pdf_service.init_fonts()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    if OPENAI_HTTP_CLIENT is not None:
        await OPENAI_HTTP_CLIENT.aclose()


app = FastAPI(title="Kundli GPT Backend", version=ENGINE_VERSION, lifespan=lifespan)

allowed_origins = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:8501").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

async_client, OPENAI_HTTP_CLIENT = llm_service.build_openai_client()
if async_client is None:
    logger.warning("OPENAI_API_KEY not set; AI endpoints will answer 503")


@app.exception_handler(OracleUnavailableError)
async def _oracle_unavailable_handler(_request: Request, exc: OracleUnavailableError):
    return JSONResponse(status_code=503, content={"detail": llm_service.ORACLE_UNAVAILABLE_MESSAGE})


@app.exception_handler(InvalidRangeError)
async def _invalid_range_handler(_request: Request, exc: InvalidRangeError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def _resolve_request_id(request: Optional[Request]) -> str:
    if request is not None:
        for header in ("x-request-id", "x-correlation-id"):
            value = (request.headers.get(header) or "").strip()
            if value:
                return value
    return str(uuid4())


# ------------------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------------------
class KundliRequest(BirthDetails):
    use_cache: bool = True


class SelectionRequest(BaseModel):
    chart: Chart
    state: SelectionState = Field(default_factory=NoSelection)
    event: SelectionEvent


class ChatRequest(BaseModel):
    history: list[ChatMessage] = Field(default_factory=list)
    message: str = Field(..., min_length=1, max_length=4000)
    use_search: bool = False


class ImageGenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=4000)
    size: ImageSize = ImageSize.one_k


class ImageAnalyzeRequest(BaseModel):
    image: str = Field(..., min_length=1)


class PdfRequest(BaseModel):
    name: str = ""
    markdown: str = ""
    chart_data: Chart


def _kundli_body(response: KundliResponse, *, cached: bool) -> dict[str, Any]:
    return {
        "markdown": response.markdown,
        "chart_data": response.chart_data.to_wire(),
        "grid": grid_payload(response.chart_data),
        "cached": cached,
    }


# ------------------------------------------------------------------------------
# API endpoints: Health Check
# ------------------------------------------------------------------------------
@app.get("/health")
def health():
    return {
        "status": "ok",
        "engine_version": ENGINE_VERSION,
        "openai_configured": bool(async_client),
        "model": llm_service.OPENAI_MODEL,
        "chat_model": llm_service.OPENAI_CHAT_MODEL,
        "image_model": llm_service.OPENAI_IMAGE_MODEL,
        "ai_cache_items": len(cache),
        "ai_cache_ttl_sec": AI_CACHE_TTL,
        "devanagari_font": pdf_service.DEVANAGARI_FONT_AVAILABLE,
        "pdf_font_reg": pdf_service.PDF_FONT_REG,
    }


# ------------------------------------------------------------------------------
# API endpoints: Kundli reading
# ------------------------------------------------------------------------------
@app.post("/kundli")
async def create_kundli(payload: KundliRequest, request: Request):
    request_id = _resolve_request_id(request)
    birth = BirthDetails.model_validate(payload.model_dump(exclude={"use_cache"}))
    cache_key = reading_cache_key(birth)

    if payload.use_cache:
        cached = cache.get(cache_key)
        if cached is not None:
            logger.info("Kundli cache hit request_id=%s key=%s", request_id, cache_key)
            return _kundli_body(cached, cached=True)

    response = await llm_service.generate_prediction(
        async_client=async_client,
        birth=birth,
        request_id=request_id,
    )
    cache.set(cache_key, response, ttl=AI_CACHE_TTL)
    return _kundli_body(response, cached=False)


@app.post("/kundli/pdf")
def kundli_pdf(payload: PdfRequest):
    pdf_bytes = pdf_service.generate_kundli_pdf(
        chart=payload.chart_data,
        markdown=payload.markdown,
        name=payload.name,
    )
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={pdf_service.PDF_FILENAME}"},
    )


# ------------------------------------------------------------------------------
# API endpoints: Chart view
# ------------------------------------------------------------------------------
@app.post("/chart/grid")
def chart_grid_endpoint(chart: Chart):
    return grid_payload(chart)


@app.post("/chart/selection")
def chart_selection(payload: SelectionRequest):
    try:
        state = transition(payload.state, payload.event, payload.chart)
    except IndexError as e:
        raise HTTPException(status_code=400, detail=str(e))
    detail = detail_for(state, payload.chart)
    return {
        "state": state.model_dump(mode="json"),
        "detail": detail.model_dump(mode="json") if detail is not None else None,
    }


@app.get("/dignity")
def dignity(body: str = Query(..., min_length=1), sign_id: int = Query(...)):
    return {
        "body": body,
        "sign_id": sign_id,
        "dignity": classify_dignity(body, sign_id).value,
    }


@app.get("/aspects")
def aspects(house: int = Query(...), body: str = Query(..., min_length=1)):
    require_zodiac_range(house, "house")
    return {
        "house": house,
        "body": body,
        "aspected_houses": aspected_houses(house, body),
    }


# ------------------------------------------------------------------------------
# API endpoints: Oracle
# ------------------------------------------------------------------------------
@app.post("/chat")
async def chat(payload: ChatRequest, request: Request):
    request_id = _resolve_request_id(request)
    if payload.use_search:
        answer = await llm_service.search_based_answer(
            async_client=async_client,
            query=payload.message,
            request_id=request_id,
        )
        return {"text": answer.with_sources_footer(), "sources": [s.model_dump() for s in answer.sources]}

    text = await llm_service.chat_with_oracle(
        async_client=async_client,
        history=payload.history,
        message=payload.message,
        request_id=request_id,
    )
    return {"text": text, "sources": []}


@app.get("/insight")
async def insight(request: Request, use_cache: bool = Query(True)):
    if use_cache:
        cached = cache.get(INSIGHT_CACHE_KEY)
        if cached is not None:
            return {"text": cached, "cached": True}

    text = await llm_service.quick_insight(
        async_client=async_client,
        request_id=_resolve_request_id(request),
    )
    cache.set(INSIGHT_CACHE_KEY, text, ttl=INSIGHT_CACHE_TTL)
    return {"text": text, "cached": False}


@app.post("/image/generate")
async def image_generate(payload: ImageGenerateRequest, request: Request):
    image = await llm_service.generate_spiritual_image(
        async_client=async_client,
        prompt=payload.prompt,
        size=payload.size,
        request_id=_resolve_request_id(request),
    )
    return {"image": image}


@app.post("/image/analyze")
async def image_analyze(payload: ImageAnalyzeRequest, request: Request):
    try:
        text = await llm_service.analyze_palm_or_face(
            async_client=async_client,
            image=payload.image,
            request_id=_resolve_request_id(request),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"text": text}


# ------------------------------------------------------------------------------
# Local entrypoint
# ------------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
