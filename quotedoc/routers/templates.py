# quotedoc/routers/templates.py
from __future__ import annotations
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Form, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from quotedoc.deps import read_template
from quotedoc.models.schemas import RenderResult, TemplateDataRecord, TokenExtractionResult
from quotedoc.services.errors import TemplateLoadError
from quotedoc.services.pipeline import extract_tokens, render
from quotedoc.services.serializer import DOCX_MIME
from quotedoc.utils.text import sanitize_filename

logger = logging.getLogger(__name__)
router = APIRouter(prefix="", tags=["templates"])


def _parse_record(data: str) -> TemplateDataRecord:
    """`data` form field: a JSON object. Unreadable input is a 422."""
    try:
        raw: Any = json.loads(data or "{}")
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=422, detail=f"data is not valid JSON: {e.msg}")
    if not isinstance(raw, dict):
        raise HTTPException(status_code=422, detail="data must be a JSON object")
    try:
        return TemplateDataRecord.model_validate(raw)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False, include_input=False))


def _result_json(result: RenderResult, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=result.model_dump(by_alias=True, mode="json"))


def _download_name(record: Dict[str, Any]) -> str:
    for key in ("Company Name", "Company_Name", "company", "companyName", "company_name"):
        v = record.get(key) or record.get("{{%s}}" % key)
        if v:
            return f"{sanitize_filename(str(v))}_Agreement.docx"
    return "Agreement.docx"


@router.post("/render")
async def render_template(
    template_bytes: bytes = Depends(read_template),
    data: str = Form("{}"),
):
    """
    Upload a DOCX template plus a JSON data record; get the filled DOCX back.
    A template that cannot be processed still yields a (fallback) document;
    the X-Fallback-Used header says so.
    """
    record = _parse_record(data)
    try:
        result = await run_in_threadpool(render, template_bytes, record)
    except Exception:
        logger.exception("Error in render_template")
        raise HTTPException(status_code=500, detail="Server error")

    if not result.success or result.processed_docx is None:
        return _result_json(result, status_code=500)

    return Response(
        content=result.processed_docx,
        media_type=DOCX_MIME,
        headers={
            "Content-Disposition": f'attachment; filename="{_download_name(record.to_mapping())}"',
            "X-Tokens-Replaced": str(result.tokens_replaced),
            "X-Fallback-Used": "true" if result.fallback_used else "false",
            "X-Processing-Time-Ms": f"{result.processing_time:.1f}",
        },
    )


@router.post("/render/result")
async def render_template_result(
    template_bytes: bytes = Depends(read_template),
    data: str = Form("{}"),
):
    """Same render, but only the RenderResult metadata comes back (as JSON)."""
    record = _parse_record(data)
    try:
        result = await run_in_threadpool(render, template_bytes, record)
    except Exception:
        logger.exception("Error in render_template_result")
        raise HTTPException(status_code=500, detail="Server error")
    return _result_json(result, status_code=200 if result.success else 500)


@router.post("/tokens", response_model=TokenExtractionResult)
async def list_tokens(template_bytes: bytes = Depends(read_template)):
    """Placeholders a template defines, for previewing before a real render."""
    try:
        tokens = await run_in_threadpool(extract_tokens, template_bytes)
    except TemplateLoadError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception("Error in list_tokens")
        raise HTTPException(status_code=500, detail="Server error")
    return TokenExtractionResult(count=len(tokens), tokens=tokens)
