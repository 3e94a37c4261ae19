# quotedoc/services/pipeline.py
"""
render(): template bytes + data record -> RenderResult.

    resolve -> load -> render -> sanitize -> serialize -> verify
       |         |        |         |
       +---------+--------+---------+--> fallback document (always a downloadable DOCX)

Only serialization failures (and a failing fallback) come back as
success=False; everything else degrades to a usable document.
"""
from __future__ import annotations

import datetime
import html
import logging
import re
import time
import zipfile
from typing import Any, Dict, List, Mapping, Optional, Union

from quotedoc.models.schemas import RenderResult, TemplateDataRecord
from quotedoc.services.container import WORD_DOCUMENT, load_container, open_part_text
from quotedoc.services.errors import (
    SerializationError,
    TemplateLoadError,
    TemplateRenderError,
)
from quotedoc.services.fallback import build_fallback_document
from quotedoc.services.renderer import render_document
from quotedoc.services.sanitizer import SanitizeRules, sanitize_container
from quotedoc.services.serializer import serialize_container
from quotedoc.services.token_resolver import ResolvedTokens, resolve_tokens
from quotedoc.utils.ooxml import visible_text
from quotedoc.utils.timeit import timeit

logger = logging.getLogger(__name__)

DataRecord = Union[TemplateDataRecord, Mapping[str, Any], None]

_LEFTOVER = re.compile(r"undefined|\{\{", re.I)


def _as_mapping(data: DataRecord) -> Dict[str, Any]:
    if data is None:
        return {}
    if isinstance(data, TemplateDataRecord):
        return data.to_mapping()
    return dict(data)


def render(
    template_bytes: bytes,
    data: DataRecord,
    *,
    today: Optional[datetime.date] = None,
    rules: Optional[SanitizeRules] = None,
) -> RenderResult:
    """
    Fill `template_bytes` (a DOCX) with `data`. Never raises for bad input.
    `rules` overrides the cleanup rules derived from the data.
    """
    t0 = time.perf_counter()
    timings: Dict[str, float] = {}
    template_bytes = template_bytes or b""

    def elapsed() -> float:
        return (time.perf_counter() - t0) * 1000.0

    try:
        with timeit("resolve", timings):
            resolved = resolve_tokens(_as_mapping(data), today=today)
    except Exception as e:
        logger.exception("data record could not be resolved")
        resolved = resolve_tokens({}, today=today)
        base = dict(tokens_replaced=0, original_size=len(template_bytes))
        return _fallback(resolved, f"Data record unusable: {type(e).__name__}: {e}", base, elapsed)

    rules = rules or SanitizeRules.from_resolved(resolved)
    base = dict(tokens_replaced=resolved.non_empty_count(), original_size=len(template_bytes))

    try:
        with timeit("load", timings):
            container = load_container(template_bytes)
        logger.info("template loaded: %d part(s), %d bytes", len(container.parts), len(template_bytes))
        with timeit("render", timings):
            sites = render_document(container, resolved)
        logger.info("template rendered: %d token site(s)", sites)
    except (TemplateLoadError, TemplateRenderError) as e:
        logger.warning("template unusable, building fallback document: %s", e)
        return _fallback(resolved, str(e), base, elapsed)
    except Exception as e:
        logger.exception("unexpected error while rendering template")
        return _fallback(resolved, f"{type(e).__name__}: {e}", base, elapsed)

    try:
        with timeit("sanitize", timings):
            sanitize_container(container, rules)
        logger.info("document sanitized")
        with timeit("serialize", timings):
            out = serialize_container(container)
            out = _verify_and_reclean(out, container, rules)
        logger.info("document serialized: %d bytes", len(out))
    except SerializationError as e:
        logger.error("document serialization failed: %s", e)
        return RenderResult(success=False, error=str(e), processing_time=elapsed(), **base)
    except Exception as e:
        logger.exception("unexpected error while cleaning up the rendered document")
        return _fallback(resolved, f"{type(e).__name__}: {e}", base, elapsed)

    logger.debug("stage timings (ms): %s", {k: round(v, 1) for k, v in timings.items()})
    return RenderResult(
        success=True,
        processed_docx=out,
        processing_time=elapsed(),
        final_size=len(out),
        **base,
    )


def _verify_and_reclean(out: bytes, container, rules: SanitizeRules) -> bytes:
    """
    Re-open the serialized output; if anything unresolved survived, run one
    more cleanup and serialize again.
    """
    try:
        xml = open_part_text(out, WORD_DOCUMENT)
        extra = [open_part_text(out, name) or "" for name in container.header_footer_parts()]
    except (zipfile.BadZipFile, OSError) as e:
        raise SerializationError(f"Generated document cannot be re-opened: {e}") from e
    if xml is None:
        raise SerializationError("Generated document has no word/document.xml")

    if any(_LEFTOVER.search(visible_text(part)) for part in [xml] + extra):
        logger.warning("unresolved text survived cleanup; running one more pass")
        sanitize_container(container, rules)
        out = serialize_container(container)
    return out


def _fallback(resolved: ResolvedTokens, reason: str, base: Dict[str, Any], elapsed) -> RenderResult:
    try:
        out = build_fallback_document(resolved)
    except Exception as e:
        logger.exception("fallback document could not be built")
        return RenderResult(
            success=False,
            error=f"Template failed ({reason}) and fallback document failed: {e}",
            processing_time=elapsed(),
            fallback_reason=reason,
            **base,
        )
    logger.info("fallback document used")
    return RenderResult(
        success=True,
        processed_docx=out,
        processing_time=elapsed(),
        final_size=len(out),
        fallback_used=True,
        fallback_reason=reason,
        **base,
    )


# -----------------------------
# Token preview
# -----------------------------
_TAG = re.compile(r"<[^>]*>")
_CANDIDATE = re.compile(r"\{\{([^}]+)\}\}")
_MARKUP_CHARS = ("<", ">", '"', "=", "/", "w:")
_OOXML_NAMES = ("bookmarkStart", "bookmarkEnd", "proofErr", "rPr", "spellStart", "spellEnd",
                "gramStart", "gramEnd", "xml:space")


def _is_markup(candidate: str) -> bool:
    return any(h in candidate for h in _MARKUP_CHARS + _OOXML_NAMES)


def extract_tokens(template_bytes: bytes) -> List[str]:
    """
    Placeholder names found in the template's visible text, in document
    order (body first, then headers and footers), de-duplicated. Raises
    TemplateLoadError for unusable input.
    """
    container = load_container(template_bytes or b"")
    parts = [container.document_xml] + [container.read_text(n) for n in container.header_footer_parts()]
    text = "\n".join(html.unescape(_TAG.sub("", xml)) for xml in parts)

    seen = set()
    tokens: List[str] = []
    for m in _CANDIDATE.finditer(text):
        name = m.group(1).strip()
        if not name or _is_markup(name) or name in seen:
            continue
        seen.add(name)
        tokens.append(name)
    logger.debug("extracted %d token(s)", len(tokens))
    return tokens


__all__ = ["render", "extract_tokens"]
