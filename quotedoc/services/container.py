# quotedoc/services/container.py
"""
Open an uploaded DOCX (a ZIP of OOXML parts) and normalize it.

Every part is read into memory under a forward-slash path, so callers address
`word/document.xml` the same way whether the archive came from Word on
Windows or from a script that wrote backslashes. The document part and any
header/footer parts are then repaired: tokens split across runs are stitched
back together and a `{{Token}Word` typo gets its missing brace.
"""
from __future__ import annotations

import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from quotedoc.services.errors import TemplateLoadError

logger = logging.getLogger(__name__)

WORD_DOCUMENT = "word/document.xml"
CONTENT_TYPES = "[Content_Types].xml"
_CANONICAL = {WORD_DOCUMENT.lower(): WORD_DOCUMENT, CONTENT_TYPES.lower(): CONTENT_TYPES}

_HEADER_FOOTER = re.compile(r"^word/(header|footer)\d*\.xml$", re.I)
_SNIFF_BYTES = 100


@dataclass
class DocxContainer:
    """In-memory OOXML package: canonical part path -> raw bytes, in archive order."""
    parts: Dict[str, bytes] = field(default_factory=dict)
    source_size: int = 0

    def names(self) -> List[str]:
        return list(self.parts.keys())

    def has_part(self, name: str) -> bool:
        return name in self.parts

    def read_text(self, name: str) -> str:
        return self.parts[name].decode("utf-8")

    def write_text(self, name: str, text: str) -> None:
        self.parts[name] = text.encode("utf-8")

    @property
    def document_xml(self) -> str:
        return self.read_text(WORD_DOCUMENT)

    @document_xml.setter
    def document_xml(self, text: str) -> None:
        self.write_text(WORD_DOCUMENT, text)

    def header_footer_parts(self) -> List[str]:
        return [n for n in self.parts if _HEADER_FOOTER.match(n)]


def canonical_path(name: str) -> str:
    """Forward slashes, no leading slash, canonical casing for the parts we address."""
    path = name.replace("\\", "/").lstrip("/")
    return _CANONICAL.get(path.lower(), path)


def sniff_template(data: bytes) -> None:
    """Cheap checks before touching the ZIP reader. Raises TemplateLoadError."""
    if not data:
        raise TemplateLoadError("Template is empty (0 bytes)")
    head = data[:_SNIFF_BYTES].decode("latin-1", errors="ignore").lower()
    if "<html" in head or "<!doctype" in head:
        raise TemplateLoadError(
            "Template looks like an HTML page, not a DOCX file; the upstream download probably failed"
        )
    if data[:2] != b"PK":
        raise TemplateLoadError(
            f"Template is not a ZIP archive (signature {data[:2]!r}, expected b'PK')"
        )


def load_container(data: bytes, *, repair: bool = True) -> DocxContainer:
    """
    Validate and open `data` as a DOCX container.

    Raises TemplateLoadError for anything that cannot be rendered: empty
    input, HTML, bad signature, unreadable archive, no document part, or an
    XML part that is not UTF-8.
    """
    sniff_template(data)

    container = DocxContainer(source_size=len(data))
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            original_names = zf.namelist()
            for info in zf.infolist():
                if info.is_dir() or info.filename.endswith(("/", "\\")):
                    continue
                path = canonical_path(info.filename)
                if path in container.parts:
                    logger.warning("duplicate part %r after path normalization; keeping the first", path)
                    continue
                container.parts[path] = zf.read(info)
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise TemplateLoadError(f"Template is not a readable ZIP archive: {e}") from e
    except (RuntimeError, NotImplementedError) as e:
        # encrypted members, unsupported compression
        raise TemplateLoadError(f"Template archive cannot be read: {e}") from e

    if not container.has_part(WORD_DOCUMENT):
        raise TemplateLoadError(
            "Invalid DOCX: word/document.xml not found. Available parts: "
            + (", ".join(original_names) or "(none)")
        )

    renamed = [n for n in original_names if not n.endswith(("/", "\\")) and canonical_path(n) != n]
    if renamed:
        logger.info("normalized %d part path(s): %s", len(renamed), ", ".join(renamed[:5]))

    for name in [WORD_DOCUMENT] + container.header_footer_parts():
        try:
            xml = container.read_text(name)
        except UnicodeDecodeError as e:
            raise TemplateLoadError(f"{name} is not UTF-8 text: {e}") from e
        if repair:
            container.write_text(name, repair_document_xml(xml))
    return container


# -----------------------------
# Repairs
# -----------------------------
# An opening "{{", a name that may be interleaved with run markup, and a
# closing "}}" (possibly split by markup, possibly missing its second brace).
_TOKEN_SPAN = re.compile(
    r"\{(?:<[^>]*>)*\{"
    r"(?:[^{}<]|<[^>]*>)*?"
    r"\}(?:(?:<[^>]*>)*\})?"
)
_TAG = re.compile(r"<[^>]*>")
# Markup a token may never be stitched across
_BOUNDARY = re.compile(r"</?w:(?:p|tc|tr|tbl|hyperlink|sdt|sdtContent|fldSimple|txbxContent|drawing)[\s>/]")
_MISSING_BRACE = re.compile(r"\{\{([^{}<>]+)\}([A-Za-z])")


def defragment_tokens(xml: str) -> str:
    """
    Word splits `{{Company Name}}` over several runs when spell-check or a
    formatting change touches part of it. Drop the run markup inside each
    token so the whole token sits in the first run's text node.
    """
    stitched = 0

    def fix(m: "re.Match[str]") -> str:
        nonlocal stitched
        span = m.group(0)
        if "<" not in span or _BOUNDARY.search(span):
            return span
        stitched += 1
        return _TAG.sub("", span)

    out = _TOKEN_SPAN.sub(fix, xml)
    if stitched:
        logger.debug("stitched %d token(s) split across runs", stitched)
    return out


def repair_missing_braces(xml: str) -> str:
    """`{{Company_Name}By` -> `{{Company_Name}} By`."""
    out, n = _MISSING_BRACE.subn(r"{{\1}} \2", xml)
    if n:
        logger.info("repaired %d token(s) missing a closing brace", n)
    return out


def repair_document_xml(xml: str) -> str:
    return repair_missing_braces(defragment_tokens(xml))


def open_part_text(data: bytes, name: str = WORD_DOCUMENT) -> Optional[str]:
    """Text of one part from serialized DOCX bytes, or None if it is missing."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        for n in zf.namelist():
            if canonical_path(n) == name:
                return zf.read(n).decode("utf-8", errors="replace")
    return None


__all__ = [
    "DocxContainer",
    "WORD_DOCUMENT",
    "CONTENT_TYPES",
    "canonical_path",
    "sniff_template",
    "load_container",
    "defragment_tokens",
    "repair_missing_braces",
    "repair_document_xml",
    "open_part_text",
]
