# quotedoc/services/serializer.py
from __future__ import annotations

import io
import logging
import zipfile

from quotedoc.services.container import CONTENT_TYPES, DocxContainer
from quotedoc.services.errors import SerializationError

logger = logging.getLogger(__name__)

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def serialize_container(container: DocxContainer) -> bytes:
    """
    Write a fresh ZIP from the container's parts and verify it.
    [Content_Types].xml goes first, as Word and most readers expect.
    """
    buf = io.BytesIO()
    order = sorted(container.parts, key=lambda n: n != CONTENT_TYPES)
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name in order:
            zf.writestr(name, container.parts[name])
    data = buf.getvalue()
    verify_output(data)
    logger.debug("serialized %d part(s), %d bytes", len(order), len(data))
    return data


def verify_output(data: bytes) -> None:
    if not data:
        raise SerializationError("Generated document is empty")
    if data[:2] != b"PK":
        raise SerializationError(f"Generated document has an invalid signature {data[:2]!r}")


__all__ = ["DOCX_MIME", "serialize_container", "verify_output"]
