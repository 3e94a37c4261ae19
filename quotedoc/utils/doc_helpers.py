from __future__ import annotations
import io
from typing import List, Sequence

from docx import Document
from docx.document import Document as DocumentObject
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt, RGBColor


def add_title(doc: DocumentObject, text: str) -> None:
    p = doc.add_paragraph()
    p.alignment = WD_ALIGN_PARAGRAPH.CENTER
    r = p.add_run(text)
    r.bold = True
    r.font.size = Pt(20)
    r.font.name = "Calibri"
    r.font.color.rgb = RGBColor(44, 90, 125)


def add_section_heading(doc: DocumentObject, text: str) -> None:
    doc.add_heading(text, level=2)


def add_labeled_line(doc: DocumentObject, label: str, value: str) -> None:
    """`Label: value` with the label in bold. Empty values still print the label."""
    p = doc.add_paragraph()
    p.add_run(f"{label}: ").bold = True
    p.add_run(value or "")
    p.paragraph_format.space_after = Pt(2)


def add_grid_table(doc: DocumentObject, headers: Sequence[str], rows: List[Sequence[str]]) -> None:
    table = doc.add_table(rows=1, cols=len(headers))
    table.style = "Table Grid"
    for cell, h in zip(table.rows[0].cells, headers):
        cell.text = ""
        cell.paragraphs[0].add_run(h).bold = True
    for values in rows:
        cells = table.add_row().cells
        for cell, v in zip(cells, values):
            cell.text = v or ""


def new_document() -> DocumentObject:
    doc = Document()
    style = doc.styles["Normal"]
    style.font.name = "Calibri"
    style.font.size = Pt(11)
    return doc


def document_to_bytes(document: DocumentObject) -> bytes:
    buf = io.BytesIO()
    document.save(buf)
    return buf.getvalue()


__all__ = [
    "add_title",
    "add_section_heading",
    "add_labeled_line",
    "add_grid_table",
    "new_document",
    "document_to_bytes",
]
