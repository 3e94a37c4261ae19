# quotedoc/services/renderer.py
"""
Substitute `{{token}}` placeholders in word/document.xml and its headers/footers.

The mustache-style template is translated into a Jinja2 template over the raw
XML and rendered once per part:

- `{{name}}` becomes `{{ _v(i, <row scopes>) }}`, where `i` indexes the
  token name and the scopes are the loop variables it sits in;
- `{{#name}} ... {{/name}}` becomes a `{% for %}` over `_rows(i, ...)`.
  When the markers sit in table rows the loop repeats whole `<w:tr>`
  elements, when they are alone in their own paragraphs the loop repeats the
  paragraphs between them, otherwise it repeats the inline text.
- `{{^name}} ... {{/name}}` renders its body only when `name` is empty.

Values are XML-escaped when substituted, so the rendered part stays
well-formed whatever the data contains.
"""
from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
from xml.sax.saxutils import escape as xml_escape

from jinja2 import Environment
from jinja2.exceptions import TemplateError

from quotedoc.services.container import WORD_DOCUMENT, DocxContainer
from quotedoc.services.errors import TemplateRenderError
from quotedoc.services.token_resolver import (
    ResolvedTokens,
    default_for_key,
    is_truthy,
    normalize_key,
)
from quotedoc.utils.ooxml import find_fragments, innermost, visible_text

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\{\{([^{}]*)\}\}")
_LINE_BREAK = '</w:t><w:br/><w:t xml:space="preserve">'
_ELEMENT_NAMES = (".", "this", "value", "item")


@dataclass
class _Tag:
    start: int
    end: int
    raw: str    # text between the braces, unescaped
    kind: str   # "var", "open", "invert", "close"
    name: str


@dataclass
class _Block:
    index: int
    open: _Tag
    close: _Tag
    depth: int
    parent: Optional["_Block"] = None
    mode: str = "inline"
    region: Tuple[int, int] = (0, 0)
    cuts: List[Tuple[int, int]] = field(default_factory=list)

    @property
    def var(self) -> str:
        return f"_row{self.index}"


def _scan_tags(xml: str) -> List[_Tag]:
    tags = []
    for m in _TOKEN.finditer(xml):
        raw = html.unescape(m.group(1))
        body = raw.strip()
        if body[:1] == "#":
            kind, name = "open", body[1:].strip()
        elif body[:1] == "^":
            kind, name = "invert", body[1:].strip()
        elif body[:1] == "/":
            kind, name = "close", body[1:].strip()
        else:
            kind, name = "var", raw
        tags.append(_Tag(m.start(), m.end(), raw, kind, name))
    return tags


def _context(xml: str, pos: int, width: int = 60) -> str:
    return visible_text(xml[pos: pos + width * 4])[:width].strip()


def validate_structure(xml: str, tags: Optional[List[_Tag]] = None) -> Tuple[List[str], List[_Block]]:
    """
    Check delimiters and block nesting. Returns every problem found (never
    stops at the first one) and the matched blocks.
    """
    tags = _scan_tags(xml) if tags is None else tags
    errors: List[str] = []

    # delimiters that are not part of a complete {{...}}
    masked = _TOKEN.sub(lambda m: " " * len(m.group(0)), xml)
    for m in re.finditer(r"\{\{", masked):
        errors.append(f"Unclosed tag '{{{{' near: {_context(xml, m.start())!r}")
    for m in re.finditer(r"\}\}", masked):
        errors.append(f"Unopened tag '}}}}' near: {_context(xml, max(0, m.start() - 40))!r}")

    for t in tags:
        if "<" in t.raw or ">" in t.raw:
            errors.append(f"Tag split across document structure: {visible_text(t.raw)!r}")
        elif t.kind != "var" and not t.name:
            errors.append("Block tag without a name")

    blocks: List[_Block] = []
    # pending blocks; `close` is filled in when the closing tag is found
    stack: List[_Block] = []
    for t in tags:
        if t.kind in ("open", "invert"):
            stack.append(_Block(-1, t, t, len(stack), parent=stack[-1] if stack else None))
        elif t.kind == "close":
            if not stack:
                errors.append(f"Closing tag {{{{/{t.name}}}}} has no opening tag")
                continue
            opener = stack[-1].open
            if normalize_key(opener.name) != normalize_key(t.name):
                errors.append(
                    f"Closing tag {{{{/{t.name}}}}} does not match opening tag {{{{#{opener.name}}}}}"
                )
                continue
            block = stack.pop()
            block.index = len(blocks)
            block.close = t
            blocks.append(block)
    for pending in stack:
        errors.append(f"Unclosed block {{{{#{pending.open.name}}}}}")
    return errors, blocks


def _plan_blocks(xml: str, blocks: List[_Block]) -> None:
    """Pick row / paragraph / inline mode and the repeated region for each block."""
    rows = find_fragments(xml, "w:tr")
    paras = find_fragments(xml, "w:p")
    tables = find_fragments(xml, "w:tbl")

    for b in blocks:
        o, c = b.open, b.close
        p_open, p_close = innermost(paras, o.start), innermost(paras, c.start)
        r_open, r_close = innermost(rows, o.start), innermost(rows, c.start)

        if p_open is not None and p_open == p_close:
            b.mode = "inline"
        elif (r_open and r_close and r_open[0] <= r_close[0]
              and innermost(tables, r_open[0]) == innermost(tables, r_close[0])):
            b.mode = "row"
            b.region = (r_open[0], r_close[1])
            b.cuts = [(o.start, o.end), (c.start, c.end)]
            continue
        elif (p_open and p_close and r_open is None and r_close is None
              and visible_text(xml[p_open[0]:p_open[1]]).strip() == visible_text(xml[o.start:o.end]).strip()
              and visible_text(xml[p_close[0]:p_close[1]]).strip() == visible_text(xml[c.start:c.end]).strip()):
            b.mode = "paragraph"
            b.region = (p_open[0], p_close[1])
            b.cuts = [p_open, p_close]
            continue
        b.mode = "inline"
        b.region = (o.start, c.end)
        b.cuts = [(o.start, o.end), (c.start, c.end)]


def _escape_literal(chunk: str) -> str:
    """Keep XML text that happens to look like Jinja syntax literal."""
    return re.sub(r"\{(?=[{%#]|$)", '{{ "{" }}', chunk)


def translate(xml: str, tags: List[_Tag], blocks: List[_Block]) -> Tuple[str, List[str]]:
    """Jinja source for `xml` plus the token-name table it indexes into."""
    names: List[str] = []
    name_ids: Dict[str, int] = {}

    def name_id(name: str) -> int:
        if name not in name_ids:
            name_ids[name] = len(names)
            names.append(name)
        return name_ids[name]

    def scopes_at(pos: int, exclude: Optional[_Block] = None) -> str:
        inside = [b for b in blocks if b is not exclude and b.region[0] <= pos < b.region[1]]
        inside.sort(key=lambda b: (-b.depth, -b.index))
        return "".join(f", {b.var}" for b in inside)

    # (start, end, rank, text); rank orders edits sharing a position
    edits: List[Tuple[int, int, Tuple[int, int], str]] = []
    block_tags = set()
    for b in blocks:
        block_tags.update((id(b.open), id(b.close)))
        invert = ", invert=True" if b.open.kind == "invert" else ""
        outer = "".join(f", {a.var}" for a in _ancestors(b) if a.region[0] <= b.region[0] < a.region[1])
        edits.append((b.region[0], b.region[0], (1, b.depth),
                      f"{{% for {b.var} in _rows({name_id(b.open.name)}{outer}{invert}) %}}"))
        edits.append((b.region[1], b.region[1], (0, -b.depth), "{% endfor %}"))
        for s, e in b.cuts:
            edits.append((s, e, (2, 0), ""))

    for t in tags:
        if id(t) in block_tags or t.kind != "var":
            continue
        edits.append((t.start, t.end, (2, 0), f"{{{{ _v({name_id(t.name)}{scopes_at(t.start)}) }}}}"))

    edits.sort(key=lambda e: (e[0], e[2]))
    out: List[str] = []
    pos = 0
    for s, e, _, text in edits:
        if s < pos:
            # a cut already consumed this range (paragraph-mode marker paragraph)
            continue
        out.append(_escape_literal(xml[pos:s]))
        out.append(text)
        pos = max(pos, e)
    out.append(_escape_literal(xml[pos:]))
    return "".join(out), names


def _ancestors(b: _Block) -> List[_Block]:
    chain = []
    p = b.parent
    while p is not None:
        chain.append(p)
        p = p.parent
    return chain


def xml_value(value: Any) -> str:
    """Escape a value for a `<w:t>` node; newlines become line breaks."""
    s = xml_escape("" if value is None else str(value))
    s = s.replace("\r\n", "\n").replace("\r", "\n")
    return s.replace("\n", _LINE_BREAK)


def _scope_value(name: str, scopes: Sequence[Any]) -> Optional[Any]:
    key = normalize_key(name)
    for s in scopes:
        if isinstance(s, dict):
            if key in s:
                return s[key]
        elif isinstance(s, str) and name.strip() in _ELEMENT_NAMES:
            return s
    return None


def _as_scope(item: Any) -> Any:
    if isinstance(item, dict):
        return {normalize_key(k): v for k, v in item.items()}
    return "" if item is None else str(item)


class _Bindings:
    """Callables exposed to the Jinja template for one render."""

    def __init__(self, names: List[str], resolved: ResolvedTokens):
        self.names = names
        self.resolved = resolved
        self.substituted = 0
        self.unresolved: List[str] = []

    def value(self, idx: int, *scopes: Any) -> str:
        name = self.names[idx]
        v = _scope_value(name, scopes)
        if v is None:
            v = self.resolved.lookup(name)
        if v is None:
            v = default_for_key(name)
            if name not in self.unresolved:
                self.unresolved.append(name)
        self.substituted += 1
        return xml_value(v)

    def rows(self, idx: int, *scopes: Any, invert: bool = False) -> List[Any]:
        name = self.names[idx]
        v = _scope_value(name, scopes)
        if v is None:
            v = self.resolved.collection(name)
        if v is None:
            v = self.resolved.lookup(name)
        if isinstance(v, (list, tuple)):
            items = [_as_scope(i) for i in v]
        else:
            items = [{}] if is_truthy(v) else []
        if invert:
            return [] if items else [{}]
        return items


def render_xml(xml: str, resolved: ResolvedTokens) -> Tuple[str, int]:
    """
    Render one XML part. Returns the rendered XML and the number of
    substituted token sites. Raises TemplateRenderError carrying every
    problem found in the part.
    """
    tags = _scan_tags(xml)
    errors, blocks = validate_structure(xml, tags)
    if errors:
        raise TemplateRenderError(f"Template has {len(errors)} error(s)", errors)
    if not tags:
        return xml, 0

    _plan_blocks(xml, blocks)
    source, names = translate(xml, tags, blocks)
    bindings = _Bindings(names, resolved)

    env = Environment(autoescape=False, keep_trailing_newline=True)
    try:
        template = env.from_string(source)
        rendered = template.render(_v=bindings.value, _rows=bindings.rows)
    except TemplateError as e:
        raise TemplateRenderError("Template could not be rendered", [f"{type(e).__name__}: {e}"]) from e

    if bindings.unresolved:
        logger.debug("tokens with no data, defaulted: %s", ", ".join(bindings.unresolved))
    logger.debug("rendered %d token site(s), %d block(s)", bindings.substituted, len(blocks))
    return rendered, bindings.substituted


def render_document(container: DocxContainer, resolved: ResolvedTokens) -> int:
    """
    Render word/document.xml and every header/footer part in place. Returns
    the number of substituted token sites. Raises TemplateRenderError
    carrying every problem found in any part; no part is written then.
    """
    rendered: Dict[str, str] = {}
    errors: List[str] = []
    sites = 0
    for name in [WORD_DOCUMENT] + container.header_footer_parts():
        try:
            rendered[name], n = render_xml(container.read_text(name), resolved)
        except TemplateRenderError as e:
            prefix = "" if name == WORD_DOCUMENT else f"{name}: "
            errors.extend(prefix + msg for msg in e.errors)
            continue
        sites += n

    if errors:
        for e in errors:
            logger.error("template error: %s", e)
        raise TemplateRenderError(f"Template has {len(errors)} error(s)", errors)

    if not sites:
        logger.info("template has no tokens; document passes through unchanged")
    for name, xml in rendered.items():
        container.write_text(name, xml)
    return sites


__all__ = ["render_document", "render_xml", "validate_structure", "translate", "xml_value"]
