# quotedoc/utils/ooxml.py
"""
Small, regex-level helpers for WordprocessingML fragments.

We never parse the whole part into a DOM; rows and paragraphs are located as
balanced `<w:tr>...</w:tr>` / `<w:p>...</w:p>` spans so edits always cut on
element boundaries.
"""
from __future__ import annotations

import html
import re
from functools import lru_cache
from typing import List, Optional, Pattern, Tuple

Span = Tuple[int, int]

_TAG = re.compile(r"<[^>]*>")
_WS = re.compile(r"\s+")
# <w:t>, <w:t xml:space="preserve"> ... </w:t>  (not <w:tab/>, <w:tbl>, <w:tc>)
TEXT_NODE = re.compile(r"(<w:t(?:\s[^>]*)?>)([^<]*)(</w:t>)")
GRAPHIC = re.compile(r"<(?:w:drawing|w:pict|w:object|v:shape|v:imagedata|mc:AlternateContent)[\s>/]")


@lru_cache(maxsize=16)
def _fragment_pattern(tag: str) -> Pattern[str]:
    # `(?=[\s>/])` keeps <w:tr> apart from <w:trPr>, <w:p> apart from <w:pPr>/<w:proofErr>
    return re.compile(rf"<{re.escape(tag)}(?=[\s>/])[^>]*?(/?)>|</{re.escape(tag)}>")


def find_fragments(xml: str, tag: str) -> List[Span]:
    """All balanced `<tag ...>...</tag>` spans (nested ones included), sorted by start."""
    stack: List[int] = []
    spans: List[Span] = []
    for m in _fragment_pattern(tag).finditer(xml):
        if m.group(0).startswith("</"):
            if stack:
                spans.append((stack.pop(), m.end()))
        elif m.group(1) == "/":
            spans.append((m.start(), m.end()))
        else:
            stack.append(m.start())
    spans.sort()
    return spans


def leaf_fragments(spans: List[Span]) -> List[Span]:
    """Spans that do not contain another span of the same list."""
    out = []
    for i, (s, e) in enumerate(spans):
        nested = any(s < s2 and e2 <= e for s2, e2 in spans[i + 1:] if s2 < e)
        if not nested:
            out.append((s, e))
    return out


def innermost(spans: List[Span], pos: int) -> Optional[Span]:
    """Smallest span containing `pos`, or None."""
    best: Optional[Span] = None
    for s, e in spans:
        if s > pos:
            break
        if pos < e and (best is None or s >= best[0]):
            best = (s, e)
    return best


def contains(outer: Span, inner: Span) -> bool:
    return outer[0] <= inner[0] and inner[1] <= outer[1]


def visible_text(fragment: str) -> str:
    """Human-visible text: tags stripped, entities decoded."""
    return html.unescape(_TAG.sub("", fragment))


def normalized_text(fragment: str) -> str:
    """Visible text, whitespace collapsed, case-folded."""
    return _WS.sub(" ", visible_text(fragment)).strip().casefold()


def run_texts(fragment: str) -> str:
    """Concatenated `<w:t>` contents, still XML-escaped."""
    return "".join(m.group(2) for m in TEXT_NODE.finditer(fragment))


def has_graphic(fragment: str) -> bool:
    return GRAPHIC.search(fragment) is not None


def remove_spans(xml: str, spans: List[Span]) -> str:
    """Cut non-overlapping spans out of `xml`."""
    if not spans:
        return xml
    parts = []
    last = 0
    for s, e in sorted(spans):
        if s < last:
            continue
        parts.append(xml[last:s])
        last = e
    parts.append(xml[last:])
    return "".join(parts)


def splice_paragraph_text(paragraph: str, pattern: Pattern[str], repl: str = "") -> str:
    """
    Apply `pattern` to the paragraph's joined run text and write the result
    back into the same text nodes, so a match that spans several runs is
    removed without touching run properties. Characters stay in the run
    they came from; a replacement lands in the run where its match started.
    """
    nodes = list(TEXT_NODE.finditer(paragraph))
    if not nodes:
        return paragraph
    texts = [m.group(2) for m in nodes]
    joined = "".join(texts)
    if not pattern.search(joined):
        return paragraph

    # owner[i] = index of the node holding joined[i]
    owner: List[int] = []
    for idx, t in enumerate(texts):
        owner.extend([idx] * len(t))

    new_texts = [""] * len(texts)
    last = 0
    for m in pattern.finditer(joined):
        for i in range(last, m.start()):
            new_texts[owner[i]] += joined[i]
        if repl:
            target = owner[m.start()] if m.start() < len(owner) else len(texts) - 1
            new_texts[target] += m.expand(repl)
        last = m.end()
    for i in range(last, len(joined)):
        new_texts[owner[i]] += joined[i]

    out = []
    prev = 0
    for m, text in zip(nodes, new_texts):
        out.append(paragraph[prev:m.start()])
        open_tag = m.group(1)
        if text != text.strip() and "xml:space" not in open_tag:
            open_tag = open_tag[:-1] + ' xml:space="preserve">'
        out.append(f"{open_tag}{text}{m.group(3)}")
        prev = m.end()
    out.append(paragraph[prev:])
    return "".join(out)


def map_text_nodes(xml: str, fn) -> str:
    """Rewrite the content of every `<w:t>` node with `fn(text) -> text`."""
    return TEXT_NODE.sub(lambda m: f"{m.group(1)}{fn(m.group(2))}{m.group(3)}", xml)


__all__ = [
    "Span",
    "TEXT_NODE",
    "find_fragments",
    "leaf_fragments",
    "innermost",
    "contains",
    "visible_text",
    "normalized_text",
    "run_texts",
    "has_graphic",
    "remove_spans",
    "splice_paragraph_text",
    "map_text_nodes",
]
