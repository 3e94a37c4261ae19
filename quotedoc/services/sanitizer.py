# quotedoc/services/sanitizer.py
"""
Post-render cleanup of word/document.xml.

Passes run in a fixed order, each one on whole `<w:tr>` / `<w:p>` fragments
or on `<w:t>` text nodes, never on arbitrary string offsets:

  1. discount rows/paragraphs (when no discount applies)
  2. instance-validity boilerplate paragraphs
  3. empty table rows without graphics
  4. "undefined" text and unresolved {{tokens}}
  5. overage per-GB rate under "Overage Charges"
  6. " | N GBs" / " | $x per GB" when the migration has no data size
  7. mojibake

Header and footer parts get passes 1, 4 and 7.

The sequence repeats until the XML stops changing, so sanitizing an already
sanitized part is a no-op.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Mapping, Tuple

from quotedoc.config import (
    DISCOUNT_ONLY_PHRASES,
    DISCOUNT_SHORT_TEXT_LIMIT,
    INSTANCE_VALIDITY_PATTERNS,
    MOJIBAKE_REPLACEMENTS,
    OVERAGE_HEADING,
    OVERAGE_PER_GB_RATES,
    OVERAGE_PLACEHOLDER_RATES,
)
from quotedoc.services.container import DocxContainer
from quotedoc.services.token_resolver import ResolvedTokens
from quotedoc.utils.ooxml import (
    Span,
    find_fragments,
    has_graphic,
    innermost,
    leaf_fragments,
    map_text_nodes,
    normalized_text,
    remove_spans,
    splice_paragraph_text,
    visible_text,
)

logger = logging.getLogger(__name__)

_MAX_ROUNDS = 20
# paragraphs after the heading that still count as its section
_OVERAGE_WINDOW = 3


@dataclass(frozen=True)
class SanitizeRules:
    """What to clean up for one render, plus the lookup tables the passes use."""
    discount_applied: bool = True
    tier: str = ""
    data_size_applicable: bool = True

    discount_phrases: Tuple[str, ...] = DISCOUNT_ONLY_PHRASES
    discount_short_limit: int = DISCOUNT_SHORT_TEXT_LIMIT
    validity_patterns: Tuple[str, ...] = INSTANCE_VALIDITY_PATTERNS
    overage_rates: Mapping[str, str] = field(default_factory=lambda: dict(OVERAGE_PER_GB_RATES))
    overage_heading: str = OVERAGE_HEADING
    overage_placeholders: Tuple[str, ...] = OVERAGE_PLACEHOLDER_RATES
    mojibake: Tuple[Tuple[str, str], ...] = MOJIBAKE_REPLACEMENTS

    @classmethod
    def from_resolved(cls, resolved: ResolvedTokens, **overrides) -> "SanitizeRules":
        base = cls(
            discount_applied=resolved.discount_applied,
            tier=resolved.tier,
            data_size_applicable=resolved.data_size_applicable,
        )
        return replace(base, **overrides) if overrides else base


Pass = Callable[[str, SanitizeRules], Tuple[str, int]]


# -----------------------------
# Fragment helpers
# -----------------------------
def _standalone_paragraphs(xml: str) -> List[Span]:
    """Leaf paragraphs that are not inside a table cell."""
    cells = find_fragments(xml, "w:tc")
    return [p for p in leaf_fragments(find_fragments(xml, "w:p")) if innermost(cells, p[0]) is None]


def _leaf_rows(xml: str) -> List[Span]:
    return leaf_fragments(find_fragments(xml, "w:tr"))


def _drop_empty_tables(xml: str) -> str:
    """A table left without rows is invalid OOXML; remove it."""
    empty = [(s, e) for s, e in find_fragments(xml, "w:tbl")
             if not re.search(r"<w:tr[\s>/]", xml[s:e])]
    return remove_spans(xml, leaf_fragments(empty))


def _to_fixpoint(xml: str, step: Callable[[str], Tuple[str, int]]) -> Tuple[str, int]:
    total = 0
    for _ in range(_MAX_ROUNDS):
        xml, n = step(xml)
        if not n:
            break
        total += n
    return xml, total


# -----------------------------
# 1) discount rows and paragraphs
# -----------------------------
def is_discount_only(text: str, rules: SanitizeRules) -> bool:
    """`text` is already normalized (collapsed whitespace, case-folded)."""
    if text in rules.discount_phrases:
        return True
    return len(text) < rules.discount_short_limit and "discount" in text and "n/a" in text


def remove_discount_fragments(xml: str, rules: SanitizeRules) -> Tuple[str, int]:
    if rules.discount_applied:
        return xml, 0

    def step(x: str) -> Tuple[str, int]:
        doomed = [r for r in _leaf_rows(x) if is_discount_only(normalized_text(x[r[0]:r[1]]), rules)]
        doomed += [p for p in _standalone_paragraphs(x)
                   if is_discount_only(normalized_text(x[p[0]:p[1]]), rules)]
        if not doomed:
            return x, 0
        return _drop_empty_tables(remove_spans(x, doomed)), len(doomed)

    return _to_fixpoint(xml, step)


# -----------------------------
# 2) instance validity boilerplate
# -----------------------------
def remove_instance_validity(xml: str, rules: SanitizeRules) -> Tuple[str, int]:
    patterns = [re.compile(p, re.I) for p in rules.validity_patterns]

    def step(x: str) -> Tuple[str, int]:
        doomed = []
        for s, e in _standalone_paragraphs(x):
            text = normalized_text(x[s:e])
            if text and any(p.match(text) for p in patterns):
                doomed.append((s, e))
        return remove_spans(x, doomed), len(doomed)

    return _to_fixpoint(xml, step)


# -----------------------------
# 3) empty rows
# -----------------------------
def remove_empty_rows(xml: str, rules: SanitizeRules) -> Tuple[str, int]:
    def step(x: str) -> Tuple[str, int]:
        doomed = [(s, e) for s, e in _leaf_rows(x)
                  if not visible_text(x[s:e]).strip() and not has_graphic(x[s:e])]
        if not doomed:
            return x, 0
        return _drop_empty_tables(remove_spans(x, doomed)), len(doomed)

    return _to_fixpoint(xml, step)


# -----------------------------
# 4) "undefined" and unresolved tokens
# -----------------------------
_STALE = re.compile(r"\{\{[^{}]*\}\}|undefined", re.I)


def _splice_leaf_paragraphs(xml: str, pattern: "re.Pattern[str]", repl: str = "") -> Tuple[str, int]:
    changed = 0
    out: List[str] = []
    last = 0
    for s, e in leaf_fragments(find_fragments(xml, "w:p")):
        para = xml[s:e]
        fixed = splice_paragraph_text(para, pattern, repl)
        if fixed != para:
            changed += 1
        out.append(xml[last:s])
        out.append(fixed)
        last = e
    out.append(xml[last:])
    return "".join(out), changed


def remove_stale_tokens(xml: str, rules: SanitizeRules) -> Tuple[str, int]:
    def step(x: str) -> Tuple[str, int]:
        hits = 0

        def clean(text: str) -> str:
            nonlocal hits
            new, n = _STALE.subn("", text)
            hits += n
            return new

        x = map_text_nodes(x, clean)
        # leftovers split over several runs
        x, n = _splice_leaf_paragraphs(x, _STALE)
        return x, hits + n

    return _to_fixpoint(xml, step)


# -----------------------------
# 5) overage per-GB rate
# -----------------------------
# "$1.5$1.50": a one-decimal copy left in front of the re-formatted amount
_DUPLICATED_AMOUNT = re.compile(r"\$(?P<amt>\d+\.\d)(?=\$(?P=amt)0(?!\d))")


def patch_overage_rates(xml: str, rules: SanitizeRules) -> Tuple[str, int]:
    rate = rules.overage_rates.get((rules.tier or "").strip().lower())
    placeholders = "|".join(re.escape(p) for p in sorted(rules.overage_placeholders, key=len, reverse=True))
    placeholder_rate = re.compile(rf"(?:{placeholders})(?![\d.])(?=\s*(?:/|per)\s*GB)", re.I) if placeholders else None
    heading = rules.overage_heading.casefold()

    def step(x: str) -> Tuple[str, int]:
        x, changed = _splice_leaf_paragraphs(x, _DUPLICATED_AMOUNT)
        if not rate or placeholder_rate is None:
            return x, changed

        paras = leaf_fragments(find_fragments(x, "w:p"))
        window: List[Span] = []
        for i, (s, e) in enumerate(paras):
            if heading in normalized_text(x[s:e]):
                window.extend(paras[i:i + 1 + _OVERAGE_WINDOW])

        out: List[str] = []
        last = 0
        for s, e in sorted(set(window)):
            para = x[s:e]
            fixed = splice_paragraph_text(para, placeholder_rate, rate.replace("\\", "\\\\"))
            if fixed != para:
                changed += 1
            out.append(x[last:s])
            out.append(fixed)
            last = e
        out.append(x[last:])
        return "".join(out), changed

    return _to_fixpoint(xml, step)


# -----------------------------
# 6) data-size decorations
# -----------------------------
_DATA_SIZE_DECORATION = re.compile(
    r"\s*\|\s*(?:\d[\d,.]*|N/A)\s*GBs?\b\.?"
    r"|\s*\|\s*\$\s?\d[\d,.]*\s*per\s*GB\b\.?",
    re.I,
)


def remove_data_size_segments(xml: str, rules: SanitizeRules) -> Tuple[str, int]:
    if rules.data_size_applicable:
        return xml, 0
    return _to_fixpoint(xml, lambda x: _splice_leaf_paragraphs(x, _DATA_SIZE_DECORATION))


# -----------------------------
# 7) mojibake
# -----------------------------
def fix_mojibake(xml: str, rules: SanitizeRules) -> Tuple[str, int]:
    def step(x: str) -> Tuple[str, int]:
        hits = 0

        def clean(text: str) -> str:
            nonlocal hits
            for bad, good in rules.mojibake:
                if bad in text:
                    hits += text.count(bad)
                    text = text.replace(bad, good)
            return text

        return map_text_nodes(x, clean), hits

    return _to_fixpoint(xml, step)


PASSES: Tuple[Tuple[str, Pass], ...] = (
    ("discount", remove_discount_fragments),
    ("instance_validity", remove_instance_validity),
    ("empty_rows", remove_empty_rows),
    ("stale_tokens", remove_stale_tokens),
    ("overage_rates", patch_overage_rates),
    ("data_size", remove_data_size_segments),
    ("mojibake", fix_mojibake),
)
HEADER_FOOTER_PASSES: Tuple[Tuple[str, Pass], ...] = (
    ("discount", remove_discount_fragments),
    ("stale_tokens", remove_stale_tokens),
    ("mojibake", fix_mojibake),
)


def sanitize_xml(xml: str, rules: SanitizeRules, passes=PASSES) -> Tuple[str, Dict[str, int]]:
    """Run `passes` in order, repeating the sequence until nothing changes."""
    counts: Dict[str, int] = {name: 0 for name, _ in passes}
    for _ in range(_MAX_ROUNDS):
        before = xml
        for name, fn in passes:
            xml, n = fn(xml, rules)
            counts[name] += n
        if xml == before:
            break
    return xml, counts


def sanitize_container(container: DocxContainer, rules: SanitizeRules) -> Dict[str, int]:
    """Sanitize the document part in place, and headers/footers with HEADER_FOOTER_PASSES."""
    xml, counts = sanitize_xml(container.document_xml, rules)
    container.document_xml = xml

    for name in container.header_footer_parts():
        part, part_counts = sanitize_xml(container.read_text(name), rules, HEADER_FOOTER_PASSES)
        container.write_text(name, part)
        for k, v in part_counts.items():
            counts[k] = counts.get(k, 0) + v

    for name, n in counts.items():
        if n:
            logger.debug("sanitize %s: %d change(s)", name, n)
    return counts


__all__ = [
    "SanitizeRules",
    "PASSES",
    "sanitize_xml",
    "sanitize_container",
    "is_discount_only",
    "remove_discount_fragments",
    "remove_instance_validity",
    "remove_empty_rows",
    "remove_stale_tokens",
    "patch_overage_rates",
    "remove_data_size_segments",
    "fix_mojibake",
]
