import pytest

from docx_factory import cell, document_xml, drawing_run, header_xml, make_docx, para, row, table
from quotedoc.services.container import load_container
from quotedoc.services.sanitizer import (
    SanitizeRules,
    fix_mojibake,
    is_discount_only,
    patch_overage_rates,
    remove_data_size_segments,
    remove_discount_fragments,
    remove_empty_rows,
    remove_instance_validity,
    remove_stale_tokens,
    sanitize_container,
    sanitize_xml,
)
from quotedoc.services.token_resolver import resolve_tokens
from quotedoc.utils.ooxml import find_fragments, visible_text

NO_DISCOUNT = SanitizeRules(discount_applied=False)
WITH_DISCOUNT = SanitizeRules(discount_applied=True)


def _rows(xml):
    return [visible_text(xml[s:e]) for s, e in find_fragments(xml, "w:tr")]


def _paras(xml):
    return [visible_text(xml[s:e]) for s, e in find_fragments(xml, "w:p")]


# -----------------------------
# Discount
# -----------------------------
@pytest.mark.parametrize("text, expected", [
    ("discount", True),
    ("n/a", True),
    ("discount n/a", True),
    ("discount: n/a", True),
    ("discount (n/a)", True),
    ("total: n/a", False),
    ("discount 10%", False),
    ("a discount is n/a for this very long paragraph of agreement terms and more", False),
])
def test_is_discount_only(text, expected):
    assert is_discount_only(text, NO_DISCOUNT) is expected


def test_discount_rows_removed_when_not_applied():
    xml = document_xml(table(
        row("Users", "$100.00"),
        row("Discount", ""),
        row("Discount", "N/A"),
        row("Total", "$100.00"),
    ))
    out, n = remove_discount_fragments(xml, NO_DISCOUNT)
    assert n == 2
    assert _rows(out) == ["Users$100.00", "Total$100.00"]
    # cells are never removed on their own
    assert all(len(find_fragments(out[s:e], "w:tc")) == 2 for s, e in find_fragments(out, "w:tr"))


def test_discount_rows_kept_when_applied():
    xml = document_xml(table(row("Discount", "10")), para("Discount"))
    assert remove_discount_fragments(xml, WITH_DISCOUNT) == (xml, 0)


def test_discount_paragraph_removed_but_cell_paragraph_is_not():
    xml = document_xml(
        para("Discount: N/A"),
        para("Pricing applies."),
        table(row(cell("Discount", "Applies to year one"), "Net")),
    )
    out, _ = remove_discount_fragments(xml, NO_DISCOUNT)
    assert _paras(out) == ["Pricing applies.", "Discount", "Applies to year one", "Net"]


def test_table_left_without_rows_is_dropped():
    xml = document_xml(para("Before"), table(row("Discount", "N/A")), para("After"))
    out, _ = remove_discount_fragments(xml, NO_DISCOUNT)
    assert "<w:tbl" not in out
    assert _paras(out) == ["Before", "After"]


def test_discount_removed_from_headers():
    data = make_docx(para("Body"), extra_parts={"word/header1.xml": header_xml(para("Discount"), para("Acme"))})
    container = load_container(data)
    counts = sanitize_container(container, NO_DISCOUNT)
    assert counts["discount"] == 1
    assert visible_text(container.read_text("word/header1.xml")) == "Acme"


# -----------------------------
# Instance validity
# -----------------------------
@pytest.mark.parametrize("text, removed", [
    ("Each server instance is valid for 12 months.", True),
    ("Instances are valid for 6 months", True),
    ("Server instance validity: 12 months", True),
    ("This agreement is valid for 6 months from the date of signature.", False),
    ("The quote is valid for 30 days.", False),
])
def test_remove_instance_validity(text, removed):
    xml = document_xml(para(text), para("Keep me"))
    out, n = remove_instance_validity(xml, SanitizeRules())
    assert (n == 1) is removed
    assert ("Keep me" in visible_text(out))
    assert (text in visible_text(out)) is not removed


# -----------------------------
# Empty rows
# -----------------------------
def test_empty_rows_removed_graphics_kept():
    xml = document_xml(table(
        row("Header", "Value"),
        row("", "  "),
        row(cell("<w:p>" + drawing_run() + "</w:p>"), ""),
        row("Footer", "x"),
    ))
    out, n = remove_empty_rows(xml, SanitizeRules())
    assert n == 1
    assert len(find_fragments(out, "w:tr")) == 3
    assert "<w:drawing>" in out


# -----------------------------
# Stale tokens
# -----------------------------
def test_stale_tokens_and_undefined_removed():
    xml = document_xml(para("Name: {{leftover}} Undefined end"), para("{{left", "over}} done"))
    out, n = remove_stale_tokens(xml, SanitizeRules())
    assert n >= 2
    assert _paras(out) == ["Name:   end", " done"]


def test_row_emptied_by_stale_token_cleanup_is_removed():
    xml = document_xml(table(row("Keep", "1"), row("{{ghost}}", "undefined")))
    out, _ = sanitize_xml(xml, SanitizeRules())
    assert _rows(out) == ["Keep1"]


# -----------------------------
# Overage rates
# -----------------------------
def test_overage_placeholder_rate_gets_tier_rate():
    xml = document_xml(
        para("Overage Charges"),
        para("Users: $0.00 per User | $0.00 per GB"),
        para("Elsewhere: $0.00 per GB"),
    )
    out, n = patch_overage_rates(xml, SanitizeRules(tier="standard"))
    assert n >= 1
    assert _paras(out)[1] == "Users: $0.00 per User | $1.50 per GB"


def test_overage_far_from_heading_untouched():
    body = [para("Overage Charges")] + [para(f"line {i}") for i in range(4)] + [para("$0.00 per GB")]
    out, _ = patch_overage_rates(document_xml(*body), SanitizeRules(tier="basic"))
    assert _paras(out)[-1] == "$0.00 per GB"


def test_overage_without_known_tier_only_collapses_duplicates():
    xml = document_xml(para("Overage Charges: $0.00 per GB, was $1.5", "$1.50"))
    out, _ = patch_overage_rates(xml, SanitizeRules(tier=""))
    assert visible_text(out) == "Overage Charges: $0.00 per GB, was $1.50"


@pytest.mark.parametrize("text", ["Rate $1.5$1.55 per user", "Rate $1.5$1.500"])
def test_distinct_adjacent_amounts_are_kept(text):
    xml = document_xml(para(text))
    out, _ = sanitize_xml(xml, SanitizeRules(tier="standard"))
    assert visible_text(out) == text


# -----------------------------
# Data size
# -----------------------------
def test_data_size_segments_removed_across_runs():
    rules = SanitizeRules(data_size_applicable=False)
    xml = document_xml(
        para("Users: 100 |", " 500 GB", "s"),
        para("Rate: $3.00 per User", " | $2.00 per GB"),
    )
    out, n = remove_data_size_segments(xml, rules)
    assert n == 2
    assert _paras(out) == ["Users: 100", "Rate: $3.00 per User"]


def test_data_size_kept_when_applicable():
    xml = document_xml(para("Users: 100 | 500 GBs"))
    assert remove_data_size_segments(xml, SanitizeRules()) == (xml, 0)


# -----------------------------
# Mojibake
# -----------------------------
@pytest.mark.parametrize("bad, good", [
    ("It\u00e2\u20ac\u2122s done", "It's done"),
    ("\u00e2\u20ac\u0153Quoted\u00e2\u20ac\u009d", '"Quoted"'),
    ("A\u00c2\u00a0B", "A B"),
    ("clean text", "clean text"),
])
def test_fix_mojibake(bad, good):
    out, _ = fix_mojibake(document_xml(para(bad)), SanitizeRules())
    assert visible_text(out) == good


# -----------------------------
# Whole sequence
# -----------------------------
MESSY = [
    document_xml(
        para("Discount: N/A"),
        table(row("Discount", ""), row("", ""), row("Item", "{{stale}}")),
        para("Overage Charges"),
        para("$0.00 per GB"),
        para("Each server instance is valid for 12 months."),
        para("Data: 10 GBs | 5", " GBs"),
        para("It\u00e2\u20ac\u2122s undefined"),
    ),
    document_xml(table(row("{{a}}", "undefined"), row("Discount", "N/A")), para("x {{b", "}}")),
    document_xml(para("Nothing to do here.")),
]


@pytest.mark.parametrize("xml", MESSY)
@pytest.mark.parametrize("rules", [
    SanitizeRules(discount_applied=False, tier="advanced", data_size_applicable=False),
    SanitizeRules(discount_applied=True, tier="basic"),
])
def test_sanitize_is_idempotent(xml, rules):
    once, _ = sanitize_xml(xml, rules)
    twice, counts = sanitize_xml(once, rules)
    assert twice == once
    assert sum(counts.values()) == 0


def test_sanitize_full_sequence():
    rules = SanitizeRules(discount_applied=False, tier="advanced", data_size_applicable=False)
    out, counts = sanitize_xml(MESSY[0], rules)
    text = visible_text(out)
    assert "Discount" not in text
    assert "{{" not in text and "undefined" not in text.lower()
    assert "$1.80 per GB" in text
    assert "valid for 12 months" not in text
    assert "Data: 10 GBs" in text
    assert "It's " in text
    assert counts["discount"] >= 2


def test_rules_from_resolved():
    resolved = resolve_tokens({"discount": "", "plan": "Standard", "migration_type": "Messaging"})
    rules = SanitizeRules.from_resolved(resolved)
    assert rules.discount_applied is False
    assert rules.tier == "standard"
    assert rules.data_size_applicable is False
    assert SanitizeRules.from_resolved(resolved, tier="basic").tier == "basic"


def test_stale_tokens_removed_from_footers():
    data = make_docx(para("Body"), extra_parts={"word/footer1.xml": header_xml(para("Ref {{ghost}} undefined"))})
    container = load_container(data)
    counts = sanitize_container(container, SanitizeRules())
    assert counts["stale_tokens"] >= 2
    assert visible_text(container.read_text("word/footer1.xml")) == "Ref  "
