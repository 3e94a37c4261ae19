import datetime
import xml.etree.ElementTree as ET

import pytest

from docx_factory import header_xml, make_docx, para, row, table
from quotedoc.services.container import load_container
from quotedoc.services.errors import TemplateRenderError
from quotedoc.services.renderer import render_document, validate_structure, xml_value
from quotedoc.services.token_resolver import resolve_tokens
from quotedoc.utils.ooxml import find_fragments, visible_text

TODAY = datetime.date(2024, 3, 5)


def _render(data, *body):
    container = load_container(make_docx(*body))
    render_document(container, resolve_tokens(data, today=TODAY))
    return container.document_xml


def _text(xml):
    return visible_text(xml)


def test_single_token_substitution():
    xml = _render({"company": "Acme Inc."}, para("Prepared for {{Company Name}}."))
    assert _text(xml) == "Prepared for Acme Inc.."


SPELLINGS = ["Foo Bar", "Foo_Bar", "foo bar", "foo-bar"]


@pytest.mark.parametrize("template_spelling", SPELLINGS)
@pytest.mark.parametrize("data_spelling", SPELLINGS)
def test_spelling_invariance(template_spelling, data_spelling):
    xml = _render({data_spelling: "value-42"}, para("{{%s}}" % template_spelling))
    assert _text(xml) == "value-42"


def test_untrimmed_token_name():
    xml = _render({"company": "Acme"}, para("{{ Company Name }}"))
    assert _text(xml) == "Acme"


def test_unknown_tokens_get_name_shaped_defaults():
    xml = _render({}, para("{{setup_fee}} | {{seat_count}} | {{remarks}}"))
    assert _text(xml) == "$0.00 | 0 | "


def test_values_are_xml_escaped():
    xml = _render({"company": 'A & B <C> "D"'}, para("{{company}}"))
    ET.fromstring(xml.encode("utf-8"))
    assert "A &amp; B &lt;C&gt;" in xml
    assert _text(xml) == 'A & B <C> "D"'


def test_newline_in_value_becomes_line_break():
    xml = _render({"notes": "line one\nline two"}, para("{{notes}}"))
    ET.fromstring(xml.encode("utf-8"))
    assert "<w:br/>" in xml
    assert _text(xml) == "line oneline two"


def test_xml_value():
    assert xml_value(None) == ""
    assert xml_value("a<b") == "a&lt;b"
    assert xml_value("a\r\nb") == 'a</w:t><w:br/><w:t xml:space="preserve">b'


def test_jinja_like_literal_text_is_left_alone():
    xml = _render({"company": "Acme"}, para("{% raw %} {# note #} {{company}} {"))
    assert _text(xml) == "{% raw %} {# note #} Acme {"


def test_template_without_tokens_passes_through():
    container = load_container(make_docx(para("Just text.")))
    before = container.document_xml
    assert render_document(container, resolve_tokens({})) == 0
    assert container.document_xml == before


# -----------------------------
# Repeated blocks
# -----------------------------
EXHIBITS = [
    {"exhibitType": "Migration", "exhibitDesc": "Mailboxes", "exhibitPlan": "Standard", "exhibitPrice": "$100.00"},
    {"exhibitType": "Support", "exhibitDesc": "Hypercare", "exhibitPlan": "Basic", "exhibitPrice": "$50.00"},
    {"exhibitType": "Training", "exhibitDesc": "Admins", "exhibitPlan": "Advanced", "exhibitPrice": "$75.00"},
]


def _exhibit_table():
    return table(
        row("Type", "Price"),
        row("{{#exhibits}}{{exhibitType}}", "{{exhibitPrice}}{{/exhibits}}"),
        row("Total", "{{total_price}}"),
    )


@pytest.mark.parametrize("n", [0, 1, 3])
def test_row_block_repeats_once_per_element(n):
    xml = _render({"exhibits": EXHIBITS[:n], "total_price": "$225.00"}, _exhibit_table())
    rows = find_fragments(xml, "w:tr")
    assert len(rows) == 2 + n
    text = _text(xml)
    for e in EXHIBITS[:n]:
        assert e["exhibitType"] + e["exhibitPrice"] in text
    assert text.startswith("TypePrice")
    assert text.endswith("Total$225.00")
    ET.fromstring(xml.encode("utf-8"))


def test_row_block_with_marker_rows():
    xml = _render(
        {"servers": [{"description": "Server A", "cost": "$10"}, {"description": "Server B", "cost": "$20"}]},
        table(
            row("{{#servers}}", ""),
            row("{{description}}", "{{cost}}"),
            row("{{/servers}}", ""),
        ),
    )
    text = _text(xml)
    assert "Server A$10" in text and "Server B$20" in text
    assert "{{" not in text


def test_paragraph_block_repeats_paragraphs():
    xml = _render(
        {"servers": [{"description": "Alpha", "cost": "$1"}, {"description": "Beta", "cost": "$2"}]},
        para("Servers:"),
        para("{{#servers}}"),
        para("- {{description}}: {{cost}}"),
        para("{{/servers}}"),
        para("End"),
    )
    paragraphs = [_text(xml[s:e]) for s, e in find_fragments(xml, "w:p")]
    assert paragraphs == ["Servers:", "- Alpha: $1", "- Beta: $2", "End"]


def test_inline_block_over_scalar_truthiness():
    template = para("Total{{#show_discount}} after {{discount}}% discount{{/show_discount}}.")
    assert _text(_render({"discount": "10"}, template)) == "Total after 10% discount."
    assert _text(_render({"discount": ""}, template)) == "Total."


def test_inverted_block():
    template = para("{{^exhibits}}No exhibits.{{/exhibits}}")
    assert _text(_render({"exhibits": []}, template)) == "No exhibits."
    assert _text(_render({"exhibits": EXHIBITS[:1]}, template)) == ""


def test_list_of_scalars_binds_element():
    xml = _render({"features": ["SSO", "Audit"]}, para("{{#features}}[{{.}}]{{/features}}"))
    assert _text(xml) == "[SSO][Audit]"


def test_row_values_fall_back_to_record():
    xml = _render(
        {"exhibits": [{"exhibitType": "Migration"}], "plan_name": "Standard"},
        table(row("{{#exhibits}}{{exhibitType}}", "{{plan_name}}{{/exhibits}}")),
    )
    assert _text(xml) == "MigrationStandard"


# -----------------------------
# Structural errors
# -----------------------------
def test_all_structural_errors_are_collected():
    container = load_container(make_docx(
        para("{{#exhibits}} never closed"),
        para("{{/servers}}"),
        para("dangling {{company"),
    ))
    with pytest.raises(TemplateRenderError) as exc:
        render_document(container, resolve_tokens({}))
    assert len(exc.value.errors) >= 3
    joined = " ".join(exc.value.errors)
    assert "exhibits" in joined and "servers" in joined and "Unclosed tag" in joined


@pytest.mark.parametrize("body, needle", [
    ("{{#a}}x{{/b}}", "does not match"),
    ("{{/a}}", "no opening tag"),
    ("{{#a}}", "Unclosed block"),
    ("x }} y", "Unopened"),
    ("{{#}}x{{/}}", "without a name"),
])
def test_validate_structure_messages(body, needle):
    errors, _ = validate_structure(f"<w:p><w:r><w:t>{body}</w:t></w:r></w:p>")
    assert any(needle in e for e in errors), errors


def test_valid_nesting_has_no_errors():
    errors, blocks = validate_structure("<w:t>{{#a}}{{#b}}{{x}}{{/b}}{{/a}}</w:t>")
    assert errors == []
    assert [b.open.name for b in blocks] == ["b", "a"]
    assert blocks[0].parent is blocks[1]


# -----------------------------
# Headers and footers
# -----------------------------
def test_header_and_footer_parts_are_rendered():
    container = load_container(make_docx(
        para("Body {{company}}"),
        extra_parts={
            "word/header1.xml": header_xml(para("Prepared for {{Company", " Name}}")),
            "word/footer2.xml": header_xml(para("Page footer")),
        },
    ))
    footer_before = container.read_text("word/footer2.xml")
    sites = render_document(container, resolve_tokens({"company": "Acme"}))
    assert sites == 2
    assert _text(container.read_text("word/header1.xml")) == "Prepared for Acme"
    assert container.read_text("word/footer2.xml") == footer_before


def test_header_errors_are_reported_with_part_name_and_nothing_is_written():
    container = load_container(make_docx(
        para("{{company}}"),
        extra_parts={"word/header1.xml": header_xml(para("{{/servers}}"))},
    ))
    before = container.document_xml
    with pytest.raises(TemplateRenderError) as exc:
        render_document(container, resolve_tokens({"company": "Acme"}))
    assert exc.value.errors == ["word/header1.xml: Closing tag {{/servers}} has no opening tag"]
    assert container.document_xml == before
