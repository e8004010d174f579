import pytest

from docx_builders import W_NS, document_xml, para, table
from docx_tree import (
    XML_SPACE,
    ParseError,
    append_child,
    clean_text,
    clear_children,
    create_line_break_run,
    create_paragraph,
    create_text_run,
    descendants,
    is_tag,
    iter_children,
    parse,
    serialize,
    text_content,
)

STRICT_NS = "http://purl.oclc.org/ooxml/wordprocessingml/main"


# =============================================================================
# PARSE / SERIALIZE
# =============================================================================

class TestParse:

    def test_round_trip_keeps_text(self):
        xml = document_xml(para("Alpha"), table([["Beta", "Gamma"]]))
        tree = parse(xml)
        again = parse(serialize(tree))
        assert text_content(again) == text_content(tree) == "AlphaBetaGamma"

    def test_reserialize_is_stable(self):
        tree = parse(document_xml(para("Alpha")))
        once = serialize(tree)
        assert serialize(parse(once)) == once

    def test_malformed(self):
        with pytest.raises(ParseError):
            parse("<w:document xmlns:w='x'><w:body>")

    def test_declaration_written(self):
        out = serialize(parse(document_xml(para("A"))))
        assert out.startswith("<?xml version='1.0' encoding='UTF-8' standalone='yes'?>")

    def test_namespace_from_document(self):
        tree = parse(document_xml(para("A"), ns=STRICT_NS))
        assert tree.w_ns == STRICT_NS
        assert tree.body is not None


# =============================================================================
# QUERIES
# =============================================================================

class TestQueries:

    def test_descendants_in_document_order(self):
        tree = parse(document_xml(table([["a", "b"], ["c", "d"]])))
        cells = descendants(tree, "w:tc")
        assert [text_content(c) for c in cells] == ["a", "b", "c", "d"]

    def test_descendants_excludes_self(self):
        tree = parse(document_xml(table([["a"]])))
        tbl = descendants(tree, "w:tbl")[0]
        assert descendants(tbl, "w:tbl") == []

    def test_nested_cells_included(self):
        inner = table([["inner"]])
        tree = parse(document_xml(table([[inner, "outer"]])))
        assert [text_content(c) for c in descendants(tree, "w:tc")] == ["inner", "inner", "outer"]

    def test_text_content_adds_no_whitespace(self):
        xml = document_xml(
            '<w:p><w:r><w:t>Case</w:t></w:r><w:r><w:t xml:space="preserve"> Num</w:t></w:r>'
            '<w:r><w:t>ber</w:t></w:r></w:p>'
        )
        assert text_content(parse(xml)) == "Case Number"

    def test_iter_children_and_is_tag(self):
        tree = parse(document_xml(para("h"), table([["x"]])))
        kids = list(iter_children(tree.body))
        assert is_tag(kids[0], "w:p")
        assert is_tag(kids[1], "w:tbl")
        assert is_tag(kids[-1], "w:sectPr")

    def test_queries_follow_document_namespace(self):
        tree = parse(document_xml(table([["x"]]), ns=STRICT_NS))
        assert len(descendants(tree, "w:tc")) == 1
        assert text_content(tree) == "x"


# =============================================================================
# CONSTRUCTION
# =============================================================================

class TestConstruction:

    def test_text_run_preserves_space(self):
        tree = parse(document_xml(para("x")))
        run = create_text_run(tree, " 5%")
        t = run[0]
        assert run.tag == f"{{{W_NS}}}r"
        assert t.get(XML_SPACE) == "preserve"
        assert t.text == " 5%"

    def test_text_run_drops_control_chars(self):
        tree = parse(document_xml(para("x")))
        assert create_text_run(tree, "a\x01b\x0bc")[0].text == "abc"

    def test_clean_text_keeps_soft_breaks(self):
        assert clean_text("Acme\x0bPension\x0cPlan") == "Acme\nPension\nPlan"
        assert clean_text("a\x00b\x1fc\td") == "abc\td"

    def test_new_nodes_use_document_namespace(self):
        tree = parse(document_xml(para("x"), ns=STRICT_NS))
        run = create_line_break_run(tree)
        assert run.tag == f"{{{STRICT_NS}}}r"
        assert run[0].tag == f"{{{STRICT_NS}}}br"

    def test_appended_run_serializes_without_new_prefixes(self):
        tree = parse(document_xml(para("x")))
        p = descendants(tree, "w:p")[0]
        append_child(p, create_text_run(tree, " y"))
        out = serialize(tree)
        assert "ns0:" not in out
        assert text_content(parse(out)) == "x y"

    def test_create_paragraph(self):
        tree = parse(document_xml(para("x")))
        p = create_paragraph(tree, [create_text_run(tree, "a"), create_text_run(tree, "b")])
        assert text_content(p) == "ab"

    def test_clear_children_keeps_listed(self):
        tree = parse(document_xml(table([["old"]])))
        tc = descendants(tree, "w:tc")[0]
        clear_children(tc, keep=["w:tcPr"])
        assert [is_tag(c, "w:tcPr") for c in iter_children(tc)] == [True]
        assert text_content(tc) == ""

