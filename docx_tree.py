# docx_tree.py
import re
from typing import Iterable, Iterator, List, Optional, Union

from docx.oxml.ns import nsmap as DOCX_NSMAP, qn
from lxml import etree  # comes with python-docx

XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"
# lxml refuses C0 control characters other than tab, LF and CR
_XML_INVALID_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_SOFT_BREAK_RE = re.compile(r"[\x0b\x0c]")

# Keep whitespace-only text nodes and never fetch external entities.
_PARSER = etree.XMLParser(remove_blank_text=False, resolve_entities=False, huge_tree=True)


class ParseError(Exception):
    """The document XML part is not well-formed (fatal, raised before any mutation)."""


class DocumentTree:
    """
    One parsed WordprocessingML part, owned by a single injection run.
    Tag names are resolved against the part's own `w` prefix so that new runs and
    paragraphs land in the same namespace as the template.
    """

    def __init__(self, root: etree._Element):
        self.root = root
        self.w_ns = root.nsmap.get("w") or DOCX_NSMAP["w"]

    def tag(self, name: str) -> str:
        prefix, _, local = name.partition(":")
        if prefix == "w":
            return f"{{{self.w_ns}}}{local}"
        return qn(name)

    @property
    def body(self) -> Optional[etree._Element]:
        return next(self.root.iter(self.tag("w:body")), None)

    def element(self, name: str) -> etree._Element:
        return etree.Element(self.tag(name), nsmap={"w": self.w_ns})


Node = Union[DocumentTree, etree._Element]


def _element(node: Node) -> etree._Element:
    return node.root if isinstance(node, DocumentTree) else node


def _clark(el: etree._Element, name: str) -> str:
    prefix, _, local = name.partition(":")
    ns = el.nsmap.get(prefix)
    return f"{{{ns}}}{local}" if ns else qn(name)


# =========================
# Parse / serialize
# =========================
def parse(text: str) -> DocumentTree:
    try:
        root = etree.fromstring(text.encode("utf-8"), _PARSER)
    except etree.XMLSyntaxError as e:
        raise ParseError(f"malformed document XML: {e}") from e
    return DocumentTree(root)


def serialize(tree: DocumentTree) -> str:
    data = etree.tostring(
        tree.root.getroottree(), xml_declaration=True, encoding="UTF-8", standalone=True
    )
    return data.decode("utf-8")


# =========================
# Queries
# =========================
def descendants(node: Node, tag_name: str) -> List[etree._Element]:
    """All descendants named `tag_name` (e.g. 'w:tc'), in document order, excluding `node`."""
    el = _element(node)
    return list(el.iterdescendants(_clark(el, tag_name)))


def iter_children(node: Node) -> Iterator[etree._Element]:
    # direct element children only; comments/PIs are skipped
    for child in _element(node):
        if isinstance(child.tag, str):
            yield child


def is_tag(el: etree._Element, tag_name: str) -> bool:
    return el.tag == _clark(el, tag_name)


def text_content(node: Node) -> str:
    el = _element(node)
    return "".join(t.text or "" for t in el.iter(_clark(el, "w:t")))


# =========================
# Construction / mutation
# =========================
def clean_text(text: str) -> str:
    """Text as it can be stored: vertical tab and form feed become line breaks, other C0 controls are dropped."""
    return _XML_INVALID_RE.sub("", _SOFT_BREAK_RE.sub("\n", str(text if text is not None else "")))


def create_text_run(tree: DocumentTree, text: str) -> etree._Element:
    run = tree.element("w:r")
    t = etree.SubElement(run, tree.tag("w:t"))
    t.set(XML_SPACE, "preserve")
    t.text = _XML_INVALID_RE.sub("", text)
    return run


def create_line_break_run(tree: DocumentTree) -> etree._Element:
    run = tree.element("w:r")
    etree.SubElement(run, tree.tag("w:br"))
    return run


def create_paragraph(tree: DocumentTree, runs: Iterable[etree._Element] = ()) -> etree._Element:
    p = tree.element("w:p")
    for r in runs:
        p.append(r)
    return p


def append_child(parent: etree._Element, child: etree._Element) -> etree._Element:
    parent.append(child)
    return child


def clear_children(node: etree._Element, keep: Iterable[str] = ()) -> None:
    """Remove every child of `node` except elements whose tag is listed in `keep`."""
    kept = {_clark(node, k) for k in keep}
    for child in list(node):
        if child.tag in kept:
            continue
        node.remove(child)
    node.text = None
