"""
Small in-memory .docx packages for tests.

Only the parts Word and python-docx need to open a document are written:
[Content_Types].xml, _rels/.rels, word/document.xml, word/_rels/document.xml.rels
and docProps/app.xml.
"""
import io
import zipfile
from typing import Dict, List, Optional, Sequence
from xml.sax.saxutils import escape

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"

CONTENT_TYPES = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">'
    '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
    '<Default Extension="xml" ContentType="application/xml"/>'
    '<Override PartName="/word/document.xml" '
    'ContentType="application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>'
    '<Override PartName="/docProps/app.xml" '
    'ContentType="application/vnd.openxmlformats-officedocument.extended-properties+xml"/>'
    '</Types>'
)

PACKAGE_RELS = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
    '<Relationship Id="rId1" '
    'Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument" '
    'Target="word/document.xml"/>'
    '<Relationship Id="rId2" '
    'Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/extended-properties" '
    'Target="docProps/app.xml"/>'
    '</Relationships>'
)

DOCUMENT_RELS = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships"/>'
)

APP_XML = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<Properties xmlns="http://schemas.openxmlformats.org/officeDocument/2006/extended-properties">'
    '<Application>Microsoft Office Word</Application></Properties>'
)


def para(text: str = "") -> str:
    if not text:
        return "<w:p/>"
    return f'<w:p><w:r><w:t xml:space="preserve">{escape(text)}</w:t></w:r></w:p>'


def cell(content: str = "") -> str:
    body = content if content.startswith("<") else para(content)
    return f'<w:tc><w:tcPr><w:tcW w:w="3000" w:type="dxa"/></w:tcPr>{body}</w:tc>'


def row(*cells: str) -> str:
    return "<w:tr>" + "".join(cell(c) for c in cells) + "</w:tr>"


def table(rows: Sequence[Sequence[str]]) -> str:
    width = max((len(r) for r in rows), default=1)
    grid = "".join('<w:gridCol w:w="3000"/>' for _ in range(width))
    return (
        '<w:tbl><w:tblPr><w:tblW w:w="0" w:type="auto"/></w:tblPr>'
        f"<w:tblGrid>{grid}</w:tblGrid>"
        + "".join(row(*r) for r in rows)
        + "</w:tbl>"
    )


def document_xml(*blocks: str, ns: str = W_NS) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<w:document xmlns:w="{ns}"><w:body>'
        + "".join(blocks)
        + '<w:sectPr><w:pgSz w:w="12240" w:h="15840"/></w:sectPr></w:body></w:document>'
    )


def build_docx(document: Optional[str], extra: Optional[Dict[str, bytes]] = None,
               comment: bytes = b"", document_path: str = "word/document.xml") -> bytes:
    """
    Zip a package; pass document=None to leave the main part out.
    document_path moves the main part (content types and relationships follow it).
    """
    folder, _, name = document_path.rpartition("/")
    content_types = CONTENT_TYPES.replace('PartName="/word/document.xml"', f'PartName="/{document_path}"')
    package_rels = PACKAGE_RELS.replace('Target="word/document.xml"', f'Target="{document_path}"')
    entries: List[tuple] = [
        ("[Content_Types].xml", content_types.encode("utf-8")),
        ("_rels/.rels", package_rels.encode("utf-8")),
    ]
    if document is not None:
        entries.append((document_path, document.encode("utf-8")))
    entries.append((f"{folder}/_rels/{name}.rels", DOCUMENT_RELS.encode("utf-8")))
    entries.append(("docProps/app.xml", APP_XML.encode("utf-8")))
    for name, data in (extra or {}).items():
        entries.append((name, data))

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as z:
        z.comment = comment
        for name, data in entries:
            info = zipfile.ZipInfo(name, date_time=(2024, 1, 2, 3, 4, 6))
            info.compress_type = zipfile.ZIP_DEFLATED
            z.writestr(info, data)
    return buf.getvalue()


def read_entry(archive: bytes, name: str) -> bytes:
    with zipfile.ZipFile(io.BytesIO(archive)) as z:
        return z.read(name)


def plan_summary_document() -> str:
    """A Plan Summary shaped template: header table plus the two PBGC rates blocks."""
    return document_xml(
        para("Plan Summary"),
        table([
            ["Plan Name", "Case Number:"],
            ["DOPT", "DOTR"],
            ["BPD", "Notes"],
        ]),
        para("PBGC Lump Sum Rates"),
        table([["Immediate Rate", "Deferral Rate"]]),
        para("PBGC Annuity Rates"),
        table([["Immediate Rate", "Deferral Rate"]]),
    )
