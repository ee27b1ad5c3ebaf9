import io
import zipfile

import pytest
from docx import Document
from docx.enum.style import WD_STYLE_TYPE
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml.ns import qn
from docx.shared import Mm, Pt

from gost_editor.adapters.container import DOCUMENT_PART, open_package, serialize_xml, write_package
from gost_editor.adapters.docx_adapter import extract_inventory, parse_docx_structure
from gost_editor.adapters.styles import twips_to_mm
from gost_editor.errors import MalformedDocumentError
from gost_editor.verify import verify_structure

from docx_builders import PNG_1X1, gost_margins, index_of, report_document, to_bytes


def test_paragraphs_keep_document_order():
    doc = Document()
    texts = ["Первый", "Второй", "", "Третий", "Четвёртый"]
    for t in texts:
        doc.add_paragraph(t)
    structure = parse_docx_structure(to_bytes(doc))
    assert [p.text for p in structure.paragraphs] == texts
    assert [p.index for p in structure.paragraphs] == list(range(len(texts)))


def test_run_formatting_merges_style_chain_and_direct_properties():
    doc = Document()
    doc.styles["Normal"].font.size = Pt(14)
    style = doc.styles.add_style("Body GOST", WD_STYLE_TYPE.PARAGRAPH)
    style.base_style = doc.styles["Normal"]
    style.font.name = "Times New Roman"
    style.paragraph_format.alignment = WD_ALIGN_PARAGRAPH.JUSTIFY
    style.paragraph_format.line_spacing = 1.5
    style.paragraph_format.first_line_indent = Mm(12.5)

    p = doc.add_paragraph(style="Body GOST")
    p.add_run("обычный ")
    p.add_run("жирный").bold = True
    structure = parse_docx_structure(to_bytes(doc))

    node = structure.paragraphs[0]
    assert node.style_name == "Body GOST"
    assert node.format.alignment == "justify"
    assert node.format.line_spacing == pytest.approx(1.5)
    assert node.format.indent_first_line_mm == pytest.approx(12.5, abs=0.05)
    plain, bold = node.runs
    assert plain.format.font == "Times New Roman"
    assert plain.format.size_pt == 14.0
    assert plain.format.bold is False
    assert bold.format.bold is True
    assert bold.format.font == "Times New Roman"


def test_direct_run_font_overrides_style():
    doc = Document()
    doc.styles["Normal"].font.name = "Times New Roman"
    run = doc.add_paragraph().add_run("Arial text")
    run.font.name = "Arial"
    structure = parse_docx_structure(to_bytes(doc))
    assert structure.paragraphs[0].runs[0].format.font == "Arial"


def test_embedded_objects_tables_and_media_are_counted():
    data = report_document()
    structure = parse_docx_structure(data)
    assert structure.image_count == 1
    figure = next(p for p in structure.paragraphs if p.has_embedded_object)
    assert figure.text == ""
    assert figure.runs[0].has_embedded_object

    assert len(structure.tables) == 1
    caption = index_of(structure.paragraphs, "Таблица 1 – Показатели")
    assert structure.tables[0].after_paragraph_index == caption
    # table cell paragraphs are not part of the paragraph sequence
    assert "Показатель" not in [p.text for p in structure.paragraphs]

    inventory = extract_inventory(open_package(data))
    assert inventory.embedded_object_count == 1
    assert inventory.table_count == 1
    assert len(inventory.media) == 1


def test_pictures_inside_table_cells_are_counted():
    doc = Document()
    doc.add_paragraph("Таблица 1 – Схемы")
    cell = doc.add_table(rows=1, cols=2).cell(0, 0)
    cell.paragraphs[0].add_run().add_picture(io.BytesIO(PNG_1X1), width=Mm(10))
    package = open_package(to_bytes(doc))
    before = extract_inventory(package)
    assert before.embedded_object_count == 1

    root = package.read_xml(DOCUMENT_PART)
    drawing = next(root.iter(qn("w:drawing")))
    drawing.getparent().remove(drawing)
    package.set_part(DOCUMENT_PART, serialize_xml(root))
    after = extract_inventory(open_package(write_package(package)))
    assert after.embedded_object_count == 0
    assert verify_structure(before, after) == ["embedded object count changed: 1 -> 0"]


def test_section_margins_are_read_in_mm():
    doc = gost_margins(Document())
    structure = parse_docx_structure(to_bytes(doc))
    margins = structure.sections[0].margins_mm
    assert margins["top"] == pytest.approx(20.0, abs=0.01)
    assert margins["left"] == pytest.approx(30.0, abs=0.01)
    assert margins["right"] == pytest.approx(15.0, abs=0.01)
    assert structure.sections[0].paragraph_index is None


def test_twips_conversion():
    assert twips_to_mm("567") == pytest.approx(10.0, abs=0.01)
    assert twips_to_mm(None) is None
    assert twips_to_mm("abc") is None


def test_garbage_buffer_is_malformed():
    with pytest.raises(MalformedDocumentError):
        parse_docx_structure(b"this is not a zip file")
    with pytest.raises(MalformedDocumentError):
        parse_docx_structure(b"")


def test_zip_without_document_part_is_malformed():
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("hello.txt", "hi")
    with pytest.raises(MalformedDocumentError) as exc:
        open_package(buf.getvalue())
    assert exc.value.code == "malformed_document"


def test_broken_document_markup_is_malformed():
    src = open_package(to_bytes(Document()))
    src.set_part("word/document.xml", b"<w:document><unclosed>")
    with pytest.raises(MalformedDocumentError):
        parse_docx_structure(write_package(src))


def test_untouched_parts_are_written_back_byte_for_byte():
    doc = Document()
    doc.add_paragraph("Текст")
    doc.add_picture(io.BytesIO(PNG_1X1))
    data = to_bytes(doc)

    original = open_package(data)
    rewritten = open_package(write_package(original))
    assert rewritten.part_names == original.part_names
    for name in original.part_names:
        assert rewritten.read_part(name) == original.read_part(name)
