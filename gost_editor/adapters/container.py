"""
ZIP container I/O for .docx packages.

Parts are kept as raw bytes keyed by part name, in the original entry order.
Only parts explicitly replaced through ``set_part`` are re-serialized; every
other part (media, relationships, content types, styles) is written back
byte-for-byte with its original ZipInfo.
"""
from __future__ import annotations
from typing import Dict, List, Optional
import copy
import io
import logging
import threading
import zipfile

from lxml import etree
from docx.opc.constants import NAMESPACE as NS

from gost_editor.errors import MalformedDocumentError, SerializationError

logger = logging.getLogger(__name__)

DOCUMENT_PART = "word/document.xml"
DOCUMENT_RELS_PART = "word/_rels/document.xml.rels"
CONTENT_TYPES_PART = "[Content_Types].xml"
STYLES_PART = "word/styles.xml"
THEME_PART = "word/theme/theme1.xml"

_local = threading.local()


def _parser() -> etree.XMLParser:
    # lxml parsers must not be shared between threads
    parser = getattr(_local, "parser", None)
    if parser is None:
        parser = _local.parser = etree.XMLParser(resolve_entities=False, huge_tree=True, remove_blank_text=False)
    return parser


class DocxPackage:
    """In-memory view of a .docx container."""

    def __init__(self, infos: List[zipfile.ZipInfo], parts: Dict[str, bytes]):
        self._infos = infos
        self._parts = parts
        self._replaced: Dict[str, bytes] = {}

    @property
    def part_names(self) -> List[str]:
        names = [i.filename for i in self._infos]
        names.extend(n for n in self._replaced if n not in self._parts)
        return names

    def has_part(self, name: str) -> bool:
        return name in self._replaced or name in self._parts

    def read_part(self, name: str) -> bytes:
        if name in self._replaced:
            return self._replaced[name]
        try:
            return self._parts[name]
        except KeyError:
            raise MalformedDocumentError(f"Missing package part: {name}", {"part": name})

    def read_xml(self, name: str) -> etree._Element:
        data = self.read_part(name)
        try:
            return etree.fromstring(data, parser=_parser())
        except etree.XMLSyntaxError as e:
            raise MalformedDocumentError(f"Part {name} is not well-formed XML: {e}", {"part": name})

    def set_part(self, name: str, data: bytes) -> None:
        self._replaced[name] = data

    def copy(self) -> "DocxPackage":
        # part bytes are immutable; only the bookkeeping is duplicated
        pkg = DocxPackage([copy.copy(i) for i in self._infos], dict(self._parts))
        pkg._replaced = dict(self._replaced)
        return pkg

    @property
    def modified_parts(self) -> List[str]:
        return list(self._replaced)


def open_package(buffer: bytes) -> DocxPackage:
    """Read a .docx buffer into a DocxPackage."""
    if not buffer:
        raise MalformedDocumentError("Empty document buffer")
    try:
        with zipfile.ZipFile(io.BytesIO(buffer)) as zf:
            infos: List[zipfile.ZipInfo] = []
            parts: Dict[str, bytes] = {}
            for info in zf.infolist():
                if info.is_dir():
                    continue
                if info.filename in parts:
                    # duplicated entry: the last one wins, as in most readers
                    infos = [i for i in infos if i.filename != info.filename]
                infos.append(info)
                parts[info.filename] = zf.read(info)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, EOFError) as e:
        raise MalformedDocumentError(f"Cannot open document container: {e}")

    if DOCUMENT_PART not in parts:
        raise MalformedDocumentError(f"Container has no {DOCUMENT_PART}", {"parts": sorted(parts)[:50]})
    logger.debug(f"Opened package with {len(parts)} parts")
    return DocxPackage(infos, parts)


def write_package(package: DocxPackage) -> bytes:
    """Re-pack the container, swapping in replaced parts only."""
    out = io.BytesIO()
    try:
        with zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for info in package._infos:
                data = package._replaced.get(info.filename, package._parts[info.filename])
                zf.writestr(copy.copy(info), data)
            for name, data in package._replaced.items():
                if name in package._parts:
                    continue
                zf.writestr(zipfile.ZipInfo(name, date_time=(1980, 1, 1, 0, 0, 0)), data, compress_type=zipfile.ZIP_DEFLATED)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, ValueError, KeyError) as e:
        raise SerializationError(f"Cannot re-pack document container: {e}")
    return out.getvalue()


def serialize_xml(root: etree._Element) -> bytes:
    try:
        return etree.tostring(root, xml_declaration=True, encoding="UTF-8", standalone=True)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Cannot serialize markup: {e}")


def _ct(tag: str) -> str:
    return f"{{{NS.OPC_CONTENT_TYPES}}}{tag}"


def _rel(tag: str) -> str:
    return f"{{{NS.OPC_RELATIONSHIPS}}}{tag}"


def ensure_content_type_override(package: DocxPackage, part_name: str, content_type: str) -> None:
    """Add an <Override> for ``part_name`` to [Content_Types].xml unless present."""
    root = package.read_xml(CONTENT_TYPES_PART)
    partname = "/" + part_name.lstrip("/")
    for node in root.iter(_ct("Override")):
        if node.get("PartName") == partname:
            return
    override = etree.SubElement(root, _ct("Override"))
    override.set("PartName", partname)
    override.set("ContentType", content_type)
    package.set_part(CONTENT_TYPES_PART, serialize_xml(root))


def ensure_relationship(package: DocxPackage, rel_type: str, target: str, rels_part: str = DOCUMENT_RELS_PART) -> str:
    """Return the rId of a ``rel_type`` relationship, creating it when missing."""
    if package.has_part(rels_part):
        root = package.read_xml(rels_part)
    else:
        root = etree.Element(_rel("Relationships"), nsmap={None: NS.OPC_RELATIONSHIPS})

    used: List[int] = []
    for node in root.iter(_rel("Relationship")):
        if node.get("Type") == rel_type:
            return node.get("Id")
        rid: Optional[str] = node.get("Id")
        if rid and rid.startswith("rId") and rid[3:].isdigit():
            used.append(int(rid[3:]))

    new_id = f"rId{max(used, default=0) + 1}"
    rel = etree.SubElement(root, _rel("Relationship"))
    rel.set("Id", new_id)
    rel.set("Type", rel_type)
    rel.set("Target", target)
    package.set_part(rels_part, serialize_xml(root))
    return new_id
