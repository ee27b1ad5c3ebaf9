from __future__ import annotations
from typing import List
import logging

from gost_editor.adapters.container import open_package
from gost_editor.adapters.docx_adapter import extract_inventory
from gost_editor.errors import MalformedDocumentError, SerializationError
from gost_editor.ir import StructureInventory

logger = logging.getLogger(__name__)


def verify_structure(pre: StructureInventory, post: StructureInventory) -> List[str]:
    """Differences that mean content was lost or altered; empty when preserved."""
    problems: List[str] = []
    if post.paragraph_count != pre.paragraph_count:
        problems.append(f"paragraph count changed: {pre.paragraph_count} -> {post.paragraph_count}")
    if post.embedded_object_count != pre.embedded_object_count:
        problems.append(f"embedded object count changed: {pre.embedded_object_count} -> {post.embedded_object_count}")
    if post.table_count != pre.table_count:
        problems.append(f"table count changed: {pre.table_count} -> {post.table_count}")
    for name, digest in pre.media.items():
        if post.media.get(name) != digest:
            problems.append(f"media part {name} missing or modified")
    return problems


def verify_output(pre: StructureInventory, output: bytes, label: str) -> StructureInventory:
    """Re-open a written document and check it against the source inventory."""
    try:
        post = extract_inventory(open_package(output))
    except MalformedDocumentError as e:
        raise SerializationError(f"{label} cannot be re-opened: {e}", {"output": label})
    problems = verify_structure(pre, post)
    if problems:
        raise SerializationError(f"{label} failed verification: {'; '.join(problems)}",
                                 {"output": label, "problems": problems})
    logger.debug(f"{label} verified: {post.paragraph_count} paragraphs, {post.embedded_object_count} objects")
    return post
