
from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Iterable, List, Optional

from ..contracts import CompletedPart
from ..errors import ProtocolError


def _local(tag: str) -> str:
    # "{http://s3.amazonaws.com/doc/2006-03-01/}Key" -> "Key"
    return tag.rsplit("}", 1)[-1]


def parse(text: str) -> ET.Element:
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        raise ProtocolError(f"malformed XML from store: {e}") from e


def find_text(root: ET.Element, tag: str) -> Optional[str]:
    for el in root.iter():
        if _local(el.tag) == tag:
            return el.text or None
    return None


def find_all(root: ET.Element, tag: str) -> List[ET.Element]:
    return [el for el in root.iter() if _local(el.tag) == tag]


def listed_keys(root: ET.Element) -> List[str]:
    keys = []
    for contents in find_all(root, "Contents"):
        for child in contents:
            if _local(child.tag) == "Key" and child.text:
                keys.append(child.text)
                break
    return keys


def completion_body(parts: Iterable[CompletedPart]) -> bytes:
    root = ET.Element("CompleteMultipartUpload")
    for part in sorted(parts, key=lambda p: p.part_number):
        el = ET.SubElement(root, "Part")
        ET.SubElement(el, "PartNumber").text = str(part.part_number)
        ET.SubElement(el, "ETag").text = part.etag
    return ET.tostring(root, encoding="unicode").encode("utf-8")
