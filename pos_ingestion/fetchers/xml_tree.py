"""
XML -> plain tree conversion for xml and soap payloads.

The mapping engine only walks Mapping/Sequence/scalar trees, so XML
responses are converted to that shape first:

    - namespace prefixes are stripped (``soap:Body`` -> ``Body``)
    - each child element becomes a key; repeated tags become a list
    - attributes are merged into the element's dict
    - a text-only element becomes its (stripped) text
    - text next to children or attributes is kept under ``"_"``
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any

TEXT_KEY = "_"


def local_name(tag: str) -> str:
    """``{uri}name`` or ``prefix:name`` -> ``name``."""
    if "}" in tag:
        tag = tag.rsplit("}", 1)[1]
    if ":" in tag:
        tag = tag.rsplit(":", 1)[1]
    return tag


def element_to_tree(element: ET.Element) -> Any:
    children = list(element)
    text = (element.text or "").strip()
    if not children and not element.attrib:
        return text

    node: dict[str, Any] = {local_name(k): v for k, v in element.attrib.items()}
    for child in children:
        key = local_name(child.tag)
        value = element_to_tree(child)
        if key not in node:
            node[key] = value
        elif isinstance(node[key], list):
            node[key].append(value)
        else:
            node[key] = [node[key], value]
    if text:
        node[TEXT_KEY] = text
    return node


def parse_xml(document: str | bytes) -> dict[str, Any]:
    """
    Parse an XML document into ``{root_name: tree}``.

    Raises:
        xml.etree.ElementTree.ParseError: the document is not well-formed.
    """
    root = ET.fromstring(document)
    return {local_name(root.tag): element_to_tree(root)}
