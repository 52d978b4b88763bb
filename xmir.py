"""
XMIR reader: turns one parsed `.xmir` file into comments + a RawNode forest.

Expected shape:

    <program>
      <comments><comment line="3">text</comment>...</comments>
      <objects>
        <o name="app" line="4" pos="0" base="...">
          <o name="x" line="5" pos="2"/>
        </o>
      </objects>
    </program>

Attributes that are missing or not integers are kept as None; the classifier
decides what to drop.
"""

from __future__ import annotations

import os
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Optional, Union

from abstracts import Comment, RawNode


XMIR_EXT = ".xmir"


class XmirParseError(ValueError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"{path or '<string>'}: {reason}")
        self.path = path
        self.reason = reason


@dataclass
class SourceUnit:
    path: str
    comments: list[Comment] = field(default_factory=list)
    nodes: list[RawNode] = field(default_factory=list)


def _int_attr(el, name: str) -> Optional[int]:
    raw = el.get(name)
    if raw is None:
        return None
    try:
        return int(raw.strip(), 10)
    except ValueError:
        return None


def _first(el, tag: str):
    return el.find(tag) if el is not None else None


def extract_comments(comments_el) -> list[Comment]:
    if comments_el is None:
        return []
    out = []
    for c in comments_el.findall("comment"):
        line = _int_attr(c, "line")
        if line is None:
            continue
        out.append(Comment(line=line, text=c.text or ""))
    return out


def _node_from(el) -> RawNode:
    return RawNode(
        name=el.get("name"),
        line=_int_attr(el, "line"),
        pos=_int_attr(el, "pos"),
        base=el.get("base"),
    )


def extract_node(el) -> RawNode:
    """Convert an <o> element and every nested <o> below it."""
    root = _node_from(el)
    pending = [(el, root)]
    while pending:
        cur_el, cur = pending.pop()
        for ch in cur_el.findall("o"):
            node = _node_from(ch)
            cur.children.append(node)
            pending.append((ch, node))
    return root


def parse_xmir(text: Union[str, bytes], path: str = "") -> SourceUnit:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise XmirParseError(path, f"invalid XML: {e}") from e

    if root.tag != "program":
        raise XmirParseError(path, f"expected <program> root, got <{root.tag}>")

    objects_el = _first(root, "objects")
    nodes = [extract_node(o) for o in objects_el.findall("o")] if objects_el is not None else []
    return SourceUnit(path=path, comments=extract_comments(_first(root, "comments")), nodes=nodes)


def load_xmir(path: str) -> SourceUnit:
    # bytes, so the XML declaration picks the encoding
    with open(path, "rb") as f:
        data = f.read()
    return parse_xmir(data, path=path)


def is_xmir_file(path: str) -> bool:
    return path.endswith(XMIR_EXT)


def find_xmir_files(root_dir: str) -> list[str]:
    """All .xmir files below `root_dir`, sorted so runs are reproducible."""
    found = []
    for root, _, files in os.walk(root_dir):
        for f in files:
            if is_xmir_file(f):
                found.append(os.path.join(root, f))
    return sorted(found)
