"""
Abstract/Object classifier for parsed XMIR object trees.

Input is a forest of generic parse-tree nodes plus a flat list of line-anchored
comments. Output is a two-tier documentation model:
- Abstract: a named container with nested Abstracts and leaf Objects.
- ObjectEntry: a leaf entry; its own descendants are never shown.

Rules:
- Placeholder names (Unnamed, @, λ) hide the node and its whole subtree.
- A node without a line is dropped.
- Root ids are claimed once per run through an IdentityRegistry; later roots
  with the same id are dropped with their subtree (never merged).
- Child names are unique within one Abstract (first occurrence wins).
"""

from __future__ import annotations

import threading
import weakref
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Union


RESERVED_NAMES = frozenset({"Unnamed", "@", "λ"})
ID_SEPARATOR = "_"
_EXHAUSTED = object()

VERBOSE = True


def log(msg: str):
    if VERBOSE:
        print(msg, flush=True)


def is_reserved(name: Optional[str]) -> bool:
    """Empty names and placeholder names never reach the output."""
    return not name or name in RESERVED_NAMES


@dataclass
class Comment:
    line: int
    text: str


class CommentIndex(dict):
    """line -> stripped comment text; unknown lines read as ''."""

    def __missing__(self, line) -> str:
        return ""


def build_comment_index(comments: Iterable[Comment]) -> CommentIndex:
    # Sources carry one comment per line; if not, the later one wins.
    index = CommentIndex()
    for c in comments:
        index[c.line] = (c.text or "").strip()
    return index


class IdentityRegistry:
    """
    Root ids already emitted during one generation run.

    Create one per run and hand it to every Classifier of that run. `claim`
    runs `has_seen` + `mark_seen` under one lock; calling the two separately
    is only safe from a single thread.
    """

    def __init__(self):
        self._seen: set[str] = set()
        self._lock = threading.RLock()

    def has_seen(self, uid: str) -> bool:
        with self._lock:
            return uid in self._seen

    def mark_seen(self, uid: str) -> None:
        with self._lock:
            self._seen.add(uid)

    def claim(self, uid: str) -> bool:
        with self._lock:
            if self.has_seen(uid):
                return False
            self.mark_seen(uid)
            return True

    def reset(self) -> None:
        with self._lock:
            self._seen.clear()

    def __contains__(self, uid) -> bool:
        return self.has_seen(uid)

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)


@dataclass
class RawNode:
    name: Optional[str] = None
    line: Optional[int] = None
    pos: Optional[int] = None
    base: Optional[str] = None
    children: list[RawNode] = field(default_factory=list)


@dataclass
class ObjectEntry:
    kind = "object"

    name: str
    line: int
    pos: Optional[int] = None
    comment: str = ""
    base: str = ""
    is_question: bool = False

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "name": self.name,
            "line": self.line,
            "pos": self.pos,
            "comment": self.comment,
            "base": self.base,
            "is_question": self.is_question,
        }


@dataclass
class Abstract:
    kind = "abstract"

    name: str
    unique_id: str
    line: int
    pos: Optional[int] = None
    comment: str = ""
    base: str = ""
    is_question: bool = False
    parent_ref: Optional[weakref.ref] = field(default=None, repr=False, compare=False)
    children_abstracts: list[Abstract] = field(default_factory=list)
    child_objects: list[ObjectEntry] = field(default_factory=list)
    _object_names: set[str] = field(default_factory=set, init=False, repr=False, compare=False)
    _abstract_ids: set[str] = field(default_factory=set, init=False, repr=False, compare=False)

    @property
    def parent(self) -> Optional[Abstract]:
        return self.parent_ref() if self.parent_ref is not None else None

    @property
    def depth(self) -> int:
        d = 0
        p = self.parent
        while p is not None:
            d += 1
            p = p.parent
        return d

    def breadcrumbs(self) -> list[str]:
        """Names from the root Abstract down to this one."""
        names = []
        node: Optional[Abstract] = self
        while node is not None:
            names.append(node.name)
            node = node.parent
        return names[::-1]

    def has_object(self, name: str) -> bool:
        return name in self._object_names

    def has_abstract(self, unique_id: str) -> bool:
        return unique_id in self._abstract_ids

    def add_object(self, obj: ObjectEntry) -> bool:
        """Append `obj` unless an Object with that name is already here."""
        if obj.name in self._object_names:
            return False
        self._object_names.add(obj.name)
        self.child_objects.append(obj)
        return True

    def add_abstract(self, child: Abstract) -> None:
        self._abstract_ids.add(child.unique_id)
        self.children_abstracts.append(child)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "name": self.name,
            "unique_id": self.unique_id,
            "line": self.line,
            "pos": self.pos,
            "comment": self.comment,
            "base": self.base,
            "is_question": self.is_question,
            "children_abstracts": [a.to_dict() for a in self.children_abstracts],
            "child_objects": [o.to_dict() for o in self.child_objects],
        }


Entry = Union[Abstract, ObjectEntry]


def iter_abstracts(forest: Iterable[Abstract]) -> Iterator[Abstract]:
    """Depth-first, pre-order walk over every Abstract of a forest."""
    stack = list(reversed(list(forest)))
    while stack:
        a = stack.pop()
        yield a
        stack.extend(reversed(a.children_abstracts))


class Classifier:
    """
    Turns RawNode forests into Abstract forests.

    `classify` handles root-level nodes of one source unit; nested levels go
    through `_classify_nested`. Both share the visibility and significance
    rules below. No input shape makes this raise.
    """

    def __init__(self, registry: Optional[IdentityRegistry] = None, skip_uncommented: bool = False):
        self.registry = registry if registry is not None else IdentityRegistry()
        self.skip_uncommented = bool(skip_uncommented)

    # -- shared rules -----------------------------------------------------

    def _visible(self, node: RawNode, comments: CommentIndex, report: bool = False) -> bool:
        if is_reserved(node.name) or node.line is None:
            return False
        if self.skip_uncommented and not comments[node.line]:
            if report:
                log(f"[SKIP] '{node.name}' (line {node.line}) has no comment")
            return False
        return True

    def _visible_children(self, node: RawNode, comments: CommentIndex) -> list[RawNode]:
        return [c for c in (node.children or []) if self._visible(c, comments)]

    def _has_significant_children(self, node: RawNode, comments: CommentIndex) -> bool:
        # depth >= 2: some visible child must itself have any child at all
        return any(c.children for c in self._visible_children(node, comments))

    @staticmethod
    def _make_object(node: RawNode, comments: CommentIndex) -> ObjectEntry:
        return ObjectEntry(
            name=node.name,
            line=node.line,
            pos=node.pos,
            comment=comments[node.line],
            base=node.base or "",
            is_question="?" in node.name,
        )

    @staticmethod
    def _make_abstract(
        node: RawNode, comments: CommentIndex, parent: Optional[Abstract]
    ) -> Abstract:
        uid = f"{parent.unique_id}{ID_SEPARATOR}{node.name}" if parent is not None else node.name
        return Abstract(
            name=node.name,
            unique_id=uid,
            line=node.line,
            pos=node.pos,
            comment=comments[node.line],
            base=node.base or "",
            is_question="?" in node.name,
            parent_ref=weakref.ref(parent) if parent is not None else None,
        )

    # -- root level -------------------------------------------------------

    def classify(self, nodes: Optional[Iterable[RawNode]], comments: CommentIndex) -> list[Abstract]:
        forest: list[Abstract] = []
        for node in nodes or []:
            if not self._visible(node, comments, report=True):
                continue
            if not self.registry.claim(node.name):
                log(f"[INFO] Duplicate root '{node.name}' (line {node.line}) dropped")
                continue

            abstract = self._make_abstract(node, comments, None)
            forest.append(abstract)

            children = [c for c in node.children or [] if self._visible(c, comments, report=True)]
            for child in children:
                if self._visible_children(child, comments):
                    nested = self._make_abstract(child, comments, abstract)
                    abstract.add_abstract(nested)
                    self._classify_nested(child.children, comments, nested)
                else:
                    abstract.add_object(self._make_object(child, comments))

            self._backfill(abstract, children, comments)
        return forest

    def _backfill(self, abstract: Abstract, children: list[RawNode], comments: CommentIndex) -> None:
        # Every visible direct child ends up either nested or as an Object.
        for child in children:
            uid = f"{abstract.unique_id}{ID_SEPARATOR}{child.name}"
            if abstract.has_abstract(uid) or abstract.has_object(child.name):
                continue
            abstract.add_object(self._make_object(child, comments))

    # -- nested levels ----------------------------------------------------

    def _classify_nested(
        self, nodes: Optional[Iterable[RawNode]], comments: CommentIndex, parent: Abstract
    ) -> None:
        # stack of (sibling iterator, owning Abstract); nodes are visited in pre-order
        stack = [(iter(nodes or []), parent)]
        while stack:
            siblings, owner = stack[-1]
            node = next(siblings, _EXHAUSTED)
            if node is _EXHAUSTED:
                stack.pop()
                continue
            if not self._visible(node, comments, report=True):
                continue

            if self._has_significant_children(node, comments):
                nested = self._make_abstract(node, comments, owner)
                owner.add_abstract(nested)
                stack.append((iter(node.children), nested))
                continue

            owner.add_object(self._make_object(node, comments))
            if node.children:
                # no intermediate level for a non-significant node
                stack.append((iter(node.children), owner))


def build_abstracts(
    nodes: Optional[Iterable[RawNode]],
    comments: Iterable[Comment],
    registry: Optional[IdentityRegistry] = None,
    skip_uncommented: bool = False,
) -> list[Abstract]:
    classifier = Classifier(registry=registry, skip_uncommented=skip_uncommented)
    return classifier.classify(nodes, build_comment_index(comments))
