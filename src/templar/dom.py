"""Document tree — the surfaces templates render into.

A deliberately small DOM: elements, text, shadow roots and a document,
with HTML parsing through ``html.parser``, a CSS selector subset and
bubbling events.

Subtree changes are not observed implicitly. Every insertion notifies
the observers registered on the parent and its ancestors (stopping at a
shadow root, like ``MutationObserver`` with ``subtree: true``), and
connecting an element whose tag is registered in the document's
``custom_elements`` upgrades it and calls its controller's
``connected()``.

Selector subset::

    div  *  #id  .cls  [attr]  [attr=v]  [attr^=v]  [attr$=v]  [attr*=v]
    :not(<compound>)   a b   a > b   a, b
"""

from __future__ import annotations

import functools
import html
import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Any

logger = logging.getLogger("templar.dom")

VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "source", "track", "wbr",
})
RAW_TEXT_ELEMENTS = frozenset({"script", "style"})

Listener = Callable[["Event"], Any]
Observer = Callable[["Node", list["Node"]], Any]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class Event:
    """A dispatched event.

    ``composed`` events bubble out of a shadow root into its host;
    listeners outside the shadow tree see ``target`` retargeted to the host.
    """

    __slots__ = (
        "_stopped",
        "alt_key",
        "bubbles",
        "button",
        "cancelable",
        "composed",
        "ctrl_key",
        "current_target",
        "default_prevented",
        "detail",
        "meta_key",
        "shift_key",
        "target",
        "type",
    )

    def __init__(
        self,
        type: str,  # noqa: A002
        *,
        detail: Any = None,
        bubbles: bool = False,
        composed: bool = False,
        cancelable: bool = True,
        button: int = 0,
        meta_key: bool = False,
        ctrl_key: bool = False,
        alt_key: bool = False,
        shift_key: bool = False,
    ) -> None:
        self.type = type
        self.detail = detail
        self.bubbles = bubbles
        self.composed = composed
        self.cancelable = cancelable
        self.button = button
        self.meta_key = meta_key
        self.ctrl_key = ctrl_key
        self.alt_key = alt_key
        self.shift_key = shift_key
        self.target: Node | None = None
        self.current_target: Node | None = None
        self.default_prevented = False
        self._stopped = False

    def prevent_default(self) -> None:
        if self.cancelable:
            self.default_prevented = True

    def stop_propagation(self) -> None:
        self._stopped = True

    def __repr__(self) -> str:
        return f"Event({self.type!r}, detail={self.detail!r})"


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

class Node:
    """Base tree node: children, listeners and insertion observers."""

    def __init__(self) -> None:
        self.parent: Node | None = None
        self.children: list[Node] = []
        self._listeners: dict[str, list[Listener]] = {}
        self._observers: list[Observer] = []

    # -- tree ---------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return isinstance(self._composed_root(), Document)

    @property
    def owner_document(self) -> Document | None:
        root = self._composed_root()
        return root if isinstance(root, Document) else None

    def _composed_root(self) -> Node:
        node: Node = self
        while True:
            while node.parent is not None:
                node = node.parent
            if isinstance(node, ShadowRoot) and node.host is not None:
                node = node.host
                continue
            return node

    def append_child(self, node: Node) -> Node:
        return self.insert_before(node, None)

    def insert_before(self, node: Node, reference: Node | None) -> Node:
        if node.parent is not None:
            node.parent.remove_child(node)
        index = len(self.children) if reference is None else self.children.index(reference)
        node.parent = self
        self.children.insert(index, node)
        self._after_insert([node])
        return node

    def remove_child(self, node: Node) -> Node:
        was_connected = node.is_connected
        self.children.remove(node)
        node.parent = None
        if was_connected:
            _disconnect_tree(node)
        return node

    def remove(self) -> None:
        if self.parent is not None:
            self.parent.remove_child(self)

    def replace_children(self, nodes: list[Node]) -> None:
        """Drop every child and insert *nodes* in one step."""
        old = self.children
        connected = self.is_connected
        self.children = []
        for child in old:
            child.parent = None
            if connected:
                _disconnect_tree(child)
        for child in nodes:
            if child.parent is not None:
                child.parent.remove_child(child)
            child.parent = self
            self.children.append(child)
        if nodes:
            self._after_insert(list(nodes))

    def _after_insert(self, nodes: list[Node]) -> None:
        if self.is_connected:
            for node in nodes:
                _connect_tree(node)
        current: Node | None = self
        while current is not None:
            for observer in list(current._observers):
                try:
                    observer(self, nodes)
                except Exception:
                    logger.exception("Insertion observer failed")
            current = current.parent

    def observe(self, callback: Observer) -> Callable[[], None]:
        """Call *callback(parent, nodes)* for every insertion in this subtree.

        Returns an unsubscribe function. Shadow trees below this node are
        not included; observe their roots directly.
        """
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def iter_elements(self) -> Iterator[Element]:
        """Pre-order walk of descendant elements, not entering shadow roots."""
        stack = list(reversed(self.children))
        while stack:
            node = stack.pop()
            if isinstance(node, Element):
                yield node
            stack.extend(reversed(node.children))

    @property
    def text_content(self) -> str:
        return "".join(
            child.data if isinstance(child, Text) else child.text_content
            for child in self.children
        )

    # -- html ---------------------------------------------------------------

    @property
    def inner_html(self) -> str:
        return "".join(serialize(child) for child in self.children)

    def set_inner_html(self, markup: str) -> None:
        """Fully replace this node's children with parsed *markup*."""
        self.replace_children(parse_html(markup))

    # -- selectors ----------------------------------------------------------

    def query_selector(self, selector: str) -> Element | None:
        compiled = parse_selector(selector)
        for el in self.iter_elements():
            if _matches_any(el, compiled):
                return el
        return None

    def query_selector_all(self, selector: str) -> list[Element]:
        compiled = parse_selector(selector)
        return [el for el in self.iter_elements() if _matches_any(el, compiled)]

    # -- events -------------------------------------------------------------

    def add_event_listener(self, type: str, listener: Listener) -> None:  # noqa: A002
        bucket = self._listeners.setdefault(type, [])
        if listener not in bucket:
            bucket.append(listener)

    def remove_event_listener(self, type: str, listener: Listener) -> None:  # noqa: A002
        bucket = self._listeners.get(type)
        if bucket and listener in bucket:
            bucket.remove(listener)

    def listener_count(self, type: str) -> int:  # noqa: A002
        return len(self._listeners.get(type, ()))

    def dispatch_event(self, event: Event) -> bool:
        """Dispatch *event* at this node.

        Returns ``False`` if a listener called ``prevent_default()``.
        Listener failures are logged and do not stop dispatch.
        """
        event.target = self
        node: Node | None = self
        while node is not None:
            event.current_target = node
            for listener in list(node._listeners.get(event.type, ())):
                try:
                    listener(event)
                except Exception:
                    logger.exception("Listener for %r failed", event.type)
            if event._stopped or not event.bubbles:
                break
            if isinstance(node, ShadowRoot):
                if not event.composed:
                    break
                node = node.host
                event.target = node
            else:
                node = node.parent
        event.current_target = None
        return not event.default_prevented


class Text(Node):
    def __init__(self, data: str) -> None:
        super().__init__()
        self.data = data

    @property
    def text_content(self) -> str:
        return self.data

    def __repr__(self) -> str:
        return f"Text({self.data!r})"


class Element(Node):
    """An element with ordered attributes and an optional shadow root.

    ``controller`` holds the custom-element behavior object once the
    element has been upgraded.
    """

    def __init__(self, tag_name: str, attributes: dict[str, str] | None = None) -> None:
        super().__init__()
        self.tag_name = tag_name.lower()
        self.attributes: dict[str, str] = dict(attributes or {})
        self.shadow_root: ShadowRoot | None = None
        self.controller: Any = None

    def __repr__(self) -> str:
        return f"<{self.tag_name}>"

    @property
    def id(self) -> str:
        return self.attributes.get("id", "")

    @property
    def class_list(self) -> list[str]:
        return self.attributes.get("class", "").split()

    def get_attribute(self, name: str) -> str | None:
        return self.attributes.get(name.lower())

    def has_attribute(self, name: str) -> bool:
        return name.lower() in self.attributes

    def get_attribute_names(self) -> list[str]:
        return list(self.attributes)

    def set_attribute(self, name: str, value: Any) -> None:
        name = name.lower()
        old = self.attributes.get(name)
        self.attributes[name] = str(value)
        self._attribute_changed(name, old, self.attributes[name])

    def remove_attribute(self, name: str) -> None:
        name = name.lower()
        if name in self.attributes:
            old = self.attributes.pop(name)
            self._attribute_changed(name, old, None)

    def _attribute_changed(self, name: str, old: str | None, new: str | None) -> None:
        controller = self.controller
        if controller is None:
            return
        observed = getattr(controller, "observed_attributes", None)
        if observed is not None and name not in observed:
            return
        controller.attribute_changed(name, old, new)

    def attach_shadow(self, mode: str = "open") -> ShadowRoot:
        if self.shadow_root is not None:
            msg = f"<{self.tag_name}> already has a shadow root"
            raise RuntimeError(msg)
        self.shadow_root = ShadowRoot(self, mode)
        return self.shadow_root

    def matches(self, selector: str) -> bool:
        return _matches_any(self, parse_selector(selector))

    def closest(self, selector: str) -> Element | None:
        compiled = parse_selector(selector)
        node: Node | None = self
        while isinstance(node, Element):
            if _matches_any(node, compiled):
                return node
            node = node.parent
        return None

    def click(self, **modifiers: Any) -> bool:
        """Dispatch a bubbling, composed ``click`` at this element."""
        return self.dispatch_event(Event("click", bubbles=True, composed=True, **modifiers))


class ShadowRoot(Node):
    """Encapsulated surface attached to a host element."""

    def __init__(self, host: Element, mode: str = "open") -> None:
        super().__init__()
        self.host = host
        self.mode = mode

    def __repr__(self) -> str:
        return f"#shadow-root({self.host.tag_name})"


class Document(Node):
    """Top of a tree: ``<html>`` with ``<head>`` and ``<body>``.

    ``custom_elements`` is the registry consulted when elements connect;
    ``default_view`` is the owning ``Window``.
    """

    def __init__(self, body: str = "", head: str = "") -> None:
        super().__init__()
        self.title = ""
        self.custom_elements: Any = None
        self.default_view: Any = None
        self.document_element = Element("html")
        self.head = Element("head")
        self.body = Element("body")
        self.document_element.children = [self.head, self.body]
        self.head.parent = self.document_element
        self.body.parent = self.document_element
        self.children = [self.document_element]
        self.document_element.parent = self
        if head:
            self.head.set_inner_html(head)
        if body:
            self.body.set_inner_html(body)

    def __repr__(self) -> str:
        return "#document"

    def create_element(self, tag_name: str) -> Element:
        return Element(tag_name)


def iter_shadow_inclusive(root: Node) -> Iterator[Element]:
    """Walk elements under *root*, descending into every shadow root."""
    for el in root.iter_elements():
        yield el
        if el.shadow_root is not None:
            yield from iter_shadow_inclusive(el.shadow_root)


def _connect_tree(node: Node) -> None:
    if not isinstance(node, Element):
        for child in list(node.children):
            _connect_tree(child)
        return
    registry = getattr(node.owner_document, "custom_elements", None)
    if node.controller is None and registry is not None:
        registry.upgrade(node)
    if node.controller is not None:
        node.controller.connected()
    if node.shadow_root is not None:
        for child in list(node.shadow_root.children):
            _connect_tree(child)
    for child in list(node.children):
        _connect_tree(child)


def _disconnect_tree(node: Node) -> None:
    if isinstance(node, Element):
        if node.controller is not None:
            node.controller.disconnected()
        if node.shadow_root is not None:
            for child in list(node.shadow_root.children):
                _disconnect_tree(child)
    for child in list(node.children):
        _disconnect_tree(child)


# ---------------------------------------------------------------------------
# Parsing and serialization
# ---------------------------------------------------------------------------

class _TreeBuilder(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.root = Node()
        self._stack: list[Node] = [self.root]

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        el = Element(tag, {name: value or "" for name, value in attrs})
        el.parent = self._stack[-1]
        self._stack[-1].children.append(el)
        if el.tag_name not in VOID_ELEMENTS:
            self._stack.append(el)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        el = Element(tag, {name: value or "" for name, value in attrs})
        el.parent = self._stack[-1]
        self._stack[-1].children.append(el)

    def handle_endtag(self, tag: str) -> None:
        tag = tag.lower()
        for index in range(len(self._stack) - 1, 0, -1):
            node = self._stack[index]
            if isinstance(node, Element) and node.tag_name == tag:
                del self._stack[index:]
                return

    def handle_data(self, data: str) -> None:
        parent = self._stack[-1]
        if parent.children and isinstance(parent.children[-1], Text):
            parent.children[-1].data += data
            return
        text = Text(data)
        text.parent = parent
        parent.children.append(text)


def parse_html(markup: str) -> list[Node]:
    """Parse an HTML fragment into detached top-level nodes."""
    builder = _TreeBuilder()
    builder.feed(markup)
    builder.close()
    nodes = builder.root.children
    for node in nodes:
        node.parent = None
    return nodes


def serialize(node: Node) -> str:
    if isinstance(node, Text):
        parent = node.parent
        if isinstance(parent, Element) and parent.tag_name in RAW_TEXT_ELEMENTS:
            return node.data
        return html.escape(node.data, quote=False)
    if isinstance(node, Element):
        attrs = "".join(
            f' {name}="{html.escape(value, quote=True)}"' if value != "" else f" {name}"
            for name, value in node.attributes.items()
        )
        if node.tag_name in VOID_ELEMENTS:
            return f"<{node.tag_name}{attrs}>"
        inner = "".join(serialize(child) for child in node.children)
        return f"<{node.tag_name}{attrs}>{inner}</{node.tag_name}>"
    return "".join(serialize(child) for child in node.children)


# ---------------------------------------------------------------------------
# Selectors
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class _Compound:
    tag: str | None
    ids: tuple[str, ...]
    classes: tuple[str, ...]
    attrs: tuple[tuple[str, str | None, str | None], ...]
    nots: tuple[_Compound, ...]


# A complex selector: compounds joined by combinators (" " or ">").
# combinators[i] joins compounds[i - 1] and compounds[i]; combinators[0] is "".
@dataclass(frozen=True, slots=True)
class _Complex:
    compounds: tuple[_Compound, ...]
    combinators: tuple[str, ...]


_SIMPLE_RE = re.compile(
    r"""
      (?P<tag>\*|[a-zA-Z][\w-]*)
    | \#(?P<id>[\w-]+)
    | \.(?P<cls>[\w-]+)
    | \[\s*(?P<attr>[\w:-]+)\s*
        (?:(?P<op>[~^$*|]?=)\s*(?P<val>"[^"]*"|'[^']*'|[^\]\s]+)\s*)?\]
    | :not\((?P<not>[^)]*)\)
    """,
    re.VERBOSE,
)


def _split_top_level(text: str, sep: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    quote = ""
    start = 0
    for index, char in enumerate(text):
        if quote:
            if char == quote:
                quote = ""
        elif char in "\"'":
            quote = char
        elif char in "([":
            depth += 1
        elif char in ")]":
            depth -= 1
        elif char == sep and depth == 0:
            parts.append(text[start:index])
            start = index + 1
    parts.append(text[start:])
    return parts


def _parse_compound(text: str, pos: int, selector: str) -> tuple[_Compound, int]:
    tag: str | None = None
    ids: list[str] = []
    classes: list[str] = []
    attrs: list[tuple[str, str | None, str | None]] = []
    nots: list[_Compound] = []
    start = pos
    while pos < len(text):
        m = _SIMPLE_RE.match(text, pos)
        if m is None:
            break
        if m.group("tag"):
            if pos != start:
                break
            tag = None if m.group("tag") == "*" else m.group("tag").lower()
        elif m.group("id"):
            ids.append(m.group("id"))
        elif m.group("cls"):
            classes.append(m.group("cls"))
        elif m.group("attr"):
            value = m.group("val")
            if value is not None and value[:1] in "\"'":
                value = value[1:-1]
            attrs.append((m.group("attr").lower(), m.group("op"), value))
        else:
            inner = m.group("not").strip()
            compound, end = _parse_compound(inner, 0, selector)
            if end != len(inner):
                msg = f"Unsupported selector inside :not(): {selector!r}"
                raise ValueError(msg)
            nots.append(compound)
        pos = m.end()
    if pos == start:
        msg = f"Invalid selector: {selector!r}"
        raise ValueError(msg)
    return _Compound(tag, tuple(ids), tuple(classes), tuple(attrs), tuple(nots)), pos


@functools.lru_cache(maxsize=256)
def parse_selector(selector: str) -> tuple[_Complex, ...]:
    """Compile a selector list. Raises ``ValueError`` on unsupported syntax."""
    result: list[_Complex] = []
    for part in _split_top_level(selector, ","):
        text = part.strip()
        if not text:
            msg = f"Invalid selector: {selector!r}"
            raise ValueError(msg)
        compounds: list[_Compound] = []
        combinators: list[str] = [""]
        pos = 0
        while True:
            compound, pos = _parse_compound(text, pos, selector)
            compounds.append(compound)
            saw_space = False
            while pos < len(text) and text[pos].isspace():
                saw_space = True
                pos += 1
            if pos >= len(text):
                break
            if text[pos] == ">":
                combinators.append(">")
                pos += 1
                while pos < len(text) and text[pos].isspace():
                    pos += 1
            elif saw_space:
                combinators.append(" ")
            else:
                msg = f"Invalid selector: {selector!r}"
                raise ValueError(msg)
        result.append(_Complex(tuple(compounds), tuple(combinators)))
    return tuple(result)


def _matches_compound(el: Element, compound: _Compound) -> bool:
    if compound.tag is not None and el.tag_name != compound.tag:
        return False
    if compound.ids and any(el.id != ident for ident in compound.ids):
        return False
    if compound.classes:
        have = el.class_list
        if any(cls not in have for cls in compound.classes):
            return False
    for name, op, value in compound.attrs:
        actual = el.attributes.get(name)
        if actual is None:
            return False
        if op is None:
            continue
        assert value is not None
        if op == "=" and actual != value:
            return False
        if op == "^=" and not (value and actual.startswith(value)):
            return False
        if op == "$=" and not (value and actual.endswith(value)):
            return False
        if op == "*=" and not (value and value in actual):
            return False
        if op == "~=" and value not in actual.split():
            return False
        if op == "|=" and not (actual == value or actual.startswith(value + "-")):
            return False
    return not any(_matches_compound(el, neg) for neg in compound.nots)


def _matches_complex(el: Element, sel: _Complex, index: int) -> bool:
    if not _matches_compound(el, sel.compounds[index]):
        return False
    if index == 0:
        return True
    parent = el.parent
    if sel.combinators[index] == ">":
        return isinstance(parent, Element) and _matches_complex(parent, sel, index - 1)
    while isinstance(parent, Element):
        if _matches_complex(parent, sel, index - 1):
            return True
        parent = parent.parent
    return False


def _matches_any(el: Element, selectors: tuple[_Complex, ...]) -> bool:
    return any(_matches_complex(el, sel, len(sel.compounds) - 1) for sel in selectors)
