"""
DOM Service for apidesk

A thin layer over an ``xml.dom.minidom`` document giving the rendering
services what they need from a browser DOM: element construction, id and
class lookup, closest() ancestor matching, click listeners and bubbling
click dispatch.
"""

import logging
import re
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from xml.dom import minidom
from xml.dom.minidom import Document, Element, Node

logger = logging.getLogger('apidesk.ui.dom_service')

ConfirmFn = Callable[[str], bool]
Listener = Callable[['ClickEvent'], Any]

_ATTRIBUTE_SELECTOR = re.compile(r'^\[([\w:-]+)(?:=["\']?([^"\'\]]*)["\']?)?\]$')

def console_confirm(message: str) -> bool:
    """Ask a yes/no question on the terminal; anything but y/yes is no"""
    try:
        answer = input(f"{message} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ('y', 'yes')

def create_document(*container_ids: str) -> Document:
    """New ``<html><body/></html>`` document with one empty div per id"""
    document = minidom.getDOMImplementation().createDocument(None, 'html', None)
    body = document.createElement('body')
    document.documentElement.appendChild(body)

    for container_id in container_ids:
        container = document.createElement('div')
        container.setAttribute('id', container_id)
        body.appendChild(container)

    return document

class ClickEvent:
    """Click travelling from its target up through the ancestors"""

    def __init__(self, target: Element):
        self.target = target
        self.current_target: Optional[Element] = None
        self.propagation_stopped = False

    def stop_propagation(self) -> None:
        self.propagation_stopped = True

class DomService:
    """Element helpers and event dispatch over one minidom document"""

    def __init__(self, document: Optional[Document] = None):
        self.document = document if document is not None else create_document()
        self._listeners: List[Tuple[Element, str, Listener]] = []

    @classmethod
    def from_markup(cls, markup: str) -> 'DomService':
        return cls(minidom.parseString(markup))

    @property
    def body(self) -> Element:
        bodies = self.document.getElementsByTagName('body')
        return bodies[0] if bodies else self.document.documentElement

    def create_element(self, tag: str, attributes: Optional[Dict[str, Any]] = None, text: Optional[str] = None) -> Element:
        element = self.document.createElement(tag)
        if attributes:
            self.set_attributes(element, attributes)
        if text is not None:
            self.set_text_content(element, text)
        return element

    def set_attributes(self, element: Element, attributes: Dict[str, Any]) -> None:
        """Set attributes; None values are skipped"""
        for name, value in attributes.items():
            if value is not None:
                element.setAttribute(name, str(value))

    def set_text_content(self, element: Element, text: str) -> None:
        self.remove_all_children(element)
        element.appendChild(self.document.createTextNode(str(text)))

    def get_text_content(self, node: Node) -> str:
        if node.nodeType == Node.TEXT_NODE:
            return node.data
        return ''.join(self.get_text_content(child) for child in node.childNodes)

    def append_child(self, parent: Element, child: Element) -> Element:
        parent.appendChild(child)
        return child

    def remove_all_children(self, element: Element) -> None:
        while element.firstChild is not None:
            child = element.firstChild
            element.removeChild(child)
            child.unlink()

    def iter_elements(self, root: Optional[Node] = None) -> Iterator[Element]:
        """Depth-first walk over root and its descendant elements"""
        stack = [root if root is not None else self.document.documentElement]
        while stack:
            node = stack.pop()
            if node.nodeType != Node.ELEMENT_NODE:
                continue
            yield node
            stack.extend(reversed(node.childNodes))

    def get_element_by_id(self, element_id: str) -> Optional[Element]:
        for element in self.iter_elements():
            if element.getAttribute('id') == element_id:
                return element
        return None

    def query_selector_all(self, selector: str, root: Optional[Node] = None) -> List[Element]:
        return [element for element in self.iter_elements(root) if self.matches(element, selector)]

    def query_selector(self, selector: str, root: Optional[Node] = None) -> Optional[Element]:
        for element in self.iter_elements(root):
            if self.matches(element, selector):
                return element
        return None

    def has_class(self, element: Element, class_name: str) -> bool:
        return class_name in element.getAttribute('class').split()

    def matches(self, element: Element, selector: str) -> bool:
        """
        Test an element against a simple selector.

        Supported forms: ``.class``, ``#id``, ``[attr]``, ``[attr=value]``
        and a bare tag name.
        """
        if selector.startswith('.'):
            return self.has_class(element, selector[1:])
        if selector.startswith('#'):
            return element.getAttribute('id') == selector[1:]

        match = _ATTRIBUTE_SELECTOR.match(selector)
        if match:
            name, value = match.groups()
            if not element.hasAttribute(name):
                return False
            return value is None or element.getAttribute(name) == value

        return element.tagName == selector

    def closest(self, element: Optional[Node], selector: str) -> Optional[Element]:
        """Nearest element, starting with element itself, matching selector"""
        node = element
        while node is not None and node.nodeType == Node.ELEMENT_NODE:
            if self.matches(node, selector):
                return node
            node = node.parentNode
        return None

    def add_event_listener(self, element: Element, event_type: str, listener: Listener) -> None:
        self._listeners.append((element, event_type, listener))

    def remove_event_listener(self, element: Element, event_type: str, listener: Listener) -> bool:
        for index, (owner, registered_type, registered) in enumerate(self._listeners):
            if owner is element and registered_type == event_type and registered == listener:
                del self._listeners[index]
                return True
        return False

    def listener_count(self) -> int:
        return len(self._listeners)

    def dispatch_click(self, target: Element) -> ClickEvent:
        """
        Deliver a click to target and then to each ancestor in turn.

        Listeners on the same element all run; stop_propagation() prevents
        delivery to further ancestors. A listener that raises is logged and
        the remaining listeners still run.
        """
        event = ClickEvent(target)
        node = target

        while node is not None and node.nodeType == Node.ELEMENT_NODE:
            listeners = [l for owner, kind, l in self._listeners if owner is node and kind == 'click']
            for listener in listeners:
                event.current_target = node
                try:
                    listener(event)
                except Exception as e:
                    logger.error(f"Error in click listener on <{node.tagName}>: {e}")

            if event.propagation_stopped:
                break
            node = node.parentNode

        return event

    def click(self, target: Element) -> ClickEvent:
        return self.dispatch_click(target)

    def to_markup(self, element: Optional[Element] = None) -> str:
        return (element if element is not None else self.document.documentElement).toxml()
