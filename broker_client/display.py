from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol

from rich.table import Table


@dataclass
class DisplayElement:
    key: str
    text: str = ""


class DisplaySurface(Protocol):
    """Key-value text surface owned by the host; the dispatcher only looks up and writes."""

    def lookup(self, key: str) -> Optional[DisplayElement]: ...

    def set_text(self, element: DisplayElement, text: str) -> None: ...


@dataclass
class TextDisplay:
    """In-memory display surface: one text element per registered topic."""
    elements: Dict[str, DisplayElement] = field(default_factory=dict)

    @classmethod
    def with_keys(cls, keys: Iterable[str]) -> 'TextDisplay':
        display = cls()
        for key in keys:
            display.add(key)
        return display

    def add(self, key: str, text: str = "") -> DisplayElement:
        element = self.elements.get(key)
        if element is None:
            element = self.elements[key] = DisplayElement(key=key, text=text)
        return element

    def lookup(self, key: str) -> Optional[DisplayElement]:
        return self.elements.get(key)

    def set_text(self, element: DisplayElement, text: str) -> None:
        element.text = text

    def text_of(self, key: str) -> Optional[str]:
        element = self.elements.get(key)
        return element.text if element is not None else None

    def list_sorted(self) -> List[str]:
        return sorted(self.elements.keys())

    def render(self, title: str = "Topics") -> Table:
        table = Table(title=title)
        table.add_column("Topic")
        table.add_column("Value")
        for key in self.list_sorted():
            table.add_row(key, self.elements[key].text)
        return table
