"""
Capability interfaces the runtime calls into.

The engine never draws widgets, picks geometry or measures a model
itself. A host supplies:

- a UIBinder that renders commands and mirrors gating decisions
- a SelectionProvider that performs interactive picks
- a ModelQuery for measurements and reference searches

HeadlessBinder records everything it is told and is used by the CLI and
the tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from ..ast import Command, Table, WidgetCommand


@dataclass
class LayoutCursor:
    """Grid position handed to the binder; one row per rendered widget."""
    row: int = 0
    column: int = 0

    def advance(self) -> None:
        self.row += 1


def widget_id_for(command: Command) -> Optional[str]:
    """Stable widget id of a renderable command, or None."""
    if isinstance(command, (WidgetCommand, Table)):
        return command.widget_id
    return None


class UIBinder(ABC):
    """Creates and updates concrete widgets for renderable commands."""

    @abstractmethod
    def render(self, command: Command, cursor: LayoutCursor, symbols: Any) -> bool:
        """Create or update the widget for `command`; False on failure."""

    @abstractmethod
    def set_enabled(self, widget_id: str, enabled: bool) -> None:
        pass

    @abstractmethod
    def set_required(self, widget_id: str, required: bool) -> None:
        pass

    @abstractmethod
    def paint(self, widget_id: str, satisfied: bool) -> None:
        """Highlight a required widget as satisfied or missing."""

    def set_proceed(self, allowed: bool) -> None:
        """Enable or disable the dialog's confirm action."""

    def show_pictures(self, global_picture: Optional[str], sub_pictures: List[Any]) -> None:
        """Redraw the background picture and its overlays."""


class SelectionProvider(ABC):
    """Interactive reference picking; handles are owned by the caller."""

    @abstractmethod
    def select(self, allowed_types: List[str], max_selections: int) -> List[Any]:
        pass

    @abstractmethod
    def dispose(self, handle: Any) -> None:
        pass


class ModelQuery(ABC):
    """Read-only queries against the host model."""

    @abstractmethod
    def measure_distance(self, first: Any, second: Any, options: Dict[str, Any]) -> float:
        pass

    @abstractmethod
    def measure_length(self, reference: Any) -> float:
        pass

    @abstractmethod
    def search_references(self, model: str, type_name: str, pattern: str,
                          multiple: bool, options: Dict[str, Any]) -> List[Any]:
        pass


@dataclass
class HeadlessBinder(UIBinder):
    """
    Binder that renders nothing and remembers every call.

    Widget ids listed in `failing` report a render failure.
    """
    rendered: List[Tuple[str, int]] = field(default_factory=list)
    enabled: Dict[str, bool] = field(default_factory=dict)
    required: Dict[str, bool] = field(default_factory=dict)
    painted: Dict[str, bool] = field(default_factory=dict)
    proceed: Optional[bool] = None
    pictures: Tuple[Optional[str], List[Any]] = (None, [])
    failing: Set[str] = field(default_factory=set)

    def render(self, command: Command, cursor: LayoutCursor, symbols: Any) -> bool:
        widget_id = widget_id_for(command) or type(command).__name__
        if widget_id in self.failing:
            return False
        self.rendered.append((widget_id, cursor.row))
        self.enabled.setdefault(widget_id, True)
        return True

    def set_enabled(self, widget_id: str, enabled: bool) -> None:
        self.enabled[widget_id] = enabled

    def set_required(self, widget_id: str, required: bool) -> None:
        self.required[widget_id] = required

    def paint(self, widget_id: str, satisfied: bool) -> None:
        self.painted[widget_id] = satisfied

    def set_proceed(self, allowed: bool) -> None:
        self.proceed = allowed

    def show_pictures(self, global_picture: Optional[str], sub_pictures: List[Any]) -> None:
        self.pictures = (global_picture, list(sub_pictures))
