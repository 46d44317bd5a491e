"""LayerSync playlist items, macros and macro lookup."""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from core.offsets import OffsetSpec

ITEM_TYPES = ("video", "image", "audio", "template")

POSITION_START = "start"
POSITION_END = "end"
POSITIONS = (POSITION_START, POSITION_END)


@dataclass(frozen=True)
class MacroAttachment:
    macro_id: str
    offset: OffsetSpec = field(default_factory=OffsetSpec)


@dataclass
class PlaylistItem:
    id: str = ""
    name: str = ""
    path: str = ""
    type: str = "video"  # "video" | "image" | "audio" | "template"
    duration: float = 0.0  # seconds; 0 means unknown
    in_point: Optional[float] = None
    out_point: Optional[float] = None
    start_macro: Optional[MacroAttachment] = None
    end_macro: Optional[MacroAttachment] = None
    playing: bool = False

    @property
    def is_image(self) -> bool:
        return self.type == "image"

    def validate(self) -> list[str]:
        errors = []
        if not self.id:
            errors.append("Item missing 'id'")
        if not re.match(r'^[a-zA-Z0-9_\-.]+$', self.id or "x"):
            errors.append(f"Item id '{self.id}' contains invalid characters")
        if self.type not in ITEM_TYPES:
            errors.append(f"Item '{self.id}': type must be one of {', '.join(ITEM_TYPES)}")
        if self.duration < 0:
            errors.append(f"Item '{self.id}': duration must not be negative")
        return errors


@dataclass
class Macro:
    id: str
    name: str = ""
    commands: list[dict[str, Any]] = field(default_factory=list)
    continue_on_error: bool = False


@dataclass
class MacroResult:
    """Outcome of a macro firing. Failures are values, not exceptions."""
    macro_id: str
    success: bool
    item_id: Optional[str] = None
    position: Optional[str] = None
    error: Optional[str] = None
    detail: Any = None


class MacroLibrary:
    """In-memory macro lookup by id (populated by the persistence layer)."""

    def __init__(self, macros: Optional[list[Macro]] = None):
        self._macros: dict[str, Macro] = {}
        for macro in macros or []:
            self.add(macro)

    def add(self, macro: Macro) -> None:
        self._macros[macro.id] = macro

    def remove(self, macro_id: str) -> None:
        self._macros.pop(macro_id, None)

    def get(self, macro_id: str) -> Optional[Macro]:
        return self._macros.get(macro_id)

    def __len__(self) -> int:
        return len(self._macros)


def parse_item(raw: dict) -> PlaylistItem:
    """Build a PlaylistItem from a plain dict (as handed over by the host app)."""
    def _attachment(value: Optional[dict]) -> Optional[MacroAttachment]:
        if not value or not value.get("macro_id"):
            return None
        return MacroAttachment(macro_id=value["macro_id"], offset=OffsetSpec.from_dict(value.get("offset")))

    return PlaylistItem(
        id=raw.get("id", ""),
        name=raw.get("name", ""),
        path=raw.get("path", ""),
        type=raw.get("type", "video"),
        duration=float(raw.get("duration", 0.0) or 0.0),
        in_point=raw.get("in_point"),
        out_point=raw.get("out_point"),
        start_macro=_attachment(raw.get("start_macro")),
        end_macro=_attachment(raw.get("end_macro")),
    )
