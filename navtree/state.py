"""Navigation state shared with presentation.

The loader writes the active document; sidebar code only reads it.
"""

from dataclasses import dataclass
from typing import Any


@dataclass
class UiState:
    active_document_id: str | None = None
    active_collection_id: str | None = None

    def set_active_document(self, document: Any) -> None:
        self.active_document_id = document.id
        self.active_collection_id = document.collection_id

    def clear_active_document(self) -> None:
        self.active_document_id = None
        self.active_collection_id = None


_ui_state: UiState | None = None


def get_ui_state() -> UiState:
    """Get or create the process-wide UI state."""
    global _ui_state
    if _ui_state is None:
        _ui_state = UiState()
    return _ui_state
