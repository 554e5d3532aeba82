from __future__ import annotations

class VisibilityGate:
    """Foreground flag for the hosting surface (tab/window/session)."""
    def __init__(self, visible: bool = True):
        self._visible = visible

    @property
    def visible(self) -> bool:
        return self._visible

    def set_visible(self, visible: bool) -> None:
        self._visible = bool(visible)

    def should_skip(self, enable_background: bool) -> bool:
        """A scheduled tick is skipped only when background work is off and we're hidden."""
        return not enable_background and not self._visible
