"""Scroll anchoring for a transcript view.

The anchor holds no reference to any widget. The host reports scroll
metrics through :meth:`ScrollAnchor.update` and reads back ``scroll_top``
after the anchor adjusts it. Content height comes from a ``measure``
callable so the anchor can follow the transcript's size changes.
"""

from typing import Callable, Optional

NEAR_TOP_PX = 20
NEAR_BOTTOM_PX = 140


def clamp(n: float, low: float, high: float) -> float:
    return max(low, min(high, n))


class ScrollAnchor:
    """Tracks whether the view follows the newest message.

    When older messages are prepended the content grows above the visible
    region; :meth:`begin_prepend` / :meth:`end_prepend` shift ``scroll_top``
    by the height delta so the visible messages stay where they were.
    """

    def __init__(
        self,
        measure: Callable[[], float],
        *,
        client_height: float = 0.0,
        near_top: float = NEAR_TOP_PX,
        near_bottom: float = NEAR_BOTTOM_PX,
    ):
        self._measure = measure
        self.client_height = client_height
        self.near_top = near_top
        self.near_bottom = near_bottom
        self.scroll_top = 0.0
        self.pinned = True
        self._height_before_prepend: Optional[float] = None

    @property
    def scroll_height(self) -> float:
        return self._measure()

    def is_near_top(self) -> bool:
        return self.scroll_top <= self.near_top

    def is_near_bottom(self) -> bool:
        return self.scroll_height - (self.scroll_top + self.client_height) <= self.near_bottom

    def update(self, scroll_top: float, client_height: Optional[float] = None) -> bool:
        """Record a scroll event. Returns True when the view reached the top."""
        if client_height is not None:
            self.client_height = client_height
        self.scroll_top = scroll_top
        self.pinned = self.is_near_bottom()
        return self.is_near_top()

    def pin_to_bottom(self) -> None:
        self.scroll_top = max(0.0, self.scroll_height - self.client_height)
        self.pinned = True

    def follow(self) -> None:
        """Scroll to the bottom only if the user was already there."""
        if self.pinned:
            self.pin_to_bottom()

    def begin_prepend(self) -> None:
        self._height_before_prepend = self.scroll_height

    def end_prepend(self) -> None:
        if self._height_before_prepend is None:
            return
        new_height = self.scroll_height
        delta = new_height - self._height_before_prepend
        self.scroll_top = clamp(self.scroll_top + delta, 0.0, new_height)
        self._height_before_prepend = None

    def abandon_prepend(self) -> None:
        self._height_before_prepend = None
