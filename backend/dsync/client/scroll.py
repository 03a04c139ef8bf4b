"""Scroll anchoring for a timeline rendered oldest-first."""

from __future__ import annotations

from dataclasses import dataclass, replace

AT_BOTTOM_THRESHOLD_PX = 100.0


@dataclass(frozen=True)
class Viewport:
	scroll_top: float
	scroll_height: float
	client_height: float

	@property
	def max_scroll_top(self) -> float:
		return max(0.0, self.scroll_height - self.client_height)


def is_at_bottom(viewport: Viewport, threshold: float = AT_BOTTOM_THRESHOLD_PX) -> bool:
	return viewport.scroll_height - viewport.scroll_top <= viewport.client_height + threshold


def should_load_more(viewport: Viewport, *, has_more: bool, loading: bool) -> bool:
	"""Older history is requested once the top edge is reached."""
	return viewport.scroll_top <= 0 and has_more and not loading


def compensate_prepend(before: Viewport, new_scroll_height: float) -> Viewport:
	"""Viewport after older content grew the list above the visible region.

	The height delta is added to the offset so the message under the viewport
	does not move on screen.
	"""
	delta = new_scroll_height - before.scroll_height
	after = replace(before, scroll_height=new_scroll_height, scroll_top=before.scroll_top + max(0.0, delta))
	return replace(after, scroll_top=min(after.scroll_top, after.max_scroll_top))


def after_append(before: Viewport, new_scroll_height: float, *, own_message: bool) -> Viewport:
	"""Follow new content when the reader was at the bottom or sent it; otherwise stay put."""
	grown = replace(before, scroll_height=new_scroll_height)
	if own_message or is_at_bottom(before):
		return replace(grown, scroll_top=grown.max_scroll_top)
	return grown
