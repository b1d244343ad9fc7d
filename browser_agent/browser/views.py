from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from browser_agent.dom.history_tree_processor.view import DOMHistoryElement
from browser_agent.dom.views import DOMState


class TabInfo(BaseModel):
	"""Represents information about a browser tab"""

	page_id: int
	url: str
	title: str


@dataclass
class BrowserState(DOMState):
	"""Snapshot of the active page; replaced wholesale on every get_state"""

	url: str = ''
	title: str = ''
	tabs: list[TabInfo] = field(default_factory=list)
	screenshot: str | None = field(default=None, repr=False)


@dataclass
class BrowserStateHistory:
	"""The browser's state at a past point in time, with the elements interacted with"""

	url: str
	title: str
	tabs: list[TabInfo]
	interacted_element: list[DOMHistoryElement | None] | list[None]
	screenshot: str | None = None

	def to_dict(self) -> dict[str, Any]:
		data = {}
		data['tabs'] = [tab.model_dump() for tab in self.tabs]
		data['screenshot'] = self.screenshot
		data['interacted_element'] = [el.to_dict() if el else None for el in self.interacted_element]
		data['url'] = self.url
		data['title'] = self.title
		return data


class BrowserError(Exception):
	"""Base class for all browser errors"""


class URLNotAllowedError(BrowserError):
	"""Error raised when a URL is not allowed"""


class ResolutionExhaustedError(BrowserError):
	"""Every attempt to resolve a selector-map entry to a live, connected element failed"""

	def __init__(self, message: str, last_error: Exception | None = None):
		super().__init__(message)
		self.last_error = last_error
