"""
Shared helpers for the CI tests.

Snapshots are written as nested dicts in the shape buildDomTree.js returns, then pushed
through TreeSnapshotBuilder so every test works on a real DOMTree arena.
"""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from browser_agent.browser.context import BrowserContext, BrowserContextConfig, BrowserSession
from browser_agent.browser.views import BrowserState
from browser_agent.dom.tree_builder import TreeSnapshotBuilder
from browser_agent.dom.views import DOMTree, SelectorMap
from browser_agent.telemetry.views import BaseTelemetryEvent

TEST_URL = 'http://test.local/page'


def element(
	tag: str,
	*children: dict[str, Any],
	attributes: dict[str, str] | None = None,
	highlight_index: int | None = None,
	xpath: str | None = None,
	is_visible: bool = True,
	is_iframe: bool = False,
) -> dict[str, Any]:
	"""One element in buildDomTree.js output shape, children nested inline"""
	return {
		'tagName': tag,
		'xpath': xpath or tag,
		'attributes': attributes or {},
		'isVisible': is_visible,
		'isInteractive': highlight_index is not None,
		'isClickable': highlight_index is not None,
		'isIframe': is_iframe,
		'highlightIndex': highlight_index,
		'children': list(children),
	}


def text(value: str, is_visible: bool = True) -> dict[str, Any]:
	return {'type': 'TEXT_NODE', 'text': value, 'isVisible': is_visible}


def build_eval_page(root: dict[str, Any]) -> dict[str, Any]:
	"""Flatten a nested element() tree into the `{rootId, map}` payload, ids in pre-order"""
	node_map: dict[str, dict[str, Any]] = {}

	def add(node: dict[str, Any]) -> str:
		node_id = str(len(node_map))
		node_map[node_id] = {}
		entry = {key: value for key, value in node.items() if key != 'children'}
		if 'children' in node:
			entry['children'] = [add(child) for child in node['children']]
		node_map[node_id] = entry
		return node_id

	root_id = add(root)
	return {'rootId': root_id, 'map': node_map}


def make_tree(root: dict[str, Any]) -> tuple[DOMTree, SelectorMap]:
	return TreeSnapshotBuilder(MagicMock())._construct_dom_tree(build_eval_page(root))


def make_state(root: dict[str, Any], url: str = TEST_URL) -> BrowserState:
	tree, selector_map = make_tree(root)
	return BrowserState(
		element_tree=tree,
		selector_map=selector_map,
		clickable_elements=[node for node in tree.iter_elements() if node.highlight_index is not None],
		url=url,
		title='Test Page',
	)


def create_mock_page(url: str = TEST_URL) -> MagicMock:
	"""Playwright Page stand-in; async methods are AsyncMocks returning None unless overridden"""
	page = MagicMock()
	page.url = url
	page.is_closed = MagicMock(return_value=False)
	page.evaluate = AsyncMock(return_value=None)
	page.query_selector = AsyncMock(return_value=None)
	page.title = AsyncMock(return_value='Test Page')
	page.bring_to_front = AsyncMock()
	page.wait_for_load_state = AsyncMock()
	page.wait_for_function = AsyncMock()
	page.content = AsyncMock(return_value='<html><body></body></html>')
	page.keyboard.press = AsyncMock()
	page.keyboard.type = AsyncMock()
	return page


def create_mock_handle(connected: bool = True) -> MagicMock:
	handle = MagicMock()
	handle.evaluate = AsyncMock(return_value=connected)
	handle.scroll_into_view_if_needed = AsyncMock()
	handle.click = AsyncMock()
	return handle


def create_browser_context(
	page: MagicMock,
	state: BrowserState | None,
	config: BrowserContextConfig | None = None,
	telemetry: Any = None,
) -> BrowserContext:
	"""BrowserContext wired to a mock page with `state` as the cached snapshot"""
	browser_context = BrowserContext(
		browser=MagicMock(),
		config=config or BrowserContextConfig(element_retry_delay=0, wait_between_actions=0),
		telemetry=telemetry,
	)
	playwright_context = MagicMock()
	playwright_context.pages = [page]
	browser_context.session = BrowserSession(context=playwright_context, cached_state=state)
	browser_context.current_page = page
	return browser_context


class RecordingTelemetry:
	"""Keeps every captured event in memory"""

	def __init__(self):
		self.events: list[BaseTelemetryEvent] = []

	def capture(self, event: BaseTelemetryEvent) -> None:
		self.events.append(event)

	def flush(self) -> None:
		pass

	def of_type(self, event_type: type) -> list:
		return [event for event in self.events if isinstance(event, event_type)]


@pytest.fixture
def mock_page():
	return create_mock_page()


@pytest.fixture
def telemetry():
	return RecordingTelemetry()
