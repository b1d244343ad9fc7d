import asyncio
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from browser_agent.dom.observer import DEFAULT_WAIT_TIMEOUT, DOMObserverManager, MutationListener
from browser_agent.dom.tree_builder import TreeSnapshotBuilder
from browser_agent.dom.views import (
	DOMElementNode,
	DOMQueryOptions,
	DOMState,
	DOMTree,
	ElementSelector,
	ElementVisibilityInfo,
	MutationEvent,
	SelectorMap,
	WaitTimeoutError,
)
from browser_agent.telemetry.service import NoopTelemetry, TelemetryProtocol
from browser_agent.telemetry.views import DomSnapshotTelemetryEvent
from browser_agent.utils import time_execution_async

if TYPE_CHECKING:
	from playwright.async_api import ElementHandle, Frame, Page

logger = logging.getLogger(__name__)

REMOVE_HIGHLIGHTS_JS = """() => {
	try {
		const container = document.getElementById('playwright-highlight-container');
		if (container) {
			container.remove();
		}
		const highlightedElements = document.querySelectorAll('[browser-user-highlight-id^="playwright-highlight-"]');
		highlightedElements.forEach((el) => el.removeAttribute('browser-user-highlight-id'));
	} catch (e) {
		console.error('Failed to remove highlights:', e);
	}
}"""

QUERY_SELECTOR_DEEP_JS = """(selector) => {
	const queryDeep = (root) => {
		const found = root.querySelector(selector);
		if (found) return found;
		for (const el of root.querySelectorAll('*')) {
			if (el.shadowRoot) {
				const nested = queryDeep(el.shadowRoot);
				if (nested) return nested;
			}
		}
		return null;
	};
	return queryDeep(document);
}"""

QUERY_SELECTOR_ALL_DEEP_JS = """(selector) => {
	const queryAllDeep = (root) => {
		const elements = Array.from(root.querySelectorAll(selector));
		for (const el of root.querySelectorAll('*')) {
			if (el.shadowRoot) elements.push(...queryAllDeep(el.shadowRoot));
		}
		return elements;
	};
	return queryAllDeep(document);
}"""

IS_IN_SHADOW_DOM_JS = """(el) => el.getRootNode() instanceof ShadowRoot"""

ELEMENT_STATE_JS = """([xpaths, waitForVisible, waitForEnabled]) => xpaths.every((xpath) => {
	const element = document.evaluate(xpath, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue;
	if (!element) return false;
	const isVisible = element.getBoundingClientRect().height > 0;
	const isEnabled = !element.hasAttribute('disabled');
	return (!waitForVisible || isVisible) && (!waitForEnabled || isEnabled);
})"""

VISIBILITY_INFO_JS = """(el) => {
	const style = window.getComputedStyle(el);
	const rect = el.getBoundingClientRect();
	const isVisible =
		style.display !== 'none' &&
		style.visibility !== 'hidden' &&
		parseFloat(style.opacity) > 0 &&
		rect.width > 0 &&
		rect.height > 0;
	const isInViewport =
		rect.top >= 0 &&
		rect.left >= 0 &&
		rect.bottom <= (window.innerHeight || document.documentElement.clientHeight) &&
		rect.right <= (window.innerWidth || document.documentElement.clientWidth);

	const stack = document.elementsFromPoint(rect.left + rect.width / 2, rect.top + rect.height / 2);
	const ownIndex = stack.indexOf(el);
	const overlapping = (ownIndex === -1 ? stack : stack.slice(0, ownIndex)).map((other) => ({
		tagName: other.tagName.toLowerCase(),
		attributes: Object.fromEntries(Array.from(other.attributes).map((attr) => [attr.name, attr.value])),
		textContent: other.textContent || '',
	}));

	return {
		is_visible: isVisible,
		is_in_viewport: isInViewport,
		is_clickable: isVisible && style.pointerEvents !== 'none' && !el.hasAttribute('disabled'),
		opacity: parseFloat(style.opacity),
		bounding_box: { x: rect.x, y: rect.y, width: rect.width, height: rect.height },
		computed_style: {
			display: style.display,
			visibility: style.visibility,
			opacity: style.opacity,
			pointer_events: style.pointerEvents,
		},
		overlapping_elements: overlapping,
	};
}"""

CLICKABLE_AT_POINT_JS = """([el, x, y]) => {
	const elementAtPoint = document.elementFromPoint(x, y);
	return elementAtPoint === el || el.contains(elementAtPoint);
}"""

XPATH_EXISTS_JS = """(xpath) => !!document.evaluate(xpath, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue"""


class DomService:
	"""
	Composition root of the DOM subsystem for one page: snapshots, queries, the
	mutation bridge and visibility inspection.
	"""

	def __init__(self, page: 'Page', telemetry: TelemetryProtocol | None = None):
		self.page: 'Page | None' = page
		self.telemetry = telemetry or NoopTelemetry()
		self.tree_builder = TreeSnapshotBuilder(page)
		self.observer: DOMObserverManager | None = DOMObserverManager(page)
		self.observer.on_mutation(self._handle_mutation)
		self._mutation_handlers: list[MutationListener] = []
		self.is_destroyed = False

	def _require_page(self) -> 'Page':
		if self.page is None:
			raise RuntimeError('DomService has been cleaned up')
		return self.page

	def _require_observer(self) -> DOMObserverManager:
		if self.observer is None:
			raise RuntimeError('DomService has been cleaned up')
		return self.observer

	async def cleanup(self) -> None:
		if self.is_destroyed:
			return

		await self.stop_observing()
		self._mutation_handlers = []
		await self.remove_highlights()
		if self.observer is not None:
			await self.observer.cleanup()
		self.observer = None
		self.page = None
		self.is_destroyed = True

	async def remove_highlights(self) -> None:
		"""Best-effort removal of the highlight overlay, never raises."""
		if self.page is None:
			return
		try:
			await self.page.evaluate(REMOVE_HIGHLIGHTS_JS)
		except Exception as e:
			logger.debug(f'Failed to remove highlights (this is usually ok): {type(e).__name__}: {e}')

	# region - state

	@time_execution_async('--get_state')
	async def get_state(
		self,
		include_hidden: bool = False,
		include_shadow_dom: bool = False,
		highlight_elements: bool = False,
		focus_element: int = -1,
		viewport_expansion: int = 0,
	) -> DOMState:
		start_time = time.time()
		element_tree, selector_map = await self.tree_builder.build(
			include_shadow_dom=include_shadow_dom,
			highlight_elements=highlight_elements,
			focus_element=focus_element,
			viewport_expansion=viewport_expansion,
		)
		clickable_elements = [
			node for node in element_tree.iter_elements() if node.is_interactive and (include_hidden or node.is_visible)
		]

		self.telemetry.capture(
			DomSnapshotTelemetryEvent(
				element_count=len(element_tree.nodes),
				interactive_count=len(selector_map),
				duration_seconds=time.time() - start_time,
			)
		)
		return DOMState(element_tree=element_tree, selector_map=selector_map, clickable_elements=clickable_elements)

	async def get_clickable_elements(self) -> list[DOMElementNode]:
		return (await self.get_state()).clickable_elements

	async def get_dom_tree(self) -> DOMTree:
		return (await self.get_state()).element_tree

	async def get_selector_map(self) -> SelectorMap:
		return (await self.get_state()).selector_map

	async def get_element_by_index(self, index: int) -> DOMElementNode | None:
		return (await self.get_selector_map()).get(index)

	async def get_element_by_xpath(self, xpath: str) -> 'ElementHandle | None':
		return await self._require_page().query_selector(f'xpath={xpath}')

	async def find_elements(
		self,
		selector: ElementSelector,
		options: DOMQueryOptions | None = None,
	) -> list[DOMElementNode]:
		"""Filter the clickable elements of a fresh snapshot, then wait for them to be visible / enabled."""
		options = options or DOMQueryOptions()
		state = await self.get_state(include_hidden=options.include_hidden)

		elements = []
		for element in state.clickable_elements:
			if selector.index is not None and element.highlight_index != selector.index:
				continue
			if selector.xpath and element.xpath != selector.xpath:
				continue
			if selector.coordinates is not None:
				handle = await self.get_element_by_xpath(element.xpath)
				box = await handle.bounding_box() if handle else None
				if box is None or (box['x'], box['y']) != (selector.coordinates.x, selector.coordinates.y):
					continue
			elements.append(element)

		if elements and (options.wait_for_visible or options.wait_for_enabled):
			await self._require_page().wait_for_function(
				ELEMENT_STATE_JS,
				arg=[[element.xpath for element in elements], options.wait_for_visible, options.wait_for_enabled],
				timeout=options.timeout,
			)

		return elements

	async def find_element(
		self,
		selector: ElementSelector,
		options: DOMQueryOptions | None = None,
	) -> DOMElementNode | None:
		elements = await self.find_elements(selector, options)
		return elements[0] if elements else None

	@staticmethod
	def is_file_uploader(
		tree: DOMTree,
		element_node: DOMElementNode,
		max_depth: int = 3,
		current_depth: int = 0,
	) -> bool:
		"""True for `<input type=file>` or inputs with an `accept` attribute, checked up to `max_depth` levels down."""
		if current_depth > max_depth:
			return False

		if element_node.tag_name == 'input':
			if element_node.attributes.get('type', '').lower() == 'file' or 'accept' in element_node.attributes:
				return True

		if current_depth < max_depth:
			for child in tree.element_children_of(element_node):
				if DomService.is_file_uploader(tree, child, max_depth, current_depth + 1):
					return True

		return False

	# endregion

	# region - mutations

	async def start_observing(self) -> None:
		await self._require_observer().start_observing()

	async def stop_observing(self) -> None:
		if self.observer is not None:
			await self.observer.stop_observing()

	def on_mutation(self, handler: MutationListener) -> None:
		self._mutation_handlers.append(handler)

	def off_mutation(self, handler: MutationListener) -> None:
		self._mutation_handlers = [existing for existing in self._mutation_handlers if existing is not handler]

	async def _handle_mutation(self, event: MutationEvent) -> None:
		for handler in list(self._mutation_handlers):
			result = handler(event)
			if asyncio.iscoroutine(result):
				await result

	async def wait_for_element(self, selector: str, timeout: int = DEFAULT_WAIT_TIMEOUT) -> None:
		await self._require_observer().wait_for_element(selector, timeout)

	async def wait_for_element_removal(self, selector: str, timeout: int = DEFAULT_WAIT_TIMEOUT) -> None:
		await self._require_observer().wait_for_element_removal(selector, timeout)

	async def wait_for_attribute_change(self, selector: str, attribute_name: str, timeout: int = DEFAULT_WAIT_TIMEOUT) -> None:
		await self._require_observer().wait_for_attribute_change(selector, attribute_name, timeout)

	async def wait_for_dynamic_content(
		self,
		selector: str | None = None,
		predicate: Callable[[DOMState], bool] | None = None,
		timeout: int = DEFAULT_WAIT_TIMEOUT,
	) -> None:
		"""Wait for `selector` to appear, or for `predicate` to hold on a snapshot taken after a mutation."""
		if selector:
			return await self.wait_for_element(selector, timeout)

		if predicate is None:
			raise ValueError('Either selector or predicate must be provided')

		mutated = asyncio.Event()

		def handler(event: MutationEvent) -> None:
			mutated.set()

		async def wait_for_predicate() -> None:
			while True:
				await mutated.wait()
				mutated.clear()
				if predicate(await self.get_state()):
					return

		self.on_mutation(handler)
		try:
			await self.start_observing()
			await asyncio.wait_for(wait_for_predicate(), timeout=timeout / 1000)
		except TimeoutError as e:
			raise WaitTimeoutError('Timeout waiting for dynamic content') from e
		finally:
			self.off_mutation(handler)

	# endregion

	# region - shadow DOM

	async def query_selector_deep(self, selector: str) -> 'ElementHandle | None':
		"""querySelector that also searches open shadow roots"""
		handle = await self._require_page().evaluate_handle(QUERY_SELECTOR_DEEP_JS, selector)
		return handle.as_element()

	async def query_selector_all_deep(self, selector: str) -> list['ElementHandle']:
		array_handle = await self._require_page().evaluate_handle(QUERY_SELECTOR_ALL_DEEP_JS, selector)
		properties = await array_handle.get_properties()
		elements = []
		for property_handle in properties.values():
			element = property_handle.as_element()
			if element is not None:
				elements.append(element)
		return elements

	async def get_shadow_root(self, element: 'ElementHandle') -> 'ElementHandle | None':
		shadow_root = await element.evaluate_handle('el => el.shadowRoot')
		return shadow_root.as_element()

	async def is_in_shadow_dom(self, element: 'ElementHandle') -> bool:
		return await element.evaluate(IS_IN_SHADOW_DOM_JS)

	# endregion

	# region - iframes

	async def get_iframes(self) -> list['ElementHandle']:
		return await self._require_page().query_selector_all('iframe')

	async def _content_frame(self, iframe: 'ElementHandle') -> 'Frame':
		frame = await iframe.content_frame()
		if frame is None:
			raise RuntimeError('Could not access iframe content')
		return frame

	async def get_iframe_content(self, iframe: 'ElementHandle') -> DOMTree | None:
		"""Snapshot the body of a same-origin iframe, None when it is not reachable"""
		frame = await iframe.content_frame()
		if frame is None:
			return None
		try:
			tree, _ = await TreeSnapshotBuilder(frame).build()  # type: ignore[arg-type]
		except Exception as e:
			logger.debug(f'Could not snapshot iframe content: {type(e).__name__}: {e}')
			return None
		return tree

	async def query_iframe_selector(self, iframe: 'ElementHandle', selector: str) -> 'ElementHandle | None':
		frame = await iframe.content_frame()
		if frame is None:
			return None
		return await frame.query_selector(selector)

	async def query_iframe_selector_all(self, iframe: 'ElementHandle', selector: str) -> list['ElementHandle']:
		frame = await iframe.content_frame()
		if frame is None:
			return []
		return await frame.query_selector_all(selector)

	async def execute_iframe_script(self, iframe: 'ElementHandle', script: str, arg: Any = None) -> Any:
		frame = await self._content_frame(iframe)
		return await frame.evaluate(script, arg)

	async def wait_for_iframe_load(self, iframe: 'ElementHandle', timeout: int = DEFAULT_WAIT_TIMEOUT) -> None:
		frame = await self._content_frame(iframe)
		await frame.wait_for_load_state('load', timeout=timeout)

	async def get_all_iframe_elements(self) -> list[DOMTree]:
		trees = []
		for iframe in await self.get_iframes():
			content = await self.get_iframe_content(iframe)
			if content is not None:
				trees.append(content)
		return trees

	async def find_elements_across_frames(self, selector: str) -> list['ElementHandle']:
		elements = list(await self._require_page().query_selector_all(selector))
		for iframe in await self.get_iframes():
			elements.extend(await self.query_iframe_selector_all(iframe, selector))
		return elements

	# endregion

	# region - visibility

	async def get_element_visibility_info(self, element: 'ElementHandle') -> ElementVisibilityInfo:
		return ElementVisibilityInfo.model_validate(await element.evaluate(VISIBILITY_INFO_JS))

	async def is_element_visible(self, element: 'ElementHandle') -> bool:
		return (await self.get_element_visibility_info(element)).is_visible

	async def wait_for_element_visible(self, selector: str, timeout: int = DEFAULT_WAIT_TIMEOUT) -> 'ElementHandle':
		element = await self._require_page().wait_for_selector(selector, state='visible', timeout=timeout)
		if element is None:
			raise WaitTimeoutError(f'Element {selector} did not become visible within {timeout}ms')
		return element

	async def wait_for_element_clickable(self, selector: str, timeout: int = DEFAULT_WAIT_TIMEOUT) -> 'ElementHandle':
		deadline = time.monotonic() + timeout / 1000
		while time.monotonic() < deadline:
			element = await self._require_page().query_selector(selector)
			if element is not None and (await self.get_element_visibility_info(element)).is_clickable:
				return element
			await asyncio.sleep(0.1)

		raise WaitTimeoutError(f'Element {selector} did not become clickable within {timeout}ms')

	async def is_element_clickable_at_point(self, element: 'ElementHandle', x: float, y: float) -> bool:
		return await self._require_page().evaluate(CLICKABLE_AT_POINT_JS, [element, x, y])

	async def find_visible_elements(self, selector: str) -> list['ElementHandle']:
		visible_elements = []
		for element in await self._require_page().query_selector_all(selector):
			if await self.is_element_visible(element):
				visible_elements.append(element)
		return visible_elements

	async def get_most_visible_element(self, elements: list['ElementHandle']) -> 'ElementHandle | None':
		"""The visible element with the largest bounding-box area"""
		max_visible_area = 0.0
		most_visible_element = None
		for element in elements:
			info = await self.get_element_visibility_info(element)
			if info.is_visible and info.bounding_box is not None:
				area = info.bounding_box.width * info.bounding_box.height
				if area > max_visible_area:
					max_visible_area = area
					most_visible_element = element
		return most_visible_element

	async def xpath_exists(self, xpath: str) -> bool:
		return await self._require_page().evaluate(XPATH_EXISTS_JS, xpath)

	# endregion
