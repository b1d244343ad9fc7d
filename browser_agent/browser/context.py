"""
Playwright BrowserContext wrapper that owns the cached selector map.
"""

import asyncio
import base64
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from playwright.async_api import Browser as PlaywrightBrowser
from playwright.async_api import BrowserContext as PlaywrightBrowserContext
from playwright.async_api import ElementHandle, Page
from pydantic import BaseModel, ConfigDict, Field
from uuid_extensions import uuid7str

from browser_agent.browser.resolver import ElementResolver
from browser_agent.browser.views import (
	BrowserError,
	BrowserState,
	BrowserStateHistory,
	ResolutionExhaustedError,
	TabInfo,
	URLNotAllowedError,
)
from browser_agent.dom.history_tree_processor.service import HistoryTreeProcessor
from browser_agent.dom.service import DomService
from browser_agent.dom.views import DOMElementNode, DOMTree, SelectorMap
from browser_agent.telemetry.service import NoopTelemetry, TelemetryProtocol
from browser_agent.utils import log_pretty_url, time_execution_async

if TYPE_CHECKING:
	from browser_agent.browser.browser import Browser

logger = logging.getLogger(__name__)

ANTI_DETECTION_INIT_SCRIPT = """
	// Webdriver property
	Object.defineProperty(navigator, 'webdriver', {
		get: () => undefined
	});

	// Languages
	Object.defineProperty(navigator, 'languages', {
		get: () => ['en-US', 'en']
	});

	// Plugins
	Object.defineProperty(navigator, 'plugins', {
		get: () => [1, 2, 3, 4, 5]
	});

	// Chrome runtime
	window.chrome = { runtime: {} };
"""

# request filtering for _wait_for_stable_network
RELEVANT_RESOURCE_TYPES = {
	'document',
	'stylesheet',
	'image',
	'font',
	'script',
	'iframe',
}

RELEVANT_CONTENT_TYPES = {
	'text/html',
	'text/css',
	'application/javascript',
	'image/',
	'font/',
	'application/json',
}

IGNORED_URL_PATTERNS = {
	# Analytics and tracking
	'analytics',
	'tracking',
	'telemetry',
	'beacon',
	'metrics',
	# Ad-related
	'doubleclick',
	'adsystem',
	'adserver',
	'advertising',
	# Social media widgets
	'facebook.com/plugins',
	'platform.twitter',
	'linkedin.com/embed',
	# Live chat and support
	'livechat',
	'zendesk',
	'intercom',
	'crisp.chat',
	'hotjar',
	# Push notifications
	'push-notifications',
	'onesignal',
	'pushwoosh',
	# Background sync/heartbeat
	'heartbeat',
	'ping',
	'alive',
	# WebRTC and streaming
	'webrtc',
	'rtmp://',
	'wss://',
	# Common CDNs for dynamic content
	'cloudfront.net',
	'fastly.net',
}

STREAMING_CONTENT_TYPES = (
	'streaming',
	'video',
	'audio',
	'webm',
	'mp4',
	'event-stream',
	'websocket',
	'protobuf',
)

MAX_RELEVANT_RESPONSE_BYTES = 5 * 1024 * 1024


class BrowserContextWindowSize(BaseModel):
	width: int
	height: int


class BrowserContextConfig(BaseModel):
	"""
	Configuration for the BrowserContext. Waits are in seconds.

	wait_for_network_idle_page_load_time: network must be quiet this long before get_state
	maximum_wait_page_load_time: give up waiting for the network after this long
	wait_between_actions: pause between the actions of a multi_act sequence
	allowed_domains: `example.com` also allows its subdomains, None allows everything
	"""

	model_config = ConfigDict(extra='forbid')

	cookies_file: str | None = None
	minimum_wait_page_load_time: float = 0.5
	wait_for_network_idle_page_load_time: float = 1.0
	maximum_wait_page_load_time: float = 5.0
	wait_between_actions: float = 1.0

	disable_security: bool = False
	browser_window_size: BrowserContextWindowSize = Field(
		default_factory=lambda: BrowserContextWindowSize(width=1280, height=1100)
	)
	no_viewport: bool = False
	save_recording_path: str | None = None
	trace_path: str | None = None
	user_agent: str = (
		'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
	)
	allowed_domains: list[str] | None = None

	highlight_elements: bool = True
	include_shadow_dom: bool = False
	viewport_expansion: int = 500
	max_element_retries: int = 3
	element_retry_delay: float = 0.1


@dataclass
class BrowserSession:
	context: PlaywrightBrowserContext
	cached_state: BrowserState | None = None


class BrowserContext:
	def __init__(
		self,
		browser: 'Browser',
		config: BrowserContextConfig | None = None,
		telemetry: TelemetryProtocol | None = None,
	):
		self.context_id = uuid7str()
		logger.debug(f'Initializing new browser context with id: {self.context_id}')

		self.config = config or BrowserContextConfig()
		self.browser = browser
		self.telemetry = telemetry or NoopTelemetry()

		self.session: BrowserSession | None = None
		self._closed = False
		self.current_page: Page | None = None
		self.dom_service: DomService | None = None
		self.resolver = ElementResolver(self.get_current_page)

	async def __aenter__(self):
		await self.get_session()
		return self

	async def __aexit__(self, exc_type, exc_val, exc_tb):
		await self.close()

	def __repr__(self) -> str:
		return f'BrowserContext#{self.context_id[-4:]}'

	# region - lifecycle

	async def _initialize_session(self) -> BrowserSession:
		logger.debug(f'🌎 Initializing {self}')
		playwright_browser = await self.browser.get_playwright_browser()
		context = await self._create_context(playwright_browser)
		context.on('page', self._on_new_page)

		self.current_page = context.pages[-1] if context.pages else await context.new_page()
		self.session = BrowserSession(context=context)
		return self.session

	async def get_session(self) -> BrowserSession:
		if self._closed:
			raise BrowserError(f'{self} is closed')
		if self.session is None:
			return await self._initialize_session()
		return self.session

	def _on_new_page(self, page: Page) -> None:
		logger.debug(f'📄 New page opened in {self}: {log_pretty_url(page.url)}')
		self.current_page = page

	async def _create_context(self, browser: PlaywrightBrowser) -> PlaywrightBrowserContext:
		if self.browser.config.cdp_url and browser.contexts:
			# reuse the context of the Chrome instance we attached to
			context = browser.contexts[0]
		else:
			context = await browser.new_context(
				viewport=None if self.config.no_viewport else self.config.browser_window_size.model_dump(),  # type: ignore[arg-type]
				no_viewport=self.config.no_viewport,
				user_agent=self.config.user_agent,
				java_script_enabled=True,
				bypass_csp=self.config.disable_security,
				ignore_https_errors=self.config.disable_security,
				record_video_dir=self.config.save_recording_path,
			)

		if self.config.trace_path:
			await context.tracing.start(screenshots=True, snapshots=True, sources=True)

		await self._load_cookies(context)
		await context.add_init_script(ANTI_DETECTION_INIT_SCRIPT)
		return context

	async def close(self) -> None:
		"""Close the Playwright context; the cached state goes with it"""
		self._closed = True
		if self.session is None:
			return

		logger.debug(f'🛑 Closing {self}')
		session, self.session = self.session, None
		try:
			await self._save_cookies(session.context)

			if self.config.trace_path:
				try:
					await session.context.tracing.stop(path=str(Path(self.config.trace_path) / f'{self.context_id}.zip'))
				except Exception as e:
					logger.debug(f'Failed to stop tracing: {type(e).__name__}: {e}')

			if self.dom_service is not None:
				await self.dom_service.cleanup()

			try:
				await session.context.close()
			except Exception as e:
				logger.debug(f'Failed to close context: {type(e).__name__}: {e}')
		finally:
			self.dom_service = None
			self.current_page = None

	# endregion

	# region - pages

	async def get_current_page(self) -> Page:
		session = await self.get_session()
		if self.current_page is None or self.current_page.is_closed():
			pages = session.context.pages
			self.current_page = pages[-1] if pages else await session.context.new_page()
		return self.current_page

	def _get_dom_service(self, page: Page) -> DomService:
		if self.dom_service is None or self.dom_service.page is not page:
			self.dom_service = DomService(page, telemetry=self.telemetry)
		return self.dom_service

	async def get_tabs_info(self) -> list[TabInfo]:
		"""Get information about all tabs"""
		session = await self.get_session()
		tabs_info = []
		for page_id, page in enumerate(session.context.pages):
			try:
				title = await asyncio.wait_for(page.title(), timeout=2.0)
			except Exception:
				title = page.url
			tabs_info.append(TabInfo(page_id=page_id, url=page.url, title=title))
		return tabs_info

	@time_execution_async('--switch_to_tab')
	async def switch_to_tab(self, page_id: int) -> Page:
		"""Switch to a tab by its page_id, negative ids count from the last tab"""
		session = await self.get_session()
		pages = session.context.pages

		if page_id >= len(pages) or page_id < -len(pages):
			raise BrowserError(f'No tab found with page_id: {page_id}')

		page = pages[page_id]
		if not self._is_url_allowed(page.url):
			raise BrowserError(f'Cannot switch to tab with non-allowed URL: {page.url}')

		self.current_page = page
		await page.bring_to_front()
		# indices of the previous tab are meaningless here
		session.cached_state = None

		try:
			await page.wait_for_load_state()
		except Exception as e:
			logger.warning(f'⚠️ New page failed to fully load: {type(e).__name__}: {e}')
		return page

	async def create_new_tab(self, url: str | None = None) -> Page:
		if url and not self._is_url_allowed(url):
			raise URLNotAllowedError(f'Cannot create new tab with non-allowed URL: {url}')

		session = await self.get_session()
		page = await session.context.new_page()
		self.current_page = page
		session.cached_state = None

		if url:
			await page.goto(url)
			await self.wait_for_page_load()
		return page

	async def close_current_tab(self) -> None:
		session = await self.get_session()
		page = await self.get_current_page()
		pages = session.context.pages
		current_index = pages.index(page) if page in pages else len(pages) - 1

		await page.close()
		session.cached_state = None

		remaining = session.context.pages
		if remaining:
			self.current_page = remaining[min(current_index, len(remaining) - 1)]
			await self.current_page.bring_to_front()
		else:
			self.current_page = await session.context.new_page()

	# endregion

	# region - navigation

	def _is_url_allowed(self, url: str) -> bool:
		"""Check if a URL is allowed based on the allowed_domains configuration. SECURITY CRITICAL."""
		if not self.config.allowed_domains:
			return True

		if url.startswith(('about:', 'chrome://', 'data:')):
			return True

		try:
			domain = (urlparse(url).hostname or '').lower()
		except ValueError:
			return False

		return any(
			domain == allowed_domain.lower() or domain.endswith('.' + allowed_domain.lower())
			for allowed_domain in self.config.allowed_domains
		)

	async def _check_and_handle_navigation(self, page: Page) -> None:
		"""Check if current page URL is allowed and handle if not."""
		if not self._is_url_allowed(page.url):
			logger.warning(f'⛔️ Navigation to non-allowed URL detected: {page.url}')
			try:
				await self.go_back()
			except Exception as e:
				logger.error(f'⛔️ Failed to go back after detecting non-allowed URL: {type(e).__name__}: {e}')
			raise URLNotAllowedError(f'Navigation to non-allowed URL: {page.url}')

	async def navigate_to(self, url: str) -> None:
		if not self._is_url_allowed(url):
			raise URLNotAllowedError(f'Navigation to non-allowed URL: {url}')

		page = await self.get_current_page()
		await page.goto(url)
		await page.wait_for_load_state()

	async def refresh_page(self) -> None:
		page = await self.get_current_page()
		await page.reload()
		await page.wait_for_load_state()

	async def go_back(self) -> None:
		page = await self.get_current_page()
		try:
			await page.go_back(timeout=10_000, wait_until='domcontentloaded')
		except Exception as e:
			# the next get_state waits for the page anyway
			logger.debug(f'⏮️ Error during go_back: {type(e).__name__}: {e}')

	async def go_forward(self) -> None:
		page = await self.get_current_page()
		try:
			await page.go_forward(timeout=10_000, wait_until='domcontentloaded')
		except Exception as e:
			logger.debug(f'⏭️ Error during go_forward: {type(e).__name__}: {e}')

	async def _wait_for_stable_network(self) -> None:
		page = await self.get_current_page()

		pending_requests = set()
		loop = asyncio.get_running_loop()
		last_activity = loop.time()

		def on_request(request) -> None:
			nonlocal last_activity
			if request.resource_type not in RELEVANT_RESOURCE_TYPES:
				return

			url = request.url.lower()
			if any(pattern in url for pattern in IGNORED_URL_PATTERNS):
				return
			if url.startswith(('data:', 'blob:')):
				return

			headers = request.headers
			if headers.get('purpose') == 'prefetch' or headers.get('sec-fetch-dest') in ('video', 'audio'):
				return

			pending_requests.add(request)
			last_activity = loop.time()

		def on_response(response) -> None:
			nonlocal last_activity
			request = response.request
			if request not in pending_requests:
				return
			pending_requests.discard(request)

			content_type = response.headers.get('content-type', '').lower()
			if any(t in content_type for t in STREAMING_CONTENT_TYPES):
				return
			if not any(ct in content_type for ct in RELEVANT_CONTENT_TYPES):
				return

			content_length = response.headers.get('content-length')
			if content_length and content_length.isdigit() and int(content_length) > MAX_RELEVANT_RESPONSE_BYTES:
				return

			last_activity = loop.time()

		page.on('request', on_request)
		page.on('response', on_response)

		start_time = loop.time()
		now = start_time
		try:
			while True:
				await asyncio.sleep(0.1)
				now = loop.time()
				if not pending_requests and (now - last_activity) >= self.config.wait_for_network_idle_page_load_time:
					break
				if now - start_time > self.config.maximum_wait_page_load_time:
					logger.debug(
						f'Network timeout after {self.config.maximum_wait_page_load_time}s with {len(pending_requests)} '
						f'pending requests: {[r.url for r in pending_requests]}'
					)
					break
		finally:
			page.remove_listener('request', on_request)
			page.remove_listener('response', on_response)

		logger.debug(f'💤 Network stabilized for {self.config.wait_for_network_idle_page_load_time} seconds')

	async def wait_for_page_load(self, timeout_overwrite: float | None = None) -> None:
		"""Wait for the network to calm down, at least `minimum_wait_page_load_time` seconds in total"""
		start_time = time.time()

		page = await self.get_current_page()
		try:
			await self._wait_for_stable_network()
			await self._check_and_handle_navigation(page)
		except URLNotAllowedError:
			raise
		except Exception as e:
			logger.warning(f'⚠️ Page load for {log_pretty_url(page.url)} failed due to {type(e).__name__}, continuing anyway...')

		elapsed = time.time() - start_time
		remaining = max((timeout_overwrite or self.config.minimum_wait_page_load_time) - elapsed, 0)
		logger.debug(f'--Page loaded in {elapsed:.2f} seconds, waiting for additional {remaining:.2f} seconds')

		if remaining > 0:
			await asyncio.sleep(remaining)

	# endregion

	# region - state

	@time_execution_async('--get_state')
	async def get_state(self, use_vision: bool = False) -> BrowserState:
		"""Wait for the page to settle, then replace the cached state with a fresh snapshot"""
		await self.wait_for_page_load()
		session = await self.get_session()
		state = await self._update_state(use_vision=use_vision)

		if self.config.cookies_file:
			await self._save_cookies(session.context)

		return state

	async def _update_state(self, focus_element: int = -1, use_vision: bool = False) -> BrowserState:
		session = await self.get_session()
		page = await self.get_current_page()

		try:
			await page.evaluate('1')
		except Exception as e:
			logger.debug(f'👋 Current page is no longer accessible: {type(e).__name__}: {e}')
			pages = session.context.pages
			if not pages:
				raise BrowserError('No valid pages available')
			self.current_page = page = pages[-1]
			logger.debug(f'🔄 Switched to page: {log_pretty_url(page.url)}')

		try:
			dom_service = self._get_dom_service(page)
			await dom_service.remove_highlights()
			content = await dom_service.get_state(
				include_shadow_dom=self.config.include_shadow_dom,
				highlight_elements=self.config.highlight_elements,
				focus_element=focus_element,
				viewport_expansion=self.config.viewport_expansion,
			)

			screenshot_b64 = await self.take_screenshot() if use_vision else None

			state = BrowserState(
				element_tree=content.element_tree,
				selector_map=content.selector_map,
				clickable_elements=content.clickable_elements,
				url=page.url,
				title=await page.title(),
				tabs=await self.get_tabs_info(),
				screenshot=screenshot_b64,
			)
		except Exception as e:
			logger.error(f'❌ Failed to update state: {type(e).__name__}: {e}')
			if session.cached_state is not None:
				return session.cached_state
			raise

		session.cached_state = state
		return state

	async def get_state_history(self, interacted_elements: list[DOMElementNode | None] | None = None) -> BrowserStateHistory:
		"""Summarize the cached state, with history records for the elements an action touched"""
		session = await self.get_session()
		state = session.cached_state
		if state is None:
			state = await self._update_state()

		interacted = [
			HistoryTreeProcessor.convert_dom_element_to_history_element(state.element_tree, element) if element else None
			for element in (interacted_elements or [])
		]
		return BrowserStateHistory(
			url=state.url,
			title=state.title,
			tabs=state.tabs,
			interacted_element=interacted,
			screenshot=state.screenshot,
		)

	async def get_selector_map(self) -> SelectorMap:
		session = await self.get_session()
		if session.cached_state is None:
			return {}
		return session.cached_state.selector_map

	async def _get_cached_tree(self) -> DOMTree:
		session = await self.get_session()
		if session.cached_state is None:
			raise BrowserError('No DOM snapshot cached, call get_state() first')
		return session.cached_state.element_tree

	async def get_locate_element(self, element: DOMElementNode) -> ElementHandle | None:
		return await self.resolver.locate(await self._get_cached_tree(), element)

	@time_execution_async('--get_element_by_index')
	async def get_element_by_index(self, index: int) -> ElementHandle | None:
		"""
		Resolve a selector-map index to a live, connected element handle.

		Retries `max_element_retries` times; between attempts the entry is refreshed from a
		fresh snapshot when the page is still on the cached URL.
		"""
		if index < 0:
			raise BrowserError(f'Invalid element index: {index}')

		selector_map = await self.get_selector_map()
		if index not in selector_map:
			raise BrowserError(f'No element found at index: {index}')

		tree = await self._get_cached_tree()
		element_node = selector_map[index]
		max_retries = self.config.max_element_retries
		last_error: Exception | None = None

		for attempt in range(1, max_retries + 1):
			try:
				element_handle = await self.resolver.locate(tree, element_node)
				if element_handle is None:
					return None

				if not await element_handle.evaluate('el => el.isConnected'):
					raise BrowserError('Element is detached from DOM')
				return element_handle

			except Exception as e:
				last_error = e
				logger.debug(f'Attempt {attempt}/{max_retries} to get element at index {index} failed: {type(e).__name__}: {e}')
				if attempt < max_retries:
					await asyncio.sleep(self.config.element_retry_delay)
					tree, element_node = await self._refresh_selector_map_entry(index, tree, element_node)

		raise ResolutionExhaustedError(
			f'Failed to get element at index {index} after {max_retries} retries. Last error: {last_error}',
			last_error=last_error,
		)

	async def _refresh_selector_map_entry(
		self, index: int, tree: DOMTree, element_node: DOMElementNode
	) -> tuple[DOMTree, DOMElementNode]:
		session = await self.get_session()
		page = await self.get_current_page()
		if session.cached_state is None or page.url != session.cached_state.url:
			return tree, element_node

		# the fresh snapshot only serves this lookup; indices the caller holds stay valid
		history_element = HistoryTreeProcessor.convert_dom_element_to_history_element(tree, element_node)
		try:
			content = await self._get_dom_service(page).get_state(
				include_shadow_dom=self.config.include_shadow_dom,
				viewport_expansion=self.config.viewport_expansion,
			)
		except Exception as e:
			logger.debug(f'Could not refresh element at index {index}: {type(e).__name__}: {e}')
			return tree, element_node

		refreshed = HistoryTreeProcessor.find_history_element_in_tree(
			history_element, content.element_tree
		) or content.selector_map.get(index)
		if refreshed is None:
			return tree, element_node
		return content.element_tree, refreshed

	async def get_dom_element_by_index(self, index: int) -> DOMElementNode | None:
		"""Cached node at `index` if its xpath still resolves; stale entries are dropped from the map"""
		if index < 0:
			raise BrowserError(f'Invalid element index: {index}')

		selector_map = await self.get_selector_map()
		element = selector_map.get(index)
		if element is None:
			return None

		try:
			page = await self.get_current_page()
			if not await self._get_dom_service(page).xpath_exists(element.xpath):
				del selector_map[index]
				return None
			return element
		except Exception as e:
			logger.warning(f'Error validating element at index {index}: {type(e).__name__}: {e}')
			return None

	async def is_file_uploader(self, element_node: DOMElementNode, max_depth: int = 3, current_depth: int = 0) -> bool:
		return DomService.is_file_uploader(await self._get_cached_tree(), element_node, max_depth, current_depth)

	# endregion

	# region - element interaction

	@time_execution_async('--click_element_node')
	async def _click_element_node(self, element_node: DOMElementNode) -> None:
		page = await self.get_current_page()

		element_handle = await self.get_locate_element(element_node)
		if element_handle is None:
			raise BrowserError(f'Element: {repr(element_node)} not found')

		try:
			try:
				await element_handle.click(timeout=1_500)
			except Exception as e:
				logger.debug(f'Native click failed, falling back to JavaScript click: {type(e).__name__}: {e}')
				await page.evaluate('(el) => el.click()', element_handle)

			try:
				await page.wait_for_load_state()
			except Exception as e:
				logger.warning(f'⚠️ Page {log_pretty_url(page.url)} failed to finish loading after click: {type(e).__name__}: {e}')
			await self._check_and_handle_navigation(page)
		except URLNotAllowedError:
			raise
		except Exception as e:
			raise BrowserError(f'Failed to click element: {repr(element_node)}. Error: {str(e)}') from e

	@time_execution_async('--input_text_element_node')
	async def _input_text_element_node(self, element_node: DOMElementNode, text: str) -> None:
		element_handle = await self.get_locate_element(element_node)
		if element_handle is None:
			raise BrowserError(f'Element: {repr(element_node)} not found')

		try:
			await element_handle.evaluate('el => {el.textContent = ""; el.value = "";}')
			await element_handle.click(timeout=2_000)
			page = await self.get_current_page()
			await page.keyboard.type(text)
			return
		except Exception as e:
			logger.debug(f'Input text with click and type failed, trying fill(): {type(e).__name__}: {e}')

		try:
			await element_handle.fill(text, timeout=3_000)
		except Exception as e:
			logger.debug(f'❌ Failed to input text into element: {repr(element_node)}: {type(e).__name__}: {e}')
			raise BrowserError(f'Failed to input text into index {element_node.highlight_index}') from e

	async def click_element_node(self, element_node: DOMElementNode) -> None:
		await self._click_element_node(element_node)

	async def input_text_element_node(self, element_node: DOMElementNode, text: str) -> None:
		await self._input_text_element_node(element_node, text)

	async def remove_highlights(self) -> None:
		page = await self.get_current_page()
		await self._get_dom_service(page).remove_highlights()

	# endregion

	# region - page helpers

	async def get_page_html(self) -> str:
		page = await self.get_current_page()
		return await page.content()

	async def execute_javascript(self, script: str) -> Any:
		page = await self.get_current_page()
		return await page.evaluate(script)

	@time_execution_async('--take_screenshot')
	async def take_screenshot(self, full_page: bool = False) -> str:
		"""Returns a base64 encoded png screenshot of the current page"""
		page = await self.get_current_page()
		await page.bring_to_front()
		await page.wait_for_load_state()

		screenshot = await page.screenshot(full_page=full_page, animations='disabled', type='png')
		return base64.b64encode(screenshot).decode('utf-8')

	# endregion

	# region - cookies

	async def _load_cookies(self, context: PlaywrightBrowserContext) -> None:
		if not self.config.cookies_file:
			return

		cookies_path = Path(self.config.cookies_file).expanduser()
		if not cookies_path.exists():
			return

		try:
			cookies = json.loads(cookies_path.read_text())
			logger.info(f'🍪 Loaded {len(cookies)} cookies from {cookies_path}')
			await context.add_cookies(cookies)
		except Exception as e:
			logger.warning(f'⚠️ Failed to load cookies from {cookies_path}: {type(e).__name__}: {e}')

	async def _save_cookies(self, context: PlaywrightBrowserContext) -> None:
		if not self.config.cookies_file:
			return

		try:
			cookies = await context.cookies()
			cookies_path = Path(self.config.cookies_file).expanduser()
			cookies_path.parent.mkdir(parents=True, exist_ok=True)
			cookies_path.write_text(json.dumps(cookies, indent=2))
			logger.debug(f'🍪 Saved {len(cookies)} cookies to {cookies_path}')
		except Exception as e:
			logger.warning(f'⚠️ Failed to save cookies: {type(e).__name__}: {e}')

	async def save_cookies(self) -> None:
		session = await self.get_session()
		await self._save_cookies(session.context)

	async def get_cookies(self) -> list[dict[str, Any]]:
		session = await self.get_session()
		return [dict(cookie) for cookie in await session.context.cookies()]

	async def set_cookies(self, cookies: list[dict[str, Any]]) -> None:
		session = await self.get_session()
		await session.context.add_cookies(cookies)  # type: ignore[arg-type]

	async def clear_cookies(self) -> None:
		session = await self.get_session()
		await session.context.clear_cookies()

	# endregion
