import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from pydantic import TypeAdapter, ValidationError

from browser_agent.dom.views import (
	AddedMutationEvent,
	AttributeMutationEvent,
	MutationEvent,
	RemovedMutationEvent,
	WaitTimeoutError,
)

if TYPE_CHECKING:
	from playwright.async_api import Page

logger = logging.getLogger(__name__)

MutationListener = Callable[[MutationEvent], Awaitable[None] | None]

DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_WAIT_TIMEOUT = 30_000

INSTALL_OBSERVER_JS = """() => {
	if (window.__domObserver) return true;
	window.__domMutationEvents = window.__domMutationEvents || [];

	const serializeNode = (node) => {
		const attributes = {};
		for (const attr of node.attributes || []) {
			attributes[attr.name] = attr.value;
		}
		return {
			tagName: node.tagName.toLowerCase(),
			attributes,
			textContent: node.textContent || '',
			highlightIndex: -1,
		};
	};

	window.__domObserver = new MutationObserver((mutations) => {
		const events = window.__domMutationEvents || (window.__domMutationEvents = []);
		for (const mutation of mutations) {
			if (mutation.type === 'childList') {
				mutation.addedNodes.forEach((node) => {
					if (node.nodeType === Node.ELEMENT_NODE) events.push({ type: 'added', target: serializeNode(node) });
				});
				mutation.removedNodes.forEach((node) => {
					if (node.nodeType === Node.ELEMENT_NODE) events.push({ type: 'removed', target: serializeNode(node) });
				});
			} else if (mutation.type === 'attributes') {
				events.push({
					type: 'attribute',
					target: serializeNode(mutation.target),
					attributeName: mutation.attributeName,
					oldValue: mutation.oldValue,
					newValue: mutation.target.getAttribute(mutation.attributeName),
				});
			} else if (mutation.type === 'characterData' && mutation.target.parentElement) {
				events.push({
					type: 'modified',
					target: serializeNode(mutation.target.parentElement),
					oldValue: mutation.oldValue,
					newValue: mutation.target.textContent,
				});
			}
		}
	});

	window.__domObserver.observe(document.body || document.documentElement, {
		childList: true,
		subtree: true,
		attributes: true,
		characterData: true,
		attributeOldValue: true,
		characterDataOldValue: true,
	});
	return true;
}"""

DRAIN_EVENTS_JS = """() => {
	const events = window.__domMutationEvents || [];
	window.__domMutationEvents = [];
	return { installed: !!window.__domObserver, events };
}"""

DISCONNECT_OBSERVER_JS = """() => {
	if (window.__domObserver) {
		window.__domObserver.disconnect();
		delete window.__domObserver;
	}
	delete window.__domMutationEvents;
}"""

_mutation_event_adapter: TypeAdapter[MutationEvent] = TypeAdapter(MutationEvent)


class DOMObserverManager:
	"""
	Surfaces in-page MutationObserver records as MutationEvents by polling.

	idle -> observing -> idle, cleanup() is terminal. Delivery is at-most-once: each poll
	drains and clears the in-page buffer before emitting, and events recorded while
	not observing are lost.
	"""

	def __init__(self, page: 'Page', poll_interval: float = DEFAULT_POLL_INTERVAL):
		self.page: 'Page | None' = page
		self.poll_interval = poll_interval
		self.is_observing = False
		self.is_destroyed = False
		self._listeners: list[MutationListener] = []
		self._poll_task: asyncio.Task | None = None

	@property
	def listener_count(self) -> int:
		return len(self._listeners)

	def on_mutation(self, listener: MutationListener) -> None:
		self._listeners.append(listener)

	def off_mutation(self, listener: MutationListener) -> None:
		self._listeners = [existing for existing in self._listeners if existing is not listener]

	async def start_observing(self) -> None:
		if self.is_observing or self.is_destroyed or self.page is None:
			return

		await self.page.evaluate(INSTALL_OBSERVER_JS)
		self.is_observing = True
		self._poll_task = asyncio.create_task(self._poll_loop(), name='dom_mutation_poll')
		logger.debug('Started observing DOM mutations')

	async def stop_observing(self) -> None:
		if not self.is_observing or self.is_destroyed:
			return

		self.is_observing = False
		poll_task, self._poll_task = self._poll_task, None
		if poll_task is not None and poll_task is not asyncio.current_task():
			poll_task.cancel()
			try:
				await poll_task
			except asyncio.CancelledError:
				pass

		try:
			if self.page is not None:
				await self.page.evaluate(DISCONNECT_OBSERVER_JS)
		except Exception as e:
			logger.debug(f'Failed to stop observing DOM mutations: {type(e).__name__}: {e}')

	async def cleanup(self) -> None:
		if self.is_destroyed:
			return

		await self.stop_observing()
		self._listeners.clear()
		self.page = None
		self.is_destroyed = True

	async def poll_once(self) -> list[MutationEvent]:
		"""Drain the in-page buffer and emit every record, in recording order."""
		if self.page is None:
			return []

		drained: dict[str, Any] = await self.page.evaluate(DRAIN_EVENTS_JS)

		# a navigation replaces the window, reinstall the hook on the new document
		if not drained.get('installed') and self.is_observing:
			await self.page.evaluate(INSTALL_OBSERVER_JS)

		events: list[MutationEvent] = []
		for raw_event in drained.get('events', []):
			try:
				events.append(_mutation_event_adapter.validate_python(raw_event))
			except ValidationError as e:
				logger.debug(f'Skipping malformed mutation record: {e}')

		for event in events:
			if not self.is_observing:
				break
			await self._emit(event)
		return events

	async def _poll_loop(self) -> None:
		while self.is_observing and not self.is_destroyed:
			try:
				await self.poll_once()
			except asyncio.CancelledError:
				raise
			except Exception as e:
				logger.debug(f'Error polling mutation events: {type(e).__name__}: {e}')

			# the next poll is only scheduled once this one is fully processed
			await asyncio.sleep(self.poll_interval)

	async def _emit(self, event: MutationEvent) -> None:
		for listener in list(self._listeners):
			try:
				result = listener(event)
				if inspect.isawaitable(result):
					await result
			except asyncio.CancelledError:
				raise
			except Exception as e:
				logger.error(f'Mutation listener {getattr(listener, "__name__", listener)} failed: {type(e).__name__}: {e}')

	# region - waiting on the mutation stream

	async def _wait_for_mutation(
		self,
		matches: Callable[[MutationEvent], bool],
		confirm: Callable[[], Awaitable[bool]],
		timeout: int,
		timeout_message: str,
	) -> None:
		candidates: asyncio.Queue[MutationEvent] = asyncio.Queue()

		def listener(event: MutationEvent) -> None:
			if matches(event):
				candidates.put_nowait(event)

		async def wait_until_confirmed() -> None:
			while True:
				await candidates.get()
				# a mutation record alone does not prove the final DOM state
				if await confirm():
					return

		self.on_mutation(listener)
		try:
			if not self.is_observing:
				await self.start_observing()
			await asyncio.wait_for(wait_until_confirmed(), timeout=timeout / 1000)
		except TimeoutError as e:
			raise WaitTimeoutError(timeout_message) from e
		finally:
			self.off_mutation(listener)

	async def _selector_exists(self, selector: str) -> bool:
		if self.page is None:
			return False
		return await self.page.query_selector(selector) is not None

	async def wait_for_element(self, selector: str, timeout: int = DEFAULT_WAIT_TIMEOUT) -> None:
		"""Wait until an element matching `selector` is added to the DOM (timeout in ms)."""

		async def exists() -> bool:
			return await self._selector_exists(selector)

		await self._wait_for_mutation(
			lambda event: isinstance(event, AddedMutationEvent),
			exists,
			timeout,
			f'Timeout waiting for element: {selector}',
		)

	async def wait_for_element_removal(self, selector: str, timeout: int = DEFAULT_WAIT_TIMEOUT) -> None:
		async def gone() -> bool:
			return not await self._selector_exists(selector)

		await self._wait_for_mutation(
			lambda event: isinstance(event, RemovedMutationEvent),
			gone,
			timeout,
			f'Timeout waiting for element removal: {selector}',
		)

	async def wait_for_attribute_change(
		self,
		selector: str,
		attribute_name: str,
		timeout: int = DEFAULT_WAIT_TIMEOUT,
	) -> None:
		async def exists() -> bool:
			return await self._selector_exists(selector)

		await self._wait_for_mutation(
			lambda event: isinstance(event, AttributeMutationEvent) and event.attribute_name == attribute_name,
			exists,
			timeout,
			f'Timeout waiting for attribute change: {selector}[{attribute_name}]',
		)

	# endregion
