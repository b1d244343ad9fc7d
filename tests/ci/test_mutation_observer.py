"""
Tests for DOMObserverManager, the polling bridge between the in-page MutationObserver
and Python listeners.

Verifies:
1. Drained records are emitted in order and malformed ones are skipped
2. Nothing is emitted once observation stops
3. wait_for_* resolve on a confirmed mutation and time out cleanly

Usage:
	uv run pytest tests/ci/test_mutation_observer.py -v -s
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from browser_agent.dom.observer import DISCONNECT_OBSERVER_JS, DRAIN_EVENTS_JS, INSTALL_OBSERVER_JS, DOMObserverManager
from browser_agent.dom.views import (
	AddedMutationEvent,
	AttributeMutationEvent,
	ModifiedMutationEvent,
	RemovedMutationEvent,
	WaitTimeoutError,
)
from tests.ci.conftest import create_mock_handle, create_mock_page


def raw_event(event_type: str, tag: str = 'div', **extra):
	return {'type': event_type, 'target': {'tagName': tag, 'attributes': {}, 'textContent': ''}, **extra}


class ScriptedPage:
	"""Feeds queued batches of mutation records to DRAIN_EVENTS_JS, one batch per poll"""

	def __init__(self, installed: bool = True):
		self.page = create_mock_page()
		self.page.evaluate = AsyncMock(side_effect=self.evaluate)
		self.batches: list[list[dict]] = []
		self.installed = installed
		self.scripts: list[str] = []

	async def evaluate(self, script, *args):
		self.scripts.append(script)
		if script == DRAIN_EVENTS_JS:
			events = self.batches.pop(0) if self.batches else []
			return {'installed': self.installed, 'events': events}
		return True


@pytest.fixture
def scripted():
	return ScriptedPage()


class TestPolling:
	"""poll_once drains and emits."""

	async def test_emits_in_recording_order(self, scripted):
		observer = DOMObserverManager(scripted.page)
		observer.is_observing = True
		received = []
		observer.on_mutation(received.append)

		scripted.batches.append(
			[
				raw_event('added', 'li'),
				raw_event('attribute', 'button', attributeName='disabled', oldValue=None, newValue=''),
				raw_event('modified', 'p', oldValue='a', newValue='b'),
				raw_event('removed', 'li'),
			]
		)
		events = await observer.poll_once()

		assert [type(event) for event in received] == [
			AddedMutationEvent,
			AttributeMutationEvent,
			ModifiedMutationEvent,
			RemovedMutationEvent,
		]
		assert events == received
		assert received[0].target.tag_name == 'li'
		assert received[0].target.highlight_index == -1
		assert received[1].attribute_name == 'disabled'
		assert received[2].new_value == 'b'

	async def test_async_listener_is_awaited(self, scripted):
		observer = DOMObserverManager(scripted.page)
		observer.is_observing = True
		received = []

		async def listener(event):
			await asyncio.sleep(0)
			received.append(event)

		observer.on_mutation(listener)
		scripted.batches.append([raw_event('added')])
		await observer.poll_once()

		assert len(received) == 1

	async def test_malformed_records_are_skipped(self, scripted):
		observer = DOMObserverManager(scripted.page)
		observer.is_observing = True
		received = []
		observer.on_mutation(received.append)

		scripted.batches.append([{'type': 'exploded'}, raw_event('added'), {'type': 'attribute', 'target': {}}])
		await observer.poll_once()

		assert len(received) == 1
		assert isinstance(received[0], AddedMutationEvent)

	async def test_failing_listener_does_not_block_others(self, scripted):
		observer = DOMObserverManager(scripted.page)
		observer.is_observing = True
		received = []

		def broken(event):
			raise RuntimeError('boom')

		observer.on_mutation(broken)
		observer.on_mutation(received.append)
		scripted.batches.append([raw_event('added')])
		await observer.poll_once()

		assert len(received) == 1

	async def test_nothing_emitted_when_not_observing(self, scripted):
		observer = DOMObserverManager(scripted.page)
		received = []
		observer.on_mutation(received.append)

		scripted.batches.append([raw_event('added')])
		await observer.poll_once()

		assert received == []

	async def test_reinstalls_after_navigation(self):
		scripted = ScriptedPage(installed=False)
		observer = DOMObserverManager(scripted.page)
		observer.is_observing = True

		await observer.poll_once()

		assert scripted.scripts == [DRAIN_EVENTS_JS, INSTALL_OBSERVER_JS]

	async def test_off_mutation_removes_listener(self, scripted):
		observer = DOMObserverManager(scripted.page)
		observer.is_observing = True
		received = []
		observer.on_mutation(received.append)
		observer.off_mutation(received.append)

		scripted.batches.append([raw_event('added')])
		await observer.poll_once()

		assert received == []
		assert observer.listener_count == 0


class TestLifecycle:
	"""idle -> observing -> idle, cleanup is terminal."""

	async def test_start_and_stop(self, scripted):
		observer = DOMObserverManager(scripted.page, poll_interval=0.01)
		await observer.start_observing()
		assert observer.is_observing
		assert scripted.scripts[0] == INSTALL_OBSERVER_JS

		await observer.stop_observing()
		assert not observer.is_observing
		assert scripted.scripts[-1] == DISCONNECT_OBSERVER_JS

	async def test_no_delivery_after_stop(self, scripted):
		observer = DOMObserverManager(scripted.page, poll_interval=0.01)
		received = []
		observer.on_mutation(received.append)

		await observer.start_observing()
		await observer.stop_observing()
		scripted.batches.append([raw_event('added')])
		await asyncio.sleep(0.05)

		assert received == []
		await observer.cleanup()

	async def test_cleanup_is_terminal(self, scripted):
		observer = DOMObserverManager(scripted.page, poll_interval=0.01)
		observer.on_mutation(lambda event: None)
		await observer.start_observing()

		await observer.cleanup()
		await observer.cleanup()
		await observer.start_observing()

		assert observer.is_destroyed
		assert not observer.is_observing
		assert observer.page is None
		assert observer.listener_count == 0
		assert await observer.poll_once() == []


class TestWaiting:
	"""Waiting on the mutation stream."""

	async def test_wait_for_element_resolves(self, scripted):
		scripted.page.query_selector = AsyncMock(return_value=create_mock_handle())
		observer = DOMObserverManager(scripted.page, poll_interval=0.01)
		scripted.batches.append([raw_event('added', 'div')])

		await observer.wait_for_element('#late', timeout=2_000)

		scripted.page.query_selector.assert_awaited_with('#late')
		assert observer.listener_count == 0
		await observer.cleanup()

	async def test_unconfirmed_mutation_keeps_waiting(self, scripted):
		scripted.page.query_selector = AsyncMock(side_effect=[None, create_mock_handle()])
		observer = DOMObserverManager(scripted.page, poll_interval=0.01)
		scripted.batches.extend([[raw_event('added', 'span')], [], [raw_event('added', 'div')]])

		await observer.wait_for_element('#late', timeout=2_000)

		assert scripted.page.query_selector.await_count == 2
		await observer.cleanup()

	async def test_wait_for_element_times_out(self, scripted):
		observer = DOMObserverManager(scripted.page, poll_interval=0.01)

		with pytest.raises(WaitTimeoutError, match='Timeout waiting for element: #never'):
			await observer.wait_for_element('#never', timeout=100)

		assert observer.listener_count == 0
		await observer.cleanup()

	async def test_wait_for_removal(self, scripted):
		observer = DOMObserverManager(scripted.page, poll_interval=0.01)
		scripted.batches.append([raw_event('removed', 'div')])

		await observer.wait_for_element_removal('#spinner', timeout=2_000)

		assert observer.listener_count == 0
		await observer.cleanup()

	async def test_wait_for_attribute_change_filters_by_name(self, scripted):
		scripted.page.query_selector = AsyncMock(return_value=create_mock_handle())
		observer = DOMObserverManager(scripted.page, poll_interval=0.01)
		scripted.batches.append([raw_event('attribute', attributeName='class', newValue='x')])

		with pytest.raises(WaitTimeoutError):
			await observer.wait_for_attribute_change('#btn', 'disabled', timeout=150)

		scripted.batches.append([raw_event('attribute', attributeName='disabled', newValue='')])
		await observer.wait_for_attribute_change('#btn', 'disabled', timeout=2_000)
		await observer.cleanup()

	def test_timeout_error_is_builtin_timeout(self):
		assert issubclass(WaitTimeoutError, TimeoutError)
