"""
Tests for DomService, the per-page entry point of the DOM subsystem.

Usage:
	uv run pytest tests/ci/test_dom_service.py -v -s
"""

from unittest.mock import AsyncMock

import pytest

from browser_agent.dom.observer import DRAIN_EVENTS_JS
from browser_agent.dom.service import REMOVE_HIGHLIGHTS_JS, XPATH_EXISTS_JS, DomService
from browser_agent.dom.views import DOMQueryOptions, ElementSelector, WaitTimeoutError
from browser_agent.telemetry.views import DomSnapshotTelemetryEvent
from tests.ci.conftest import build_eval_page, create_mock_handle, element, make_tree, text


def form_page():
	return element(
		'body',
		element(
			'form',
			element('input', attributes={'name': 'q'}, highlight_index=0, xpath='/html/body/form/input'),
			element('button', text('Search'), attributes={'type': 'submit'}, highlight_index=1, xpath='/html/body/form/button'),
		),
		element('a', text('Hidden link'), attributes={'href': '/x'}, xpath='/html/body/a', is_visible=False),
	)


@pytest.fixture
def snapshot_page(mock_page):
	"""Mock page whose snapshot script returns form_page()"""
	service_js = DomService(mock_page).tree_builder.js_code

	async def evaluate(script, *args):
		if script == service_js:
			return build_eval_page(form_page())
		if script == DRAIN_EVENTS_JS:
			return {'installed': True, 'events': []}
		return True

	mock_page.evaluate = AsyncMock(side_effect=evaluate)
	return mock_page


class TestSnapshot:
	"""get_state and the derived accessors."""

	async def test_get_state(self, snapshot_page, telemetry):
		service = DomService(snapshot_page, telemetry=telemetry)

		state = await service.get_state()

		assert sorted(state.selector_map) == [0, 1]
		assert [node.tag_name for node in state.clickable_elements] == ['input', 'button']
		assert state.element_tree.root.tag_name == 'body'

		(event,) = telemetry.of_type(DomSnapshotTelemetryEvent)
		assert event.interactive_count == 2
		assert event.element_count == len(state.element_tree.nodes)
		assert event.properties['duration_seconds'] >= 0
		assert 'name' not in event.properties

	async def test_include_hidden(self, snapshot_page):
		page = element(
			'body',
			{**element('button', highlight_index=0), 'isVisible': False},
			element('a', highlight_index=1),
		)
		snapshot_page.evaluate = AsyncMock(return_value=build_eval_page(page))
		service = DomService(snapshot_page)

		visible_only = await service.get_state()
		with_hidden = await service.get_state(include_hidden=True)

		assert [node.tag_name for node in visible_only.clickable_elements] == ['a']
		assert [node.tag_name for node in with_hidden.clickable_elements] == ['button', 'a']

	async def test_accessors(self, snapshot_page):
		service = DomService(snapshot_page)

		assert (await service.get_dom_tree()).root.tag_name == 'body'
		assert sorted(await service.get_selector_map()) == [0, 1]
		assert len(await service.get_clickable_elements()) == 2
		button = await service.get_element_by_index(1)
		assert button is not None and button.tag_name == 'button'
		assert await service.get_element_by_index(7) is None

	async def test_get_element_by_xpath(self, mock_page):
		handle = create_mock_handle()
		mock_page.query_selector = AsyncMock(return_value=handle)

		assert await DomService(mock_page).get_element_by_xpath('/html/body/a') is handle
		mock_page.query_selector.assert_awaited_with('xpath=/html/body/a')


class TestFindElements:
	"""Filtering a fresh snapshot with ElementSelector."""

	async def test_by_index_waits_for_state(self, snapshot_page):
		service = DomService(snapshot_page)

		elements = await service.find_elements(ElementSelector(index=1))

		assert [node.highlight_index for node in elements] == [1]
		kwargs = snapshot_page.wait_for_function.await_args.kwargs
		assert kwargs['arg'] == [['/html/body/form/button'], True, True]
		assert kwargs['timeout'] == 5_000

	async def test_by_xpath_without_waiting(self, snapshot_page):
		service = DomService(snapshot_page)

		element_node = await service.find_element(
			ElementSelector(xpath='/html/body/form/input'),
			DOMQueryOptions(wait_for_visible=False, wait_for_enabled=False),
		)

		assert element_node is not None and element_node.tag_name == 'input'
		snapshot_page.wait_for_function.assert_not_awaited()

	async def test_by_coordinates(self, snapshot_page):
		first = create_mock_handle()
		first.bounding_box = AsyncMock(return_value={'x': 10, 'y': 20, 'width': 100, 'height': 30})
		second = create_mock_handle()
		second.bounding_box = AsyncMock(return_value={'x': 10, 'y': 60, 'width': 80, 'height': 30})
		snapshot_page.query_selector = AsyncMock(
			side_effect=lambda selector: first if selector.endswith('input') else second
		)
		service = DomService(snapshot_page)

		elements = await service.find_elements(
			ElementSelector(coordinates={'x': 10, 'y': 60}), DOMQueryOptions(wait_for_visible=False, wait_for_enabled=False)
		)

		assert [node.tag_name for node in elements] == ['button']

	async def test_no_match(self, snapshot_page):
		service = DomService(snapshot_page)

		assert await service.find_element(ElementSelector(index=42)) is None
		snapshot_page.wait_for_function.assert_not_awaited()


class TestFileUploader:
	"""is_file_uploader looks at the element and a bounded number of levels below it."""

	def nested(self, depth: int, leaf: dict):
		node = leaf
		for _ in range(depth):
			node = element('div', node)
		return element('body', {**node, 'highlightIndex': 0})

	def check(self, root, max_depth=3):
		tree, selector_map = make_tree(root)
		return DomService.is_file_uploader(tree, selector_map[0], max_depth=max_depth)

	def test_file_input(self):
		assert self.check(element('body', element('input', attributes={'type': 'FILE'}, highlight_index=0)))

	def test_accept_attribute(self):
		assert self.check(element('body', element('input', attributes={'accept': 'image/*'}, highlight_index=0)))

	def test_text_input(self):
		assert not self.check(element('body', element('input', attributes={'type': 'text'}, highlight_index=0)))

	def test_descendant_within_depth(self):
		assert self.check(self.nested(3, element('input', attributes={'type': 'file'})))

	def test_descendant_beyond_depth(self):
		assert not self.check(self.nested(4, element('input', attributes={'type': 'file'})))
		assert self.check(self.nested(4, element('input', attributes={'type': 'file'})), max_depth=4)


class TestMutationsAndLifecycle:
	"""Mutation fan-out, dynamic content waits and cleanup."""

	async def test_handlers_receive_observer_events(self, mock_page):
		drained = [{'type': 'added', 'target': {'tagName': 'li'}}]

		async def evaluate(script, *args):
			if script == DRAIN_EVENTS_JS:
				return {'installed': True, 'events': drained}
			return None

		mock_page.evaluate = AsyncMock(side_effect=evaluate)
		service = DomService(mock_page)
		received = []
		service.on_mutation(received.append)
		service.observer.is_observing = True

		await service.observer.poll_once()
		service.off_mutation(received.append)
		await service.observer.poll_once()

		assert len(received) == 1
		assert received[0].target.tag_name == 'li'

	async def test_wait_for_dynamic_content_needs_a_condition(self, mock_page):
		with pytest.raises(ValueError, match='Either selector or predicate must be provided'):
			await DomService(mock_page).wait_for_dynamic_content()

	async def test_wait_for_dynamic_content_predicate(self, snapshot_page):
		service = DomService(snapshot_page)
		service_js = service.tree_builder.js_code
		batches = [[], [{'type': 'added', 'target': {'tagName': 'button'}}]]

		async def evaluate(script, *args):
			if script == service_js:
				return build_eval_page(form_page())
			if script == DRAIN_EVENTS_JS:
				return {'installed': True, 'events': batches.pop(0) if batches else []}
			return True

		snapshot_page.evaluate = AsyncMock(side_effect=evaluate)

		await service.wait_for_dynamic_content(predicate=lambda state: 1 in state.selector_map, timeout=3_000)
		await service.cleanup()

	async def test_wait_for_dynamic_content_timeout(self, snapshot_page):
		service = DomService(snapshot_page)

		with pytest.raises(WaitTimeoutError, match='Timeout waiting for dynamic content'):
			await service.wait_for_dynamic_content(predicate=lambda state: False, timeout=200)
		await service.cleanup()

	async def test_remove_highlights_never_raises(self, mock_page):
		mock_page.evaluate = AsyncMock(side_effect=RuntimeError('Execution context was destroyed'))

		await DomService(mock_page).remove_highlights()

		mock_page.evaluate.assert_awaited_with(REMOVE_HIGHLIGHTS_JS)

	async def test_cleanup_is_idempotent(self, mock_page):
		service = DomService(mock_page)

		await service.cleanup()
		calls_after_first = mock_page.evaluate.await_count
		await service.cleanup()

		assert mock_page.evaluate.await_count == calls_after_first
		assert service.is_destroyed
		assert service.page is None and service.observer is None
		with pytest.raises(RuntimeError, match='cleaned up'):
			await service.get_element_by_xpath('/html')
		with pytest.raises(RuntimeError, match='cleaned up'):
			await service.wait_for_element('#x')

	async def test_xpath_exists(self, mock_page):
		mock_page.evaluate = AsyncMock(return_value=True)

		assert await DomService(mock_page).xpath_exists('/html/body')
		mock_page.evaluate.assert_awaited_with(XPATH_EXISTS_JS, '/html/body')


def visibility_info(width: float, height: float, is_visible: bool = True, pointer_events: str = 'auto'):
	"""VISIBILITY_INFO_JS payload"""
	return {
		'is_visible': is_visible,
		'is_in_viewport': True,
		'is_clickable': is_visible and pointer_events != 'none',
		'opacity': 1.0,
		'bounding_box': {'x': 0, 'y': 0, 'width': width, 'height': height},
		'computed_style': {'display': 'block', 'visibility': 'visible', 'opacity': '1', 'pointer_events': pointer_events},
		'overlapping_elements': [{'tagName': 'div', 'attributes': {'class': 'modal'}, 'textContent': ''}],
	}


def handle_with_visibility(**kwargs):
	handle = create_mock_handle()
	handle.evaluate = AsyncMock(return_value=visibility_info(**kwargs))
	return handle


class TestVisibility:
	"""Visibility inspection through VISIBILITY_INFO_JS."""

	async def test_visibility_info_is_parsed(self, mock_page):
		handle = handle_with_visibility(width=100, height=20, pointer_events='none')

		info = await DomService(mock_page).get_element_visibility_info(handle)

		assert info.is_visible and not info.is_clickable
		assert info.bounding_box is not None and info.bounding_box.width == 100
		assert info.computed_style.pointer_events == 'none'
		assert info.overlapping_elements[0].tag_name == 'div'
		assert info.overlapping_elements[0].highlight_index == -1

	async def test_get_most_visible_element(self, mock_page):
		small = handle_with_visibility(width=10, height=10)
		large = handle_with_visibility(width=100, height=50)
		hidden = handle_with_visibility(width=500, height=500, is_visible=False)
		service = DomService(mock_page)

		assert await service.get_most_visible_element([small, hidden, large]) is large
		assert await service.get_most_visible_element([hidden]) is None
		assert await service.get_most_visible_element([]) is None

	async def test_find_visible_elements(self, mock_page):
		shown = handle_with_visibility(width=10, height=10)
		hidden = handle_with_visibility(width=10, height=10, is_visible=False)
		mock_page.query_selector_all = AsyncMock(return_value=[hidden, shown])

		assert await DomService(mock_page).find_visible_elements('button') == [shown]

	async def test_wait_for_element_clickable(self, mock_page):
		blocked = handle_with_visibility(width=10, height=10, pointer_events='none')
		ready = handle_with_visibility(width=10, height=10)
		mock_page.query_selector = AsyncMock(side_effect=[None, blocked, ready])

		assert await DomService(mock_page).wait_for_element_clickable('#go', timeout=2_000) is ready

	async def test_wait_for_element_clickable_times_out(self, mock_page):
		mock_page.query_selector = AsyncMock(return_value=None)

		with pytest.raises(WaitTimeoutError, match='did not become clickable'):
			await DomService(mock_page).wait_for_element_clickable('#never', timeout=150)
