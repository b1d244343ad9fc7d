"""
Tests for Controller.multi_act() change detection.

Verifies:
1. New parent-branch hashes after an action abort the rest of the queue
2. Disappearing elements do not abort
3. `done` only runs as the first action
4. Errors stop the sequence
5. Every sequence reports a MultiActTelemetryEvent

Usage:
	uv run pytest tests/ci/test_multi_act.py -v -s
"""

from unittest.mock import AsyncMock

import pytest

from browser_agent.controller.service import Controller, selector_map_path_hashes
from browser_agent.controller.views import ActionModel
from browser_agent.telemetry.views import MultiActTelemetryEvent
from tests.ci.conftest import create_browser_context, element, make_state, text


def results_page():
	return element(
		'body',
		element('div', element('button', text('More'), attributes={'id': 'more'}, highlight_index=0)),
	)


def results_page_with_form():
	return element(
		'body',
		element('div', element('button', text('More'), attributes={'id': 'more'}, highlight_index=0)),
		element('form', element('input', attributes={'name': 'email'}, highlight_index=1)),
	)


def empty_page():
	return element('body', element('p', text('Nothing left')))


def scroll():
	return ActionModel.model_validate({'scroll_down': {'amount': 200}})


@pytest.fixture
def browser_context(mock_page, telemetry):
	browser_context = create_browser_context(mock_page, make_state(results_page()), telemetry=telemetry)
	browser_context.get_state = AsyncMock(return_value=make_state(results_page()))
	return browser_context


@pytest.fixture
def controller(telemetry):
	return Controller(telemetry=telemetry)


class TestPathHashes:
	def test_hashes_cover_every_indexed_element(self):
		state = make_state(results_page_with_form())
		assert len(selector_map_path_hashes(state)) == 2

	def test_no_state(self):
		assert selector_map_path_hashes(None) == set()

	def test_removal_keeps_subset(self):
		assert selector_map_path_hashes(make_state(results_page())) <= selector_map_path_hashes(
			make_state(results_page_with_form())
		)


class TestChangeDetection:
	"""Queued indices are only trusted while the page shows nothing new."""

	async def test_unchanged_page_runs_everything(self, controller, browser_context, mock_page, telemetry):
		results = await controller.multi_act([scroll(), scroll(), scroll()], browser_context)

		assert len(results) == 3
		assert all(result.error is None for result in results)
		assert mock_page.evaluate.await_count == 3
		assert browser_context.get_state.await_count == 2

		(event,) = telemetry.of_type(MultiActTelemetryEvent)
		assert event.actions_requested == 3
		assert event.actions_executed == 3
		assert event.aborted_reason is None

	async def test_new_elements_abort_remaining(self, controller, browser_context, mock_page, telemetry):
		browser_context.get_state = AsyncMock(return_value=make_state(results_page_with_form()))

		results = await controller.multi_act([scroll(), scroll(), scroll()], browser_context)

		assert len(results) == 2
		assert results[1].extracted_content == 'Something new appeared after action 1 / 3'
		assert results[1].include_in_memory
		assert mock_page.evaluate.await_count == 1

		(event,) = telemetry.of_type(MultiActTelemetryEvent)
		assert event.actions_executed == 1
		assert event.action_names == ['scroll_down']
		assert event.aborted_reason == 'new_elements'

	async def test_removed_elements_do_not_abort(self, controller, browser_context):
		browser_context.get_state = AsyncMock(return_value=make_state(empty_page()))

		results = await controller.multi_act([scroll(), scroll()], browser_context)

		assert len(results) == 2
		assert all(result.error is None for result in results)

	async def test_check_disabled(self, controller, browser_context):
		browser_context.get_state = AsyncMock(return_value=make_state(results_page_with_form()))

		results = await controller.multi_act([scroll(), scroll()], browser_context, check_for_new_elements=False)

		assert len(results) == 2
		browser_context.get_state.assert_not_awaited()

	async def test_snapshots_first_when_nothing_cached(self, controller, browser_context):
		browser_context.session.cached_state = None

		async def get_state():
			browser_context.session.cached_state = make_state(results_page())
			return browser_context.session.cached_state

		browser_context.get_state = AsyncMock(side_effect=get_state)

		results = await controller.multi_act([scroll(), scroll()], browser_context)

		assert len(results) == 2
		assert browser_context.get_state.await_count == 2


class TestSequenceRules:
	async def test_done_only_as_first_action(self, controller, browser_context, telemetry):
		actions = [scroll(), ActionModel.model_validate({'done': {'text': 'finished'}})]

		results = await controller.multi_act(actions, browser_context)

		assert len(results) == 1
		assert not results[0].is_done
		(event,) = telemetry.of_type(MultiActTelemetryEvent)
		assert event.aborted_reason == 'done'

	async def test_done_first_stops_sequence(self, controller, browser_context):
		actions = [ActionModel.model_validate({'done': {'text': 'finished', 'success': True}}), scroll()]

		results = await controller.multi_act(actions, browser_context)

		assert len(results) == 1
		assert results[0].is_done and results[0].success
		assert results[0].extracted_content == 'finished'

	async def test_error_stops_sequence(self, controller, browser_context, telemetry):
		actions = [ActionModel.model_validate({'click_element': {'index': 42}}), scroll()]

		results = await controller.multi_act(actions, browser_context)

		assert len(results) == 1
		assert 'Element with index 42 does not exist' in results[0].error
		(event,) = telemetry.of_type(MultiActTelemetryEvent)
		assert event.aborted_reason == 'error'
		assert event.action_names == ['click_element']

	async def test_unexpected_exception_propagates(self, controller, browser_context):
		controller.act = AsyncMock(side_effect=RuntimeError('executor crashed'))

		with pytest.raises(RuntimeError, match='executor crashed'):
			await controller.multi_act([scroll()], browser_context)
