import asyncio
import json
import logging
from typing import assert_never
from urllib.parse import quote_plus

from markdownify import markdownify

from browser_agent.browser.context import BrowserContext
from browser_agent.browser.views import BrowserError, BrowserState
from browser_agent.controller.views import (
	ActionModel,
	ActionResult,
	AnyAction,
	ClickElement,
	ClickElementAction,
	Done,
	DoneAction,
	ExtractContent,
	ExtractContentAction,
	GetDropdownOptions,
	GetDropdownOptionsAction,
	GoBack,
	GoToUrl,
	GoToUrlAction,
	InputText,
	InputTextAction,
	OpenTab,
	OpenTabAction,
	ScrollAction,
	ScrollDown,
	ScrollToText,
	ScrollToTextAction,
	ScrollUp,
	SearchGoogle,
	SearchGoogleAction,
	SelectDropdownOption,
	SelectDropdownOptionAction,
	SendKeys,
	SendKeysAction,
	SwitchTab,
	SwitchTabAction,
)
from browser_agent.telemetry.service import NoopTelemetry, TelemetryProtocol
from browser_agent.telemetry.views import (
	ControllerRegisteredFunctionsTelemetryEvent,
	MultiActTelemetryEvent,
	RegisteredFunction,
)
from browser_agent.utils import time_execution_async, time_execution_sync

logger = logging.getLogger(__name__)

DROPDOWN_OPTIONS_JS = """(xpath) => {
	const element = document.evaluate(xpath, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue;
	if (!element) return null;

	if (element.tagName.toLowerCase() === 'select') {
		return {
			type: 'select',
			options: Array.from(element.options).map((opt) => ({ text: opt.text, value: opt.value, index: opt.index })),
		};
	}

	const role = element.getAttribute('role');
	if (role === 'menu' || role === 'listbox' || role === 'combobox') {
		const options = [];
		element.querySelectorAll('[role="menuitem"], [role="option"]').forEach((item, idx) => {
			const text = item.textContent.trim();
			if (text) options.push({ text, value: text, index: idx });
		});
		return { type: 'aria', options };
	}

	return null;
}"""

CLICK_ARIA_OPTION_JS = """([xpath, targetText]) => {
	const element = document.evaluate(xpath, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue;
	if (!element) return false;
	for (const item of element.querySelectorAll('[role="menuitem"], [role="option"]')) {
		if (item.textContent.trim() === targetText) {
			item.click();
			return true;
		}
	}
	return false;
}"""


def selector_map_path_hashes(state: BrowserState | None) -> set[str]:
	"""Parent-branch hashes of every indexed element in `state`"""
	if state is None:
		return set()
	return {state.element_tree.parent_branch_hash(node) for node in state.selector_map.values()}


class Controller:
	"""Executes the closed action vocabulary against a BrowserContext"""

	def __init__(self, telemetry: TelemetryProtocol | None = None):
		self.telemetry = telemetry or NoopTelemetry()
		self.telemetry.capture(
			ControllerRegisteredFunctionsTelemetryEvent(
				registered_functions=[
					RegisteredFunction(name=name, params=params)
					for name, params in self.registered_actions().items()
				]
			)
		)

	@staticmethod
	def registered_actions() -> dict[str, dict]:
		"""Action name -> JSON schema of its parameters"""
		actions = {}
		for variant in AnyAction.__args__:
			((name, field),) = variant.model_fields.items()
			actions[name] = field.annotation.model_json_schema()
		return actions

	@time_execution_async('--act')
	async def act(self, action: ActionModel, browser_context: BrowserContext) -> ActionResult:
		"""Execute an action"""
		action_name = action.name
		try:
			return await self._execute(action.root, browser_context)
		except BrowserError as e:
			logger.error(f'❌ Action {action_name} failed with BrowserError: {str(e)}')
			return ActionResult(error=str(e), include_in_memory=True)
		except TimeoutError as e:
			logger.error(f'❌ Action {action_name} failed with TimeoutError: {str(e)}')
			return ActionResult(error=f'{action_name} was not executed due to timeout.', include_in_memory=True)
		except Exception as e:
			logger.error(f"Action '{action_name}' failed with error: {type(e).__name__}: {str(e)}")
			return ActionResult(error=str(e), include_in_memory=True)

	async def _execute(self, action: AnyAction, browser: BrowserContext) -> ActionResult:
		match action:
			case SearchGoogle(search_google=params):
				return await self.search_google(params, browser)
			case GoToUrl(go_to_url=params):
				return await self.go_to_url(params, browser)
			case GoBack():
				return await self.go_back(browser)
			case ClickElement(click_element=params):
				return await self.click_element(params, browser)
			case InputText(input_text=params):
				return await self.input_text(params, browser)
			case SwitchTab(switch_tab=params):
				return await self.switch_tab(params, browser)
			case OpenTab(open_tab=params):
				return await self.open_tab(params, browser)
			case ExtractContent(extract_content=params):
				return await self.extract_content(params, browser)
			case ScrollDown(scroll_down=params):
				return await self.scroll(params, browser, down=True)
			case ScrollUp(scroll_up=params):
				return await self.scroll(params, browser, down=False)
			case SendKeys(send_keys=params):
				return await self.send_keys(params, browser)
			case ScrollToText(scroll_to_text=params):
				return await self.scroll_to_text(params, browser)
			case GetDropdownOptions(get_dropdown_options=params):
				return await self.get_dropdown_options(params, browser)
			case SelectDropdownOption(select_dropdown_option=params):
				return await self.select_dropdown_option(params, browser)
			case Done(done=params):
				return self.done(params)
			case _:
				assert_never(action)

	@time_execution_async('--multi_act')
	async def multi_act(
		self,
		actions: list[ActionModel],
		browser_context: BrowserContext,
		check_for_new_elements: bool = True,
	) -> list[ActionResult]:
		"""
		Execute several actions in order against one page state.

		Indices in the queued actions refer to the cached selector map, so before every
		action after the first the page is re-snapshotted; a parent-branch hash missing
		from the cached map means new elements appeared and the rest of the queue is
		dropped. Elements that disappear do not stop the sequence.
		"""
		results: list[ActionResult] = []
		executed_actions: list[str] = []
		aborted_reason: str | None = None
		total_actions = len(actions)

		session = await browser_context.get_session()
		if session.cached_state is None:
			await browser_context.get_state()
		cached_path_hashes = selector_map_path_hashes(session.cached_state)

		for i, action in enumerate(actions):
			if i > 0:
				# ONLY ALLOW TO CALL `done` IF IT IS A SINGLE ACTION
				if isinstance(action.root, Done):
					logger.debug(f'Done action is allowed only as a single action - stopped after action {i} / {total_actions}.')
					aborted_reason = 'done'
					break

				logger.debug(f'Waiting {browser_context.config.wait_between_actions} seconds between actions')
				await asyncio.sleep(browser_context.config.wait_between_actions)

				if check_for_new_elements:
					new_state = await browser_context.get_state()
					new_path_hashes = selector_map_path_hashes(new_state)
					if not new_path_hashes.issubset(cached_path_hashes):
						msg = f'Something new appeared after action {i} / {total_actions}'
						logger.info(msg)
						results.append(ActionResult(extracted_content=msg, include_in_memory=True))
						aborted_reason = 'new_elements'
						break

			try:
				result = await self.act(action, browser_context)
			except Exception as e:
				logger.error(f'❌ Executing action {i + 1} failed -> {type(e).__name__}: {e}')
				raise

			results.append(result)
			executed_actions.append(action.name)
			logger.debug(f'Executed action {i + 1} / {total_actions}: {action.name}')

			if result.is_done or result.error:
				aborted_reason = 'done' if result.is_done else 'error'
				break

		self.telemetry.capture(
			MultiActTelemetryEvent(
				actions_requested=total_actions,
				actions_executed=len(executed_actions),
				action_names=executed_actions,
				aborted_reason=aborted_reason,
			)
		)
		return results

	# region - actions

	async def search_google(self, params: SearchGoogleAction, browser: BrowserContext) -> ActionResult:
		page = await browser.get_current_page()
		await page.goto(f'https://www.google.com/search?q={quote_plus(params.query)}&udm=14')
		await page.wait_for_load_state()
		msg = f'🔍  Searched for "{params.query}" in Google'
		logger.info(msg)
		return ActionResult(extracted_content=msg, include_in_memory=True)

	async def go_to_url(self, params: GoToUrlAction, browser: BrowserContext) -> ActionResult:
		await browser.navigate_to(params.url)
		msg = f'🔗  Navigated to {params.url}'
		logger.info(msg)
		return ActionResult(extracted_content=msg, include_in_memory=True)

	async def go_back(self, browser: BrowserContext) -> ActionResult:
		await browser.go_back()
		msg = '🔙  Navigated back'
		logger.info(msg)
		return ActionResult(extracted_content=msg, include_in_memory=True)

	async def click_element(self, params: ClickElementAction, browser: BrowserContext) -> ActionResult:
		session = await browser.get_session()
		state = session.cached_state
		if state is None or params.index not in state.selector_map:
			raise BrowserError(f'Element with index {params.index} does not exist - retry or use alternative actions')

		element_node = state.selector_map[params.index]
		initial_pages = len(session.context.pages)

		# a click would open the native file chooser
		if await browser.is_file_uploader(element_node):
			msg = f'Index {params.index} - has an element which opens file upload dialog. To upload files please use a specific function to upload files'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		await browser._click_element_node(element_node)
		text = state.element_tree.get_all_text_till_next_clickable_element(element_node, max_depth=2)
		msg = f'🖱️  Clicked button with index {params.index}: {text}'
		logger.info(msg)
		logger.debug(f'Element xpath: {element_node.xpath}')

		if len(session.context.pages) > initial_pages:
			new_tab_msg = 'New tab opened - switching to it'
			msg += f' - {new_tab_msg}'
			logger.info(new_tab_msg)
			await browser.switch_to_tab(-1)
		return ActionResult(extracted_content=msg, include_in_memory=True)

	async def input_text(self, params: InputTextAction, browser: BrowserContext) -> ActionResult:
		selector_map = await browser.get_selector_map()
		if params.index not in selector_map:
			raise BrowserError(f'Element index {params.index} does not exist - retry or use alternative actions')

		element_node = selector_map[params.index]
		await browser._input_text_element_node(element_node, params.text)
		msg = f'⌨️  Input {params.text} into index {params.index}'
		logger.info(msg)
		logger.debug(f'Element xpath: {element_node.xpath}')
		return ActionResult(extracted_content=msg, include_in_memory=True)

	async def switch_tab(self, params: SwitchTabAction, browser: BrowserContext) -> ActionResult:
		page = await browser.switch_to_tab(params.page_id)
		msg = f'🔄  Switched to tab {params.page_id}'
		logger.info(msg)
		logger.debug(f'Tab url: {page.url}')
		return ActionResult(extracted_content=msg, include_in_memory=True)

	async def open_tab(self, params: OpenTabAction, browser: BrowserContext) -> ActionResult:
		await browser.create_new_tab(params.url)
		msg = f'🔗  Opened new tab with {params.url}'
		logger.info(msg)
		return ActionResult(extracted_content=msg, include_in_memory=True)

	async def extract_content(self, params: ExtractContentAction, browser: BrowserContext) -> ActionResult:
		page = await browser.get_current_page()

		if params.format == 'html':
			content = await page.content()
		elif params.format == 'text':
			content = await page.inner_text('body')
		else:
			strip = [] if params.include_links else ['a', 'img']
			content = markdownify(await page.content(), strip=strip)

		msg = f'📄  Extracted page content as {params.format}\n: {content}\n'
		logger.info(msg)
		return ActionResult(extracted_content=msg, include_in_memory=True)

	async def scroll(self, params: ScrollAction, browser: BrowserContext, down: bool) -> ActionResult:
		page = await browser.get_current_page()
		direction = 'down' if down else 'up'

		if params.amount is not None:
			dy = params.amount if down else -params.amount
			await page.evaluate('(y) => window.scrollBy(0, y)', dy)
			amount = f'{params.amount} pixels'
		else:
			sign = 1 if down else -1
			await page.evaluate('(sign) => window.scrollBy(0, sign * window.innerHeight)', sign)
			amount = 'one page'

		msg = f'🔍  Scrolled {direction} the page by {amount}'
		logger.info(msg)
		return ActionResult(extracted_content=msg, include_in_memory=True)

	async def send_keys(self, params: SendKeysAction, browser: BrowserContext) -> ActionResult:
		page = await browser.get_current_page()
		try:
			await page.keyboard.press(params.keys)
		except Exception as e:
			if 'Unknown key' not in str(e):
				raise
			# not a key name, press it character by character
			for key in params.keys:
				await page.keyboard.press(key)

		msg = f'⌨️  Sent keys: {params.keys}'
		logger.info(msg)
		return ActionResult(extracted_content=msg, include_in_memory=True)

	async def scroll_to_text(self, params: ScrollToTextAction, browser: BrowserContext) -> ActionResult:
		page = await browser.get_current_page()
		text = params.text
		locators = [
			page.get_by_text(text, exact=False),
			page.locator(f'text={text}'),
			page.locator(f"//*[contains(text(), '{text}')]"),
		]

		for locator in locators:
			try:
				if await locator.count() == 0:
					continue
				element = locator.first
				if await element.is_visible():
					await element.scroll_into_view_if_needed()
					await asyncio.sleep(0.5)  # Wait for scroll to complete
					msg = f'🔍  Scrolled to text: {text}'
					logger.info(msg)
					return ActionResult(extracted_content=msg, include_in_memory=True)
			except Exception as e:
				logger.debug(f'Locator attempt failed: {type(e).__name__}: {e}')

		msg = f"Text '{text}' not found or not visible on page"
		logger.info(msg)
		return ActionResult(extracted_content=msg, include_in_memory=True)

	async def get_dropdown_options(self, params: GetDropdownOptionsAction, browser: BrowserContext) -> ActionResult:
		page = await browser.get_current_page()
		dom_element = await browser.get_dom_element_by_index(params.index)
		if dom_element is None:
			raise BrowserError(f'Element index {params.index} does not exist - retry or use alternative actions')

		all_options = []
		for frame_index, frame in enumerate(page.frames):
			try:
				options = await frame.evaluate(DROPDOWN_OPTIONS_JS, dom_element.xpath)
			except Exception as e:
				logger.debug(f'Frame {frame_index} evaluation failed: {type(e).__name__}: {e}')
				continue

			if options:
				logger.debug(f'Found {options["type"]} dropdown in frame {frame_index}')
				for option in options['options']:
					# json encoding so the exact string can be passed to select_dropdown_option
					all_options.append(f'{option["index"]}: text={json.dumps(option["text"])}')

		if not all_options:
			msg = 'No options found in any frame for dropdown'
			logger.info(msg)
			return ActionResult(extracted_content=msg, include_in_memory=True)

		msg = '\n'.join(all_options) + '\nUse the exact text string in select_dropdown_option'
		logger.info(msg)
		return ActionResult(extracted_content=msg, include_in_memory=True)

	async def select_dropdown_option(self, params: SelectDropdownOptionAction, browser: BrowserContext) -> ActionResult:
		page = await browser.get_current_page()
		dom_element = await browser.get_dom_element_by_index(params.index)
		if dom_element is None:
			raise BrowserError(f'Element index {params.index} does not exist - retry or use alternative actions')

		if dom_element.tag_name != 'select' and dom_element.attributes.get('role') not in ('menu', 'listbox', 'combobox'):
			msg = f'Cannot select option: element with index {params.index} is a {dom_element.tag_name}, not a select'
			logger.error(msg)
			return ActionResult(error=msg, include_in_memory=True)

		for frame_index, frame in enumerate(page.frames):
			try:
				if dom_element.tag_name == 'select':
					# nth(0) to avoid strict mode errors on duplicate matches
					selected_values = await frame.locator(f'xpath={dom_element.xpath}').nth(0).select_option(
						label=params.text, timeout=1_000
					)
					msg = f'selected option {params.text} with value {selected_values}'
				elif await frame.evaluate(CLICK_ARIA_OPTION_JS, [dom_element.xpath, params.text]):
					msg = f'selected menu item {params.text}'
				else:
					continue

				logger.info(msg + f' in frame {frame_index}')
				return ActionResult(extracted_content=msg, include_in_memory=True)
			except Exception as e:
				logger.debug(f'Frame {frame_index} attempt failed: {type(e).__name__}: {e}')

		msg = f"Could not select option '{params.text}' in any frame"
		logger.info(msg)
		return ActionResult(extracted_content=msg, include_in_memory=True)

	@time_execution_sync('--done')
	def done(self, params: DoneAction) -> ActionResult:
		return ActionResult(is_done=True, success=params.success, extracted_content=params.text)

	# endregion
