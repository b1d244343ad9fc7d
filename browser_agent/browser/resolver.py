"""
Turns a snapshot node back into a live element handle.

Strategies, first hit wins:
	1. simple CSS selector derived from the node's xpath (`#id`, `.a.b`, `tag`, `[attr="v"]`)
	2. the raw xpath
	   (1 and 2 are skipped inside iframes: xpaths restart at the frame's document)
	3. an ancestor walk with enhanced CSS selectors, entering iframes and open shadow roots
"""

import logging
import re
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from browser_agent.dom.views import DOMElementNode, DOMTree
from browser_agent.utils import time_execution_async, time_execution_sync

if TYPE_CHECKING:
	from playwright.async_api import ElementHandle, Frame, Page

logger = logging.getLogger(__name__)

# Empirical selector ranking; tunable, not load-bearing.
CLASS_SPECIFICITY = 10
ATTRIBUTE_SPECIFICITY = 1
SPECIFICITY_TARGET = 20
POSITIONAL_FALLBACK_BELOW = 10

SAFE_ATTRIBUTES = {
	'name',
	'type',
	'value',
	'title',
	'alt',
	'role',
	'data-testid',
	'aria-label',
	'part',
}
PRIORITY_ATTRIBUTES = ('name', 'data-testid', 'role')

_ID_XPATH = re.compile(r'^//\*\[@id=(["\'])(.+?)\1\]$')
_CLASS_XPATH = re.compile(r'^//\*\[@class=(["\'])(.+?)\1\]$')
_TAG_XPATH = re.compile(r'^//(\w+)$')
_ATTRIBUTE_XPATH = re.compile(r'^//\*\[@([^=\]]+)=(["\'])(.*?)\2\]$')


def css_escape(value: str) -> str:
	"""Escape a string for use as a CSS identifier, like `CSS.escape` in the browser."""
	escaped = []
	for i, char in enumerate(value):
		code = ord(char)
		if code == 0:
			escaped.append('�')
		elif 0x1 <= code <= 0x1F or code == 0x7F or (char.isdigit() and (i == 0 or (i == 1 and value[0] == '-'))):
			escaped.append(f'\\{code:x} ')
		elif i == 0 and char == '-' and len(value) == 1:
			escaped.append('\\-')
		elif code >= 0x80 or char in '-_' or char.isalnum():
			escaped.append(char)
		else:
			escaped.append(f'\\{char}')
	return ''.join(escaped)


class ElementResolver:
	def __init__(self, get_page: Callable[[], Awaitable['Page']]):
		self.get_page = get_page

	@staticmethod
	def convert_simple_xpath_to_css_selector(xpath: str) -> str | None:
		"""Converts simple XPath patterns to CSS selectors, None for anything more complex."""
		if not xpath:
			return None

		if match := _ID_XPATH.match(xpath):
			return f'#{css_escape(match.group(2))}'

		if match := _CLASS_XPATH.match(xpath):
			return ''.join(f'.{css_escape(class_name)}' for class_name in match.group(2).split())

		if match := _TAG_XPATH.match(xpath):
			return match.group(1).lower()

		if match := _ATTRIBUTE_XPATH.match(xpath):
			attribute, value = match.group(1), match.group(3)
			return f'[{css_escape(attribute)}="{value}"]'

		return None

	@classmethod
	@time_execution_sync('--enhanced_css_selector_for_element')
	def enhanced_css_selector_for_element(cls, tree: DOMTree, element: DOMElementNode) -> str:
		try:
			css_selector = element.tag_name.lower()

			element_id = element.attributes.get('id')
			if element_id:
				return f'{css_selector}#{css_escape(element_id)}'

			specificity = 0

			classes = [class_name for class_name in element.attributes.get('class', '').split() if class_name]
			for class_name in classes:
				css_selector += f'.{css_escape(class_name)}'
				specificity += CLASS_SPECIFICITY

			attribute_entries = sorted(
				((attribute, value) for attribute, value in element.attributes.items() if attribute in SAFE_ATTRIBUTES),
				key=lambda entry: 0 if entry[0] in PRIORITY_ATTRIBUTES else 1,
			)

			for attribute, value in attribute_entries:
				if specificity >= SPECIFICITY_TARGET:
					break
				if not value.strip():
					continue

				safe_attribute = attribute.replace(':', r'\:')
				if any(char in value for char in '"\'<>`'):
					safe_value = value.replace('"', '\\"')
					css_selector += f'[{safe_attribute}*="{safe_value}"]'
				else:
					css_selector += f'[{safe_attribute}="{value}"]'
				specificity += ATTRIBUTE_SPECIFICITY

			if specificity < POSITIONAL_FALLBACK_BELOW:
				parent = tree.parent_of(element)
				if parent is not None:
					same_tag_siblings = [
						sibling for sibling in tree.element_children_of(parent) if sibling.tag_name == element.tag_name
					]
					if len(same_tag_siblings) > 1:
						position = next(i for i, sibling in enumerate(same_tag_siblings) if sibling is element) + 1
						css_selector += f':nth-of-type({position})'

			return css_selector

		except Exception as e:
			logger.warning(f'Error creating enhanced selector: {type(e).__name__}: {e}')
			return f'[highlight_index="{element.highlight_index}"]'

	@time_execution_async('--locate_element')
	async def locate(self, tree: DOMTree, element: DOMElementNode) -> 'ElementHandle | None':
		"""Find the live handle for `element`, or None when every strategy misses."""
		page = await self.get_page()

		try:
			ancestors = tree.ancestors(element)
			inside_iframe = any(parent.is_iframe or parent.tag_name == 'iframe' for parent in ancestors)

			if element.xpath and not inside_iframe:
				simple_selector = self.convert_simple_xpath_to_css_selector(element.xpath)
				if simple_selector:
					element_handle = await page.query_selector(simple_selector)
					if element_handle:
						await self._scroll_into_view(element_handle)
						return element_handle

				element_handle = await page.query_selector(f'xpath={element.xpath}')
				if element_handle:
					await self._scroll_into_view(element_handle)
					return element_handle

			context: 'Page | Frame | ElementHandle' = page
			for parent in ancestors:
				parent_selector = self.enhanced_css_selector_for_element(tree, parent)

				if parent.is_iframe or parent.tag_name == 'iframe':
					frame_element = await context.query_selector(parent_selector)
					frame = await frame_element.content_frame() if frame_element is not None else None
					if frame is None:
						logger.debug(f'Could not enter iframe {parent_selector} while locating {element!r}')
						return None
					context = frame
				else:
					parent_handle = await context.query_selector(parent_selector)
					if parent_handle is None:
						break
					shadow_root = await parent_handle.evaluate_handle('el => el.shadowRoot')
					context = shadow_root.as_element() or parent_handle

			target_selector = self.enhanced_css_selector_for_element(tree, element)
			element_handle = await context.query_selector(target_selector)
			if element_handle:
				await self._scroll_into_view(element_handle)
				return element_handle

			return None

		except Exception as e:
			logger.warning(f'Failed to locate element {element!r}: {type(e).__name__}: {e}')
			return None

	async def _scroll_into_view(self, element_handle: 'ElementHandle') -> None:
		try:
			await element_handle.scroll_into_view_if_needed(timeout=1_000)
		except Exception as e:
			logger.debug(f'Could not scroll element into view: {type(e).__name__}: {e}')
