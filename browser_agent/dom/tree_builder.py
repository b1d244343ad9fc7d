import logging
from importlib import resources
from typing import TYPE_CHECKING, Any

from browser_agent.dom.views import (
	DOMBaseNode,
	DOMElementNode,
	DOMTextNode,
	DOMTree,
	ElementNotFoundError,
	SelectorMap,
)
from browser_agent.utils import time_execution_async

if TYPE_CHECKING:
	from playwright.async_api import ElementHandle, Page

logger = logging.getLogger(__name__)


def load_build_dom_tree_js() -> str:
	return resources.files('browser_agent.dom').joinpath('buildDomTree.js').read_text(encoding='utf-8')


class TreeSnapshotBuilder:
	"""Walks the live document through buildDomTree.js and turns the result into a DOMTree arena."""

	def __init__(self, page: 'Page'):
		self.page = page
		self.js_code = load_build_dom_tree_js()

	@time_execution_async('--build_dom_tree')
	async def build(
		self,
		root: 'ElementHandle | None' = None,
		include_shadow_dom: bool = False,
		highlight_elements: bool = False,
		focus_element: int = -1,
		viewport_expansion: int = 0,
	) -> tuple[DOMTree, SelectorMap]:
		args = {
			'root': root,
			'doHighlightElements': highlight_elements,
			'focusHighlightIndex': focus_element,
			'viewportExpansion': viewport_expansion,
			'includeShadowDom': include_shadow_dom,
		}

		eval_page: dict[str, Any] = await self.page.evaluate(self.js_code, args)

		if not eval_page or eval_page.get('error') == 'ROOT_NOT_FOUND':
			raise ElementNotFoundError('Could not find root element for DOM snapshot')

		if 'map' not in eval_page or 'rootId' not in eval_page:
			raise ValueError(f'Invalid structure returned from buildDomTree.js, keys: {list(eval_page.keys())}')

		return self._construct_dom_tree(eval_page)

	def _construct_dom_tree(self, eval_page: dict[str, Any]) -> tuple[DOMTree, SelectorMap]:
		js_node_map: dict[str, dict[str, Any]] = eval_page['map']
		js_root_id = str(eval_page['rootId'])

		nodes: list[DOMBaseNode] = []
		selector_map: SelectorMap = {}

		# (js id, arena id of the parent), visited in pre-order so arena ids follow document order
		stack: list[tuple[str, int | None]] = [(js_root_id, None)]
		while stack:
			js_id, parent_id = stack.pop()
			node_data = js_node_map.get(js_id)
			if node_data is None:
				logger.debug(f'Child node with id {js_id} missing from buildDomTree.js output')
				continue

			node_id = len(nodes)
			node, children_ids = self._parse_node(node_data, node_id, parent_id)
			nodes.append(node)

			if parent_id is not None:
				parent = nodes[parent_id]
				assert isinstance(parent, DOMElementNode)
				parent.children.append(node_id)

			if isinstance(node, DOMElementNode) and node.highlight_index is not None:
				if node.highlight_index in selector_map:
					raise ValueError(f'Duplicate highlight index {node.highlight_index} in DOM snapshot')
				selector_map[node.highlight_index] = node

			for child_id in reversed(children_ids):
				stack.append((str(child_id), node_id))

		if not nodes or not isinstance(nodes[0], DOMElementNode):
			raise ElementNotFoundError('DOM snapshot root is not an element')

		return DOMTree(nodes=nodes, root_id=0), selector_map

	def _parse_node(
		self,
		node_data: dict[str, Any],
		node_id: int,
		parent_id: int | None,
	) -> tuple[DOMBaseNode, list[int]]:
		if node_data.get('type') == 'TEXT_NODE':
			text_node = DOMTextNode(
				node_id=node_id,
				is_visible=node_data.get('isVisible', False),
				parent=parent_id,
				text=node_data['text'],
			)
			return text_node, []

		element_node = DOMElementNode(
			node_id=node_id,
			is_visible=node_data.get('isVisible', False),
			parent=parent_id,
			tag_name=node_data['tagName'],
			xpath=node_data['xpath'],
			attributes=node_data.get('attributes', {}),
			is_interactive=node_data.get('isInteractive', False),
			is_top_element=node_data.get('isTopElement', False),
			is_in_viewport=node_data.get('isInViewport', False),
			is_clickable=node_data.get('isClickable', False),
			is_iframe=node_data.get('isIframe', False),
			shadow_root=node_data.get('shadowRoot', False),
			highlight_index=node_data.get('highlightIndex'),
		)
		return element_node, node_data.get('children', [])
