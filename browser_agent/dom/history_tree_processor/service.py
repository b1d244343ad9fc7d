import hashlib
from collections.abc import Mapping, Sequence

from browser_agent.dom.history_tree_processor.view import DOMHistoryElement, HashedDomElement
from browser_agent.dom.views import DOMElementNode, DOMTree


def hash_attributes(attributes: Mapping[str, str]) -> str:
	"""sha256 over `key=value` pairs concatenated in iteration order.

	Iteration order is the DOM `element.attributes` order captured by the snapshot
	script, so two maps with the same pairs in a different order hash differently.
	"""
	attributes_string = ''.join(f'{key}={value}' for key, value in attributes.items())
	return hashlib.sha256(attributes_string.encode()).hexdigest()


def hash_parent_branch_path(parent_branch_path: Sequence[str]) -> str:
	parent_branch_path_string = '/'.join(parent_branch_path)
	return hashlib.sha256(parent_branch_path_string.encode()).hexdigest()


class HistoryTreeProcessor:
	"""
	Operations on the DOM elements

	@dev be careful - text nodes can change even if elements stay the same
	"""

	@staticmethod
	def convert_dom_element_to_history_element(tree: DOMTree, dom_element: DOMElementNode) -> DOMHistoryElement:
		from browser_agent.browser.resolver import ElementResolver

		parent_branch_path = tree.parent_branch_path(dom_element)
		css_selector = ElementResolver.enhanced_css_selector_for_element(tree, dom_element)
		return DOMHistoryElement(
			dom_element.tag_name,
			dom_element.xpath,
			dom_element.highlight_index,
			parent_branch_path,
			dict(dom_element.attributes),
			dom_element.shadow_root,
			css_selector=css_selector,
		)

	@staticmethod
	def find_history_element_in_tree(dom_history_element: DOMHistoryElement, tree: DOMTree) -> DOMElementNode | None:
		hashed_dom_history_element = HistoryTreeProcessor.hash_dom_history_element(dom_history_element)

		for node in tree.iter_elements():
			if node.highlight_index is not None:
				if HistoryTreeProcessor.hash_dom_element(tree, node) == hashed_dom_history_element:
					return node
		return None

	@staticmethod
	def compare_history_element_and_dom_element(
		dom_history_element: DOMHistoryElement, tree: DOMTree, dom_element: DOMElementNode
	) -> bool:
		hashed_dom_history_element = HistoryTreeProcessor.hash_dom_history_element(dom_history_element)
		hashed_dom_element = HistoryTreeProcessor.hash_dom_element(tree, dom_element)

		return hashed_dom_history_element == hashed_dom_element

	@staticmethod
	def hash_dom_history_element(dom_history_element: DOMHistoryElement) -> HashedDomElement:
		branch_path_hash = hash_parent_branch_path(dom_history_element.entire_parent_branch_path)
		attributes_hash = hash_attributes(dom_history_element.attributes)

		return HashedDomElement(branch_path_hash, attributes_hash)

	@staticmethod
	def hash_dom_element(tree: DOMTree, dom_element: DOMElementNode) -> HashedDomElement:
		branch_path_hash = hash_parent_branch_path(tree.parent_branch_path(dom_element))
		attributes_hash = hash_attributes(dom_element.attributes)

		return HashedDomElement(branch_path_hash, attributes_hash)
