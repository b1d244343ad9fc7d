from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
	from browser_agent.dom.history_tree_processor.view import HashedDomElement

# attributes shown to the LLM next to each clickable element
DEFAULT_INCLUDE_ATTRIBUTES = [
	'id',
	'title',
	'type',
	'name',
	'role',
	'aria-label',
	'placeholder',
	'value',
	'alt',
	'href',
]


class ElementNotFoundError(Exception):
	"""Raised when the root container of a snapshot cannot be found"""


class WaitTimeoutError(TimeoutError):
	"""Raised by wait_for_* operations when the deadline passes without a match"""


@dataclass
class DOMBaseNode:
	node_id: int
	is_visible: bool
	# arena id of the owning element, never an object reference
	parent: int | None


@dataclass
class DOMTextNode(DOMBaseNode):
	text: str
	type: str = 'TEXT_NODE'

	def has_parent_with_highlight_index(self, tree: 'DOMTree') -> bool:
		current = tree.parent_of(self)
		while current is not None:
			if current.highlight_index is not None:
				return True
			current = tree.parent_of(current)
		return False


@dataclass
class DOMElementNode(DOMBaseNode):
	"""
	One observed element. xpath is relative to the last root node (document, iframe
	document or shadow root), so iframes and shadow roots need a context switch to resolve.
	"""

	tag_name: str
	xpath: str
	attributes: dict[str, str]
	children: list[int] = field(default_factory=list)
	is_interactive: bool = False
	is_top_element: bool = False
	is_in_viewport: bool = False
	is_clickable: bool = False
	is_iframe: bool = False
	shadow_root: bool = False
	highlight_index: int | None = None

	def __repr__(self) -> str:
		tag_str = f'<{self.tag_name}'
		for key, value in self.attributes.items():
			tag_str += f' {key}="{value}"'
		tag_str += '>'

		extras = []
		if self.is_interactive:
			extras.append('interactive')
		if self.is_top_element:
			extras.append('top')
		if self.shadow_root:
			extras.append('shadow-root')
		if self.highlight_index is not None:
			extras.append(f'highlight:{self.highlight_index}')
		if extras:
			tag_str += f' [{", ".join(extras)}]'
		return tag_str


SelectorMap = dict[int, DOMElementNode]


@dataclass
class DOMTree:
	"""Flat arena of snapshot nodes; parent/child links are indices into `nodes`."""

	nodes: list[DOMBaseNode]
	root_id: int

	@property
	def root(self) -> DOMElementNode:
		root = self.nodes[self.root_id]
		assert isinstance(root, DOMElementNode)
		return root

	def get(self, node_id: int) -> DOMBaseNode:
		return self.nodes[node_id]

	def parent_of(self, node: DOMBaseNode) -> DOMElementNode | None:
		if node.parent is None:
			return None
		parent = self.nodes[node.parent]
		assert isinstance(parent, DOMElementNode)
		return parent

	def children_of(self, node: DOMElementNode) -> list[DOMBaseNode]:
		return [self.nodes[child_id] for child_id in node.children]

	def element_children_of(self, node: DOMElementNode) -> list[DOMElementNode]:
		return [child for child in self.children_of(node) if isinstance(child, DOMElementNode)]

	def ancestors(self, node: DOMBaseNode) -> list[DOMElementNode]:
		"""Ancestors ordered from the root down to the direct parent"""
		ancestors: list[DOMElementNode] = []
		current = self.parent_of(node)
		while current is not None:
			ancestors.append(current)
			current = self.parent_of(current)
		ancestors.reverse()
		return ancestors

	def parent_branch_path(self, node: DOMElementNode) -> list[str]:
		# the root itself has no parent and is not part of any branch path
		path: list[str] = []
		current: DOMElementNode | None = node
		while current is not None and current.parent is not None:
			path.append(current.tag_name)
			current = self.parent_of(current)
		path.reverse()
		return path

	def parent_branch_hash(self, node: DOMElementNode) -> str:
		from browser_agent.dom.history_tree_processor.service import hash_parent_branch_path

		return hash_parent_branch_path(self.parent_branch_path(node))

	def hash_element(self, node: DOMElementNode) -> 'HashedDomElement':
		from browser_agent.dom.history_tree_processor.service import HistoryTreeProcessor

		return HistoryTreeProcessor.hash_dom_element(self, node)

	def iter_elements(self, start: DOMElementNode | None = None) -> Iterator[DOMElementNode]:
		"""Depth-first pre-order walk over element nodes"""
		stack = [start or self.root]
		while stack:
			node = stack.pop()
			yield node
			stack.extend(reversed(self.element_children_of(node)))

	def selector_map(self) -> SelectorMap:
		return {node.highlight_index: node for node in self.iter_elements() if node.highlight_index is not None}

	def get_all_text_till_next_clickable_element(self, node: DOMElementNode, max_depth: int = -1) -> str:
		text_parts: list[str] = []

		def collect_text(current: DOMBaseNode, current_depth: int) -> None:
			if max_depth != -1 and current_depth > max_depth:
				return

			# another highlighted element starts its own text block
			if isinstance(current, DOMElementNode) and current is not node and current.highlight_index is not None:
				return

			if isinstance(current, DOMTextNode):
				text_parts.append(current.text)
			elif isinstance(current, DOMElementNode):
				for child in self.children_of(current):
					collect_text(child, current_depth + 1)

		collect_text(node, 0)
		return '\n'.join(text_parts).strip()

	def clickable_elements_to_string(self, include_attributes: list[str] | None = None) -> str:
		"""Convert the processed DOM content to a compact listing for the LLM"""
		include_attributes = include_attributes if include_attributes is not None else DEFAULT_INCLUDE_ATTRIBUTES
		formatted_text: list[str] = []

		def process_node(node: DOMBaseNode, depth: int) -> None:
			if isinstance(node, DOMElementNode):
				if node.highlight_index is not None:
					text = self.get_all_text_till_next_clickable_element(node)
					attributes_str = ' '.join(
						f'{key}="{value}"' for key, value in node.attributes.items() if key in include_attributes and value
					)
					line = f'[{node.highlight_index}]<{node.tag_name}'
					if attributes_str:
						line += f' {attributes_str}'
					line += f'>{text}</{node.tag_name}>' if text else ' />'
					formatted_text.append(line)

				for child in self.children_of(node):
					process_node(child, depth + 1)

			elif isinstance(node, DOMTextNode):
				if not node.has_parent_with_highlight_index(self) and node.is_visible:
					formatted_text.append(node.text)

		process_node(self.root, 0)
		return '\n'.join(formatted_text)


@dataclass
class DOMState:
	element_tree: DOMTree
	selector_map: SelectorMap
	clickable_elements: list[DOMElementNode] = field(default_factory=list)


# region - query options


class SerializedNode(BaseModel):
	"""Element as serialized by in-page scripts (mutation observer, overlap detection)"""

	model_config = ConfigDict(populate_by_name=True)

	tag_name: str = Field(alias='tagName')
	attributes: dict[str, str] = Field(default_factory=dict)
	text_content: str = Field(default='', alias='textContent')
	highlight_index: int = Field(default=-1, alias='highlightIndex')


class Coordinates(BaseModel):
	x: float
	y: float


class ElementSelector(BaseModel):
	"""Filters applied to the clickable elements of a fresh snapshot"""

	index: int | None = None
	xpath: str | None = None
	coordinates: Coordinates | None = None


class DOMQueryOptions(BaseModel):
	model_config = ConfigDict(extra='forbid')

	wait_for_visible: bool = True
	wait_for_enabled: bool = True
	timeout: int = Field(default=5_000, description='milliseconds')
	include_hidden: bool = False


class BoundingBox(BaseModel):
	x: float
	y: float
	width: float
	height: float


class ComputedStyle(BaseModel):
	display: str
	visibility: str
	opacity: str
	pointer_events: str


class ElementVisibilityInfo(BaseModel):
	is_visible: bool
	is_in_viewport: bool
	is_clickable: bool
	opacity: float
	bounding_box: BoundingBox | None = None
	computed_style: ComputedStyle
	overlapping_elements: list[SerializedNode] = Field(default_factory=list)


# endregion

# region - mutation events


class _BaseMutationEvent(BaseModel):
	model_config = ConfigDict(populate_by_name=True, frozen=True)

	target: SerializedNode


class AddedMutationEvent(_BaseMutationEvent):
	type: Literal['added'] = 'added'


class RemovedMutationEvent(_BaseMutationEvent):
	type: Literal['removed'] = 'removed'


class AttributeMutationEvent(_BaseMutationEvent):
	type: Literal['attribute'] = 'attribute'
	attribute_name: str = Field(alias='attributeName')
	old_value: str | None = Field(default=None, alias='oldValue')
	new_value: str | None = Field(default=None, alias='newValue')


class ModifiedMutationEvent(_BaseMutationEvent):
	"""Text content change inside `target`"""

	type: Literal['modified'] = 'modified'
	old_value: str | None = Field(default=None, alias='oldValue')
	new_value: str | None = Field(default=None, alias='newValue')


MutationEvent = Annotated[
	AddedMutationEvent | RemovedMutationEvent | AttributeMutationEvent | ModifiedMutationEvent,
	Field(discriminator='type'),
]

# endregion
