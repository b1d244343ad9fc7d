from browser_agent.dom.views import (
	DOMElementNode,
	DOMQueryOptions,
	DOMState,
	DOMTextNode,
	DOMTree,
	ElementNotFoundError,
	ElementSelector,
	MutationEvent,
	SelectorMap,
	WaitTimeoutError,
)

__all__ = [
	'DOMElementNode',
	'DOMQueryOptions',
	'DOMState',
	'DOMTextNode',
	'DOMTree',
	'ElementNotFoundError',
	'ElementSelector',
	'MutationEvent',
	'SelectorMap',
	'WaitTimeoutError',
]
