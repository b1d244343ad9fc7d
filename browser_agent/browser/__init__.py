from browser_agent.browser.browser import Browser, BrowserConfig
from browser_agent.browser.context import BrowserContext, BrowserContextConfig, BrowserSession
from browser_agent.browser.views import BrowserError, BrowserState, ResolutionExhaustedError, TabInfo, URLNotAllowedError

__all__ = [
	'Browser',
	'BrowserConfig',
	'BrowserContext',
	'BrowserContextConfig',
	'BrowserError',
	'BrowserSession',
	'BrowserState',
	'ResolutionExhaustedError',
	'TabInfo',
	'URLNotAllowedError',
]
