import logging

from browser_agent.config import CONFIG
from browser_agent.logging_config import setup_logging

# set BROWSER_AGENT_SETUP_LOGGING=false to keep the host application's logging untouched
if CONFIG.BROWSER_AGENT_SETUP_LOGGING:
	setup_logging()

logger = logging.getLogger('browser_agent')

from browser_agent.browser.browser import Browser, BrowserConfig  # noqa: E402
from browser_agent.browser.context import BrowserContext, BrowserContextConfig  # noqa: E402
from browser_agent.controller.service import Controller  # noqa: E402
from browser_agent.controller.views import ActionModel, ActionResult  # noqa: E402
from browser_agent.dom.service import DomService  # noqa: E402
from browser_agent.telemetry.service import NoopTelemetry, ProductTelemetry  # noqa: E402

__all__ = [
	'ActionModel',
	'ActionResult',
	'Browser',
	'BrowserConfig',
	'BrowserContext',
	'BrowserContextConfig',
	'Controller',
	'DomService',
	'NoopTelemetry',
	'ProductTelemetry',
]
