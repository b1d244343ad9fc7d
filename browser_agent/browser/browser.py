"""
Playwright browser factory, spawns BrowserContexts that share one launched Chromium.
"""

import logging
from typing import TYPE_CHECKING

from playwright.async_api import Browser as PlaywrightBrowser
from playwright.async_api import Playwright, async_playwright
from pydantic import BaseModel, ConfigDict, Field

from browser_agent.config import CONFIG
from browser_agent.telemetry.service import NoopTelemetry, TelemetryProtocol

if TYPE_CHECKING:
	from browser_agent.browser.context import BrowserContext, BrowserContextConfig

logger = logging.getLogger(__name__)

CHROME_DEFAULT_ARGS = [
	'--disable-blink-features=AutomationControlled',
	'--disable-infobars',
	'--disable-background-timer-throttling',
	'--disable-popup-blocking',
	'--disable-backgrounding-occluded-windows',
	'--disable-renderer-backgrounding',
	'--disable-window-activation',
	'--disable-focus-on-load',
	'--no-first-run',
	'--no-default-browser-check',
	'--window-position=0,0',
]

CHROME_DOCKER_ARGS = [
	'--no-sandbox',
	'--disable-gpu',
	'--disable-dev-shm-usage',
	'--disable-setuid-sandbox',
	'--no-zygote',
]

CHROME_DISABLE_SECURITY_ARGS = [
	'--disable-web-security',
	'--disable-site-isolation-trials',
	'--disable-features=IsolateOrigins,site-per-process',
]


class ProxySettings(BaseModel):
	server: str
	bypass: str | None = None
	username: str | None = None
	password: str | None = None


class BrowserConfig(BaseModel):
	model_config = ConfigDict(extra='forbid')

	headless: bool = Field(default=False, description='Run the browser without a visible window')
	disable_security: bool = Field(default=True, description='Disable CORS and site isolation')
	extra_chromium_args: list[str] = Field(default_factory=list)
	wss_url: str | None = Field(default=None, description='Connect to an already running browser over WebSocket')
	cdp_url: str | None = Field(default=None, description='Connect to an already running Chrome over CDP')
	proxy: ProxySettings | None = None


class Browser:
	"""
	One Playwright Chromium shared by every context created from it.

	Launched lazily on the first `get_playwright_browser()`; use a single instance per
	application, each one holds its own browser process.
	"""

	def __init__(self, config: BrowserConfig | None = None, telemetry: TelemetryProtocol | None = None):
		self.config = config or BrowserConfig()
		self.telemetry = telemetry or NoopTelemetry()
		self.playwright: Playwright | None = None
		self.playwright_browser: PlaywrightBrowser | None = None

	async def new_context(self, config: 'BrowserContextConfig | None' = None) -> 'BrowserContext':
		from browser_agent.browser.context import BrowserContext

		return BrowserContext(browser=self, config=config, telemetry=self.telemetry)

	async def get_playwright_browser(self) -> PlaywrightBrowser:
		if self.playwright_browser is None:
			return await self._init()
		return self.playwright_browser

	async def _init(self) -> PlaywrightBrowser:
		self.playwright = await async_playwright().start()
		self.playwright_browser = await self._setup_browser(self.playwright)
		return self.playwright_browser

	async def _setup_browser(self, playwright: Playwright) -> PlaywrightBrowser:
		if self.config.wss_url:
			logger.info(f'🔌 Connecting to remote browser at {self.config.wss_url}')
			return await playwright.chromium.connect(self.config.wss_url)

		if self.config.cdp_url:
			logger.info(f'🔌 Connecting to Chrome over CDP at {self.config.cdp_url}')
			return await playwright.chromium.connect_over_cdp(self.config.cdp_url, timeout=20_000)

		args = [*CHROME_DEFAULT_ARGS]
		if CONFIG.IN_DOCKER:
			args += CHROME_DOCKER_ARGS
		if self.config.disable_security:
			args += CHROME_DISABLE_SECURITY_ARGS
		args += self.config.extra_chromium_args

		try:
			return await playwright.chromium.launch(
				headless=self.config.headless,
				args=args,
				proxy=self.config.proxy.model_dump(exclude_none=True) if self.config.proxy else None,  # type: ignore[arg-type]
			)
		except Exception as e:
			logger.error(f'❌ Failed to launch browser: {type(e).__name__}: {e}')
			raise

	async def close(self) -> None:
		try:
			if self.playwright_browser is not None:
				await self.playwright_browser.close()
			if self.playwright is not None:
				await self.playwright.stop()
		except Exception as e:
			logger.debug(f'Failed to close browser properly: {type(e).__name__}: {e}')
		finally:
			self.playwright_browser = None
			self.playwright = None
