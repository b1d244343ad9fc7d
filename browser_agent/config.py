"""Configuration for browser_agent, read lazily from the environment."""

import os
from functools import cache
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


@cache
def is_running_in_docker() -> bool:
	"""Detect if we are running in a docker container, used to pick safer browser launch args"""
	try:
		if Path('/.dockerenv').exists() or 'docker' in Path('/proc/1/cgroup').read_text().lower():
			return True
	except Exception:
		pass
	return False


class Config:
	"""Lazy-loading configuration: every property re-reads the environment on access."""

	@property
	def BROWSER_AGENT_LOGGING_LEVEL(self) -> str:
		return os.getenv('BROWSER_AGENT_LOGGING_LEVEL', 'info').lower()

	@property
	def BROWSER_AGENT_SETUP_LOGGING(self) -> bool:
		return os.getenv('BROWSER_AGENT_SETUP_LOGGING', 'true').lower()[:1] in 'ty1'

	@property
	def ANONYMIZED_TELEMETRY(self) -> bool:
		return os.getenv('ANONYMIZED_TELEMETRY', 'true').lower()[:1] in 'ty1'

	@property
	def POSTHOG_API_KEY(self) -> str:
		return os.getenv('POSTHOG_API_KEY', '')

	@property
	def POSTHOG_HOST(self) -> str:
		return os.getenv('POSTHOG_HOST', 'https://eu.i.posthog.com')

	@property
	def XDG_CONFIG_HOME(self) -> Path:
		return Path(os.getenv('XDG_CONFIG_HOME', '~/.config')).expanduser().resolve()

	@property
	def BROWSER_AGENT_CONFIG_DIR(self) -> Path:
		return Path(os.getenv('BROWSER_AGENT_CONFIG_DIR', str(self.XDG_CONFIG_HOME / 'browseragent'))).expanduser().resolve()

	@property
	def IN_DOCKER(self) -> bool:
		return os.getenv('IN_DOCKER', 'false').lower()[:1] in 'ty1' or is_running_in_docker()


CONFIG = Config()
