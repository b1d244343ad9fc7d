import logging
import os
from typing import Protocol

from posthog import Posthog
from uuid_extensions import uuid7str

from browser_agent.config import CONFIG
from browser_agent.telemetry.views import BaseTelemetryEvent

logger = logging.getLogger(__name__)


POSTHOG_EVENT_SETTINGS = {
	'process_person_profile': True,
}


class TelemetryProtocol(Protocol):
	def capture(self, event: BaseTelemetryEvent) -> None: ...

	def flush(self) -> None: ...


class NoopTelemetry:
	"""Drops every event. Default collaborator wherever telemetry is injectable."""

	def capture(self, event: BaseTelemetryEvent) -> None:
		return None

	def flush(self) -> None:
		return None


class ProductTelemetry:
	"""
	Service for capturing anonymized telemetry data.

	Events go to the PostHog project named by `api_key` / `host`, defaulting to the
	`POSTHOG_API_KEY` and `POSTHOG_HOST` environment variables. Disabled when no project key
	is configured, when `ANONYMIZED_TELEMETRY=False` is set, or when constructed with
	`enabled=False`.
	"""

	UNKNOWN_USER_ID = 'UNKNOWN'

	def __init__(self, enabled: bool | None = None, api_key: str | None = None, host: str | None = None) -> None:
		self.api_key = api_key if api_key is not None else CONFIG.POSTHOG_API_KEY
		self.host = host or CONFIG.POSTHOG_HOST
		telemetry_disabled = not (CONFIG.ANONYMIZED_TELEMETRY if enabled is None else enabled) or not self.api_key
		self.debug_logging = CONFIG.BROWSER_AGENT_LOGGING_LEVEL == 'debug'
		self.user_id_path = str(CONFIG.BROWSER_AGENT_CONFIG_DIR / 'device_id')
		self._curr_user_id: str | None = None

		if telemetry_disabled:
			self._posthog_client = None
		else:
			logger.info('Anonymized telemetry enabled. Set ANONYMIZED_TELEMETRY=false to opt out.')
			self._posthog_client = Posthog(
				project_api_key=self.api_key,
				host=self.host,
				disable_geoip=False,
			)

			# Silence posthog's logging
			if not self.debug_logging:
				posthog_logger = logging.getLogger('posthog')
				posthog_logger.disabled = True

		if self._posthog_client is None:
			logger.debug('Telemetry disabled')

	@property
	def enabled(self) -> bool:
		return self._posthog_client is not None

	def capture(self, event: BaseTelemetryEvent) -> None:
		if self._posthog_client is None:
			return

		self._direct_capture(event)

	def _direct_capture(self, event: BaseTelemetryEvent) -> None:
		"""
		Should not be thread blocking because posthog magically handles it
		"""
		if self._posthog_client is None:
			return

		try:
			self._posthog_client.capture(
				distinct_id=self.user_id,
				event=event.name,
				properties={**event.properties, **POSTHOG_EVENT_SETTINGS},
			)
		except Exception as e:
			logger.error(f'Failed to send telemetry event {event.name}: {e}')

	def flush(self) -> None:
		if self._posthog_client:
			try:
				self._posthog_client.flush()
				logger.debug('PostHog client telemetry queue flushed.')
			except Exception as e:
				logger.error(f'Failed to flush PostHog client: {e}')
		else:
			logger.debug('PostHog client not available, skipping flush.')

	@property
	def user_id(self) -> str:
		if self._curr_user_id:
			return self._curr_user_id

		# a read-only home directory must not break event capture
		try:
			if not os.path.exists(self.user_id_path):
				os.makedirs(os.path.dirname(self.user_id_path), exist_ok=True)
				with open(self.user_id_path, 'w') as f:
					new_user_id = uuid7str()
					f.write(new_user_id)
				self._curr_user_id = new_user_id
			else:
				with open(self.user_id_path) as f:
					self._curr_user_id = f.read()
		except Exception:
			self._curr_user_id = self.UNKNOWN_USER_ID
		return self._curr_user_id
