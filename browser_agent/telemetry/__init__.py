from browser_agent.telemetry.service import NoopTelemetry, ProductTelemetry, TelemetryProtocol
from browser_agent.telemetry.views import (
	BaseTelemetryEvent,
	ControllerRegisteredFunctionsTelemetryEvent,
	DomSnapshotTelemetryEvent,
	MultiActTelemetryEvent,
	RegisteredFunction,
)

__all__ = [
	'BaseTelemetryEvent',
	'ControllerRegisteredFunctionsTelemetryEvent',
	'DomSnapshotTelemetryEvent',
	'MultiActTelemetryEvent',
	'NoopTelemetry',
	'ProductTelemetry',
	'RegisteredFunction',
	'TelemetryProtocol',
]
