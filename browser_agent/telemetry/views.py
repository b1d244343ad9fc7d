from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from typing import Any


class BaseTelemetryEvent(ABC):
	@property
	@abstractmethod
	def name(self) -> str:
		pass

	@property
	def properties(self) -> dict[str, Any]:
		return {k: v for k, v in asdict(self).items() if k != 'name'}


@dataclass
class RegisteredFunction:
	name: str
	params: dict[str, Any]


@dataclass
class ControllerRegisteredFunctionsTelemetryEvent(BaseTelemetryEvent):
	registered_functions: list[RegisteredFunction]
	name: str = 'controller_registered_functions'


@dataclass
class MultiActTelemetryEvent(BaseTelemetryEvent):
	actions_requested: int
	actions_executed: int
	action_names: Sequence[str]
	# 'new_elements', 'error', 'done' or None when the whole sequence ran
	aborted_reason: str | None = None
	name: str = 'multi_act'


@dataclass
class DomSnapshotTelemetryEvent(BaseTelemetryEvent):
	element_count: int
	interactive_count: int
	duration_seconds: float
	name: str = 'dom_snapshot'
