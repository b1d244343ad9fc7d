from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, RootModel, model_validator


# Action Input Models
class SearchGoogleAction(BaseModel):
	query: str


class GoToUrlAction(BaseModel):
	url: str


class ClickElementAction(BaseModel):
	index: int = Field(ge=0, description='Element index from the selector map')
	xpath: str | None = None


class InputTextAction(BaseModel):
	index: int = Field(ge=0, description='Element index from the selector map')
	text: str
	xpath: str | None = None


class DoneAction(BaseModel):
	text: str = Field(description='Final message for the user')
	success: bool = Field(default=True, description='True if the task was completed successfully')


class SwitchTabAction(BaseModel):
	page_id: int = Field(description='Tab index, negative values count from the last tab')


class OpenTabAction(BaseModel):
	url: str


class ExtractContentAction(BaseModel):
	include_links: bool = Field(default=False, description='Keep links when converting to markdown')
	format: Literal['text', 'markdown', 'html'] = 'markdown'


class ScrollAction(BaseModel):
	amount: int | None = Field(default=None, description='Pixels to scroll, one page when omitted')


class SendKeysAction(BaseModel):
	keys: str = Field(description='keys (Escape, Enter, PageDown) or shortcuts (Control+o)')


class ScrollToTextAction(BaseModel):
	text: str


class GetDropdownOptionsAction(BaseModel):
	index: int = Field(ge=0)


class SelectDropdownOptionAction(BaseModel):
	index: int = Field(ge=0)
	text: str = Field(description='Exact text of the option to select')


class NoParamsAction(BaseModel):
	model_config = ConfigDict(extra='ignore')


# region - closed action vocabulary


class _ActionVariant(BaseModel):
	model_config = ConfigDict(extra='forbid')


class SearchGoogle(_ActionVariant):
	search_google: SearchGoogleAction


class GoToUrl(_ActionVariant):
	go_to_url: GoToUrlAction


class GoBack(_ActionVariant):
	go_back: NoParamsAction


class ClickElement(_ActionVariant):
	click_element: ClickElementAction


class InputText(_ActionVariant):
	input_text: InputTextAction


class SwitchTab(_ActionVariant):
	switch_tab: SwitchTabAction


class OpenTab(_ActionVariant):
	open_tab: OpenTabAction


class ExtractContent(_ActionVariant):
	extract_content: ExtractContentAction


class ScrollDown(_ActionVariant):
	scroll_down: ScrollAction


class ScrollUp(_ActionVariant):
	scroll_up: ScrollAction


class SendKeys(_ActionVariant):
	send_keys: SendKeysAction


class ScrollToText(_ActionVariant):
	scroll_to_text: ScrollToTextAction


class GetDropdownOptions(_ActionVariant):
	get_dropdown_options: GetDropdownOptionsAction


class SelectDropdownOption(_ActionVariant):
	select_dropdown_option: SelectDropdownOptionAction


class Done(_ActionVariant):
	done: DoneAction


AnyAction = (
	SearchGoogle
	| GoToUrl
	| GoBack
	| ClickElement
	| InputText
	| SwitchTab
	| OpenTab
	| ExtractContent
	| ScrollDown
	| ScrollUp
	| SendKeys
	| ScrollToText
	| GetDropdownOptions
	| SelectDropdownOption
	| Done
)


class ActionModel(RootModel[AnyAction]):
	"""
	One action, serialized as `{action_name: params}`.

	The vocabulary is closed: unknown action names fail validation instead of reaching
	the executor.
	"""

	@property
	def name(self) -> str:
		return next(iter(type(self.root).model_fields))

	@property
	def params(self) -> BaseModel:
		return getattr(self.root, self.name)

	def get_index(self) -> int | None:
		"""Selector-map index the action targets, if any"""
		return getattr(self.params, 'index', None)

	def set_index(self, index: int) -> None:
		params = self.params
		if 'index' in type(params).model_fields:
			params.index = index  # type: ignore[attr-defined]


# endregion


class ActionResult(BaseModel):
	"""Result of executing an action"""

	# For done action
	is_done: bool | None = False
	success: bool | None = None

	# Error handling - always include in long term memory
	error: str | None = None

	extracted_content: str | None = None
	include_in_memory: bool = False  # whether to include in past messages as context or not

	@model_validator(mode='after')
	def validate_success_requires_done(self):
		"""Ensure success=True can only be set when is_done=True"""
		if self.success is True and self.is_done is not True:
			raise ValueError(
				'success=True can only be set when is_done=True. '
				'For regular actions that succeed, leave success as None. '
				'Use success=False only for actions that fail.'
			)
		return self
