from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

ParamType = Literal["string", "int", "float", "boolean", "list", "secret"]


class _Wire(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ParamSpec(_Wire):
    name: str
    type: ParamType = "string"
    format: Optional[str] = None
    default: Any = None
    label: Optional[str] = None
    description: Optional[str] = None


class RequiredApiSpec(_Wire):
    api: str
    reason: str = ""


class EventTriggerSpec(_Wire):
    event_type: str = Field(alias="eventType")
    event_filters: dict[str, Any] = Field(default_factory=dict, alias="eventFilters")
    event_filter_path_patterns: dict[str, str] = Field(
        default_factory=dict, alias="eventFilterPathPatterns"
    )
    channel: Optional[str] = None
    retry: Union[bool, str] = False


class BlockingTriggerSpec(_Wire):
    event_type: str = Field(alias="eventType")
    options: dict[str, bool] = Field(default_factory=dict)


class ScheduleTriggerSpec(_Wire):
    schedule: str
    time_zone: Optional[str] = Field(default=None, alias="timeZone")
    retry_config: dict[str, Any] = Field(default_factory=dict, alias="retryConfig")


class EndpointSpec(_Wire):
    entry_point: str = Field(alias="entryPoint")
    platform: str = "gcfv2"
    region: Union[list[str], str, None] = None

    https_trigger: Optional[dict[str, Any]] = Field(default=None, alias="httpsTrigger")
    callable_trigger: Optional[dict[str, Any]] = Field(default=None, alias="callableTrigger")
    event_trigger: Optional[EventTriggerSpec] = Field(default=None, alias="eventTrigger")
    blocking_trigger: Optional[BlockingTriggerSpec] = Field(default=None, alias="blockingTrigger")
    schedule_trigger: Optional[ScheduleTriggerSpec] = Field(default=None, alias="scheduleTrigger")
    task_queue_trigger: Optional[dict[str, Any]] = Field(default=None, alias="taskQueueTrigger")

    @property
    def trigger_kind(self) -> str:
        for kind in ("https", "callable", "event", "blocking", "schedule", "task_queue"):
            if getattr(self, f"{kind}_trigger") is not None:
                return kind
        return "unknown"


class ManifestDocument(_Wire):
    """A functions.yaml document as the deploy tool and runtime read it."""

    spec_version: str = Field(alias="specVersion")
    params: list[ParamSpec] = Field(default_factory=list)
    required_apis: list[RequiredApiSpec] = Field(default_factory=list, alias="requiredAPIs")
    endpoints: dict[str, EndpointSpec] = Field(default_factory=dict)

    @classmethod
    def from_text(cls, text: str) -> "ManifestDocument":
        return cls.model_validate(yaml.safe_load(text) or {})

    @classmethod
    def from_path(cls, path: Path) -> "ManifestDocument":
        return cls.from_text(path.read_text(encoding="utf-8"))
