from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import ClassVar, Mapping, Optional, Union

from fnmanifest.domain.values import Literal, OptionValue, SourceLocation


def _empty() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True)
class RequiredApi:
    api: str
    reason: str


CLOUD_FUNCTIONS_API = RequiredApi("cloudfunctions.googleapis.com", "Required for Cloud Functions")
IDENTITY_TOOLKIT_API = RequiredApi("identitytoolkit.googleapis.com", "Needed for auth blocking functions")
CLOUD_SCHEDULER_API = RequiredApi("cloudscheduler.googleapis.com", "Needed for scheduled functions")
CLOUD_TASKS_API = RequiredApi("cloudtasks.googleapis.com", "Needed for task queue functions")


@dataclass(frozen=True)
class HttpsTrigger:
    invoker: Optional[OptionValue] = None

    wire_key: ClassVar[str] = "httpsTrigger"
    required_api: ClassVar[Optional[RequiredApi]] = None


@dataclass(frozen=True)
class CallableTrigger:
    wire_key: ClassVar[str] = "callableTrigger"
    required_api: ClassVar[Optional[RequiredApi]] = None


@dataclass(frozen=True)
class EventTrigger:
    event_type: str
    filters: Mapping[str, OptionValue] = field(default_factory=_empty)
    path_patterns: Mapping[str, str] = field(default_factory=_empty)
    channel: Optional[OptionValue] = None
    retry: OptionValue = Literal(False)

    wire_key: ClassVar[str] = "eventTrigger"
    required_api: ClassVar[Optional[RequiredApi]] = None


@dataclass(frozen=True)
class BlockingTrigger:
    event_type: str
    options: Mapping[str, bool] = field(default_factory=_empty)

    wire_key: ClassVar[str] = "blockingTrigger"
    required_api: ClassVar[Optional[RequiredApi]] = IDENTITY_TOOLKIT_API


@dataclass(frozen=True)
class ScheduleTrigger:
    schedule: str
    time_zone: Optional[OptionValue] = None
    retry_config: Mapping[str, OptionValue] = field(default_factory=_empty)

    wire_key: ClassVar[str] = "scheduleTrigger"
    required_api: ClassVar[Optional[RequiredApi]] = CLOUD_SCHEDULER_API


@dataclass(frozen=True)
class TaskQueueTrigger:
    retry_config: Mapping[str, OptionValue] = field(default_factory=_empty)
    rate_limits: Mapping[str, OptionValue] = field(default_factory=_empty)
    invoker: Optional[OptionValue] = None

    wire_key: ClassVar[str] = "taskQueueTrigger"
    required_api: ClassVar[Optional[RequiredApi]] = CLOUD_TASKS_API


Trigger = Union[HttpsTrigger, CallableTrigger, EventTrigger, BlockingTrigger, ScheduleTrigger, TaskQueueTrigger]

DEFAULT_REGION = "us-central1"


@dataclass(frozen=True)
class Endpoint:
    """
    One deployable function.

    ``options`` maps manifest keys (``availableMemoryMb``, ``vpc``, ...) to
    values, already in wire order with resets and empty values dropped.
    """

    key: str
    entry_point: str
    region: Optional[OptionValue]
    trigger: Trigger
    location: SourceLocation
    handler: str = ""
    options: Mapping[str, OptionValue] = field(default_factory=_empty)
    platform: str = "gcfv2"
