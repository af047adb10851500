from __future__ import annotations

import logging
import re
from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Union

from fnmanifest.domain.errors import (
    InvalidOptionValue,
    UnknownParamReference,
    UnrecognizedTriggerShape,
)
from fnmanifest.domain.values import (
    Literal,
    OptionValue,
    ParamKind,
    ParamRef,
    Reset,
    SourceLocation,
    Ternary,
    is_list_literal,
    is_map_literal,
    literal_list,
    literal_map,
)
from fnmanifest.extractors.firebase.evaluator import MEMORY_VALUES
from fnmanifest.extractors.firebase.registry import (
    ALERTS,
    BLOCKING,
    CALLABLE,
    DATABASE,
    EVENTARC,
    FIRESTORE,
    HTTPS,
    PUBSUB,
    REMOTE_CONFIG,
    SCHEDULER,
    STORAGE,
    TASKS,
    TEST_LAB,
    camel,
    snake,
)
from fnmanifest.extractors.firebase.resolver import OptionBundle, ResolvedCall
from fnmanifest.extractors.firebase.symbols import ParamTable
from fnmanifest.manifest.naming import endpoint_key
from fnmanifest.manifest.patterns import parse_pattern
from fnmanifest.manifest.triggers import (
    DEFAULT_REGION,
    BlockingTrigger,
    CallableTrigger,
    Endpoint,
    EventTrigger,
    HttpsTrigger,
    ScheduleTrigger,
    TaskQueueTrigger,
    Trigger,
)

log = logging.getLogger(__name__)

FieldValue = Union[OptionValue, OptionBundle]

INT = "int"
NUMBER = "number"
STRING = "string"
BOOLEAN = "boolean"

_COMPATIBLE_KINDS = {
    INT: {ParamKind.INT},
    NUMBER: {ParamKind.INT, ParamKind.FLOAT},
    STRING: {ParamKind.STRING},
    BOOLEAN: {ParamKind.BOOLEAN},
}

_REGION = re.compile(r"^[a-z]+-[a-z]+[0-9]+$")

INGRESS_SETTINGS = {"ALLOW_ALL", "ALLOW_INTERNAL_ONLY", "ALLOW_INTERNAL_AND_GCLB"}
VPC_EGRESS_SETTINGS = {"PRIVATE_RANGES_ONLY", "ALL_TRAFFIC"}

# manifest key order for global options
GLOBAL_WIRE_ORDER = (
    "availableMemoryMb",
    "cpu",
    "timeoutSeconds",
    "concurrency",
    "minInstances",
    "maxInstances",
    "serviceAccountEmail",
    "vpc",
    "ingressSettings",
    "omit",
    "labels",
    "secretEnvironmentVariables",
)

GLOBAL_FIELDS = {
    "region",
    "memory",
    "cpu",
    "timeout_seconds",
    "concurrency",
    "min_instances",
    "max_instances",
    "service_account",
    "vpc_connector",
    "vpc_connector_egress_settings",
    "ingress",
    "omit",
    "labels",
    "secrets",
}

_EVENT_FIELDS = {"retry"}

FAMILY_FIELDS: dict[str, set[str]] = {
    HTTPS: {"invoker"},
    CALLABLE: set(),
    PUBSUB: _EVENT_FIELDS,
    FIRESTORE: _EVENT_FIELDS | {"database", "namespace"},
    DATABASE: _EVENT_FIELDS | {"instance"},
    STORAGE: _EVENT_FIELDS,
    ALERTS: _EVENT_FIELDS | {"app_id"},
    EVENTARC: _EVENT_FIELDS | {"channel", "filters"},
    REMOTE_CONFIG: _EVENT_FIELDS,
    TEST_LAB: _EVENT_FIELDS,
    BLOCKING: {"id_token", "access_token", "refresh_token"},
    SCHEDULER: {"time_zone", "retry_config"},
    TASKS: {"retry_config", "rate_limits", "invoker"},
}

SCHEDULE_RETRY_FIELDS = (
    ("retry_count", INT),
    ("max_retry_seconds", INT),
    ("min_backoff_seconds", INT),
    ("max_backoff_seconds", INT),
    ("max_doublings", INT),
)
TASK_RETRY_FIELDS = (
    ("max_attempts", INT),
    ("max_retry_seconds", INT),
    ("max_backoff_seconds", INT),
    ("max_doublings", INT),
    ("min_backoff_seconds", INT),
)
RATE_LIMIT_FIELDS = (
    ("max_concurrent_dispatches", INT),
    ("max_dispatches_per_second", NUMBER),
)

FIRESTORE_EVENT_PREFIX = "google.cloud.firestore.document.v1."
DATABASE_EVENT_PREFIX = "google.firebase.database.ref.v1."
STORAGE_EVENT_PREFIX = "google.cloud.storage.object.v1."
PUBSUB_EVENT_TYPE = "google.cloud.pubsub.topic.v1.messagePublished"
ALERT_EVENT_TYPE = "google.firebase.firebasealerts.alerts.v1.published"
REMOTE_CONFIG_EVENT_TYPE = "google.firebase.remoteconfig.remoteConfig.v1.updated"
TEST_LAB_EVENT_TYPE = "google.firebase.testlab.testMatrix.v1.completed"
BLOCKING_EVENT_PREFIX = "providers/cloud.auth/eventTypes/user."
DEFAULT_DATABASE = "(default)"
DEFAULT_NAMESPACE = "(default)"
DEFAULT_INSTANCE = "*"


class _Fields:
    """Typed access to the fields of one resolved options bundle."""

    def __init__(self, values: Mapping[str, FieldValue], params: ParamTable, location: SourceLocation) -> None:
        self._values = values
        self.params = params
        self.location = location

    def raw(self, name: str) -> Optional[FieldValue]:
        return self._values.get(name)

    def value(self, name: str, expected: str) -> Optional[OptionValue]:
        """
        The field's value checked against ``expected``; ``None`` when absent
        or reset.
        """
        value = self._values.get(name)
        if value is None or isinstance(value, Reset):
            return None
        if isinstance(value, OptionBundle):
            raise UnrecognizedTriggerShape(f"{name} does not take an options bundle", value.location)
        return check_value(value, expected, name, self.params, self.location)

    def literal(self, name: str, expected: str) -> Optional[object]:
        value = self.value(name, expected)
        if value is None:
            return None
        if not isinstance(value, Literal):
            raise InvalidOptionValue(f"{name} must be a literal value", self.location)
        return value.value


def _literal_is(value: object, expected: str) -> bool:
    if expected == BOOLEAN:
        return isinstance(value, bool)
    if isinstance(value, bool):
        return False
    if expected == INT:
        return isinstance(value, int)
    if expected == NUMBER:
        return isinstance(value, (int, float))
    if expected == STRING:
        return isinstance(value, str)
    return False


def check_value(
    value: OptionValue, expected: str, name: str, params: ParamTable, location: SourceLocation
) -> OptionValue:
    if isinstance(value, Reset):
        return value
    if isinstance(value, Literal):
        if not _literal_is(value.value, expected):
            raise InvalidOptionValue(f"{name} expects a {expected}, got {value.value!r}", location)
        return value
    if isinstance(value, ParamRef):
        kind = params.kind_of(value.name)
        if kind is None:
            raise UnknownParamReference(f"{value.name!r} is not a declared param", location)
        if kind not in _COMPATIBLE_KINDS[expected]:
            raise InvalidOptionValue(
                f"{name} expects a {expected}, but param {value.name!r} is {kind.value}", location
            )
        return value
    if isinstance(value, Ternary):
        check_value(value.then, expected, name, params, location)
        check_value(value.otherwise, expected, name, params, location)
        return value
    raise InvalidOptionValue(f"{name} has an unsupported value", location)


def _literals(value: Optional[OptionValue]) -> Iterator[Literal]:
    # the value itself, or each branch of a then_else
    if isinstance(value, Ternary):
        yield from _literals(value.then)
        yield from _literals(value.otherwise)
    elif isinstance(value, Literal):
        yield value


def _non_negative(name: str, value: Optional[OptionValue], location: SourceLocation) -> None:
    for lit in _literals(value):
        if lit.value < 0:
            raise InvalidOptionValue(f"{name} must not be negative", location)


def _region(fields: _Fields) -> Optional[OptionValue]:
    raw = fields.raw("region")
    if raw is None:
        return literal_list([Literal(DEFAULT_REGION)])
    if isinstance(raw, Reset):
        return None
    if isinstance(raw, OptionBundle):
        raise UnrecognizedTriggerShape("region does not take an options bundle", raw.location)

    def one(item: OptionValue) -> OptionValue:
        item = check_value(item, STRING, "region", fields.params, fields.location)
        for lit in _literals(item):
            if not _REGION.match(lit.value):
                raise InvalidOptionValue(f"{lit.value!r} is not a region", fields.location)
        return item

    if isinstance(raw, ParamRef) and fields.params.kind_of(raw.name) is ParamKind.LIST:
        return raw
    if is_list_literal(raw):
        items = [one(item) for item in raw.value]  # type: ignore[union-attr]
        if not items:
            raise InvalidOptionValue("region must not be empty", fields.location)
        return literal_list(items)
    return literal_list([one(raw)])


def _string_list(fields: _Fields, name: str) -> Optional[OptionValue]:
    raw = fields.raw(name)
    if raw is None or isinstance(raw, Reset):
        return None
    if isinstance(raw, OptionBundle):
        raise UnrecognizedTriggerShape(f"{name} does not take an options bundle", raw.location)
    if isinstance(raw, ParamRef) and fields.params.kind_of(raw.name) is ParamKind.LIST:
        return raw
    if is_list_literal(raw):
        items = [check_value(i, STRING, name, fields.params, fields.location) for i in raw.value]  # type: ignore[union-attr]
        return literal_list(items) if items else None
    return literal_list([check_value(raw, STRING, name, fields.params, fields.location)])


def _string_map(fields: _Fields, name: str) -> Optional[OptionValue]:
    raw = fields.raw(name)
    if raw is None or isinstance(raw, Reset):
        return None
    if not is_map_literal(raw):
        raise InvalidOptionValue(f"{name} must be a dict of strings", fields.location)
    entries = {
        k: check_value(v, STRING, f"{name}[{k!r}]", fields.params, fields.location)
        for k, v in raw.value.items()  # type: ignore[union-attr]
    }
    return literal_map(entries) if entries else None


def _secrets(fields: _Fields) -> Optional[OptionValue]:
    raw = fields.raw("secrets")
    if raw is None or isinstance(raw, Reset):
        return None
    if not is_list_literal(raw):
        raise InvalidOptionValue("secrets must be a list", fields.location)

    out: list[OptionValue] = []
    for item in raw.value:  # type: ignore[union-attr]
        if isinstance(item, ParamRef):
            if fields.params.kind_of(item.name) is not ParamKind.SECRET:
                raise InvalidOptionValue(
                    f"param {item.name!r} is not a secret", fields.location
                )
            name = item.name
        elif isinstance(item, Literal) and isinstance(item.value, str) and item.value:
            name = item.value
        else:
            raise InvalidOptionValue("secrets must name secret params", fields.location)
        out.append(literal_map({"key": Literal(name), "secret": Literal(name)}))
    return literal_list(out) if out else None


def _global_options(fields: _Fields) -> dict[str, OptionValue]:
    loc = fields.location
    wire: dict[str, Optional[OptionValue]] = {}

    memory = fields.value("memory", INT)
    for lit in _literals(memory):
        if lit.value not in MEMORY_VALUES:
            raise InvalidOptionValue(f"memory {lit.value} is not a supported size", loc)
    wire["availableMemoryMb"] = memory

    cpu = fields.raw("cpu")
    if isinstance(cpu, Literal) and cpu.value == "gcf_gen1":
        wire["cpu"] = cpu
    else:
        wire["cpu"] = fields.value("cpu", NUMBER)
        if any(lit.value <= 0 for lit in _literals(wire["cpu"])):
            raise InvalidOptionValue("cpu must be positive", loc)

    for name, key in (
        ("timeout_seconds", "timeoutSeconds"),
        ("concurrency", "concurrency"),
        ("min_instances", "minInstances"),
        ("max_instances", "maxInstances"),
    ):
        value = fields.value(name, INT)
        _non_negative(name, value, loc)
        wire[key] = value

    wire["serviceAccountEmail"] = fields.value("service_account", STRING)

    vpc: dict[str, OptionValue] = {}
    connector = fields.value("vpc_connector", STRING)
    if connector is not None:
        vpc["connector"] = connector
    egress = fields.value("vpc_connector_egress_settings", STRING)
    if egress is not None:
        for lit in _literals(egress):
            if lit.value not in VPC_EGRESS_SETTINGS:
                raise InvalidOptionValue(f"unknown VPC egress setting {lit.value!r}", loc)
        vpc["egressSettings"] = egress
    wire["vpc"] = literal_map(vpc) if vpc else None

    ingress = fields.value("ingress", STRING)
    for lit in _literals(ingress):
        if lit.value not in INGRESS_SETTINGS:
            raise InvalidOptionValue(f"unknown ingress setting {lit.value!r}", loc)
    wire["ingressSettings"] = ingress

    wire["omit"] = fields.value("omit", BOOLEAN)
    wire["labels"] = _string_map(fields, "labels")
    wire["secretEnvironmentVariables"] = _secrets(fields)

    return {k: wire[k] for k in GLOBAL_WIRE_ORDER if wire.get(k) is not None}  # type: ignore[misc]


def _sub_bundle(
    fields: _Fields, name: str, spec: tuple[tuple[str, str], ...]
) -> Mapping[str, OptionValue]:
    raw = fields.raw(name)
    if raw is None or isinstance(raw, Reset):
        return MappingProxyType({})
    if isinstance(raw, OptionBundle):
        values: Mapping[str, FieldValue] = raw.fields
    elif is_map_literal(raw):
        values = {snake(k): v for k, v in raw.value.items()}  # type: ignore[union-attr]
    else:
        raise InvalidOptionValue(f"{name} must be an options bundle", fields.location)

    allowed = {field_name for field_name, _ in spec}
    unknown = sorted(set(values) - allowed)
    if unknown:
        raise UnrecognizedTriggerShape(f"unexpected {name} option {unknown[0]!r}", fields.location)

    inner = _Fields(values, fields.params, fields.location)
    out: dict[str, OptionValue] = {}
    for field_name, expected in spec:
        value = inner.value(field_name, expected)
        _non_negative(field_name, value, fields.location)
        if value is not None:
            out[camel(field_name)] = value
    return MappingProxyType(out)


def _event_trigger(
    fields: _Fields,
    event_type: str,
    filters: dict[str, OptionValue],
    path_patterns: Optional[dict[str, str]] = None,
) -> EventTrigger:
    retry = fields.value("retry", BOOLEAN) or Literal(False)
    channel = fields.value("channel", STRING)
    return EventTrigger(
        event_type=event_type,
        filters=MappingProxyType(filters),
        path_patterns=MappingProxyType(path_patterns or {}),
        channel=channel,
        retry=retry,
    )


def _build_trigger(call: ResolvedCall, fields: _Fields) -> Trigger:
    method = call.method
    family = method.family
    address = call.address or ""
    loc = call.location

    if family == HTTPS:
        return HttpsTrigger(invoker=_string_list(fields, "invoker"))

    if family == CALLABLE:
        return CallableTrigger()

    if family == PUBSUB:
        return _event_trigger(fields, PUBSUB_EVENT_TYPE, {"topic": Literal(address)})

    if family == FIRESTORE:
        pattern = parse_pattern(address, loc)
        event_type = FIRESTORE_EVENT_PREFIX + method.event
        if method.name.endswith("_with_auth_context"):
            event_type += ".withAuthContext"
        filters: dict[str, OptionValue] = {
            "database": fields.value("database", STRING) or Literal(DEFAULT_DATABASE),
            "namespace": fields.value("namespace", STRING) or Literal(DEFAULT_NAMESPACE),
        }
        if pattern.has_captures:
            return _event_trigger(fields, event_type, filters, {"document": pattern.normalized})
        filters["document"] = Literal(pattern.normalized)
        return _event_trigger(fields, event_type, filters)

    if family == DATABASE:
        pattern = parse_pattern(address, loc)
        instance = fields.literal("instance", STRING) or DEFAULT_INSTANCE
        return _event_trigger(
            fields,
            DATABASE_EVENT_PREFIX + method.event,
            {},
            {"ref": pattern.normalized, "instance": str(instance)},
        )

    if family == STORAGE:
        return _event_trigger(fields, STORAGE_EVENT_PREFIX + method.event, {"bucket": Literal(address)})

    if family == ALERTS:
        filters = {"alerttype": Literal(address or method.event)}
        app_id = fields.value("app_id", STRING)
        if app_id is not None:
            filters["appid"] = app_id
        return _event_trigger(fields, ALERT_EVENT_TYPE, filters)

    if family == EVENTARC:
        filters = {}
        extra = _string_map(fields, "filters")
        if extra is not None:
            filters.update(extra.value)  # type: ignore[union-attr]
        return _event_trigger(fields, address, filters)

    if family == REMOTE_CONFIG:
        return _event_trigger(fields, REMOTE_CONFIG_EVENT_TYPE, {})

    if family == TEST_LAB:
        return _event_trigger(fields, TEST_LAB_EVENT_TYPE, {})

    if family == BLOCKING:
        options: dict[str, bool] = {}
        if method.event in ("beforeCreate", "beforeSignIn"):
            for name in ("id_token", "access_token", "refresh_token"):
                if fields.literal(name, BOOLEAN) is True:
                    options[camel(name)] = True
        return BlockingTrigger(
            event_type=BLOCKING_EVENT_PREFIX + method.event,
            options=MappingProxyType(options),
        )

    if family == SCHEDULER:
        return ScheduleTrigger(
            schedule=address,
            time_zone=fields.value("time_zone", STRING),
            retry_config=_sub_bundle(fields, "retry_config", SCHEDULE_RETRY_FIELDS),
        )

    if family == TASKS:
        return TaskQueueTrigger(
            retry_config=_sub_bundle(fields, "retry_config", TASK_RETRY_FIELDS),
            rate_limits=_sub_bundle(fields, "rate_limits", RATE_LIMIT_FIELDS),
            invoker=_string_list(fields, "invoker"),
        )

    raise UnrecognizedTriggerShape(f"unsupported trigger family {family!r}", loc)


def normalize_call(call: ResolvedCall, params: ParamTable) -> Endpoint:
    """
    Turn a resolved registration into an Endpoint.

    Per field: RESET_VALUE drops the field, a literal/param/ternary is kept
    as-is, an absent field takes the family default where one exists, and
    empty collections are dropped.
    """
    method = call.method
    values: Mapping[str, FieldValue] = call.options.fields if call.options is not None else {}
    location = call.options.location if call.options is not None else call.location

    allowed = GLOBAL_FIELDS | FAMILY_FIELDS[method.family]
    for name in values:
        if name not in allowed:
            raise UnrecognizedTriggerShape(
                f"option {name!r} is not supported by {method.qualified}", location
            )

    fields = _Fields(values, params, location)
    trigger = _build_trigger(call, fields)
    key = endpoint_key(method, call.address)
    log.debug("%s: %s -> %s", call.location, method.qualified, key)

    return Endpoint(
        key=key,
        entry_point=key,
        region=_region(fields),
        trigger=trigger,
        location=call.location,
        handler=call.handler,
        options=MappingProxyType(_global_options(fields)),
    )
