from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping

import yaml

from fnmanifest.domain.values import Literal, OptionValue, Param, ParamRef, Reset, Ternary
from fnmanifest.manifest.assemble import Manifest
from fnmanifest.manifest.triggers import (
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

FORMATS = ("yaml", "json")


def _operand(value: OptionValue) -> str:
    if isinstance(value, ParamRef):
        return f"params.{value.name}"
    if isinstance(value, Literal):
        v = value.value
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, str):
            return json.dumps(v)
        return repr(v)
    raise TypeError(f"cannot render {value!r} inside a ternary")


def render_value(value: OptionValue) -> Any:
    """
    Wire form of an OptionValue.

    Param references and ternaries become ``{{ params.X }}`` expressions that
    the deploy tool substitutes. Reset must be dropped before rendering.
    """
    if isinstance(value, ParamRef):
        return f"{{{{ params.{value.name} }}}}"
    if isinstance(value, Ternary):
        return (
            f"{{{{ params.{value.condition.name} ? "
            f"{_operand(value.then)} : {_operand(value.otherwise)} }}}}"
        )
    if isinstance(value, Reset):
        raise TypeError("RESET_VALUE has no wire form")
    v = value.value
    if isinstance(v, tuple):
        return [render_value(item) for item in v]
    if isinstance(v, Mapping):
        return {k: render_value(item) for k, item in v.items()}
    return v


def _render_map(values: Mapping[str, OptionValue]) -> dict[str, Any]:
    return {k: render_value(v) for k, v in values.items() if not isinstance(v, Reset)}


def param_to_wire(param: Param) -> dict[str, Any]:
    out: dict[str, Any] = {"name": param.name, "type": param.kind.value}
    if param.format is not None:
        out["format"] = param.format
    if param.default is not None:
        out["default"] = render_value(param.default)
    if param.label is not None:
        out["label"] = param.label
    if param.description is not None:
        out["description"] = param.description
    return out


def trigger_to_wire(trigger: Trigger) -> dict[str, Any]:
    if isinstance(trigger, HttpsTrigger):
        body: dict[str, Any] = {}
        if trigger.invoker is not None:
            body["invoker"] = render_value(trigger.invoker)
        return body

    if isinstance(trigger, CallableTrigger):
        return {}

    if isinstance(trigger, EventTrigger):
        body = {"eventType": trigger.event_type, "eventFilters": _render_map(trigger.filters)}
        if trigger.path_patterns:
            body["eventFilterPathPatterns"] = dict(trigger.path_patterns)
        if trigger.channel is not None:
            body["channel"] = render_value(trigger.channel)
        body["retry"] = render_value(trigger.retry)
        return body

    if isinstance(trigger, BlockingTrigger):
        return {"eventType": trigger.event_type, "options": dict(trigger.options)}

    if isinstance(trigger, ScheduleTrigger):
        body = {"schedule": trigger.schedule}
        if trigger.time_zone is not None:
            body["timeZone"] = render_value(trigger.time_zone)
        if trigger.retry_config:
            body["retryConfig"] = _render_map(trigger.retry_config)
        return body

    if isinstance(trigger, TaskQueueTrigger):
        body = {}
        if trigger.retry_config:
            body["retryConfig"] = _render_map(trigger.retry_config)
        if trigger.rate_limits:
            body["rateLimits"] = _render_map(trigger.rate_limits)
        if trigger.invoker is not None:
            body["invoker"] = render_value(trigger.invoker)
        return body

    raise TypeError(f"unknown trigger {trigger!r}")


def endpoint_to_wire(endpoint: Endpoint) -> dict[str, Any]:
    out: dict[str, Any] = {"entryPoint": endpoint.entry_point, "platform": endpoint.platform}
    if endpoint.region is not None:
        out["region"] = render_value(endpoint.region)
    out.update(_render_map(endpoint.options))
    out[endpoint.trigger.wire_key] = trigger_to_wire(endpoint.trigger)
    return out


def manifest_to_wire(manifest: Manifest) -> dict[str, Any]:
    out: dict[str, Any] = {"specVersion": manifest.spec_version}
    if manifest.params:
        out["params"] = [param_to_wire(p) for p in manifest.params]
    out["requiredAPIs"] = [{"api": a.api, "reason": a.reason} for a in manifest.required_apis]
    out["endpoints"] = {e.key: endpoint_to_wire(e) for e in manifest.endpoints}
    return out


def dump_manifest(manifest: Manifest, fmt: str = "yaml") -> str:
    wire = manifest_to_wire(manifest)
    if fmt == "json":
        return json.dumps(wire, indent=2, ensure_ascii=False) + "\n"
    if fmt == "yaml":
        return yaml.safe_dump(wire, sort_keys=False, default_flow_style=False, allow_unicode=True)
    raise ValueError(f"format must be one of: {', '.join(FORMATS)}")


def write_atomic(path: Path, text: str) -> None:
    """
    Replace ``path`` with ``text`` in one step.

    The content goes to a temp file in the same directory, is fsynced, then
    renamed over the destination; readers never observe a partial file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as tmp:
        tmp_path = Path(tmp.name)
        try:
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        except BaseException:
            tmp.close()
            tmp_path.unlink(missing_ok=True)
            raise
    try:
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    log.info("wrote %s (%d bytes)", path, len(text.encode("utf-8")))
