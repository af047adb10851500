"""
Endpoint key derivation.

The deploy tool registers each endpoint under its key and the runtime derives
the same key from inbound events, so every function here is the single
source of truth for both sides. Keys must stay stable across releases.
"""

from __future__ import annotations

import re
from typing import Optional

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
    TriggerMethod,
)

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")
_SCHEDULE_DROP = re.compile(r"[*/,\-]")

REMOTE_CONFIG_KEY = "onConfigUpdated"
TEST_LAB_KEY = "onTestMatrixCompleted"


def _path_body(path: str) -> str:
    # /users/{userId}/ -> users_userId
    body = path.strip("/").replace("/", "_")
    return body.replace("{", "").replace("}", "").replace("-", "")


def pubsub_key(topic: str) -> str:
    # projects/p/topics/my-topic -> onMessagePublished_my_topic
    name = topic.rstrip("/").split("/")[-1]
    return f"onMessagePublished_{name.replace('-', '_')}"


def path_key(method_camel: str, path: str) -> str:
    return f"{method_camel}_{_path_body(path)}"


def storage_key(method_camel: str, bucket: str) -> str:
    return f"{method_camel}_{_NON_ALNUM.sub('', bucket)}"


def alert_key(alert_type: str) -> str:
    return f"onAlertPublished_{alert_type.replace('.', '_').replace('-', '')}"


def eventarc_key(event_type: str) -> str:
    return f"onCustomEventPublished_{_NON_ALNUM.sub('', event_type)}"


def schedule_key(schedule: str) -> str:
    # "0 0 * * *" -> onSchedule_0_0___
    return f"onSchedule_{_SCHEDULE_DROP.sub('', schedule.replace(' ', '_'))}"


def endpoint_key(method: TriggerMethod, address: Optional[str]) -> str:
    """
    Derive the manifest key for a registration.

    Explicitly named families (HTTPS, callable, task queue) use the name
    verbatim; every other family derives its key from the trigger address.
    """
    family = method.family
    if family in (HTTPS, CALLABLE, TASKS):
        return address or ""
    if family == PUBSUB:
        return pubsub_key(address or "")
    if family in (FIRESTORE, DATABASE):
        return path_key(method.camel, address or "")
    if family == STORAGE:
        return storage_key(method.camel, address or "")
    if family == ALERTS:
        return alert_key(address or method.event)
    if family == EVENTARC:
        return eventarc_key(address or "")
    if family == SCHEDULER:
        return schedule_key(address or "")
    if family == BLOCKING:
        return method.event
    if family == REMOTE_CONFIG:
        return REMOTE_CONFIG_KEY
    if family == TEST_LAB:
        return TEST_LAB_KEY
    raise ValueError(f"unknown trigger family {family!r}")
