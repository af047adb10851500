from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from fnmanifest.domain.models import EndpointSpec, ManifestDocument
from fnmanifest.manifest.naming import alert_key, pubsub_key, storage_key
from fnmanifest.manifest.normalize import (
    ALERT_EVENT_TYPE,
    DATABASE_EVENT_PREFIX,
    FIRESTORE_EVENT_PREFIX,
    PUBSUB_EVENT_TYPE,
    STORAGE_EVENT_PREFIX,
)
from fnmanifest.manifest.patterns import parse_pattern

log = logging.getLogger(__name__)

_REGION_PREFIX = re.compile(r"^[a-z]+-[a-z]+\d+-")
_TRAILING_INDEX = re.compile(r"-\d+$")

FUNCTION_HEADER = "x-firebase-function"


class FunctionNotFound(LookupError):
    pass


@dataclass(frozen=True)
class CloudEvent:
    type: str
    source: str = ""
    subject: Optional[str] = None
    extensions: Mapping[str, str] = field(default_factory=dict)


def function_name_from_path(path: str) -> str:
    """
    Extract the target function from a request path.

    ``/helloWorld``, ``/project/us-central1/helloWorld`` and the emulator's
    ``/functions/projects/{p}/triggers/{region}-{name}-{n}`` are supported.
    """
    segments = [s for s in path.split("?")[0].split("/") if s]
    if not segments:
        return ""
    if segments[0] == "functions" and "triggers" in segments:
        idx = segments.index("triggers")
        if idx + 1 < len(segments):
            trigger_id = segments[idx + 1]
            trigger_id = _REGION_PREFIX.sub("", trigger_id)
            return _TRAILING_INDEX.sub("", trigger_id)
    return segments[-1]


def _segment_after(source: str, marker: str) -> Optional[str]:
    # //pubsub.googleapis.com/projects/p/topics/my-topic -> my-topic
    parts = source.split("/")
    if marker in parts:
        idx = parts.index(marker)
        if idx + 1 < len(parts) and parts[idx + 1]:
            return parts[idx + 1]
    return None


class Dispatcher:
    """
    Routes inbound requests and CloudEvents to endpoint keys of a manifest.

    Keys for pubsub, storage and alert events are recomputed with the same
    naming functions the compiler uses; firestore and database events are
    matched against the path patterns recorded in the manifest.
    """

    def __init__(self, document: ManifestDocument) -> None:
        self.document = document
        self.endpoints: Mapping[str, EndpointSpec] = document.endpoints

    @classmethod
    def from_path(cls, path: Path) -> "Dispatcher":
        return cls(ManifestDocument.from_path(path))

    def _known(self, key: str) -> str:
        if key not in self.endpoints:
            raise FunctionNotFound(key)
        return key

    def resolve_path(self, path: str, headers: Optional[Mapping[str, str]] = None) -> str:
        lowered = {k.lower(): v for k, v in (headers or {}).items()}
        name = lowered.get(FUNCTION_HEADER) or function_name_from_path(path)
        if not name:
            raise FunctionNotFound(path)
        return self._known(name)

    def resolve_event(self, event: CloudEvent) -> str:
        etype = event.type

        if etype == PUBSUB_EVENT_TYPE:
            topic = _segment_after(event.source, "topics")
            if topic is None:
                raise FunctionNotFound(f"no topic in source {event.source!r}")
            return self._known(pubsub_key(topic))

        if etype.startswith(STORAGE_EVENT_PREFIX):
            bucket = _segment_after(event.source, "buckets")
            if bucket is None:
                raise FunctionNotFound(f"no bucket in source {event.source!r}")
            op = etype[len(STORAGE_EVENT_PREFIX):]
            method = "onObject" + op[:1].upper() + op[1:]
            return self._known(storage_key(method, bucket))

        if etype == ALERT_EVENT_TYPE:
            alert_type = event.extensions.get("alerttype")
            if not alert_type:
                raise FunctionNotFound("alert event without alerttype")
            return self._known(alert_key(alert_type))

        if etype.startswith(FIRESTORE_EVENT_PREFIX):
            document = event.extensions.get("document") or event.subject or ""
            if document.startswith("documents/"):
                document = document[len("documents/"):]
            return self._match_path(etype, document, "document")

        if etype.startswith(DATABASE_EVENT_PREFIX):
            ref = event.extensions.get("ref") or event.subject or ""
            if ref.startswith("refs/"):
                ref = ref[len("refs/"):]
            return self._match_path(etype, ref, "ref")

        for key, spec in self.endpoints.items():
            if spec.event_trigger is not None and spec.event_trigger.event_type == etype:
                return key
        raise FunctionNotFound(etype)

    def _match_path(self, event_type: str, path: str, filter_name: str) -> str:
        for key, spec in self.endpoints.items():
            trigger = spec.event_trigger
            if trigger is None or trigger.event_type != event_type:
                continue
            raw = trigger.event_filter_path_patterns.get(filter_name) or trigger.event_filters.get(
                filter_name
            )
            if not isinstance(raw, str):
                continue
            if parse_pattern(raw).match(path) is not None:
                log.debug("%s %s matched %s", event_type, path, key)
                return key
        raise FunctionNotFound(f"{event_type} {path}")
