from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from fnmanifest.domain.errors import DuplicateEndpointKey
from fnmanifest.domain.values import Param
from fnmanifest.manifest.triggers import (
    CLOUD_FUNCTIONS_API,
    CLOUD_SCHEDULER_API,
    CLOUD_TASKS_API,
    IDENTITY_TOOLKIT_API,
    Endpoint,
    RequiredApi,
)

SPEC_VERSION = "v1alpha1"

# requiredAPIs are always emitted in this order
_API_ORDER = (CLOUD_FUNCTIONS_API, IDENTITY_TOOLKIT_API, CLOUD_SCHEDULER_API, CLOUD_TASKS_API)


@dataclass(frozen=True)
class Manifest:
    params: tuple[Param, ...]
    required_apis: tuple[RequiredApi, ...]
    endpoints: tuple[Endpoint, ...]
    spec_version: str = SPEC_VERSION


def required_apis(endpoints: Iterable[Endpoint]) -> tuple[RequiredApi, ...]:
    needed = {CLOUD_FUNCTIONS_API.api}
    for e in endpoints:
        api = e.trigger.required_api
        if api is not None:
            needed.add(api.api)
    return tuple(a for a in _API_ORDER if a.api in needed)


def assemble_manifest(params: Iterable[Param], endpoints: Iterable[Endpoint]) -> Manifest:
    """
    Combine params (declaration order) and endpoints (discovery order).

    Two registrations that derive the same key are rejected, naming both
    source locations.
    """
    by_key: dict[str, Endpoint] = {}
    ordered: list[Endpoint] = []
    for e in endpoints:
        first = by_key.get(e.key)
        if first is not None:
            raise DuplicateEndpointKey(e.key, first.location, e.location)
        by_key[e.key] = e
        ordered.append(e)

    return Manifest(
        params=tuple(params),
        required_apis=required_apis(ordered),
        endpoints=tuple(ordered),
    )
