from __future__ import annotations

from typing import Optional

from fnmanifest.domain.values import SourceLocation


class ManifestError(Exception):
    """
    Base class for every error that aborts a manifest build.

    The rendered message is prefixed with ``path:line:col`` when the error can
    be pinned to a source location.
    """

    def __init__(self, message: str, location: Optional[SourceLocation] = None) -> None:
        self.message = message
        self.location = location
        super().__init__(f"{location}: {message}" if location is not None else message)

    @property
    def kind(self) -> str:
        return type(self).__name__


class SourceSyntaxError(ManifestError):
    pass


class MissingRequiredArgument(ManifestError):
    pass


class UnrecognizedTriggerShape(ManifestError):
    pass


class UnsupportedExpression(ManifestError):
    pass


class InvalidPattern(ManifestError):
    pass


class UnknownParamReference(ManifestError):
    pass


class DuplicateParamDeclaration(ManifestError):
    pass


class InvalidOptionValue(ManifestError):
    pass


class ConfigError(ManifestError):
    pass


class DuplicateEndpointKey(ManifestError):
    def __init__(self, key: str, first: SourceLocation, second: SourceLocation) -> None:
        self.key = key
        self.first = first
        self.second = second
        super().__init__(
            f"endpoint key {key!r} is produced twice (first at {first})",
            location=second,
        )
