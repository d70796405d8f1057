"""Error taxonomy shared by the store, reconciler, and adapters."""

from __future__ import annotations

import enum


class BwctlError(Exception):
    """Base class for all bwctl errors."""


class ValidationError(BwctlError):
    """Bad ip or limits. Raised before any state is touched."""


class StoreError(BwctlError):
    """Persistence file could not be read or written."""


class CompileError(BwctlError):
    """A rule could not be rendered (e.g. missing pipe assignment)."""


class AdapterUnavailable(BwctlError):
    """Discovery or counter source is unreachable."""


class ApplyFailure(enum.Enum):
    """Why the firewall refused a configuration."""

    DISABLED = "disabled"
    SYNTAX = "syntax"
    PERMISSION = "permission"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class ApplyError(BwctlError):
    """The firewall facility rejected the configuration or is disabled."""

    def __init__(self, kind: ApplyFailure, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        message = kind.value if not detail else f"{kind.value}: {detail}"
        super().__init__(message)
