"""
Error taxonomy for the scan orchestration and report synthesis engine.

``InvalidDomain``, ``CoreDependencyFailed``, ``Unauthenticated`` and
``NotFound`` end the requested operation and reach the caller.
``PluginFailure`` is raised inside plugins and recovered by
:meth:`BasePlugin.invoke <posturescope.plugins.base.BasePlugin.invoke>`; it
never escapes a scan.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from posturescope.plugins.base import PluginResult


class PostureScopeError(Exception):
    """Base class for every error raised by PostureScope itself."""


class InvalidDomain(PostureScopeError):
    """The supplied domain is empty or malformed.

    Raised before any plugin is invoked.
    """

    def __init__(self, domain: Any, reason: str) -> None:
        self.domain = domain
        self.reason = reason
        super().__init__(reason)


class CoreDependencyFailed(PostureScopeError):
    """The mandatory DNS plugin failed or timed out; no report exists.

    Attributes:
        domain: Normalised domain of the aborted scan.
        dns_result: The failed DNS :class:`PluginResult`, when one was
            produced.  ``None`` for re-assembly of a key whose DNS result
            is missing or unsuccessful in storage.
    """

    def __init__(
        self,
        domain: str,
        reason: str,
        dns_result: Optional["PluginResult"] = None,
    ) -> None:
        self.domain = domain
        self.reason = reason
        self.dns_result = dns_result
        super().__init__(f"DNS scan for {domain} failed: {reason}")


class PluginFailure(PostureScopeError):
    """A non-mandatory data source failed.

    ``str(exc)`` is the bare *reason* so it can be copied verbatim into the
    report's per-plugin ``error_message``.
    """

    def __init__(self, plugin: Any, reason: str) -> None:
        self.plugin = plugin
        self.reason = reason
        super().__init__(reason)


class Unauthenticated(PostureScopeError):
    """The call carried no caller identity token."""

    def __init__(self, reason: str = "missing caller identity") -> None:
        super().__init__(reason)


class NotFound(PostureScopeError):
    """A report, scan key or domain is unknown to storage."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")
