"""
tern.errors — Error taxonomy.

Build/synthesis errors are fatal and abort before any template exists.
Provisioning errors are reported per step by the engine, never raised out
of it. Discovery errors belong to the calling function.
"""

from __future__ import annotations


class TernError(Exception):
    """Base class for all tern errors."""
    pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BUILD / SYNTHESIS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
class DuplicateNameError(TernError):
    """Two declarations share a name."""

    def __init__(self, name: str, kinds: tuple[str, str] | None = None):
        self.name = name
        self.kinds = kinds
        detail = f" ({kinds[0]} and {kinds[1]})" if kinds else ""
        super().__init__(f"Duplicate declared name: '{name}'{detail}")


class CyclicDependencyError(TernError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__(
            "Cyclic dependency between resources: " + " -> ".join(self.cycle)
        )


class UnresolvedReferenceError(TernError):
    """A reference points at something that is not in the graph."""

    def __init__(self, target: str, referrer: str | None = None):
        self.target = target
        self.referrer = referrer
        where = f" (referenced by '{referrer}')" if referrer else ""
        super().__init__(f"Unresolved reference to '{target}'{where}")


class PropertyError(TernError, ValueError):
    """A property bag holds a value outside the supported kinds."""
    pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# PROVISIONING
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
class ProvisioningError(TernError):
    """A custom provisioning step did not succeed."""

    def __init__(self, logical_id: str, reason: str):
        self.logical_id = logical_id
        self.reason = reason
        super().__init__(f"{logical_id}: {reason}")


class HandlerError(ProvisioningError):
    """The step handler raised or returned an invalid result."""
    pass


class HandlerTimeoutError(ProvisioningError):
    """The step handler did not answer within its budget."""
    pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# RUNTIME
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
class ResourceNotFoundError(TernError, LookupError):
    """A logical ID is absent from the discovery snapshot."""

    def __init__(self, logical_id: str):
        self.logical_id = logical_id
        super().__init__(
            f"Logical ID '{logical_id}' not found in discovery snapshot. "
            f"The deployed function and snapshot may be out of sync."
        )


class ConfigError(TernError):
    """Invalid configuration."""
    pass
