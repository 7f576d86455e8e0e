# fleet_engine/core/errors.py

# -----------------------------
# Base Errors
# -----------------------------

class FleetError(Exception):
    """Base class for all fleet engine errors."""

    kind = "FleetError"


# -----------------------------
# Control plane errors
# -----------------------------

class MachineApiError(FleetError):
    """Control plane request failed (transport error, unexpected status)."""

    kind = "ApiError"


class LeaseConflictError(MachineApiError):
    """Machine is leased by a different holder."""

    kind = "Conflict"


class LeaseUnauthorizedError(MachineApiError):
    """Lease nonce missing, stale or expired."""

    kind = "Unauthorized"


class InvalidConfigError(MachineApiError):
    """Machine config rejected, locally or by the control plane."""

    kind = "InvalidConfig"


class MachineNotFoundError(MachineApiError):
    """Machine does not exist (or was destroyed)."""

    kind = "NotFound"


class WaitTimeoutError(MachineApiError):
    """Machine did not converge within the wait budget."""

    kind = "TimedOut"


# -----------------------------
# Run errors
# -----------------------------

class RunCancelledError(FleetError):
    """The caller cancelled the orchestration run."""

    kind = "Cancelled"


class InvalidStateTransitionError(Exception):
    """Illegal update state transition attempted. A bug, not a machine failure."""

    kind = "InvalidStateTransition"


# -----------------------------
# Persistence Errors
# -----------------------------

class ReleasePersistenceError(FleetError):
    kind = "PersistenceError"


class ReleaseNotFoundError(ReleasePersistenceError):
    kind = "ReleaseNotFound"


def error_kind(error) -> str | None:
    """Short taxonomy name for an error, None when there is no error."""
    if error is None:
        return None
    return getattr(error, "kind", type(error).__name__)
