"""Error taxonomy for the kvquorum control logic.

Startup errors are fatal for the member being started. Shutdown errors are
surfaced to the lifecycle hooks, which downgrade them to warnings.
"""

from __future__ import annotations

from kvquorum.datastructures.type_aliases import (
    ClusterName,
    DurationSeconds,
    IpAddress,
    ServiceName,
)


class KVQuorumError(Exception):
    """Base exception for kvquorum errors."""

    pass


class ConfigurationError(KVQuorumError, ValueError):
    """Raised when settings are inconsistent."""

    pass


class StartupError(KVQuorumError):
    """Raised when a member cannot safely decide how to start."""

    pass


class DiscoveryUnavailable(StartupError):
    """The discovery service never listed this member's own address."""

    def __init__(
        self, service: ServiceName, self_address: IpAddress, attempts: int
    ) -> None:
        self.service = service
        self.self_address = self_address
        self.attempts = attempts
        super().__init__(
            f"{service} does not contain {self_address} after {attempts} attempts"
        )


class MasterUnknown(StartupError):
    """Peers are visible but the monitor quorum never reported a master."""

    def __init__(self, cluster_name: ClusterName, attempts: int) -> None:
        self.cluster_name = cluster_name
        self.attempts = attempts
        super().__init__(
            f"No master known for {cluster_name} after {attempts} attempts"
        )


class MonitorCommandError(KVQuorumError):
    """A monitor or data-node command failed or was rejected."""

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"{command}: {reason}")

    @property
    def code(self) -> str:
        """Leading error word, e.g. INPROG or NOGOODSLAVE."""
        return self.reason.split(" ", 1)[0] if self.reason else ""


class ShutdownError(KVQuorumError):
    """Base for errors on the graceful shutdown path."""

    pass


class FailoverTimedOut(ShutdownError):
    """The handover did not complete before the shutdown deadline."""

    def __init__(self, cluster_name: ClusterName, timeout_seconds: DurationSeconds) -> None:
        self.cluster_name = cluster_name
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Failover of {cluster_name} not confirmed within {timeout_seconds:.1f}s"
        )
