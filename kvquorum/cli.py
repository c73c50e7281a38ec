import asyncio
import os
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, TypeAlias, TypeVar

from jsonargparse import CLI
from loguru import logger

from kvquorum.config import KVQuorumSettings
from kvquorum.core.errors import KVQuorumError, StartupError
from kvquorum.core.health import ProbeResult
from kvquorum.core.lifecycle import SHUTDOWN_ERRORS, MemberLifecycle
from kvquorum.core.logging import configure_logging
from kvquorum.core.startup import monitor_command

ProbeScope: TypeAlias = Literal["local", "master", "monitor", "local_and_master"]

T = TypeVar("T")

# Setup lookups (DNS, redis) can fail with OSError before any hook runs
HOOK_ERRORS: tuple[type[BaseException], ...] = (KVQuorumError, *SHUTDOWN_ERRORS)


async def _with_lifecycle(
    settings: KVQuorumSettings,
    hook: Callable[[MemberLifecycle], Awaitable[T]],
    **kwargs,
) -> T:
    lifecycle = await MemberLifecycle.from_settings(
        settings.to_cluster_settings(), **kwargs
    )
    try:
        return await hook(lifecycle)
    finally:
        await lifecycle.close()


@dataclass(slots=True)
class KVQuorumCLI:
    """Lifecycle hooks of one kvquorum member, as called by the orchestrator."""

    log_level: str | None = None
    debug_scopes: tuple[str, ...] = ()

    def _settings(self) -> KVQuorumSettings:
        settings = KVQuorumSettings()
        configure_logging(
            self.log_level or settings.log_level, debug_scopes=self.debug_scopes
        )
        return settings

    def start_node(
        self,
        config_dir: Path = Path("/opt/kvquorum/etc"),
        executable: str = "redis-server",
        dry_run: bool = False,
    ) -> int:
        """Resolve this member's role, write its config and exec the data server.

        Args:
            config_dir: Directory holding master.conf, replica.conf and redis.conf.
            executable: Data server binary.
            dry_run: Print the command instead of replacing this process.
        """
        settings = self._settings()
        try:
            plan = asyncio.run(
                _with_lifecycle(
                    settings,
                    lambda lifecycle: lifecycle.on_start(),
                    config_dir=config_dir,
                )
            )
        except StartupError as exc:
            logger.error("Cannot start data node: {}", exc)
            return 1
        command = plan.command(executable)
        if dry_run:
            print(" ".join(command))
            return 0
        os.execvp(command[0], command)

    def start_monitor(
        self,
        config_path: Path = Path("/opt/kvquorum/sentinel/sentinel.conf"),
        executable: str = "redis-server",
        dry_run: bool = False,
    ) -> int:
        """Bootstrap the monitor agent config and exec the monitor.

        Args:
            config_path: Monitor config file to (re)write.
            executable: Monitor binary, started with ``--sentinel``.
            dry_run: Print the command instead of replacing this process.
        """
        settings = self._settings()
        try:
            asyncio.run(
                _with_lifecycle(
                    settings,
                    lambda lifecycle: lifecycle.on_monitor_start(),
                    monitor_config_path=config_path,
                )
            )
        except StartupError as exc:
            logger.error("Cannot start monitor: {}", exc)
            return 1
        command = monitor_command(config_path, executable)
        if dry_run:
            print(" ".join(command))
            return 0
        os.execvp(command[0], command)

    def prestop_monitor(self, timeout: float | None = None) -> int:
        """Hand the master role over before this member's monitor stops."""
        settings = self._settings()
        try:
            asyncio.run(
                _with_lifecycle(settings, lambda lifecycle: lifecycle.on_stopping(timeout))
            )
        except HOOK_ERRORS as exc:
            logger.warning("Pre-stop skipped: {}", exc)
        return 0

    def prestop_node(self, timeout: float | None = None) -> int:
        """Hold the data server until it is no longer master."""
        settings = self._settings()
        try:
            asyncio.run(
                _with_lifecycle(
                    settings, lambda lifecycle: lifecycle.on_data_stopping(timeout)
                )
            )
        except HOOK_ERRORS as exc:
            logger.warning("Pre-stop skipped: {}", exc)
        return 0

    def _probe(self, kind: str, scope: ProbeScope, timeout: float) -> int:
        settings = self._settings()

        async def _run(lifecycle: MemberLifecycle) -> ProbeResult:
            probes = lifecycle.probes
            match (kind, scope):
                case (_, "monitor"):
                    return await probes.monitor_liveness()
                case ("liveness", "local"):
                    return await probes.local_liveness()
                case ("liveness", "master"):
                    return await probes.master_liveness()
                case ("liveness", _):
                    return await probes.local_and_master_liveness()
                case (_, "local"):
                    return await probes.local_readiness()
                case (_, "master"):
                    return await probes.master_readiness()
                case _:
                    return await probes.local_and_master_readiness()

        try:
            result = asyncio.run(
                _with_lifecycle(settings, _run, probe_timeout_seconds=timeout)
            )
        except HOOK_ERRORS as exc:
            print(str(exc))
            return 1
        print(result.detail)
        return 0 if result.healthy else 1

    def liveness(self, scope: ProbeScope = "local", timeout: float = 1.0) -> int:
        """Alive check; a server still loading its dataset counts as alive."""
        return self._probe("liveness", scope, timeout)

    def readiness(self, scope: ProbeScope = "local", timeout: float = 1.0) -> int:
        """Ready check; only a plain PONG counts."""
        return self._probe("readiness", scope, timeout)


def main() -> None:
    sys.exit(CLI(KVQuorumCLI, as_dict=False))  # type: ignore[no-untyped-call]


if __name__ == "__main__":
    main()
