"""Startup plans: the server argument vector and config files of each process."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from kvquorum.datastructures.cluster_types import MemberAddress, Role
from kvquorum.datastructures.type_aliases import HostName
from kvquorum.dns.names import full_hostname

from .config import ClusterSettings, PortKind, TlsSettings, service_port
from .monitor_config import MonitorConfig
from .role_resolver import RoleDecision

COMMON_CONFIG = """\
# Append-only file persistence
appendonly yes
# RDB snapshots off, the append-only file is enough
save ""
"""

MASTER_CONFIG = """\
dir /data
rename-command FLUSHDB ""
rename-command FLUSHALL ""
"""

REPLICA_CONFIG = """\
dir /data
replica-read-only yes
rename-command FLUSHDB ""
rename-command FLUSHALL ""
"""

ANNOUNCE_PREFIXES = ("replica-announce-port ", "replica-announce-ip ")


@dataclass(frozen=True, slots=True)
class DataNodePlan:
    """How to start one data-serving process."""

    role: Role
    announce: MemberAddress
    master: MemberAddress | None
    config_dir: Path
    password: str | None = None
    master_password: str | None = None
    tls: TlsSettings = field(default_factory=TlsSettings)

    @property
    def port(self) -> int:
        return self.announce.port

    @property
    def replicates(self) -> bool:
        return self.role is Role.REPLICA and self.master is not None

    @property
    def role_config_path(self) -> Path:
        name = "master.conf" if self.role is Role.MASTER else "replica.conf"
        return self.config_dir / name

    @property
    def common_config_path(self) -> Path:
        return self.config_dir / "redis.conf"

    def server_args(self) -> list[str]:
        if self.tls.enabled:
            args = [
                "--port", "0",
                "--tls-port", str(self.port),
                "--tls-cert-file", str(self.tls.cert_file),
                "--tls-key-file", str(self.tls.key_file),
                "--tls-ca-cert-file", str(self.tls.ca_file),
                "--tls-replication", "yes",
            ]  # fmt: skip
        else:
            args = ["--port", str(self.port)]
        if self.replicates:
            assert self.master is not None
            args += ["--replicaof", self.master.host, str(self.master.port)]
        if self.password:
            args += ["--requirepass", self.password]
        if self.master_password:
            args += ["--masterauth", self.master_password]
        args += ["--include", str(self.role_config_path)]
        args += ["--include", str(self.common_config_path)]
        return args

    def command(self, executable: str = "redis-server") -> list[str]:
        return [executable, *self.server_args()]


def plan_data_node(
    decision: RoleDecision,
    settings: ClusterSettings,
    hostname: HostName,
    config_dir: Path,
) -> DataNodePlan:
    announce = MemberAddress(
        host=full_hostname(hostname, settings.headless_service),
        port=service_port(hostname, PortKind.DATA, default=settings.data_port),
    )
    return DataNodePlan(
        role=Role.MASTER if decision.is_master else Role.REPLICA,
        announce=announce,
        master=None if decision.is_master else decision.master,
        config_dir=config_dir,
        password=settings.password,
        master_password=settings.effective_master_password,
        tls=settings.tls,
    )


def _write_if_missing(path: Path, content: str) -> bool:
    if path.exists():
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return True


def write_data_node_config(plan: DataNodePlan) -> list[Path]:
    """Write the config files ``plan`` includes; returns the files created.

    Existing files are left alone so a restarted member keeps any edits,
    except for the replica announce lines which always track this member.
    """
    created: list[Path] = []
    template = MASTER_CONFIG if plan.role is Role.MASTER else REPLICA_CONFIG
    for path, content in (
        (plan.role_config_path, template),
        (plan.common_config_path, COMMON_CONFIG),
    ):
        if _write_if_missing(path, content):
            created.append(path)

    replica_config = plan.config_dir / "replica.conf"
    if replica_config.exists():
        kept = [
            line
            for line in replica_config.read_text().splitlines()
            if not line.startswith(ANNOUNCE_PREFIXES)
        ]
        kept.append(f"replica-announce-port {plan.announce.port}")
        kept.append(f"replica-announce-ip {plan.announce.host}")
        replica_config.write_text("\n".join(kept) + "\n")

    for path in created:
        logger.debug("Created {}", path)
    return created


def write_monitor_config(config: MonitorConfig, path: Path) -> Path:
    """Write a fresh monitor config file; it is rebuilt on every start."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config.render())
    logger.info(
        "Wrote monitor config {} ({} peers, {} replicas)",
        path,
        len(config.known_peers),
        len(config.known_replicas),
    )
    return path


def monitor_command(path: Path, executable: str = "redis-server") -> list[str]:
    return [executable, str(path), "--sentinel"]
