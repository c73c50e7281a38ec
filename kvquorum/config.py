from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from kvquorum.core.config import (
    DEFAULT_DATA_PORT,
    DEFAULT_MONITOR_PORT,
    ClusterSettings,
    DnsSettings,
    MonitorSettings,
    RetrySettings,
    ShutdownSettings,
    TlsSettings,
)
from kvquorum.core.errors import ConfigurationError


class KVQuorumSettings(BaseSettings):
    """Member settings read from ``KVQUORUM_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="KVQUORUM_", env_file=".env", extra="ignore"
    )

    cluster_name: str = Field(
        "mymaster", description="Logical name of the monitored master."
    )
    headless_service: str = Field(
        "redis-headless.default.svc.cluster.local",
        description="Headless service domain listing every member.",
    )
    client_service: str = Field(
        "redis.default.svc.cluster.local",
        description="Load-balanced service in front of the monitors.",
    )
    member_prefix: str = Field(
        "redis-node", description="Member hostname prefix before the ordinal."
    )
    cluster_size: int = Field(
        3, description="Number of members (and monitors) in the cluster."
    )
    data_port: int = Field(DEFAULT_DATA_PORT, description="Default data port.")
    monitor_port: int = Field(
        DEFAULT_MONITOR_PORT, description="Default monitor port."
    )

    password: str | None = Field(
        None, description="Password for data and monitor ports."
    )
    password_file: Path | None = Field(
        None, description="File holding the password; wins over password."
    )
    master_password: str | None = Field(
        None, description="Password replicas use against the master."
    )

    tls_enabled: bool = Field(False, description="Use TLS for every connection.")
    tls_cert_file: str | None = None
    tls_key_file: str | None = None
    tls_ca_file: str | None = None

    quorum: int = Field(2, description="Agents that must agree the master is down.")
    down_after_ms: int = Field(
        60000, description="Silence before an agent suspects the master."
    )
    failover_timeout_ms: int = Field(
        18000, description="Bound on one failover attempt."
    )
    parallel_syncs: int = Field(
        1, description="Replicas resyncing at once after a failover."
    )

    discovery_attempts: int = Field(
        30, description="Lookups before DiscoveryUnavailable."
    )
    discovery_delay: float = Field(
        1.0, description="Initial delay between lookups in seconds."
    )
    master_lookup_attempts: int = Field(
        10, description="Queries before MasterUnknown."
    )
    master_lookup_delay: float = Field(
        1.0, description="Initial delay between queries in seconds."
    )

    shutdown_timeout: float = Field(
        20.0, description="Bound on the pre-stop handover in seconds."
    )
    shutdown_poll_interval: float = Field(
        1.0, description="Pre-stop poll interval in seconds."
    )

    dns_server: str | None = Field(
        None, description="DNS server queried directly for discovery lookups."
    )
    dns_port: int = Field(53, description="Port of the discovery DNS server.")
    dns_tcp: bool = Field(False, description="Query the DNS server over TCP.")
    dns_timeout: float = Field(
        2.0, description="Bound on one DNS query in seconds."
    )

    log_level: str = Field("INFO", description="Logging level.")

    def resolved_password(self) -> str | None:
        if self.password_file is None:
            return self.password
        try:
            return self.password_file.read_text().strip() or None
        except OSError as exc:
            raise ConfigurationError(f"Cannot read {self.password_file}: {exc}") from exc

    def to_cluster_settings(self) -> ClusterSettings:
        return ClusterSettings(
            cluster_name=self.cluster_name,
            headless_service=self.headless_service,
            client_service=self.client_service,
            member_prefix=self.member_prefix,
            cluster_size=self.cluster_size,
            data_port=self.data_port,
            monitor_port=self.monitor_port,
            password=self.resolved_password(),
            master_password=self.master_password,
            tls=TlsSettings(
                enabled=self.tls_enabled,
                cert_file=self.tls_cert_file,
                key_file=self.tls_key_file,
                ca_file=self.tls_ca_file,
            ),
            monitor=MonitorSettings(
                quorum=self.quorum,
                down_after_ms=self.down_after_ms,
                failover_timeout_ms=self.failover_timeout_ms,
                parallel_syncs=self.parallel_syncs,
            ),
            retry=RetrySettings(
                discovery_attempts=self.discovery_attempts,
                discovery_delay_seconds=self.discovery_delay,
                master_lookup_attempts=self.master_lookup_attempts,
                master_lookup_delay_seconds=self.master_lookup_delay,
            ),
            shutdown=ShutdownSettings(
                timeout_seconds=self.shutdown_timeout,
                poll_interval_seconds=self.shutdown_poll_interval,
            ),
            dns=DnsSettings(
                server=self.dns_server,
                port=self.dns_port,
                use_tcp=self.dns_tcp,
                timeout_seconds=self.dns_timeout,
            ),
        )
