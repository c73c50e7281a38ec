"""
kvquorum - role resolution and failover coordination for a replicated
key-value store supervised by a quorum of monitor agents.

## Architecture

- **dns**: peer discovery through the headless service (system resolver,
  dnslib client, static table for tests)
- **core**: role resolver, monitor agent bootstrap, monitor quorum,
  failover coordinator, health probes and the lifecycle hooks
- **client**: redis.asyncio clients for the monitor and data ports
- **cli**: the hooks the orchestrator calls (start, pre-stop, probes)

## Quick Start

```python
from kvquorum.config import KVQuorumSettings
from kvquorum.core.lifecycle import MemberLifecycle

settings = KVQuorumSettings().to_cluster_settings()
lifecycle = await MemberLifecycle.from_settings(settings)
plan = await lifecycle.on_start()
```
"""

from .core.errors import (
    ConfigurationError,
    DiscoveryUnavailable,
    FailoverTimedOut,
    KVQuorumError,
    MasterUnknown,
    MonitorCommandError,
    ShutdownError,
    StartupError,
)
from .datastructures import MemberAddress, Role

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "DiscoveryUnavailable",
    "FailoverTimedOut",
    "KVQuorumError",
    "MasterUnknown",
    "MemberAddress",
    "MonitorCommandError",
    "Role",
    "ShutdownError",
    "StartupError",
    "__version__",
]
