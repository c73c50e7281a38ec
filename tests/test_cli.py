import socket
from pathlib import Path

import pytest

from kvquorum import cli
from kvquorum.core.errors import FailoverTimedOut, MasterUnknown
from kvquorum.core.health import ProbeResult
from kvquorum.core.startup import DataNodePlan
from kvquorum.datastructures.cluster_types import Role

from .harness import member_address


class _Probes:
    def __init__(self, healthy: bool) -> None:
        self.healthy = healthy
        self.called: list[str] = []

    async def local_liveness(self) -> ProbeResult:
        self.called.append("local_liveness")
        return ProbeResult(self.healthy, "PONG" if self.healthy else "down")

    async def master_readiness(self) -> ProbeResult:
        self.called.append("master_readiness")
        return ProbeResult(self.healthy, "master: PONG")


class _FakeLifecycle:
    def __init__(
        self, kwargs: dict, *, fail: Exception | None = None, healthy: bool = True
    ) -> None:
        self.kwargs = kwargs
        self.fail = fail
        self.probes = _Probes(healthy)
        self.closed = False

    async def on_start(self) -> DataNodePlan:
        if self.fail is not None:
            raise self.fail
        return DataNodePlan(
            role=Role.REPLICA,
            announce=member_address(1),
            master=member_address(0),
            config_dir=self.kwargs["config_dir"],
        )

    async def on_stopping(self, timeout: float | None) -> None:
        if self.fail is not None:
            raise self.fail

    async def close(self) -> None:
        self.closed = True


def _install(
    monkeypatch: pytest.MonkeyPatch, *, setup_error: Exception | None = None, **options
) -> list[_FakeLifecycle]:
    created: list[_FakeLifecycle] = []

    class _Factory:
        @staticmethod
        async def from_settings(settings, **kwargs) -> _FakeLifecycle:
            if setup_error is not None:
                raise setup_error
            lifecycle = _FakeLifecycle(kwargs, **options)
            created.append(lifecycle)
            return lifecycle

    monkeypatch.setattr(cli, "MemberLifecycle", _Factory)
    return created


def test_start_node_dry_run_prints_command(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    created = _install(monkeypatch)

    code = cli.KVQuorumCLI().start_node(config_dir=tmp_path, dry_run=True)

    assert code == 0
    printed = capsys.readouterr().out
    assert printed.startswith("redis-server --port 6379 --replicaof ")
    assert created[0].closed


def test_start_node_fails_on_startup_error(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    _install(monkeypatch, fail=MasterUnknown("mymaster", 3))
    assert cli.KVQuorumCLI().start_node(config_dir=tmp_path, dry_run=True) == 1


def test_prestop_always_succeeds(monkeypatch: pytest.MonkeyPatch) -> None:
    created = _install(monkeypatch, fail=FailoverTimedOut("mymaster", 1.0))
    assert cli.KVQuorumCLI().prestop_monitor(timeout=1.0) == 0
    assert created[0].closed


def test_probe_exit_codes(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    created = _install(monkeypatch)
    assert cli.KVQuorumCLI().liveness() == 0
    assert cli.KVQuorumCLI().readiness(scope="master") == 0
    assert created[0].probes.called == ["local_liveness"]
    assert created[1].probes.called == ["master_readiness"]
    assert created[1].kwargs == {"probe_timeout_seconds": 1.0}

    _install(monkeypatch, healthy=False)
    assert cli.KVQuorumCLI().liveness() == 1
    assert capsys.readouterr().out.splitlines()[-1] == "down"


def test_hooks_survive_dns_failure_during_setup(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    created = _install(
        monkeypatch,
        setup_error=socket.gaierror(
            socket.EAI_AGAIN, "Temporary failure in name resolution"
        ),
    )

    assert cli.KVQuorumCLI().prestop_monitor(timeout=1.0) == 0
    assert cli.KVQuorumCLI().prestop_node(timeout=1.0) == 0
    assert cli.KVQuorumCLI().liveness() == 1
    assert "Temporary failure" in capsys.readouterr().out
    assert created == []
