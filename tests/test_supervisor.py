import threading
import time
from types import SimpleNamespace

import pytest

from crosstool.client.health import HealthState
from crosstool.client.launcher import LaunchFailed, LaunchFailure, ServerHandle
from crosstool.client.ports import ClaimResult
from crosstool.client.supervisor import Supervisor, SupervisorConfig, SupervisorState
from crosstool.core.errors import LaunchError, ServerConnectionError, ValidationError
from crosstool.core.settings import Settings


class _Proc:
    pid = 321

    def __init__(self):
        self.returncode = None

    def poll(self):
        return self.returncode

    def terminate(self):
        self.returncode = -15

    def kill(self):
        self.returncode = -9

    def wait(self, timeout=None):
        return self.returncode


class _Prober:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def __call__(self, host, port, timeout=None):
        self.calls += 1
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class _Launcher:
    def __init__(self, *outcomes, gate=None):
        self.outcomes = list(outcomes)
        self.calls = []
        self.gate = gate

    def launch(self, command, port, timeout):
        self.calls.append((command, port, timeout))
        if self.gate is not None:
            self.gate.wait(5)
        out = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if out == "ok":
            return ServerHandle(port=port, process=_Proc(), health=HealthState.STARTING)
        return out


class _Clock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def _arbiter(claim=ClaimResult.CLAIMED, reclaim=True):
    calls = {"claim": 0, "reclaim": 0}

    def try_claim(_h, _p):
        calls["claim"] += 1
        return claim

    def do_reclaim(_h, _p):
        calls["reclaim"] += 1
        return reclaim

    return SimpleNamespace(try_claim=try_claim, reclaim=do_reclaim,
                           wait_for_release=lambda _h, _p: True, calls=calls)


def _supervisor(prober, launcher, arbiter=None, clock=None, sleeps=None, **cfg):
    config = SupervisorConfig(port=9555, **cfg)
    return Supervisor(
        config,
        prober=prober,
        arbiter=arbiter or _arbiter(),
        launcher=launcher,
        command_factory=lambda: ["crosstool-server"],
        clock=clock or _Clock(),
        sleep_fn=(sleeps.append if sleeps is not None else (lambda _s: None)),
    )


def test_adopts_healthy_server_without_launching():
    launcher = _Launcher("ok")
    sup = _supervisor(_Prober(HealthState.HEALTHY), launcher)
    handle = sup.ensure_ready()
    assert handle.owned is False
    assert handle.health == HealthState.HEALTHY
    assert sup.state == SupervisorState.READY
    assert launcher.calls == []


def test_fresh_health_skips_network():
    clock = _Clock()
    prober = _Prober(HealthState.HEALTHY)
    sup = _supervisor(prober, _Launcher("ok"), clock=clock)
    first = sup.ensure_ready()
    clock.now += 29
    assert sup.ensure_ready() is first
    assert prober.calls == 1


def test_stale_health_is_rechecked():
    clock = _Clock()
    prober = _Prober(HealthState.HEALTHY)
    sup = _supervisor(prober, _Launcher("ok"), clock=clock)
    sup.ensure_ready()
    clock.now += 31
    sup.ensure_ready()
    assert prober.calls == 2


def test_launches_when_nothing_answers():
    launcher = _Launcher("ok")
    sup = _supervisor(_Prober(HealthState.UNHEALTHY), launcher)
    handle = sup.ensure_ready()
    assert handle.owned
    assert handle.health == HealthState.HEALTHY
    assert sup.launches == 1
    assert launcher.calls[0] == (["crosstool-server"], 9555, 5.0)
    assert sup.state == SupervisorState.READY


def test_bounded_attempts_with_backoff_then_degraded():
    sleeps = []
    launcher = _Launcher(LaunchFailed(LaunchFailure.TIMEOUT, "slow"))
    sup = _supervisor(_Prober(HealthState.UNHEALTHY), launcher, sleeps=sleeps)
    with pytest.raises(LaunchError) as exc:
        sup.ensure_ready()
    assert isinstance(exc.value, ServerConnectionError)
    assert len(launcher.calls) == 3
    assert sleeps == [0.5, 1.0]
    assert sup.state == SupervisorState.DEGRADED
    assert "timeout" in sup.status()["last_error"]


def test_recovers_on_a_later_attempt():
    sleeps = []
    launcher = _Launcher(LaunchFailed(LaunchFailure.EXITED, "exit code 1"), "ok")
    sup = _supervisor(_Prober(HealthState.UNHEALTHY), launcher, sleeps=sleeps)
    assert sup.ensure_ready().owned
    assert len(launcher.calls) == 2
    assert sleeps == [0.5]


def test_port_taken_adopts_peer_that_won_the_race():
    # First probe: nothing there. After the launch loses the bind race: peer answers.
    prober = _Prober(HealthState.UNHEALTHY, HealthState.HEALTHY)
    launcher = _Launcher(LaunchFailed(LaunchFailure.PORT_TAKEN, "EADDRINUSE"))
    sup = _supervisor(prober, launcher)
    handle = sup.ensure_ready()
    assert handle.owned is False
    assert len(launcher.calls) == 1
    assert sup.state == SupervisorState.READY


def test_healthy_peer_found_by_arbiter_is_adopted():
    launcher = _Launcher("ok")
    sup = _supervisor(_Prober(HealthState.UNHEALTHY), launcher,
                      arbiter=_arbiter(ClaimResult.OWNED_BY_HEALTHY_PEER))
    assert sup.ensure_ready().owned is False
    assert launcher.calls == []


def test_dead_peer_is_reclaimed_before_launch():
    arb = _arbiter(ClaimResult.OWNED_BY_DEAD_PEER, reclaim=True)
    launcher = _Launcher("ok")
    sup = _supervisor(_Prober(HealthState.UNHEALTHY), launcher, arbiter=arb)
    sup.ensure_ready()
    assert arb.calls["reclaim"] == 1
    assert len(launcher.calls) == 1


def test_unreclaimable_port_never_launches():
    arb = _arbiter(ClaimResult.OWNED_BY_DEAD_PEER, reclaim=False)
    launcher = _Launcher("ok")
    sup = _supervisor(_Prober(HealthState.UNHEALTHY), launcher, arbiter=arb)
    with pytest.raises(LaunchError):
        sup.ensure_ready()
    assert launcher.calls == []
    assert arb.calls["reclaim"] == 3


def test_concurrent_callers_share_one_launch():
    gate = threading.Event()
    launcher = _Launcher("ok", gate=gate)
    sup = _supervisor(_Prober(HealthState.UNHEALTHY), launcher, clock=_Clock())
    results, errors = [], []

    def worker():
        try:
            results.append(sup.ensure_ready())
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    time.sleep(0.2)
    gate.set()
    for t in threads:
        t.join(10)

    assert errors == []
    assert len(results) == 6
    assert len(launcher.calls) == 1
    assert all(r is results[0] for r in results)


def test_concurrent_callers_share_failure():
    gate = threading.Event()
    launcher = _Launcher(LaunchFailed(LaunchFailure.EXITED, "boom"), gate=gate)
    sup = _supervisor(_Prober(HealthState.UNHEALTHY), launcher, launch_attempts=1)
    errors = []

    def worker():
        try:
            sup.ensure_ready()
        except LaunchError as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    gate.set()
    for t in threads:
        t.join(10)
    assert len(errors) == 4
    assert 1 <= len(launcher.calls) <= 4


def test_mark_degraded_forces_recheck():
    prober = _Prober(HealthState.HEALTHY)
    sup = _supervisor(prober, _Launcher("ok"))
    sup.ensure_ready()
    sup.mark_degraded("connection refused")
    assert sup.state == SupervisorState.DEGRADED
    assert sup.handle.health == HealthState.UNHEALTHY
    sup.ensure_ready()
    assert prober.calls == 2
    assert sup.state == SupervisorState.READY


def test_dead_own_server_is_replaced():
    clock = _Clock()
    launcher = _Launcher("ok")
    sup = _supervisor(_Prober(HealthState.UNHEALTHY), launcher, clock=clock)
    first = sup.ensure_ready()
    first.process.returncode = 1
    second = sup.ensure_ready()
    assert second is not first
    assert len(launcher.calls) == 2


def test_status_snapshot():
    sup = _supervisor(_Prober(HealthState.UNHEALTHY), _Launcher("ok"))
    assert sup.status()["state"] == "unknown"
    assert sup.status()["handle"] is None
    sup.ensure_ready()
    snap = sup.status()
    assert snap["state"] == "ready"
    assert snap["port"] == 9555
    assert snap["handle"]["owned"] is True
    assert snap["handle"]["pid"] == 321
    assert snap["launches"] == 1


def test_stop_server_terminates_owned_process():
    sup = _supervisor(_Prober(HealthState.UNHEALTHY), _Launcher("ok"))
    handle = sup.ensure_ready()
    assert sup.stop_server() is True
    assert handle.process.returncode == -15
    assert sup.state == SupervisorState.UNKNOWN
    assert sup.handle is None


def test_shutdown_leaves_server_running_by_default():
    sup = _supervisor(_Prober(HealthState.UNHEALTHY), _Launcher("ok"))
    handle = sup.ensure_ready()
    sup.shutdown()
    assert handle.process.returncode is None
    assert sup.handle is None


def test_non_loopback_host_is_rejected():
    with pytest.raises(ValidationError):
        Supervisor(SupervisorConfig(host="0.0.0.0"))


def test_config_from_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("CROSSTOOL_PORT", "9400")
    monkeypatch.setenv("CROSSTOOL_LAUNCH_ATTEMPTS", "5")
    cfg = SupervisorConfig.from_settings(Settings())
    assert cfg.port == 9400
    assert cfg.launch_attempts == 5
    assert cfg.host == "127.0.0.1"
    assert cfg.health_freshness == 30.0
    assert cfg.server_log == str(tmp_path / "app" / "server.log")
