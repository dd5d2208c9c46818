"""
End-to-end: a real server child launched by one supervisor and adopted by another.
"""
import os
import time
from pathlib import Path

import pytest

from crosstool.client import CrossToolClient, ProcessLauncher, RequestGateway, Supervisor, SupervisorConfig
from crosstool.client.health import HealthState, probe

SRC_DIR = str(Path(__file__).resolve().parents[1] / "src")


def _launcher():
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(p for p in (SRC_DIR, env.get("PYTHONPATH")) if p)
    return ProcessLauncher(env=env)


def _client(port):
    config = SupervisorConfig(port=port, startup_timeout=30.0, launch_attempts=1)
    sup = Supervisor(config, launcher=_launcher())
    return CrossToolClient(sup, RequestGateway(sup), security_token="vscode-client")


@pytest.fixture
def shared_port(free_port):
    yield free_port
    # Whatever happened in the test, do not leave a server behind.
    Supervisor(SupervisorConfig(port=free_port)).stop_server()


def test_launch_use_and_adopt(shared_port):
    first = _client(shared_port)
    first.initialize_database()
    added = first.add_item("X")
    items = first.list_items()
    assert [(i.id, i.name) for i in items] == [(added.id, "X")]
    assert first.supervisor.launches == 1
    assert first.supervisor.handle.owned

    second = _client(shared_port)
    assert [i.name for i in second.list_items()] == ["X"]
    assert second.supervisor.launches == 0
    assert second.supervisor.handle.owned is False

    info = second.server_info()
    assert info["storage"]["persistent"] is True

    analysis = second.analyze(code="function f(){}\nclass C{}\nconst x=1;")
    assert analysis.functions == ["f"]

    assert first.supervisor.stop_server() is True
    assert probe("127.0.0.1", shared_port) == HealthState.UNHEALTHY


def test_concurrent_supervisors_converge_on_one_server(shared_port):
    import threading

    supervisors = [
        Supervisor(SupervisorConfig(port=shared_port, startup_timeout=30.0), launcher=_launcher())
        for _ in range(2)
    ]
    barrier = threading.Barrier(len(supervisors))
    handles, errors = [], []

    def bring_up(sup):
        barrier.wait()
        try:
            handles.append(sup.ensure_ready())
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=bring_up, args=(sup,)) for sup in supervisors]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=90)

    assert errors == []
    assert sorted(h.owned for h in handles) == [False, True]
    owned = next(h for h in handles if h.owned)
    assert owned.is_alive()
    assert probe("127.0.0.1", shared_port) == HealthState.HEALTHY


def test_busy_server_still_counts_as_healthy_peer(shared_port):
    import threading

    from crosstool.client.ports import ClaimResult, PortArbiter

    client = _client(shared_port)
    client.initialize_database()
    big = "const a = 1 && 2 || 3;\n" * 200000
    outcome = []

    def run_analysis():
        try:
            outcome.append(client.analyze(code=big))
        except Exception as e:
            outcome.append(e)

    worker = threading.Thread(target=run_analysis, daemon=True)
    worker.start()
    try:
        time.sleep(0.5)
        assert probe("127.0.0.1", shared_port) == HealthState.HEALTHY
        assert PortArbiter().try_claim("127.0.0.1", shared_port) == ClaimResult.OWNED_BY_HEALTHY_PEER
    finally:
        worker.join(timeout=60)
    assert client.supervisor.handle.is_alive()
