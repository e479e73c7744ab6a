from __future__ import annotations

import pytest

from conftest import FakeEngine, make_host
from hostcraft.enums import HostRole, HostStatus
from hostcraft.services.engine import SystemInfo
from hostcraft.services.hosts import detect_role, validate_host


def _info(state: str, manager: bool) -> SystemInfo:
    return SystemInfo(
        server_version="24.0.7",
        containers=0,
        containers_running=0,
        swarm_state=state,
        swarm_node_id="n1" if state == "active" else "",
        is_manager=manager,
    )


@pytest.mark.parametrize(
    ("state", "manager", "expected"),
    [
        ("inactive", False, HostRole.STANDALONE),
        ("pending", False, HostRole.STANDALONE),
        ("active", True, HostRole.SWARM_MANAGER),
        ("active", False, HostRole.SWARM_WORKER),
    ],
)
def test_detect_role(state: str, manager: bool, expected: HostRole) -> None:
    assert detect_role(_info(state, manager)) is expected


@pytest.mark.asyncio
async def test_validate_host_marks_online_with_detected_role(session, fake_engine: FakeEngine) -> None:
    host = await make_host(session, status=HostStatus.VALIDATING)
    fake_engine.info = _info("active", True)

    validated = await validate_host(session, host, engine=fake_engine)

    assert validated.status == HostStatus.ONLINE.value
    assert validated.role == HostRole.SWARM_MANAGER.value
    assert validated.engine_version == "24.0.7"
    assert validated.consecutive_failures == 0


@pytest.mark.asyncio
async def test_validate_host_records_unreachable_engine(session, fake_engine: FakeEngine) -> None:
    host = await make_host(session, status=HostStatus.VALIDATING)
    fake_engine.reachable = False

    validated = await validate_host(session, host, engine=fake_engine)

    assert validated.status == HostStatus.ERROR.value
    assert "did not respond" in validated.error
    assert validated.consecutive_failures == 1
    assert fake_engine.called("system_info") == []
