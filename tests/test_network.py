from __future__ import annotations

import pytest

from conftest import FakeEngine
from hostcraft.enums import HostRole, NetworkType
from hostcraft.models.host import Host
from hostcraft.services.engine import NetworkInfo
from hostcraft.services.network import (
    MANAGED_LABEL,
    NetworkTypeMismatch,
    ensure_network_exists,
    parse_network_driver,
    required_network_type,
    validate_network_type,
)


def _host(role: HostRole) -> Host:
    return Host(id="h-1", name="node-1", address="10.0.0.1", port=22, username="root", role=role.value)


def test_swarm_roles_require_overlay() -> None:
    assert required_network_type(HostRole.STANDALONE) is NetworkType.BRIDGE
    assert required_network_type(HostRole.SWARM_MANAGER) is NetworkType.OVERLAY
    assert required_network_type(HostRole.SWARM_WORKER) is NetworkType.OVERLAY


def test_unknown_drivers_are_treated_as_bridge() -> None:
    assert parse_network_driver("Overlay ") is NetworkType.OVERLAY
    assert parse_network_driver("macvlan") is NetworkType.BRIDGE


@pytest.mark.asyncio
async def test_creates_attachable_overlay_for_swarm_host(fake_engine: FakeEngine) -> None:
    network_id = await ensure_network_exists(fake_engine, _host(HostRole.SWARM_MANAGER), "apps")

    assert network_id == "net-apps"
    created = fake_engine.networks["apps"]
    assert created.driver == "overlay"
    assert created.attachable
    assert created.labels[MANAGED_LABEL] == "true"


@pytest.mark.asyncio
async def test_creates_bridge_for_standalone_host(fake_engine: FakeEngine) -> None:
    await ensure_network_exists(fake_engine, _host(HostRole.STANDALONE), "apps")

    assert fake_engine.networks["apps"].driver == "bridge"
    assert not fake_engine.networks["apps"].attachable


@pytest.mark.asyncio
async def test_existing_network_with_right_driver_is_reused(fake_engine: FakeEngine) -> None:
    fake_engine.networks["apps"] = NetworkInfo(id="abc", name="apps", driver="overlay", attachable=True)

    assert await ensure_network_exists(fake_engine, _host(HostRole.SWARM_MANAGER), "apps") == "abc"
    assert fake_engine.called("create_network") == []


@pytest.mark.asyncio
async def test_bridge_network_on_swarm_host_is_reported_not_replaced(fake_engine: FakeEngine) -> None:
    fake_engine.networks["apps"] = NetworkInfo(id="abc", name="apps", driver="bridge")

    with pytest.raises(NetworkTypeMismatch) as excinfo:
        await ensure_network_exists(fake_engine, _host(HostRole.SWARM_MANAGER), "apps")

    assert excinfo.value.required is NetworkType.OVERLAY
    assert "docker network rm apps" in str(excinfo.value)
    assert fake_engine.called("create_network") == []
    assert fake_engine.called("remove_network") == []


@pytest.mark.asyncio
async def test_non_attachable_overlay_is_rejected(fake_engine: FakeEngine) -> None:
    fake_engine.networks["apps"] = NetworkInfo(id="abc", name="apps", driver="overlay")

    with pytest.raises(NetworkTypeMismatch):
        await ensure_network_exists(fake_engine, _host(HostRole.SWARM_WORKER), "apps")


@pytest.mark.asyncio
async def test_validate_network_type(fake_engine: FakeEngine) -> None:
    host = _host(HostRole.STANDALONE)
    assert not await validate_network_type(fake_engine, host, "apps")
    fake_engine.networks["apps"] = NetworkInfo(id="abc", name="apps", driver="bridge")
    assert await validate_network_type(fake_engine, host, "apps")
