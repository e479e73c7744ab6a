from __future__ import annotations

from hostcraft.config import get_settings
from hostcraft.enums import HostRole, NetworkType
from hostcraft.logger import get_logger
from hostcraft.models.host import Host
from hostcraft.services.engine import ContainerEngine, NetworkInfo

MANAGED_LABEL = "hostcraft.managed"
HOST_LABEL = "hostcraft.host.id"
NETWORK_TYPE_LABEL = "hostcraft.network.type"

_logger = get_logger("services.network")


class NetworkTypeMismatch(RuntimeError):
    def __init__(self, network: str, actual: str, required: NetworkType, detail: str) -> None:
        super().__init__(detail)
        self.network = network
        self.actual = actual
        self.required = required


def required_network_type(role: HostRole) -> NetworkType:
    if role.is_swarm:
        return NetworkType.OVERLAY
    return NetworkType.BRIDGE


def parse_network_driver(driver: str) -> NetworkType:
    try:
        return NetworkType(driver.strip().lower())
    except ValueError:
        # Third-party drivers (macvlan, ipvlan, ...) are single-host like bridge.
        return NetworkType.BRIDGE


def application_network_name() -> str:
    return get_settings().app_network_name


def platform_network_name() -> str:
    return get_settings().platform_network_name


def _check_existing(network: NetworkInfo, required: NetworkType) -> None:
    actual = parse_network_driver(network.driver)
    if actual is not required:
        raise NetworkTypeMismatch(
            network.name,
            network.driver,
            required,
            f"Network '{network.name}' exists with driver '{network.driver}' but "
            f"'{required.value}' is required. Remove it with: docker network rm {network.name}",
        )
    if required is NetworkType.OVERLAY and not network.attachable:
        raise NetworkTypeMismatch(
            network.name,
            network.driver,
            required,
            f"Network '{network.name}' is an overlay but not attachable. "
            f"Remove and recreate it with: docker network rm {network.name}",
        )


async def validate_network_type(engine: ContainerEngine, host: Host, network_name: str) -> bool:
    network = await engine.inspect_network(host, network_name)
    if network is None:
        return False
    return parse_network_driver(network.driver) is required_network_type(host.host_role)


async def ensure_network_exists(engine: ContainerEngine, host: Host, network_name: str) -> str:
    """Return the id of ``network_name``, creating it with the host's required driver.

    An existing network with the wrong driver is reported, never replaced.
    """
    required = required_network_type(host.host_role)
    existing = await engine.inspect_network(host, network_name)
    if existing is not None:
        try:
            _check_existing(existing, required)
        except NetworkTypeMismatch as exc:
            _logger.error(
                "network.mismatch",
                str(exc),
                host=host.name,
                network=network_name,
                driver=existing.driver,
                required=required.value,
            )
            raise
        _logger.debug(
            "network.exists",
            "Network already present with required driver",
            host=host.name,
            network=network_name,
            driver=existing.driver,
        )
        return existing.id

    network_id = await engine.create_network(
        host,
        network_name,
        driver=required.value,
        attachable=required is NetworkType.OVERLAY,
        labels={
            MANAGED_LABEL: "true",
            HOST_LABEL: host.id,
            NETWORK_TYPE_LABEL: required.value,
        },
    )
    _logger.info(
        "network.create",
        "Created network",
        host=host.name,
        network=network_name,
        driver=required.value,
        network_id=network_id,
    )
    return network_id
