"""Registry response models.

Only the fields discovery relies on are declared; everything else the
registry returns is ignored.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _RegistryModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class AgentConfig(_RegistryModel):
    datacenter: str = Field(alias="Datacenter")


class AgentInfo(_RegistryModel):
    """Subset of the ``/v1/agent/self`` document."""

    config: AgentConfig = Field(alias="Config")


class Node(_RegistryModel):
    id: str = Field(default="", alias="ID")
    node: str = Field(alias="Node")
    address: str = Field(default="", alias="Address")
    datacenter: str = Field(default="", alias="Datacenter")
    tagged_addresses: dict[str, str] = Field(default_factory=dict, alias="TaggedAddresses")
    meta: dict[str, str] = Field(default_factory=dict, alias="Meta")


class Service(_RegistryModel):
    id: str = Field(alias="ID")
    service: str = Field(alias="Service")
    address: str = Field(default="", alias="Address")
    namespace: str = Field(default="", alias="Namespace")
    partition: str = Field(default="", alias="Partition")
    port: int = Field(default=0, alias="Port")
    tags: list[str] = Field(default_factory=list, alias="Tags")
    meta: dict[str, str] = Field(default_factory=dict, alias="Meta")


class Check(_RegistryModel):
    check_id: str = Field(default="", alias="CheckID")
    service_id: str = Field(default="", alias="ServiceID")
    status: str = Field(default="", alias="Status")


class ServiceNode(_RegistryModel):
    """One entry of ``/v1/health/service/<name>``."""

    node: Node = Field(alias="Node")
    service: Service = Field(alias="Service")
    checks: list[Check] = Field(default_factory=list, alias="Checks")

    @property
    def address(self) -> str:
        """Service address, falling back to the node address."""
        return self.service.address or self.node.address

    @property
    def health(self) -> str:
        """Aggregated health: maintenance > critical > warning > passing."""
        statuses: set[str] = set()
        for check in self.checks:
            if check.check_id == "_node_maintenance" or check.check_id.startswith(
                "_service_maintenance:"
            ):
                return "maintenance"
            statuses.add(check.status)
        for status in ("critical", "warning"):
            if status in statuses:
                return status
        return "passing"
