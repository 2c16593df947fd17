"""Project metadata lookup.

The registry builder asks a MetadataSource for the current state of each
project it needs a handler for. Production uses the Art Blocks GraphQL
subgraph over HTTP; tests substitute their own source.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from artbot_daemon.config import ContractDescriptor, SubgraphConfig

log = logging.getLogger(__name__)

PROJECT_QUERY = """
query ContractProject($where: Project_filter!) {
  projects(first: 1, where: $where) {
    projectId
    name
    invocations
    active
    contract {
      id
    }
  }
}
"""


class MetadataError(RuntimeError):
    """Raised when project metadata cannot be fetched or parsed."""


@dataclass(frozen=True, slots=True)
class ProjectMetadata:
    """Current on-chain state of a project."""

    invocations: int
    name: str
    active: bool
    contract_id: str


class MetadataSource(Protocol):
    async def fetch_project(
        self, project_id: int, contract: ContractDescriptor | None
    ) -> ProjectMetadata: ...


class SubgraphSource:
    """MetadataSource backed by a GraphQL subgraph.

    Without a contract descriptor the lookup is restricted to the configured
    core contracts (or unrestricted if none are configured).

    Args:
        config: Subgraph endpoint settings.
        client: Optional pre-built httpx client; one is created (and owned)
            otherwise.
    """

    def __init__(self, config: SubgraphConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=30.0)

    async def __aenter__(self) -> SubgraphSource:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _where(self, project_id: int, contract: ContractDescriptor | None) -> dict[str, Any]:
        where: dict[str, Any] = {"projectId": str(project_id)}
        if contract is not None:
            where["contract_in"] = [contract.address]
        elif self._config.core_contracts:
            where["contract_in"] = list(self._config.core_contracts)
        return where

    async def fetch_project(
        self, project_id: int, contract: ContractDescriptor | None
    ) -> ProjectMetadata:
        """Fetch metadata for one project.

        Raises MetadataError on transport errors, GraphQL errors, a missing
        project, or a malformed response.
        """
        payload = {
            "query": PROJECT_QUERY,
            "variables": {"where": self._where(project_id, contract)},
        }
        try:
            resp = await self._client.post(self._config.url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as exc:
            raise MetadataError(f"subgraph request for project {project_id} failed: {exc}") from exc
        except ValueError as exc:
            raise MetadataError(f"subgraph returned invalid JSON for project {project_id}") from exc

        if not isinstance(body, dict):
            raise MetadataError(f"subgraph response for project {project_id} is not a JSON object")
        if body.get("errors"):
            messages = "; ".join(str(e.get("message", e)) for e in body["errors"])
            raise MetadataError(f"subgraph error for project {project_id}: {messages}")

        projects = (body.get("data") or {}).get("projects") or []
        if not projects:
            where = "core contracts" if contract is None else f"contract {contract.name}"
            raise MetadataError(f"project {project_id} not found on {where}")

        p = projects[0]
        try:
            return ProjectMetadata(
                invocations=int(p["invocations"]),
                name=p["name"],
                active=bool(p["active"]),
                contract_id=p["contract"]["id"],
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MetadataError(f"malformed project {project_id} in subgraph response: {exc}") from exc
