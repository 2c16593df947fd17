"""Shared test fixtures for artbot daemon tests."""

import asyncio

import pytest

from artbot_daemon.config import ContractDescriptor
from artbot_daemon.source import MetadataError, ProjectMetadata


class FakeSource:
    """In-memory MetadataSource.

    ``projects`` maps project id -> ProjectMetadata. Project ids in ``fail``
    raise MetadataError. While ``gate`` is set to an unset Event, every fetch
    waits on it.
    """

    def __init__(self, projects: dict[int, ProjectMetadata]) -> None:
        self.projects = projects
        self.fail: set[int] = set()
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[int, ContractDescriptor | None]] = []

    async def fetch_project(self, project_id: int, contract: ContractDescriptor | None) -> ProjectMetadata:
        self.calls.append((project_id, contract))
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        if project_id in self.fail:
            raise MetadataError(f"project {project_id} unavailable")
        if project_id not in self.projects:
            raise MetadataError(f"project {project_id} not found")
        return self.projects[project_id]


@pytest.fixture
def projects() -> dict[int, ProjectMetadata]:
    return {
        0: ProjectMetadata(invocations=9763, name="Chromie Squiggle", active=False, contract_id="0xcore"),
        1: ProjectMetadata(invocations=512, name="Genesis", active=False, contract_id="0xcore"),
        23: ProjectMetadata(invocations=600, name="Partner Works", active=True, contract_id="0xpartner"),
    }


@pytest.fixture
def source(projects: dict[int, ProjectMetadata]) -> FakeSource:
    return FakeSource(projects)
