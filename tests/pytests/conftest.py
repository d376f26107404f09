from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path

import pytest


def pytest_configure() -> None:
    # Allow tests to import `containerapps_task.*` without installing the package.
    repo_root = Path(__file__).parents[2]
    sys.path.append(str(repo_root))


@dataclass
class FakeProvider:
    """In-memory provider; `calls` records every query in order."""

    groups: set[str] = field(default_factory=set)
    apps: set[tuple[str, str]] = field(default_factory=set)
    environments: set[tuple[str, str]] = field(default_factory=set)
    region: str = "westeurope"
    stack: str = "python:3.9"
    calls: list[tuple] = field(default_factory=list)

    def resource_group_exists(self, name):
        self.calls.append(("resource_group_exists", name))
        return name in self.groups

    def create_resource_group(self, name, region):
        self.calls.append(("create_resource_group", name, region))
        self.groups.add(name)

    def app_exists(self, name, group):
        self.calls.append(("app_exists", name, group))
        return (name, group) in self.apps

    def environment_exists(self, name, group):
        self.calls.append(("environment_exists", name, group))
        return (name, group) in self.environments

    def find_existing_environment(self, group):
        self.calls.append(("find_existing_environment", group))
        for name, env_group in sorted(self.environments):
            if env_group == group:
                return name
        return None

    def create_environment(self, name, group, region=None):
        self.calls.append(("create_environment", name, group, region))
        self.environments.add((name, group))

    def default_region(self):
        self.calls.append(("default_region",))
        return self.region

    def detect_runtime_stack(self, source_path):
        self.calls.append(("detect_runtime_stack", source_path))
        return self.stack

    def called(self, name: str) -> bool:
        return any(c[0] == name for c in self.calls)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
