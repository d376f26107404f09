from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable


@runtime_checkable
class ProviderQueries(Protocol):
    """Resource queries (and the two creation calls) against the cloud provider."""

    def resource_group_exists(self, name: str) -> bool: ...
    def create_resource_group(self, name: str, region: str) -> None: ...
    def app_exists(self, name: str, group: str) -> bool: ...
    def environment_exists(self, name: str, group: str) -> bool: ...
    def find_existing_environment(self, group: str) -> str | None: ...
    def create_environment(self, name: str, group: str, region: str | None = None) -> None: ...
    def default_region(self) -> str: ...
    def detect_runtime_stack(self, source_path: str) -> str: ...


@runtime_checkable
class ImageBuilder(Protocol):
    def install_build_tool(self) -> None: ...
    def set_default_builder(self) -> None: ...
    def build_image(self, tag: str, source_path: str, stack: str | None = None) -> None: ...
    def build_image_from_dockerfile(self, tag: str, source_path: str, dockerfile_path: str) -> None: ...


@runtime_checkable
class RegistryClient(Protocol):
    def login_with_password(self, registry: str, username: str, password: str) -> None: ...
    def login_with_access_token(self, registry: str) -> None: ...
    def push(self, tag: str) -> None: ...


@runtime_checkable
class AppDeployer(Protocol):
    def create_from_file(self, app_name: str, group: str, file_path: str) -> None: ...
    def create_from_args(
        self, app_name: str, group: str, environment: str, image: str, extra_args: Sequence[str]
    ) -> None: ...
    def update_from_file(self, app_name: str, group: str, file_path: str) -> None: ...
    def update_from_args(self, app_name: str, group: str, image: str, extra_args: Sequence[str]) -> None: ...
    def set_ingress(self, app_name: str, group: str, port: str | None, mode: str) -> None: ...
    def disable_ingress(self, app_name: str, group: str) -> None: ...
    def update_registry_details(
        self, app_name: str, group: str, registry: str, username: str, password: str
    ) -> None: ...


@runtime_checkable
class TelemetrySink(Protocol):
    def record_outcome(self, scenario: str, result: str, duration_ms: int) -> None: ...


@runtime_checkable
class Authenticator(Protocol):
    def login(self) -> None: ...
    def logout(self) -> None: ...
