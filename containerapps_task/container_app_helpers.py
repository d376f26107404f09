#!/usr/bin/env python3
"""Azure CLI backed provider queries and Container App deployment calls."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Sequence

import yaml

from containerapps_task import task_log
from containerapps_task.azure_utils import az_succeeds, run_az_command, run_command
from containerapps_task.errors import InputValidationError
from containerapps_task.plan import registry_server

ORYX_CLI_IMAGE = "mcr.microsoft.com/oryx/cli:debian-buster-20230207.2"
FALLBACK_LOCATION = "eastus2"
RUNTIME_ARG_PREFIX = "ARG RUNTIME="


def normalize_location(value: str | None) -> str:
    return str(value or "").replace('"', "").replace(" ", "").strip().lower()


def parse_runtime_stack(dockerfile_text: str) -> str:
    """Extract the runtime stack from `oryx dockerfile` output.

    The first line looks like `ARG RUNTIME=python:3.9`.
    """
    lines = [line.strip() for line in str(dockerfile_text or "").splitlines() if line.strip()]
    if not lines or not lines[0].startswith(RUNTIME_ARG_PREFIX):
        raise RuntimeError(f"Unable to determine the runtime stack from Oryx output: {lines[:1]}")
    return lines[0][len(RUNTIME_ARG_PREFIX):].strip()


def load_yaml_config(path: str) -> dict[str, Any]:
    """Load a Container App YAML configuration file and check it is a mapping."""
    context = f"yaml config ({path})"
    config_path = Path(path)
    if not config_path.is_file():
        raise InputValidationError(context=context, problems=[f"YAML configuration file not found: {path}"])
    try:
        payload = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise InputValidationError(context=context, problems=[f"Invalid YAML: {e}"]) from e
    if not isinstance(payload, dict):
        raise InputValidationError(context=context, problems=["YAML configuration must be a mapping"])
    return payload


def build_detect_runtime_stack_cmd(*, source_path: str) -> list[str]:
    # Docker treats a relative host path as a named volume.
    mount = f"{os.path.abspath(source_path)}:/app"
    return ["docker", "run", "--rm", "-v", mount, ORYX_CLI_IMAGE, "oryx", "dockerfile", "/app"]


class AzureCliContainerAppProvider:
    """Existence checks and creation calls for resource groups and environments."""

    def resource_group_exists(self, name: str) -> bool:
        task_log.info(f"Checking whether resource group '{name}' exists")
        return az_succeeds(["group", "show", "--name", name, "--output", "none"])

    def create_resource_group(self, name: str, region: str) -> None:
        task_log.info(f"Creating resource group '{name}' in '{region}'")
        run_az_command(["group", "create", "--name", name, "--location", region, "--output", "none"], capture_output=False)

    def app_exists(self, name: str, group: str) -> bool:
        task_log.info(f"Checking whether Container App '{name}' exists in '{group}'")
        return az_succeeds(["containerapp", "show", "--name", name, "--resource-group", group, "--output", "none"])

    def environment_exists(self, name: str, group: str) -> bool:
        task_log.info(f"Checking whether Container App environment '{name}' exists in '{group}'")
        return az_succeeds(["containerapp", "env", "show", "--name", name, "--resource-group", group, "--output", "none"])

    def find_existing_environment(self, group: str) -> str | None:
        res = run_az_command(
            ["containerapp", "env", "list", "--resource-group", group, "--query", "[0].name", "--output", "tsv"],
            ignore_errors=True,
        )
        name = str(res or "").strip()
        return name or None

    def create_environment(self, name: str, group: str, region: str | None = None) -> None:
        task_log.info(f"Creating Container App environment '{name}' in '{group}'")
        args = ["containerapp", "env", "create", "--name", name, "--resource-group", group, "--output", "none"]
        if region:
            args.extend(["--location", region])
        run_az_command(args, capture_output=False)

    def default_region(self) -> str:
        res = run_az_command(
            [
                "provider",
                "show",
                "--namespace",
                "Microsoft.App",
                "--query",
                "resourceTypes[?resourceType=='containerApps'].locations[] | [0]",
                "--output",
                "tsv",
            ],
            ignore_errors=True,
        )
        location = normalize_location(res)
        if not location:
            task_log.warning(f"Unable to look up the default Container Apps location; using '{FALLBACK_LOCATION}'")
            return FALLBACK_LOCATION
        return location

    def detect_runtime_stack(self, source_path: str) -> str:
        out = run_command(build_detect_runtime_stack_cmd(source_path=source_path), capture_output=True, tag="oryx")
        return parse_runtime_stack(out)


class AzureCliContainerAppDeployer:
    """Create/update calls for the Container App itself."""

    def create_from_file(self, app_name: str, group: str, file_path: str) -> None:
        task_log.info(f"Creating Container App '{app_name}' from YAML configuration file '{file_path}'")
        load_yaml_config(file_path)
        run_az_command(
            ["containerapp", "create", "--name", app_name, "--resource-group", group, "--yaml", file_path, "--output", "none"],
            capture_output=False,
        )

    def create_from_args(
        self, app_name: str, group: str, environment: str, image: str, extra_args: Sequence[str]
    ) -> None:
        task_log.info(f"Creating Container App '{app_name}' with image '{image}'")
        # Not verbose: staged args may carry the registry password.
        run_az_command(
            [
                "containerapp",
                "create",
                "--name",
                app_name,
                "--resource-group",
                group,
                "--environment",
                environment,
                "--image",
                image,
                "--output",
                "none",
                *extra_args,
            ],
            capture_output=False,
            verbose=False,
        )

    def update_from_file(self, app_name: str, group: str, file_path: str) -> None:
        task_log.info(f"Updating Container App '{app_name}' from YAML configuration file '{file_path}'")
        load_yaml_config(file_path)
        run_az_command(
            ["containerapp", "update", "--name", app_name, "--resource-group", group, "--yaml", file_path, "--output", "none"],
            capture_output=False,
        )

    def update_from_args(self, app_name: str, group: str, image: str, extra_args: Sequence[str]) -> None:
        task_log.info(f"Updating Container App '{app_name}' with image '{image}'")
        run_az_command(
            [
                "containerapp",
                "update",
                "--name",
                app_name,
                "--resource-group",
                group,
                "--image",
                image,
                "--output",
                "none",
                *extra_args,
            ],
            capture_output=False,
        )

    def set_ingress(self, app_name: str, group: str, port: str | None, mode: str) -> None:
        task_log.info(f"Enabling '{mode}' ingress on Container App '{app_name}'")
        args = ["containerapp", "ingress", "enable", "--name", app_name, "--resource-group", group, "--type", mode]
        if port:
            args.extend(["--target-port", port])
        args.extend(["--output", "none"])
        run_az_command(args, capture_output=False)

    def disable_ingress(self, app_name: str, group: str) -> None:
        task_log.info(f"Disabling ingress on Container App '{app_name}'")
        run_az_command(
            ["containerapp", "ingress", "disable", "--name", app_name, "--resource-group", group, "--output", "none"],
            capture_output=False,
        )

    def update_registry_details(
        self, app_name: str, group: str, registry: str, username: str, password: str
    ) -> None:
        server = registry_server(registry)
        task_log.info(f"Updating registry details for Container App '{app_name}' ({server})")
        # Not verbose: the command line carries the registry password.
        run_az_command(
            [
                "containerapp",
                "registry",
                "set",
                "--name",
                app_name,
                "--resource-group",
                group,
                "--server",
                server,
                "--username",
                username,
                "--password",
                password,
                "--output",
                "none",
            ],
            capture_output=False,
            verbose=False,
        )
