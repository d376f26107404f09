#!/usr/bin/env python3
"""Build and deploy an application to Azure Container Apps.

Inputs come from (highest precedence first):
- CLI flags (one per task input, e.g. --app-source-path)
- `INPUT_<NAME>` environment variables (how Azure Pipelines passes task inputs)
- an optional dotenv file (--env-file), which never overrides the process environment

Exit codes: 0 on success, 1 when the deployment failed, 2 on invalid inputs.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

from containerapps_task import task_log
from containerapps_task.auth_helpers import ServiceConnectionAuthenticator
from containerapps_task.container_app_helpers import AzureCliContainerAppDeployer, AzureCliContainerAppProvider
from containerapps_task.errors import InputValidationError, TelemetryError
from containerapps_task.executor import TaskServices, run_task
from containerapps_task.image_builder import PackImageBuilder
from containerapps_task.registry_helpers import AcrRegistryClient
from containerapps_task.task_inputs import (
    FIELD_BY_INPUT,
    TASK_SCHEMA,
    BuildInfo,
    InputsEnum,
    TaskInputs,
    describe_inputs,
    parse_dotenv_file,
    read_build_info,
    read_task_inputs,
    validate_known_keys,
)
from containerapps_task.task_log import TaskResult
from containerapps_task.telemetry import TelemetryRecorder

INPUT_HELP: dict[InputsEnum, str] = {
    InputsEnum.APP_SOURCE_PATH: "Path to the application source to build (requires --acr-name)",
    InputsEnum.DOCKERFILE_PATH: "Dockerfile path relative to the application source (default: <source>/Dockerfile if present)",
    InputsEnum.IMAGE_TO_BUILD: "Image to build (default: <acr>.azurecr.io/ado-task/container-app:<buildId>.<buildNumber>)",
    InputsEnum.IMAGE_TO_DEPLOY: "Previously built image to deploy (default: the image to build)",
    InputsEnum.YAML_CONFIG_PATH: "YAML configuration file for the Container App",
    InputsEnum.ACR_NAME: "Azure Container Registry name (without .azurecr.io)",
    InputsEnum.ACR_USERNAME: "ACR username (access token login when username/password are not both set)",
    InputsEnum.ACR_PASSWORD: "ACR password",
    InputsEnum.CONTAINER_APP_NAME: "Container App name (default: ado-task-app-<buildId>-<buildNumber>)",
    InputsEnum.RESOURCE_GROUP: "Resource group (default: <app name>-rg)",
    InputsEnum.CONTAINER_APP_ENVIRONMENT: "Container App environment (default: existing one in the group, else <app name>-env)",
    InputsEnum.LOCATION: "Location used when creating resources (default: provider default)",
    InputsEnum.RUNTIME_STACK: "Oryx runtime stack, e.g. python:3.9 (default: detected from the source)",
    InputsEnum.INGRESS: "Ingress: external, internal or disabled (default: external)",
    InputsEnum.TARGET_PORT: "Target port (default: 80, or 8080 for non-Python builder images)",
    InputsEnum.ENVIRONMENT_VARIABLES: "Space-separated KEY=VALUE pairs for the container",
    InputsEnum.CWD: "Working directory (default: current directory)",
    InputsEnum.CONNECTED_SERVICE_NAME_ARM: "Azure Resource Manager service connection id",
}


def _flag(key: InputsEnum) -> str:
    return "--" + FIELD_BY_INPUT[key].replace("_", "-")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Build and deploy an application to Azure Container Apps")
    for key, help_text in INPUT_HELP.items():
        parser.add_argument(_flag(key), dest=FIELD_BY_INPUT[key], default=None, help=help_text)

    parser.add_argument(
        "--disable-telemetry",
        dest="disable_telemetry",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Do not send task telemetry (default: from INPUT_DISABLETELEMETRY, else enabled)",
    )
    parser.add_argument("--env-file", default=None, help="Dotenv file with INPUT_* / BUILD_* values")
    parser.add_argument("--build-id", default=None, help="Build id used for default names (default: BUILD_BUILDID)")
    parser.add_argument(
        "--build-number", default=None, help="Build number used for default names (default: BUILD_BUILDNUMBER)"
    )
    return parser


def _overrides_from_args(args: argparse.Namespace) -> dict[InputsEnum, str | None]:
    overrides: dict[InputsEnum, str | None] = {}
    for key in INPUT_HELP:
        overrides[key] = getattr(args, FIELD_BY_INPUT[key])
    if args.disable_telemetry is not None:
        overrides[InputsEnum.DISABLE_TELEMETRY] = "true" if args.disable_telemetry else "false"
    return overrides


def load_env_file(path: Path) -> None:
    if not path.exists():
        raise InputValidationError(context="env file", problems=[f"Env file not found: {path}"])
    validate_known_keys(TASK_SCHEMA, parse_dotenv_file(path), context=f"env file ({path.name})")
    load_dotenv(dotenv_path=str(path), override=False)


def create_services(inputs: TaskInputs) -> TaskServices:
    return TaskServices(
        provider=AzureCliContainerAppProvider(),
        builder=PackImageBuilder(disable_telemetry=inputs.disable_telemetry),
        registry=AcrRegistryClient(),
        deployer=AzureCliContainerAppDeployer(),
        authenticator=ServiceConnectionAuthenticator(str(inputs.connected_service_name_arm)),
    )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        if args.env_file:
            load_env_file(Path(args.env_file).expanduser().resolve())
        inputs = read_task_inputs(overrides=_overrides_from_args(args))
    except InputValidationError as e:
        print(e.format(), file=sys.stderr)
        task_log.set_result(TaskResult.FAILED, str(e))
        return 2

    build = read_build_info()
    build = BuildInfo(
        build_id=args.build_id or build.build_id,
        build_number=args.build_number or build.build_number,
    )

    for line in describe_inputs(inputs):
        task_log.debug(f"input {line}")

    telemetry = TelemetryRecorder(inputs.disable_telemetry)
    try:
        result = run_task(inputs, create_services(inputs), telemetry, build)
    except TelemetryError:
        # Already logged; the task result was reported before telemetry ran.
        return 1
    return 0 if result is TaskResult.SUCCEEDED else 1


if __name__ == "__main__":
    raise SystemExit(main())
