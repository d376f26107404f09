"""Deterministic input schema for the Container Apps task.

This module is the single source of truth for:
- which task inputs exist and how they are named in the process environment
- which inputs are mandatory and which have defaults
- how inputs are read from the environment, a dotenv file and CLI overrides

Azure Pipelines exposes task inputs as `INPUT_<NAME>` environment variables
(name upper-cased). Empty values are treated as absent.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping

from dotenv import dotenv_values

from containerapps_task.errors import InputValidationError

INPUT_ENV_PREFIX = "INPUT_"


class InputsEnum(str, Enum):
    # Image provenance
    APP_SOURCE_PATH = "appSourcePath"
    DOCKERFILE_PATH = "dockerfilePath"
    IMAGE_TO_BUILD = "imageToBuild"
    IMAGE_TO_DEPLOY = "imageToDeploy"
    YAML_CONFIG_PATH = "yamlConfigPath"

    # Registry
    ACR_NAME = "acrName"
    ACR_USERNAME = "acrUsername"
    ACR_PASSWORD = "acrPassword"

    # Resource identity
    CONTAINER_APP_NAME = "containerAppName"
    RESOURCE_GROUP = "resourceGroup"
    CONTAINER_APP_ENVIRONMENT = "containerAppEnvironment"
    LOCATION = "location"

    # App settings
    RUNTIME_STACK = "runtimeStack"
    INGRESS = "ingress"
    TARGET_PORT = "targetPort"
    ENVIRONMENT_VARIABLES = "environmentVariables"

    # Task plumbing
    CWD = "cwd"
    DISABLE_TELEMETRY = "disableTelemetry"
    CONNECTED_SERVICE_NAME_ARM = "connectedServiceNameARM"

    @property
    def env_name(self) -> str:
        return INPUT_ENV_PREFIX + self.value.upper()


class BuildVarsEnum(str, Enum):
    BUILD_ID = "BUILD_BUILDID"
    BUILD_NUMBER = "BUILD_BUILDNUMBER"


class AgentVarsEnum(str, Enum):
    TOOLS_DIRECTORY = "AGENT_TOOLSDIRECTORY"
    TEMP_DIRECTORY = "AGENT_TEMPDIRECTORY"


@dataclass(frozen=True)
class InputSpec:
    key: InputsEnum
    mandatory: bool = False
    default: str | None = None
    secret: bool = False


TASK_SCHEMA: tuple[InputSpec, ...] = (
    InputSpec(key=InputsEnum.APP_SOURCE_PATH),
    InputSpec(key=InputsEnum.DOCKERFILE_PATH),
    InputSpec(key=InputsEnum.IMAGE_TO_BUILD),
    InputSpec(key=InputsEnum.IMAGE_TO_DEPLOY),
    InputSpec(key=InputsEnum.YAML_CONFIG_PATH),
    InputSpec(key=InputsEnum.ACR_NAME),
    InputSpec(key=InputsEnum.ACR_USERNAME),
    InputSpec(key=InputsEnum.ACR_PASSWORD, secret=True),
    InputSpec(key=InputsEnum.CONTAINER_APP_NAME),
    InputSpec(key=InputsEnum.RESOURCE_GROUP),
    InputSpec(key=InputsEnum.CONTAINER_APP_ENVIRONMENT),
    InputSpec(key=InputsEnum.LOCATION),
    InputSpec(key=InputsEnum.RUNTIME_STACK),
    InputSpec(key=InputsEnum.INGRESS),
    InputSpec(key=InputsEnum.TARGET_PORT),
    InputSpec(key=InputsEnum.ENVIRONMENT_VARIABLES),
    InputSpec(key=InputsEnum.CWD, default="."),
    InputSpec(key=InputsEnum.DISABLE_TELEMETRY, default="false"),
    # Only needed to log in; plan resolution does not read it.
    InputSpec(key=InputsEnum.CONNECTED_SERVICE_NAME_ARM, mandatory=True),
)


@dataclass(frozen=True)
class TaskInputs:
    app_source_path: str | None = None
    dockerfile_path: str | None = None
    image_to_build: str | None = None
    image_to_deploy: str | None = None
    yaml_config_path: str | None = None
    acr_name: str | None = None
    acr_username: str | None = None
    acr_password: str | None = None
    container_app_name: str | None = None
    resource_group: str | None = None
    container_app_environment: str | None = None
    location: str | None = None
    runtime_stack: str | None = None
    ingress: str | None = None
    target_port: str | None = None
    environment_variables: str | None = None
    cwd: str | None = None
    disable_telemetry: bool = False
    connected_service_name_arm: str | None = None


@dataclass(frozen=True)
class BuildInfo:
    build_id: str = ""
    build_number: str = ""


FIELD_BY_INPUT: dict[InputsEnum, str] = {
    InputsEnum.APP_SOURCE_PATH: "app_source_path",
    InputsEnum.DOCKERFILE_PATH: "dockerfile_path",
    InputsEnum.IMAGE_TO_BUILD: "image_to_build",
    InputsEnum.IMAGE_TO_DEPLOY: "image_to_deploy",
    InputsEnum.YAML_CONFIG_PATH: "yaml_config_path",
    InputsEnum.ACR_NAME: "acr_name",
    InputsEnum.ACR_USERNAME: "acr_username",
    InputsEnum.ACR_PASSWORD: "acr_password",
    InputsEnum.CONTAINER_APP_NAME: "container_app_name",
    InputsEnum.RESOURCE_GROUP: "resource_group",
    InputsEnum.CONTAINER_APP_ENVIRONMENT: "container_app_environment",
    InputsEnum.LOCATION: "location",
    InputsEnum.RUNTIME_STACK: "runtime_stack",
    InputsEnum.INGRESS: "ingress",
    InputsEnum.TARGET_PORT: "target_port",
    InputsEnum.ENVIRONMENT_VARIABLES: "environment_variables",
    InputsEnum.CWD: "cwd",
    InputsEnum.DISABLE_TELEMETRY: "disable_telemetry",
    InputsEnum.CONNECTED_SERVICE_NAME_ARM: "connected_service_name_arm",
}


def _schema_env_names(schema: Iterable[InputSpec]) -> set[str]:
    return {spec.key.env_name for spec in schema}


def truthy(val: str | None) -> bool:
    v = str(val or "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def parse_dotenv_file(path: Path) -> dict[str, str]:
    """Parse dotenv file strictly.

    - Comments are ignored.
    - Keys are preserved even if they have empty values (""), so we can detect unknown keys.
    """
    kv: dict[str, str] = {}
    raw = dotenv_values(path)
    for k, v in raw.items():
        if k is None:
            continue
        key = str(k).strip()
        if not key:
            continue
        kv[key] = "" if v is None else str(v).strip()
    return kv


def validate_known_keys(schema: Iterable[InputSpec], kv: Mapping[str, str], *, context: str) -> None:
    """Reject `INPUT_*` keys the task does not know about. Other keys are left alone."""
    allowed = _schema_env_names(schema)
    unknown = sorted(k for k in kv if k.startswith(INPUT_ENV_PREFIX) and k not in allowed)
    if unknown:
        raise InputValidationError(context=context, problems=["Unknown input key(s): " + ", ".join(unknown)])


def apply_defaults(schema: Iterable[InputSpec], kv: dict[str, str]) -> dict[str, str]:
    out = dict(kv)
    for spec in schema:
        if str(out.get(spec.key.env_name) or "").strip():
            continue
        if spec.default is None:
            continue
        out[spec.key.env_name] = spec.default
    return out


def validate_required(schema: Iterable[InputSpec], kv: Mapping[str, str], *, context: str) -> None:
    missing: list[str] = []
    for spec in schema:
        if not spec.mandatory:
            continue
        if not str(kv.get(spec.key.env_name) or "").strip():
            missing.append(spec.key.value)
    if missing:
        raise InputValidationError(context=context, problems=["Missing mandatory input(s): " + ", ".join(sorted(missing))])


def read_task_inputs(
    env: Mapping[str, str] | None = None,
    *,
    overrides: Mapping[InputsEnum, str | None] | None = None,
    require_mandatory: bool = True,
) -> TaskInputs:
    """Build TaskInputs from `INPUT_*` variables, with CLI-style overrides on top."""
    env = os.environ if env is None else env
    env_names = _schema_env_names(TASK_SCHEMA)
    kv = {k: str(v).strip() for k, v in env.items() if k in env_names and v is not None}

    for key, val in (overrides or {}).items():
        if val is not None and str(val).strip():
            kv[key.env_name] = str(val).strip()

    kv = apply_defaults(TASK_SCHEMA, kv)
    if require_mandatory:
        validate_required(TASK_SCHEMA, kv, context="task inputs")

    values: dict[str, object] = {}
    for key, field_name in FIELD_BY_INPUT.items():
        val = kv.get(key.env_name) or None
        if key == InputsEnum.DISABLE_TELEMETRY:
            values[field_name] = truthy(val)
        else:
            values[field_name] = val
    return TaskInputs(**values)


def read_build_info(env: Mapping[str, str] | None = None) -> BuildInfo:
    env = os.environ if env is None else env
    return BuildInfo(
        build_id=str(env.get(BuildVarsEnum.BUILD_ID.value) or "").strip(),
        build_number=str(env.get(BuildVarsEnum.BUILD_NUMBER.value) or "").strip(),
    )


def describe_inputs(inputs: TaskInputs) -> list[str]:
    """`name=value` lines for the provided inputs, with secrets masked."""
    secret_keys = {spec.key for spec in TASK_SCHEMA if spec.secret}
    lines: list[str] = []
    for key, field_name in FIELD_BY_INPUT.items():
        val = getattr(inputs, field_name)
        if val is None or val == "":
            continue
        lines.append(f"{key.value}={'***' if key in secret_keys else val}")
    return lines
