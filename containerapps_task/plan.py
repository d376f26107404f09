"""Deployment plan resolution.

A plan is resolved in two phases, each an ordered tuple of steps. Every step
takes the plan-so-far and returns an updated copy; later steps read values
derived by earlier ones, so the order of the tuples matters.

- PREPARE_STEPS never touch the provider: validation, mode classification,
  image-source selection and the identity defaults.
- COMPLETE_STEPS issue provider queries (existence checks, region and runtime
  stack lookups). Resource group and environment creation are staged on the
  plan and executed later as actions.

`build_actions` turns a resolved plan into the ordered actions that run after
login. `resolve` chains both phases and `build_actions`.
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Mapping

from containerapps_task import task_log
from containerapps_task.capabilities import ProviderQueries
from containerapps_task.errors import MissingRegistryError, MissingSourceError
from containerapps_task.task_inputs import BuildInfo, TaskInputs

ACR_DOMAIN = "azurecr.io"
INGRESS_DISABLED = "disabled"
DEFAULT_INGRESS = "external"
DEFAULT_TARGET_PORT = "80"
BUILDER_PYTHON_TARGET_PORT = "80"
BUILDER_TARGET_PORT = "8080"


def registry_server(acr_name: str) -> str:
    return f"{acr_name}.{ACR_DOMAIN}"


class ImageSource(str, Enum):
    BUILD_FROM_SOURCE = "build-from-source"
    REUSE_IMAGE = "reuse-image"
    YAML_ONLY = "yaml-only"


@dataclass(frozen=True)
class DeploymentPlan:
    # Image provenance
    app_source_path: str | None = None
    dockerfile_path: str | None = None
    image_to_build: str | None = None
    image_to_deploy: str | None = None
    yaml_config_path: str | None = None

    # Registry
    acr_name: str | None = None
    acr_username: str | None = None
    acr_password: str | None = field(default=None, repr=False)

    # Resource identity
    container_app_name: str | None = None
    resource_group: str | None = None
    container_app_environment: str | None = None
    location: str | None = None

    # App settings
    runtime_stack: str | None = None
    ingress: str | None = None
    ingress_enabled: bool = True
    target_port: str | None = None
    environment_variables: str | None = None

    # Build metadata used for default names
    build_id: str = ""
    build_number: str = ""

    # Derived flags
    should_only_use_yaml: bool = False
    should_use_yaml_properties: bool = False
    should_use_builder: bool = False
    should_build_and_push: bool = False
    container_app_exists: bool = False
    discovered_existing_environment: bool = False

    # Staged work
    create_resource_group: bool = False
    create_environment: bool = False
    optional_args: tuple[str, ...] = ()

    @classmethod
    def from_inputs(cls, inputs: TaskInputs, build: BuildInfo | None = None) -> DeploymentPlan:
        build = build or BuildInfo()
        return cls(
            app_source_path=inputs.app_source_path,
            dockerfile_path=inputs.dockerfile_path,
            image_to_build=inputs.image_to_build,
            image_to_deploy=inputs.image_to_deploy,
            yaml_config_path=inputs.yaml_config_path,
            acr_name=inputs.acr_name,
            acr_username=inputs.acr_username,
            acr_password=inputs.acr_password,
            container_app_name=inputs.container_app_name,
            resource_group=inputs.resource_group,
            container_app_environment=inputs.container_app_environment,
            location=inputs.location,
            runtime_stack=inputs.runtime_stack,
            ingress=inputs.ingress,
            target_port=inputs.target_port,
            environment_variables=inputs.environment_variables,
            build_id=build.build_id,
            build_number=build.build_number,
        )

    @property
    def has_registry_credentials(self) -> bool:
        return bool(self.acr_name and self.acr_username and self.acr_password)

    @property
    def image_source(self) -> ImageSource:
        if self.should_build_and_push:
            return ImageSource.BUILD_FROM_SOURCE
        if self.should_only_use_yaml:
            return ImageSource.YAML_ONLY
        return ImageSource.REUSE_IMAGE

    def with_args(self, *tokens: str) -> DeploymentPlan:
        return replace(self, optional_args=self.optional_args + tuple(tokens))


@dataclass(frozen=True)
class ResolveContext:
    provider: ProviderQueries | None = None
    file_exists: Callable[[str], bool] = os.path.isfile

    def require_provider(self) -> ProviderQueries:
        if self.provider is None:
            raise ValueError("A provider is required to complete the deployment plan")
        return self.provider


Step = Callable[[DeploymentPlan, ResolveContext], DeploymentPlan]


# ---------------------------------------------------------------------------
# Prepare phase (no provider calls)
# ---------------------------------------------------------------------------


def validate_inputs(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    if plan.app_source_path and not plan.acr_name:
        raise MissingRegistryError()
    if not (plan.app_source_path or plan.image_to_deploy or plan.yaml_config_path):
        raise MissingSourceError()
    return plan


def classify_mode(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    yaml_given = bool(plan.yaml_config_path)
    return replace(
        plan,
        should_only_use_yaml=yaml_given and not plan.app_source_path and not plan.image_to_deploy,
        should_use_yaml_properties=yaml_given,
        should_build_and_push=bool(plan.app_source_path),
    )


def select_image_source(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    if not plan.should_build_and_push:
        return plan

    source = str(plan.app_source_path)
    if plan.dockerfile_path:
        return replace(plan, dockerfile_path=os.path.join(source, plan.dockerfile_path))

    task_log.info(f"No Dockerfile provided; checking for a Dockerfile at the root of '{source}'")
    root_dockerfile = os.path.join(source, "Dockerfile")
    if ctx.file_exists(root_dockerfile):
        task_log.info(f"Found Dockerfile: {root_dockerfile}")
        return replace(plan, dockerfile_path=root_dockerfile)

    task_log.info("No Dockerfile found; the Oryx++ builder will create a runnable image")
    return replace(plan, should_use_builder=True)


def default_image_to_build(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    # Without a registry there is nothing to build (reuse-image mode).
    if plan.should_only_use_yaml or plan.image_to_build or not plan.acr_name:
        return plan
    image = f"{registry_server(plan.acr_name)}/ado-task/container-app:{plan.build_id}.{plan.build_number}"
    task_log.info(f"Default image to build: {image}")
    return replace(plan, image_to_build=image)


def default_image_to_deploy(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    if plan.should_only_use_yaml or plan.image_to_deploy:
        return plan
    task_log.info(f"Default image to deploy: {plan.image_to_build}")
    return replace(plan, image_to_deploy=plan.image_to_build)


def default_container_app_name(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    if plan.container_app_name:
        return plan
    name = f"ado-task-app-{plan.build_id}-{plan.build_number}"
    task_log.info(f"Default Container App name: {name}")
    return replace(plan, container_app_name=name)


def default_resource_group(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    if plan.resource_group:
        return plan
    group = f"{plan.container_app_name}-rg"
    task_log.info(f"Default resource group: {group}")
    return replace(plan, resource_group=group)


# ---------------------------------------------------------------------------
# Complete phase (provider queries)
# ---------------------------------------------------------------------------


def resolve_resource_group(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    provider = ctx.require_provider()
    if provider.resource_group_exists(str(plan.resource_group)):
        return plan

    # Region is only needed when something has to be created.
    location = plan.location
    if not location:
        location = provider.default_region()
        task_log.info(f"Default location: {location}")
    return replace(plan, location=location, create_resource_group=True)


def resolve_app_existence(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    exists = ctx.require_provider().app_exists(str(plan.container_app_name), str(plan.resource_group))
    plan = replace(plan, container_app_exists=exists)

    if (
        not exists
        and not plan.should_only_use_yaml
        and not plan.should_use_yaml_properties
        and plan.has_registry_credentials
    ):
        plan = plan.with_args(
            "--registry-server",
            registry_server(str(plan.acr_name)),
            "--registry-username",
            str(plan.acr_username),
            "--registry-password",
            str(plan.acr_password),
        )
    return plan


def discover_environment(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    if plan.container_app_exists or plan.should_use_yaml_properties or plan.container_app_environment:
        return plan

    existing = ctx.require_provider().find_existing_environment(str(plan.resource_group))
    if not existing:
        return plan
    task_log.info(f"Reusing existing Container App environment: {existing}")
    return replace(plan, container_app_environment=existing, discovered_existing_environment=True)


def default_environment_name(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    if plan.container_app_environment or plan.should_use_yaml_properties:
        return plan
    name = f"{plan.container_app_name}-env"
    task_log.info(f"Default Container App environment: {name}")
    return replace(plan, container_app_environment=name)


def resolve_environment_existence(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    if plan.container_app_exists or plan.discovered_existing_environment or plan.should_use_yaml_properties:
        return plan
    if ctx.require_provider().environment_exists(str(plan.container_app_environment), str(plan.resource_group)):
        return plan
    return replace(plan, create_environment=True)


def resolve_runtime_stack(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    if plan.runtime_stack or not plan.should_use_builder:
        return plan
    stack = ctx.require_provider().detect_runtime_stack(str(plan.app_source_path))
    task_log.info(f"Detected runtime stack: {stack}")
    return replace(plan, runtime_stack=stack)


def default_ingress(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    ingress = plan.ingress
    if not ingress and not plan.should_use_yaml_properties:
        ingress = DEFAULT_INGRESS
        task_log.info(f"Default ingress: {ingress}")

    # YAML configuration owns ingress when it is in use.
    enabled = not (ingress == INGRESS_DISABLED and not plan.should_use_yaml_properties)
    if not enabled:
        task_log.info("Ingress will be disabled for the Container App")
    plan = replace(plan, ingress=ingress, ingress_enabled=enabled)

    # Existing apps get ingress through a separate command after the update.
    if enabled and not plan.container_app_exists and not plan.should_use_yaml_properties:
        plan = plan.with_args("--ingress", str(ingress))
    return plan


def default_builder_target_port(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    if (
        plan.should_use_yaml_properties
        or not plan.ingress_enabled
        or plan.target_port
        or not plan.should_use_builder
    ):
        return plan
    if (plan.runtime_stack or "").startswith("python:"):
        port = BUILDER_PYTHON_TARGET_PORT
    else:
        port = BUILDER_TARGET_PORT
    task_log.info(f"Default target port: {port}")
    return replace(plan, target_port=port)


def default_target_port(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    if plan.should_use_yaml_properties or not plan.ingress_enabled or plan.target_port:
        return plan
    task_log.info(f"Default target port: {DEFAULT_TARGET_PORT}")
    return replace(plan, target_port=DEFAULT_TARGET_PORT)


def stage_target_port(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    if (
        plan.ingress_enabled
        and plan.target_port
        and not plan.container_app_exists
        and not plan.should_use_yaml_properties
    ):
        return plan.with_args("--target-port", plan.target_port)
    return plan


def split_environment_variables(raw: str) -> list[str]:
    """Split `KEY=VALUE` pairs, honouring quotes where they balance.

    Unbalanced quotes (`GREETING=it's`) fall back to plain whitespace splitting.
    """
    try:
        return shlex.split(raw)
    except ValueError:
        return raw.split()


def stage_environment_variables(plan: DeploymentPlan, ctx: ResolveContext) -> DeploymentPlan:
    if not plan.environment_variables or plan.should_use_yaml_properties:
        return plan
    flag = "--replace-env-vars" if plan.container_app_exists else "--env-vars"
    return plan.with_args(flag, *split_environment_variables(plan.environment_variables))


PREPARE_STEPS: tuple[Step, ...] = (
    validate_inputs,
    classify_mode,
    select_image_source,
    default_image_to_build,
    default_image_to_deploy,
    default_container_app_name,
    default_resource_group,
)

COMPLETE_STEPS: tuple[Step, ...] = (
    resolve_resource_group,
    resolve_app_existence,
    discover_environment,
    default_environment_name,
    resolve_environment_existence,
    resolve_runtime_stack,
    default_ingress,
    default_builder_target_port,
    default_target_port,
    stage_target_port,
    stage_environment_variables,
)


def run_steps(plan: DeploymentPlan, steps: tuple[Step, ...], ctx: ResolveContext) -> DeploymentPlan:
    for step in steps:
        plan = step(plan, ctx)
    return plan


def prepare_plan(
    inputs: TaskInputs,
    build: BuildInfo | None = None,
    *,
    file_exists: Callable[[str], bool] = os.path.isfile,
) -> DeploymentPlan:
    plan = DeploymentPlan.from_inputs(inputs, build)
    return run_steps(plan, PREPARE_STEPS, ResolveContext(file_exists=file_exists))


def complete_plan(plan: DeploymentPlan, provider: ProviderQueries) -> DeploymentPlan:
    return run_steps(plan, COMPLETE_STEPS, ResolveContext(provider=provider))


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class ActionKind(str, Enum):
    REGISTRY_LOGIN_PASSWORD = "registry-login-password"
    REGISTRY_LOGIN_TOKEN = "registry-login-token"
    CREATE_RESOURCE_GROUP = "create-resource-group"
    CREATE_ENVIRONMENT = "create-environment"
    SET_DEFAULT_BUILDER = "set-default-builder"
    BUILD_IMAGE = "build-image"
    BUILD_IMAGE_FROM_DOCKERFILE = "build-image-from-dockerfile"
    PUSH_IMAGE = "push-image"
    CREATE_FROM_FILE = "create-from-file"
    CREATE_FROM_ARGS = "create-from-args"
    UPDATE_FROM_FILE = "update-from-file"
    UPDATE_FROM_ARGS = "update-from-args"
    ENABLE_INGRESS = "enable-ingress"
    DISABLE_INGRESS = "disable-ingress"
    UPDATE_REGISTRY_DETAILS = "update-registry-details"


DISPATCH_KINDS = frozenset(
    {
        ActionKind.CREATE_FROM_FILE,
        ActionKind.CREATE_FROM_ARGS,
        ActionKind.UPDATE_FROM_FILE,
        ActionKind.UPDATE_FROM_ARGS,
    }
)

_SECRET_PARAMS = frozenset({"password"})


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    params: Mapping[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        shown = []
        for key, val in self.params.items():
            if key in _SECRET_PARAMS:
                val = "***"
            elif key == "extra_args":
                val = " ".join(_mask_args(val))
            shown.append(f"{key}={val}")
        return f"{self.kind.value}({', '.join(shown)})"


def _mask_args(tokens: tuple[str, ...]) -> list[str]:
    out: list[str] = []
    hide_next = False
    for token in tokens:
        out.append("***" if hide_next else token)
        hide_next = token == "--registry-password"
    return out


def build_actions(plan: DeploymentPlan) -> list[Action]:
    """Ordered actions for a resolved plan. Builder install and login are not included."""
    actions: list[Action] = []

    if not plan.should_only_use_yaml and plan.acr_name:
        if plan.has_registry_credentials:
            actions.append(
                Action(
                    ActionKind.REGISTRY_LOGIN_PASSWORD,
                    {"registry": plan.acr_name, "username": plan.acr_username, "password": plan.acr_password},
                )
            )
        else:
            actions.append(Action(ActionKind.REGISTRY_LOGIN_TOKEN, {"registry": plan.acr_name}))

    if plan.create_resource_group:
        actions.append(Action(ActionKind.CREATE_RESOURCE_GROUP, {"name": plan.resource_group, "region": plan.location}))

    if plan.create_environment:
        actions.append(
            Action(
                ActionKind.CREATE_ENVIRONMENT,
                {"name": plan.container_app_environment, "group": plan.resource_group, "region": plan.location},
            )
        )

    if plan.should_build_and_push:
        if plan.should_use_builder:
            actions.append(Action(ActionKind.SET_DEFAULT_BUILDER))
            actions.append(
                Action(
                    ActionKind.BUILD_IMAGE,
                    {"tag": plan.image_to_deploy, "source_path": plan.app_source_path, "stack": plan.runtime_stack},
                )
            )
        else:
            actions.append(
                Action(
                    ActionKind.BUILD_IMAGE_FROM_DOCKERFILE,
                    {
                        "tag": plan.image_to_deploy,
                        "source_path": plan.app_source_path,
                        "dockerfile_path": plan.dockerfile_path,
                    },
                )
            )
        actions.append(Action(ActionKind.PUSH_IMAGE, {"tag": plan.image_to_deploy}))

    app = {"app_name": plan.container_app_name, "group": plan.resource_group}
    if not plan.container_app_exists:
        if plan.yaml_config_path:
            actions.append(Action(ActionKind.CREATE_FROM_FILE, {**app, "file_path": plan.yaml_config_path}))
        else:
            actions.append(
                Action(
                    ActionKind.CREATE_FROM_ARGS,
                    {
                        **app,
                        "environment": plan.container_app_environment,
                        "image": plan.image_to_deploy,
                        "extra_args": plan.optional_args,
                    },
                )
            )
    elif plan.yaml_config_path:
        actions.append(Action(ActionKind.UPDATE_FROM_FILE, {**app, "file_path": plan.yaml_config_path}))
    else:
        actions.append(
            Action(ActionKind.UPDATE_FROM_ARGS, {**app, "image": plan.image_to_deploy, "extra_args": plan.optional_args})
        )
        if plan.ingress_enabled:
            actions.append(Action(ActionKind.ENABLE_INGRESS, {**app, "port": plan.target_port, "mode": plan.ingress}))
        else:
            actions.append(Action(ActionKind.DISABLE_INGRESS, dict(app)))
        if plan.has_registry_credentials:
            actions.append(
                Action(
                    ActionKind.UPDATE_REGISTRY_DETAILS,
                    {
                        **app,
                        "registry": plan.acr_name,
                        "username": plan.acr_username,
                        "password": plan.acr_password,
                    },
                )
            )

    return actions


def resolve(
    inputs: TaskInputs,
    provider: ProviderQueries,
    *,
    build: BuildInfo | None = None,
    file_exists: Callable[[str], bool] = os.path.isfile,
) -> tuple[DeploymentPlan, list[Action]]:
    plan = prepare_plan(inputs, build, file_exists=file_exists)
    plan = complete_plan(plan, provider)
    return plan, build_actions(plan)
