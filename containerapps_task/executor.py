"""Run a Container Apps task: resolve the plan, execute its actions, always clean up."""

from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, Sequence

from containerapps_task import task_log
from containerapps_task.capabilities import AppDeployer, Authenticator, ImageBuilder, ProviderQueries, RegistryClient
from containerapps_task.plan import (
    DISPATCH_KINDS,
    Action,
    ActionKind,
    DeploymentPlan,
    ResolveContext,
    build_actions,
    complete_plan,
    prepare_plan,
    validate_inputs,
)
from containerapps_task.task_inputs import BuildInfo, TaskInputs
from containerapps_task.task_log import TaskResult
from containerapps_task.telemetry import Scenario, TelemetryRecorder


@dataclass
class TaskServices:
    provider: ProviderQueries
    builder: ImageBuilder
    registry: RegistryClient
    deployer: AppDeployer
    authenticator: Authenticator


Handler = Callable[[TaskServices, Mapping[str, Any]], None]

_HANDLERS: dict[ActionKind, Handler] = {
    ActionKind.REGISTRY_LOGIN_PASSWORD: lambda s, p: s.registry.login_with_password(
        p["registry"], p["username"], p["password"]
    ),
    ActionKind.REGISTRY_LOGIN_TOKEN: lambda s, p: s.registry.login_with_access_token(p["registry"]),
    ActionKind.CREATE_RESOURCE_GROUP: lambda s, p: s.provider.create_resource_group(p["name"], p["region"]),
    ActionKind.CREATE_ENVIRONMENT: lambda s, p: s.provider.create_environment(p["name"], p["group"], p["region"]),
    ActionKind.SET_DEFAULT_BUILDER: lambda s, p: s.builder.set_default_builder(),
    ActionKind.BUILD_IMAGE: lambda s, p: s.builder.build_image(p["tag"], p["source_path"], p["stack"]),
    ActionKind.BUILD_IMAGE_FROM_DOCKERFILE: lambda s, p: s.builder.build_image_from_dockerfile(
        p["tag"], p["source_path"], p["dockerfile_path"]
    ),
    ActionKind.PUSH_IMAGE: lambda s, p: s.registry.push(p["tag"]),
    ActionKind.CREATE_FROM_FILE: lambda s, p: s.deployer.create_from_file(p["app_name"], p["group"], p["file_path"]),
    ActionKind.CREATE_FROM_ARGS: lambda s, p: s.deployer.create_from_args(
        p["app_name"], p["group"], p["environment"], p["image"], list(p["extra_args"])
    ),
    ActionKind.UPDATE_FROM_FILE: lambda s, p: s.deployer.update_from_file(p["app_name"], p["group"], p["file_path"]),
    ActionKind.UPDATE_FROM_ARGS: lambda s, p: s.deployer.update_from_args(
        p["app_name"], p["group"], p["image"], list(p["extra_args"])
    ),
    ActionKind.ENABLE_INGRESS: lambda s, p: s.deployer.set_ingress(p["app_name"], p["group"], p["port"], p["mode"]),
    ActionKind.DISABLE_INGRESS: lambda s, p: s.deployer.disable_ingress(p["app_name"], p["group"]),
    ActionKind.UPDATE_REGISTRY_DETAILS: lambda s, p: s.deployer.update_registry_details(
        p["app_name"], p["group"], p["registry"], p["username"], p["password"]
    ),
}

_BUILD_SCENARIOS = {
    ActionKind.BUILD_IMAGE: Scenario.USED_BUILDER,
    ActionKind.BUILD_IMAGE_FROM_DOCKERFILE: Scenario.USED_DOCKERFILE,
}


def execute_actions(actions: Sequence[Action], services: TaskServices, telemetry: TelemetryRecorder) -> None:
    """Run actions in order. The first failure propagates and skips the rest."""
    built = False
    for action in actions:
        if action.kind in DISPATCH_KINDS and not built:
            telemetry.set_scenario(Scenario.USED_IMAGE)

        task_log.debug(f"Running action {action.describe()}")
        _HANDLERS[action.kind](services, action.params)

        if action.kind in _BUILD_SCENARIOS:
            built = True
            telemetry.set_scenario(_BUILD_SCENARIOS[action.kind])


@contextmanager
def task_session(authenticator: Authenticator, telemetry: TelemetryRecorder) -> Iterator[None]:
    """Log out and send telemetry on every exit path, in that order.

    The working directory at entry is restored last.
    """
    previous_cwd = os.getcwd()
    try:
        yield
    finally:
        try:
            try:
                authenticator.logout()
            finally:
                telemetry.send()
        finally:
            os.chdir(previous_cwd)


def _enter_working_directory(cwd: str | None) -> None:
    if not cwd:
        return
    path = Path(cwd)
    path.mkdir(parents=True, exist_ok=True)
    os.chdir(path)


def deploy(
    inputs: TaskInputs,
    services: TaskServices,
    telemetry: TelemetryRecorder,
    build: BuildInfo | None = None,
    *,
    file_exists: Callable[[str], bool] = os.path.isfile,
) -> DeploymentPlan:
    # Fail on bad inputs before touching anything.
    validate_inputs(DeploymentPlan.from_inputs(inputs), ResolveContext())
    _enter_working_directory(inputs.cwd)

    plan = prepare_plan(inputs, build, file_exists=file_exists)
    if plan.should_use_builder:
        services.builder.install_build_tool()

    services.authenticator.login()

    plan = complete_plan(plan, services.provider)
    execute_actions(build_actions(plan), services, telemetry)
    return plan


def run_task(
    inputs: TaskInputs,
    services: TaskServices,
    telemetry: TelemetryRecorder,
    build: BuildInfo | None = None,
    *,
    file_exists: Callable[[str], bool] = os.path.isfile,
) -> TaskResult:
    """Run the task and report its result.

    The result is reported before logout and telemetry run. A telemetry failure
    is raised from here after the result has been reported.
    """
    result = TaskResult.FAILED
    with task_session(services.authenticator, telemetry):
        try:
            plan = deploy(inputs, services, telemetry, build, file_exists=file_exists)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            task_log.error(message)
            task_log.set_result(TaskResult.FAILED, message)
            telemetry.set_failed_result(message)
        else:
            result = TaskResult.SUCCEEDED
            telemetry.set_successful_result()
            task_log.set_result(
                TaskResult.SUCCEEDED,
                f"Container App '{plan.container_app_name}' deployed to resource group '{plan.resource_group}'",
            )
    return result
