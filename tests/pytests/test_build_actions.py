from __future__ import annotations

import os

from containerapps_task.plan import Action, ActionKind, DeploymentPlan, build_actions, resolve
from containerapps_task.task_inputs import BuildInfo, TaskInputs

BUILD = BuildInfo(build_id="7", build_number="20240101.1")
APP = "ado-task-app-7-20240101.1"
RG = f"{APP}-rg"
CREDS = {"acr_name": "myacr", "acr_username": "user", "acr_password": "pw"}


def _kinds(actions: list[Action]) -> list[ActionKind]:
    return [a.kind for a in actions]


def _resolve(inputs, provider, file_exists=lambda p: False):
    return resolve(inputs, provider, build=BUILD, file_exists=file_exists)


def test_builder_flow_for_new_everything(provider):
    plan, actions = _resolve(TaskInputs(app_source_path="src", **CREDS), provider)

    assert _kinds(actions) == [
        ActionKind.REGISTRY_LOGIN_PASSWORD,
        ActionKind.CREATE_RESOURCE_GROUP,
        ActionKind.CREATE_ENVIRONMENT,
        ActionKind.SET_DEFAULT_BUILDER,
        ActionKind.BUILD_IMAGE,
        ActionKind.PUSH_IMAGE,
        ActionKind.CREATE_FROM_ARGS,
    ]
    build = actions[4]
    assert build.params == {
        "tag": "myacr.azurecr.io/ado-task/container-app:7.20240101.1",
        "source_path": "src",
        "stack": "python:3.9",
    }
    create = actions[-1]
    assert create.params["environment"] == f"{APP}-env"
    assert create.params["image"] == plan.image_to_deploy
    assert create.params["extra_args"] == plan.optional_args
    assert actions[1].params == {"name": RG, "region": "westeurope"}
    assert actions[2].params == {"name": f"{APP}-env", "group": RG, "region": "westeurope"}


def test_dockerfile_flow_uses_docker_build(provider):
    provider.groups.add(RG)
    dockerfile = os.path.join("src", "Dockerfile")
    _, actions = _resolve(
        TaskInputs(app_source_path="src", acr_name="myacr"),
        provider,
        file_exists=lambda p: p == dockerfile,
    )
    assert _kinds(actions) == [
        ActionKind.REGISTRY_LOGIN_TOKEN,
        ActionKind.CREATE_ENVIRONMENT,
        ActionKind.BUILD_IMAGE_FROM_DOCKERFILE,
        ActionKind.PUSH_IMAGE,
        ActionKind.CREATE_FROM_ARGS,
    ]
    assert actions[2].params["dockerfile_path"] == dockerfile


def test_image_reuse_without_registry_skips_registry_login(provider):
    provider.groups.add(RG)
    provider.environments.add((f"{APP}-env", RG))
    _, actions = _resolve(TaskInputs(image_to_deploy="nginx:latest"), provider)
    assert _kinds(actions) == [ActionKind.CREATE_FROM_ARGS]


def test_yaml_only_create_skips_registry_login(provider):
    provider.groups.add(RG)
    _, actions = _resolve(TaskInputs(yaml_config_path="app.yaml", **CREDS), provider)
    assert _kinds(actions) == [ActionKind.CREATE_FROM_FILE]
    assert actions[0].params == {"app_name": APP, "group": RG, "file_path": "app.yaml"}


def test_yaml_with_existing_app_updates_from_file(provider):
    provider.groups.add(RG)
    provider.apps.add((APP, RG))
    _, actions = _resolve(TaskInputs(yaml_config_path="app.yaml", image_to_deploy="img:1"), provider)
    assert _kinds(actions) == [ActionKind.UPDATE_FROM_FILE]


def test_update_with_full_credentials_sets_ingress_then_registry(provider):
    provider.groups.add(RG)
    provider.apps.add((APP, RG))
    _, actions = _resolve(TaskInputs(image_to_deploy="img:1", **CREDS), provider)

    assert _kinds(actions) == [
        ActionKind.REGISTRY_LOGIN_PASSWORD,
        ActionKind.UPDATE_FROM_ARGS,
        ActionKind.ENABLE_INGRESS,
        ActionKind.UPDATE_REGISTRY_DETAILS,
    ]
    assert actions[2].params == {"app_name": APP, "group": RG, "port": "80", "mode": "external"}


def test_update_without_full_credentials_skips_registry_update(provider):
    provider.groups.add(RG)
    provider.apps.add((APP, RG))
    _, actions = _resolve(TaskInputs(image_to_deploy="img:1", acr_name="myacr", acr_username="user"), provider)
    assert _kinds(actions) == [
        ActionKind.REGISTRY_LOGIN_TOKEN,
        ActionKind.UPDATE_FROM_ARGS,
        ActionKind.ENABLE_INGRESS,
    ]


def test_update_with_disabled_ingress_disables_it(provider):
    provider.groups.add(RG)
    provider.apps.add((APP, RG))
    _, actions = _resolve(TaskInputs(image_to_deploy="img:1", ingress="disabled"), provider)
    assert _kinds(actions) == [ActionKind.UPDATE_FROM_ARGS, ActionKind.DISABLE_INGRESS]


def test_build_actions_for_bare_plan_dispatches_create():
    actions = build_actions(DeploymentPlan(container_app_name="a", resource_group="g", image_to_deploy="i"))
    assert _kinds(actions) == [ActionKind.CREATE_FROM_ARGS]


def test_describe_masks_passwords():
    action = Action(
        ActionKind.CREATE_FROM_ARGS,
        {
            "app_name": "a",
            "extra_args": ("--registry-server", "r.azurecr.io", "--registry-password", "s3cret"),
        },
    )
    text = action.describe()
    assert "s3cret" not in text
    assert "--registry-password ***" in text

    login = Action(ActionKind.REGISTRY_LOGIN_PASSWORD, {"registry": "r", "username": "u", "password": "s3cret"})
    assert "s3cret" not in login.describe()
