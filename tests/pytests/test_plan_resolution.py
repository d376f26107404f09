from __future__ import annotations

import os
from dataclasses import replace

import pytest

from containerapps_task.errors import MissingRegistryError, MissingSourceError
from containerapps_task.plan import (
    DeploymentPlan,
    ImageSource,
    ResolveContext,
    default_builder_target_port,
    default_target_port,
    prepare_plan,
    resolve,
)
from containerapps_task.task_inputs import BuildInfo, TaskInputs

BUILD = BuildInfo(build_id="1", build_number="2")
APP = "ado-task-app-1-2"
RG = "ado-task-app-1-2-rg"


def no_files(path: str) -> bool:
    return False


def _resolve(inputs: TaskInputs, provider, file_exists=no_files):
    return resolve(inputs, provider, build=BUILD, file_exists=file_exists)


def test_resolve_without_any_image_source_fails_before_queries(provider):
    with pytest.raises(MissingSourceError):
        _resolve(TaskInputs(), provider)
    assert provider.calls == []


def test_source_path_without_registry_fails_before_queries(provider):
    with pytest.raises(MissingRegistryError) as exc:
        _resolve(TaskInputs(app_source_path="x"), provider)
    assert "acrName" in str(exc.value)
    assert provider.calls == []


@pytest.mark.parametrize(
    "source,image,yaml_path,expected",
    [
        ("src", None, None, ImageSource.BUILD_FROM_SOURCE),
        ("src", "img:1", None, ImageSource.BUILD_FROM_SOURCE),
        ("src", None, "app.yaml", ImageSource.BUILD_FROM_SOURCE),
        ("src", "img:1", "app.yaml", ImageSource.BUILD_FROM_SOURCE),
        (None, "img:1", None, ImageSource.REUSE_IMAGE),
        (None, "img:1", "app.yaml", ImageSource.REUSE_IMAGE),
        (None, None, "app.yaml", ImageSource.YAML_ONLY),
    ],
)
def test_exactly_one_image_source_is_selected(source, image, yaml_path, expected):
    plan = prepare_plan(
        TaskInputs(app_source_path=source, image_to_deploy=image, yaml_config_path=yaml_path, acr_name="myacr"),
        BUILD,
        file_exists=no_files,
    )
    assert plan.image_source == expected
    flags = [plan.should_build_and_push, plan.should_only_use_yaml]
    assert sum(flags) <= 1
    assert plan.should_use_yaml_properties == bool(yaml_path)


def test_default_names_derive_from_build_metadata(provider):
    plan, _ = _resolve(TaskInputs(image_to_deploy="docker.io/library/nginx:latest"), provider)
    assert plan.container_app_name == APP
    assert plan.resource_group == RG
    assert plan.container_app_environment == f"{APP}-env"


def test_explicit_names_are_kept(provider):
    provider.groups.add("my-rg")
    plan, _ = _resolve(
        TaskInputs(image_to_deploy="img:1", container_app_name="web", resource_group="my-rg"),
        provider,
    )
    assert plan.container_app_name == "web"
    assert plan.resource_group == "my-rg"
    assert plan.container_app_environment == "web-env"


def test_build_from_source_with_builder_derives_images_and_stack(provider):
    plan, _ = _resolve(TaskInputs(app_source_path="src", acr_name="myacr"), provider)

    assert plan.should_use_builder is True
    assert plan.dockerfile_path is None
    assert plan.image_to_build == "myacr.azurecr.io/ado-task/container-app:1.2"
    assert plan.image_to_deploy == plan.image_to_build
    assert plan.runtime_stack == "python:3.9"
    assert ("detect_runtime_stack", "src") in provider.calls


def test_explicit_runtime_stack_skips_detection(provider):
    plan, _ = _resolve(TaskInputs(app_source_path="src", acr_name="myacr", runtime_stack="node:18"), provider)
    assert plan.runtime_stack == "node:18"
    assert not provider.called("detect_runtime_stack")


def test_dockerfile_at_source_root_is_discovered(provider):
    root_dockerfile = os.path.join("src", "Dockerfile")
    plan, _ = _resolve(
        TaskInputs(app_source_path="src", acr_name="myacr"),
        provider,
        file_exists=lambda p: p == root_dockerfile,
    )
    assert plan.dockerfile_path == root_dockerfile
    assert plan.should_use_builder is False
    assert plan.runtime_stack is None
    assert not provider.called("detect_runtime_stack")


def test_explicit_dockerfile_is_joined_to_source_root(provider):
    plan, _ = _resolve(
        TaskInputs(app_source_path="src", acr_name="myacr", dockerfile_path="docker/Dockerfile.prod"),
        provider,
    )
    assert plan.dockerfile_path == os.path.join("src", "docker/Dockerfile.prod")
    assert plan.should_use_builder is False


@pytest.mark.parametrize("stack,port", [("python:3.9", "80"), ("node:18", "8080"), ("dotnetcore:7.0", "8080")])
def test_builder_target_port_follows_runtime_stack(provider, stack, port):
    provider.stack = stack
    plan, _ = _resolve(TaskInputs(app_source_path="src", acr_name="myacr"), provider)
    assert plan.target_port == port
    assert plan.optional_args[-2:] == ("--target-port", port)


def test_target_port_defaults_to_80_without_builder(provider):
    plan, _ = _resolve(TaskInputs(image_to_deploy="img:1"), provider)
    assert plan.target_port == "80"


def test_explicit_target_port_wins(provider):
    plan, _ = _resolve(TaskInputs(app_source_path="src", acr_name="myacr", target_port="3000"), provider)
    assert plan.target_port == "3000"


def test_generic_target_port_fallback_runs_after_builder_step():
    plan = DeploymentPlan(ingress="external", should_use_builder=False)
    ctx = ResolveContext()
    plan = default_builder_target_port(plan, ctx)
    assert plan.target_port is None
    plan = default_target_port(plan, ctx)
    assert plan.target_port == "80"


def test_new_app_gets_ingress_and_port_args(provider):
    plan, _ = _resolve(TaskInputs(image_to_deploy="img:1"), provider)
    assert plan.ingress == "external"
    assert plan.ingress_enabled is True
    assert plan.optional_args == ("--ingress", "external", "--target-port", "80")


def test_disabled_ingress_stages_no_ingress_or_port_args(provider):
    plan, _ = _resolve(TaskInputs(image_to_deploy="img:1", ingress="disabled"), provider)
    assert plan.ingress_enabled is False
    assert plan.target_port is None
    assert "--ingress" not in plan.optional_args
    assert "--target-port" not in plan.optional_args


def test_internal_ingress_is_passed_through(provider):
    plan, _ = _resolve(TaskInputs(image_to_deploy="img:1", ingress="internal", target_port="5000"), provider)
    assert plan.optional_args == ("--ingress", "internal", "--target-port", "5000")


def test_existing_app_gets_no_create_time_ingress_args(provider):
    provider.groups.add(RG)
    provider.apps.add((APP, RG))
    plan, _ = _resolve(TaskInputs(image_to_deploy="img:1"), provider)
    assert plan.container_app_exists is True
    assert plan.target_port == "80"
    assert plan.optional_args == ()


def test_environment_variables_are_routed_by_create_or_update(provider):
    inputs = TaskInputs(image_to_deploy="img:1", ingress="disabled", environment_variables="A=1 B='two words'")
    plan, _ = _resolve(inputs, provider)
    assert plan.optional_args == ("--env-vars", "A=1", "B=two words")

    provider.groups.add(RG)
    provider.apps.add((APP, RG))
    plan, _ = _resolve(inputs, provider)
    assert plan.optional_args == ("--replace-env-vars", "A=1", "B=two words")


def test_environment_variables_with_unbalanced_quote_fall_back_to_whitespace_split(provider):
    plan, _ = _resolve(
        TaskInputs(image_to_deploy="img:1", ingress="disabled", environment_variables="GREETING=it's A=1"),
        provider,
    )
    assert plan.optional_args == ("--env-vars", "GREETING=it's", "A=1")


def test_disabled_ingress_input_is_ignored_with_yaml_config(provider):
    provider.groups.add(RG)
    plan, actions = _resolve(TaskInputs(yaml_config_path="app.yaml", ingress="disabled"), provider)
    assert plan.ingress_enabled is True
    assert plan.optional_args == ()
    assert [a.kind.value for a in actions] == ["create-from-file"]


def test_registry_args_staged_for_new_app_with_full_credentials(provider):
    plan, _ = _resolve(
        TaskInputs(image_to_deploy="img:1", acr_name="myacr", acr_username="user", acr_password="pw", ingress="disabled"),
        provider,
    )
    assert plan.optional_args == (
        "--registry-server",
        "myacr.azurecr.io",
        "--registry-username",
        "user",
        "--registry-password",
        "pw",
    )


@pytest.mark.parametrize("username,password", [("user", None), (None, "pw"), (None, None)])
def test_registry_args_need_complete_credentials(provider, username, password):
    plan, _ = _resolve(
        TaskInputs(image_to_deploy="img:1", acr_name="myacr", acr_username=username, acr_password=password),
        provider,
    )
    assert "--registry-server" not in plan.optional_args


def test_yaml_only_suppresses_cli_defaults_and_environment_steps(provider):
    plan, _ = _resolve(
        TaskInputs(
            yaml_config_path="app.yaml",
            acr_name="myacr",
            acr_username="user",
            acr_password="pw",
            environment_variables="A=1",
        ),
        provider,
    )
    assert plan.should_only_use_yaml is True
    assert plan.image_to_build is None
    assert plan.image_to_deploy is None
    assert plan.optional_args == ()
    assert plan.container_app_environment is None
    assert plan.target_port is None
    assert plan.ingress is None
    assert plan.create_environment is False
    assert not provider.called("find_existing_environment")
    assert not provider.called("environment_exists")


def test_yaml_with_image_still_uses_yaml_properties(provider):
    plan, _ = _resolve(TaskInputs(yaml_config_path="app.yaml", image_to_deploy="img:1"), provider)
    assert plan.should_only_use_yaml is False
    assert plan.should_use_yaml_properties is True
    assert plan.image_to_deploy == "img:1"
    assert plan.optional_args == ()
    assert not provider.called("find_existing_environment")


def test_missing_resource_group_is_staged_with_default_region(provider):
    plan, _ = _resolve(TaskInputs(image_to_deploy="img:1"), provider)
    assert plan.create_resource_group is True
    assert plan.location == "westeurope"


def test_missing_resource_group_uses_explicit_location(provider):
    plan, _ = _resolve(TaskInputs(image_to_deploy="img:1", location="eastus"), provider)
    assert plan.location == "eastus"
    assert not provider.called("default_region")


def test_existing_resource_group_leaves_region_unresolved(provider):
    provider.groups.add(RG)
    plan, _ = _resolve(TaskInputs(image_to_deploy="img:1"), provider)
    assert plan.create_resource_group is False
    assert plan.location is None
    assert not provider.called("default_region")


def test_existing_environment_in_group_is_reused(provider):
    provider.groups.add(RG)
    provider.environments.add(("shared-env", RG))
    plan, _ = _resolve(TaskInputs(image_to_deploy="img:1"), provider)
    assert plan.container_app_environment == "shared-env"
    assert plan.discovered_existing_environment is True
    assert plan.create_environment is False
    assert not provider.called("environment_exists")


def test_explicit_environment_skips_discovery(provider):
    provider.groups.add(RG)
    provider.environments.add(("shared-env", RG))
    plan, _ = _resolve(TaskInputs(image_to_deploy="img:1", container_app_environment="mine"), provider)
    assert plan.container_app_environment == "mine"
    assert plan.create_environment is True
    assert not provider.called("find_existing_environment")


def test_existing_explicit_environment_is_not_recreated(provider):
    provider.groups.add(RG)
    provider.environments.add(("mine", RG))
    plan, _ = _resolve(TaskInputs(image_to_deploy="img:1", container_app_environment="mine"), provider)
    assert plan.create_environment is False


def test_existing_app_skips_environment_checks(provider):
    provider.groups.add(RG)
    provider.apps.add((APP, RG))
    plan, _ = _resolve(TaskInputs(image_to_deploy="img:1"), provider)
    assert plan.container_app_environment == f"{APP}-env"
    assert plan.create_environment is False
    assert not provider.called("find_existing_environment")
    assert not provider.called("environment_exists")


def test_resolving_twice_gives_identical_results(provider):
    inputs = TaskInputs(
        app_source_path="src",
        acr_name="myacr",
        acr_username="user",
        acr_password="pw",
        environment_variables="A=1",
    )
    first = _resolve(inputs, provider)
    second = _resolve(inputs, provider)
    assert first == second


def test_plan_repr_hides_registry_password():
    plan = replace(DeploymentPlan(), acr_password="s3cret")
    assert "s3cret" not in repr(plan)
