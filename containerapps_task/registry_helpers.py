#!/usr/bin/env python3
"""Azure Container Registry login and image push."""

from __future__ import annotations

from containerapps_task import task_log
from containerapps_task.azure_utils import run_az_command, run_command
from containerapps_task.plan import registry_server

# `az acr login --expose-token` tokens are used with this fixed username.
ACR_TOKEN_USERNAME = "00000000-0000-0000-0000-000000000000"


def build_docker_login_cmd(*, server: str, username: str) -> list[str]:
    return ["docker", "login", "--username", username, "--password-stdin", server]


def build_docker_push_cmd(*, image: str) -> list[str]:
    return ["docker", "push", image]


class AcrRegistryClient:
    def login_with_password(self, registry: str, username: str, password: str) -> None:
        server = registry_server(registry)
        task_log.info(f"Logging in to ACR '{server}' with username and password", tag="acr")
        run_command(build_docker_login_cmd(server=server, username=username), input_text=password, tag="docker")

    def login_with_access_token(self, registry: str) -> None:
        server = registry_server(registry)
        task_log.info(f"Logging in to ACR '{server}' with an access token", tag="acr")
        token = run_az_command(
            ["acr", "login", "--name", registry, "--expose-token", "--query", "accessToken", "--output", "tsv"],
            verbose=False,
        )
        token = str(token or "").strip()
        if not token:
            raise RuntimeError(f"Unable to get an access token for ACR '{registry}'")
        run_command(build_docker_login_cmd(server=server, username=ACR_TOKEN_USERNAME), input_text=token, tag="docker")

    def push(self, tag: str) -> None:
        task_log.info(f"Pushing image '{tag}'", tag="acr")
        run_command(build_docker_push_cmd(image=tag), tag="docker")
