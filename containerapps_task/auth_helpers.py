#!/usr/bin/env python3
"""Log in to / out of the Azure CLI with an Azure Resource Manager service connection.

The agent exposes the connection's details as environment variables:
- ENDPOINT_AUTH_SCHEME_<ID>                     ServicePrincipal | ManagedServiceIdentity
- ENDPOINT_AUTH_PARAMETER_<ID>_<PARAM>          service principal id/key/certificate, tenant id
- ENDPOINT_DATA_<ID>_SUBSCRIPTIONID             subscription to select after login
- ENDPOINT_DATA_<ID>_ENVIRONMENT                cloud name (AzureCloud, AzureUSGovernment, ...)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from containerapps_task import task_log
from containerapps_task.azure_utils import run_az_command, set_dynamic_extension_install
from containerapps_task.errors import InputValidationError

SCHEME_SERVICE_PRINCIPAL = "serviceprincipal"
SCHEME_MANAGED_IDENTITY = "managedserviceidentity"
AUTH_TYPE_CERTIFICATE = "spncertificate"
DEFAULT_CLOUD = "AzureCloud"


def _endpoint_key(connection: str) -> str:
    return connection.replace(".", "_").replace(" ", "_").upper()


@dataclass(frozen=True)
class ServiceConnection:
    name: str
    scheme: str
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    certificate: str = field(default="", repr=False)
    subscription_id: str = ""
    cloud: str = DEFAULT_CLOUD

    @property
    def uses_certificate(self) -> bool:
        return bool(self.certificate)


def read_service_connection(connection: str, env: Mapping[str, str] | None = None) -> ServiceConnection:
    env = os.environ if env is None else env
    key = _endpoint_key(connection)

    def param(name: str) -> str:
        return str(env.get(f"ENDPOINT_AUTH_PARAMETER_{key}_{name}") or "").strip()

    def data(name: str) -> str:
        return str(env.get(f"ENDPOINT_DATA_{key}_{name}") or "").strip()

    scheme = str(env.get(f"ENDPOINT_AUTH_SCHEME_{key}") or "").strip().lower()
    problems: list[str] = []
    if scheme not in {SCHEME_SERVICE_PRINCIPAL, SCHEME_MANAGED_IDENTITY}:
        problems.append(f"Unsupported or missing authentication scheme '{scheme}' for service connection '{connection}'")

    conn = ServiceConnection(
        name=connection,
        scheme=scheme,
        tenant_id=param("TENANTID"),
        client_id=param("SERVICEPRINCIPALID"),
        client_secret=param("SERVICEPRINCIPALKEY"),
        certificate=param("SERVICEPRINCIPALCERTIFICATE") if param("AUTHENTICATIONTYPE").lower() == AUTH_TYPE_CERTIFICATE else "",
        subscription_id=data("SUBSCRIPTIONID"),
        cloud=data("ENVIRONMENT") or DEFAULT_CLOUD,
    )

    if scheme == SCHEME_SERVICE_PRINCIPAL:
        if not conn.client_id:
            problems.append("Service principal id is missing")
        if not conn.tenant_id:
            problems.append("Tenant id is missing")
        if not (conn.client_secret or conn.certificate):
            problems.append("Service principal key or certificate is missing")

    if problems:
        raise InputValidationError(context=f"service connection ({connection})", problems=problems)
    return conn


class ServiceConnectionAuthenticator:
    def __init__(self, connection: str, env: Mapping[str, str] | None = None):
        self.connection = connection
        self._env = env
        self.logged_in = False
        self._cert_path: Path | None = None

    def login(self) -> None:
        conn = read_service_connection(self.connection, self._env)
        set_dynamic_extension_install()
        task_log.info(f"Logging in to Azure with service connection '{conn.name}'", tag="az")

        if conn.cloud != DEFAULT_CLOUD:
            run_az_command(["cloud", "set", "--name", conn.cloud], capture_output=False)

        if conn.scheme == SCHEME_MANAGED_IDENTITY:
            run_az_command(["login", "--identity", "--output", "none"], capture_output=False)
        else:
            credential = ["--password", conn.client_secret]
            if conn.uses_certificate:
                self._cert_path = self._write_certificate(conn.certificate)
                credential = ["--certificate", str(self._cert_path)]
            # Not verbose: the command line carries the secret.
            run_az_command(
                [
                    "login",
                    "--service-principal",
                    "--username",
                    conn.client_id,
                    *credential,
                    "--tenant",
                    conn.tenant_id,
                    "--allow-no-subscriptions",
                    "--output",
                    "none",
                ],
                capture_output=False,
                verbose=False,
            )
        self.logged_in = True

        if conn.subscription_id:
            run_az_command(["account", "set", "--subscription", conn.subscription_id], capture_output=False)

    def logout(self) -> None:
        if self.logged_in:
            run_az_command(["account", "clear"], capture_output=False, ignore_errors=True)
            self.logged_in = False
        if self._cert_path is not None:
            self._cert_path.unlink(missing_ok=True)
            self._cert_path = None

    @staticmethod
    def _write_certificate(pem: str) -> Path:
        fd, name = tempfile.mkstemp(suffix=".pem")
        with os.fdopen(fd, "w") as f:
            f.write(pem)
        return Path(name)
