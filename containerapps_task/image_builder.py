#!/usr/bin/env python3
"""Build runnable application images with the pack CLI (Oryx++ builder) or docker.

The builder path is used when no Dockerfile is provided or found in the
application source. `install_build_tool()` downloads the pack CLI release
archive and unpacks it into a tools directory; later `pack` calls use that
binary.
"""

from __future__ import annotations

import io
import os
import platform
import tarfile
import tempfile
import zipfile
from pathlib import Path

import requests

from containerapps_task import task_log
from containerapps_task.azure_utils import run_command
from containerapps_task.task_inputs import AgentVarsEnum

PACK_VERSION = "v0.27.0"
PACK_RELEASE_URL = "https://github.com/buildpacks/pack/releases/download/{version}/pack-{version}-{platform}"
ORYX_BUILDER_IMAGE = "mcr.microsoft.com/oryx/builder:20230208.1"
ORYX_RUN_IMAGE_PREFIX = "mcr.microsoft.com/oryx"
CALLER_ID = "azure-pipelines-rc-v1"
DOWNLOAD_TIMEOUT_SECONDS = 120


def pack_archive_name(system: str | None = None) -> str:
    system = (system or platform.system()).lower()
    if system == "windows":
        return "windows.zip"
    if system == "darwin":
        return "macos.tgz"
    return "linux.tgz"


def pack_download_url(*, version: str = PACK_VERSION, system: str | None = None) -> str:
    return PACK_RELEASE_URL.format(version=version, platform=pack_archive_name(system))


def default_tools_dir() -> Path:
    base = (
        os.getenv(AgentVarsEnum.TOOLS_DIRECTORY.value)
        or os.getenv(AgentVarsEnum.TEMP_DIRECTORY.value)
        or tempfile.gettempdir()
    )
    return Path(base) / "pack" / PACK_VERSION


def extract_pack_binary(archive: bytes, *, archive_name: str, dest_dir: Path) -> Path:
    dest_dir.mkdir(parents=True, exist_ok=True)
    binary = "pack.exe" if archive_name.endswith(".zip") else "pack"
    target = dest_dir / binary

    if archive_name.endswith(".zip"):
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            target.write_bytes(zf.read(binary))
    else:
        with tarfile.open(fileobj=io.BytesIO(archive), mode="r:gz") as tf:
            member = tf.extractfile(binary)
            if member is None:
                raise RuntimeError(f"'{binary}' not found in pack archive")
            target.write_bytes(member.read())

    target.chmod(0o755)
    return target


def build_pack_build_cmd(
    *,
    pack: str,
    image: str,
    source_path: str,
    runtime_stack: str | None,
    disable_telemetry: bool,
) -> list[str]:
    cmd = [pack, "build", image, "--path", source_path, "--builder", ORYX_BUILDER_IMAGE]
    if runtime_stack:
        cmd.extend(["--run-image", f"{ORYX_RUN_IMAGE_PREFIX}/{runtime_stack}"])
    cmd.extend(["--env", f"CALLER_ID={CALLER_ID}"])
    if disable_telemetry:
        cmd.extend(["--env", "ORYX_DISABLE_TELEMETRY=true"])
    return cmd


def build_docker_build_cmd(*, image: str, dockerfile: str, context_dir: str) -> list[str]:
    return ["docker", "build", "--tag", image, "--file", dockerfile, context_dir]


class PackImageBuilder:
    def __init__(self, *, disable_telemetry: bool = False, tools_dir: Path | None = None):
        self.disable_telemetry = disable_telemetry
        self.tools_dir = tools_dir or default_tools_dir()
        self.pack_path: str = "pack"

    def install_build_tool(self) -> None:
        url = pack_download_url()
        task_log.info(f"Installing pack CLI {PACK_VERSION} from {url}", tag="pack")
        resp = requests.get(url, timeout=DOWNLOAD_TIMEOUT_SECONDS)
        resp.raise_for_status()
        target = extract_pack_binary(resp.content, archive_name=url, dest_dir=self.tools_dir)
        self.pack_path = str(target)
        task_log.info(f"pack CLI installed at {target}", tag="pack")

    def set_default_builder(self) -> None:
        task_log.info(f"Setting '{ORYX_BUILDER_IMAGE}' as the default builder", tag="pack")
        run_command([self.pack_path, "config", "default-builder", ORYX_BUILDER_IMAGE], tag="pack")

    def build_image(self, tag: str, source_path: str, stack: str | None = None) -> None:
        task_log.info(f"Building image '{tag}' from '{source_path}' with the Oryx++ builder", tag="pack")
        run_command(
            build_pack_build_cmd(
                pack=self.pack_path,
                image=tag,
                source_path=source_path,
                runtime_stack=stack,
                disable_telemetry=self.disable_telemetry,
            ),
            tag="pack",
        )

    def build_image_from_dockerfile(self, tag: str, source_path: str, dockerfile_path: str) -> None:
        task_log.info(f"Building image '{tag}' from Dockerfile '{dockerfile_path}'", tag="docker")
        run_command(build_docker_build_cmd(image=tag, dockerfile=dockerfile_path, context_dir=source_path), tag="docker")
