#!/usr/bin/env python3
"""Shared Azure CLI / subprocess utilities."""

from __future__ import annotations

import json
import shutil
import subprocess
import sys
from typing import Any

from containerapps_task.errors import ExternalCallError


def _print_failure(result: subprocess.CompletedProcess) -> None:
    if result.stdout:
        print(str(result.stdout).rstrip(), file=sys.stderr)
    if result.stderr:
        print(str(result.stderr).rstrip(), file=sys.stderr)
    sys.stderr.flush()


def run_command(
    cmd: list[str],
    *,
    capture_output: bool = False,
    input_text: str | None = None,
    verbose: bool = True,
    tag: str | None = None,
) -> str:
    """Run a CLI command (docker, pack, ...) and raise ExternalCallError on failure.

    Returns captured stdout (stripped) when `capture_output` is set, else "".
    """
    if verbose:
        print(f"[{tag or cmd[0]}] {' '.join(cmd)}")

    if not shutil.which(cmd[0]):
        raise RuntimeError(f"'{cmd[0]}' not found on PATH. Please install it.")

    result = subprocess.run(
        cmd,
        input=input_text,
        stdout=subprocess.PIPE if capture_output else None,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )

    if result.returncode != 0:
        _print_failure(result)
        raise ExternalCallError(result.returncode, cmd, output=result.stdout, stderr=result.stderr)

    if capture_output and result.stdout:
        return result.stdout.strip()
    return ""


def run_az_command(
    args: list[str],
    *,
    capture_output: bool = True,
    ignore_errors: bool = False,
    verbose: bool = True,
    input_text: str | None = None,
) -> Any:
    """Run an azure cli command.

    Output is JSON-decoded when possible, otherwise returned as a stripped string.
    """
    cmd = ["az"] + args
    if verbose:
        print(f"[az] {' '.join(cmd)}")

    if not shutil.which("az"):
        if ignore_errors:
            return None
        raise RuntimeError("Azure CLI (az) not found. Please install it.")

    result = subprocess.run(
        cmd,
        input=input_text,
        stdout=subprocess.PIPE if capture_output else None,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )

    if result.returncode != 0:
        if ignore_errors:
            return None
        _print_failure(result)
        raise ExternalCallError(result.returncode, cmd, output=result.stdout, stderr=result.stderr)

    if capture_output and result.stdout:
        out = result.stdout.strip()
        if not out:
            return None
        try:
            return json.loads(out)
        except json.JSONDecodeError:
            return out

    return None


def az_succeeds(args: list[str]) -> bool:
    """Return True when the az command exits 0 (used for existence checks)."""
    cmd = ["az"] + args
    print(f"[az] {' '.join(cmd)}")
    if not shutil.which("az"):
        raise RuntimeError("Azure CLI (az) not found. Please install it.")
    result = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, check=False)
    return result.returncode == 0


def set_dynamic_extension_install() -> None:
    """Let the Azure CLI install missing extensions (containerapp) without prompting."""
    run_az_command(
        ["config", "set", "extension.use_dynamic_install=yes_without_prompt"],
        capture_output=False,
    )
