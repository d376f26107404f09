"""Task output helpers.

Plain progress lines are tagged (`[containerapp] ...`) like the rest of the
deploy tooling. Warnings, errors, debug lines and the final task result use the
Azure Pipelines logging commands so the agent picks them up.
"""

from __future__ import annotations

import sys
from enum import Enum


class TaskResult(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


def _escape(msg: str) -> str:
    # Logging commands are line based.
    return str(msg).replace("\r", "%0D").replace("\n", "%0A")


def info(msg: str, *, tag: str = "containerapp") -> None:
    print(f"[{tag}] {msg}")


def debug(msg: str) -> None:
    print(f"##vso[task.debug]{_escape(msg)}")


def warning(msg: str) -> None:
    print(f"##vso[task.logissue type=warning]{_escape(msg)}")


def error(msg: str) -> None:
    print(f"##vso[task.logissue type=error]{_escape(msg)}")
    print(f"[error] {msg}", file=sys.stderr)
    sys.stderr.flush()


def set_result(result: TaskResult, message: str = "") -> None:
    print(f"##vso[task.complete result={result.value};]{_escape(message)}")
