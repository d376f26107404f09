"""Error types raised by the Container Apps task."""

from __future__ import annotations

import subprocess


class TaskError(Exception):
    pass


class InputValidationError(TaskError, ValueError):
    def __init__(self, *, context: str, problems: list[str]):
        super().__init__("; ".join(problems))
        self.context = context
        self.problems = problems

    def format(self) -> str:
        lines = [f"[inputs] validation failed: {self.context}"]
        for p in self.problems:
            lines.append(f"- {p}")
        return "\n".join(lines)


class ValidationError(TaskError, ValueError):
    """Raised before any side effect when the inputs cannot produce a plan."""


class MissingRegistryError(ValidationError):
    def __init__(self) -> None:
        super().__init__("The 'acrName' input must be provided when the 'appSourcePath' input is provided.")


class MissingSourceError(ValidationError):
    def __init__(self) -> None:
        super().__init__(
            "One of the 'appSourcePath', 'imageToDeploy' or 'yamlConfigPath' inputs must be provided."
        )


class ExternalCallError(subprocess.CalledProcessError):
    """A CLI call (az, docker, pack) exited non-zero."""

    def __str__(self) -> str:
        cmd = self.cmd if isinstance(self.cmd, str) else " ".join(str(c) for c in self.cmd)
        msg = f"Command '{cmd}' failed with exit code {self.returncode}."
        err = (self.stderr or "").strip()
        if err:
            msg += f" {err.splitlines()[-1]}"
        return msg


class TelemetryError(TaskError):
    pass
