"""Task telemetry: scenario, result and duration of a task run."""

from __future__ import annotations

import time
from enum import Enum

from containerapps_task import task_log
from containerapps_task.azure_utils import run_command
from containerapps_task.capabilities import TelemetrySink
from containerapps_task.container_app_helpers import ORYX_CLI_IMAGE
from containerapps_task.errors import TelemetryError

TELEMETRY_EVENT_NAME = "ContainerAppsPipelinesTaskRC"


class Scenario(str, Enum):
    NOT_APPLICABLE = "N/A"
    USED_BUILDER = "used-builder"
    USED_DOCKERFILE = "used-dockerfile"
    USED_IMAGE = "used-image"


class Outcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def build_oryx_telemetry_cmd(*, scenario: str, result: str, duration_ms: int) -> list[str]:
    return [
        "docker",
        "run",
        "--rm",
        ORYX_CLI_IMAGE,
        "oryx",
        "telemetry",
        "--event-name",
        TELEMETRY_EVENT_NAME,
        "--processing-time",
        str(duration_ms),
        "--property",
        f"result={result}",
        "--property",
        f"scenario={scenario}",
    ]


class OryxTelemetrySink:
    def record_outcome(self, scenario: str, result: str, duration_ms: int) -> None:
        run_command(
            build_oryx_telemetry_cmd(scenario=scenario, result=result, duration_ms=duration_ms),
            tag="telemetry",
        )


class TelemetryRecorder:
    """Tracks the task outcome and sends it once, at the end of the run.

    The result stays `failed` unless the run explicitly succeeds.
    """

    def __init__(self, disable_telemetry: bool, sink: TelemetrySink | None = None, *, clock=time.monotonic):
        self.disable_telemetry = disable_telemetry
        self.sink = sink or OryxTelemetrySink()
        self.scenario = Scenario.NOT_APPLICABLE
        self.result = Outcome.FAILED
        self.error_message: str | None = None
        self._clock = clock
        self._started = clock()

    def set_scenario(self, scenario: Scenario) -> None:
        self.scenario = scenario

    def set_successful_result(self) -> None:
        self.result = Outcome.SUCCEEDED
        self.error_message = None

    def set_failed_result(self, message: str) -> None:
        self.result = Outcome.FAILED
        self.error_message = message

    def elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    def send(self) -> None:
        duration_ms = self.elapsed_ms()
        if self.disable_telemetry:
            return

        task_log.debug("Telemetry enabled; logging metadata about task result, length and scenario targeted.")
        try:
            self.sink.record_outcome(self.scenario.value, self.result.value, duration_ms)
        except Exception as e:
            task_log.error(f"Failed to log telemetry: {e}")
            raise TelemetryError(f"Failed to log telemetry: {e}") from e
