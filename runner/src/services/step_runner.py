"""
Run a single verification step as a local process.
"""

import logging
import os
import signal
import subprocess
import threading
import time
from typing import Dict, Optional, Tuple

from runner.src.models.step import (
    StepConfig,
    StepReason,
    StepResult,
    StepStatus,
    TriggerContext,
)

logger = logging.getLogger(__name__)

class LaunchError(Exception):
    """Raised when a step's process could not be started at all."""

    def __init__(self, step_name: str, message: str):
        super().__init__(f"Step '{step_name}' could not be launched: {message}")
        self.step_name = step_name
        self.message = message
        self.run = None

class StepRunner:
    """
    Launches step commands with subprocess and captures their result.

    A non-zero exit is a failed StepResult, never an exception. Only a
    process that cannot be started raises LaunchError.
    """

    def __init__(
        self,
        kill_grace_seconds: float = 5.0,
        poll_interval: float = 0.1,
        base_env: Optional[Dict[str, str]] = None,
    ):
        self.kill_grace_seconds = kill_grace_seconds
        self.poll_interval = poll_interval
        self.base_env = dict(os.environ if base_env is None else base_env)

    def build_env(self, step: StepConfig, context: TriggerContext) -> Dict[str, str]:
        env = dict(self.base_env)
        env["TF_IN_AUTOMATION"] = "1"
        env["PLANGATE_CHANGE_ID"] = context.change_id
        env["PLANGATE_EVENT_KIND"] = context.event_kind.value
        env["PLANGATE_SOURCE_REF"] = context.source_ref
        env["PLANGATE_TARGET_REF"] = context.target_ref
        env["PLANGATE_STEP_NAME"] = step.name
        env.update(step.env)
        return env

    def run(
        self,
        step: StepConfig,
        workdir: str,
        context: TriggerContext,
        timeout: float,
        cancel_event: Optional[threading.Event] = None,
    ) -> StepResult:
        """
        Run `step` in `workdir` and wait for it, at most `timeout` seconds.
        """
        argv = step.render_command(context)
        if not argv:
            raise LaunchError(step.name, "empty command")

        logger.info(f"Running step {step.name}: {' '.join(argv)}")
        started = time.monotonic()

        try:
            proc = subprocess.Popen(
                argv,
                cwd=workdir,
                env=self.build_env(step, context),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                # Own process group, so timeout and cancel reach forked children too
                start_new_session=True,
            )
        except OSError as e:
            raise LaunchError(step.name, str(e)) from e

        deadline = started + timeout
        reason = None

        while True:
            try:
                stdout, stderr = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    reason = StepReason.CANCELLED
                elif time.monotonic() >= deadline:
                    reason = StepReason.TIMEOUT
                else:
                    continue
                stdout, stderr = self._terminate(proc)
                break

        duration_ms = int((time.monotonic() - started) * 1000)

        if reason == StepReason.CANCELLED:
            logger.warning(f"Step {step.name} cancelled after {duration_ms}ms")
            return StepResult(
                step_name=step.name,
                status=StepStatus.SKIPPED,
                reason=StepReason.CANCELLED,
                duration_ms=duration_ms,
            )

        if reason == StepReason.TIMEOUT:
            logger.error(f"Step {step.name} timed out after {timeout}s")
            return StepResult(
                step_name=step.name,
                status=StepStatus.FAILED,
                reason=StepReason.TIMEOUT,
                exit_code=proc.returncode,
                stdout=stdout or "",
                stderr=stderr or "",
                duration_ms=duration_ms,
            )

        if proc.returncode == 0:
            status = StepStatus.SUCCESS
        else:
            status = StepStatus.FAILED
            logger.info(f"Step {step.name} exited with code {proc.returncode}")

        return StepResult(
            step_name=step.name,
            status=status,
            reason=None if status == StepStatus.SUCCESS else StepReason.EXIT_CODE,
            exit_code=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration_ms=duration_ms,
        )

    def _terminate(self, proc: subprocess.Popen) -> Tuple[str, str]:
        """
        SIGTERM the step's process group, then SIGKILL once the grace period
        runs out. Never waits longer than two grace periods.
        """
        self._signal_group(proc, signal.SIGTERM)
        try:
            return proc.communicate(timeout=self.kill_grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning(f"Process group {proc.pid} ignored SIGTERM, killing")

        self._signal_group(proc, signal.SIGKILL)
        try:
            return proc.communicate(timeout=self.kill_grace_seconds)
        except subprocess.TimeoutExpired:
            # A descendant left the group and still holds the pipes
            logger.error(f"Output of process {proc.pid} still open after SIGKILL, abandoning it")
            for stream in (proc.stdout, proc.stderr):
                if stream is not None:
                    stream.close()
            proc.wait()
            return "", ""

    @staticmethod
    def _signal_group(proc: subprocess.Popen, sig: int):
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass
