"""Tests for pipeline gating and ordering."""

import threading

import pytest
from runner.src.models.step import (
    EventKind,
    RunOutcome,
    StepConfig,
    StepReason,
    StepResult,
    StepStatus,
    TriggerContext,
)
from runner.src.services.executor import PipelineConfigError, execute_pipeline
from runner.src.services.step_runner import LaunchError

PUSH = TriggerContext(event_kind=EventKind.PUSH, source_ref="feature", target_ref="feature", change_id="user/infra@abc")
PR = TriggerContext(event_kind=EventKind.PULL_REQUEST, source_ref="feature", target_ref="main", change_id="user/infra#5")

class SpyRunner:
    """Stands in for StepRunner; returns scripted results."""

    def __init__(self, outcomes=None, stdout=None, launch_error_on=None, cancel_on=None):
        self.outcomes = outcomes or {}
        self.stdout = stdout or {}
        self.launch_error_on = launch_error_on
        self.cancel_on = cancel_on
        self.calls = []

    def run(self, step, workdir, context, timeout, cancel_event=None):
        self.calls.append((step.name, timeout))

        if step.name == self.launch_error_on:
            raise LaunchError(step.name, "No such file or directory: 'terraform'")
        if step.name == self.cancel_on:
            cancel_event.set()
            return StepResult.skipped(step.name, StepReason.CANCELLED)

        exit_code = self.outcomes.get(step.name, 0)
        return StepResult(
            step_name=step.name,
            status=StepStatus.SUCCESS if exit_code == 0 else StepStatus.FAILED,
            reason=None if exit_code == 0 else StepReason.EXIT_CODE,
            exit_code=exit_code,
            stdout=self.stdout.get(step.name, ""),
            duration_ms=5,
        )

def terraform_steps():
    return [
        StepConfig(name="fmt", command="terraform fmt -check"),
        StepConfig(name="init", command="terraform init -input=false"),
        StepConfig(name="validate", command="terraform validate"),
        StepConfig(name="plan", command="terraform plan", halt_on_failure=False, when="pull_request"),
    ]

def statuses(run):
    return [r.status for r in run.results]

def test_push_skips_plan_and_passes():
    runner = SpyRunner()
    run = execute_pipeline(terraform_steps(), PUSH, runner, "/tmp/work", default_timeout=60)

    assert statuses(run) == [StepStatus.SUCCESS] * 3 + [StepStatus.SKIPPED]
    assert run.results[3].reason == StepReason.CONDITION
    assert run.outcome == RunOutcome.PASSED
    assert [name for name, _ in runner.calls] == ["fmt", "init", "validate"]

def test_condition_false_never_invokes_runner():
    steps = [StepConfig(name="plan", command="terraform plan", when="pull_request")]
    runner = SpyRunner()
    run = execute_pipeline(steps, PUSH, runner, "/tmp/work", default_timeout=60)

    assert len(runner.calls) == 0
    assert run.results[0].status == StepStatus.SKIPPED
    assert run.results[0].exit_code is None

def test_fmt_failure_on_push_halts_everything():
    runner = SpyRunner(outcomes={"fmt": 3})
    run = execute_pipeline(terraform_steps(), PUSH, runner, "/tmp/work", default_timeout=60)

    assert statuses(run) == [StepStatus.FAILED, StepStatus.SKIPPED, StepStatus.SKIPPED, StepStatus.SKIPPED]
    assert [r.reason for r in run.results[1:]] == [StepReason.HALTED] * 3
    assert run.outcome == RunOutcome.FAILED
    assert len(runner.calls) == 1

@pytest.mark.parametrize("failing_index", [0, 1, 2])
def test_halting_step_stops_after_exactly_i_plus_one_calls(failing_index):
    steps = terraform_steps()
    runner = SpyRunner(outcomes={steps[failing_index].name: 1})
    run = execute_pipeline(steps, PR, runner, "/tmp/work", default_timeout=60)

    assert len(run.results) == len(steps)
    assert len(runner.calls) == failing_index + 1
    assert run.outcome == RunOutcome.FAILED
    assert all(r.status == StepStatus.SKIPPED for r in run.results[failing_index + 1:])

def test_non_halting_failure_keeps_going():
    steps = [
        StepConfig(name="lint", command="tflint", halt_on_failure=False),
        StepConfig(name="validate", command="terraform validate"),
    ]
    runner = SpyRunner(outcomes={"lint": 2})
    run = execute_pipeline(steps, PUSH, runner, "/tmp/work", default_timeout=60)

    assert statuses(run) == [StepStatus.FAILED, StepStatus.SUCCESS]
    assert run.outcome == RunOutcome.FAILED

def test_pull_request_runs_plan():
    runner = SpyRunner(stdout={"plan": "No changes. Your infrastructure matches the configuration."})
    run = execute_pipeline(terraform_steps(), PR, runner, "/tmp/work", default_timeout=60)

    assert statuses(run) == [StepStatus.SUCCESS] * 4
    assert run.outcome == RunOutcome.PASSED
    assert "No changes" in run.results[3].stdout

def test_results_follow_step_order():
    runner = SpyRunner()
    steps = terraform_steps()
    run = execute_pipeline(steps, PR, runner, "/tmp/work", default_timeout=60)

    assert [r.step_name for r in run.results] == [s.name for s in steps]

def test_step_timeout_overrides_default():
    steps = [
        StepConfig(name="fmt", command="terraform fmt", timeout=30),
        StepConfig(name="init", command="terraform init"),
    ]
    runner = SpyRunner()
    execute_pipeline(steps, PUSH, runner, "/tmp/work", default_timeout=600)

    assert runner.calls == [("fmt", 30), ("init", 600)]

def test_launch_error_aborts_with_partial_run():
    runner = SpyRunner(launch_error_on="init")

    with pytest.raises(LaunchError) as excinfo:
        execute_pipeline(terraform_steps(), PR, runner, "/tmp/work", default_timeout=60)

    run = excinfo.value.run
    assert run.outcome == RunOutcome.ABORTED
    assert len(run.results) == 4
    assert run.results[0].status == StepStatus.SUCCESS
    assert all(r.status == StepStatus.SKIPPED for r in run.results[1:])
    assert run.completed_steps == 1

def test_cancel_before_start_aborts_without_running():
    cancel = threading.Event()
    cancel.set()
    runner = SpyRunner()
    run = execute_pipeline(terraform_steps(), PR, runner, "/tmp/work", default_timeout=60, cancel_event=cancel)

    assert runner.calls == []
    assert run.outcome == RunOutcome.ABORTED
    assert run.completed_steps == 0
    assert all(r.reason == StepReason.CANCELLED for r in run.results)

def test_cancel_during_step_aborts_rest():
    cancel = threading.Event()
    runner = SpyRunner(cancel_on="validate")
    run = execute_pipeline(terraform_steps(), PR, runner, "/tmp/work", default_timeout=60, cancel_event=cancel)

    assert run.outcome == RunOutcome.ABORTED
    assert len(run.results) == 4
    assert run.completed_steps == 2
    assert [name for name, _ in runner.calls] == ["fmt", "init", "validate"]

def test_duplicate_step_names_rejected():
    steps = [
        StepConfig(name="fmt", command="terraform fmt"),
        StepConfig(name="fmt", command="terraform fmt -check"),
    ]
    with pytest.raises(PipelineConfigError):
        execute_pipeline(steps, PUSH, SpyRunner(), "/tmp/work", default_timeout=60)

def test_step_callback_sees_every_result():
    seen = []
    runner = SpyRunner(outcomes={"init": 1})
    execute_pipeline(
        terraform_steps(), PR, runner, "/tmp/work", default_timeout=60,
        on_step_finished=lambda i, result: seen.append((i, result.status)),
    )

    assert seen == [
        (0, StepStatus.SUCCESS),
        (1, StepStatus.FAILED),
        (2, StepStatus.SKIPPED),
        (3, StepStatus.SKIPPED),
    ]

def test_when_terms():
    step = StepConfig(name="plan", command="terraform plan", when=["push", "target:main"])
    assert step.should_run(PR) is True
    assert step.should_run(PUSH) is True
    assert StepConfig(name="x", command="true", when="never").should_run(PR) is False
    assert StepConfig(name="x", command="true", when="source:feature").should_run(PUSH) is True

def test_step_models_use_frozen_model_config():
    assert StepConfig.model_config["frozen"] is True
    assert TriggerContext.model_config["frozen"] is True
