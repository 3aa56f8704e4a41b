"""Tests for processing a queued job end to end."""

import sys

import httpx
import pytest
from sqlalchemy.exc import OperationalError
from runner.src import worker
from runner.src.models.step import RunOutcome, StepStatus
from runner.src.services.report_store import InMemoryReportStore
from runner.src.services.step_runner import StepRunner

def job(tmp_path, steps, event_kind="pull_request", comment=True):
    return {
        "run_id": "run-1",
        "pipeline": "plan",
        "comment": comment,
        "steps": steps,
        "context": {
            "event_kind": event_kind,
            "source_ref": "add-rg",
            "target_ref": "main",
            "change_id": "user/infra#11",
        },
        "repo_info": {
            "repo_full_name": "user/infra",
            "local_path": str(tmp_path),
            "pr_number": 11,
        },
        "queued_at": "2024-01-01T00:00:00",
    }

def python_step(name, code, **kwargs):
    return {"name": name, "command": [sys.executable, "-c", code], **kwargs}

class RecordingPublisher:
    def __init__(self, fail=False):
        self.published = []
        self.fail = fail

    def publish(self, store, report, repo_full_name, pr_number):
        if self.fail:
            raise httpx.ConnectError("github unreachable")
        self.published.append((report.revision, repo_full_name, pr_number))
        return "1"

@pytest.fixture
def statuses(monkeypatch):
    recorded = {"run": [], "steps": [], "released": []}

    monkeypatch.setattr(worker, "update_run_status", lambda run_id, status, **kw: recorded["run"].append((status, kw.get("error"))))
    monkeypatch.setattr(worker, "record_step_result", lambda run_id, i, result: recorded["steps"].append((i, result.status)))
    monkeypatch.setattr(worker, "release_run", lambda claim_key, run_id: recorded["released"].append((claim_key, run_id)))
    monkeypatch.setattr(worker, "watch_for_cancel", lambda run_id, cancel_event, done: done.wait())
    monkeypatch.setattr(worker.settings, "workspace_root", "")
    monkeypatch.setattr(worker.settings, "report_partial_on_abort", True)
    return recorded

@pytest.fixture
def runner():
    return StepRunner(kill_grace_seconds=1.0, poll_interval=0.05)

def test_passing_pull_request_is_reported_and_published(tmp_path, statuses, runner):
    (tmp_path / "main.tf").write_text("x = 1\n")
    store = InMemoryReportStore()
    publisher = RecordingPublisher()
    steps = [
        python_step("fmt", "print('ok')"),
        python_step("plan", "print('No changes.')", halt_on_failure=False, when="pull_request"),
    ]

    run = worker.process_job(job(tmp_path, steps), runner, store, publisher)

    assert run.outcome == RunOutcome.PASSED
    assert statuses["run"][0][0] == "running"
    assert statuses["run"][-1] == ("passed", None)
    assert statuses["steps"] == [(0, StepStatus.SUCCESS), (1, StepStatus.SUCCESS)]
    assert statuses["released"] == [("user/infra#11", "run-1")]

    report = store.get("user/infra#11")
    assert report.body.splitlines()[0] == "Passed"
    assert "No changes." in report.body
    assert publisher.published == [(1, "user/infra", 11)]

def test_workdir_is_a_private_copy(tmp_path, statuses, runner):
    (tmp_path / "main.tf").write_text("x   = 1\n")
    steps = [python_step("fmt", "open('main.tf', 'w').write('x = 1\\n')")]

    worker.process_job(job(tmp_path, steps), runner, InMemoryReportStore(), None)

    assert (tmp_path / "main.tf").read_text() == "x   = 1\n"

def test_push_does_not_publish(tmp_path, statuses, runner):
    publisher = RecordingPublisher()
    steps = [python_step("fmt", "print('ok')")]

    worker.process_job(job(tmp_path, steps, event_kind="push", comment=False), runner, InMemoryReportStore(), publisher)

    assert publisher.published == []

def test_launch_error_aborts_run(tmp_path, statuses, runner):
    store = InMemoryReportStore()
    steps = [
        python_step("fmt", "print('ok')"),
        {"name": "init", "command": ["no-such-terraform-binary", "init"]},
        python_step("validate", "print('ok')"),
    ]

    run = worker.process_job(job(tmp_path, steps), runner, store, RecordingPublisher())

    assert run.outcome == RunOutcome.ABORTED
    status, error = statuses["run"][-1]
    assert status == "aborted"
    assert "could not be launched" in error
    # fmt completed, so a partial report is kept
    assert store.get("user/infra#11").body.startswith("Aborted")

def test_publish_failure_does_not_change_outcome(tmp_path, statuses, runner):
    store = InMemoryReportStore()
    steps = [python_step("fmt", "import sys; sys.exit(3)")]

    run = worker.process_job(job(tmp_path, steps), runner, store, RecordingPublisher(fail=True))

    assert run.outcome == RunOutcome.FAILED
    assert statuses["run"][-1] == ("failed", None)
    assert store.get("user/infra#11").revision == 1

def test_missing_source_tree_aborts(tmp_path, statuses, runner):
    data = job(tmp_path / "gone", [python_step("fmt", "print('ok')")])

    assert worker.process_job(data, runner, InMemoryReportStore(), None) is None
    assert statuses["run"][-1][0] == "aborted"

def test_step_persistence_errors_do_not_stop_the_run(tmp_path, statuses, runner, monkeypatch):
    def database_down(run_id, i, result):
        raise OperationalError("UPDATE pipeline_steps", {}, Exception("connection refused"))

    monkeypatch.setattr(worker, "record_step_result", database_down)
    store = InMemoryReportStore()
    steps = [python_step("fmt", "print('ok')"), python_step("validate", "print('ok')")]

    run = worker.process_job(job(tmp_path, steps), runner, store, None)

    assert run.outcome == RunOutcome.PASSED
    assert [r.status for r in run.results] == [StepStatus.SUCCESS, StepStatus.SUCCESS]
    assert statuses["run"][-1] == ("passed", None)
    assert store.get("user/infra#11").revision == 1

def test_push_releases_its_branch_claim(tmp_path, statuses, runner):
    data = job(tmp_path, [python_step("fmt", "print('ok')")], event_kind="push", comment=False)
    data["repo_info"]["claim_key"] = "user/infra:refs/heads/add-rg"

    worker.process_job(data, runner, InMemoryReportStore(), None)

    assert statuses["released"] == [("user/infra:refs/heads/add-rg", "run-1")]
