from runner.src.services.executor import execute_pipeline, PipelineConfigError
from runner.src.services.step_runner import StepRunner, LaunchError
from runner.src.services.report_builder import render_report, upsert_report, should_report
from runner.src.services.report_store import (
    ReportStore,
    InMemoryReportStore,
    SqlReportStore,
    ReportStoreConflict,
)

__all__ = [
    "execute_pipeline",
    "PipelineConfigError",
    "StepRunner",
    "LaunchError",
    "render_report",
    "upsert_report",
    "should_report",
    "ReportStore",
    "InMemoryReportStore",
    "SqlReportStore",
    "ReportStoreConflict",
]
