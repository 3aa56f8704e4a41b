from api.src.services.github import (
    verify_signature,
    parse_push_payload,
    parse_pull_request_payload,
    build_trigger_context,
    supersede_key,
)
from api.src.services.pipeline_parser import (
    parse_pipeline_catalog,
    parse_catalog_dict,
    load_pipeline_catalog,
    get_pipeline_catalog,
    PipelineConfigError,
    PipelineDefinition,
)
from api.src.services.queue import (
    enqueue_pipeline_run,
    claim_change,
    cancel_run,
    get_run_status,
    get_queue_length,
)
from api.src.services.trigger_gate import select_pipeline

__all__ = [
    "verify_signature",
    "parse_push_payload",
    "parse_pull_request_payload",
    "build_trigger_context",
    "supersede_key",
    "parse_pipeline_catalog",
    "parse_catalog_dict",
    "load_pipeline_catalog",
    "get_pipeline_catalog",
    "PipelineConfigError",
    "PipelineDefinition",
    "enqueue_pipeline_run",
    "claim_change",
    "cancel_run",
    "get_run_status",
    "get_queue_length",
    "select_pipeline",
]
