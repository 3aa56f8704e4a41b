"""
Choose which pipeline a trigger runs.
"""

from typing import Mapping, Optional

from api.src.models.trigger import EventKind, TriggerContext
from api.src.services.pipeline_parser import PipelineDefinition

# (event kind, targets the default branch) -> catalog pipeline name
GATE_TABLE = {
    (EventKind.PUSH, False): "verify",
    (EventKind.PUSH, True): "verify",
    (EventKind.PULL_REQUEST, True): "plan",
    (EventKind.PULL_REQUEST, False): "verify",
}

def select_pipeline(
    context: TriggerContext,
    catalog: Mapping[str, PipelineDefinition],
    default_branch: str = "main",
) -> Optional[PipelineDefinition]:
    """Look up the pipeline for this event, None if the catalog lacks it."""
    name = GATE_TABLE[(context.event_kind, context.target_ref == default_branch)]
    return catalog.get(name)
