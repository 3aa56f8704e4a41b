"""
Pipeline catalog YAML parser and validator.
"""

import re
import shlex
import yaml
from functools import lru_cache
from types import MappingProxyType
from typing import List, Dict, Any, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from api.src.config import get_settings

WHEN_TERM = re.compile(r"^(always|never|push|pull_request|(target|source):\S+)$")

class PipelineConfigError(Exception):
    """Raised when pipeline configuration is invalid."""
    pass

class StepDefinition(BaseModel):
    name: str
    command: Tuple[str, ...]
    when: Union[str, Tuple[str, ...]] = "always"
    halt_on_failure: bool = True
    timeout: Optional[int] = None
    env: Dict[str, str] = {}

    model_config = ConfigDict(frozen=True)

class PipelineDefinition(BaseModel):
    name: str
    steps: Tuple[StepDefinition, ...]
    comment: bool = False

    model_config = ConfigDict(frozen=True)

    def job_steps(self) -> List[Dict[str, Any]]:
        """Steps in the shape the runner reads from the queue."""
        return [
            {
                "name": step.name,
                "command": list(step.command),
                "when": step.when if isinstance(step.when, str) else list(step.when),
                "halt_on_failure": step.halt_on_failure,
                "timeout": step.timeout,
                "env": dict(step.env),
            }
            for step in self.steps
        ]

def parse_pipeline_catalog(yaml_content: str) -> Mapping[str, PipelineDefinition]:
    """Parse the pipeline catalog from a YAML string."""
    try:
        config = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise PipelineConfigError(f"Invalid YAML: {e}")

    return parse_catalog_dict(config)

def parse_catalog_dict(config: Optional[Dict[str, Any]]) -> Mapping[str, PipelineDefinition]:
    """Validate the pipeline catalog structure."""
    if not config:
        raise PipelineConfigError("Empty pipeline configuration")

    if not isinstance(config, dict):
        raise PipelineConfigError("Pipeline configuration must be a dictionary")

    pipelines = config.get("pipelines")
    if not isinstance(pipelines, dict) or not pipelines:
        raise PipelineConfigError("Configuration must define at least one entry under 'pipelines'")

    catalog = {}
    for name, pipeline in pipelines.items():
        catalog[str(name)] = validate_pipeline(str(name), pipeline)

    # Read-only for the lifetime of the process
    return MappingProxyType(catalog)

def validate_pipeline(name: str, pipeline: Any) -> PipelineDefinition:
    """Validate one named pipeline."""
    if not isinstance(pipeline, dict):
        raise PipelineConfigError(f"Pipeline '{name}' must be a dictionary")

    if "steps" not in pipeline:
        raise PipelineConfigError(f"Pipeline '{name}' must have 'steps' defined")

    steps = pipeline["steps"]
    if not isinstance(steps, list):
        raise PipelineConfigError(f"Pipeline '{name}' 'steps' must be a list")

    if len(steps) == 0:
        raise PipelineConfigError(f"Pipeline '{name}' must have at least one step")

    comment = pipeline.get("comment", False)
    if not isinstance(comment, bool):
        raise PipelineConfigError(f"Pipeline '{name}' 'comment' must be a boolean")

    validated_steps = []
    seen = set()
    for i, step in enumerate(steps):
        validated_step = validate_step(step, i)
        if validated_step.name in seen:
            raise PipelineConfigError(f"Pipeline '{name}' has duplicate step '{validated_step.name}'")
        seen.add(validated_step.name)
        validated_steps.append(validated_step)

    return PipelineDefinition(name=name, steps=tuple(validated_steps), comment=comment)

def validate_when(when: Any, index: int) -> Union[str, Tuple[str, ...]]:
    terms = [when] if isinstance(when, str) else when
    if not isinstance(terms, list) or not terms:
        raise PipelineConfigError(f"Step {index} 'when' must be a string or a non-empty list")

    for term in terms:
        if not isinstance(term, str) or not WHEN_TERM.match(term.strip()):
            raise PipelineConfigError(f"Step {index} has unknown 'when' term: {term!r}")

    return when if isinstance(when, str) else tuple(when)

def validate_step(step: Dict[str, Any], index: int) -> StepDefinition:
    """Validate a single pipeline step."""
    if not isinstance(step, dict):
        raise PipelineConfigError(f"Step {index} must be a dictionary")

    # Required fields
    if "name" not in step:
        raise PipelineConfigError(f"Step {index} missing 'name'")

    if "command" not in step:
        raise PipelineConfigError(f"Step {index} missing 'command'")

    # Validate types
    if not isinstance(step["name"], str):
        raise PipelineConfigError(f"Step {index} 'name' must be a string")

    command = step["command"]
    if isinstance(command, str):
        try:
            command = shlex.split(command)
        except ValueError as e:
            raise PipelineConfigError(f"Step {index} 'command' cannot be parsed: {e}")
    if not isinstance(command, list) or not command:
        raise PipelineConfigError(f"Step {index} 'command' must be a string or a non-empty list")

    for j, arg in enumerate(command):
        if not isinstance(arg, str):
            raise PipelineConfigError(f"Step {index} command argument {j} must be a string")

    halt_on_failure = step.get("halt_on_failure", True)
    if not isinstance(halt_on_failure, bool):
        raise PipelineConfigError(f"Step {index} 'halt_on_failure' must be a boolean")

    timeout = step.get("timeout")
    if timeout is not None and (not isinstance(timeout, int) or timeout <= 0):
        raise PipelineConfigError(f"Step {index} 'timeout' must be a positive integer")

    env = step.get("env", {})
    if not isinstance(env, dict):
        raise PipelineConfigError(f"Step {index} 'env' must be a mapping")

    return StepDefinition(
        name=step["name"],
        command=tuple(command),
        when=validate_when(step.get("when", "always"), index),
        halt_on_failure=halt_on_failure,
        timeout=timeout,
        env={str(k): str(v) for k, v in env.items()},
    )

def load_pipeline_catalog(path: str) -> Mapping[str, PipelineDefinition]:
    """Read and validate a catalog file."""
    try:
        with open(path, "r") as f:
            content = f.read()
    except OSError as e:
        raise PipelineConfigError(f"Cannot read pipeline configuration {path}: {e}")
    return parse_pipeline_catalog(content)

@lru_cache()
def get_pipeline_catalog() -> Mapping[str, PipelineDefinition]:
    """Process-wide catalog, loaded once on first use."""
    return load_pipeline_catalog(get_settings().pipelines_file)
