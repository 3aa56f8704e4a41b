"""Tests for the pipeline catalog parser."""

import pytest
from api.src.services.pipeline_parser import (
    parse_pipeline_catalog,
    parse_catalog_dict,
    load_pipeline_catalog,
    PipelineConfigError,
)

def test_valid_catalog():
    config = """
pipelines:
  verify:
    steps:
      - name: fmt
        command: terraform fmt -check
      - name: validate
        command: [terraform, validate, -no-color]
  plan:
    comment: true
    steps:
      - name: plan
        command: terraform plan
        halt_on_failure: false
        when: pull_request
        timeout: 900
"""
    catalog = parse_pipeline_catalog(config)
    assert set(catalog) == {"verify", "plan"}

    verify = catalog["verify"]
    assert [s.name for s in verify.steps] == ["fmt", "validate"]
    assert verify.steps[0].command == ("terraform", "fmt", "-check")
    assert verify.steps[0].halt_on_failure is True
    assert verify.steps[0].when == "always"
    assert verify.comment is False

    plan = catalog["plan"].steps[0]
    assert plan.halt_on_failure is False
    assert plan.when == "pull_request"
    assert plan.timeout == 900
    assert catalog["plan"].comment is True

def test_catalog_is_read_only():
    catalog = parse_catalog_dict({
        "pipelines": {"verify": {"steps": [{"name": "fmt", "command": "terraform fmt"}]}}
    })
    with pytest.raises(TypeError):
        catalog["other"] = catalog["verify"]
    with pytest.raises(Exception):
        catalog["verify"].steps[0].name = "renamed"

def test_missing_pipelines():
    with pytest.raises(PipelineConfigError, match="'pipelines'"):
        parse_pipeline_catalog("name: nothing here\n")

def test_missing_steps():
    config = """
pipelines:
  verify:
    comment: false
"""
    with pytest.raises(PipelineConfigError, match="must have 'steps'"):
        parse_pipeline_catalog(config)

def test_missing_step_name():
    config = """
pipelines:
  verify:
    steps:
      - command: terraform fmt
"""
    with pytest.raises(PipelineConfigError, match="missing 'name'"):
        parse_pipeline_catalog(config)

def test_missing_step_command():
    config = """
pipelines:
  verify:
    steps:
      - name: fmt
"""
    with pytest.raises(PipelineConfigError, match="missing 'command'"):
        parse_pipeline_catalog(config)

def test_duplicate_step_names():
    config = """
pipelines:
  verify:
    steps:
      - name: fmt
        command: terraform fmt
      - name: fmt
        command: terraform fmt -check
"""
    with pytest.raises(PipelineConfigError, match="duplicate step 'fmt'"):
        parse_pipeline_catalog(config)

def test_unknown_when_term():
    config = """
pipelines:
  verify:
    steps:
      - name: plan
        command: terraform plan
        when: on_tuesdays
"""
    with pytest.raises(PipelineConfigError, match="unknown 'when' term"):
        parse_pipeline_catalog(config)

def test_when_list_and_ref_terms():
    catalog = parse_catalog_dict({
        "pipelines": {
            "verify": {
                "steps": [{
                    "name": "plan",
                    "command": "terraform plan",
                    "when": ["pull_request", "target:main"],
                }]
            }
        }
    })
    assert catalog["verify"].steps[0].when == ("pull_request", "target:main")

def test_bad_timeout():
    config = """
pipelines:
  verify:
    steps:
      - name: fmt
        command: terraform fmt
        timeout: -5
"""
    with pytest.raises(PipelineConfigError, match="'timeout'"):
        parse_pipeline_catalog(config)

def test_empty_config():
    with pytest.raises(PipelineConfigError, match="Empty"):
        parse_pipeline_catalog("")

def test_invalid_yaml():
    with pytest.raises(PipelineConfigError, match="Invalid YAML"):
        parse_pipeline_catalog("pipelines: [unclosed")

def test_job_steps_shape():
    catalog = parse_catalog_dict({
        "pipelines": {
            "verify": {
                "steps": [{"name": "fmt", "command": "terraform fmt -check", "env": {"TF_LOG": "WARN"}}]
            }
        }
    })
    assert catalog["verify"].job_steps() == [{
        "name": "fmt",
        "command": ["terraform", "fmt", "-check"],
        "when": "always",
        "halt_on_failure": True,
        "timeout": None,
        "env": {"TF_LOG": "WARN"},
    }]

def test_load_catalog_file(tmp_path):
    path = tmp_path / "pipelines.yml"
    path.write_text(
        "pipelines:\n"
        "  verify:\n"
        "    steps:\n"
        "      - name: fmt\n"
        "        command: terraform fmt -check\n"
    )
    catalog = load_pipeline_catalog(str(path))
    assert list(catalog) == ["verify"]

def test_load_missing_file(tmp_path):
    with pytest.raises(PipelineConfigError, match="Cannot read"):
        load_pipeline_catalog(str(tmp_path / "missing.yml"))

def test_shipped_catalog_loads():
    import os
    root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    catalog = load_pipeline_catalog(os.path.join(root, "pipelines.yml"))

    assert [s.name for s in catalog["verify"].steps] == ["fmt", "init", "validate"]
    assert [s.name for s in catalog["plan"].steps] == ["fmt", "init", "validate", "plan"]
    assert catalog["plan"].comment is True
