"""Tests for the agent directory."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

import pytest

from conductor.agents.directory import DEFAULT_DIRECTORY_PATH, AgentDirectory
from conductor.errors import AgentNotFoundError
from conductor.models.agent import AgentInfo

DIRECTORY_YAML = """
agents:
  - id: lead-qualification
    name: Lead Qualification
    url: http://localhost:4000
    capabilities: [scoring]
  - id: proposal-writer
    name: Proposal Writer
    url: http://localhost:4002
"""


def test_from_yaml(tmp_path):
    path = tmp_path / "agents.yaml"
    path.write_text(DIRECTORY_YAML)

    directory = AgentDirectory.from_yaml(path)

    assert len(directory) == 2
    assert directory.get_by_id("lead-qualification").capabilities == ["scoring"]
    assert directory.get_by_name("Proposal Writer").url == "http://localhost:4002"
    assert directory.default_agent.id == "lead-qualification"


def test_from_yaml_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        AgentDirectory.from_yaml(tmp_path / "nope.yaml")


def test_bundled_directory_loads():
    directory = AgentDirectory.from_yaml(DEFAULT_DIRECTORY_PATH)
    assert "meeting-coordinator" in directory


def test_get_or_raise(directory):
    assert directory.get_or_raise("proposal-writer").name == "Proposal Writer"
    with pytest.raises(AgentNotFoundError):
        directory.get_or_raise("legal-review")


def test_register_replaces_duplicate():
    directory = AgentDirectory([AgentInfo(id="a", name="A", url="http://a")])
    directory.register(AgentInfo(id="a", name="A2", url="http://a2"))

    assert len(directory) == 1
    assert directory.get_by_id("a").url == "http://a2"


def test_empty_directory_has_no_default():
    assert AgentDirectory().default_agent is None
    assert AgentDirectory().get_by_id("x") is None
