import pathlib

import pytest

from swarmflow.config import (
    DEFAULT_STORE,
    ConfigError,
    ExecutorSpec,
    MemorySpec,
    ProjectConfig,
    StoreSpec,
    TaskSpec,
    import_string,
)

BASE_YAML = """
name: research
defaults:
  llm_provider: swarmflow.llm.provider:StaticResponseProvider
  llm_params:
    responses: ["ok"]
    cycle: true
agents:
  writer:
    description: Writes drafts
    tools: [text_stats]
    max_tokens: 1024
    memory:
      primary: swarmflow.memory.simple:InMemoryStore
      fallbacks:
        - type: swarmflow.memory.simple:InMemoryStore
          params: {namespace: backup}
      replicas: [{}]
      replication_enabled: true
  reviewer:
    tools: []
swarms:
  pipeline:
    topology: Sequential
    agents: [writer, reviewer]
executors:
  picker:
    orchestrator: reviewer
    agents: [writer]
    max_loops: 2
    retry: {max_attempts: 2, initial_delay: 0}
tasks:
  - id: draft
    description: Draft a summary
    swarm: pipeline
  - id: pick
    description: Pick an agent
    prompt: Summarize the report
    executor: picker
"""


def test_full_project_parses():
    config = ProjectConfig.from_yaml(BASE_YAML)

    assert config.name == "research"
    writer = config.agents["writer"]
    assert writer.max_tokens == 1024
    assert writer.memory.fallbacks[0].params == {"namespace": "backup"}
    assert writer.memory.replicas == [StoreSpec()]
    assert writer.memory.replication_enabled
    assert config.swarms["pipeline"].topology == "sequential"
    assert config.executors["picker"].retry.max_attempts == 2
    assert config.tasks[0].prompt == "Draft a summary"
    assert config.tasks[1].prompt == "Summarize the report"
    assert [task.target for task in config.tasks] == ["pipeline", "picker"]


def test_store_spec_defaults_to_in_memory():
    assert StoreSpec.from_mapping(None).type == DEFAULT_STORE
    assert MemorySpec.from_mapping({}).primary.type == DEFAULT_STORE


def test_invalid_audit_interval_is_rejected():
    with pytest.raises(ConfigError):
        MemorySpec.from_mapping({"consistency_check_interval": 0})


def test_task_needs_exactly_one_target():
    with pytest.raises(ConfigError, match="exactly one"):
        TaskSpec.from_mapping({"id": "t", "description": "d", "agent": "a", "swarm": "s"})


def test_executor_validates_loops_and_retry():
    with pytest.raises(ConfigError, match="max_loops"):
        ExecutorSpec.from_mapping("x", {"orchestrator": "a", "agents": ["b"], "max_loops": 0})
    with pytest.raises(ConfigError, match="retry"):
        ExecutorSpec.from_mapping("x", {"orchestrator": "a", "agents": ["b"], "retry": {"max_attempts": 0}})


@pytest.mark.parametrize(
    "old, new, message",
    [
        ("topology: Sequential", "topology: ring", "unsupported topology"),
        ("agents: [writer, reviewer]", "agents: [writer, ghost]", "Unknown agent 'ghost'"),
        ("swarm: pipeline", "swarm: nowhere", "unknown swarm"),
        ("id: pick", "id: draft", "Duplicate task id 'draft'"),
        ("orchestrator: reviewer", "orchestrator: nobody", "Unknown agent 'nobody'"),
    ],
)
def test_reference_errors(old, new, message):
    with pytest.raises(ConfigError, match=message):
        ProjectConfig.from_yaml(BASE_YAML.replace(old, new))


def test_yaml_errors_are_config_errors():
    with pytest.raises(ConfigError, match="Invalid YAML"):
        ProjectConfig.from_yaml("agents: [unclosed")
    with pytest.raises(ConfigError, match="mapping"):
        ProjectConfig.from_yaml("- just a list")


def test_import_string_validates_paths():
    assert import_string("swarmflow.config:ConfigError") is ConfigError
    with pytest.raises(ConfigError, match="module:qualname"):
        import_string("swarmflow.config.ConfigError")
    with pytest.raises(ConfigError, match="no attribute"):
        import_string("swarmflow.config:Missing")


def test_bundled_example_config_is_valid():
    path = pathlib.Path(__file__).resolve().parents[1] / "examples" / "configs" / "release_notes.yaml"

    config = ProjectConfig.from_file(path)

    assert set(config.swarms) == {"pipeline", "panel"}
    assert config.executors["router"].orchestrator == "lead"
    assert config.agents["editor"].memory.consistency_check
