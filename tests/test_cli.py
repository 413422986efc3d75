import textwrap

from typer.testing import CliRunner

from swarmflow.cli import app

runner = CliRunner()

CONFIG = textwrap.dedent(
    """
    name: cli-demo
    description: Two agents in a row
    defaults:
      llm_provider: swarmflow.llm.provider:StaticResponseProvider
    agents:
      drafter:
        tools: [text_stats]
        llm_params: {responses: ["draft ready"]}
      editor:
        tools: []
        llm_params: {responses: ["{answer}"]}
    swarms:
      pipeline:
        topology: sequential
        agents: [drafter, editor]
    tasks:
      - id: write
        description: Write release notes
        swarm: pipeline
    """
)


def write_config(tmp_path, content=CONFIG):
    path = tmp_path / "project.yaml"
    path.write_text(content)
    return path


def test_inspect_lists_configuration(tmp_path):
    result = runner.invoke(app, ["inspect", str(write_config(tmp_path))])

    assert result.exit_code == 0
    assert "cli-demo" in result.output
    assert "pipeline (sequential): drafter, editor" in result.output
    assert "write -> pipeline" in result.output


def test_run_prints_outputs(tmp_path):
    config = write_config(tmp_path, CONFIG.replace('"{answer}"', '"notes published"'))

    result = runner.invoke(app, ["run", str(config)])

    assert result.exit_code == 0, result.output
    assert "notes published" in result.output
    assert "completed" in result.output
    assert "swarm:pipeline" in result.output


def test_run_exits_non_zero_when_a_task_fails(tmp_path):
    config = write_config(tmp_path, CONFIG.replace('["{answer}"]', "[]"))

    result = runner.invoke(app, ["run", str(config)])

    assert result.exit_code == 1
    assert "failed" in result.output


def test_invalid_config_exits_with_usage_error(tmp_path):
    config = write_config(tmp_path, CONFIG.replace("topology: sequential", "topology: ring"))

    result = runner.invoke(app, ["run", str(config)])

    assert result.exit_code == 2
    assert "Invalid configuration" in result.output


def test_health_reports_stores(tmp_path):
    result = runner.invoke(app, ["health", str(write_config(tmp_path))])

    assert result.exit_code == 0
    assert "primary" in result.output
