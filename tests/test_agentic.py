import asyncio

import pytest

from conftest import ScriptedAgent, analysis_text, failed, plan_text
from swarmflow.agents.agentic import AgenticExecutor
from swarmflow.agents.prompts import AgentTaskAnalysis
from swarmflow.errors import ErrorKind
from swarmflow.llm.provider import StaticResponseProvider
from swarmflow.tasks.base import Task, TaskStatus


def orchestrator(*responses):
    return ScriptedAgent("orchestrator", model=StaticResponseProvider(list(responses), cycle=True))


def candidate(name, plan, **kwargs):
    return ScriptedAgent(name, model=StaticResponseProvider([plan], cycle=True), **kwargs)


def test_highest_scoring_candidate_runs_its_plan():
    analyst = candidate(
        "analyst",
        plan_text(["search filings", "summarise findings"]),
        tools=["web_search"],
        description="Finance analyst",
        max_tokens=4096,
        handler=lambda task: f"did {task.description}",
    )
    generalist = candidate("generalist", plan_text(["do everything"]), tools=["calculator"])
    executor = AgenticExecutor(
        orchestrator(analysis_text(["search"], ["finance"])), [analyst, generalist], max_loops=2
    )

    result = asyncio.run(executor.execute("Summarise ACME's last filing"))

    assert result.status is TaskStatus.COMPLETED
    assert result.output == "did summarise findings"
    assert [task.description for task in analyst.calls] == ["search filings", "summarise findings"]
    assert generalist.calls == []
    assert len(executor.intermediate_results) == 2


def test_candidates_without_a_valid_plan_are_not_eligible():
    expert = candidate(
        "expert", plan_text(["x"], valid=False), tools=["web_search"], description="finance", max_tokens=4096
    )
    backup = candidate("backup", plan_text(["y"]))
    executor = AgenticExecutor(orchestrator(analysis_text(["search"], ["finance"])), [expert, backup])

    result = asyncio.run(executor.execute("question"))

    assert result.status is TaskStatus.COMPLETED
    assert expert.calls == []
    assert [task.description for task in backup.calls] == ["y"]


def test_zero_score_means_no_suitable_agent():
    orch = orchestrator(analysis_text(["search"], ["finance"]))
    idle = candidate("idle", plan_text(["anything"]), tools=["calculator"], max_tokens=0)
    executor = AgenticExecutor(orch, [idle], max_loops=3)

    selection = asyncio.run(executor.select_best_agent_for_task(Task.from_prompt("q"), []))
    result = asyncio.run(executor.execute("q"))

    assert selection is None
    assert result.status is TaskStatus.FAILED
    assert result.error == "No suitable agent found"
    assert result.error_kind is ErrorKind.SELECTION_FAILURE
    assert idle.calls == []
    # one analysis for the direct selection call, one for the single loop
    assert len(orch.model.prompts) == 2


def test_fallbacks_run_in_order_until_one_succeeds():
    def handler(task):
        if task.description == "F2":
            return "recovered"
        return failed(f"{task.description} broke")

    agent = candidate("worker", plan_text(["primary step"], ["F1", "F2", "F3"]), handler=handler)
    executor = AgenticExecutor(orchestrator(analysis_text()), [agent])

    result = asyncio.run(executor.execute("fix it"))

    assert [task.description for task in agent.calls] == ["primary step", "F1", "F2"]
    assert [item.status for item in executor.intermediate_results] == [
        TaskStatus.FAILED,
        TaskStatus.FAILED,
        TaskStatus.COMPLETED,
    ]
    assert result.status is TaskStatus.COMPLETED
    assert result.output == "recovered"


def test_exhausted_fallbacks_fail_with_the_last_fallback_result():
    agent = candidate(
        "worker",
        plan_text(["primary step", "never reached"], ["F1", "F2"]),
        handler=lambda task: failed(f"{task.description} broke"),
    )
    executor = AgenticExecutor(orchestrator(analysis_text()), [agent], max_loops=3)

    result = asyncio.run(executor.execute("fix it"))

    assert result.status is TaskStatus.FAILED
    assert result.error == "F2 broke"
    assert result.error_kind is ErrorKind.STEP_FAILURE
    assert [task.description for task in agent.calls] == ["primary step", "F1", "F2"]


def test_failed_step_without_fallbacks():
    agent = candidate("worker", plan_text(["only step"]), handler=lambda task: failed())
    executor = AgenticExecutor(orchestrator(analysis_text()), [agent])

    result = asyncio.run(executor.execute("fix it"))

    assert result.error == "All fallback actions failed"
    assert result.error_kind is ErrorKind.STEP_FAILURE


def test_step_failure_reports_the_whole_run():
    agent = candidate("worker", plan_text(["only step"]), handler=lambda task: failed(), delay=0.05)
    executor = AgenticExecutor(orchestrator(analysis_text()), [agent])

    result = asyncio.run(executor.execute("fix it"))

    assert result.task_id != agent.calls[0].id
    assert result.started_at <= agent.calls[0].created_at
    assert result.duration >= 50
    assert executor.metrics.average_response_time >= 50


def test_concurrent_runs_keep_their_own_results():
    agent = candidate(
        "worker",
        plan_text(["first", "second"]),
        handler=lambda task: f"{task.prompt}:{task.description}",
        delay=0.01,
    )
    executor = AgenticExecutor(orchestrator(analysis_text()), [agent])

    async def both():
        return await asyncio.gather(executor.execute("alpha"), executor.execute("beta"))

    alpha, beta = asyncio.run(both())

    assert alpha.output == "alpha:second"
    assert beta.output == "beta:second"
    for call in agent.calls:
        assert all(item.startswith(call.prompt) for item in call.metadata["context"])
    assert len(executor.intermediate_results) == 2


def test_loop_budget_exhaustion():
    agent = candidate("worker", plan_text(["think"]), handler=lambda task: None)
    orch = orchestrator(analysis_text())
    executor = AgenticExecutor(orch, [agent], max_loops=2)

    result = asyncio.run(executor.execute("unanswerable"))

    assert result.status is TaskStatus.FAILED
    assert result.error == "Task not completed within 2 loops"
    assert result.error_kind is ErrorKind.LOOP_EXHAUSTED
    assert len(agent.calls) == 2
    assert executor.metrics.failed_tasks == 1


def test_later_loops_see_previous_results():
    agent = candidate("worker", plan_text(["attempt"]), outcomes=[None, "final answer"])
    orch = orchestrator(analysis_text())
    executor = AgenticExecutor(orch, [agent], max_loops=3)

    result = asyncio.run(executor.execute("retry until done"))

    assert result.output == "final answer"
    assert "## Previous Results" not in orch.model.prompts[0]
    assert "## Previous Results" in orch.model.prompts[1]


def test_steps_carry_earlier_outputs_as_context():
    agent = candidate(
        "worker", plan_text(["first", "second"]), handler=lambda task: f"{task.description} done"
    )
    executor = AgenticExecutor(orchestrator(analysis_text()), [agent])

    asyncio.run(executor.execute("two steps", metadata={"user": "u1"}, images=["chart.png"]))

    first, second = agent.calls
    assert first.metadata["step"] == 0
    assert second.metadata["step"] == 1
    assert second.metadata["context"] == ["first done"]
    assert second.metadata["user"] == "u1"
    assert second.input.images == ["chart.png"]
    assert second.prompt == "two steps"


def test_unparseable_analysis_degrades_to_empty():
    orch = orchestrator("I refuse to use your format")
    agent = candidate("worker", plan_text(["go"]))
    executor = AgenticExecutor(orch, [agent])

    analysis = asyncio.run(executor.analyze_task_requirements(Task.from_prompt("q")))
    result = asyncio.run(executor.execute("q"))

    assert analysis == AgentTaskAnalysis.empty()
    assert result.status is TaskStatus.COMPLETED


def test_model_failure_during_analysis_degrades_to_empty():
    executor = AgenticExecutor(ScriptedAgent("orchestrator"), [])

    analysis = asyncio.run(executor.analyze_task_requirements(Task.from_prompt("q")))

    assert analysis.complexity == 0
    assert analysis.capabilities == []


def test_agent_score_weights():
    agent = ScriptedAgent("a", tools=["web_search", "calculator"], description="Finance expert", max_tokens=2048)
    analysis = AgentTaskAnalysis(capabilities=["search", "translate"], specialization=["finance"])

    score = AgenticExecutor.calculate_agent_score(agent, analysis)

    assert score == pytest.approx(0.4 * 0.5 + 0.3 * 0.5 + 0.3 * 1.0)


def test_performance_defaults_to_half_and_caps_at_one():
    empty = AgentTaskAnalysis.empty()

    unset = AgenticExecutor.calculate_agent_score(ScriptedAgent("a"), empty)
    huge = AgenticExecutor.calculate_agent_score(ScriptedAgent("b", max_tokens=100_000), empty)

    assert unset == pytest.approx(0.15)
    assert huge == pytest.approx(0.3)


def test_max_loops_must_be_positive():
    with pytest.raises(ValueError):
        AgenticExecutor(ScriptedAgent("o"), [], max_loops=0)
