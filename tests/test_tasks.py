import pytest

from conftest import ScriptedAgent
from swarmflow.errors import ErrorKind, TaskStateError
from swarmflow.tasks.base import RetryPolicy, Task, TaskResult, TaskStatus


def test_task_lifecycle_requires_executor():
    task = Task.from_prompt("summarise the report")

    assert task.status is TaskStatus.PENDING
    with pytest.raises(TaskStateError):
        task.start()

    task.set_executor(ScriptedAgent("writer"))
    task.start()
    assert task.status is TaskStatus.RUNNING

    task.finish(TaskResult(task_id=task.id, status=TaskStatus.COMPLETED, output="done"))
    assert task.status is TaskStatus.COMPLETED


def test_executor_can_only_be_bound_once():
    task = Task.from_prompt("hello")
    task.set_executor(ScriptedAgent("a"))

    with pytest.raises(TaskStateError):
        task.set_executor(ScriptedAgent("b"))


def test_terminal_states_are_immutable():
    task = Task.from_prompt("hello")
    task.set_executor(ScriptedAgent("a"))
    task.start()
    task.finish(TaskResult.failure(task.id, "nope"))

    assert task.status is TaskStatus.FAILED
    with pytest.raises(TaskStateError):
        task.cancel()
    with pytest.raises(TaskStateError):
        task.start()


def test_cancel_from_pending_and_finish_after_cancel_is_ignored():
    task = Task.from_prompt("hello")
    task.cancel()
    task.finish(TaskResult(task_id=task.id, status=TaskStatus.COMPLETED, output="late"))

    assert task.status is TaskStatus.CANCELLED


def test_spawn_creates_unbound_task_with_merged_metadata():
    parent = Task.from_prompt("root prompt", metadata={"user": "u1"}, images=["a.png"], timeout=5.0)
    parent.set_executor(ScriptedAgent("a"))

    child = parent.spawn(description="step one", metadata={"step": 0})

    assert child.id != parent.id
    assert child.executor is None
    assert child.status is TaskStatus.PENDING
    assert child.prompt == "root prompt"
    assert child.metadata == {"user": "u1", "step": 0}
    assert child.input.images == ["a.png"]
    assert child.timeout == 5.0
    assert parent.metadata == {"user": "u1"}


def test_to_dict_exposes_input_and_executor():
    task = Task.from_prompt("hi", description="greeting", metadata={"k": 1})
    task.set_executor(ScriptedAgent("greeter"))

    data = task.to_dict()

    assert data["status"] == "pending"
    assert data["executor"] == "greeter"
    assert data["input"] == {"prompt": "hi", "metadata": {"k": 1}, "images": []}


def test_retry_policy_backoff_is_capped():
    policy = RetryPolicy(max_attempts=5, backoff_multiplier=2.0, initial_delay=1.0, max_delay=5.0)

    assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


@pytest.mark.parametrize(
    "kwargs",
    [{"max_attempts": 0}, {"backoff_multiplier": 0.5}, {"initial_delay": -1.0}],
)
def test_retry_policy_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_retry_policy_from_mapping():
    policy = RetryPolicy.from_mapping({"max_attempts": 2, "initial_delay": 0.5})

    assert policy.max_attempts == 2
    assert policy.initial_delay == 0.5
    assert policy.backoff_multiplier == 2.0


def test_failure_result_has_no_output():
    result = TaskResult.failure("t1", "rate limited", ErrorKind.RATE_LIMIT)

    assert result.status is TaskStatus.FAILED
    assert result.output is None
    assert result.error_kind is ErrorKind.RATE_LIMIT
    assert result.duration >= 0


def test_as_failure_keeps_existing_error():
    result = TaskResult(task_id="t", status=TaskStatus.COMPLETED, output="x", error="earlier")

    relabelled = result.as_failure(kind=ErrorKind.STEP_FAILURE)

    assert relabelled.output is None
    assert relabelled.error == "earlier"
    assert relabelled.error_kind is ErrorKind.STEP_FAILURE
