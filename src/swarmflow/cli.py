"""Command line interface for swarmflow projects."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table

from .agents.orchestrator import Orchestrator
from .config import ConfigError, ProjectConfig
from .logs import configure_logging
from .tasks.base import TaskResult, TaskStatus

app = typer.Typer(help="Run agent swarms and agentic executors from YAML configs")
console = Console()

_STATUS_STYLE = {
    TaskStatus.COMPLETED: "[green]completed[/]",
    TaskStatus.FAILED: "[red]failed[/]",
    TaskStatus.CANCELLED: "[yellow]cancelled[/]",
}


def _load(config_path: Path) -> ProjectConfig:
    try:
        return ProjectConfig.from_file(config_path)
    except (ConfigError, OSError) as exc:
        console.print(f"[red]Invalid configuration:[/] {exc}")
        raise typer.Exit(code=2) from exc


def _build(config: ProjectConfig) -> Orchestrator:
    try:
        return Orchestrator(config)
    except ConfigError as exc:
        console.print(f"[red]Invalid configuration:[/] {exc}")
        raise typer.Exit(code=2) from exc


def _render_plan(config: ProjectConfig) -> None:
    plan = Table(title="Execution Plan", show_lines=True)
    plan.add_column("Task ID")
    plan.add_column("Kind")
    plan.add_column("Target")
    plan.add_column("Description")
    for spec in config.tasks:
        kind = "agent" if spec.agent else "swarm" if spec.swarm else "executor"
        plan.add_row(spec.id, kind, spec.target, spec.description)
    console.print(plan)


def _format_output(result: TaskResult) -> str:
    if result.status is not TaskStatus.COMPLETED:
        kind = result.error_kind.value if result.error_kind else "cancelled"
        return f"{result.error or ''} ({kind})".strip()
    if isinstance(result.output, str):
        return result.output
    return json.dumps(result.output, indent=2, default=str)


@app.command()
def run(
    config_path: Path = typer.Argument(..., help="Path to YAML configuration"),
    show_trace: bool = typer.Option(False, help="Print each agent's planning trace"),
    log_level: Optional[str] = typer.Option(None, help="Log level (defaults to SWARMFLOW_LOG_LEVEL or WARNING)"),
) -> None:
    """Execute the tasks described in the given config file."""

    configure_logging(log_level)
    config = _load(config_path)
    console.print(f"[bold green]Running project[/] {config.name}")
    _render_plan(config)

    orchestrator = _build(config)
    with console.status("[cyan]thinking..."):
        results = asyncio.run(orchestrator.run())

    table = Table(title="Task outputs", show_lines=True)
    table.add_column("Task ID")
    table.add_column("Status")
    table.add_column("Duration (ms)", justify="right")
    table.add_column("Output")
    for task_id, result in results.items():
        status = _STATUS_STYLE.get(result.status, result.status.value)
        table.add_row(task_id, status, f"{result.duration:.0f}", _format_output(result))
    console.print(table)

    metrics = Table(title="Executor metrics")
    for column in ("Executor", "Total", "Succeeded", "Failed", "Avg (ms)"):
        metrics.add_column(column)
    for name, item in orchestrator.metrics.items():
        metrics.add_row(
            name,
            str(item.total_tasks),
            str(item.successful_tasks),
            str(item.failed_tasks),
            f"{item.average_response_time:.1f}",
        )
    if orchestrator.metrics:
        console.print(metrics)

    if show_trace:
        for agent_name, traces in orchestrator.traces().items():
            for task_id, entries in traces.items():
                console.rule(f"Trace for {agent_name} / {task_id}")
                for entry in entries:
                    console.print(entry, markup=False)

    if any(result.status is TaskStatus.FAILED for result in results.values()):
        raise typer.Exit(code=1)


@app.command()
def inspect(config_path: Path = typer.Argument(..., help="Config to inspect")) -> None:
    """Print the agents, swarms, executors and tasks defined by a configuration file."""

    config = _load(config_path)
    console.print(f"[bold]Project:[/] {config.name}\n{config.description or ''}")
    console.print("[bold]Agents[/]")
    for spec in config.agents.values():
        memory = spec.memory
        console.print(
            f"- {spec.name}: tools={spec.tools} fallbacks={len(memory.fallbacks)} "
            f"replicas={len(memory.replicas)} replication={'on' if memory.replication_enabled else 'off'}"
        )
    if config.swarms:
        console.print("[bold]Swarms[/]")
        for swarm in config.swarms.values():
            console.print(f"- {swarm.name} ({swarm.topology}): {', '.join(swarm.agents)}")
    if config.executors:
        console.print("[bold]Executors[/]")
        for executor in config.executors.values():
            console.print(
                f"- {executor.name}: orchestrator={executor.orchestrator} "
                f"candidates={', '.join(executor.agents)} max_loops={executor.max_loops}"
            )
    console.print("[bold]Tasks[/]")
    for spec in config.tasks:
        console.print(f"- {spec.id} -> {spec.target}: {spec.description}")


@app.command()
def health(
    config_path: Path = typer.Argument(..., help="Config whose memory stores should be probed"),
    log_level: Optional[str] = typer.Option(None, help="Log level"),
) -> None:
    """Connect every agent's memory stores and report their health."""

    configure_logging(log_level)
    config = _load(config_path)
    report: Dict[str, Dict[str, Any]] = asyncio.run(_build(config).health())

    table = Table(title="Memory health", show_lines=True)
    table.add_column("Agent")
    table.add_column("Store")
    table.add_column("Healthy")
    table.add_column("Details")
    for agent_name, agent_report in report.items():
        for store, probe in agent_report["stores"].items():
            details = probe.get("error") or json.dumps(probe.get("metrics", {}), default=str)
            table.add_row(agent_name, store, "[green]yes[/]" if probe["healthy"] else "[red]no[/]", details)
    console.print(table)
    if not all(item["healthy"] for item in report.values()):
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover
    app()
