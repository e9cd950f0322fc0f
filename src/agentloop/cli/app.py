"""
Main CLI application entry point.

This module contains the Typer application and command handlers for
agentloop.
"""

from typing import Any, Dict, Optional
import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from agentloop import VERSION
from agentloop.config.settings import AgentLoopSettings
from agentloop.core.errors import AgentLoopError
from agentloop.core.function_calling import (
    Conversation,
    InvocationMode,
    LoopConfig,
    LoopOutcome,
    OrchestrationLoop,
)
from agentloop.core.openai_provider import OpenAICompatibleProvider
from agentloop.core.providers import ChatProvider, GenerationSettings, ScriptedProvider
from agentloop.core.retry import RetryingProvider
from agentloop.core.streaming import ContentEvent, ErrorEvent, ToolCallRequestEvent, ToolResultEvent
from agentloop.core.turn import Role
from agentloop.tools.builtin import create_helper_functions
from agentloop.tools.registry import FunctionCatalog

# Create the main Typer application
app = typer.Typer(
    name="agentloop",
    help="agentloop - function-calling orchestration engine",
    add_completion=False,
    rich_markup_mode="rich",
)

# Rich console for output
console = Console()


def version_callback(value: bool) -> None:
    """Display version information and exit."""
    if value:
        console.print(f"[bold blue]agentloop[/bold blue] version [green]{VERSION}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """
    agentloop - function-calling orchestration engine.

    Runs conversations in which a model calls registered functions until it
    produces a final answer.
    """
    pass


def _configure_logging(settings: AgentLoopSettings, debug: bool = False) -> None:
    level = "DEBUG" if debug else settings.effective_log_level
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_catalog() -> FunctionCatalog:
    catalog = FunctionCatalog()
    catalog.register_provider(create_helper_functions())
    return catalog


@app.command("functions")
def functions_command() -> None:
    """List the built-in functions available to the model."""
    catalog = _build_catalog()

    table = Table(title="Available Functions")
    table.add_column("Namespace", style="cyan")
    table.add_column("Function", style="green")
    table.add_column("Parameters", style="yellow")
    table.add_column("Description")

    for descriptor in catalog.list():
        parameters = ", ".join(descriptor.parameter_schema.get("properties", {}).keys())
        table.add_row(descriptor.namespace, descriptor.name, parameters or "-", descriptor.description)

    console.print(table)
    stats = catalog.get_stats()
    console.print(f"[dim]{stats['total_functions']} functions in {len(stats['namespaces'])} namespaces[/dim]")


def _load_script(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            script = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error:[/red] Cannot read script {path}: {escape(str(e))}")
        raise typer.Exit(1)

    if not isinstance(script, dict) or "user" not in script or "responses" not in script:
        console.print("[red]Error:[/red] Script must be an object with 'user' and 'responses'")
        raise typer.Exit(1)
    return script


def _print_history(conversation: Conversation) -> None:
    table = Table(title=f"Conversation {conversation.id}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Role", style="cyan")
    table.add_column("Content")

    for index, turn in enumerate(conversation.history.snapshot(), start=1):
        if turn.role == Role.ASSISTANT and turn.tool_calls:
            calls = "\n".join(
                f"-> {call.qualified_name}({call.arguments}) [{call.id}]" for call in turn.tool_calls
            )
            content = f"{turn.content}\n{calls}" if turn.content else calls
        elif turn.role == Role.TOOL_RESULT:
            content = f"[{turn.tool_result.call_id}] {turn.tool_result.content_text()}"
        else:
            content = turn.content or ""
        table.add_row(str(index), turn.role.value, escape(content))

    console.print(table)


def _print_outcome(outcome: LoopOutcome) -> None:
    if outcome.completed:
        console.print(f"[green]Completed[/green] after {outcome.iterations} tool-call cycles")
        if outcome.answer:
            console.print(f"[blue]Answer:[/blue] {escape(outcome.answer)}")
    elif outcome.suspended:
        pending = ", ".join(call.id for call in outcome.pending_tool_calls)
        console.print(f"[yellow]Suspended[/yellow] waiting for: {pending}")
    else:
        message = outcome.error.message if outcome.error else ""
        console.print(f"[red]Failed[/red] ({outcome.failure.value}): {escape(message)}")


async def _run_replay(loop: OrchestrationLoop, script: Dict[str, Any], manual: bool) -> Conversation:
    conversation = loop.new_conversation(script.get("system"))
    outcome = await loop.send(conversation, script["user"])

    while manual and outcome.suspended:
        pending = loop.get_pending_tool_calls(conversation)
        console.print(f"[dim]Invoking {len(pending)} pending tool calls[/dim]")
        await loop.invoke_pending(conversation)
        outcome = await loop.resume(conversation)

    return conversation


@app.command("replay")
def replay_command(
    script_path: Path = typer.Argument(..., help="JSON script with 'system', 'user' and 'responses'"),
    stream: bool = typer.Option(False, "--stream/--no-stream", help="Replay responses as streamed deltas"),
    manual: bool = typer.Option(False, "--manual", help="Use manual invocation mode"),
    max_iterations: Optional[int] = typer.Option(None, "--max-iterations", help="Tool-call cycle budget"),
    chunk_size: int = typer.Option(8, "--chunk-size", help="Fragment size for streamed responses"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """Replay a scripted conversation against the built-in functions."""
    settings = AgentLoopSettings()
    _configure_logging(settings, debug)
    script = _load_script(script_path)

    try:
        provider = ScriptedProvider.from_data(script["responses"], chunk_size=chunk_size)
        config = LoopConfig(
            provider=provider,
            catalog=_build_catalog(),
            max_iterations=max_iterations or settings.max_iterations,
            mode=InvocationMode.MANUAL if manual else InvocationMode.AUTO,
            streaming=stream,
            tool_timeout=settings.tool_timeout,
            concurrent_tool_calls=settings.concurrent_tool_calls,
            default_namespace=settings.default_namespace,
        )
    except (AgentLoopError, ValueError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    loop = OrchestrationLoop(config)
    conversation = asyncio.run(_run_replay(loop, script, manual))

    _print_history(conversation)
    _print_outcome(conversation.outcome)
    if conversation.outcome.failed:
        raise typer.Exit(1)


async def _run_chat(loop: OrchestrationLoop, provider: ChatProvider, message: str) -> LoopOutcome:
    conversation = loop.new_conversation()
    try:
        console.print("[blue]AI:[/blue] ", end="")
        async for event in loop.run_stream(conversation, message):
            if isinstance(event, ContentEvent):
                console.print(escape(event.value), end="")
            elif isinstance(event, ToolCallRequestEvent):
                console.print(f"\n[dim]-> {event.value.qualified_name}({escape(event.value.arguments)})[/dim]")
            elif isinstance(event, ToolResultEvent):
                console.print(f"[dim]<- {escape(event.value.content_text())}[/dim]")
            elif isinstance(event, ErrorEvent):
                console.print(f"\n[red]Error:[/red] {escape(event.value.message)}")
        console.print()
    finally:
        await provider.aclose()
    return conversation.outcome


@app.command("chat")
def chat_command(
    message: str = typer.Argument(..., help="Message to send to the model"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model to use"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream", help="Enable/disable streaming responses"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """Send one message to an OpenAI-compatible model with the built-in functions."""
    settings = AgentLoopSettings()
    _configure_logging(settings, debug)

    if not settings.is_configured:
        console.print("[red]Error:[/red] No API key configured.")
        console.print("[dim]Set the AGENTLOOP_API_KEY environment variable[/dim]")
        raise typer.Exit(1)

    provider = RetryingProvider(OpenAICompatibleProvider.from_settings(settings))
    config = LoopConfig.from_settings(settings, provider, _build_catalog())
    config.mode = InvocationMode.AUTO
    if stream is not None:
        config.streaming = stream
    if model:
        config.generation = GenerationSettings(
            model=model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens
        )

    outcome = asyncio.run(_run_chat(OrchestrationLoop(config), provider, message))
    if outcome.failed:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
