"""
Rich CLI interface for tokenwise.

Inspect the model registry, preview model selection and run requests through
the optimization hub from the command line.
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from tokenwise import __version__
from tokenwise.core.config import get_settings
from tokenwise.core.hub import OptimizationHub, OptimizationOptions, OptimizationRequest
from tokenwise.core.models import MODEL_REGISTRY, OperationType, Urgency
from tokenwise.providers.anthropic_provider import AnthropicProvider
from tokenwise.routing.selector import build_task_profile, get_model_selector
from tokenwise.utils.logging import setup_logging

app = typer.Typer(
    name="tokenwise",
    help="Cost-aware model selection, caching and scheduling for Claude generation workloads",
    no_args_is_help=True,
)
console = Console()


def _parse_type(value: str) -> OperationType:
    try:
        return OperationType(value)
    except ValueError:
        choices = ", ".join(t.value for t in OperationType)
        console.print(f"[red]Unknown operation type '{value}'.[/red] Choose one of: {choices}")
        raise typer.Exit(1)


def _parse_urgency(value: str) -> Urgency:
    try:
        return Urgency(value)
    except ValueError:
        choices = ", ".join(u.value for u in Urgency)
        console.print(f"[red]Unknown urgency '{value}'.[/red] Choose one of: {choices}")
        raise typer.Exit(1)


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold cyan]tokenwise[/bold cyan] v{__version__}")


@app.command()
def models():
    """List the model registry."""
    table = Table(title="Model Registry", show_header=True, header_style="bold magenta")
    table.add_column("Model ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Context", justify="right")
    table.add_column("Reasoning", justify="right")
    table.add_column("Creativity", justify="right")
    table.add_column("Speed", justify="right")
    table.add_column("Cost (in/out)", justify="right")

    for model_id, profile in MODEL_REGISTRY.items():
        caps = profile.capabilities
        table.add_row(
            model_id,
            profile.name,
            f"{caps.max_context:,}",
            str(caps.reasoning),
            str(caps.creativity),
            str(caps.speed),
            f"${profile.input_cost_per_million:.2f}/${profile.output_cost_per_million:.2f}",
        )

    console.print(table)
    console.print(f"\n[dim]Prices per million tokens. {len(MODEL_REGISTRY)} models.[/dim]")


@app.command()
def select(
    operation_type: str = typer.Argument(..., help="Operation type: foundation, chapter, improvement, analysis, general"),
    urgency: str = typer.Option("normal", "--urgency", "-u", help="Urgency: immediate, normal, low"),
    budget: Optional[float] = typer.Option(None, "--budget", "-b", help="Per-operation budget cap in USD"),
    optimized: bool = typer.Option(True, "--optimized/--no-optimized", help="Assume the optimized prompt template"),
):
    """Show which model would be selected for an operation."""
    op_type = _parse_type(operation_type)
    template_id = f"optimized_{op_type.value}" if optimized else None
    profile = build_task_profile(
        op_type,
        urgency=_parse_urgency(urgency),
        budget_cap=budget,
        template_id=template_id,
    )
    recommendation = get_model_selector().select_optimal_model(profile)

    selected = MODEL_REGISTRY[recommendation.selected_model]
    console.print(Panel(
        "\n".join(f"- {line}" for line in recommendation.reasoning),
        title=f"[bold cyan]{selected.name}[/bold cyan]",
        subtitle=(
            f"[dim]score {recommendation.score:.2f} | confidence {recommendation.confidence:.2f} | "
            f"${recommendation.expected_cost:.4f}[/dim]"
        ),
    ))

    if recommendation.alternatives:
        table = Table(title="Alternatives", show_header=True)
        table.add_column("Model", style="cyan")
        table.add_column("Score", justify="right")
        table.add_column("Cost", justify="right")
        table.add_column("Tradeoffs")
        for alt in recommendation.alternatives:
            table.add_row(alt.name, f"{alt.score:.2f}", f"${alt.cost:.4f}", "; ".join(alt.tradeoffs))
        console.print(table)

    for tip in recommendation.optimizations:
        console.print(f"[yellow]Tip:[/yellow] {tip}")


@app.command()
def run(
    operation_type: str = typer.Argument(..., help="Operation type"),
    params: str = typer.Argument(..., help="Operation parameters as a JSON object"),
    caller: str = typer.Option("cli", "--caller", "-c", help="Caller id used for cost tracking"),
    priority: int = typer.Option(5, "--priority", "-p", min=1, max=10, help="Priority (1-10)"),
    urgency: str = typer.Option("immediate", "--urgency", "-u", help="Urgency: immediate, normal, low"),
    budget: Optional[float] = typer.Option(None, "--budget", "-b", help="Per-operation budget cap in USD"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Force a specific model"),
):
    """Process one request through the optimization hub."""
    settings = get_settings()
    setup_logging()

    if not settings.providers.has_anthropic:
        console.print("[red]ANTHROPIC_API_KEY is not set.[/red]")
        raise typer.Exit(1)

    try:
        payload = json.loads(params)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON parameters: {e}[/red]")
        raise typer.Exit(1)

    request = OptimizationRequest(
        caller_id=caller,
        type=_parse_type(operation_type),
        params=payload,
        options=OptimizationOptions(
            priority=priority,
            urgency=_parse_urgency(urgency),
            max_budget=budget,
            model_override=model,
        ),
    )
    provider = AnthropicProvider(
        api_key=settings.providers.anthropic_api_key.get_secret_value(),
        base_url=settings.providers.anthropic_base_url,
        timeout=settings.optimizer.default_timeout,
    )

    async def process():
        async with OptimizationHub(provider, settings=settings) as hub:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                progress.add_task("Processing request...", total=None)
                return await hub.process_request(request)

    result = asyncio.run(process())

    if not result.success:
        console.print(Panel(f"[red]Error: {result.error}[/red]", title="[bold red]Failed[/bold red]"))
        raise typer.Exit(1)

    opt = result.optimizations
    console.print(Panel(
        Markdown(result.content or ""),
        title=f"[bold cyan]{opt.selected_model}[/bold cyan]",
        subtitle=(
            f"[dim]{result.performance.response_time_ms:.0f}ms | {result.usage.total_tokens} tokens | "
            f"${result.cost:.4f}{' | cached' if opt.cache_hit else ''}[/dim]"
        ),
    ))
    for line in result.recommendations:
        console.print(f"[yellow]•[/yellow] {line}")


@app.command()
def config():
    """Show current configuration."""
    settings = get_settings()

    table = Table(title="tokenwise Configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Environment", settings.environment)
    table.add_row("Debug", str(settings.debug))
    table.add_row("Log Level", settings.optimizer.log_level)
    table.add_row("Baseline Model", settings.optimizer.baseline_model)
    table.add_row("Default Timeout", f"{settings.optimizer.default_timeout}s")
    table.add_row("Max Retries", str(settings.optimizer.max_retries))
    table.add_row("Max Concurrency", str(settings.scheduler.max_concurrency))
    table.add_row("Cost Budget", f"${settings.scheduler.cost_budget:.2f}")
    table.add_row("Cache Enabled", str(settings.cache.enabled))
    table.add_row("Cache TTL", f"{settings.cache.ttl_seconds}s")
    table.add_row("Default Monthly Budget", f"${settings.budget.default_monthly_budget_usd:.2f}")

    console.print(table)

    status = "[green]✓ configured[/green]" if settings.providers.has_anthropic else "[red]✗ not configured[/red]"
    console.print(f"\n[bold]Anthropic:[/bold] {status}")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
