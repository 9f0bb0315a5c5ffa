"""CLI interface for structured-refine."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
import typer

# Load environment variables from .env file
load_dotenv()
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.syntax import Syntax
from rich.table import Table

from structured_refine.errors import RefinementExhausted
from structured_refine.llm import LLMConfig, ProviderError, ReferenceDocument, create_llm_provider
from structured_refine.patching import ArrayPatchStrategy, PatchStrategy, patch_to_json
from structured_refine.refinement import (
    FallbackStrategy,
    RefinementConfig,
    RefinementEngine,
    RefinementOutcome,
    ValidationFailureStrategy,
)
from structured_refine.schema import SchemaTarget, normalize_candidate

# Initialize CLI app
app = typer.Typer(
    name="structured-refine",
    help="Refine JSON documents against a schema with LLM-proposed JSON Patches",
    add_completion=False,
)

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Set up logging with rich formatting."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def load_json_file(path: str, label: str) -> Any:
    """Load a JSON file or exit with a message."""
    file_path = Path(path)
    if not file_path.exists():
        console.print(f"[red]{label} file not found: {path}[/red]")
        sys.exit(1)
    try:
        with open(file_path) as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        console.print(f"[red]Failed to load {label.lower()} file: {e}[/red]")
        sys.exit(1)


@app.command()
def refine(
    document: str = typer.Argument(..., help="Path to the JSON document to refine"),
    schema: str = typer.Argument(..., help="Path to the JSON Schema of the document"),
    instruction: str = typer.Argument(..., help="What to change, in natural language"),
    provider: str = typer.Option(
        "gemini", "--provider", "-p", help="LLM provider: gemini or anthropic"
    ),
    model: Optional[str] = typer.Option(
        None, "--model", "-m", help="Model for the primary backend"
    ),
    fallback_model: Optional[str] = typer.Option(
        None, "--fallback-model", help="Stronger model to escalate to"
    ),
    escalate_after: int = typer.Option(
        2, "--escalate-after", help="Attempts on the primary model before escalating"
    ),
    requests_per_minute: Optional[int] = typer.Option(
        None, "--rpm", help="Client-side rate limit for provider requests"
    ),
    max_retries: int = typer.Option(
        3, "--max-retries", "-r", help="Maximum patch attempts"
    ),
    patch_strategy: PatchStrategy = typer.Option(
        PatchStrategy.PARTIAL_APPLY, "--patch-strategy", help="Apply patches atomically or op by op"
    ),
    array_strategy: ArrayPatchStrategy = typer.Option(
        ArrayPatchStrategy.REPLACE_WHOLE, "--array-strategy", help="How the model edits arrays"
    ),
    rollback: bool = typer.Option(
        False, "--rollback/--iterate-forward", help="Restore the last valid document after a validation failure"
    ),
    reference: Optional[list[str]] = typer.Option(
        None, "--reference", "-d", help="Reference document sent with every request (repeatable)"
    ),
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output file path for the refined document (JSON)"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
) -> None:
    """
    Refine a JSON document so it satisfies an instruction and its schema.

    The model proposes JSON Patches; every failed attempt is fed back until
    a schema-valid document is produced or the attempts run out.

    Example:
        structured-refine refine config.json schema.json "Raise the timeout to 30s"
        structured-refine refine config.json schema.json "Add a retry policy" \\
            --fallback-model gemini-2.5-pro --escalate-after 2
    """
    setup_logging(verbose)

    current = load_json_file(document, "Document")
    schema_data = load_json_file(schema, "Schema")
    documents = [ReferenceDocument.from_path(path) for path in reference or []]

    console.print(Panel.fit(
        f"[bold blue]Refinement Engine[/bold blue]\n"
        f"Document: {document}\n"
        f"Instruction: {instruction}",
        title="structured-refine",
    ))

    config = RefinementConfig.from_env(
        max_retries=max(1, max_retries),
        patch_strategy=patch_strategy,
        array_strategy=array_strategy,
        validation_failure_strategy=(
            ValidationFailureStrategy.ROLLBACK if rollback else ValidationFailureStrategy.ITERATE_FORWARD
        ),
        fallback_strategy=(
            FallbackStrategy.escalate(escalate_after, fallback_model)
            if fallback_model
            else FallbackStrategy.none()
        ),
    )

    try:
        primary_config = LLMConfig(provider=provider, model=model, requests_per_minute=requests_per_minute)
        fallback_config = (
            primary_config.model_copy(update={"model": fallback_model}) if fallback_model else None
        )
    except ValueError as e:
        console.print(f"[red]Invalid provider settings: {e}[/red]")
        sys.exit(1)

    async def run_refinement() -> RefinementOutcome[Any]:
        primary = create_llm_provider(**primary_config.provider_kwargs())
        fallback = (
            create_llm_provider(**fallback_config.provider_kwargs()) if fallback_config else None
        )

        async with RefinementEngine(primary, fallback, config) as engine:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Refining...", total=None)
                outcome = await engine.refine(
                    current,
                    instruction,
                    target=SchemaTarget(schema_data),
                    documents=documents or None,
                )
                progress.update(task, completed=True)
            return outcome

    try:
        outcome = asyncio.run(run_refinement())
    except KeyboardInterrupt:
        console.print("\n[yellow]Refinement cancelled by user[/yellow]")
        sys.exit(1)
    except RefinementExhausted as e:
        console.print(f"\n[red]Refinement failed after {e.retries} attempts[/red]")
        console.print(f"  Last error: {e.last_error}")
        sys.exit(1)
    except ProviderError as e:
        console.print(f"\n[red]Provider error: {e}[/red]")
        if verbose:
            console.print_exception()
        sys.exit(1)

    display_outcome(outcome)

    if output:
        output_path = Path(output)
        with open(output_path, "w") as f:
            json.dump(outcome.value, f, indent=2)
        console.print(f"\n[green]Refined document saved to: {output_path}[/green]")
    else:
        console.print(Syntax(json.dumps(outcome.value, indent=2), "json"))


@app.command()
def validate(
    document: str = typer.Argument(..., help="Path to the JSON document to check"),
    schema: str = typer.Argument(..., help="Path to the JSON Schema"),
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Write the normalized document to this path"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
) -> None:
    """
    Normalize a document and validate it against a schema, without any LLM.

    Example:
        structured-refine validate config.json schema.json
    """
    setup_logging(verbose)

    current = load_json_file(document, "Document")
    target = SchemaTarget(load_json_file(schema, "Schema"))

    candidate = normalize_candidate(current, target.schema)
    errors = target.validator.iter_errors(candidate)

    if candidate != current:
        console.print("[yellow]Document was normalized before validation[/yellow]")
    if output:
        with open(Path(output), "w") as f:
            json.dump(candidate, f, indent=2)
        console.print(f"[green]Normalized document saved to: {output}[/green]")

    if errors:
        console.print(f"\n[red]Invalid ({len(errors)} errors):[/red]")
        for error in errors:
            console.print(f"  - {error}")
        sys.exit(1)

    console.print("[green]Document is valid[/green]")


def display_outcome(outcome: RefinementOutcome[Any]) -> None:
    """Display the attempts and the applied patch."""
    console.print("\n")

    table = Table(title="Attempts")
    table.add_column("#", style="dim")
    table.add_column("Result")
    table.add_column("Error")

    for i, attempt in enumerate(outcome.attempts, 1):
        table.add_row(
            str(i),
            "[green]ok[/green]" if attempt.success else "[red]failed[/red]",
            (attempt.error or "")[:100],
        )
    console.print(table)

    if outcome.patch:
        console.print("\n[bold]Applied patch:[/bold]")
        console.print(Syntax(json.dumps(patch_to_json(outcome.patch), indent=2), "json"))


@app.callback()
def main():
    """
    structured-refine

    Refine structured documents with an LLM: the model proposes JSON
    Patches, and the engine applies, normalizes and validates them until
    the document satisfies both the instruction and the schema.
    """
    pass


if __name__ == "__main__":
    app()
