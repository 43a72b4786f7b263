"""CLI interface for clinical-nlp."""

import logging
import math
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from clinical_nlp.config import ClinicalNLPConfig
from clinical_nlp.errors import ClinicalNLPError, ModelLoadingError

app = typer.Typer(
    name="clinical-nlp",
    help="Clinical text analysis against a hosted inference service",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()

MODEL_CHOICES = ("BioBERT", "ClinicalBERT", "PubMedBERT")


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )
    # Suppress noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("pdfminer").setLevel(logging.WARNING)


def _load_config(threshold: float | None = None, output: str | None = None) -> ClinicalNLPConfig:
    overrides: dict = {}
    if threshold is not None:
        overrides["confidence_threshold"] = threshold
    if output:
        overrides["output_dir"] = Path(output)
    config = ClinicalNLPConfig(**overrides)

    try:
        config.validate_api_key()
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    return config


def _read_input(source: str | None, text: str | None) -> str:
    """Text from --text, or from a file (PDF/Word go through the document reader)."""
    if text:
        return text
    if not source:
        console.print("[red]Error:[/red] Provide a file path or --text")
        raise typer.Exit(1)

    from clinical_nlp.ingest.reader import SUPPORTED_EXTENSIONS, read_document

    path = Path(source)
    if not path.is_file():
        console.print(f"[red]Error:[/red] Not a file: {source}")
        raise typer.Exit(1)
    if path.suffix.lower() in SUPPORTED_EXTENSIONS:
        try:
            return read_document(path)
        except ClinicalNLPError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from None
    return path.read_text(encoding="utf-8", errors="replace")


def _fail(e: ClinicalNLPError) -> NoReturn:
    console.print(f"[red]Error:[/red] {e}")
    if isinstance(e, ModelLoadingError):
        console.print(f"[yellow]Retry in about {e.retry_after:.0f}s.[/yellow]")
    raise typer.Exit(1) from None


def _maybe_export(result, export_to: str | None) -> None:
    if not export_to:
        return
    from clinical_nlp.export import export_results

    try:
        path = export_results(result, Path(export_to))
    except ValueError as e:
        console.print(f"[red]Export failed:[/red] {e}")
        raise typer.Exit(1) from None
    console.print(f"  Exported: {path}")


# ============================================================================
# Single-text Commands
# ============================================================================


@app.command()
def ner(
    source: str | None = typer.Argument(None, help="Text, PDF or DOCX file to analyze"),
    text: str | None = typer.Option(None, "--text", "-t", help="Analyze this text instead of a file"),
    threshold: float | None = typer.Option(None, help="Minimum entity confidence (0-1)"),
    export_to: str | None = typer.Option(None, "--to", help="Export result to .json or .csv"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose logging"),
) -> None:
    """Extract clinical entities, with completeness score and insights."""
    _setup_logging(verbose)
    config = _load_config(threshold)
    content = _read_input(source, text)

    from clinical_nlp.analysis.aggregator import group_by_type, summarize_entities
    from clinical_nlp.pipeline import run_ner

    try:
        result = run_ner(content, config)
    except ClinicalNLPError as e:
        _fail(e)

    table = Table(title="Entities", show_header=True, header_style="bold cyan")
    table.add_column("Type", style="green")
    table.add_column("Text")
    table.add_column("Confidence", justify="right")
    for entity_type, entities in group_by_type(result.entities).items():
        for entity in entities:
            table.add_row(entity_type.replace("_", " "), entity.text, f"{entity.confidence:.1%}")
    console.print(table)

    overview = summarize_entities(result.entities)
    completeness = overview["completeness"]
    console.print(f"  Entities: {result.entity_count}")
    console.print(f"  Avg confidence: {result.avg_confidence:.1%}")
    console.print(f"  Entity types: {len(result.entity_types)}")
    console.print(f"  Completeness: {completeness.score:.0f}% ({overview['schema'].value} schema)")
    if completeness.missing:
        console.print(f"  [dim]Missing: {', '.join(completeness.missing)}[/dim]")
    for insight in overview["insights"]:
        console.print(f"  {insight}")

    _maybe_export(result, export_to)


@app.command()
def summarize(
    source: str | None = typer.Argument(None, help="Text, PDF or DOCX file to summarize"),
    text: str | None = typer.Option(None, "--text", "-t", help="Summarize this text instead of a file"),
    export_to: str | None = typer.Option(None, "--to", help="Export result to .json or .csv"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose logging"),
) -> None:
    """Summarize a clinical note (first 2000 characters are sent)."""
    _setup_logging(verbose)
    config = _load_config()
    content = _read_input(source, text)

    from clinical_nlp.pipeline import run_summarization

    try:
        result = run_summarization(content, config)
    except ClinicalNLPError as e:
        _fail(e)

    console.print(f"[green]Summary:[/green] {result.summary}")
    console.print(f"  Words: {result.original_words} → {result.summary_words}")
    console.print(f"  Compression: {result.compression_ratio}")
    _maybe_export(result, export_to)


@app.command()
def qa(
    question: str = typer.Argument(..., help="Question to answer from the text"),
    source: str | None = typer.Argument(None, help="Text, PDF or DOCX file used as context"),
    text: str | None = typer.Option(None, "--text", "-t", help="Use this text as context"),
    model: str = typer.Option("BioBERT", help="Model label recorded with the answer"),
    export_to: str | None = typer.Option(None, "--to", help="Export result to .json or .csv"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose logging"),
) -> None:
    """Answer a question from clinical text."""
    _setup_logging(verbose)
    config = _load_config()
    content = _read_input(source, text)

    from clinical_nlp.pipeline import run_qa

    try:
        result = run_qa(content, question, config, model_label=model)
    except ClinicalNLPError as e:
        _fail(e)

    console.print(f"[green]Answer:[/green] {result.answer}")
    console.print(f"  Confidence: {result.confidence:.1%}")
    console.print(f"  [dim]Context: …{result.context}…[/dim]")
    _maybe_export(result, export_to)


@app.command()
def compare(
    source: str | None = typer.Argument(None, help="Text, PDF or DOCX file to analyze"),
    text: str | None = typer.Option(None, "--text", "-t", help="Analyze this text instead of a file"),
    seed: int | None = typer.Option(None, help="Seed for reproducible variants"),
    export_to: str | None = typer.Option(None, "--to", help="Export result to .json or .csv"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose logging"),
) -> None:
    """Compare NER models (one real call, simulated variants)."""
    _setup_logging(verbose)
    config = _load_config()
    content = _read_input(source, text)

    from clinical_nlp.pipeline import run_comparison

    try:
        result = run_comparison(content, config, seed=seed)
    except ClinicalNLPError as e:
        _fail(e)

    table = Table(title="Model Comparison", show_header=True, header_style="bold cyan")
    table.add_column("Model", style="green")
    table.add_column("Entities", justify="right")
    table.add_column("Avg Confidence", justify="right")
    table.add_column("Types", justify="right")
    for variant in result.models:
        table.add_row(
            variant.model,
            str(variant.entity_count),
            f"{variant.avg_confidence:.1%}",
            str(len(variant.entity_types)),
        )
    console.print(table)
    console.print(f"[green]Recommended:[/green] {result.recommendation.model}")
    console.print(f"  {result.recommendation.reason}")
    _maybe_export(result, export_to)


# ============================================================================
# Batch Command
# ============================================================================


@app.command()
def batch(
    paths: list[str] = typer.Argument(..., help="Files and/or directories of PDF/DOCX documents"),
    model: str = typer.Option("ClinicalBERT", help=f"Model label: {', '.join(MODEL_CHOICES)}"),
    name: str | None = typer.Option(None, help="Batch name (default: timestamp)"),
    threshold: float | None = typer.Option(None, help="Minimum entity confidence (0-1)"),
    no_persist: bool = typer.Option(False, "--no-persist", help="Don't write analysis/batch records"),
    export_to: str | None = typer.Option(None, "--to", help="Export results to .json or .csv"),
    output: str | None = typer.Option(None, "-o", help="Output directory"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose logging"),
) -> None:
    """Analyze many documents one at a time; failures don't stop the batch."""
    _setup_logging(verbose)
    config = _load_config(threshold, output)

    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from clinical_nlp.batch.orchestrator import aggregate_entity_summary
    from clinical_nlp.ingest.reader import discover_documents
    from clinical_nlp.models import UploadedDocument
    from clinical_nlp.pipeline import run_batch

    files: list[Path] = []
    for raw in paths:
        p = Path(raw)
        if p.is_dir():
            files.extend(discover_documents(p))
        elif p.is_file():
            files.append(p)
        else:
            console.print(f"[yellow]Skipping missing path:[/yellow] {raw}")

    if not files:
        console.print("[yellow]No documents to process[/yellow]")
        raise typer.Exit(0)

    documents = [UploadedDocument.from_path(f) for f in files]
    console.print(f"[cyan]Model:[/cyan] {model}")
    console.print(f"[cyan]Documents:[/cyan] {len(documents)}")
    console.print(f"[cyan]Threshold:[/cyan] {config.confidence_threshold}")
    console.print()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
    ) as progress:
        ptask = progress.add_task("Analyzing...", total=len(documents))

        def _on_progress(job, item):
            progress.update(ptask, completed=job.completed_documents, description=item.filename)

        job = run_batch(
            documents, config, model=model, name=name,
            persist=not no_persist, on_progress=_on_progress,
        )

    table = Table(title=job.name, show_header=True, header_style="bold cyan")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Entities", justify="right")
    table.add_column("Detail", style="dim")
    for item in job.items:
        if item.result is not None:
            top = ", ".join(f"{n} {t.replace('_', ' ')}" for t, n in list(item.entity_summary.items())[:3])
            table.add_row(item.filename, "[green]Success[/green]", str(item.result.entity_count), top)
        else:
            table.add_row(item.filename, "[red]Failed[/red]", "-", item.error or "")
    console.print(table)

    summary = job.summary
    console.print()
    console.print("[green]Batch complete![/green]")
    console.print(f"  Succeeded: {summary.success_count}/{summary.total_files}")
    console.print(f"  Total entities: {job.aggregate_entity_count}")
    console.print(f"  Running avg confidence: {job.aggregate_avg_confidence:.1%}")
    if math.isnan(summary.avg_entities_per_success):
        console.print("  Avg entities per document: n/a (no successful documents)")
    else:
        console.print(f"  Avg entities per document: {summary.avg_entities_per_success:.1f}")

    distribution = aggregate_entity_summary(job)
    if distribution:
        console.print("  Distribution: " + ", ".join(f"{t} {n}" for t, n in distribution.items()))
    if not no_persist:
        console.print(f"  Records: {config.output_dir}")

    _maybe_export(job, export_to)


@app.command()
def request(
    request_file: str = typer.Argument(..., help='JSON request, e.g. {"task": "ner", "text": "..."}'),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose logging"),
) -> None:
    """Serve one JSON request envelope and print the {success, data|error} response."""
    _setup_logging(verbose)
    config = _load_config()

    import asyncio
    import json

    from clinical_nlp.inference.client import InferenceClient
    from clinical_nlp.inference.tasks import ahandle_request

    try:
        payload = json.loads(Path(request_file).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error:[/red] Could not read request: {e}")
        raise typer.Exit(1) from None

    envelope = asyncio.run(ahandle_request(InferenceClient.from_config(config), payload, config))
    console.print_json(json.dumps(envelope))
    if not envelope["success"]:
        raise typer.Exit(1)


@app.command()
def info() -> None:
    """Show the effective configuration."""
    config = ClinicalNLPConfig()

    table = Table(title="clinical-nlp Configuration", show_header=True, header_style="bold cyan")
    table.add_column("Setting", style="dim")
    table.add_column("Value")
    table.add_row("API key", "set" if config.hf_api_key else "[red]missing[/red]")
    table.add_row("Service URL", config.api_url)
    table.add_row("NER model", config.ner_model)
    table.add_row("Summarization model", config.summarization_model)
    table.add_row("QA model", config.qa_model)
    table.add_row("Confidence threshold", str(config.confidence_threshold))
    table.add_row("Requests per minute", str(config.rpm))
    table.add_row("Output directory", str(config.output_dir))
    console.print(table)
