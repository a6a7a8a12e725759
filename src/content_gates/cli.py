"""Typer CLI for content-gates."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from content_gates.config import ConfigError, Settings
from content_gates.log import configure_logging
from content_gates.models import BUSINESS_TYPES, EnhancedContentDraft, EntityProfile, RunInput
from content_gates.storage import FileResultStore
from content_gates.workflow import (
    GateAState,
    GateBState,
    HttpStageClient,
    InputState,
    InvalidTransition,
    ResultState,
    StageCallError,
    WorkflowController,
)

app = typer.Typer(
    name="cg",
    help="content-gates: keyword to published content through approval gates.",
    add_completion=False,
)
console = Console()


def _settings() -> Settings:
    try:
        return Settings.from_env()
    except ValidationError as exc:
        rprint(f"[red]Error:[/red] Invalid configuration: {exc}")
        raise typer.Exit(1)


def _store(results_dir: Optional[str]) -> FileResultStore:
    return FileResultStore(results_dir or _settings().results_dir)


def _load_profile(path: Path) -> EntityProfile:
    if not path.exists():
        rprint(f"[red]Error:[/red] Profile file not found: {path}")
        raise typer.Exit(1)
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    try:
        return EntityProfile.model_validate(raw)
    except ValidationError as exc:
        rprint(f"[red]Error:[/red] Invalid entity profile: {exc}")
        raise typer.Exit(1)


# ── serve ────────────────────────────────────────────────────────────────────

@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind."),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on."),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    """Run the stage API with uvicorn."""
    import uvicorn

    configure_logging(log_level)
    try:
        _settings().validate_required()
    except ConfigError as exc:
        rprint(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1)

    uvicorn.run(
        "content_gates.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_config=None,
    )


# ── run (interactive gates) ──────────────────────────────────────────────────

def _show_error(exc: StageCallError) -> None:
    suffix = f" [dim](request {exc.request_id})[/dim]" if exc.request_id else ""
    rprint(f"[red]Error {exc.code}:[/red] {exc.message or 'request failed'}{suffix}")


def _show_verdict(verdict, label: str) -> None:
    colour = "green" if verdict.approved else "yellow"
    lines = [f"[{colour}]{'Approved' if verdict.approved else 'Rejected'}[/{colour}]"]
    lines += [f"- {reason}" for reason in verdict.reasons]
    if verdict.risk_flags:
        lines.append(f"[dim]Risk flags: {', '.join(verdict.risk_flags)}[/dim]")
    if verdict.suggested_fix:
        lines.append(f"Suggested fix: {verdict.suggested_fix}")
    rprint(Panel("\n".join(lines), title=label, border_style=colour))


def _show_opportunities(state: GateAState) -> None:
    table = Table(title=f"Opportunities ({state.analysis.query_classification})")
    table.add_column("#", style="dim", width=4)
    table.add_column("Title")
    table.add_column("Confidence")
    table.add_column("Risks", style="dim")
    for i, opp in enumerate(state.analysis.opportunities):
        marker = "*" if i == state.selected_index else ""
        table.add_row(f"{i}{marker}", opp.title, opp.confidence, ", ".join(opp.risk_indicators))
    console.print(table)


def _show_templates(state: GateBState) -> None:
    table = Table(title=f"Templates for: {state.opportunity.title}")
    table.add_column("#", style="dim", width=4)
    table.add_column("Name")
    table.add_column("Sections")
    table.add_column("FAQs")
    for i, template in enumerate(state.proposal.templates):
        marker = "*" if i == state.selected_index else ""
        table.add_row(f"{i}{marker}", template.name, str(len(template.sections)), str(len(template.faqs)))
    console.print(table)


def _show_draft(state: ResultState) -> None:
    draft = state.draft
    lines = [
        f"[bold]{draft.title}[/bold]",
        f"[dim]/{draft.slug}[/dim]",
        draft.meta_description,
        "",
    ]
    lines += [f"{s.heading_level.upper()} {s.heading_text}" for s in draft.sections]
    lines.append(f"{len(draft.faqs)} FAQs, ~{draft.metadata.word_count} words")
    if isinstance(draft, EnhancedContentDraft):
        lines.append(
            f"{len(draft.citable_answer_units)} answer units, "
            f"evidence ratio {draft.evidence_layer.verifiable_ratio:.0%}"
        )
    rprint(Panel("\n".join(lines), title="Draft"))
    _show_verdict(state.verdict, "Content review")


def _ask_choice(prompt: str, size: int) -> str:
    while True:
        answer = Prompt.ask(prompt).strip().lower()
        if answer in ("b", "q"):
            return answer
        if answer.isdigit() and int(answer) < size:
            return answer
        rprint(f"[yellow]Enter a number from 0 to {size - 1}, 'b' or 'q'.[/yellow]")


def _confirm_back(controller: WorkflowController) -> None:
    if Confirm.ask("Going back discards later work. Continue?", default=False):
        controller.confirm_back()
    else:
        controller.cancel_back()


def _step(controller: WorkflowController, started: bool) -> bool:
    """Run one interaction for the current stage; False ends the session."""
    state = controller.state

    if getattr(state, "pending_back", False):
        _confirm_back(controller)
        return True

    if isinstance(state, InputState):
        if not started or Confirm.ask("Analyze the keyword again?", default=True):
            rprint(f"[blue]Analyzing intent[/blue] for [bold]{state.run.keyword}[/bold]...")
            controller.analyze()
            return True
        return False

    if isinstance(state, GateAState):
        _show_opportunities(state)
        if state.verdict is not None:
            _show_verdict(state.verdict, "Opportunity review")
        answer = _ask_choice("Opportunity number ('b' back, 'q' quit)", len(state.analysis.opportunities))
        if answer == "q":
            return False
        if answer == "b":
            controller.back()
            return True
        controller.select_opportunity(int(answer))
        rprint("[blue]Reviewing opportunity[/blue] and proposing templates...")
        controller.validate_opportunity()
        return True

    if isinstance(state, GateBState):
        _show_templates(state)
        if state.verdict is not None:
            _show_verdict(state.verdict, "Template review")
        answer = _ask_choice("Template number ('b' back, 'q' quit)", len(state.proposal.templates))
        if answer == "q":
            return False
        if answer == "b":
            controller.back()
            return True
        controller.select_template(int(answer))
        rprint("[blue]Reviewing template[/blue] and generating content...")
        controller.validate_template()
        return True

    _show_draft(state)
    if state.published_id:
        rprint(f"[green]Published:[/green] {state.published_id}")
        return False
    choices = ["r", "b", "q"] + (["p"] if state.approved else [])
    answer = Prompt.ask("[p]ublish, [r]egenerate, [b]ack or [q]uit", choices=choices)
    if answer == "q":
        return False
    if answer == "b":
        controller.back()
    elif answer == "r":
        rprint("[blue]Regenerating[/blue] with the review feedback...")
        controller.regenerate()
    else:
        controller.publish()
    return True


@app.command()
def run(
    keyword: str = typer.Argument(..., help="Keyword to build content for."),
    location: Optional[str] = typer.Option(None, "--location", "-l", help="Target location."),
    business_type: Optional[str] = typer.Option(
        None, "--business-type", "-t", help=f"One of: {', '.join(BUSINESS_TYPES)}"
    ),
    profile: Optional[Path] = typer.Option(
        None, "--profile", help="YAML/JSON entity profile; enables the enhanced draft."
    ),
    server: str = typer.Option(
        "http://127.0.0.1:8000", "--server", "-s", envvar="CONTENT_GATES_SERVER", help="Stage API base URL."
    ),
    api_key: Optional[str] = typer.Option(None, "--api-key", envvar="API_KEY", help="Shared secret header."),
) -> None:
    """Walk a keyword through the gates interactively against a running server."""
    try:
        run_input = RunInput(
            keyword=keyword,
            location=location,
            business_type=business_type,
            entity_profile=_load_profile(profile) if profile else None,
        )
    except ValidationError as exc:
        rprint(f"[red]Error:[/red] Invalid input: {exc}")
        raise typer.Exit(1)

    client = HttpStageClient(base_url=server, api_key=api_key)
    controller = WorkflowController(client, run_input)
    started = False
    try:
        while True:
            try:
                if not _step(controller, started):
                    break
                started = True
            except StageCallError as exc:
                _show_error(exc)
                if not Confirm.ask("Retry?", default=True):
                    break
                try:
                    controller.retry()
                except StageCallError as retry_exc:
                    _show_error(retry_exc)
            except InvalidTransition as exc:
                rprint(f"[yellow]{exc}[/yellow]")
    finally:
        client.close()

    if controller.error is not None:
        raise typer.Exit(1)


# ── list ─────────────────────────────────────────────────────────────────────

@app.command(name="list")
def list_cmd(
    results_dir: Optional[str] = typer.Option(None, "-o", "--results-dir", help="Directory of published results."),
    n: int = typer.Option(20, "--n", "-n", help="Number of recent results to show."),
) -> None:
    """List published results, newest first."""
    summaries = _store(results_dir).list()[:n]
    if not summaries:
        rprint("[dim]No results found.[/dim]")
        raise typer.Exit(0)

    table = Table(title="Published Results", show_lines=False)
    table.add_column("#", style="dim", width=4)
    table.add_column("Result ID")
    table.add_column("Keyword")
    table.add_column("Published", style="dim")
    for i, summary in enumerate(summaries, 1):
        table.add_row(str(i), summary.id, summary.keyword, summary.published_at)
    console.print(table)


# ── show ─────────────────────────────────────────────────────────────────────

@app.command()
def show(
    result_id: str = typer.Argument(..., help="Result ID."),
    results_dir: Optional[str] = typer.Option(None, "-o", "--results-dir", help="Directory of published results."),
    as_json: bool = typer.Option(False, "--json", help="Print the whole bundle as JSON."),
) -> None:
    """Print a published result."""
    bundle = _store(results_dir).get(result_id)
    if bundle is None:
        rprint(f"[red]Error:[/red] Result not found: {result_id}")
        raise typer.Exit(1)

    if as_json:
        console.print_json(json.dumps(bundle.model_dump(mode="json"), ensure_ascii=False))
        return

    draft = bundle.content_draft
    opportunity = bundle.intent_analysis.opportunities[bundle.selected_opportunity_index]
    template = bundle.template_proposal.templates[bundle.selected_template_index]
    rprint(f"[bold]{draft.title}[/bold]  [dim]{bundle.id}[/dim]")
    rprint(f"Keyword: {bundle.keyword}" + (f"  ({bundle.location})" if bundle.location else ""))
    rprint(f"Opportunity: {opportunity.title}")
    rprint(f"Template: {template.name}")
    rprint(f"Published: {bundle.published_at}")
    rprint()
    for section in draft.sections:
        rprint(Panel(section.content, title=section.heading_text, border_style="dim"))


if __name__ == "__main__":
    app()
