from __future__ import annotations

from typing import Iterator, List, Optional
from pathlib import Path
import json
import os
import uuid

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
import httpx
from pydantic import ValidationError

from exporter.pdf import export_itinerary
from orchestrator.config import CONFIG
from orchestrator.models import Itinerary, Preferences


INTEREST_TAGS: List[str] = [
    "History",
    "Art & Culture",
    "Foodie",
    "Adventure",
    "Nature",
    "Nightlife",
    "Shopping",
    "Relaxation",
    "Anime",
    "Technology",
    "Architecture",
    "Music",
]

BUDGET_OPTIONS = [
    {"value": "budget", "label": "Budget-Friendly", "description": "Backpacker-friendly and cost-effective choices."},
    {"value": "moderate", "label": "Moderate", "description": "A balance of comfort and value."},
    {"value": "luxury", "label": "Luxury", "description": "Premium experiences and top-tier services."},
]


app = typer.Typer()
console = Console()
trace_console = Console(stderr=True)


def _orchestrator_url() -> str:
    return os.getenv("ORCHESTRATOR_URL", "http://localhost:3002").rstrip("/")


def iter_sse_payloads(lines: Iterator[str]) -> Iterator[dict]:
    """Decode ``data:`` lines until ``[DONE]``; anything else is skipped."""
    for raw_line in lines:
        if not raw_line:
            continue
        line = raw_line.decode("utf-8") if isinstance(raw_line, (bytes, bytearray)) else raw_line
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            break
        try:
            yield json.loads(data)
        except json.JSONDecodeError:
            # Not JSON; ignore
            continue


def describe_progress(previous: Optional[Itinerary], current: Itinerary) -> List[str]:
    """Rich-markup lines for whatever ``current`` adds over ``previous``."""
    out: List[str] = []
    header_new = bool(current.trip_title) and (previous is None or previous.trip_title is None)
    if header_new:
        out.append(f"[bold cyan]{escape(current.trip_title)}[/bold cyan]")
        out.append(f"[dim]{escape(current.subtitle)}[/dim]")
        out.append(escape(current.trip_summary or ""))

    seen_days = {p.day for p in previous.daily_plans} if previous else set()
    new_days = False
    for plan in current.daily_plans:
        if plan.day in seen_days:
            continue
        new_days = True
        out.append(f"\n[bold]Day {plan.day}: {escape(plan.title)}[/bold]")
        if plan.summary:
            out.append(f"[italic]{escape(plan.summary)}[/italic]")
        for activity in plan.activities:
            out.append(
                f"  • ({escape(activity.time)}) [bold]{escape(activity.name)}[/bold]: {escape(activity.description)}"
            )
    if (header_new or new_days) and current.pending_days:
        out.append(f"[dim]{current.pending_days} more day(s) on the way...[/dim]")

    already_packed = len(previous.packing_list or []) if previous else 0
    for item in (current.packing_list or [])[already_packed:]:
        out.append(f"[green]Pack:[/green] {escape(item)}")

    if current.travel_cost and (previous is None or previous.travel_cost is None):
        cost = current.travel_cost
        if cost.mode == "other":
            out.append(f"[yellow]A Note on Travel:[/yellow] {escape(cost.cost_disclaimer)}")
        else:
            out.append(
                f"[yellow]Estimated {cost.mode.capitalize()} Cost:[/yellow] {escape(cost.estimated_cost)}"
                f" [dim]({escape(cost.cost_disclaimer)})[/dim]"
            )

    if current.destination_quote and (previous is None or previous.destination_quote is None):
        quote = current.destination_quote
        line = f'[magenta]"{escape(quote.quote)}"[/magenta] - {escape(quote.author)}'
        if quote.translation:
            line += f" [dim]({escape(quote.translation)})[/dim]"
        out.append(line)
    return out


@app.command()
def tags() -> None:
    """List suggested interest tags and budget options."""
    console.print("[bold]Interests:[/bold] " + ", ".join(INTEREST_TAGS))
    for option in BUDGET_OPTIONS:
        console.print(f"[bold]{option['value']}[/bold] - {option['label']}: {option['description']}")


@app.command()
def plan(
    destination: str = typer.Argument(..., help="Where you are going (e.g., 'Tokyo, Japan')."),
    origin: str = typer.Option(..., "--from", "-f", help="Where you are travelling from."),
    days: int = typer.Option(5, "--days", "-d", help="Trip length in days (1-14)."),
    interests: Optional[List[str]] = typer.Option(
        None, "--interest", "-i", help="Interests for the trip (repeatable, e.g. 'History')."
    ),
    budget: str = typer.Option("moderate", "--budget", "-b", help="budget, moderate or luxury."),
    session_id: Optional[str] = typer.Option(None, "--session", help="Reuse a session id."),
    pdf_dir: Optional[Path] = typer.Option(None, "--pdf", help="Write the finished itinerary as a PDF into this directory."),
) -> None:
    """Generate an itinerary, printing each part as it arrives."""
    try:
        preferences = Preferences(
            origin=origin,
            destination=destination,
            duration=days,
            interests=interests or [],
            budget=budget,
        )
    except ValidationError as e:
        for err in e.errors():
            field = ".".join(str(p) for p in err["loc"])
            trace_console.print(f"Invalid {field}: {err['msg']}", style="bold red")
        raise typer.Exit(code=1)

    session_id = session_id or str(uuid.uuid4())
    url = f"{_orchestrator_url()}/plan-trip"
    body = {"session_id": session_id, "preferences": preferences.model_dump(mode="json", by_alias=True)}
    itinerary: Optional[Itinerary] = None
    failure: Optional[str] = None

    with console.status("Planning your trip..."):
        try:
            with httpx.stream(
                "POST",
                url,
                json=body,
                headers={"Accept": "text/event-stream", "Content-Type": "application/json"},
                timeout=None,
            ) as resp:
                resp.raise_for_status()
                for payload in iter_sse_payloads(resp.iter_lines()):
                    ptype = payload.get("type")
                    if ptype == "snapshot":
                        current = Itinerary.model_validate(payload["itinerary"])
                        for line in describe_progress(itinerary, current):
                            console.print(line)
                        itinerary = current
                    elif ptype in ("error", "cancelled"):
                        failure = payload.get("content", "Unknown error")
        except httpx.HTTPError as e:
            failure = f"Request failed: {e}"

    if failure:
        trace_console.print(failure, style="bold red")
        raise typer.Exit(code=1)
    if itinerary is None or not itinerary.is_complete:
        trace_console.print("The itinerary did not finish.", style="bold red")
        raise typer.Exit(code=1)

    console.print(f"\nSession: {session_id}", style="dim")
    if pdf_dir:
        path = export_itinerary(itinerary, pdf_dir, CONFIG.brand_name)
        console.print(f"Saved itinerary to {path}", style="green")


@app.command("map")
def day_map(
    session_id: str = typer.Argument(..., help="Session id printed by 'plan'."),
    day: int = typer.Argument(..., help="Day number to locate."),
) -> None:
    """Look up coordinates for one day's activities."""
    url = f"{_orchestrator_url()}/sessions/{session_id}/days/{day}/map"
    with console.status("Locating activities..."):
        try:
            resp = httpx.post(url, timeout=None)
        except httpx.HTTPError as e:
            trace_console.print(f"Request failed: {e}", style="bold red")
            raise typer.Exit(code=1)
    if resp.status_code != 200:
        detail = resp.json().get("detail", resp.text) if resp.headers.get("content-type", "").startswith("application/json") else resp.text
        trace_console.print(str(detail), style="bold red")
        raise typer.Exit(code=1)

    table = Table(title=f"Day {day}")
    table.add_column("#", justify="right")
    table.add_column("Activity")
    table.add_column("Location")
    table.add_column("Lat", justify="right")
    table.add_column("Lng", justify="right")
    for index, activity in enumerate(resp.json().get("activities", []), start=1):
        lat = activity.get("latitude")
        lng = activity.get("longitude")
        table.add_row(
            str(index),
            activity.get("name", ""),
            activity.get("location", ""),
            f"{lat:.5f}" if lat is not None else "-",
            f"{lng:.5f}" if lng is not None else "-",
        )
    console.print(Panel(table, expand=False))


if __name__ == "__main__":
    app()
