import io

from rich.console import Console
from typer.testing import CliRunner

from client_cli.main import INTEREST_TAGS, app, describe_progress, iter_sse_payloads
from orchestrator.models import (
    Activity,
    DayPlan,
    TravelCost,
    TripHeader,
    new_itinerary,
    with_day_plan,
    with_header,
    with_packing_item,
    with_travel_cost,
)


runner = CliRunner()


def test_tags_lists_interests_and_budgets():
    result = runner.invoke(app, ["tags"])
    assert result.exit_code == 0
    assert INTEREST_TAGS[0] in result.output
    assert "Budget-Friendly" in result.output


def test_plan_rejects_invalid_input_before_calling_the_server(monkeypatch):
    monkeypatch.setenv("ORCHESTRATOR_URL", "http://127.0.0.1:9")
    result = runner.invoke(app, ["plan", "Tokyo, Japan", "--from", "New York", "--days", "20", "--interest", "Foodie"])
    assert result.exit_code == 1

    result = runner.invoke(app, ["plan", "Tokyo, Japan", "--from", "New York", "--days", "3"])
    assert result.exit_code == 1


def test_iter_sse_payloads_stops_at_done():
    lines = [
        "",
        'data: {"type": "snapshot", "n": 1}',
        ": keep-alive",
        "data: not-json",
        'data: {"type": "snapshot", "n": 2}',
        "data: [DONE]",
        'data: {"type": "snapshot", "n": 3}',
    ]
    assert [p["n"] for p in iter_sse_payloads(iter(lines))] == [1, 2]


def test_describe_progress_reports_only_new_parts(preferences):
    start = new_itinerary(preferences)
    headed = with_header(start, TripHeader(trip_title="Neon and Temples", trip_summary="Summary"))
    lines = describe_progress(start, headed)
    assert "Neon and Temples" in lines[0]
    assert "3-Day Adventure in Tokyo, Japan" in lines[1]

    day = DayPlan(day=2, title="Old Town", activities=[Activity(name="Senso-ji", description="Temple.", time="9 AM")])
    later = with_packing_item(with_day_plan(headed, day), "Passport")
    later = with_travel_cost(later, TravelCost(mode="train", estimated_cost="$80", cost_disclaimer="Rough."))
    lines = describe_progress(headed, later)
    text = "\n".join(lines)
    assert "Day 2: Old Town" in text
    assert "(9 AM)" in text
    assert "Passport" in text
    assert "Estimated Train Cost" in text
    assert "Neon and Temples" not in text

    assert describe_progress(later, later) == []


def test_describe_progress_counts_days_still_to_come(preferences):
    headed = with_header(new_itinerary(preferences), TripHeader(trip_title="T", trip_summary="S"))
    assert "3 more day(s) on the way" in describe_progress(None, headed)[-1]

    day = DayPlan(day=1, title="Start", activities=[])
    lines = describe_progress(headed, with_day_plan(headed, day))
    assert "2 more day(s) on the way" in lines[-1]


def test_describe_progress_escapes_model_text(preferences):
    headed = with_header(new_itinerary(preferences), TripHeader(trip_title="[/x] Tokyo", trip_summary="[bold]"))
    day = DayPlan(day=1, title="Day [one]", activities=[Activity(name="[/b]", description="x", time="9 AM")])
    lines = describe_progress(None, with_day_plan(headed, day))

    console = Console(file=io.StringIO(), width=200)
    for line in lines:
        console.print(line)
    text = console.file.getvalue()
    assert "[/x] Tokyo" in text
    assert "Day [one]" in text
    assert "[/b]" in text
