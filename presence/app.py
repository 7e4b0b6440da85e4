# ==============================================================================
# Presence Tracker CLI
# ==============================================================================
"""
Command-line interface for presence tracking and compliance reporting.

Usage:
    presence --help
    presence status
    presence config show
    presence tracker run --events presence.jsonl
    presence tracker restore
    presence tracker totals guild-1
    presence group threshold-set guild-1 10h --prorate
    presence group threshold-show guild-1
    presence group excuse guild-1 member-7 --until 2024-06-01
    presence group revoke guild-1 member-7
    presence group reset guild-1 -y
    presence report guild-1 --members members.json
"""

# ==============================================================================
# App Configuration
# ==============================================================================
# Set consistent terminal width for help output formatting
import os

import typer

if "COLUMNS" not in os.environ:
    os.environ["COLUMNS"] = "115"

app = typer.Typer(
    name="presence",
    help="Presence session tracking and compliance reporting CLI",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

tracker_app = typer.Typer(
    help="Session tracker operations",
    no_args_is_help=True,
)
app.add_typer(tracker_app, name="tracker")

# Register tracker commands from cli.tracker module
from presence.cli.tracker import tracker_restore, tracker_run, tracker_totals

tracker_app.command("run")(tracker_run)
tracker_app.command("restore")(tracker_restore)
tracker_app.command("totals")(tracker_totals)

group_app = typer.Typer(
    help="Group thresholds, excusals and resets",
    no_args_is_help=True,
)
app.add_typer(group_app, name="group")

# Register group commands from cli.group module
from presence.cli.group import excuse, group_reset, revoke, threshold_set, threshold_show

group_app.command("threshold-set")(threshold_set)
group_app.command("threshold-show")(threshold_show)
group_app.command("excuse")(excuse)
group_app.command("revoke")(revoke)
group_app.command("reset")(group_reset)

config_app = typer.Typer(
    help="Configuration management",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")

# Register config commands from cli.config module
from presence.cli.config import config_show

config_app.command("show")(config_show)

# Report command is imported from presence.cli.report
from presence.cli.report import report_run

app.command("report")(report_run)

# Status command is imported from presence.cli.status
from presence.cli.status import show_status

app.command("status")(show_status)


# ==============================================================================
# Entry Point
# ==============================================================================


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
