# ==============================================================================
# Tests for CLI Help Commands
# ==============================================================================
"""
Tests that all CLI help commands generate the expected output.

Verifies that every command and subcommand in the presence CLI:
- Exits with code 0 when invoked with --help
- Contains the expected description text
- Lists the expected subcommands or options

These tests use the real app from presence.app (not minimal Typer apps)
to ensure the full command tree is wired up correctly and that Typer can
introspect all command function signatures without errors.
"""

from typer.testing import CliRunner

from presence.app import app

runner = CliRunner()


# ==============================================================================
# Root App
# ==============================================================================


class TestRootHelp:
    """Tests for the root `presence --help` output."""

    def test_exit_code(self):
        """Root --help exits successfully."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0

    def test_description(self):
        """Root --help shows the app description."""
        result = runner.invoke(app, ["--help"])
        assert "Presence session tracking and compliance reporting CLI" in result.output

    def test_lists_all_subcommands(self):
        """Root --help lists every top-level command."""
        result = runner.invoke(app, ["--help"])
        for cmd in ["config", "group", "report", "status", "tracker"]:
            assert cmd in result.output, f"Missing command: {cmd}"


# ==============================================================================
# Tracker
# ==============================================================================


class TestTrackerHelp:
    """Tests for `presence tracker` help output."""

    def test_exit_code(self):
        result = runner.invoke(app, ["tracker", "--help"])
        assert result.exit_code == 0

    def test_description(self):
        result = runner.invoke(app, ["tracker", "--help"])
        assert "Session tracker operations" in result.output

    def test_lists_subcommands(self):
        result = runner.invoke(app, ["tracker", "--help"])
        for cmd in ["run", "restore", "totals"]:
            assert cmd in result.output, f"Missing subcommand: {cmd}"


class TestTrackerRunHelp:
    """Tests for `presence tracker run --help` output."""

    def test_description(self):
        result = runner.invoke(app, ["tracker", "run", "--help"])
        assert result.exit_code == 0
        assert "Consume presence events" in result.output

    def test_lists_options(self):
        result = runner.invoke(app, ["tracker", "run", "--help"])
        assert "--events" in result.output


class TestTrackerRestoreHelp:
    """Tests for `presence tracker restore --help` output."""

    def test_description(self):
        result = runner.invoke(app, ["tracker", "restore", "--help"])
        assert result.exit_code == 0
        assert "last heartbeat" in result.output


class TestTrackerTotalsHelp:
    """Tests for `presence tracker totals --help` output."""

    def test_description(self):
        result = runner.invoke(app, ["tracker", "totals", "--help"])
        assert result.exit_code == 0
        assert "Show tracked presence per member" in result.output

    def test_lists_options(self):
        result = runner.invoke(app, ["tracker", "totals", "--help"])
        assert "--json" in result.output


# ==============================================================================
# Group
# ==============================================================================


class TestGroupHelp:
    """Tests for `presence group` help output."""

    def test_exit_code(self):
        result = runner.invoke(app, ["group", "--help"])
        assert result.exit_code == 0

    def test_description(self):
        result = runner.invoke(app, ["group", "--help"])
        assert "Group thresholds, excusals and resets" in result.output

    def test_lists_subcommands(self):
        result = runner.invoke(app, ["group", "--help"])
        for cmd in ["threshold-set", "threshold-show", "excuse", "revoke", "reset"]:
            assert cmd in result.output, f"Missing subcommand: {cmd}"


class TestThresholdSetHelp:
    """Tests for `presence group threshold-set --help` output."""

    def test_description(self):
        result = runner.invoke(app, ["group", "threshold-set", "--help"])
        assert result.exit_code == 0
        assert "Set the minimum presence duration" in result.output

    def test_lists_options(self):
        result = runner.invoke(app, ["group", "threshold-set", "--help"])
        for opt in ["--prorate", "--no-prorate", "--cycle"]:
            assert opt in result.output, f"Missing option: {opt}"


class TestExcuseHelp:
    """Tests for `presence group excuse --help` output."""

    def test_description(self):
        result = runner.invoke(app, ["group", "excuse", "--help"])
        assert result.exit_code == 0
        assert "Excuse a member" in result.output

    def test_lists_options(self):
        result = runner.invoke(app, ["group", "excuse", "--help"])
        for opt in ["--until", "--reason"]:
            assert opt in result.output, f"Missing option: {opt}"


class TestGroupResetHelp:
    """Tests for `presence group reset --help` output."""

    def test_description(self):
        result = runner.invoke(app, ["group", "reset", "--help"])
        assert result.exit_code == 0
        assert "Zero every member total" in result.output

    def test_lists_options(self):
        result = runner.invoke(app, ["group", "reset", "--help"])
        assert "--yes" in result.output


# ==============================================================================
# Report
# ==============================================================================


class TestReportHelp:
    """Tests for `presence report --help` output."""

    def test_exit_code(self):
        result = runner.invoke(app, ["report", "--help"])
        assert result.exit_code == 0

    def test_description(self):
        result = runner.invoke(app, ["report", "--help"])
        assert "Generate a presence compliance report" in result.output

    def test_lists_options(self):
        result = runner.invoke(app, ["report", "--help"])
        for opt in [
            "--members", "--days", "--start", "--end", "--batch-size",
            "--refresh", "--channel", "--outbox", "--json",
        ]:
            assert opt in result.output, f"Missing option: {opt}"


# ==============================================================================
# Config & Status
# ==============================================================================


class TestConfigHelp:
    """Tests for `presence config` help output."""

    def test_description(self):
        result = runner.invoke(app, ["config", "--help"])
        assert result.exit_code == 0
        assert "Configuration management" in result.output

    def test_lists_subcommands(self):
        result = runner.invoke(app, ["config", "--help"])
        assert "show" in result.output


class TestConfigShowHelp:
    """Tests for `presence config show --help` output."""

    def test_description(self):
        result = runner.invoke(app, ["config", "show", "--help"])
        assert result.exit_code == 0
        assert "Display current configuration" in result.output


class TestStatusHelp:
    """Tests for `presence status --help` output."""

    def test_description(self):
        result = runner.invoke(app, ["status", "--help"])
        assert result.exit_code == 0
        assert "Valkey health" in result.output
