"""
Tests for CLI commands.
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from click.testing import CliRunner

from dotmac.cashier.cli import CLIDependencies, cli
from dotmac.cashier.processor.sandbox import SandboxProcessor

pytestmark = pytest.mark.integration


def _make_session() -> AsyncMock:
    """Async context manager standing in for a database session."""
    session = AsyncMock()
    session.__aenter__.return_value = session
    session.__aexit__.return_value = None
    session.get.return_value = None
    session.add = Mock()
    return session


def build_cli_dependencies(**overrides) -> CLIDependencies:
    session = _make_session()
    defaults = {
        "session_factory": lambda: session,
        "create_tables": AsyncMock(),
        "processor_factory": SandboxProcessor,
    }
    defaults.update(overrides)
    return CLIDependencies(**defaults)


class TestCLICommands:
    """Test CLI command functionality."""

    @pytest.fixture
    def runner(self):
        return CliRunner()

    def test_cli_commands_exist(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Cashier subscription billing CLI" in result.output
        for command in ["init-database", "register-plan"]:
            assert command in result.output

    def test_init_database(self, runner):
        deps = build_cli_dependencies()
        with patch("dotmac.cashier.cli._get_cli_dependencies", return_value=deps):
            result = runner.invoke(cli, ["init-database"])

        assert result.exit_code == 0
        assert "Database initialized successfully!" in result.output
        deps.create_tables.assert_awaited_once()

    def test_register_plan(self, runner):
        session = _make_session()
        processor = SandboxProcessor()
        deps = build_cli_dependencies(
            session_factory=lambda: session, processor_factory=lambda: processor
        )

        with patch("dotmac.cashier.cli._get_cli_dependencies", return_value=deps):
            result = runner.invoke(
                cli,
                [
                    "register-plan",
                    "--id",
                    "basic-monthly",
                    "--name",
                    "Basic",
                    "--amount",
                    "1000",
                    "--trial-days",
                    "14",
                ],
            )

        assert result.exit_code == 0, result.output
        assert "Plan basic-monthly registered (1000 USD/month)" in result.output
        assert processor.state.plans["basic-monthly"].trial_period_days == 14
        session.add.assert_called_once()
        session.commit.assert_awaited_once()

    def test_register_existing_plan_fails(self, runner):
        session = _make_session()
        session.get.return_value = Mock()
        deps = build_cli_dependencies(session_factory=lambda: session)

        with patch("dotmac.cashier.cli._get_cli_dependencies", return_value=deps):
            result = runner.invoke(
                cli, ["register-plan", "--id", "basic-monthly", "--name", "Basic", "--amount", "1000"]
            )

        assert result.exit_code == 1
        assert "DUPLICATE_PLAN" in result.output

    def test_register_plan_rejects_unknown_interval(self, runner):
        deps = build_cli_dependencies()
        with patch("dotmac.cashier.cli._get_cli_dependencies", return_value=deps):
            result = runner.invoke(
                cli,
                [
                    "register-plan",
                    "--id",
                    "p",
                    "--name",
                    "P",
                    "--amount",
                    "1",
                    "--interval",
                    "fortnight",
                ],
            )
        assert result.exit_code == 2
        assert "fortnight" in result.output
