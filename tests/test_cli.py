"""Tests for the finsim command line interface."""

import json

import pytest
from click.testing import CliRunner

from finsim.__main__ import cli

# Keep the console handler quiet so stdout holds only the JSON document
QUIET = {"FS_LOG_LEVEL": "WARNING"}

PRICES = "date,AAA,BBB\n" + "".join(
    f"2020-{m:02d}-28,{10 + m},{20 - m * 0.5}\n" for m in range(1, 13)
)


@pytest.fixture
def runner():
    return CliRunner()


class TestBacktestCommand:
    """Test `finsim backtest`."""

    def test_summary(self, runner):
        with runner.isolated_filesystem():
            with open("prices.csv", "w") as f:
                f.write(PRICES)
            result = runner.invoke(cli, [
                "backtest", "-p", "prices.csv", "-a", "AAA=0.6", "-a", "BBB=0.4",
                "-s", "2020-01-01", "-e", "2020-12-01", "--initial", "10000", "--monthly", "500",
            ])
        assert result.exit_code == 0, result.output
        assert "Final value" in result.output
        assert "AAA" in result.output

    def test_json(self, runner):
        with runner.isolated_filesystem():
            with open("prices.csv", "w") as f:
                f.write(PRICES)
            result = runner.invoke(cli, [
                "backtest", "-p", "prices.csv", "-a", "AAA=1", "-s", "20200101", "-e", "20201201",
                "--initial", "1000", "--json",
            ], env=QUIET)
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert len(data["portfolio_evolution"]) == 12

    def test_bad_allocation(self, runner):
        with runner.isolated_filesystem():
            with open("prices.csv", "w") as f:
                f.write(PRICES)
            result = runner.invoke(cli, [
                "backtest", "-p", "prices.csv", "-a", "AAA=0.5", "-s", "2020-01-01", "-e", "2020-12-01",
                "--initial", "1000",
            ])
        assert result.exit_code != 0
        assert "assets" in result.output

    def test_bad_asset_syntax(self, runner):
        with runner.isolated_filesystem():
            with open("prices.csv", "w") as f:
                f.write(PRICES)
            result = runner.invoke(cli, [
                "backtest", "-p", "prices.csv", "-a", "AAA", "-s", "2020-01-01", "-e", "2020-12-01",
            ])
        assert result.exit_code != 0

    def test_blank_ticker_is_reported(self, runner):
        with runner.isolated_filesystem():
            with open("prices.csv", "w") as f:
                f.write(PRICES)
            result = runner.invoke(cli, [
                "backtest", "-p", "prices.csv", "-a", " =1.0", "-s", "2020-01-01", "-e", "2020-12-01",
            ])
        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "assets.0.ticker" in result.output


class TestDebtCommands:
    """Test `finsim schedule` and `finsim debt`."""

    def test_schedule(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, [
                "schedule", "--balance", "10000", "--rate", "0.12", "--term", "12", "--system", "SAC", "--tr", "0",
            ])
        assert result.exit_code == 0, result.output
        assert "833.33" in result.output
        assert "94.89" in result.output

    def test_debt_json(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, [
                "debt", "--balance", "50000", "--rate", "0.15", "--term", "60",
                "--budget", "2500", "--split", "500", "--rentability", "0.10", "--json",
            ], env=QUIET)
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert set(data) == {"sniper", "hybrid", "rentability", "break_even_month"}

    def test_debt_budget_too_low(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, [
                "debt", "--balance", "50000", "--rate", "0.15", "--term", "60",
                "--budget", "500", "--rentability", "0.10",
            ])
        assert result.exit_code != 0
        assert "monthly_budget" in result.output
