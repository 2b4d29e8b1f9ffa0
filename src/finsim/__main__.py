import json
import logging

import click

from finsim.config import Settings
from finsim.errors import ValidationError
from finsim.logging_config import setup_logging
from finsim.models import AmortizationSystem, RebalanceFrequency

logger = logging.getLogger(__name__)

DATE_FORMATS = ["%Y-%m-%d", "%Y%m%d"]


def _parse_assets(values: tuple[str, ...]) -> list[dict]:
    assets = []
    for value in values:
        ticker, sep, weight = value.partition("=")
        if not sep or not ticker:
            raise click.BadParameter(f"expected TICKER=WEIGHT, got {value!r}", param_hint="--asset")
        try:
            allocation = float(weight)
        except ValueError:
            raise click.BadParameter(f"invalid weight in {value!r}", param_hint="--asset")
        assets.append({"ticker": ticker.strip().upper(), "target_allocation": allocation})
    return assets


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """finsim - Portfolio backtesting and debt-vs-invest simulation"""
    settings = Settings()
    setup_logging(settings.log_dir, settings.log_level)
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    ctx.obj = settings


@cli.command()
@click.option("--prices", "-p", "prices_path", required=True, type=click.Path(exists=True, dir_okay=False),
              help="CSV with a 'date' column and one close column per ticker")
@click.option("--dividends", "dividends_path", default=None, type=click.Path(exists=True, dir_okay=False),
              help="CSV with columns ticker, ex_date, amount_per_share")
@click.option("--benchmarks", "benchmarks_path", default=None, type=click.Path(exists=True, dir_okay=False),
              help="CSV with a 'date' column and one level column per benchmark")
@click.option("--asset", "-a", "asset_values", multiple=True, required=True,
              help="Target allocation as TICKER=WEIGHT (repeatable)")
@click.option("--start", "-s", "start_date", required=True, type=click.DateTime(DATE_FORMATS))
@click.option("--end", "-e", "end_date", required=True, type=click.DateTime(DATE_FORMATS))
@click.option("--initial", "initial_capital", type=float, default=0.0, show_default=True)
@click.option("--monthly", "monthly_contribution", type=float, default=0.0, show_default=True)
@click.option("--rebalance", type=click.Choice([f.value for f in RebalanceFrequency]),
              default=RebalanceFrequency.MONTHLY.value, show_default=True)
@click.option("--benchmark", "benchmark_names", multiple=True, help="Benchmark column to compare against")
@click.option("--cash-dividends", is_flag=True, help="Keep dividends in cash instead of reinvesting")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
@click.pass_obj
def backtest(settings: Settings, prices_path, dividends_path, benchmarks_path, asset_values,
             start_date, end_date, initial_capital, monthly_contribution, rebalance,
             benchmark_names, cash_dividends, as_json):
    """Backtest a target-allocation portfolio over historical prices."""
    from finsim.analysis.engine import PortfolioSimulationEngine
    from finsim.analysis.policies import CashDividendPolicy
    from finsim.analysis.validation import parse_simulation_config
    from finsim.data.feeds import load_benchmark_csv, load_dividend_csv, load_price_csv

    try:
        config = parse_simulation_config({
            "assets": _parse_assets(asset_values),
            "start_date": start_date.date(),
            "end_date": end_date.date(),
            "initial_capital": initial_capital,
            "monthly_contribution": monthly_contribution,
            "rebalance_frequency": rebalance,
            "benchmarks": benchmark_names,
        })
        engine = PortfolioSimulationEngine.from_settings(
            settings,
            load_price_csv(prices_path),
            dividend_feed=load_dividend_csv(dividends_path) if dividends_path else None,
            benchmark_feed=load_benchmark_csv(benchmarks_path) if benchmarks_path else None,
            dividend_policy=CashDividendPolicy() if cash_dividends else None,
        )
        result = engine.run(config)
    except ValidationError as e:
        logger.debug(f"Rejected input: {e}")
        raise click.ClickException(str(e))

    if as_json:
        click.echo(result.model_dump_json(indent=2))
        return

    click.echo(f"Months simulated:   {len(result.portfolio_evolution)}")
    click.echo(f"Total invested:     {result.total_invested:,.2f}")
    click.echo(f"Final value:        {result.final_value:,.2f}")
    click.echo(f"Cash reserve:       {result.final_cash_reserve:,.2f}")
    click.echo(f"Dividends received: {result.total_dividends_received:,.2f}")
    click.echo(f"Total return:       {result.total_return:.2%}")
    click.echo(f"Annualized return:  {result.annualized_return:.2%}")
    click.echo(f"Volatility:         {result.volatility:.2%}")
    sharpe = "n/a" if result.sharpe_ratio is None else f"{result.sharpe_ratio:.2f}"
    click.echo(f"Sharpe ratio:       {sharpe}")
    click.echo(f"Max drawdown:       {result.max_drawdown:.2%}")
    click.echo(f"Months +/-:         {result.positive_months}/{result.negative_months}")
    for name, diff in result.benchmark_outperformance.items():
        click.echo(f"vs {name}:           {diff:+.2%}")

    click.echo("\nAssets:")
    for perf in result.asset_performance:
        click.echo(
            f"  {perf.ticker:<8} {perf.final_shares:>10g} sh  value {perf.final_value:>12,.2f}  "
            f"avg {perf.average_price:>9,.2f}  return {perf.total_return:+.2%}"
        )
    if result.data_quality_issues:
        click.echo(f"\n{len(result.data_quality_issues)} data quality issues (see log)")
    for alert in result.alerts:
        click.echo(f"ALERT: {alert}", err=True)


def _debt_options(func):
    options = [
        click.option("--balance", type=float, required=True, help="Outstanding balance"),
        click.option("--rate", "interest_rate_annual", type=float, required=True,
                     help="Annual interest rate as a fraction (0.12 = 12%)"),
        click.option("--term", "term_months", type=int, required=True, help="Remaining term in months"),
        click.option("--system", "amortization_system",
                     type=click.Choice([s.value for s in AmortizationSystem]),
                     default=AmortizationSystem.PRICE.value, show_default=True),
        click.option("--payment", "monthly_payment", type=float, default=None,
                     help="Contractual monthly payment (default: first scheduled payment)"),
        click.option("--tr", "monthly_tr", type=float, default=None,
                     help="Monthly referential rate (default from settings)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@cli.command()
@_debt_options
@click.pass_obj
def schedule(settings: Settings, balance, interest_rate_annual, term_months, amortization_system,
             monthly_payment, monthly_tr):
    """Print the amortization schedule of a debt."""
    from finsim.analysis.amortization import schedule_totals
    from finsim.services.simulation import SimulationService

    service = SimulationService(settings=settings)
    try:
        entries = service.schedule({
            "balance": balance,
            "interest_rate_annual": interest_rate_annual,
            "term_months": term_months,
            "amortization_system": amortization_system,
            "monthly_payment": monthly_payment,
        }, monthly_tr)
    except ValidationError as e:
        logger.debug(f"Rejected input: {e}")
        raise click.ClickException(str(e))

    click.echo(f"{'month':>5} {'correction':>12} {'interest':>12} {'amortization':>13} {'payment':>12} {'balance':>14}")
    for e in entries:
        click.echo(
            f"{e.month:>5} {e.correction:>12,.2f} {e.interest_paid:>12,.2f} "
            f"{e.amortization:>13,.2f} {e.payment:>12,.2f} {e.balance:>14,.2f}"
        )
    totals = schedule_totals(entries)
    click.echo(
        f"\nTotal paid {totals['total_paid']:,.2f} "
        f"(interest {totals['total_interest']:,.2f}, correction {totals['total_correction']:,.2f})"
    )


@cli.command()
@_debt_options
@click.option("--budget", "monthly_budget", type=float, required=True, help="Monthly budget for debt + investing")
@click.option("--split", "investment_split", type=float, default=0.0, show_default=True,
              help="Hybrid: fixed amount invested each month out of the surplus")
@click.option("--rentability", type=float, required=True, help="Annual return of invested money (0.10 = 10%)")
@click.option("--max-months", type=int, default=None, help="Horizon cap (default from settings)")
@click.option("--json", "as_json", is_flag=True, help="Print the full comparison as JSON")
@click.pass_obj
def debt(settings: Settings, balance, interest_rate_annual, term_months, amortization_system,
         monthly_payment, monthly_tr, monthly_budget, investment_split, rentability, max_months, as_json):
    """Compare paying the debt first (Sniper) with splitting the surplus (Hybrid)."""
    from finsim.services.simulation import SimulationService

    sim_config = {"monthly_budget": monthly_budget, "investment_split": investment_split}
    if monthly_tr is not None:
        sim_config["monthly_tr"] = monthly_tr
    if max_months is not None:
        sim_config["max_months"] = max_months

    service = SimulationService(settings=settings)
    try:
        comparison = service.compare_debt_strategies(
            {
                "balance": balance,
                "interest_rate_annual": interest_rate_annual,
                "term_months": term_months,
                "amortization_system": amortization_system,
                "monthly_payment": monthly_payment,
            },
            sim_config,
            rentability,
        )
    except ValidationError as e:
        logger.debug(f"Rejected input: {e}")
        raise click.ClickException(str(e))

    if as_json:
        click.echo(json.dumps(comparison.model_dump(mode="json"), indent=2))
        return

    click.echo(f"Horizon: {len(comparison.hybrid.monthly_data)} months, "
               f"rentability {comparison.rentability.annual_rate:.2%}")
    for result in (comparison.sniper, comparison.hybrid):
        payoff = result.payoff_month if result.payoff_month is not None else "not paid off"
        click.echo(
            f"  {result.strategy.value:<7} payoff {payoff}  net worth {result.final_net_worth:,.2f}  "
            f"interest {result.total_interest_paid:,.2f}  returns {result.total_investment_return:,.2f}"
        )
    break_even = comparison.break_even_month or "never"
    click.echo(f"Break-even month: {break_even}")


if __name__ == "__main__":
    cli()
