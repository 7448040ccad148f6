"""
Command-line interface for CashflowLab.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from cashflowlab import Scenario, __version__
from cashflowlab.core.errors import ConfigError
from cashflowlab.core.results import NumpyEncoder
from cashflowlab.kpi import success_rate


def _load_json(path: str) -> dict:
    """Load JSON from file path."""
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _save_json(path: str, data: dict) -> None:
    """Save data as JSON to file path."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, cls=NumpyEncoder)


EXAMPLE_SCENARIO = {
    "id": "demo",
    "name": "Single world-equity ETF",
    "parameters": {
        "simulation_start": "2026-01-01",
        "simulation_end": "2046-01-01",
        "date_of_birth": "1990-01-01",
        "initial_liquid_cash": 4000.0,
        "currency_code": "EUR",
        "random_seed": 42,
        "monte_carlo_iterations": 100,
    },
    "economic_factors": [
        {
            "id": "Aktien_Welt",
            "name": "World equities",
            "model": "GeometricBrownianMotion",
            "expected_return": 0.07,
            "volatility": 0.15,
            "initial_value": 100.0,
        },
        {
            "id": "Inflation",
            "name": "Consumer prices",
            "model": "OrnsteinUhlenbeck",
            "expected_return": 0.02,
            "volatility": 0.01,
            "mean_reversion_speed": 0.5,
            "initial_value": 0.02,
        },
    ],
    "correlations": [
        {"factor_a": "Aktien_Welt", "factor_b": "Inflation", "correlation": -0.1}
    ],
    "asset_classes": [{"id": "equity", "name": "Equities", "target_weight": 1.0}],
    "allocation_profiles": [{"id": "growth", "weights": {"equity": 1.0}}],
    "tax_profiles": [
        {
            "id": "de",
            "capital_gains_tax_rate": 0.26375,
            "tax_free_allowance": 1000.0,
            "base_interest_rate": 0.0229,
        }
    ],
    "strategy_profiles": [
        {
            "id": "build-up",
            "cash_reserve_months": 3,
            "rebalancing_threshold": 0.05,
            "minimum_transaction_amount": 50.0,
            "lookahead_months": 12,
        }
    ],
    "lifecycle_phases": [
        {
            "id": "accumulation",
            "start_age": 18,
            "tax_profile_id": "de",
            "strategy_profile_id": "build-up",
            "allocation_profile_id": "growth",
        }
    ],
    "cashflow_streams": [
        {
            "id": "salary",
            "type": "Income",
            "amount": 3000.0,
            "interval": "Monthly",
            "start_date": "2026-01-01",
            "economic_factor_id": "Inflation",
        },
        {
            "id": "living",
            "type": "Expense",
            "amount": 1000.0,
            "interval": "Monthly",
            "start_date": "2026-01-01",
            "economic_factor_id": "Inflation",
        },
    ],
    "cashflow_events": [
        {
            "id": "car",
            "name": "New car",
            "type": "Expense",
            "amount": 25000.0,
            "target_date": "2031-06-01",
            "earliest_month_offset": -6,
            "latest_month_offset": 6,
        }
    ],
    "assets": [
        {
            "id": "world-etf",
            "name": "MSCI World ETF",
            "asset_class_id": "equity",
            "economic_factor_id": "Aktien_Welt",
            "tax_type": "EquityFund",
            "is_active_savings_instrument": True,
            "transactions": [
                {"t": "2024-03-01", "type": "Buy", "quantity": 100, "price_per_unit": 80.0}
            ],
        }
    ],
}


def cmd_example(_) -> int:
    """Print a minimal working scenario JSON."""
    json.dump(EXAMPLE_SCENARIO, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


def cmd_run(args) -> int:
    """Run a scenario JSON and export per-trial results."""
    try:
        cfg = _load_json(args.input)
        scn = Scenario.from_dict(cfg)
        res = scn.run(
            trials=args.trials, seed=args.seed, months=args.months, trace=args.trace
        )
    except ConfigError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"Error running scenario: {e}", file=sys.stderr)
        return 1

    output = res.to_dict()
    output["success_rate"] = success_rate(res)
    if args.trace:
        output["traces"] = {
            str(t.trial): t.trace_frame().reset_index().astype({"t": str})
            for t in res.trials
            if t.trace
        }

    print(
        f"Simulated {len(res)} trial(s) x {res.months} month(s); "
        f"{len(res.failed())} failed"
    )
    if args.output:
        _save_json(args.output, output)
        print(f"Results saved to {args.output}")
    else:
        json.dump(output, sys.stdout, indent=2, cls=NumpyEncoder)
        sys.stdout.write("\n")

    return 2 if res.has_failures else 0


def cmd_validate(args) -> int:
    """Validate a scenario JSON."""
    try:
        cfg = _load_json(args.input)
        scn = Scenario.from_dict(cfg)
        report = scn.validate(mode="report")
    except ConfigError as e:
        if args.format == "json":
            error_report = {
                "has_errors": True,
                "has_warnings": False,
                "is_valid": False,
                "exit_code": 1,
                "error": str(e),
            }
            json.dump(error_report, sys.stdout, indent=2)
            sys.stdout.write("\n")
        else:
            print(f"❌ Validation failed: {e}")
        return 1
    except (OSError, ValueError) as e:
        print(f"Validation failed: {e}", file=sys.stderr)
        return 1

    if args.format == "json":
        json.dump(report.to_dict(), sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        print(str(report))

    if args.warn:
        return 0
    return report.get_exit_code()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cashflowlab",
        description="CashflowLab - Monte Carlo household cashflow simulation",
    )
    parser.add_argument(
        "--version", action="version", version=f"CashflowLab {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(
        dest="cmd", required=True, help="Available commands"
    )

    # Example command
    example_parser = subparsers.add_parser(
        "example", help="Print a minimal working scenario JSON"
    )
    example_parser.set_defaults(func=cmd_example)

    # Run command
    run_parser = subparsers.add_parser(
        "run", help="Run a scenario JSON and export JSON results"
    )
    run_parser.add_argument(
        "-i", "--input", required=True, help="Input scenario JSON file"
    )
    run_parser.add_argument(
        "-o", "--output", help="Output results JSON file (default: stdout)"
    )
    run_parser.add_argument(
        "--trials", type=int, default=None, help="Number of Monte Carlo trials"
    )
    run_parser.add_argument("--seed", type=int, default=None, help="Root random seed")
    run_parser.add_argument(
        "--months", type=int, default=None, help="Number of months to simulate"
    )
    run_parser.add_argument(
        "--trace", action="store_true", help="Include per-month traces"
    )
    run_parser.epilog = """
Exit codes:
  0  all trials completed
  1  configuration validation failed (nothing was simulated)
  2  the run finished but at least one trial failed
    """
    run_parser.set_defaults(func=cmd_run)

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a scenario JSON")
    validate_parser.add_argument(
        "-i", "--input", required=True, help="Input scenario JSON file"
    )
    validate_parser.add_argument(
        "--warn", action="store_true", help="Warn instead of error on issues"
    )
    validate_parser.add_argument(
        "--format", choices=["human", "json"], default="human", help="Output format"
    )
    validate_parser.set_defaults(func=cmd_validate)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
