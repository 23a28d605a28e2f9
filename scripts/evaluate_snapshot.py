"""
CCPI Snapshot Evaluator

Scores a JSON file of indicator values and prints the CCPI result as JSON.
Indicators missing from the file use their baseline defaults.

Usage:
    python scripts/evaluate_snapshot.py PATH [--policy dual|single] [--indent N] [--as-of ISO8601]

Options:
    --policy    Yield curve attribution (default: $CCPI_YIELD_CURVE_POLICY or dual)
    --indent    JSON indent (default: 2)
    --as-of     Snapshot timestamp (default: now). A fixed value makes the output
                reproducible across runs.
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
from ccpi.calculator import CCPICalculator
from ccpi.indicators import ConfigurationError, IndicatorSnapshot
from ccpi.pillars import YieldCurvePolicy

logger = logging.getLogger(__name__)


def parse_timestamp(value: str) -> datetime:
    """ISO 8601 timestamp; naive values are taken as UTC"""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid ISO 8601 timestamp: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Evaluate a CCPI indicator snapshot")
    parser.add_argument("path", help="JSON file mapping indicator names to values")
    parser.add_argument(
        "--policy",
        choices=[p.value for p in YieldCurvePolicy],
        default=None,
        help="Yield curve attribution (default: dual)",
    )
    parser.add_argument(
        "--indent",
        type=int,
        default=2,
        help="JSON indent (default: 2)",
    )
    parser.add_argument(
        "--as-of",
        type=parse_timestamp,
        default=None,
        help="Snapshot timestamp in ISO 8601 (default: now)",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    # Load environment
    load_dotenv()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    policy = args.policy or os.getenv('CCPI_YIELD_CURVE_POLICY', 'dual').lower()

    try:
        with open(args.path) as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        print(f"ERROR: could not read snapshot {args.path}: {e}", file=sys.stderr)
        return 1

    if not isinstance(raw, dict):
        print("ERROR: snapshot file must contain a JSON object", file=sys.stderr)
        return 1

    snapshot = IndicatorSnapshot.from_raw(raw, timestamp=args.as_of)
    if snapshot.malformed:
        logger.warning(f"Malformed values replaced by defaults: {', '.join(snapshot.malformed)}")
    if snapshot.ignored:
        logger.warning(f"Unknown indicators ignored: {', '.join(snapshot.ignored)}")

    try:
        calculator = CCPICalculator(yield_curve_policy=policy)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    output = calculator.evaluate(snapshot)
    print(json.dumps(output.to_dict(), indent=args.indent))
    return 0


if __name__ == '__main__':
    sys.exit(main())
