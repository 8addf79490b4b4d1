"""
Oracle Gate CLI

Operator tooling around the cascade. Nothing here runs on the request path.

Usage:
    oracle-gate calibrate --demo -o artifacts/tau.json
    oracle-gate calibrate --cases cases.json --target-recall 0.95 -o artifacts/tau.json
    oracle-gate show artifacts/tau.json
    oracle-gate check "What time is it?" --scores EXISTENTIAL=0.1,FUNCTIONAL=0.8 --tau 0.7
    oracle-gate sweep --demo
    oracle-gate compare --demo
    oracle-gate demo-cases -o cases.json
"""

from typing import Dict, List, Optional
import argparse
import json
import logging
import sys

from rich import box
from rich.console import Console
from rich.table import Table

from oracle_gate.calibration import (
    Calibration,
    create_demo_cases,
    load_cases,
    save_cases,
)
from oracle_gate.config_loader import build_calibrator, build_orchestrator, build_scorer, load_gate_config
from oracle_gate.errors import GateError
from oracle_gate.offline import (
    CHOW_TAU,
    CostSensitiveStrategy,
    DEFAULT_SWEEP_THRESHOLDS,
    compare_strategies,
    recommend_threshold,
    threshold_sweep,
)
from oracle_gate.signals import Signal


console = Console()


# =============================================================================
# Helpers
# =============================================================================

def _load_corpus(args):
    if args.demo:
        return create_demo_cases()
    return load_cases(args.cases)


def parse_scores(spec: str) -> Dict[str, float]:
    """'EXISTENTIAL=0.1,FUNCTIONAL=0.8' -> dict."""
    scores = {}
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        name, sep, value = part.partition("=")
        if not sep:
            raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {part!r}")
        try:
            scores[name.strip()] = float(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"score for {name!r} is not a number: {value!r}") from None
    return scores


def parse_signal_json(value: str) -> dict:
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"signal is not valid JSON: {e}") from None
    if not isinstance(data, dict):
        raise argparse.ArgumentTypeError("signal must be a JSON object")
    return data


def print_calibration(calibration: Calibration) -> None:
    print("=" * 60)
    print("CALIBRATION")
    print("=" * 60)
    print(f"  tau:                 {calibration.tau:.4f}")
    print(f"  target recall:       {calibration.target_recall:.3f}")
    print(f"  positives:           {calibration.n_positive_samples}")
    print(f"  negatives:           {calibration.n_negative_samples}")
    print(f"  estimated skip rate: {calibration.estimated_skip_rate:.1%}")
    print(f"  revision / source:   {calibration.revision} / {calibration.source}")
    print(f"  timestamp:           {calibration.timestamp}")
    if calibration.score_stats:
        s = calibration.score_stats
        print(f"  positive scores:     mean={s.get('positive_mean', 0):.3f} "
              f"std={s.get('positive_std', 0):.3f} "
              f"range=[{s.get('positive_min', 0):.3f}, {s.get('positive_max', 0):.3f}]")
        print(f"  negative scores:     mean={s.get('negative_mean', 0):.3f} "
              f"std={s.get('negative_std', 0):.3f}")
    if calibration.stability_warning:
        print(f"\n  WARNING: {calibration.stability_warning}")


# =============================================================================
# Commands
# =============================================================================

def cmd_calibrate(args) -> int:
    calibrator = build_calibrator(load_gate_config(args.config))
    calibration = calibrator.calibrate(_load_corpus(args), target_recall=args.target_recall)
    print_calibration(calibration)
    if args.output:
        calibration.save(args.output)
        print(f"\nSaved calibration to: {args.output}")
    return 0


def cmd_show(args) -> int:
    print_calibration(Calibration.load(args.calibration))
    return 0


def cmd_check(args) -> int:
    if args.signal:
        signal = Signal.from_dict(args.signal)
    else:
        signal = Signal(
            category_scores=args.scores,
            crisis=args.crisis,
            high_stakes_triggered=args.triggered,
        )

    calibration = None
    if args.tau is not None and not args.calibration:
        calibration = Calibration.manual(args.tau)
    gate = build_orchestrator(args.config, args.calibration, calibration=calibration)
    if args.tau is not None and args.calibration:
        gate.set_threshold(args.tau)

    decision = gate.decide(signal, args.text, args.language)
    print(json.dumps(decision.to_dict(), indent=2, ensure_ascii=False))
    return 0


def cmd_sweep(args) -> int:
    cases = _load_corpus(args)
    scorer = build_scorer(load_gate_config(args.config))
    points = threshold_sweep(cases, scorer, args.thresholds)

    table = Table(title=f"THRESHOLD SWEEP ({len(cases)} cases)", box=box.SIMPLE)
    table.add_column("tau", justify="right")
    table.add_column("recall", justify="right")
    table.add_column("call rate", justify="right")
    table.add_column("FN", justify="right")
    for p in points:
        style = "red" if p.false_negatives else None
        table.add_row(f"{p.tau:.2f}", f"{p.recall:.1%}", f"{p.call_rate:.1%}", str(p.false_negatives), style=style)
    console.print(table)

    print("Recommended thresholds:")
    for target in (0.95, 0.90, 0.85):
        best = recommend_threshold(points, target)
        if best is None:
            print(f"  {target:.0%} recall: not reachable on this grid")
        else:
            print(f"  {target:.0%} recall: tau = {best.tau:.2f} (call rate {best.call_rate:.1%})")
    return 0


def cmd_compare(args) -> int:
    cases = _load_corpus(args)
    calibrator = build_calibrator(load_gate_config(args.config))
    if args.calibration:
        tau = Calibration.load(args.calibration).tau
    else:
        tau = calibrator.calibrate(cases, target_recall=args.target_recall).tau

    comparisons = compare_strategies(cases, [
        (calibrator.scorer, tau),
        (CostSensitiveStrategy(), CHOW_TAU),
    ])

    table = Table(title=f"STRATEGY COMPARISON ({len(cases)} cases)", box=box.SIMPLE)
    table.add_column("strategy", justify="left", style="bold", no_wrap=True)
    for name in ("tau", "recall", "call rate", "FN", "separation"):
        table.add_column(name, justify="right")
    for c in comparisons:
        r = c.result
        table.add_row(
            c.strategy,
            f"{c.tau:.3f}",
            f"{r.recall:.1%}",
            f"{r.call_rate:.1%}",
            str(r.false_negatives),
            f"{c.separation:.3f}",
        )
    console.print(table)
    return 0


def cmd_demo_cases(args) -> int:
    cases = create_demo_cases()
    save_cases(cases, args.output)
    print(f"Wrote {len(cases)} demo cases to: {args.output}")
    return 0


# =============================================================================
# Entry point
# =============================================================================

def _thresholds(value: str) -> List[float]:
    return [float(v) for v in value.split(",") if v.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="oracle-gate", description="Oracle admission-control tooling")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--config", help="Config file (default: $ORACLE_GATE_CONFIG or config/gate.json)")
    subparsers = parser.add_subparsers(dest="command", help="Command")

    def add_corpus(p):
        corpus = p.add_mutually_exclusive_group(required=True)
        corpus.add_argument("--cases", help="Labeled cases JSON file")
        corpus.add_argument("--demo", action="store_true", help="Use the built-in demo corpus")

    cal = subparsers.add_parser("calibrate", help="Compute tau from labeled cases")
    add_corpus(cal)
    cal.add_argument("--target-recall", type=float, default=None, help="Recall target (default from config)")
    cal.add_argument("--output", "-o", help="Where to write the calibration record")
    cal.set_defaults(func=cmd_calibrate)

    show = subparsers.add_parser("show", help="Print a calibration record")
    show.add_argument("calibration", help="Calibration JSON file")
    show.set_defaults(func=cmd_show)

    check = subparsers.add_parser("check", help="Run one message through the cascade")
    check.add_argument("text", help="Message text")
    check.add_argument("--language", "-l", default="en")
    check.add_argument("--scores", type=parse_scores, default="EXISTENTIAL=0.0", help="NAME=VALUE,... category scores")
    check.add_argument("--signal", type=parse_signal_json, help="Full signal as JSON (overrides --scores)")
    check.add_argument("--crisis", action="store_true")
    check.add_argument("--triggered", action="store_true", help="High-stakes already triggered")
    check.add_argument("--calibration", help="Calibration JSON file")
    check.add_argument("--tau", type=float, help="Threshold override")
    check.set_defaults(func=cmd_check)

    sweep = subparsers.add_parser("sweep", help="Recall vs call rate across thresholds")
    add_corpus(sweep)
    sweep.add_argument("--thresholds", type=_thresholds, default=list(DEFAULT_SWEEP_THRESHOLDS))
    sweep.set_defaults(func=cmd_sweep)

    cmp_parser = subparsers.add_parser("compare", help="NP-calibrated vs cost-sensitive strategy")
    add_corpus(cmp_parser)
    cmp_parser.add_argument("--calibration", help="Use this tau instead of calibrating on the corpus")
    cmp_parser.add_argument("--target-recall", type=float, default=None, help="Recall target (default from config)")
    cmp_parser.set_defaults(func=cmd_compare)

    demo = subparsers.add_parser("demo-cases", help="Write the demo corpus to a file")
    demo.add_argument("--output", "-o", required=True)
    demo.set_defaults(func=cmd_demo_cases)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except (GateError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
