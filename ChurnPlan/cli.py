"""
Command line for building and inspecting the churn plan.

    python main.py synth --rows 2000 --output data/churn.csv
    python main.py make --data data/churn.csv --workers 2
    python main.py outdated --data data/churn.csv
    python main.py show comparison
    python main.py clean model_relu
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import fields, is_dataclass
from pathlib import Path
from typing import Any, List, Optional

import numpy as np

from .cache.fingerprint_store import FingerprintStore
from .churn.config import ChurnConfig
from .churn.data import make_synthetic_churn, write_churn_csv
from .churn.models import list_model_specs
from .churn.plan import build_churn_plan, default_run_record_path
from .core.errors import PlanError
from .core.models import PlanConfig
from .core.scheduler import Scheduler
from .core.utils import json_sanitize, setup_logging

_PLAN_DEFAULTS = PlanConfig()
_CHURN_DEFAULTS = ChurnConfig()


def add_plan_args(parser: Any) -> argparse.ArgumentParser:
    parser.add_argument("--cache-dir", type=str, default=_PLAN_DEFAULTS.cache_dir)
    parser.add_argument("--log-dir", type=str, default=_PLAN_DEFAULTS.log_dir)
    return parser


def add_build_args(parser: Any) -> argparse.ArgumentParser:
    parser.add_argument("--workers", type=int, default=_PLAN_DEFAULTS.workers, help="Targets built concurrently (1 = sequential).")
    parser.add_argument(
        "--keep-going",
        action=argparse.BooleanOptionalAction,
        default=_PLAN_DEFAULTS.keep_going,
        help="Keep building independent targets after a failure.",
    )
    parser.add_argument("--run-record", type=str, default=None, help="Where to write the run record JSON.")
    parser.add_argument("--plot-run", action="store_true", default=False, help="Also render the run record as a PNG.")
    parser.add_argument("targets", nargs="*", help="Build only these targets (and what they need).")
    return parser


def add_churn_args(parser: Any) -> argparse.ArgumentParser:
    parser.add_argument("--data", type=str, default=_CHURN_DEFAULTS.data_path)
    parser.add_argument("--output-dir", type=str, default=_CHURN_DEFAULTS.output_dir)
    parser.add_argument("--seed", type=int, default=_CHURN_DEFAULTS.seed)
    parser.add_argument("--test-fraction", type=float, default=_CHURN_DEFAULTS.test_fraction)
    parser.add_argument("--epochs", type=int, default=_CHURN_DEFAULTS.epochs)
    parser.add_argument("--batch-size", type=int, default=_CHURN_DEFAULTS.batch_size)
    parser.add_argument("--learning-rate", type=float, default=_CHURN_DEFAULTS.learning_rate)
    parser.add_argument(
        "--models",
        type=str,
        default=",".join(_CHURN_DEFAULTS.models),
        help=f"Comma-separated model variants. Available: {', '.join(list_model_specs())}",
    )
    return parser


def parse_model_list(spec: str) -> List[str]:
    names = [s.strip() for s in (spec or "").split(",") if s.strip()]
    if not names:
        raise ValueError("At least one model is required")
    unknown = [n for n in names if n not in list_model_specs()]
    if unknown:
        raise ValueError(f"Unknown model(s): {', '.join(unknown)}")
    return names


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="churnplan", description="Incremental churn model comparison plan.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_make = sub.add_parser("make", help="Build stale targets")
    add_plan_args(p_make)
    add_churn_args(p_make)
    add_build_args(p_make)

    p_outdated = sub.add_parser("outdated", help="List targets a build would execute")
    add_plan_args(p_outdated)
    add_churn_args(p_outdated)
    p_outdated.add_argument("targets", nargs="*")

    p_clean = sub.add_parser("clean", help="Forget cached results (all when no target is named)")
    add_plan_args(p_clean)
    p_clean.add_argument("targets", nargs="*")

    p_show = sub.add_parser("show", help="Print a cached target result")
    add_plan_args(p_show)
    p_show.add_argument("target")

    p_synth = sub.add_parser("synth", help="Write a synthetic churn CSV")
    p_synth.add_argument("--rows", type=int, default=2000)
    p_synth.add_argument("--seed", type=int, default=42)
    p_synth.add_argument("--output", type=str, default=_CHURN_DEFAULTS.data_path)

    return parser


def churn_config_from_args(args: argparse.Namespace) -> ChurnConfig:
    return ChurnConfig(
        data_path=args.data,
        output_dir=args.output_dir,
        seed=int(args.seed),
        test_fraction=float(args.test_fraction),
        epochs=int(args.epochs),
        batch_size=int(args.batch_size),
        learning_rate=float(args.learning_rate),
        models=parse_model_list(args.models),
    )


def plan_config_from_args(args: argparse.Namespace) -> PlanConfig:
    return PlanConfig(
        cache_dir=args.cache_dir,
        workers=int(getattr(args, "workers", _PLAN_DEFAULTS.workers)),
        keep_going=bool(getattr(args, "keep_going", _PLAN_DEFAULTS.keep_going)),
        log_dir=args.log_dir or None,
        run_record_path=getattr(args, "run_record", None),
    )


def summarize_result(value: Any) -> Any:
    """Printable view of a cached result (arrays become shape/dtype)."""
    if isinstance(value, np.ndarray):
        return {"ndarray": {"shape": list(value.shape), "dtype": str(value.dtype)}}
    if isinstance(value, dict):
        return {str(k): summarize_result(v) for k, v in value.items()}
    if isinstance(value, (bytes, bytearray)):
        return {"bytes": len(value)}
    if isinstance(value, (list, tuple)) and len(value) > 20:
        return {"sequence": type(value).__name__, "length": len(value)}
    summary = getattr(value, "summary", None)
    if callable(summary):
        return json_sanitize(summary())
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: summarize_result(getattr(value, f.name)) for f in fields(value)}
    return json_sanitize(value)


def _cmd_make(args: argparse.Namespace) -> int:
    plan_cfg = plan_config_from_args(args)
    churn_cfg = churn_config_from_args(args)
    logger = setup_logging("build", "churn", log_dir=plan_cfg.log_dir)
    graph = build_churn_plan(churn_cfg)
    store = FingerprintStore.at(plan_cfg.resolved_cache_dir())
    scheduler = Scheduler.from_config(plan_cfg, logger=logger)

    record = scheduler.run(graph, store, targets=args.targets or None)

    record_path = Path(plan_cfg.run_record_path) if plan_cfg.run_record_path else default_run_record_path(churn_cfg)
    record.write_json(record_path)
    logger.info(f"Run record written to {record_path}")
    if args.plot_run:
        from .reporting.plots import plot_run_record

        png = plot_run_record(record, record_path.with_suffix(".png"))
        logger.info(f"Run plot written to {png}")

    for name, reason in record.failures().items():
        print(f"FAILED {name}: {reason}", file=sys.stderr)
    return 0 if record.outcome == "success" else 1


def _cmd_outdated(args: argparse.Namespace) -> int:
    plan_cfg = plan_config_from_args(args)
    graph = build_churn_plan(churn_config_from_args(args))
    store = FingerprintStore.at(plan_cfg.resolved_cache_dir())
    for name in Scheduler().outdated(graph, store, targets=args.targets or None):
        print(name)
    return 0


def _cmd_clean(args: argparse.Namespace) -> int:
    plan_cfg = plan_config_from_args(args)
    store = FingerprintStore.at(plan_cfg.resolved_cache_dir())
    store.open()
    names = list(args.targets) or store.names()
    for name in names:
        store.forget(name)
    store.flush()
    print(f"Forgot {len(names)} target(s)")
    return 0


def _cmd_show(args: argparse.Namespace) -> int:
    plan_cfg = plan_config_from_args(args)
    store = FingerprintStore.at(plan_cfg.resolved_cache_dir())
    try:
        value = store.load_result(args.target)
    except KeyError as exc:
        print(str(exc.args[0]), file=sys.stderr)
        return 1
    print(json.dumps(summarize_result(value), indent=2, sort_keys=True))
    return 0


def _cmd_synth(args: argparse.Namespace) -> int:
    path = write_churn_csv(make_synthetic_churn(args.rows, seed=args.seed), Path(args.output))
    print(f"Wrote {args.rows} rows to {path}")
    return 0


_COMMANDS = {
    "make": _cmd_make,
    "outdated": _cmd_outdated,
    "clean": _cmd_clean,
    "show": _cmd_show,
    "synth": _cmd_synth,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return _COMMANDS[args.cmd](args)
    except ValueError as exc:
        parser.error(str(exc))
    except PlanError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
