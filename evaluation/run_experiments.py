from __future__ import annotations

import argparse
import datetime as dt
import logging
from pathlib import Path

from exercise_quality.utils.config import ensure_dirs, load_config
from exercise_quality.utils.logging import setup_logging
from exercise_quality.utils.seed import resolve_seed, set_global_seed

from evaluation.common import run_analysis

log = logging.getLogger(__name__)


def _timestamp_tag() -> str:
    return dt.datetime.now(dt.timezone.utc).strftime("%Y%m%d_%H%M%S")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Train the exercise-quality classifiers, evaluate them and predict the evaluation table."
    )
    parser.add_argument("--config", required=True, help="Path to YAML config (supports extends).")
    parser.add_argument("--outdir", default=None, help="Output root. Default = output.dir from the config.")
    parser.add_argument("--tag", default=None, help="Optional run tag. Default = UTC timestamp.")
    parser.add_argument(
        "--no-answer-files",
        action="store_true",
        help="Only write predictions.csv, not one answer file per evaluation row.",
    )
    args = parser.parse_args(argv)

    cfg = load_config(args.config)
    setup_logging(cfg.get("logging", {}).get("level", "INFO"))
    ensure_dirs(cfg)

    seed = resolve_seed(cfg)
    set_global_seed(seed)

    out_root = Path(args.outdir or cfg.get("output", {}).get("dir", "outputs/analysis"))
    outdir = out_root / (args.tag or _timestamp_tag())

    art = run_analysis(cfg, outdir, per_row_files=not args.no_answer_files)

    best = max(art.accuracies, key=art.accuracies.get)
    log.info("Best validation accuracy: %s (%.4f)", best, art.accuracies[best])
    log.info("Saved run summary: %s", art.summary_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
