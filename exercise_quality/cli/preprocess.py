from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict

from exercise_quality.data_processing.cleaning import (
    DEFAULT_METADATA_COLS,
    DEFAULT_MISSING_THRESHOLD,
    apply_feature_schema,
    fit_feature_schema,
)
from exercise_quality.data_processing.loading import DEFAULT_ID_COL, DEFAULT_LABEL_COL, load_observation_tables
from exercise_quality.data_processing.splits import split_train_validation
from exercise_quality.utils.config import data_section, ensure_dirs, load_config
from exercise_quality.utils.logging import setup_logging
from exercise_quality.utils.seed import resolve_seed, set_global_seed
from exercise_quality.utils.timer import timed

log = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Load, partition and clean the exercise tables without training.")
    p.add_argument("--config", required=True, help="Path to YAML config (supports extends).")
    p.add_argument("--outdir", default=None, help="Where to write cleaned tables. Default = output.dir/preprocess.")
    return p.parse_args(argv)


def preprocess(cfg: Dict[str, Any], out_dir: Path) -> Dict[str, Any]:
    ds = data_section(cfg)
    label_col = str(ds.get("label_column", DEFAULT_LABEL_COL))
    id_col = str(ds.get("id_column", DEFAULT_ID_COL))
    threshold = float((cfg.get("cleaning", {}) or {}).get("missing_threshold", DEFAULT_MISSING_THRESHOLD))
    seed = resolve_seed(cfg)

    timings: Dict[str, float] = {}
    with timed("load", timings):
        training, evaluation, load_meta = load_observation_tables(cfg)

    with timed("split", timings):
        splits = split_train_validation(
            training,
            train=float((cfg.get("split", {}) or {}).get("train_ratio", 0.6)),
            seed=seed,
            stratify_col=label_col,
        )

    with timed("clean", timings):
        schema, profile = fit_feature_schema(
            splits["train"],
            label_col=label_col,
            metadata_cols=tuple(ds.get("metadata_columns") or DEFAULT_METADATA_COLS),
            threshold=threshold,
        )
        cleaned = {
            "train": apply_feature_schema(splits["train"], schema),
            "validation": apply_feature_schema(splits["validation"], schema),
            "evaluation": apply_feature_schema(evaluation, schema, with_label=False, keep_cols=[id_col]),
        }

    with timed("persist", timings):
        out_dir.mkdir(parents=True, exist_ok=True)
        for name, df in cleaned.items():
            df.to_csv(out_dir / f"{name}_clean.csv", index=False)
        profile.rename_axis("column").to_frame().to_csv(out_dir / "missingness.csv", index=True)
        (out_dir / "feature_cols.json").write_text(json.dumps(schema.to_dict(), indent=2), encoding="utf-8")

        meta = {
            "seed": seed,
            "load_details": load_meta,
            "splits": {k: int(len(v)) for k, v in cleaned.items()},
            "n_features": len(schema.feature_cols),
            "timings_sec": timings,
        }
        (out_dir / "preprocess_meta.json").write_text(json.dumps(meta, indent=2), encoding="utf-8")

    log.info("Preprocessing complete: %s", out_dir.as_posix())
    return meta


def main(argv=None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config)

    ensure_dirs(cfg)
    setup_logging(level=cfg.get("logging", {}).get("level", "INFO"))

    set_global_seed(resolve_seed(cfg))

    out_dir = Path(args.outdir) if args.outdir else Path(cfg.get("output", {}).get("dir", "outputs/analysis")) / "preprocess"
    preprocess(cfg, out_dir)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
