from __future__ import annotations

import os
import random
from typing import Any, Mapping

import numpy as np

DEFAULT_SEED = 42


def resolve_seed(cfg: Mapping[str, Any]) -> int:
    """Pipeline seed from `project.seed`; gates the train/validation split and every estimator."""
    project = cfg.get("project", {}) or {}
    return int(project.get("seed", DEFAULT_SEED))


def set_global_seed(seed: int) -> None:
    """Set deterministic seeds for Python and NumPy."""
    os.environ["PYTHONHASHSEED"] = str(seed)
    random.seed(seed)
    np.random.seed(seed)
