from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Union

import yaml

PathLike = Union[str, Path]


def read_yaml_mapping(path: PathLike) -> Dict[str, Any]:
    """One YAML file as a dict; an empty file reads as {}."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML root must be a mapping, got {type(data).__name__}: {path}")
    return data


def merge_sections(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Section-wise merge for configs like base.yaml: nested mappings are merged
    key by key, scalars and lists in `override` replace those in `base`.
    """
    out = dict(base)
    for key, value in override.items():
        current = out.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            out[key] = merge_sections(current, value)
        else:
            out[key] = value
    return out


def _parent_configs(extends: Any, here: Path) -> Iterator[Path]:
    if isinstance(extends, (str, Path)):
        extends = [extends]
    if not isinstance(extends, list):
        raise ValueError("Config key 'extends' must be a file name or a list of file names.")
    for name in extends:
        p = Path(name)
        yield p if p.is_absolute() else (here.parent / p).resolve()


def load_config(path: PathLike) -> Dict[str, Any]:
    """
    Loads a run config. A file may start from other files with
      extends: base.yaml          (or a list, applied left to right)
    resolved next to the file itself; its own keys are applied last.
    """
    path = Path(path)
    own = read_yaml_mapping(path)
    extends = own.pop("extends", None)

    cfg: Dict[str, Any] = {}
    if extends:
        for parent in _parent_configs(extends, path):
            cfg = merge_sections(cfg, load_config(parent))
    cfg = merge_sections(cfg, own)

    cfg["_meta"] = {"config_path": str(path.resolve())}
    return cfg


def ensure_dirs(cfg: Mapping[str, Any]) -> None:
    """Creates every directory named under `output:` (file paths get their parent)."""
    output = cfg.get("output") or {}
    if not isinstance(output, Mapping):
        return
    for p in output.values():
        if isinstance(p, (str, Path)) and str(p).strip():
            pp = Path(p)
            (pp if pp.suffix == "" else pp.parent).mkdir(parents=True, exist_ok=True)


def data_section(cfg: Mapping[str, Any]) -> Dict[str, Any]:
    data = cfg.get("data")
    if not isinstance(data, dict):
        raise KeyError(
            "Config is missing the 'data' section. Use config/base.yaml or add:\n"
            "data:\n"
            "  training_csv: ...\n"
            "  evaluation_csv: ...\n"
            "  label_column: classe\n"
        )
    return data
