from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml  # type: ignore[import-untyped]

from .deletion import DEFAULT_GRACE_SECONDS
from .parsing import MAX_FILE_BYTES
from .store import MAX_BATCH_SIZE

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class OutputsConfig:
    dir: Path


@dataclass
class LimitsConfig:
    max_file_bytes: int = MAX_FILE_BYTES
    max_batch_size: int = MAX_BATCH_SIZE


@dataclass
class DeletionConfig:
    grace_seconds: float = DEFAULT_GRACE_SECONDS


@dataclass
class NormalizationConfig:
    default_phone_region: str = "ID"


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    format: str = DEFAULT_LOG_FORMAT


@dataclass
class EngineConfig:
    inputs: Dict[str, Optional[str]]
    outputs: OutputsConfig
    limits: LimitsConfig
    deletion: DeletionConfig
    normalization: NormalizationConfig
    logging: LoggingConfig


def _load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _positive(value: Any, name: str, cast: Any) -> Any:
    try:
        number = cast(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc
    if number < 0 or (cast is int and number == 0):
        raise ValueError(f"{name} must be positive, got {value!r}")
    return number


def load_engine_config(args: argparse.Namespace) -> EngineConfig:
    config_data = _load_yaml(getattr(args, "config", None))
    inputs = config_data.get("inputs", {})
    outputs_cfg = config_data.get("outputs", {})
    limits_cfg = config_data.get("limits", {})
    deletion_cfg = config_data.get("deletion", {})
    normalization_cfg = config_data.get("normalization", {})
    logging_cfg = config_data.get("logging", {})

    outputs_dir = Path(getattr(args, "out_dir", None) or outputs_cfg.get("dir") or os.getcwd())
    outputs = OutputsConfig(dir=outputs_dir)

    limits = LimitsConfig(
        max_file_bytes=_positive(
            getattr(args, "max_file_bytes", None)
            or limits_cfg.get("max_file_bytes", MAX_FILE_BYTES),
            "limits.max_file_bytes",
            int,
        ),
        max_batch_size=_positive(
            getattr(args, "max_batch_size", None)
            or limits_cfg.get("max_batch_size", MAX_BATCH_SIZE),
            "limits.max_batch_size",
            int,
        ),
    )

    arg_grace = getattr(args, "grace_seconds", None)
    deletion = DeletionConfig(
        grace_seconds=_positive(
            deletion_cfg.get("grace_seconds", DEFAULT_GRACE_SECONDS)
            if arg_grace is None
            else arg_grace,
            "deletion.grace_seconds",
            float,
        ),
    )

    normalization = NormalizationConfig(
        default_phone_region=(
            getattr(args, "default_phone_region", None)
            or normalization_cfg.get("default_phone_region", "ID")
        ).upper(),
    )

    arg_level = getattr(args, "log_level", None)
    effective_level = (arg_level or logging_cfg.get("level") or "WARNING").upper()
    logging_config = LoggingConfig(
        level=effective_level,
        format=logging_cfg.get("format") or DEFAULT_LOG_FORMAT,
    )

    resolved_inputs = {
        "input": getattr(args, "input", None) or inputs.get("input"),
        "existing_csv": getattr(args, "existing_csv", None) or inputs.get("existing_csv"),
    }

    return EngineConfig(
        inputs=resolved_inputs,
        outputs=outputs,
        limits=limits,
        deletion=deletion,
        normalization=normalization,
        logging=logging_config,
    )
