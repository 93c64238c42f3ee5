"""Run configuration.

Loaded from YAML or JSON and validated against `CONFIG_SCHEMA` before being
turned into an immutable `InstrumentalConfig`. A couple of values can be
overridden from the environment (`INSTR_ADB_PATH`, `INSTR_COVERAGE_DIR`).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from jsonschema import Draft202012Validator

from instr_harness.runtime.android.shell_command import DEFAULT_SECURE_WORDS

DEFAULT_RUNNER = "android.test.InstrumentationTestRunner"
DEFAULT_COVERAGE_DIR = Path("build/outputs/coverage")


class ConfigValidationError(RuntimeError):
    pass


CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "required": ["application_id", "instrumental_package"],
    "properties": {
        "application_id": {"type": "string", "minLength": 1},
        "instrumental_package": {"type": "string", "minLength": 1},
        "instrumental_runner": {"type": "string", "minLength": 1},
        "coverage_enabled": {"type": "boolean"},
        "coverage_dir": {"type": "string", "minLength": 1},
        "coverage_file": {"type": "string", "minLength": 1},
        "instrumentation_args": {
            "type": "object",
            "additionalProperties": {"type": ["string", "number", "boolean"]},
        },
        "secure_words": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "max_time_to_output_response_ms": {"type": "integer", "minimum": 0},
        "max_timeout_ms": {"type": "integer", "minimum": 0},
        "adb_path": {"type": "string", "minLength": 1},
    },
}


@dataclass(frozen=True)
class InstrumentalConfig:
    application_id: str
    instrumental_package: str
    instrumental_runner: str = DEFAULT_RUNNER
    coverage_enabled: bool = False
    coverage_dir: Path = DEFAULT_COVERAGE_DIR
    coverage_file: Optional[str] = None
    instrumentation_args: Mapping[str, str] = field(default_factory=dict)
    secure_words: Tuple[str, ...] = DEFAULT_SECURE_WORDS
    max_time_to_output_response_ms: int = 0
    max_timeout_ms: int = 0
    adb_path: str = "adb"

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], *, source: str = "run config"
    ) -> "InstrumentalConfig":
        validate_config(data, source=source)
        kwargs: Dict[str, Any] = dict(data)
        if "coverage_dir" in kwargs:
            kwargs["coverage_dir"] = Path(kwargs["coverage_dir"])
        if "instrumentation_args" in kwargs:
            kwargs["instrumentation_args"] = {
                str(k): _arg_str(v) for k, v in kwargs["instrumentation_args"].items()
            }
        if "secure_words" in kwargs:
            kwargs["secure_words"] = tuple(kwargs["secure_words"])
        return cls(**kwargs)

    def with_env_overrides(self, environ: Mapping[str, str] | None = None) -> "InstrumentalConfig":
        env = os.environ if environ is None else environ
        updates: Dict[str, Any] = {}
        adb_path = (env.get("INSTR_ADB_PATH") or "").strip()
        if adb_path:
            updates["adb_path"] = adb_path
        coverage_dir = (env.get("INSTR_COVERAGE_DIR") or "").strip()
        if coverage_dir:
            updates["coverage_dir"] = Path(coverage_dir)
        if not updates:
            return self
        return replace(self, **updates)


def _arg_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


_VALIDATOR = Draft202012Validator(CONFIG_SCHEMA)


def validate_config(data: Mapping[str, Any], *, source: str = "run config") -> None:
    """Raise `ConfigValidationError` listing every problem, one per line."""

    problems = sorted(_VALIDATOR.iter_errors(dict(data)), key=lambda e: e.json_path)
    if problems:
        lines = [f"  {e.json_path}: {e.message}" for e in problems]
        raise ConfigValidationError(f"{source} is invalid:\n" + "\n".join(lines))


def _parse_yaml(text: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"not valid YAML: {e}") from e


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigValidationError(f"not valid JSON: {e}") from e


_PARSERS = {".yaml": _parse_yaml, ".yml": _parse_yaml, ".json": _parse_json}


def read_config_document(path: Path) -> Dict[str, Any]:
    """Parse a run config file by extension; an empty file reads as `{}`."""

    parse = _PARSERS.get(path.suffix.lower())
    if parse is None:
        raise ValueError(f"run config must be .yaml, .yml or .json: {path}")
    data = parse(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError(f"{path}: run config must be a mapping, got {type(data).__name__}")
    return data


def load_config(path: Path, *, environ: Mapping[str, str] | None = None) -> InstrumentalConfig:
    data = read_config_document(path)
    return InstrumentalConfig.from_dict(data, source=str(path)).with_env_overrides(environ)
