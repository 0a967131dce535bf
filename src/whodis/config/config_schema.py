"""JSON Schema-based validation for whodis YAML configuration.

The schema ships inside the package as ``whodis/assets/config-schema.json``.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator, ValidationError

logger = logging.getLogger(__name__)

_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def get_default_schema_path() -> Path:
    """Brief: Path of the JSON Schema bundled with the package."""
    return Path(__file__).resolve().parent.parent / "assets" / "config-schema.json"


def _load_schema(schema_path: Optional[Path] = None) -> Dict[str, Any]:
    path = schema_path or get_default_schema_path()
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def expand_env_vars(cfg: Any, environ: Optional[Dict[str, str]] = None) -> Any:
    """
    Brief: Replace ``${NAME}`` references in string values with environment values.

    Inputs:
      - cfg: Parsed YAML value (dict/list/scalar).
      - environ: Mapping to read variables from (default: os.environ).

    Outputs:
      - A new value with every string expanded. Keys are left alone.

    Raises:
      - ValueError naming the first undefined variable.

    Example:
      >>> expand_env_vars({"key_file": "${HOME}/k.pem"}, {"HOME": "/root"})
      {'key_file': '/root/k.pem'}
    """
    env = os.environ if environ is None else environ

    def _repl(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in env:
            raise ValueError(f"config references undefined environment variable {name}")
        return env[name]

    if isinstance(cfg, dict):
        return {k: expand_env_vars(v, env) for k, v in cfg.items()}
    if isinstance(cfg, list):
        return [expand_env_vars(v, env) for v in cfg]
    if isinstance(cfg, str):
        return _VAR_PATTERN.sub(_repl, cfg)
    return cfg


def _format_errors(errors: List[ValidationError], *, config_path: Optional[str]) -> str:
    """Brief: Format jsonschema validation errors into a human-readable string."""
    lines: List[str] = [f"Invalid configuration in {config_path or '<config dict>'}:"]
    for err in errors:
        instance_path = "/".join(str(p) for p in err.path) or "<root>"
        schema_path = "/".join(str(p) for p in err.schema_path)
        lines.append(f"- {instance_path}: {err.message} (schema: {schema_path})")
    return "\n".join(lines)


def validate_config(
    cfg: Dict[str, Any],
    *,
    schema_path: Optional[Path] = None,
    config_path: Optional[str] = None,
    unknown_keys: str = "warn",
) -> None:
    """Brief: Validate a parsed YAML configuration mapping against JSON Schema.

    Inputs:
      - cfg: Dict loaded from YAML.
      - schema_path: Optional explicit schema path (default: bundled schema).
      - config_path: Path of the YAML file, used only in messages.
      - unknown_keys: "ignore", "warn" (default) or "error" for keys the
        schema does not describe.

    Outputs:
      - None on success.

    Raises:
      - ValueError listing every offending instance path.

    Example:
      >>> validate_config({"zone": "example.com.", "mode": "v4"})
    """
    if unknown_keys not in {"ignore", "warn", "error"}:
        raise ValueError(
            f"unknown_keys policy must be 'ignore', 'warn', or 'error', got {unknown_keys!r}"
        )

    validator = Draft202012Validator(_load_schema(schema_path))
    errors = sorted(validator.iter_errors(cfg), key=lambda e: list(e.path))
    if not errors:
        return None

    extra = [e for e in errors if e.validator == "additionalProperties"]
    other = [e for e in errors if e.validator != "additionalProperties"]

    if other:
        raise ValueError(_format_errors(other + extra, config_path=config_path))

    message = _format_errors(extra, config_path=config_path)
    if unknown_keys == "error":
        raise ValueError(message)
    if unknown_keys == "warn":
        logger.warning(message)
    return None
