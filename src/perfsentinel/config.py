from __future__ import annotations

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal, cast

from perfsentinel.engine.types import Severity


class ConfigError(ValueError):
    """Raised when a PerfSentinel configuration file is invalid."""


CONFIG_FILENAME = "perfsentinel.toml"
MAX_CONFIG_SIZE = 1024 * 1024

RuleLevel = Literal["deny", "warn", "allow"]
_RULE_LEVELS: tuple[str, ...] = ("deny", "warn", "allow")
OUTPUT_FORMATS: tuple[str, ...] = ("terminal", "json", "sarif")

_LEVEL_ALIASES = {"warning": "warn", "error": "deny", "off": "allow"}

DEFAULT_CONFIG_TOML = """\
# PerfSentinel configuration.
#
# Rule levels: "deny" (error), "warn" (warning), "allow" (disabled).

# Extra rule modules, as "module" or "module:attribute".
plugins = []

# Hide findings recorded in .perfsentinel-baseline.
baseline = true

[rules]
# lock-across-await = "deny"
# clone-in-hot-loop = "allow"

[output]
format = "terminal"
"""


def normalize_rule_id(value: str) -> str:
    return value.strip().lower().replace("_", "-")


@dataclass(frozen=True, slots=True)
class PerfConfig:
    rules: Mapping[str, RuleLevel] = field(default_factory=lambda: MappingProxyType({}))
    plugins: tuple[str, ...] = ()
    baseline: bool = True
    output_format: str = "terminal"

    def rule_level(self, rule_id: str) -> RuleLevel | None:
        return self.rules.get(normalize_rule_id(rule_id))

    def is_rule_enabled(self, rule_id: str) -> bool:
        return self.rule_level(rule_id) != "allow"

    def rule_severity(self, rule_id: str, default: Severity) -> Severity | None:
        """
        Effective severity for a rule, or None when the rule is disabled.

        `deny` maps to error, `warn` to warning and `allow` disables the rule.
        Rules without an entry keep their default severity.
        """

        level = self.rule_level(rule_id)
        if level is None:
            return default
        if level == "deny":
            return Severity.ERROR
        if level == "warn":
            return Severity.WARNING
        return None


def config_path(root: Path) -> Path:
    base = root if root.is_dir() else root.parent
    return base / CONFIG_FILENAME


def load_config(root: Path | str = ".") -> PerfConfig:
    """
    Load configuration from `perfsentinel.toml` in `root`.

    Returns defaults when the file does not exist.
    """

    path = config_path(Path(root))
    if not path.exists():
        return PerfConfig()

    try:
        size = path.stat().st_size
    except OSError as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc
    if size > MAX_CONFIG_SIZE:
        raise ConfigError(f"{path} is too large ({size} bytes, limit {MAX_CONFIG_SIZE}).")

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc
    return parse_config_text(text, source=path)


def parse_config_text(text: str, *, source: Path | str = CONFIG_FILENAME) -> PerfConfig:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {source}: {exc}") from exc
    return _parse_table(data)


def _parse_table(data: dict[str, Any]) -> PerfConfig:
    rules = _parse_rules(data.get("rules"))
    plugins = _validate_str_list(data.get("plugins"), field_name="plugins")

    baseline = data.get("baseline", True)
    if not isinstance(baseline, bool):
        raise ConfigError("`baseline` must be a boolean.")

    output_format = _parse_output(data.get("output"))
    return PerfConfig(
        rules=MappingProxyType(rules),
        plugins=plugins,
        baseline=baseline,
        output_format=output_format,
    )


def _parse_rules(value: Any) -> dict[str, RuleLevel]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("`rules` must be a table.")
    out: dict[str, RuleLevel] = {}
    for key, raw in value.items():
        out[normalize_rule_id(key)] = _validate_level(raw, field_name=f"rules.{key}")
    return out


def _validate_level(value: Any, *, field_name: str) -> RuleLevel:
    if not isinstance(value, str):
        raise ConfigError(f"`{field_name}` must be a string.")
    normalized = value.strip().lower()
    normalized = _LEVEL_ALIASES.get(normalized, normalized)
    if normalized not in _RULE_LEVELS:
        raise ConfigError(f"`{field_name}` must be one of: deny, warn, allow.")
    return cast(RuleLevel, normalized)


def _parse_output(value: Any) -> str:
    if value is None:
        return "terminal"
    if not isinstance(value, dict):
        raise ConfigError("`output` must be a table.")
    fmt = value.get("format", "terminal")
    if not isinstance(fmt, str) or fmt.strip().lower() not in OUTPUT_FORMATS:
        raise ConfigError(f"`output.format` must be one of: {', '.join(OUTPUT_FORMATS)}.")
    return fmt.strip().lower()


def _validate_str_list(value: Any, *, field_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or any(not isinstance(v, str) for v in value):
        raise ConfigError(f"`{field_name}` must be a list of strings.")
    return tuple(v.strip() for v in value if v.strip())
