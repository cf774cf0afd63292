from __future__ import annotations

from pathlib import Path

import pytest

from perfsentinel.config import (
    CONFIG_FILENAME,
    DEFAULT_CONFIG_TOML,
    ConfigError,
    PerfConfig,
    load_config,
    parse_config_text,
)
from perfsentinel.engine.types import Severity


def test_missing_config_file_gives_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path)
    assert config == PerfConfig()
    assert config.baseline is True
    assert config.output_format == "terminal"


def test_default_config_template_parses_to_defaults() -> None:
    config = parse_config_text(DEFAULT_CONFIG_TOML)
    assert dict(config.rules) == {}
    assert config.plugins == ()
    assert config.baseline is True
    assert config.output_format == "terminal"


def test_rule_levels_and_aliases_are_normalized(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text(
        """\
plugins = ["acme.rules", "  "]
baseline = false

[rules]
Clone_In_Hot_Loop = "allow"
lock-across-await = "warning"
format-in-loop = "error"

[output]
format = "JSON"
""",
        encoding="utf-8",
    )
    config = load_config(tmp_path)

    assert dict(config.rules) == {
        "clone-in-hot-loop": "allow",
        "lock-across-await": "warn",
        "format-in-loop": "deny",
    }
    assert config.plugins == ("acme.rules",)
    assert config.baseline is False
    assert config.output_format == "json"

    assert not config.is_rule_enabled("clone_in_hot_loop")
    assert config.rule_severity("clone-in-hot-loop", Severity.WARNING) is None
    assert config.rule_severity("lock-across-await", Severity.ERROR) == Severity.WARNING
    assert config.rule_severity("format-in-loop", Severity.WARNING) == Severity.ERROR
    assert config.rule_severity("regex-in-loop", Severity.WARNING) == Severity.WARNING


def test_load_config_accepts_a_file_path(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text('[rules]\nregex-in-loop = "deny"\n', encoding="utf-8")
    source = tmp_path / "main.rs"
    source.write_text("", encoding="utf-8")
    assert load_config(source).rule_level("regex-in-loop") == "deny"


@pytest.mark.parametrize(
    ("text", "match"),
    [
        ("rules = [", "Invalid TOML"),
        ("rules = 1", "`rules` must be a table"),
        ('[rules]\nclone-in-hot-loop = "loud"', "must be one of: deny, warn, allow"),
        ("[rules]\nclone-in-hot-loop = 1", "must be a string"),
        ("plugins = 'acme'", "`plugins` must be a list of strings"),
        ('baseline = "yes"', "`baseline` must be a boolean"),
        ('[output]\nformat = "html"', "`output.format` must be one of"),
        ("output = 3", "`output` must be a table"),
    ],
)
def test_invalid_config_raises(text: str, match: str) -> None:
    with pytest.raises(ConfigError, match=match):
        parse_config_text(text)


def test_rules_mapping_is_read_only() -> None:
    config = parse_config_text('[rules]\nclone-in-hot-loop = "deny"\n')
    with pytest.raises(TypeError):
        config.rules["clone-in-hot-loop"] = "allow"  # type: ignore[index]
