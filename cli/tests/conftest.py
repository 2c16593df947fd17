"""Shared test fixtures for artbot CLI tests."""

from pathlib import Path

import pytest
from click.testing import CliRunner

CONFIG_TOML = """\
[node]
id = "test-node-1"
topic_prefix = "artbot"

[mqtt]
host = "localhost"
port = 1883

[channels."100"]
name = "squiggles"

[channels."100".handlers]
default = "0"
string_triggers = { "1" = ["genesis"] }
token_id_triggers = [ { "23-ogcontract" = [100, 200] } ]

[channels."200"]
name = "partner-works"

[channels."200".handlers]
default = "23-ogcontract"

[channels."300"]
name = "general"

[contracts.ogcontract]
address = "0xpartner"
"""


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write an artbot.toml with three channels and return its path."""
    cfg = tmp_path / "artbot.toml"
    cfg.write_text(CONFIG_TOML)
    return cfg
