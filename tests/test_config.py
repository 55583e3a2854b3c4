"""Tests for configuration loading and command line overrides."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from tagtree_mcp.config import _USER_ENV, TagTreeConfig
from tagtree_mcp.exceptions import ConfigurationError
from tagtree_mcp.main import parse_args, update_config


class TestTagTreeConfig:
    def test_user_env_path_is_correct(self):
        assert _USER_ENV == Path.home() / ".tagtree" / ".env"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("TAGTREE_PAGE_SIZE", "12")
        monkeypatch.setenv("TAGTREE_USER_ID", "7")
        monkeypatch.setenv("TAGTREE_DEFAULT_COLOR", "teal")
        cfg = TagTreeConfig()
        assert cfg.page_size == 12
        assert cfg.user_id == 7
        assert cfg.default_color == "teal"

    def test_page_size_must_be_positive(self):
        with pytest.raises(ValidationError):
            TagTreeConfig(page_size=0)

    def test_db_url_is_absolute_and_creates_parent(self, temp_dir):
        cfg = TagTreeConfig(base_dir=temp_dir, database_path=Path("db/tags.db"))
        assert cfg.get_db_url() == f"sqlite:///{temp_dir / 'db' / 'tags.db'}"
        assert (temp_dir / "db").is_dir()

    def test_absolute_path_is_kept(self, temp_dir):
        cfg = TagTreeConfig(base_dir=Path("/elsewhere"))
        assert cfg.get_absolute_path(temp_dir) == temp_dir


class TestCommandLine:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("TAGTREE_DATABASE_PATH", raising=False)
        monkeypatch.delenv("TAGTREE_LOG_LEVEL", raising=False)
        args = parse_args([])
        assert args.database_path is None
        assert args.log_level == "INFO"
        assert args.page_size is None

    def test_update_config(self, test_config, temp_dir):
        update_config(parse_args(["--database-path", str(temp_dir / "x.db"), "--page-size", "5"]))
        assert test_config.database_path == temp_dir / "x.db"
        assert test_config.page_size == 5

    def test_bad_page_size(self, test_config):
        with pytest.raises(ConfigurationError) as exc_info:
            update_config(parse_args(["--page-size", "0"]))
        assert exc_info.value.config_key == "page_size"
