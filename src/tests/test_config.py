"""Unit tests for application configuration."""

from pathlib import Path
from unittest.mock import patch

from gitwiki.config import Settings


class TestSettings:
    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            s = Settings(_env_file=None)
            assert s.data_dir == Path("data/pages")
            assert s.index_dir == Path("data/index")
            assert s.file_extension == ".md"
            assert s.debug is False
            assert s.app_title == "GitWiki"
            assert s.git.url is None
            assert s.git.push is False
            assert s.git.push_timeout == 10.0

    def test_from_env(self):
        env = {
            "GITWIKI_DATA_DIR": "/tmp/wiki",
            "GITWIKI_INDEX_DIR": "/tmp/wiki-index",
            "GITWIKI_DEBUG": "true",
            "GITWIKI_APP_TITLE": "MyWiki",
        }
        with patch.dict("os.environ", env, clear=True):
            s = Settings(_env_file=None)
            assert s.data_dir == Path("/tmp/wiki")
            assert s.index_dir == Path("/tmp/wiki-index")
            assert s.debug is True
            assert s.app_title == "MyWiki"

    def test_git_settings_from_env(self):
        env = {
            "GITWIKI_GIT__URL": "git@example.com:wiki.git",
            "GITWIKI_GIT__PUSH": "true",
            "GITWIKI_GIT__PUSH_TIMEOUT": "2.5",
            "GITWIKI_GIT__AUTHOR_NAME": "Wiki Bot",
        }
        with patch.dict("os.environ", env, clear=True):
            s = Settings(_env_file=None)
            assert s.git.url == "git@example.com:wiki.git"
            assert s.git.push is True
            assert s.git.push_timeout == 2.5
            assert s.git.author_name == "Wiki Bot"
            assert s.git.author_email == "gitwiki@localhost"

    def test_push_false_values(self):
        with patch.dict("os.environ", {"GITWIKI_GIT__PUSH": "false"}, clear=True):
            s = Settings(_env_file=None)
            assert s.git.push is False
