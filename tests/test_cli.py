"""Tests for the CLI module."""

import json
import os
import shutil
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
import yaml
from click.testing import CliRunner

from btec_monitor.cli import ConfigManager, apply_cli_overrides, build_config, main, setup_logging
from btec_monitor.config import TrackerConfig
from btec_monitor.errors import NotFoundError, RemoteError

from conftest import make_assignment, make_job


@pytest.fixture
def runner():
    """Click test runner."""
    return CliRunner()


@pytest.fixture
def temp_config_dir():
    """Create a temporary config directory."""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir)


@pytest.fixture
def sample_config():
    return {"api_url": "http://example.com/api", "fine_interval": 5, "token": "file-token"}


@pytest.fixture
def no_config_files():
    with patch.object(ConfigManager, "find_config", return_value=None):
        yield


@pytest.fixture
def service(no_config_files):
    """Patch the generation client used by the CLI."""
    client = AsyncMock()
    client.list_assignments.return_value = [make_assignment()]
    client.get_assignment.return_value = make_assignment("DRAFT", job_id=None)
    client.start.return_value = "J1"
    client.get_status.return_value = make_job("PROCESSING", 45, current_word_count=1200)

    client_cls = MagicMock()
    client_cls.return_value.__aenter__.return_value = client
    with patch("btec_monitor.cli.GenerationClient", client_cls):
        yield client_cls, client


class TestConfigManager:
    """Test ConfigManager class."""

    def test_xdg_config_home_wins_over_config_dirs(self, temp_config_dir):
        home_dir = temp_config_dir / "home" / "btec-monitor"
        system_dir = temp_config_dir / "etc" / "btec-monitor"
        home_dir.mkdir(parents=True)
        system_dir.mkdir(parents=True)
        (home_dir / "monitor.yaml").write_text("api_url: http://home/api\n")
        (system_dir / "monitor.yaml").write_text("api_url: http://system/api\n")

        env = {
            "XDG_CONFIG_HOME": str(temp_config_dir / "home"),
            "XDG_CONFIG_DIRS": str(temp_config_dir / "etc"),
        }
        with patch.dict(os.environ, env):
            assert ConfigManager.find_config("monitor") == {"api_url": "http://home/api"}

            (home_dir / "monitor.yaml").unlink()
            assert ConfigManager.find_config("monitor") == {"api_url": "http://system/api"}

    def test_dotdir_in_home_is_last_resort(self, temp_config_dir):
        dot_dir = temp_config_dir / ".btec-monitor"
        dot_dir.mkdir()
        (dot_dir / "monitor.yaml").write_text("token: from-home\n")

        with patch.dict(os.environ, {"XDG_CONFIG_HOME": str(temp_config_dir / "none")}):
            with patch.object(ConfigManager, "get_xdg_config_dirs", return_value=[]):
                with patch.object(Path, "cwd", return_value=temp_config_dir / "elsewhere"):
                    with patch.object(Path, "home", return_value=temp_config_dir):
                        assert ConfigManager.find_config("monitor") == {"token": "from-home"}

    def test_find_config_explicit_path(self, temp_config_dir, sample_config):
        config_file = temp_config_dir / "custom.yaml"
        with open(config_file, "w") as f:
            yaml.dump(sample_config, f)

        assert ConfigManager.find_config("monitor", str(config_file)) == sample_config

    def test_find_config_explicit_path_not_found(self):
        assert ConfigManager.find_config("monitor", "/nonexistent/config.yaml") is None

    def test_find_config_search_paths(self, temp_config_dir, sample_config):
        app_dir = temp_config_dir / "btec-monitor"
        app_dir.mkdir()
        with open(app_dir / "monitor.yaml", "w") as f:
            yaml.dump(sample_config, f)

        with patch.object(ConfigManager, "get_xdg_config_home", return_value=temp_config_dir):
            assert ConfigManager.find_config("monitor") == sample_config

    def test_find_config_not_found(self, temp_config_dir):
        with patch.object(ConfigManager, "get_xdg_config_home", return_value=temp_config_dir):
            with patch.object(ConfigManager, "get_xdg_config_dirs", return_value=[temp_config_dir]):
                with patch.object(Path, "cwd", return_value=temp_config_dir):
                    with patch.object(Path, "home", return_value=temp_config_dir):
                        assert ConfigManager.find_config("monitor") is None

    def test_load_yaml(self, temp_config_dir, sample_config):
        config_file = temp_config_dir / "test.yaml"
        with open(config_file, "w") as f:
            yaml.dump(sample_config, f)

        assert ConfigManager.load_yaml(config_file) == sample_config

    def test_load_yaml_empty_file(self, temp_config_dir):
        config_file = temp_config_dir / "empty.yaml"
        config_file.write_text("")
        assert ConfigManager.load_yaml(config_file) == {}

    def test_load_yaml_invalid_file(self, temp_config_dir):
        config_file = temp_config_dir / "invalid.yaml"
        with open(config_file, "w") as f:
            f.write("invalid: yaml: content:")

        assert ConfigManager.load_yaml(config_file) is None

    def test_merge_configs(self):
        base = {"api_url": "http://a/api", "extra": {"x": 1}}
        override = {"extra": {"y": 2}, "token": "t"}

        result = ConfigManager.merge_configs(base, override)
        assert result == {"api_url": "http://a/api", "extra": {"x": 1, "y": 2}, "token": "t"}
        assert base == {"api_url": "http://a/api", "extra": {"x": 1}}


class TestSetupLogging:
    @patch("btec_monitor.cli.logging.basicConfig")
    def test_setup_logging_normal(self, mock_basic_config):
        setup_logging(verbose=False)
        mock_basic_config.assert_called_once()
        args, kwargs = mock_basic_config.call_args
        assert kwargs["level"] == 20  # logging.INFO

    @patch("btec_monitor.cli.logging.basicConfig")
    def test_setup_logging_verbose(self, mock_basic_config):
        setup_logging(verbose=True)
        args, kwargs = mock_basic_config.call_args
        assert kwargs["level"] == 10  # logging.DEBUG


class TestConfigOverrides:
    def test_apply_cli_overrides_none_values(self):
        result = apply_cli_overrides({"token": "file"}, token=None, api_url="http://cli/api")
        assert result == {"token": "file", "api_url": "http://cli/api"}

    def test_apply_cli_overrides_empty_config(self):
        assert apply_cli_overrides({}, fine_interval=2.0) == {"fine_interval": 2.0}

    def test_build_config(self, sample_config):
        ctx = Mock(obj=dict(sample_config, unknown_key=1))
        config = build_config(ctx, None, "ws://cli/ws", None, True)

        assert isinstance(config, TrackerConfig)
        assert config.api_url == "http://example.com/api"
        assert config.ws_url == "ws://cli/ws"
        assert config.token == "file-token"
        assert config.fine_interval == 5
        assert config.verify_ssl is False
        assert config.coarse_interval == 3.0


class TestMainCommand:
    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("assignments", "start", "status", "pause", "resume", "cancel", "retry", "watch"):
            assert command in result.output

    def test_config_file_reaches_client(self, runner, temp_config_dir, sample_config):
        config_file = temp_config_dir / "monitor.yaml"
        with open(config_file, "w") as f:
            yaml.dump(sample_config, f)

        client = AsyncMock()
        client.get_status.return_value = make_job()
        client_cls = MagicMock()
        client_cls.return_value.__aenter__.return_value = client

        with patch("btec_monitor.cli.GenerationClient", client_cls):
            result = runner.invoke(main, ["--config", str(config_file), "status", "J1"])

        assert result.exit_code == 0
        config = client_cls.call_args.args[0]
        assert config.api_url == "http://example.com/api"
        assert config.token == "file-token"


class TestCommands:
    def test_assignments(self, runner, service):
        result = runner.invoke(main, ["assignments"])
        assert result.exit_code == 0
        assert "A1" in result.output
        assert "GENERATING" in result.output
        assert "MERIT" in result.output

    def test_start(self, runner, service):
        _, client = service
        result = runner.invoke(main, ["start", "A1"])

        assert result.exit_code == 0
        client.start.assert_awaited_once_with("A1")
        assert "Generation started" in result.output
        assert "btec-monitor watch A1" in result.output

    def test_start_rejected_for_non_draft(self, runner, service):
        _, client = service
        client.get_assignment.return_value = make_assignment("COMPLETED")

        result = runner.invoke(main, ["start", "A1"])
        assert result.exit_code == 1
        assert "only DRAFT assignments can be generated" in result.output
        client.start.assert_not_awaited()

    def test_status(self, runner, service):
        result = runner.invoke(main, ["status", "J1"])
        assert result.exit_code == 0
        assert "PROCESSING" in result.output
        assert "45%" in result.output
        assert "1,200 / 3,000" in result.output

    def test_status_json(self, runner, service):
        result = runner.invoke(main, ["status", "J1", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["jobId"] == "J1"
        assert data["status"] == "PROCESSING"
        assert data["progress"] == 45

    def test_status_not_found(self, runner, service):
        _, client = service
        client.get_status.side_effect = NotFoundError("Job not found")

        result = runner.invoke(main, ["status", "J9"])
        assert result.exit_code == 1
        assert "Error: Job not found" in result.output

    @pytest.mark.parametrize("action", ["pause", "resume", "cancel", "retry"])
    def test_control_commands(self, runner, service, action):
        _, client = service
        result = runner.invoke(main, [action, "J1"])

        assert result.exit_code == 0
        getattr(client, action).assert_awaited_once_with("J1")
        assert f"{action.capitalize()} requested for job J1" in result.output

    def test_control_rejected(self, runner, service):
        _, client = service
        client.pause.side_effect = RemoteError("Job cannot be paused", status_code=409)

        result = runner.invoke(main, ["pause", "J1"])
        assert result.exit_code == 1
        assert "Job cannot be paused" in result.output

    def test_connection_options(self, runner, service):
        client_cls, _ = service
        result = runner.invoke(
            main,
            ["status", "J1", "--api-url", "http://cli/api", "--token", "cli-token", "--no-verify-ssl"],
        )

        assert result.exit_code == 0
        config = client_cls.call_args.args[0]
        assert config.api_url == "http://cli/api"
        assert config.token == "cli-token"
        assert config.verify_ssl is False


class TestWatchCommand:
    @patch("btec_monitor.cli.Monitor")
    def test_watch_review(self, mock_monitor, runner, no_config_files):
        mock_monitor.return_value.start = AsyncMock(return_value="review")

        result = runner.invoke(main, ["watch", "A1", "--no-auto-refresh"])

        assert result.exit_code == 0
        config, assignment_id = mock_monitor.call_args.args
        assert assignment_id == "A1"
        assert config.auto_refresh is False
        assert "ready for review" in result.output

    @patch("btec_monitor.cli.Monitor")
    def test_watch_dashboard(self, mock_monitor, runner, no_config_files):
        mock_monitor.return_value.start = AsyncMock(return_value="dashboard")

        result = runner.invoke(main, ["watch", "A1"])
        assert result.exit_code == 0
        assert mock_monitor.call_args.args[0].auto_refresh is True
        assert "Returning to dashboard" in result.output

    @patch("btec_monitor.cli.asyncio.run")
    @patch("btec_monitor.cli.Monitor")
    def test_watch_keyboard_interrupt(self, mock_monitor, mock_run, runner, no_config_files):
        mock_monitor.return_value.start = Mock(return_value=None)
        mock_run.side_effect = KeyboardInterrupt()

        result = runner.invoke(main, ["watch", "A1"])
        assert result.exit_code == 0
        assert "Closing monitor" in result.output
