"""
Test suite for the click CLI.

Uses CliRunner with uvicorn and port checks mocked so no server is started.
"""

import os
import socket
from unittest.mock import patch

import click
import pytest
import yaml
from click.testing import CliRunner

from gantt_manager.cli import check_port_available, main, validate_gantt_yaml
from gantt_manager.database import GanttDatabase

SAMPLE_YAML = """
tasks:
  - key: a
    text: Alpha
    children:
      - key: b
        text: Beta
links:
  - source: b
    target: a
    type: ff
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def yaml_file(tmp_path):
    path = tmp_path / "plan.yaml"
    path.write_text(SAMPLE_YAML)
    return str(path)


class TestPortManagement:
    def test_check_port_available_in_use(self):
        """Test port availability check for port in use."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server_sock:
            server_sock.bind(('127.0.0.1', 0))
            port = server_sock.getsockname()[1]

            assert not check_port_available('127.0.0.1', port)


class TestValidateYaml:
    def test_valid(self, yaml_file):
        assert validate_gantt_yaml(yaml_file)["tasks"][0]["key"] == "a"

    def test_missing_file(self, tmp_path):
        with pytest.raises(click.BadParameter):
            validate_gantt_yaml(str(tmp_path / "nope.yaml"))

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n")
        with pytest.raises(click.BadParameter):
            validate_gantt_yaml(str(path))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("tasks: [unclosed\n")
        with pytest.raises(click.BadParameter):
            validate_gantt_yaml(str(path))


class TestImportExportCommands:
    def test_import_then_export(self, runner, yaml_file, tmp_path):
        db_path = str(tmp_path / "cli.db")

        result = runner.invoke(main, ["import", yaml_file, "--db-path", db_path])
        assert result.exit_code == 0, result.output
        assert "Imported 2 tasks and 1 links" in result.output

        result = runner.invoke(main, ["export", "--db-path", db_path])
        assert result.exit_code == 0, result.output
        exported = yaml.safe_load(result.stdout)
        assert exported["tasks"][0]["text"] == "Alpha"
        assert exported["tasks"][0]["children"][0]["text"] == "Beta"
        assert exported["links"][0]["type"] == "ff"

    def test_export_to_file(self, runner, yaml_file, tmp_path):
        db_path = str(tmp_path / "cli.db")
        output = tmp_path / "out.yaml"
        runner.invoke(main, ["import", yaml_file, "--db-path", db_path])

        result = runner.invoke(main, ["export", "--db-path", db_path, "-o", str(output)])

        assert result.exit_code == 0, result.output
        assert yaml.safe_load(output.read_text())["tasks"][0]["key"] > 0

    def test_import_with_reset(self, runner, yaml_file, tmp_path):
        db_path = str(tmp_path / "cli.db")
        runner.invoke(main, ["import", yaml_file, "--db-path", db_path])
        result = runner.invoke(main, ["import", yaml_file, "--db-path", db_path, "--reset"])
        assert result.exit_code == 0, result.output

        with GanttDatabase(db_path) as db:
            assert db.get_counts() == {"tasks": 2, "links": 1}

    def test_import_under_missing_parent(self, runner, yaml_file, tmp_path):
        result = runner.invoke(
            main, ["import", yaml_file, "--db-path", str(tmp_path / "cli.db"), "--parent", "42"]
        )
        assert result.exit_code != 0
        assert "not found" in result.output

    def test_import_missing_file(self, runner, tmp_path):
        result = runner.invoke(main, ["import", str(tmp_path / "nope.yaml")])
        assert result.exit_code != 0


class TestServeCommand:
    @patch("gantt_manager.cli.uvicorn.run")
    @patch("gantt_manager.cli.check_port_available", return_value=True)
    def test_serve_starts_uvicorn(self, mock_port, mock_run, runner, tmp_path, monkeypatch):
        monkeypatch.delenv("DATABASE_PATH", raising=False)
        monkeypatch.delenv("RESET_ON_START", raising=False)
        db_path = str(tmp_path / "serve.db")

        result = runner.invoke(main, ["serve", "--db-path", db_path, "--port", "9123", "--reset"])

        assert result.exit_code == 0, result.output
        mock_run.assert_called_once()
        args, kwargs = mock_run.call_args
        assert args[0] == "gantt_manager.api:app"
        assert kwargs["port"] == 9123
        assert os.environ["DATABASE_PATH"] == db_path
        assert os.environ["RESET_ON_START"] == "1"

    @patch("gantt_manager.cli.uvicorn.run")
    @patch("gantt_manager.cli.check_port_available", return_value=False)
    def test_serve_port_in_use(self, mock_port, mock_run, runner, tmp_path):
        result = runner.invoke(main, ["serve", "--db-path", str(tmp_path / "x.db")])

        assert result.exit_code != 0
        assert "already in use" in result.output
        mock_run.assert_not_called()

    @patch("gantt_manager.cli.uvicorn.run")
    @patch("gantt_manager.cli.check_port_available", return_value=True)
    def test_serve_with_import(self, mock_port, mock_run, runner, yaml_file, tmp_path, monkeypatch):
        monkeypatch.delenv("DATABASE_PATH", raising=False)
        monkeypatch.delenv("RESET_ON_START", raising=False)
        db_path = str(tmp_path / "serve.db")

        result = runner.invoke(main, ["serve", "--db-path", db_path, "--import", yaml_file, "--reset"])

        assert result.exit_code == 0, result.output
        assert os.environ["RESET_ON_START"] == "0"
        with GanttDatabase(db_path) as db:
            assert db.get_counts()["tasks"] == 2
