"""Tests for stockbot/cli.py - CLI entry point."""
from __future__ import annotations

import argparse
import os
from unittest.mock import patch

import pytest


class TestCreateCliParser:
    """Tests for create_cli_parser function."""

    def test_creates_parser(self):
        from stockbot.cli import create_cli_parser

        assert isinstance(create_cli_parser(), argparse.ArgumentParser)

    def test_search_command(self):
        from stockbot.cli import create_cli_parser

        args = create_cli_parser().parse_args(["search", "plan.json"])
        assert args.command == "search"
        assert args.plan == "plan.json"
        assert args.output == "./output"
        assert args.log_level == "INFO"

    def test_download_command(self):
        from stockbot.cli import create_cli_parser

        args = create_cli_parser().parse_args(["download", "plan.json", "-o", "out", "--max-concurrent", "5"])
        assert args.output == "out"
        assert args.max_concurrent == 5

    def test_errors_command(self):
        from stockbot.cli import create_cli_parser

        args = create_cli_parser().parse_args(["--log-level", "DEBUG", "errors", "--clear"])
        assert args.clear is True
        assert args.log_level == "DEBUG"

    def test_command_required(self):
        from stockbot.cli import create_cli_parser

        with pytest.raises(SystemExit):
            create_cli_parser().parse_args([])


class TestSearchCommand:
    """Tests for the search sub-command."""

    def test_missing_api_key(self, sample_plan_file, temp_output_dir):
        from stockbot.cli import main

        with patch("stockbot.cli.load_dotenv"):
            assert main(["search", sample_plan_file, "-o", temp_output_dir]) == 1

    def test_invalid_plan(self, temp_dir, temp_output_dir, monkeypatch):
        from stockbot.cli import main

        monkeypatch.setenv("FREEPIK_API_KEY", "k")
        path = os.path.join(temp_dir, "bad.json")
        with open(path, "w", encoding="utf-8") as f:
            f.write("{}")

        with patch("stockbot.cli.load_dotenv"):
            assert main(["search", path, "-o", temp_output_dir]) == 1

    def test_runs_and_releases_lock(self, sample_plan_file, temp_output_dir, monkeypatch):
        from stockbot.artifacts import lock_path
        from stockbot.cli import main
        from stockbot.search_runner import SearchResults

        monkeypatch.setenv("FREEPIK_API_KEY", "k")
        with patch("stockbot.cli.load_dotenv"), \
                patch("stockbot.cli.RunLock") as mock_lock_cls, \
                patch("stockbot.cli.SearchRunner") as mock_runner_cls:
            mock_runner_cls.return_value.run.return_value = SearchResults()
            assert main(["search", sample_plan_file, "-o", temp_output_dir]) == 0

        mock_lock_cls.return_value.acquire.assert_called_once_with("search")
        mock_lock_cls.return_value.release.assert_called_once()
        assert not os.path.exists(lock_path(temp_output_dir))

    def test_lock_conflict_is_journaled(self, sample_plan_file, temp_output_dir, monkeypatch):
        from stockbot.cli import main
        from stockbot.error_journal import ErrorJournal
        from stockbot.run_lock import RunLock

        monkeypatch.setenv("FREEPIK_API_KEY", "k")
        holder = RunLock(temp_output_dir, handle_signals=False)
        holder.acquire("download")
        try:
            with patch("stockbot.cli.load_dotenv"), patch("stockbot.cli.SearchRunner") as mock_runner_cls:
                assert main(["search", sample_plan_file, "-o", temp_output_dir]) == 1
            mock_runner_cls.assert_not_called()
        finally:
            holder.release()

        (record,) = ErrorJournal(temp_output_dir).read()
        assert record.kind == "lock_conflict"
        assert record.context["pid"] == os.getpid()


class TestDownloadCommand:
    """Tests for the download sub-command."""

    def test_missing_selection_is_validation_error(self, sample_plan_file, temp_output_dir, monkeypatch):
        from stockbot.cli import main
        from stockbot.error_journal import ErrorJournal

        monkeypatch.setenv("FREEPIK_API_KEY", "k")
        with patch("stockbot.cli.load_dotenv"):
            assert main(["download", sample_plan_file, "-o", temp_output_dir]) == 1

        (record,) = ErrorJournal(temp_output_dir).read()
        assert record.kind == "validation_error"

    def test_registers_cancel_on_shutdown(self, sample_plan_file, temp_output_dir, monkeypatch):
        from stockbot.artifacts import save_json, selection_path
        from stockbot.cli import main

        monkeypatch.setenv("FREEPIK_API_KEY", "k")
        save_json([], selection_path(temp_output_dir))

        with patch("stockbot.cli.load_dotenv"), \
                patch("stockbot.cli.RunLock") as mock_lock_cls, \
                patch("stockbot.cli.DownloadRunner") as mock_runner_cls:
            mock_runner_cls.return_value.run.return_value = []
            assert main(["download", sample_plan_file, "-o", temp_output_dir, "--max-concurrent", "4"]) == 0

        lock = mock_lock_cls.return_value
        lock.acquire.assert_called_once_with("download")
        lock.on_shutdown.assert_called_once_with(mock_runner_cls.return_value.cancel)
        lock.release.assert_called_once()
        assert mock_runner_cls.call_args[1]["max_concurrent"] == 4

    def test_download_error_exit_code(self, sample_plan_file, temp_output_dir, monkeypatch):
        from stockbot.artifacts import save_json, selection_path
        from stockbot.cli import main
        from stockbot.download_runner import DownloadError

        monkeypatch.setenv("FREEPIK_API_KEY", "k")
        save_json([], selection_path(temp_output_dir))

        with patch("stockbot.cli.load_dotenv"), \
                patch("stockbot.cli.RunLock") as mock_lock_cls, \
                patch("stockbot.cli.DownloadRunner") as mock_runner_cls:
            mock_runner_cls.return_value.run.side_effect = DownloadError("boom", "1", "s")
            assert main(["download", sample_plan_file, "-o", temp_output_dir]) == 1

        mock_lock_cls.return_value.release.assert_called_once()


class TestErrorsCommand:
    def test_lists_records(self, temp_output_dir, capsys):
        from stockbot.cli import main
        from stockbot.error_journal import ErrorJournal

        ErrorJournal(temp_output_dir).log_api_error("bad request", status_code=400)

        with patch("stockbot.cli.load_dotenv"):
            assert main(["errors", "-o", temp_output_dir]) == 0

        out = capsys.readouterr().out
        assert "[api_error] bad request" in out
        assert "status_code=400" in out

    def test_empty(self, temp_output_dir, capsys):
        from stockbot.cli import main

        with patch("stockbot.cli.load_dotenv"):
            assert main(["errors", "-o", temp_output_dir]) == 0
        assert "No errors recorded." in capsys.readouterr().out

    def test_clear(self, temp_output_dir):
        from stockbot.cli import main
        from stockbot.error_journal import ErrorJournal

        journal = ErrorJournal(temp_output_dir)
        journal.log_validation_error("x")

        with patch("stockbot.cli.load_dotenv"):
            assert main(["errors", "-o", temp_output_dir, "--clear"]) == 0
        assert not os.path.exists(journal.path)


class TestMain:
    def test_config_option_sets_env(self, config_file, temp_output_dir, monkeypatch):
        from stockbot.cli import main

        monkeypatch.delenv("STOCKBOT_CONFIG_PATH", raising=False)
        with patch("stockbot.cli.load_dotenv"):
            main(["--config", config_file, "errors", "-o", temp_output_dir])

        assert os.environ["STOCKBOT_CONFIG_PATH"] == config_file

    def test_keyboard_interrupt(self, temp_output_dir):
        from stockbot.cli import main

        with patch("stockbot.cli.load_dotenv"), patch("stockbot.cli.run_errors", side_effect=KeyboardInterrupt):
            assert main(["errors", "-o", temp_output_dir]) == 0
