#!/usr/bin/env python3
"""Tests for the command-line interface."""

import io
from unittest.mock import patch

import pytest

from layerstore.cli import (
    CLIError,
    build_config_from_args,
    load_settings,
    main,
    parse_arguments,
)
from layerstore.infrastructure.config_manager import ConfigManager


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep CLI runs from installing console handlers on the layerstore logger."""
    monkeypatch.setattr("layerstore.cli.setup_logging", lambda settings: _NullLogger())


class _NullLogger:
    def debug(self, msg, **context):
        pass


@pytest.fixture
def cli_root(temp_dir):
    return str(temp_dir / "cli-store")


def run(cli_root, *argv):
    return main(["--root", cli_root, *argv])


class TestParseArguments:
    """Tests for parse_arguments()."""

    def test_write(self):
        args = parse_arguments(["write", "file1"])
        assert args.command == "write"
        assert args.path == "file1"
        assert args.source is None

    def test_global_options(self, temp_dir):
        args = parse_arguments(["--root", str(temp_dir), "--debug", "seal"])
        assert args.root == str(temp_dir)
        assert args.debug is True

    def test_extract_layer_id(self):
        args = parse_arguments(["extract", "3", "/tmp/out"])
        assert args.layer_id == 3
        assert args.dest == "/tmp/out"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_arguments([])

    def test_missing_config_file(self, temp_dir):
        with pytest.raises(CLIError, match="does not exist"):
            parse_arguments(["--config", str(temp_dir / "missing.yaml"), "seal"])

    def test_config_is_directory(self, temp_dir):
        with pytest.raises(CLIError, match="not a file"):
            parse_arguments(["--config", str(temp_dir), "seal"])

    def test_missing_source(self, temp_dir):
        with pytest.raises(CLIError, match="Source file"):
            parse_arguments(["write", "file1", str(temp_dir / "nope")])


class TestSettings:
    """Tests for configuration from arguments."""

    def test_build_config_from_args(self, temp_dir):
        args = parse_arguments(["--root", str(temp_dir), "--debug", "layers"])
        assert build_config_from_args(args) == {
            "layerstore": {"root": str(temp_dir), "logging": {"level": "DEBUG"}}
        }

    def test_arguments_override_file(self, config_file, temp_dir):
        args = parse_arguments(["--config", str(config_file), "--root", str(temp_dir / "cli"), "layers"])
        settings = load_settings(args)
        assert settings.root == temp_dir / "cli"
        assert settings.index_backend == "memory"

    def test_user_config_file(self, temp_dir):
        """Test the default user file is read when no --config is given."""
        user_file = ConfigManager.USER_CONFIG_FILE
        user_file.parent.mkdir(parents=True, exist_ok=True)
        user_file.write_text(f"layerstore:\n  root: {temp_dir / 'from-user-file'}\n")

        settings = load_settings(parse_arguments(["layers"]))
        assert settings.root == temp_dir / "from-user-file"


class TestMain:
    """End-to-end runs of main()."""

    def test_write_seal_read(self, cli_root, temp_dir, capsysbinary):
        source = temp_dir / "local.txt"
        source.write_bytes(b"hello layers")

        assert run(cli_root, "write", "docs/readme.txt", str(source)) == 0
        assert run(cli_root, "seal") == 0
        assert capsysbinary.readouterr().out == b"2\n"

        assert run(cli_root, "read", "docs/readme.txt") == 0
        assert capsysbinary.readouterr().out == b"hello layers"

    def test_write_from_stdin(self, cli_root, capsysbinary):
        with patch("sys.stdin", io.TextIOWrapper(io.BytesIO(b"piped"))):
            assert run(cli_root, "write", "file1") == 0
        assert run(cli_root, "read", "file1") == 0
        assert capsysbinary.readouterr().out == b"piped"

    def test_ls(self, cli_root, temp_dir, capsys):
        source = temp_dir / "f"
        source.write_bytes(b"x")
        run(cli_root, "write", "a/b/c", str(source))
        run(cli_root, "mkdir", "a/empty")
        capsys.readouterr()

        assert run(cli_root, "ls", "a") == 0
        assert capsys.readouterr().out.split() == ["b", "empty"]

        assert run(cli_root, "ls", "-R") == 0
        assert capsys.readouterr().out.split() == ["a", "a/b", "a/b/c", "a/empty"]

    def test_rm(self, cli_root, temp_dir, capsys):
        source = temp_dir / "f"
        source.write_bytes(b"x")
        run(cli_root, "write", "file1", str(source))
        run(cli_root, "seal")
        assert run(cli_root, "rm", "file1") == 0
        capsys.readouterr()

        assert run(cli_root, "read", "file1") == 1
        assert "Error:" in capsys.readouterr().err

    def test_layers(self, cli_root, capsys):
        run(cli_root, "seal")
        capsys.readouterr()
        assert run(cli_root, "layers") == 0
        assert capsys.readouterr().out.splitlines() == ["1\tsealed", "2\tstaging"]

    def test_extract_and_verify(self, cli_root, temp_dir, capsys):
        source = temp_dir / "f"
        source.write_bytes(b"payload")
        run(cli_root, "write", "dir/file", str(source))
        run(cli_root, "seal")

        dest = temp_dir / "extracted"
        assert run(cli_root, "extract", "1", str(dest)) == 0
        assert (dest / "dir" / "file").read_bytes() == b"payload"

        capsys.readouterr()
        assert run(cli_root, "verify") == 0
        assert "1 sealed layer" in capsys.readouterr().out

    def test_store_error_exit_code(self, cli_root, capsys):
        assert run(cli_root, "read", "missing") == 1
        assert "missing" in capsys.readouterr().err

    def test_invalid_path_exit_code(self, cli_root, capsys):
        assert run(cli_root, "mkdir", "../outside") == 1
        assert "Error:" in capsys.readouterr().err

    def test_cli_error_exit_code(self, temp_dir, capsys):
        assert main(["--config", str(temp_dir / "missing.yaml"), "seal"]) == 1
        assert "Configuration file does not exist" in capsys.readouterr().err

    def test_memory_index_on_sealed_root(self, cli_root, monkeypatch, capsys):
        run(cli_root, "seal")
        capsys.readouterr()

        monkeypatch.setenv("LAYERSTORE_INDEX__BACKEND", "memory")
        assert run(cli_root, "layers") == 1
        assert "memory index" in capsys.readouterr().err

    def test_interrupted(self, cli_root, capsys):
        with patch("layerstore.cli.run_command", side_effect=KeyboardInterrupt):
            assert run(cli_root, "seal") == 130
        assert "Interrupted" in capsys.readouterr().err
