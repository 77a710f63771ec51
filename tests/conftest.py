"""Shared pytest fixtures for LayerStore tests."""
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator

import pytest
import yaml

from layerstore.index import MemoryItemIndex
from layerstore.infrastructure.config_manager import ConfigManager
from layerstore.layers.store import LayerStore


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Keep LAYERSTORE_* variables and host config files out of tests."""
    for key in list(os.environ):
        if key.startswith("LAYERSTORE_"):
            monkeypatch.delenv(key)
    monkeypatch.setattr(ConfigManager, "SYSTEM_CONFIG_FILE", tmp_path / "etc" / "config.yaml")
    monkeypatch.setattr(ConfigManager, "USER_CONFIG_FILE", tmp_path / "home" / "config.yaml")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def staging_tree(temp_dir: Path) -> Path:
    """Create a directory tree to pack."""
    tree = temp_dir / "tree"
    tree.mkdir()

    (tree / "file1").write_bytes(b"content of file1")
    (tree / "path" / "to").mkdir(parents=True)
    (tree / "path" / "to" / "file2").write_bytes(b"content of file2")
    (tree / "path" / "to" / "file3").write_bytes(b"content of file3")

    # Empty directory and binary content
    (tree / "empty").mkdir()
    (tree / "data.bin").write_bytes(bytes(range(256)) * 64)

    return tree


@pytest.fixture
def store_root(temp_dir: Path) -> Path:
    """Root directory for a store."""
    return temp_dir / "store"


@pytest.fixture
def store(store_root: Path) -> Generator[LayerStore, None, None]:
    """LayerStore with an in-memory index."""
    with LayerStore(store_root, MemoryItemIndex()) as s:
        yield s


@pytest.fixture
def sqlite_store(store_root: Path) -> Generator[LayerStore, None, None]:
    """LayerStore with an SQLite index under its root."""
    with LayerStore.open(store_root) as s:
        yield s


@pytest.fixture
def sample_config(temp_dir: Path) -> Dict[str, Any]:
    """Provide a sample LayerStore configuration."""
    return {
        "layerstore": {
            "root": str(temp_dir / "configured-store"),
            "origin": 1,
            "archive": {"compression": "stored"},
            "index": {"backend": "memory", "path": None},
            "logging": {"level": "DEBUG", "file": None},
        }
    }


@pytest.fixture
def config_file(temp_dir: Path, sample_config: Dict[str, Any]) -> Path:
    """Write the sample configuration to a YAML file."""
    path = temp_dir / "layerstore.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(sample_config, f)
    return path
