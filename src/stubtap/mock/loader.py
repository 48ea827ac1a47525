"""
Stubtap Mock Loader

Loads mock definitions from JSON or YAML files.

Each path may be:
- a mock file (.json, .yaml, .yml)
- a directory, whose mock files are loaded (subdirectories are skipped)
- a glob pattern mixing both
"""

import glob
import json
import logging
from pathlib import Path
from typing import Any, List

import yaml

from .entry import Mock

MOCK_FILE_EXTENSIONS = ('.json', '.yaml', '.yml')

logger = logging.getLogger("stubtap.mock")


class MockLoadError(ValueError):
    """Raised when mock files cannot be read or decoded. Lists every failure."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Failed to load mocks:\n" + '\n'.join(f"  - {error}" for error in self.errors))


class MockLoader:
    """
    Loader for mock definition files.

    Example:
        loader = MockLoader("tests/mocks", "extra/get_user.yaml")
        mocks = loader.load()

        for mock in mocks:
            print(mock.name)
    """

    def __init__(self, *paths: str):
        """
        Initialize mock loader.

        Args:
            paths: Files, directories or glob patterns
        """
        self.paths = [str(p) for p in paths]

    def load(self) -> List[Mock]:
        """
        Load mocks from every path, in path order.

        Paths matching nothing are skipped with a warning; files that cannot
        be read or decoded are collected and reported together.

        Returns:
            List of mocks

        Raises:
            MockLoadError: If any matched file failed to load
        """
        mocks: List[Mock] = []
        errors: List[str] = []

        for path in self.paths:
            matches = sorted(glob.glob(path))
            if not matches:
                logger.warning(f"No mock files found for {path}")
                continue

            for match in matches:
                for file_path in self._mock_files(Path(match)):
                    try:
                        mocks.append(self.load_file(file_path))
                    except (OSError, ValueError, yaml.YAMLError) as e:
                        errors.append(f"{file_path}: {e}")

        if errors:
            raise MockLoadError(errors)

        logger.info(f"Loaded {len(mocks)} mocks from {', '.join(self.paths)}")
        return mocks

    @staticmethod
    def load_file(file_path: Path) -> Mock:
        """
        Load one mock file.

        The mock name defaults to the file name without extension.

        Raises:
            OSError: If the file cannot be read
            ValueError: If the content is empty or not a mock mapping
            yaml.YAMLError: If YAML decoding fails
        """
        file_path = Path(file_path)
        with open(file_path, 'r', encoding='utf-8') as f:
            content = f.read()

        mock = Mock.from_dict(decode_mock(content), source=str(file_path))
        if not mock.name:
            mock.name = file_path.stem
        return mock

    @staticmethod
    def _mock_files(path: Path) -> List[Path]:
        if path.is_dir():
            return sorted(
                p for p in path.iterdir()
                if p.is_file() and p.suffix.lower() in MOCK_FILE_EXTENSIONS
            )
        return [path]


def decode_mock(content: str) -> Any:
    """
    Decode mock file content.

    Content starting with '{' is decoded as JSON, anything else as YAML.

    Raises:
        ValueError: If content is empty or invalid JSON
        yaml.YAMLError: If content is invalid YAML
    """
    stripped = content.strip()
    if not stripped:
        raise ValueError("empty mock data")

    if stripped.startswith('{'):
        return json.loads(stripped)

    return yaml.safe_load(stripped)


def load_mocks(*paths: str) -> List[Mock]:
    """
    Convenience function to load mocks in one call.

    Example:
        mocks = load_mocks("tests/mocks/*.yaml")
    """
    return MockLoader(*paths).load()
