"""
In-Memory Test Catalog

Holds the test cases the healing and flaky agents work on. Seeded from a
YAML file or a list of mappings; content updates are kept in memory so an
unverified fix can be rolled back by writing the original content again.
"""

import json
from pathlib import Path
from typing import Any

import structlog
import yaml

from autoqa.core.interfaces.catalog import TestCase


def _to_test_case(data: dict[str, Any]) -> TestCase:
    if "test_id" not in data and "id" not in data:
        raise ValueError(f"Test entry without id: {data}")
    content = data.get("content", "")
    if not isinstance(content, str):
        # Structured intents in YAML are stored as the JSON the agents parse.
        content = json.dumps(content)
    known = {"test_id", "id", "name", "content", "last_error", "active"}
    test_id = str(data.get("test_id", data.get("id")))
    return TestCase(
        test_id=test_id,
        name=data.get("name", test_id),
        content=content,
        last_error=data.get("last_error"),
        active=bool(data.get("active", True)),
        metadata={k: v for k, v in data.items() if k not in known},
    )


class InMemoryTestCatalog:
    """Dict-backed test catalog."""

    __test__ = False

    def __init__(self, tests: list[TestCase] | None = None):
        self._tests: dict[str, TestCase] = {t.test_id: t for t in tests or []}
        self.logger = structlog.get_logger().bind(component="test_catalog")

    @classmethod
    def from_records(cls, records: list[dict[str, Any]]) -> "InMemoryTestCatalog":
        return cls([_to_test_case(r) for r in records or []])

    @classmethod
    def from_yaml(cls, path: str | Path) -> "InMemoryTestCatalog":
        """
        Load a catalog from a YAML file with a top-level ``tests`` list.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file has no ``tests`` list
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Test catalog not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        tests = data.get("tests")
        if not isinstance(tests, list):
            raise ValueError(f"Test catalog {path} must contain a 'tests' list")
        return cls.from_records(tests)

    def add(self, test: TestCase) -> None:
        self._tests[test.test_id] = test

    async def get_test(self, test_id: str) -> TestCase | None:
        return self._tests.get(test_id)

    async def list_active(self) -> list[TestCase]:
        return [t for t in self._tests.values() if t.active]

    async def update_content(self, test_id: str, content: str) -> bool:
        test = self._tests.get(test_id)
        if test is None:
            self.logger.warning("test_not_found", test_id=test_id)
            return False
        test.content = content
        self.logger.debug("test_content_updated", test_id=test_id)
        return True
