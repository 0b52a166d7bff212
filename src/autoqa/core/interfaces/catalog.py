"""
Test Catalog Protocol

Read/write access to the test cases healed or stabilized by agents.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class TestCase:
    """
    A stored test case.

    Attributes:
        test_id: Unique test identifier
        name: Human-readable test name
        content: Test intent JSON (scenarios/steps with locators)
        last_error: Last recorded execution error, if any
        active: Whether the test is part of the active suite
        metadata: Free-form extra fields
    """

    __test__ = False

    test_id: str
    name: str
    content: str = ""
    last_error: str | None = None
    active: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "test_id": self.test_id,
            "name": self.name,
            "content": self.content,
            "last_error": self.last_error,
            "active": self.active,
            "metadata": self.metadata,
        }


class TestCatalogProtocol(Protocol):
    __test__ = False

    async def get_test(self, test_id: str) -> TestCase | None:
        ...

    async def list_active(self) -> list[TestCase]:
        ...

    async def update_content(self, test_id: str, content: str) -> bool:
        """Replace a test's content. False if the test is unknown."""
        ...
