"""Validation failure raised when a wire value does not match its schema.

Carries the schema name and a flat list of ``"<path>: <message>"`` issues so
callers can log or surface every reason a value was rejected.
"""

from collections.abc import Sequence

from pydantic import ValidationError


def format_issue_path(path: Sequence[str | int]) -> str:
    """Render a location like ``turns[0].items`` (``<root>`` when empty)."""
    if not path:
        return "<root>"
    rendered = ""
    for segment in path:
        if isinstance(segment, int):
            rendered += f"[{segment}]"
        elif rendered:
            rendered += f".{segment}"
        else:
            rendered = str(segment)
    return rendered or "<root>"


class ProtocolValidationError(ValueError):
    """A value failed validation against a named schema."""

    def __init__(self, schema: str, issues: list[str]) -> None:
        self.schema = schema
        self.issues = issues
        super().__init__(
            f"{schema} did not match expected schema. {'; '.join(issues)}"
        )

    @classmethod
    def from_pydantic(
        cls, schema: str, error: ValidationError
    ) -> "ProtocolValidationError":
        issues = [
            f"{format_issue_path(issue['loc'])}: {issue['msg']}"
            for issue in error.errors(include_url=False)
        ]
        return cls(schema, issues)
