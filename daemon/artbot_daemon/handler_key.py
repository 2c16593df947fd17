"""Project handler identifiers.

A handler id is the join key between channel config, handler config and the
metadata source. Its text form is ``"<project_id>"`` for core-contract
projects or ``"<project_id>-<contract_name>"`` for partner-contract projects.
"""

from __future__ import annotations

from dataclasses import dataclass


class HandlerKeyError(ValueError):
    """Raised when a handler id cannot be parsed."""


@dataclass(frozen=True, slots=True)
class HandlerKey:
    """Parsed handler id."""

    project_id: int
    contract_name: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.project_id, int) or self.project_id < 0:
            raise HandlerKeyError(f"project id must be a non-negative integer: {self.project_id!r}")
        if self.contract_name is not None and not self.contract_name:
            raise HandlerKeyError("contract name must not be empty")

    def __str__(self) -> str:
        if self.contract_name is None:
            return str(self.project_id)
        return f"{self.project_id}-{self.contract_name}"

    @classmethod
    def parse(cls, handler_id: str) -> HandlerKey:
        """Parse ``"23"`` or ``"23-ogcontract"`` into a HandlerKey.

        Raises HandlerKeyError on anything else.
        """
        if not isinstance(handler_id, str) or not handler_id:
            raise HandlerKeyError(f"handler id must be a non-empty string: {handler_id!r}")
        project, sep, contract = handler_id.partition("-")
        if not (project.isascii() and project.isdecimal()):
            raise HandlerKeyError(f"invalid project id in handler id {handler_id!r}")
        if sep and not contract:
            raise HandlerKeyError(f"empty contract name in handler id {handler_id!r}")
        return cls(project_id=int(project), contract_name=contract or None)
