"""
Customer/admin notification port.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Notifier(Protocol):
    """Queue a templated message for delivery; failures are non-fatal to callers."""

    def send(self, recipient: str, template_id: str, data: dict[str, Any]) -> None: ...
