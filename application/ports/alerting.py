"""
Operator alerting port.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Alerter(Protocol):
    """Push a short message to the on-call channel.

    Implementations must not raise; a failed alert is logged and dropped.
    """

    async def notify(self, message: str, **context: Any) -> None: ...
