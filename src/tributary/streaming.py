"""Tool-call reassembly.

Providers stream a tool call as a series of :class:`ToolCallDelta`
fragments sharing an ``index``.  The :class:`ToolCallAccumulator`
concatenates them back into complete calls, one per index.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from tributary.errors import ProtocolViolation
from tributary.events import ToolCallDelta

logger = logging.getLogger(__name__)


@dataclass
class AccumulatedToolCall:
    """A tool call as reassembled so far."""

    index: int
    call_id: str | None = None
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments.

    Fragments are appended in the order they are applied; calls at
    different indexes never share state.
    """

    def __init__(self) -> None:
        self._pending: dict[int, AccumulatedToolCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def apply(self, delta: ToolCallDelta) -> AccumulatedToolCall:
        """Append *delta* to the call at its index.

        Raises:
            ProtocolViolation: If the fragment carries a ``call_id`` that
                differs from the one already recorded for the index.
        """
        tc = self._pending.get(delta.index)
        if tc is None:
            tc = self._pending[delta.index] = AccumulatedToolCall(index=delta.index)

        if delta.call_id is not None:
            if tc.call_id is None:
                tc.call_id = delta.call_id
            elif tc.call_id != delta.call_id:
                logger.warning(
                    f"Tool call {delta.index} changed id from "
                    f"{tc.call_id!r} to {delta.call_id!r}"
                )
                raise ProtocolViolation(
                    f"tool call at index {delta.index} changed call_id "
                    f"from {tc.call_id!r} to {delta.call_id!r}"
                )
        if delta.name_fragment is not None:
            tc.name += delta.name_fragment
        if delta.arguments_fragment is not None:
            tc.arguments += delta.arguments_fragment
        return tc

    def finalize(self) -> list[AccumulatedToolCall]:
        """Return a snapshot of the calls in index order."""
        return [replace(self._pending[i]) for i in sorted(self._pending)]

    def clear(self) -> None:
        self._pending.clear()
