"""Menu navigation driven purely by parsed screen content."""

from __future__ import annotations

import logging
import re

from termpilot.errors import MenuItemNotFoundError
from termpilot.models import MenuContext
from termpilot.terminal.input import InputSimulator
from termpilot.terminal.supervisor import SessionSupervisor

logger = logging.getLogger(__name__)

# "1. Item", "* Item", "- Item", "[1] Item"
_MENU_ITEM_RE = re.compile(r"^(?:\d+\.|\*|-|\[\d+\])\s*(.+)$")


def parse_menu_items(text: str) -> list[str]:
    """Extract candidate item labels from rendered menu text."""
    items = []
    for line in text.splitlines():
        match = _MENU_ITEM_RE.match(line.strip())
        if match:
            items.append(match.group(1).strip())
    return items


def find_item(items: list[str], label: str) -> int:
    """Index of the first item containing `label` (case-insensitive), or -1."""
    needle = label.lower()
    for index, item in enumerate(items):
        if needle in item.lower():
            return index
    return -1


class MenuNavigator:
    """
    Moves a menu highlight with arrow keys and commits with Enter.

    Tracks a single MenuContext; the first navigation starts it at level 0 and
    later calls continue from the remembered highlight.
    """

    def __init__(self, supervisor: SessionSupervisor, inputs: InputSimulator):
        self.supervisor = supervisor
        self.inputs = inputs
        self._context: MenuContext | None = None

    @property
    def context(self) -> MenuContext | None:
        return self._context.model_copy(deep=True) if self._context else None

    def reset(self) -> None:
        self._context = None

    async def navigate(self, session_id: str, path: list[str]) -> MenuContext:
        """Select each label of `path` in turn and return a copy of the final context."""
        logger.info("Navigating menu path: %s (session %s)", " > ".join(path), session_id)
        if self._context is None:
            self._context = MenuContext()
        context = self._context

        try:
            for label in path:
                await self.inputs.wait_for_stabilization(session_id)

                latest = self.supervisor.latest_output(session_id)
                items = parse_menu_items(latest.text if latest else "")
                context.items = items

                target = find_item(items, label)
                if target == -1:
                    raise MenuItemNotFoundError(label, items)

                await self._move_to(session_id, context, target)
                await self.inputs.send_input(session_id, self.inputs.key("Enter"))

                context.level += 1
                context.history.append(label)
                context.selected_index = target
                logger.debug("Selected menu item %r (level %d, index %d)", label, context.level, target)
        except Exception as exc:
            logger.error("Menu navigation failed on session %s: %s", session_id, exc)
            raise

        snapshot = context.model_copy(deep=True)
        self.supervisor.notify("menu_navigated", session_id, path=list(path), context=snapshot.model_dump())
        return snapshot

    async def _move_to(self, session_id: str, context: MenuContext, target: int) -> None:
        steps = target - context.selected_index
        if steps == 0:
            return
        key = self.inputs.key("ArrowDown" if steps > 0 else "ArrowUp")
        for _ in range(abs(steps)):
            await self.inputs.send_input(session_id, key)
        context.selected_index = target
