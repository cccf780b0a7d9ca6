"""Action Executor — dispatch decided actions to registered handlers.

Handlers are registered explicitly at startup (see handlers.py). Each
handler validates its own params before running. execute_all runs every
action concurrently and reports each one's outcome; one failure never
cancels or hides the others.
"""

import asyncio
import logging
from typing import Any, Protocol

from engage.errors import InvalidActionParamsError, NoHandlerError
from engage.schemas.pipeline import Action, ActionOutcome

log = logging.getLogger("engage.actions")


class ActionHandler(Protocol):
    name: str

    def validate(self, params: dict) -> bool: ...

    async def execute(self, params: dict) -> Any: ...


class ActionExecutor:
    def __init__(self):
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, handler: ActionHandler) -> None:
        if handler.name in self._handlers:
            log.warning(f"Replacing handler for action: {handler.name}")
        self._handlers[handler.name] = handler

    def has_handler(self, action_type: str) -> bool:
        return action_type in self._handlers

    @property
    def action_types(self) -> list[str]:
        return sorted(self._handlers)

    async def execute(self, action: Action) -> Any:
        handler = self._handlers.get(action.type)
        if handler is None:
            raise NoHandlerError(action.type)
        if not handler.validate(action.params):
            raise InvalidActionParamsError(action.type)
        return await handler.execute(action.params)

    async def execute_all(self, actions: list[Action]) -> list[ActionOutcome]:
        """Run all actions concurrently; one outcome per action, in input order."""
        results = await asyncio.gather(
            *(self.execute(a) for a in actions), return_exceptions=True
        )
        outcomes = []
        for action, result in zip(actions, results):
            if isinstance(result, BaseException):
                log.warning(f"Action {action.type} failed: {result}")
                outcomes.append(ActionOutcome(action=action, status="failed", error=str(result)))
            else:
                outcomes.append(ActionOutcome(action=action, status="success", result=result))
        return outcomes
