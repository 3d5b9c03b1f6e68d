from __future__ import annotations
import logging
from typing import Any, Callable

from .types import ConnectionManager, Mode

logger = logging.getLogger(__name__)


class ModeController:
    """
    Runs one operation against the manager's handle under a connection mode.

    Whatever the mode, a single invoke() surfaces at most one failure. In
    fixup mode a failure caused by a dropped connection is absorbed and the
    operation is rerun once on a fresh handle; only that second outcome
    leaves this method.
    """

    def __init__(self, manager: ConnectionManager):
        self.manager = manager

    def handle(self, mode: Mode) -> Any:
        if mode is Mode.CHECKED:
            # a failed probe drops the handle, acquire() then reconnects
            self.manager.probe()
        return self.manager.acquire()

    def invoke(self, mode: Mode, operation: Callable[[Any], Any]) -> Any:
        if mode is Mode.FIXUP:
            return self._fixup(operation)
        return operation(self.handle(mode))

    def _fixup(self, operation: Callable[[Any], Any]) -> Any:
        try:
            return operation(self.manager.acquire())
        except Exception as exc:
            if self.manager.probe():
                raise
            logger.debug("connection lost during operation (%r); rerunning on a new handle", exc)
        return operation(self.manager.acquire())
