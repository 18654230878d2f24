"""
Ordered post-commit side effects.

State-changing services collect notifications, chat posts and channel
broadcasts into a ``SideEffects`` list while they hold row locks, then
call ``commit()`` inside the same ``transaction.atomic()`` block. The
hooks run in order once the outer transaction commits and are dropped
if it rolls back. A failing hook is logged and never changes the result
the service already returned.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, List, Tuple

from django.db import transaction

logger = logging.getLogger(__name__)


class SideEffects:
    def __init__(self, label: str = '') -> None:
        self.label = label
        self._hooks: List[Tuple[str, Callable[..., Any], tuple, dict]] = []

    def __len__(self) -> int:
        return len(self._hooks)

    def add(self, name: str, fn: Callable[..., Any], *args, **kwargs) -> 'SideEffects':
        self._hooks.append((name, fn, args, kwargs))
        return self

    def dispatch(self) -> int:
        """Run every hook in order. Returns how many succeeded."""
        ok = 0
        for name, fn, args, kwargs in self._hooks:
            try:
                fn(*args, **kwargs)
                ok += 1
            except Exception:
                logger.exception('side effect %s failed (%s)', name, self.label)
        self._hooks = []
        return ok

    def commit(self) -> None:
        """Schedule dispatch for after the current transaction commits."""
        if self._hooks:
            transaction.on_commit(self.dispatch)
