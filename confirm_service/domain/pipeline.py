"""Host authentication pipeline that modules register their checkpoints with."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from .account import Account
from .. import metrics
from ..errors import AccountNotConfirmedInterrupt
from ..security.sessions import Session

logger = logging.getLogger(__name__)


class Interrupt(str, Enum):
    none = "none"
    account_not_confirmed = "account_not_confirmed"


@dataclass(slots=True)
class ConfirmContext:
    """Request-scoped state handed to pipeline callbacks."""

    account: Account | None = None
    session: Session | None = None


class AuthPipeline:
    """Runs registered module callbacks at fixed points of the auth flow.

    A module takes part by defining any of ``after_register(ctx)``,
    ``before_auth(ctx)`` and ``after_load_account(ctx)``. The latter two
    return an :class:`Interrupt`; the first non-``none`` result stops the chain
    and is raised as :class:`AccountNotConfirmedInterrupt`.
    """

    def __init__(self, *, not_confirmed_path: str = "/") -> None:
        self._not_confirmed_path = not_confirmed_path
        self._after_register: list[Callable[[ConfirmContext], Any]] = []
        self._before_auth: list[Callable[[ConfirmContext], Interrupt]] = []
        self._after_load_account: list[Callable[[ConfirmContext], Interrupt]] = []

    def register(self, module: object) -> None:
        if hasattr(module, "after_register"):
            self._after_register.append(module.after_register)
        if hasattr(module, "before_auth"):
            self._before_auth.append(module.before_auth)
        if hasattr(module, "after_load_account"):
            self._after_load_account.append(module.after_load_account)

    def fire_after_register(self, ctx: ConfirmContext) -> None:
        for callback in self._after_register:
            callback(ctx)

    def fire_before_auth(self, ctx: ConfirmContext) -> None:
        self._run_gates(self._before_auth, ctx, "before_auth")

    def fire_after_load_account(self, ctx: ConfirmContext) -> None:
        self._run_gates(self._after_load_account, ctx, "after_load_account")

    def _run_gates(
        self,
        callbacks: list[Callable[[ConfirmContext], Interrupt]],
        ctx: ConfirmContext,
        checkpoint: str,
    ) -> None:
        for callback in callbacks:
            interrupt = callback(ctx)
            if interrupt is Interrupt.none:
                continue
            metrics.INTERRUPTS.labels(checkpoint=checkpoint).inc()
            logger.info(
                "%s interrupted for account %s: %s",
                checkpoint,
                ctx.account.account_id if ctx.account else None,
                interrupt.value,
            )
            raise AccountNotConfirmedInterrupt(self._not_confirmed_path)
