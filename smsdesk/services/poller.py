"""
Фоновий poller: раз на POLL_INTERVAL_SECONDS звіряє всі незавершені
замовлення з провайдером. Тік ніколи не перекривається з попереднім, а
помилка одного замовлення не зупиняє інші.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, asdict
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from smsdesk.core.config import config
from smsdesk.core.database import async_session
from smsdesk.core.errors import DomainError
from smsdesk.models import Activation, ActivationStatus, ReferenceType, Rental, RentalStatus
from smsdesk.services.lifecycle import OrderLifecycle

logger = logging.getLogger("[RECONCILE]")


ACTIVE_ACTIVATION_STATUSES = (ActivationStatus.WAIT_SMS, ActivationStatus.WAIT_RETRY, ActivationStatus.RECEIVED)


@dataclass
class TickReport:
    checked: int = 0
    updated: int = 0
    expired: int = 0
    failed: int = 0
    skipped: bool = False
    duration: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


class ReconciliationPoller:
    def __init__(
        self,
        lifecycle: OrderLifecycle,
        session_factory: async_sessionmaker = async_session,
        request_delay: Optional[float] = None,
    ):
        self.lifecycle = lifecycle
        self.session_factory = session_factory
        self.request_delay = config.POLL_REQUEST_DELAY_SECONDS if request_delay is None else request_delay
        self._running = asyncio.Lock()
        self.last_report: Optional[TickReport] = None

    async def _pending_orders(self) -> list[tuple[ReferenceType, int]]:
        async with self.session_factory() as session:
            activation_ids = (await session.scalars(
                select(Activation.id)
                .where(Activation.status.in_(ACTIVE_ACTIVATION_STATUSES))
                .order_by(Activation.id)
            )).all()
            rental_ids = (await session.scalars(
                select(Rental.id)
                .where(Rental.status == RentalStatus.ACTIVE)
                .order_by(Rental.id)
            )).all()

        return (
            [(ReferenceType.ACTIVATION, i) for i in activation_ids]
            + [(ReferenceType.RENTAL, i) for i in rental_ids]
        )

    async def _pause(self) -> None:
        if self.request_delay:
            await asyncio.sleep(self.request_delay)

    async def run_tick(self) -> TickReport:
        # single-flight: другий тік, поки перший ще йде, лише звітує про пропуск
        if self._running.locked():
            logger.warning("Reconciliation tick skipped: previous tick still running")
            return TickReport(skipped=True)

        async with self._running:
            started = time.monotonic()
            report = TickReport()

            for kind, order_id in await self._pending_orders():
                report.checked += 1
                refreshed = None
                try:
                    refreshed = await self.lifecycle.refresh(kind, order_id)
                except DomainError as exc:
                    report.failed += 1
                    logger.warning(f"Reconciliation of {kind.value} {order_id} failed: {exc.message}")
                except Exception:
                    report.failed += 1
                    logger.exception(f"Unexpected error while reconciling {kind.value} {order_id}")
                else:
                    if refreshed.expired:
                        report.expired += 1
                    elif refreshed.result is not None and refreshed.result.changed:
                        report.updated += 1

                # після помилки провайдер теж міг бути викликаний
                if refreshed is None or refreshed.provider_called:
                    await self._pause()

            report.duration = round(time.monotonic() - started, 3)
            self.last_report = report

        logger.info(f"Reconciliation tick: {report.as_dict()}")
        return report
