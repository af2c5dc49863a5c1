"""
Notification Service.

Fire-and-forget SMS dispatch. Notifications are scheduled as asyncio tasks
strictly after the triggering write committed; a failure is logged and
captured in the dead letter queue and never reaches the caller.
"""

import asyncio
import logging
from typing import Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from skymap.app.core.exceptions import DownstreamNotificationFailure
from skymap.app.core.reliability import CircuitBreaker, CircuitOpenError, sms_circuit_breaker
from skymap.app.db.session import AsyncSessionLocal, unit_of_work
from skymap.app.models.dlq import DeadLetterQueue, DLQStatus
from skymap.app.services.sms_gateway import SmsGateway, SmsResult

logger = logging.getLogger("skymap.notifications")


class NotificationTemplates:
    """SMS texts."""

    @staticmethod
    def rider_self_assigned(delivery_id: int) -> str:
        return (
            f"A rider has created and self-assigned delivery {delivery_id}. "
            f"Status: Pending confirmation. Please confirm in Staff Dashboard."
        )

    @staticmethod
    def rider_assigned(delivery_id: int) -> str:
        return (
            f"You have been assigned a new delivery (ID: {delivery_id}). "
            f"Please check your dashboard app for details."
        )


class NotificationDispatcher:
    """
    Schedules SMS sends in the background.

    Usage:
        notifier.dispatch_sms(rider.phone, NotificationTemplates.rider_assigned(delivery.id),
                              task_name="rider_assigned")
        ...
        await notifier.drain()  # on shutdown / in tests
    """

    def __init__(
        self,
        gateway: SmsGateway,
        session_factory=AsyncSessionLocal,
        breaker: CircuitBreaker = sms_circuit_breaker
    ):
        self.gateway = gateway
        self.session_factory = session_factory
        self.breaker = breaker
        self._tasks: Set[asyncio.Task] = set()

    def dispatch_sms(self, phone: Optional[str], text: str, task_name: str = "sms") -> Optional[asyncio.Task]:
        """
        Schedule an SMS. Returns the task, or None when there is no recipient.
        """
        if not phone:
            logger.info("Skipping %s notification: no recipient phone", task_name)
            return None

        task = asyncio.create_task(self._deliver(task_name, phone, text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self):
        """Wait for every in-flight notification."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _send(self, phone: str, text: str) -> SmsResult:
        result = await self.gateway.send(phone, text)
        if not result.success:
            raise DownstreamNotificationFailure(phone, result.error or "unknown error")
        return result

    async def _deliver(self, task_name: str, phone: str, text: str):
        try:
            result = await self.breaker.call(self._send, phone, text)
        except (DownstreamNotificationFailure, CircuitOpenError) as exc:
            logger.warning("Notification %s failed: %s", task_name, exc)
            await self._dead_letter(task_name, phone, text, str(exc))
            return
        except Exception as exc:
            logger.exception("Notification %s crashed", task_name)
            await self._dead_letter(task_name, phone, text, f"{type(exc).__name__}: {exc}")
            return

        logger.info("Notification %s delivered (message_id=%s)", task_name, result.message_id)

    async def _dead_letter(self, task_name: str, phone: str, text: str, error: str):
        try:
            async with self.session_factory() as db:
                async with unit_of_work(db):
                    db.add(DeadLetterQueue(
                        task_name=task_name,
                        error_message=error,
                        payload={"phone": phone, "message": text},
                        status=DLQStatus.FAILED
                    ))
        except SQLAlchemyError:
            logger.exception("Could not record failed notification %s in the dead letter queue", task_name)


notification_dispatcher = NotificationDispatcher(SmsGateway())


def get_notifier() -> NotificationDispatcher:
    """FastAPI dependency for the process-wide notification dispatcher."""
    return notification_dispatcher
