import logging
from typing import List, Optional, Protocol

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from errors import CollaboratorFailure

logger = logging.getLogger("nightlife.store")


class TicketStore(Protocol):
    async def get(self, ticket_id: str) -> Optional[models.Ticket]:
        ...

    async def save(self, ticket: models.Ticket, payment: Optional[models.Payment] = None) -> models.Ticket:
        ...

    async def update(self, ticket_id: str, **fields) -> Optional[models.Ticket]:
        ...

    async def transition(
        self,
        ticket_id: str,
        expected_status: str,
        fields: dict,
        validation: Optional[models.TicketValidation] = None,
    ) -> bool:
        ...

    async def append_validation(self, validation: models.TicketValidation) -> models.TicketValidation:
        ...


class SqlTicketStore:
    """Ticket store over a SQLAlchemy session.

    The session is synchronous, so every unit of work runs in the threadpool
    and never blocks the event loop. Status changes are conditional writes
    (``WHERE status = expected``) so two scanners racing on the same ticket
    cannot both win.
    """

    def __init__(self, db: Session):
        self.db = db

    def _guarded(self, fn, action: str):
        try:
            return fn()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise CollaboratorFailure(f"Ticket store {action} failed") from exc

    async def _read(self, fn):
        return await run_in_threadpool(self._guarded, fn, "read")

    async def _write(self, fn):
        return await run_in_threadpool(self._guarded, fn, "write")

    async def get(self, ticket_id: str) -> Optional[models.Ticket]:
        return await self._read(
            lambda: self.db.query(models.Ticket).filter(models.Ticket.id == ticket_id).first()
        )

    async def get_by_code(self, ticket_code: str) -> Optional[models.Ticket]:
        return await self._read(
            lambda: self.db.query(models.Ticket).filter(models.Ticket.ticket_code == ticket_code).first()
        )

    async def save(self, ticket: models.Ticket, payment: Optional[models.Payment] = None) -> models.Ticket:
        def work():
            self.db.add(ticket)
            if payment is not None:
                self.db.add(payment)
            self.db.commit()
            self.db.refresh(ticket)
            return ticket

        return await self._write(work)

    async def update(self, ticket_id: str, **fields) -> Optional[models.Ticket]:
        def work():
            ticket = self.db.query(models.Ticket).filter(models.Ticket.id == ticket_id).first()
            if ticket is None:
                return None
            for field, value in fields.items():
                setattr(ticket, field, value)
            self.db.commit()
            self.db.refresh(ticket)
            return ticket

        return await self._write(work)

    async def transition(
        self,
        ticket_id: str,
        expected_status: str,
        fields: dict,
        validation: Optional[models.TicketValidation] = None,
    ) -> bool:
        def work():
            updated = (
                self.db.query(models.Ticket)
                .filter(models.Ticket.id == ticket_id, models.Ticket.status == expected_status)
                .update(fields, synchronize_session=False)
            )
            if updated != 1:
                self.db.rollback()
                logger.warning("Ticket %s was no longer %s when updating", ticket_id, expected_status)
                return False
            if validation is not None:
                self.db.add(validation)
            self.db.commit()
            return True

        return await self._write(work)

    async def append_validation(self, validation: models.TicketValidation) -> models.TicketValidation:
        def work():
            self.db.add(validation)
            self.db.commit()
            return validation

        return await self._write(work)

    async def list_for_event(self, event_id: str, status: Optional[str] = None) -> List[models.Ticket]:
        def work():
            query = self.db.query(models.Ticket).filter(models.Ticket.event_id == event_id)
            if status:
                query = query.filter(models.Ticket.status == status)
            return query.order_by(models.Ticket.purchase_date.desc()).all()

        return await self._read(work)

    async def list_for_buyer(self, buyer_id: str) -> List[models.Ticket]:
        return await self._read(
            lambda: self.db.query(models.Ticket)
            .filter(models.Ticket.buyer_id == buyer_id)
            .order_by(models.Ticket.purchase_date.desc())
            .all()
        )

    async def payment_for(self, ticket_id: str) -> Optional[models.Payment]:
        return await self._read(
            lambda: self.db.query(models.Payment)
            .filter(models.Payment.ticket_id == ticket_id)
            .order_by(models.Payment.created_at.desc())
            .first()
        )

    async def save_payment(self, payment: models.Payment) -> models.Payment:
        def work():
            self.db.add(payment)
            self.db.commit()
            self.db.refresh(payment)
            return payment

        return await self._write(work)
