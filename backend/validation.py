"""Door validation pipeline.

Every scan runs the same linear sequence and stops at the first failure:

1. decode the QR string
2. check the payload version
3. verify the signature
4. check the replay window
5. load the ticket
6. require ``active`` status
7. compare the captured biometric with the one taken at purchase
8. mark the ticket used and record the granted attempt

Steps 1-4 never touch the store, so forged or stale codes are rejected
without reading a ticket. Failures are returned as a ``ValidationResult``;
nothing raises past ``TicketValidator.validate``.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

import models
import schemas
from biometric import BiometricVerifier
from errors import (
    BiometricMismatch,
    CollaboratorFailure,
    Expired,
    InvalidTransition,
    NotFound,
    SignatureInvalid,
    TicketingError,
    VersionMismatch,
)
from lifecycle import TicketStatus, ensure_transition, transition_fields
from qr_codec import QRCodec, now_ms
from signing import TicketSigner
from store import TicketStore

logger = logging.getLogger("nightlife.validation")


class TicketValidator:
    def __init__(
        self,
        signer: TicketSigner,
        codec: QRCodec,
        store: TicketStore,
        biometric: BiometricVerifier,
        clock: Callable[[], int] = now_ms,
    ):
        self.signer = signer
        self.codec = codec
        self.store = store
        self.biometric = biometric
        self.clock = clock

    async def validate(
        self,
        qr_string: str,
        captured_biometric: str,
        validator_id: str,
        location: Optional[str] = None,
    ) -> schemas.ValidationResult:
        try:
            return await self._validate(qr_string, captured_biometric, validator_id, location)
        except CollaboratorFailure as exc:
            logger.error("Collaborator failed during validation: %s", exc, exc_info=exc.__cause__ or exc)
            return self._failure(CollaboratorFailure())
        except TicketingError as exc:
            logger.info("Ticket validation denied (%s): %s", exc.code, exc.reason)
            return self._failure(exc)
        except Exception:
            logger.exception("Unexpected error during ticket validation")
            return self._failure(CollaboratorFailure())

    def decode_verified(self, qr_string: str) -> schemas.SignedQRData:
        """Steps 1-4: everything that can be checked without the store."""
        data = self.codec.decode(qr_string)
        if not self.codec.check_version(data):
            raise VersionMismatch()
        if not self.signer.verify(data.payload(), data.signature):
            raise SignatureInvalid()
        if not self.codec.check_expiry(data, now=self.clock()):
            raise Expired()
        return data

    async def _validate(self, qr_string, captured_biometric, validator_id, location):
        data = self.decode_verified(qr_string)

        ticket = await self.store.get(data.ticket_id)
        if ticket is None:
            raise NotFound()
        try:
            ensure_transition(ticket.status, TicketStatus.USED)
        except InvalidTransition as exc:
            logger.info("Entry denied for ticket %s: %s", ticket.id, exc.reason)
            return self._failure(exc, ticket)

        matched = await self._compare(ticket.biometric_hash, captured_biometric)
        if not matched:
            denial = BiometricMismatch()
            await self.store.append_validation(
                self._record(ticket, validator_id, location, matched=False, granted=False, reason=denial.reason)
            )
            logger.info("Entry denied for ticket %s: %s", data.ticket_id, denial.reason)
            ticket = await self.store.get(data.ticket_id)
            return self._failure(denial, ticket)

        now = datetime.now(timezone.utc)
        granted = self._record(ticket, validator_id, location, matched=True, granted=True, at=now)
        fields = transition_fields(TicketStatus.USED, at=now, actor=validator_id)
        if not await self.store.transition(data.ticket_id, TicketStatus.ACTIVE.value, fields, validation=granted):
            # another scanner got there first
            current = await self.store.get(data.ticket_id)
            raise InvalidTransition(current.status if current else "unknown", TicketStatus.USED.value)

        ticket = await self.store.get(data.ticket_id)
        logger.info("Entry granted for ticket %s (%s) by %s", data.ticket_id, ticket.buyer_name, validator_id)
        return schemas.ValidationResult(success=True, ticket=schemas.Ticket.model_validate(ticket))

    async def _compare(self, stored_hash, captured) -> bool:
        try:
            return bool(await self.biometric.compare(stored_hash, captured))
        except Exception as exc:
            raise CollaboratorFailure("Biometric comparison failed") from exc

    @staticmethod
    def _record(ticket, validator_id, location, matched, granted, reason=None, at=None):
        return models.TicketValidation(
            id=str(uuid.uuid4()),
            ticket_id=ticket.id,
            event_id=ticket.event_id,
            validated_at=at or datetime.now(timezone.utc),
            validated_by=validator_id,
            biometric_match=matched,
            entry_granted=granted,
            location=location,
            reason=reason,
        )

    @staticmethod
    def _failure(error: TicketingError, ticket=None) -> schemas.ValidationResult:
        return schemas.ValidationResult(
            success=False,
            reason=error.reason,
            error=error.code,
            ticket=schemas.Ticket.model_validate(ticket) if ticket is not None else None,
        )
