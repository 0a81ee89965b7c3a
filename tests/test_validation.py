import base64
import json

from qr_codec import DEFAULT_MAX_AGE_MS
from schemas import SignedQRData
from signing import TicketSigner
from validation import TicketValidator

from conftest import NOW_MS, STORED_BIOMETRIC, run


def resign(codec, qr_code, signer, **changes):
    payload = codec.decode(qr_code).payload().model_copy(update=changes)
    return codec.encode(SignedQRData(**payload.model_dump(), signature=signer.sign(payload)))


def validate(validator, qr_code, captured="captured-face", validator_id="door-1", location="Main entrance"):
    return run(validator.validate(qr_code, captured, validator_id, location))


class TestGrantedEntry:
    def test_valid_ticket_is_used_and_logged(self, validator, store, ticket, biometric):
        result = validate(validator, ticket.qr_code)

        assert result.success is True
        assert result.reason is None
        assert result.ticket.status == "used"
        assert result.ticket.buyer_name == "Amina"
        assert result.ticket.validated_by == "door-1"
        assert biometric.compared == [(STORED_BIOMETRIC, "captured-face")]

        stored = run(store.get(ticket.id))
        assert stored.status == "used"
        assert len(stored.validation_history) == 1
        record = stored.validation_history[0]
        assert record.entry_granted is True
        assert record.biometric_match is True
        assert record.validated_by == "door-1"
        assert record.location == "Main entrance"

    def test_second_scan_reports_used(self, validator, store, ticket):
        validate(validator, ticket.qr_code)
        again = validate(validator, ticket.qr_code, validator_id="door-2")

        assert again.success is False
        assert again.error == "invalid_transition"
        assert again.reason == "Ticket is used"
        assert again.ticket.id == ticket.id
        assert len(run(store.get(ticket.id)).validation_history) == 1


class TestRejectedBeforeLookup:
    def test_other_secret_is_forgery(self, validator, codec, store, ticket, biometric):
        forged = resign(codec, ticket.qr_code, TicketSigner("not-the-server-secret"))
        result = validate(validator, forged)

        assert result.success is False
        assert result.error == "signature_invalid"
        assert result.reason == "Invalid QR code signature - ticket may be forged"
        assert result.ticket is None
        assert biometric.compared == []
        stored = run(store.get(ticket.id))
        assert stored.status == "active"
        assert stored.validation_history == []

    def test_tampered_field_is_forgery(self, validator, codec, ticket):
        data = codec.decode(ticket.qr_code)
        tampered = codec.encode(data.model_copy(update={"quantity": 10}))
        assert validate(validator, tampered).error == "signature_invalid"

    def test_garbage_is_invalid_format(self, validator):
        result = validate(validator, "definitely not a ticket")
        assert result.success is False
        assert result.error == "malformed_payload"
        assert result.reason == "Invalid QR code format"

    def test_old_version_is_incompatible(self, validator, codec, signer, ticket):
        result = validate(validator, resign(codec, ticket.qr_code, signer, version="1.0"))
        assert result.error == "version_mismatch"
        assert result.reason == "Incompatible QR code version"

    def test_stale_code_is_expired(self, signer, codec, store, biometric, ticket):
        late = TicketValidator(signer, codec, store, biometric, clock=lambda: NOW_MS + DEFAULT_MAX_AGE_MS + 1)
        result = validate(late, ticket.qr_code)
        assert result.error == "expired"
        assert result.reason == "QR code has expired"
        assert run(store.get(ticket.id)).status == "active"

    def test_unknown_ticket(self, validator, codec, signer, ticket):
        result = validate(validator, resign(codec, ticket.qr_code, signer, ticket_id="missing"))
        assert result.error == "not_found"
        assert result.reason == "Ticket not found"


class TestDeniedAttempts:
    def test_biometric_mismatch_is_recorded_without_state_change(self, validator, store, ticket, biometric):
        biometric.match = False
        first = validate(validator, ticket.qr_code)
        second = validate(validator, ticket.qr_code)

        for result in (first, second):
            assert result.success is False
            assert result.error == "biometric_mismatch"
            assert result.reason == "Biometric verification failed"
            assert result.ticket.status == "active"

        stored = run(store.get(ticket.id))
        assert stored.status == "active"
        assert [v.entry_granted for v in stored.validation_history] == [False, False]
        assert all(v.biometric_match is False for v in stored.validation_history)

        biometric.match = True
        granted = validate(validator, ticket.qr_code)
        assert granted.success is True
        assert [v.entry_granted for v in granted.ticket.validation_history] == [False, False, True]

    def test_cancelled_ticket_is_denied(self, validator, service, ticket):
        run(service.cancel(ticket.id, "Event postponed", actor="owner"))
        result = validate(validator, ticket.qr_code)
        assert result.reason == "Ticket is cancelled"
        assert result.ticket.status == "cancelled"

    def test_collaborator_error_is_hidden(self, validator, store, ticket, biometric):
        biometric.error = RuntimeError("camera offline")
        result = validate(validator, ticket.qr_code)
        assert result.success is False
        assert result.error == "collaborator_failure"
        assert result.reason == "Validation error occurred"
        assert run(store.get(ticket.id)).status == "active"


class TestConcurrentScans:
    def test_only_one_conditional_write_wins(self, store, ticket):
        fields = {"status": "used", "validated_by": "door-1"}
        assert run(store.transition(ticket.id, "active", fields)) is True
        assert run(store.transition(ticket.id, "active", {"status": "used", "validated_by": "door-2"})) is False
        assert run(store.get(ticket.id)).validated_by == "door-1"


class TestStrippedFields:
    def rewrite(self, qr_code, change):
        wire = json.loads(base64.b64decode(qr_code))
        change(wire)
        return base64.b64encode(json.dumps(wire).encode("utf-8")).decode("ascii")

    def test_code_without_version_is_refused(self, validator, store, ticket):
        stripped = self.rewrite(ticket.qr_code, lambda wire: wire.pop("version"))
        result = validate(validator, stripped)

        assert result.success is False
        assert result.error == "malformed_payload"
        assert run(store.get(ticket.id)).status == "active"

    def test_quantity_as_text_is_refused(self, validator, ticket):
        stripped = self.rewrite(ticket.qr_code, lambda wire: wire.update(quantity=str(wire["quantity"])))
        assert validate(validator, stripped).error == "malformed_payload"
