import pytest

from errors import MalformedPayload
from schemas import SignedQRData, TicketPayload, TicketType
from signing import TicketSigner, canonical_json

from conftest import NOW_MS, SECRET


def make_payload(**overrides):
    fields = dict(
        ticket_id="t-1",
        event_id="e-1",
        event_name="Friday Night Vibes",
        buyer_id="u-1",
        buyer_name="Amina",
        ticket_type=TicketType.SECURE,
        quantity=2,
        purchase_date="2026-10-18T20:00:00+00:00",
        timestamp=NOW_MS,
        version="2.0",
    )
    fields.update(overrides)
    return TicketPayload(**fields)


class TestCanonicalJson:
    def test_keys_are_sorted_camel_case(self):
        text = canonical_json(make_payload())
        assert text.startswith('{"buyerId":"u-1","buyerName":"Amina","eventId":"e-1"')
        assert " " not in text.replace("Friday Night Vibes", "")

    def test_signature_field_is_excluded(self):
        payload = make_payload()
        signed = SignedQRData(**payload.model_dump(), signature="abc")
        assert canonical_json(signed) == canonical_json(payload)


class TestTicketSigner:
    def test_sign_is_deterministic_hex(self, signer):
        first = signer.sign(make_payload())
        assert first == signer.sign(make_payload())
        assert len(first) == 64
        int(first, 16)

    def test_verify_round_trip(self, signer):
        payload = make_payload()
        assert signer.verify(payload, signer.sign(payload)) is True

    @pytest.mark.parametrize(
        "field,value",
        [
            ("ticket_id", "t-2"),
            ("event_id", "e-2"),
            ("event_name", "Other Night"),
            ("buyer_id", "u-2"),
            ("buyer_name", "Someone Else"),
            ("ticket_type", TicketType.REGULAR),
            ("quantity", 3),
            ("purchase_date", "2026-10-19T20:00:00+00:00"),
            ("timestamp", NOW_MS + 1),
            ("version", "1.0"),
        ],
    )
    def test_single_field_change_breaks_signature(self, signer, field, value):
        payload = make_payload()
        signature = signer.sign(payload)
        assert signer.verify(payload.model_copy(update={field: value}), signature) is False

    def test_other_key_does_not_verify(self):
        payload = make_payload()
        forged = TicketSigner("another-secret").sign(payload)
        assert TicketSigner(SECRET).verify(payload, forged) is False

    def test_garbage_signature_is_false_not_error(self, signer):
        payload = make_payload()
        assert signer.verify(payload, "") is False
        assert signer.verify(payload, "zzé") is False
        assert signer.verify(payload, None) is False

    def test_accepts_wire_dict(self, signer):
        payload = make_payload()
        wire = payload.model_dump(by_alias=True, mode="json")
        assert signer.sign(wire) == signer.sign(payload)

    def test_malformed_payload_raises(self, signer):
        with pytest.raises(MalformedPayload):
            signer.sign({"ticketId": "t-1"})

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TicketSigner("")
