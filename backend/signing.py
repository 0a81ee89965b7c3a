import hashlib
import hmac
import json
import secrets

from pydantic import ValidationError

from errors import MalformedPayload
from schemas import TicketPayload

PAYLOAD_FIELDS = frozenset(TicketPayload.model_fields)


def canonical_json(payload: TicketPayload) -> str:
    """Sorted keys, no whitespace, camelCase names, signature excluded."""
    data = payload.model_dump(by_alias=True, mode="json", include=set(PAYLOAD_FIELDS))
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def coerce_payload(payload) -> TicketPayload:
    if isinstance(payload, TicketPayload):
        return payload
    try:
        return TicketPayload.model_validate(payload)
    except ValidationError as exc:
        raise MalformedPayload() from exc


class TicketSigner:
    """HMAC-SHA256 signer shared by ticket issuance and validation.

    The key is a server-side secret. It is never shipped to scanning devices.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("signing secret must not be empty")
        self._secret = secret.encode("utf-8")

    def sign(self, payload) -> str:
        message = canonical_json(coerce_payload(payload)).encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify(self, payload, signature) -> bool:
        expected = self.sign(payload)
        if not isinstance(signature, str):
            return False
        return secrets.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
