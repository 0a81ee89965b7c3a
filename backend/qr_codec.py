import base64
import binascii
import json
import time

from pydantic import ValidationError

from errors import MalformedPayload
from schemas import QR_PAYLOAD_VERSION, SignedQRData

DEFAULT_MAX_AGE_MS = 48 * 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


class QRCodec:
    """base64(JSON) transport string exchanged between issuance and scanners."""

    def __init__(self, supported_version: str = QR_PAYLOAD_VERSION, max_age_ms: int = DEFAULT_MAX_AGE_MS):
        self.supported_version = supported_version
        self.max_age_ms = max_age_ms

    def encode(self, signed: SignedQRData) -> str:
        raw = json.dumps(signed.model_dump(by_alias=True, mode="json"), separators=(",", ":"), ensure_ascii=False)
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def decode(self, encoded: str) -> SignedQRData:
        if not isinstance(encoded, str) or not encoded.strip():
            raise MalformedPayload()
        try:
            raw = base64.b64decode(encoded.strip(), validate=True)
            data = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise MalformedPayload() from exc
        if not isinstance(data, dict):
            raise MalformedPayload()
        try:
            return SignedQRData.model_validate(data)
        except ValidationError as exc:
            raise MalformedPayload() from exc

    def check_version(self, data: SignedQRData) -> bool:
        return data.version == self.supported_version

    def check_expiry(self, data: SignedQRData, max_age_ms: int | None = None, now: int | None = None) -> bool:
        max_age_ms = self.max_age_ms if max_age_ms is None else max_age_ms
        now = now_ms() if now is None else now
        return now - data.timestamp <= max_age_ms
