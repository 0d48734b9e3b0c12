"""Mock SMS provider: records outbound messages in memory (optionally appends to a JSON file)."""

import json
from itertools import count
from pathlib import Path
from typing import Optional

from family_events.errors import DeliveryError
from family_events.sms_provider.protocol import SmsSendResult
from family_events.utils.logger import get_logger, mask_address

logger = get_logger("family_events.sms_provider.mock")


class MockSmsProvider:
    def __init__(self, sent_path: Optional[Path] = None, fail: bool = False):
        self.sent: list[dict[str, str]] = []
        self._sent_path = sent_path
        self._ids = count(1)
        self.fail = fail

    def send_sms(self, to: str, body: str) -> SmsSendResult:
        if self.fail:
            raise DeliveryError("Mock SMS provider configured to fail", channel="sms")
        sid = f"SM{next(self._ids):032d}"
        self.sent.append({"sid": sid, "to": to, "body": body})
        if self._sent_path is not None:
            self._sent_path.parent.mkdir(parents=True, exist_ok=True)
            self._sent_path.write_text(json.dumps(self.sent, indent=2), encoding="utf-8")
        logger.info("sms_mock.sent", to=mask_address(to), sid=sid)
        return SmsSendResult(sid=sid, status="queued", to=to)

    def messages_to(self, to: str) -> list[str]:
        return [m["body"] for m in self.sent if m["to"] == to]
