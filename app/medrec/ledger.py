"""
Client for the optional external ledger that independently records
patient-record creation. The ledger is treated as unreliable: callers submit
after the local commit and only log failures.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, ClassVar

logger = logging.getLogger(__name__)


class LedgerError(RuntimeError):
    pass


class LedgerUnavailable(LedgerError):
    pass


@dataclass(frozen=True)
class LedgerClient:
    enabled: ClassVar[bool] = True

    base_url: str
    timeout_seconds: int = 10

    def request_json(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        retries: int = 2,
    ) -> Any:
        url = self.base_url.rstrip("/") + path
        data = json.dumps(body).encode("utf-8") if body is not None else None

        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(url, data=data, method=method)
                req.add_header("Accept", "application/json")
                if data is not None:
                    req.add_header("Content-Type", "application/json")
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                    if not raw:
                        return None
                    try:
                        return json.loads(raw.decode("utf-8"))
                    except ValueError as e:
                        raise LedgerError(f"Invalid JSON from ledger ({path})") from e
            except urllib.error.HTTPError as e:
                if e.code in (429, 502, 503, 504):
                    time.sleep(min(1 * (attempt + 1), 5))
                    last_err = LedgerUnavailable(f"HTTP {e.code}")
                    continue
                try:
                    detail = e.read().decode("utf-8", errors="ignore")
                except Exception:
                    detail = ""
                raise LedgerError(f"HTTP {e.code} from ledger: {detail[:300]}") from e
            except OSError as e:
                last_err = e
                time.sleep(min(1 * (attempt + 1), 5))
                continue
        raise LedgerUnavailable(f"Ledger request failed after retries: {last_err}")

    def submit_record_created(self, record_id: str, owner_id: str) -> dict[str, Any]:
        j = self.request_json(
            "POST",
            "/records",
            body={"record_id": record_id, "owner_id": owner_id, "entry": "Patient record created"},
        )
        return j if isinstance(j, dict) else {}

    def history(self, record_id: str) -> list[dict[str, Any]]:
        j = self.request_json("GET", f"/records/{urllib.parse.quote(record_id, safe='')}/history")
        if isinstance(j, dict):
            j = j.get("history")
        return j if isinstance(j, list) else []


class NullLedger:
    """Used when no LEDGER_URL is configured."""

    enabled = False

    def submit_record_created(self, record_id: str, owner_id: str) -> dict[str, Any]:
        return {}

    def history(self, record_id: str) -> list[dict[str, Any]]:
        return []


def ledger_from_config(config: dict) -> LedgerClient | NullLedger:
    url = (config.get("LEDGER_URL") or "").strip()
    if not url:
        return NullLedger()
    return LedgerClient(base_url=url, timeout_seconds=int(config.get("LEDGER_TIMEOUT_SECONDS") or 10))


def submit_record_created_quietly(ledger: LedgerClient | NullLedger, record_id: str, owner_id: str) -> dict[str, Any] | None:
    """Best-effort submission; the local record is already committed."""
    try:
        receipt = ledger.submit_record_created(record_id, owner_id)
    except LedgerError as e:
        logger.warning("ledger submit failed record_id=%s err=%s", record_id, e)
        return None
    if getattr(ledger, "enabled", False):
        logger.info("ledger submit ok record_id=%s receipt=%s", record_id, receipt)
    return receipt
