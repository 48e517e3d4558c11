import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from entitlement_client.database import EntitlementRecordRow, SessionLocal, ValidationAttemptRow
from entitlement_client.models import EntitlementRecord, ValidationAttempt

logger = logging.getLogger(__name__)

_RECORD_FIELDS = (
    "verified",
    "error_message",
    "provider",
    "origin",
    "endpoint",
    "seller_site",
    "licensed_item_meta",
    "last_checked_at",
)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EntitlementStore:
    """
    Persists one entitlement record per product.

    Writers must hold ``lock(product_id)`` while they read, decide and
    save, so that concurrent attempts for a product are serialized.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def lock(self, product_id: str) -> threading.RLock:
        with self._locks_guard:
            if product_id not in self._locks:
                self._locks[product_id] = threading.RLock()
            return self._locks[product_id]

    def get(self, product_id: str) -> Optional[EntitlementRecord]:
        with self._session_factory() as db:
            row = db.get(EntitlementRecordRow, product_id)
            if row is None:
                return None
            return self._to_record(row)

    def save(self, record: EntitlementRecord) -> EntitlementRecord:
        with self._session_factory() as db:
            row = db.get(EntitlementRecordRow, record.product_id)
            if row is None:
                row = EntitlementRecordRow(product_id=record.product_id)
                db.add(row)
            for field in _RECORD_FIELDS:
                setattr(row, field, getattr(record, field))
            db.commit()
        logger.debug("Saved entitlement record for %s (verified=%s)", record.product_id, record.verified)
        return record

    def log_attempt(
        self,
        product_id: str,
        provider: str,
        result: str,
        error_message: Optional[str] = None,
    ) -> None:
        with self._session_factory() as db:
            db.add(
                ValidationAttemptRow(
                    product_id=product_id,
                    provider=provider,
                    result=result,
                    error_message=error_message,
                )
            )
            db.commit()

    def recent_attempts(self, product_id: str, limit: int = 20) -> List[ValidationAttempt]:
        with self._session_factory() as db:
            rows = (
                db.query(ValidationAttemptRow)
                .filter(ValidationAttemptRow.product_id == product_id)
                .order_by(ValidationAttemptRow.id.desc())
                .limit(limit)
                .all()
            )
            return [
                ValidationAttempt(
                    product_id=row.product_id,
                    provider=row.provider,
                    result=row.result,
                    error_message=row.error_message,
                    attempted_at=_as_utc(row.attempted_at),
                )
                for row in rows
            ]

    @staticmethod
    def _to_record(row: EntitlementRecordRow) -> EntitlementRecord:
        return EntitlementRecord(
            product_id=row.product_id,
            verified=bool(row.verified),
            error_message=row.error_message or "",
            provider=row.provider,
            origin=row.origin or "",
            endpoint=row.endpoint or "",
            seller_site=row.seller_site or "",
            licensed_item_meta=row.licensed_item_meta,
            last_checked_at=_as_utc(row.last_checked_at),
        )
