"""Storage of issued one-time pins.

Records are addressed two ways: by their operation id (primary key) and
by the composite key ``(module_name, action_type, source_entity_id)``.
The composite key is not unique; lookups return the newest record.

Only the delivery fields listed in ``MUTABLE_FIELDS`` can change after a
record is saved. ``update`` is a serialized read-modify-write per
operation id, and every store hands out copies so callers never touch
stored state directly.
"""
from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError

from otpcore.database import session_scope
from otpcore.models.db_operation import (
    _add_record,
    _select_latest,
    _select_one_or_none,
)
from otpcore.schemas.errors import DuplicateKeyError, OtpNotFoundError
from otpcore.schemas.otp import OtpChannel, OtpRecord, OtpSendStatus

MUTABLE_FIELDS = ("sent_on", "send_status", "error_message", "expires_on")

Mutation = Callable[[OtpRecord], None]


class OtpStorage:
    def save(self, record: OtpRecord) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def get_by_operation_id(self, operation_id: str) -> Optional[OtpRecord]:  # pragma: no cover - interface
        raise NotImplementedError

    def get_by_composite_key(
        self,
        module_name: Optional[str],
        action_type: Optional[str],
        source_entity_id: Optional[str],
    ) -> Optional[OtpRecord]:  # pragma: no cover - interface
        raise NotImplementedError

    def update(self, operation_id: str, mutate: Mutation) -> OtpRecord:  # pragma: no cover - interface
        raise NotImplementedError


class InMemoryOtpStore(OtpStorage):
    def __init__(self) -> None:
        self._records: dict[str, OtpRecord] = {}
        self._composite_index: dict[tuple, str] = {}
        self._lock = threading.RLock()

    def save(self, record: OtpRecord) -> None:
        with self._lock:
            if record.operation_id in self._records:
                raise DuplicateKeyError(f"OTP {record.operation_id} already exists")
            self._records[record.operation_id] = replace(record)
            if record.module_name and record.action_type:
                self._composite_index[record.composite_key()] = record.operation_id

    def get_by_operation_id(self, operation_id: str) -> Optional[OtpRecord]:
        with self._lock:
            record = self._records.get(operation_id)
            return replace(record) if record else None

    def get_by_composite_key(self, module_name, action_type, source_entity_id):
        if not module_name or not action_type:
            return None
        with self._lock:
            operation_id = self._composite_index.get(
                (module_name, action_type, source_entity_id)
            )
            if operation_id is None:
                return None
            return replace(self._records[operation_id])

    def update(self, operation_id: str, mutate: Mutation) -> OtpRecord:
        with self._lock:
            current = self._records.get(operation_id)
            if current is None:
                raise OtpNotFoundError(f"OTP {operation_id} not found")
            draft = replace(current)
            mutate(draft)
            updated = replace(
                current, **{name: getattr(draft, name) for name in MUTABLE_FIELDS}
            )
            self._records[operation_id] = updated
            return replace(updated)


class SqlOtpStore(OtpStorage):
    def __init__(self, session_factory=None, lock_stripes: int = 64) -> None:
        self._session_factory = session_factory
        self._locks = [threading.Lock() for _ in range(lock_stripes)]

    def save(self, record: OtpRecord) -> None:
        try:
            with session_scope(self._session_factory) as session:
                _add_record(session, "otp", **_to_columns(record))
        except IntegrityError as exc:
            if self.get_by_operation_id(record.operation_id) is None:
                raise
            raise DuplicateKeyError(f"OTP {record.operation_id} already exists") from exc

    def get_by_operation_id(self, operation_id: str) -> Optional[OtpRecord]:
        with session_scope(self._session_factory) as session:
            entry = _select_one_or_none(session, "otp", operation_id=operation_id)
            return _to_record(entry) if entry is not None else None

    def get_by_composite_key(self, module_name, action_type, source_entity_id):
        if not module_name or not action_type:
            return None
        with session_scope(self._session_factory) as session:
            entry = _select_latest(
                session,
                "otp",
                module_name=module_name,
                action_type=action_type,
                source_entity_id=source_entity_id,
            )
            return _to_record(entry) if entry is not None else None

    def update(self, operation_id: str, mutate: Mutation) -> OtpRecord:
        # The row lock covers other processes; it is a no-op on SQLite.
        with self._lock_for(operation_id):
            with session_scope(self._session_factory) as session:
                entry = _select_one_or_none(
                    session, "otp", for_update=True, operation_id=operation_id
                )
                if entry is None:
                    raise OtpNotFoundError(f"OTP {operation_id} not found")
                draft = _to_record(entry)
                mutate(draft)
                columns = _to_columns(draft)
                for name in MUTABLE_FIELDS:
                    setattr(entry, name, columns[name])
                session.flush()
                return _to_record(entry)

    def _lock_for(self, operation_id: str) -> threading.Lock:
        return self._locks[hash(operation_id) % len(self._locks)]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        # SQLite drops the offset; everything is stored in UTC.
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_columns(record: OtpRecord) -> dict:
    return {
        "operation_id": record.operation_id,
        "pin": record.pin,
        "send_to": record.send_to,
        "send_type": OtpChannel(record.send_type).value,
        "module_name": record.module_name,
        "action_type": record.action_type,
        "source_entity_id": record.source_entity_id,
        "recipient_id": record.recipient_id,
        "recipient_type": record.recipient_type,
        "sent_on": record.sent_on,
        "expires_on": record.expires_on,
        "send_status": OtpSendStatus(record.send_status).value,
        "error_message": record.error_message,
        "created_on": record.created_on,
    }


def _to_record(entry) -> OtpRecord:
    return OtpRecord(
        operation_id=entry.operation_id,
        pin=entry.pin,
        send_to=entry.send_to,
        send_type=OtpChannel(entry.send_type),
        module_name=entry.module_name,
        action_type=entry.action_type,
        source_entity_id=entry.source_entity_id,
        recipient_id=entry.recipient_id,
        recipient_type=entry.recipient_type,
        sent_on=_as_utc(entry.sent_on),
        expires_on=_as_utc(entry.expires_on),
        send_status=OtpSendStatus(entry.send_status),
        error_message=entry.error_message,
        created_on=_as_utc(entry.created_on),
    )
