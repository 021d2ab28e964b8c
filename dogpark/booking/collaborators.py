"""Interfaces to external collaborators and their SQLite-backed defaults."""

from __future__ import annotations

import concurrent.futures
import datetime as dt
import json
import logging
import sqlite3
import threading
from typing import Any, Callable, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_executor = concurrent.futures.ThreadPoolExecutor(max_workers=8, thread_name_prefix="collaborator")


class CollaboratorTimeout(RuntimeError):
    """Raised when an external call does not answer in time."""


def call_with_timeout(func: Callable[..., T], *args: Any, timeout: float, **kwargs: Any) -> T:
    """Run ``func`` on a worker thread and wait at most ``timeout`` seconds.

    Exceptions raised by ``func`` propagate unchanged.
    """

    future = _executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except concurrent.futures.TimeoutError as exc:
        future.cancel()
        raise CollaboratorTimeout(
            f"{getattr(func, '__qualname__', func)!s} did not answer within {timeout}s"
        ) from exc


def authorize_payment(
    gateway: "PaymentGateway",
    amount: int,
    metadata: dict[str, Any],
    *,
    timeout: float,
) -> bool:
    """Authorize through ``gateway`` with a deadline.

    An authorization that answers after the deadline has passed is voided
    as soon as it approves.
    """

    future = _executor.submit(gateway.authorize, amount, metadata)
    try:
        return future.result(timeout=timeout)
    except concurrent.futures.TimeoutError as exc:
        if not future.cancel():
            future.add_done_callback(lambda done: _void_late_approval(gateway, metadata, done))
        raise CollaboratorTimeout(f"Payment authorization did not answer within {timeout}s") from exc


def _void_late_approval(
    gateway: "PaymentGateway", metadata: dict[str, Any], future: concurrent.futures.Future
) -> None:
    if future.cancelled() or future.exception() is not None or not future.result():
        return
    logger.warning("Voiding payment for hold %s approved after timeout", metadata.get("hold_token"))
    void_payment(gateway, metadata)


def void_payment(gateway: "PaymentGateway", metadata: dict[str, Any]) -> None:
    """Void an authorization; failures are logged for manual follow-up."""

    try:
        gateway.void(metadata)
    except Exception:
        logger.error("Failed to void payment for hold %s", metadata.get("hold_token"), exc_info=True)


class PrerequisiteCheck(Protocol):
    def is_approved(self, entity_id: str) -> bool: ...


class SubscriptionDirectory(Protocol):
    def is_active_subscriber(self, account_id: str) -> tuple[bool, dt.datetime | None]: ...


class PaymentGateway(Protocol):
    def authorize(self, amount: int, metadata: dict[str, Any]) -> bool: ...

    def void(self, metadata: dict[str, Any]) -> None: ...


class Notifier(Protocol):
    def notify(self, account_id: str, message: str) -> None: ...


class VaccineApprovalCheck:
    """A dog passes when it has an approved, unexpired vaccine certificate."""

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], dt.datetime] = dt.datetime.now) -> None:
        self.conn = conn
        self.clock = clock

    def is_approved(self, entity_id: str) -> bool:
        row = self.conn.execute(
            """
            SELECT MAX(expiry_date) AS expiry
            FROM vaccine_certifications
            WHERE dog_id = ? AND status = 'approved'
            """,
            (entity_id,),
        ).fetchone()
        if not row or not row["expiry"]:
            return False
        return dt.date.fromisoformat(row["expiry"]) >= self.clock().date()


class SubscriptionTable:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def is_active_subscriber(self, account_id: str) -> tuple[bool, dt.datetime | None]:
        row = self.conn.execute(
            "SELECT active, expires_at FROM subscriptions WHERE account_id = ?",
            (account_id,),
        ).fetchone()
        if not row:
            return False, None
        expires = dt.datetime.fromisoformat(row["expires_at"]) if row["expires_at"] else None
        return bool(row["active"]), expires


class PaymentLedger:
    """Records authorizations in the ``payments`` table and approves them.

    Stands in for the checkout provider when none is configured.
    """

    def __init__(self, conn: sqlite3.Connection, lock: threading.RLock | None = None) -> None:
        self.conn = conn
        self.lock = lock or threading.RLock()

    def authorize(self, amount: int, metadata: dict[str, Any]) -> bool:
        if amount < 0:
            return False
        with self.lock:
            self.conn.execute(
                """
                INSERT INTO payments(hold_token, amount, method, status, metadata)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    metadata.get("hold_token"),
                    amount,
                    metadata.get("method", "card"),
                    "authorized",
                    json.dumps(metadata),
                ),
            )
        return True

    def void(self, metadata: dict[str, Any]) -> None:
        with self.lock:
            self.conn.execute(
                "UPDATE payments SET status = 'voided' WHERE hold_token = ? AND status = 'authorized'",
                (metadata.get("hold_token"),),
            )


class NotificationOutbox:
    def __init__(self, conn: sqlite3.Connection, lock: threading.RLock | None = None) -> None:
        self.conn = conn
        self.lock = lock or threading.RLock()

    def notify(self, account_id: str, message: str) -> None:
        with self.lock:
            self.conn.execute(
                "INSERT INTO notifications(account_id, content, status) VALUES (?, ?, 'queued')",
                (account_id, message),
            )


def subscriber_active(
    directory: SubscriptionDirectory,
    account_id: str,
    now: dt.datetime,
    *,
    timeout: float,
) -> bool:
    """Resolve subscriber status, treating a failed lookup as non-subscriber."""

    try:
        active, expiry = call_with_timeout(directory.is_active_subscriber, account_id, timeout=timeout)
    except Exception:
        logger.warning("Subscriber lookup failed for %s; pricing as non-subscriber", account_id, exc_info=True)
        return False
    return bool(active) and (expiry is None or expiry > now)


def send_notification(notifier: Notifier, account_id: str, message: str) -> None:
    """Fire-and-forget delivery; failures are logged and never propagate."""

    try:
        notifier.notify(account_id, message)
    except Exception:
        logger.warning("Failed to notify %s: %s", account_id, message, exc_info=True)
