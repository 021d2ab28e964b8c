"""Core orchestration logic for dog park reservations."""

from __future__ import annotations

import datetime as dt
import json
import logging
import secrets
import threading
from typing import Any, Callable, Iterable, Mapping

from . import cancellation, pricing
from .availability import SlotAvailability, compute_availability
from .cancellation import CancellationDecision
from .collaborators import (
    NotificationOutbox,
    Notifier,
    PaymentGateway,
    PaymentLedger,
    PrerequisiteCheck,
    SubscriptionDirectory,
    SubscriptionTable,
    VaccineApprovalCheck,
    authorize_payment,
    send_notification,
    void_payment,
)
from .database import get_connection, initialize_database, transaction
from .errors import AvailabilityConflict, BookingError, PaymentFailure, RecordNotFound, ValidationError
from .models import (
    BookingRequest,
    Channel,
    ChannelRules,
    Facility,
    FeeScheme,
    Hold,
    HoldState,
    OccupancySample,
    PricingQuote,
    RateTable,
    Reservation,
    ReservationStatus,
    default_channel_rules,
)
from .occupancy import OccupancyFeed, OccupancySnapshot, OccupancyTracker
from .validator import BookingValidator

logger = logging.getLogger(__name__)

DAY_PASS_VALIDITY = dt.timedelta(hours=24)


def _parse_time(value: str | dt.time) -> dt.time:
    if isinstance(value, dt.time):
        return value
    return dt.time.fromisoformat(value)


def _parse_date(value: str | dt.date) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(value)


def _parse_datetime(value: str | None) -> dt.datetime | None:
    return dt.datetime.fromisoformat(value) if value else None


def _count(minimum: int) -> Callable[[Any], int]:
    def convert(value: Any) -> int:
        if isinstance(value, bool):
            raise ValueError(f"expected a whole number, got {value!r}")
        number = int(value)
        if number < minimum:
            raise ValueError(f"must be at least {minimum}")
        return number

    return convert


def _rate_table(value: Any) -> RateTable:
    if value is not None and not isinstance(value, (RateTable, Mapping)):
        raise TypeError("rates must be an object")
    rates = value if isinstance(value, RateTable) else RateTable.from_dict(value)
    if any(amount < 0 for amount in rates.to_dict().values()):
        raise ValueError("rates cannot be negative")
    return rates


def _minutes(value: Any) -> str:
    return _parse_time(value).isoformat(timespec="minutes")


# Column converters for facility settings; each raises ValueError or TypeError.
FACILITY_COLUMNS: dict[str, Callable[[Any], Any]] = {
    "name": str,
    "open_time": _minutes,
    "close_time": _minutes,
    "capacity": _count(0),
    "booth_pool": _count(0),
    "max_head_count": _count(1),
    "auto_confirm": lambda v: int(bool(v)),
    "subscription_discount_eligible": lambda v: int(bool(v)),
    "rates": lambda v: json.dumps(_rate_table(v).to_dict()),
}


def _facility_values(changes: Mapping[str, Any], facility_id: int | None = None) -> dict[str, Any]:
    unknown = set(changes) - set(FACILITY_COLUMNS)
    if unknown:
        raise ValidationError(
            f"Unknown facility settings: {', '.join(sorted(unknown))}", facility_id=facility_id
        )
    values = {}
    for name, value in changes.items():
        try:
            values[name] = FACILITY_COLUMNS[name](value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                f"Invalid {name} {value!r}: {exc}", facility_id=facility_id
            ) from exc
    return values


class BookingSystem:
    """High level façade over the reservation engine.

    Availability and pricing are pure computations over a snapshot read from
    SQLite. Placing a hold is the only check-and-reserve step and runs inside
    a ``BEGIN IMMEDIATE`` transaction, which serializes it against every other
    connection to the same database file.
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        *,
        hold_ttl_seconds: int = 600,
        external_call_timeout: float = 5.0,
        max_head_count: int = 3,
        occupancy_history_size: int = 20,
        prerequisites: PrerequisiteCheck | None = None,
        subscriptions: SubscriptionDirectory | None = None,
        payments: PaymentGateway | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], dt.datetime] = dt.datetime.now,
    ) -> None:
        self.conn = get_connection(db_path)
        initialize_database(self.conn)
        # Every write on the shared connection holds this lock so that no
        # statement from another thread can join an open transaction.
        self._write_lock = threading.RLock()
        self.clock = clock
        self.hold_ttl = dt.timedelta(seconds=hold_ttl_seconds)
        self.timeout = external_call_timeout
        self.max_head_count = max_head_count
        self.prerequisites = prerequisites or VaccineApprovalCheck(self.conn, clock)
        self.subscriptions = subscriptions or SubscriptionTable(self.conn)
        self.payments = payments or PaymentLedger(self.conn, self._write_lock)
        self.notifier = notifier or NotificationOutbox(self.conn, self._write_lock)
        self.validator = BookingValidator(self.prerequisites, self.subscriptions, timeout=self.timeout)
        self.occupancy = OccupancyTracker(occupancy_history_size)
        self.occupancy_feed = OccupancyFeed(self.occupancy)

    @classmethod
    def from_settings(cls, settings: Any, **collaborators: Any) -> "BookingSystem":
        return cls(
            settings.database_path,
            hold_ttl_seconds=settings.hold_ttl_seconds,
            external_call_timeout=settings.external_call_timeout_seconds,
            max_head_count=settings.max_head_count,
            occupancy_history_size=settings.occupancy_history_size,
            **collaborators,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _now(self, now: dt.datetime | None) -> dt.datetime:
        return now or self.clock()

    def _write(self, sql: str, params: Iterable[Any] = ()) -> Any:
        with self._write_lock:
            return self.conn.execute(sql, tuple(params))

    def _facility_from_row(self, row: dict) -> Facility:
        rules = {
            Channel(name): ChannelRules.from_dict(data)
            for name, data in json.loads(row["channel_rules"]).items()
        }
        return Facility(
            id=row["id"],
            name=row["name"],
            open_time=_parse_time(row["open_time"]),
            close_time=_parse_time(row["close_time"]),
            capacity=row["capacity"],
            booth_pool=row["booth_pool"],
            max_head_count=row["max_head_count"],
            auto_confirm=bool(row["auto_confirm"]),
            subscription_discount_eligible=bool(row["subscription_discount_eligible"]),
            rates=RateTable.from_dict(json.loads(row["rates"])),
            channel_rules=rules,
        )

    def _reservation_from_row(self, row: dict) -> Reservation:
        return Reservation(
            id=row["id"],
            facility_id=row["facility_id"],
            account_id=row["account_id"],
            date=_parse_date(row["date"]),
            start=_parse_time(row["start_time"]),
            duration_hours=row["duration"],
            channel=Channel(row["channel"]),
            head_count=row["head_count"],
            status=ReservationStatus(row["status"]),
            total_amount=row["total_amount"],
            created_at=dt.datetime.fromisoformat(row["created_at"]),
            scheme=FeeScheme(row["scheme"]) if row["scheme"] else None,
            entity_ids=tuple(json.loads(row["entity_ids"])),
            pass_expires_at=_parse_datetime(row["pass_expires_at"]),
            refund_percent=row["refund_percent"],
            cancelled_at=_parse_datetime(row["cancelled_at"]),
        )

    def _hold_from_row(self, row: dict) -> Hold:
        request = BookingRequest(
            facility_id=row["facility_id"],
            account_id=row["account_id"],
            date=_parse_date(row["date"]),
            start=_parse_time(row["start_time"]),
            duration_hours=row["duration"],
            channel=Channel(row["channel"]),
            entity_ids=tuple(json.loads(row["entity_ids"])),
            guest_count=row["guest_count"],
            scheme=FeeScheme(row["scheme"]),
        )
        quote_data = json.loads(row["quote"])
        quote = PricingQuote(
            channel=request.channel,
            scheme=request.fee_scheme,
            base_amount=quote_data["base_amount"],
            discount_amount=quote_data["discount_amount"],
        )
        return Hold(
            token=row["token"],
            request=request,
            quote=quote,
            expires_at=dt.datetime.fromisoformat(row["expires_at"]),
            state=HoldState(row["state"]),
        )

    def _occupants(self, facility_id: int, date: dt.date, now: dt.datetime) -> list[Any]:
        """Live reservations plus unexpired active holds for a facility/date."""

        self._write(
            """
            UPDATE holds SET state = 'released'
            WHERE facility_id = ? AND date = ? AND state = 'active' AND expires_at <= ?
            """,
            (facility_id, date.isoformat(), now.isoformat()),
        )
        reservations = self.conn.execute(
            """
            SELECT * FROM reservations
            WHERE facility_id = ? AND date = ? AND status != 'cancelled'
            """,
            (facility_id, date.isoformat()),
        ).fetchall()
        holds = self.conn.execute(
            """
            SELECT * FROM holds
            WHERE facility_id = ? AND date = ? AND state = 'active' AND expires_at > ?
            """,
            (facility_id, date.isoformat(), now.isoformat()),
        ).fetchall()
        occupants: list[Any] = [self._reservation_from_row(row) for row in reservations]
        occupants.extend(self._hold_from_row(row) for row in holds)
        return occupants

    # ------------------------------------------------------------------
    # Facilities
    # ------------------------------------------------------------------
    def create_facility(
        self,
        *,
        name: str,
        open_time: str | dt.time,
        close_time: str | dt.time,
        capacity: int,
        booth_pool: int = 0,
        max_head_count: int | None = None,
        auto_confirm: bool = True,
        subscription_discount_eligible: bool = True,
        rates: RateTable | Mapping[str, int] | None = None,
        channel_rules: Mapping[Channel, ChannelRules] | None = None,
    ) -> Facility:
        values = _facility_values(
            {
                "name": name,
                "open_time": open_time,
                "close_time": close_time,
                "capacity": capacity,
                "booth_pool": booth_pool,
                "max_head_count": max_head_count or self.max_head_count,
                "auto_confirm": auto_confirm,
                "subscription_discount_eligible": subscription_discount_eligible,
                "rates": rates,
            }
        )
        rules = dict(default_channel_rules())
        rules.update(channel_rules or {})
        values["channel_rules"] = json.dumps(
            {channel.value: rule.to_dict() for channel, rule in rules.items()}
        )
        cur = self._write(
            f"INSERT INTO facilities({', '.join(values)}) VALUES ({', '.join('?' for _ in values)})",
            values.values(),
        )
        logger.info("Created facility %s (%s)", cur.lastrowid, name)
        return self.get_facility(cur.lastrowid)

    def get_facility(self, facility_id: int) -> Facility:
        row = self.conn.execute(
            "SELECT * FROM facilities WHERE id = ?", (facility_id,)
        ).fetchone()
        if not row:
            raise RecordNotFound("Facility not found", facility_id=facility_id)
        return self._facility_from_row(row)

    def list_facilities(self) -> list[Facility]:
        rows = self.conn.execute("SELECT * FROM facilities ORDER BY name").fetchall()
        return [self._facility_from_row(row) for row in rows]

    def update_facility(self, facility_id: int, **changes: Any) -> Facility:
        """Update operating hours, capacity, flags or rates of a facility."""

        self.get_facility(facility_id)
        values = _facility_values(changes, facility_id)
        if not values:
            return self.get_facility(facility_id)
        assignments = ", ".join(f"{name} = ?" for name in values)
        self._write(
            f"UPDATE facilities SET {assignments} WHERE id = ?",
            (*values.values(), facility_id),
        )
        return self.get_facility(facility_id)

    def set_channel_rules(self, facility_id: int, channel: Channel, **changes: Any) -> Facility:
        """Change lead time or cancellation settings of one channel."""

        facility = self.get_facility(facility_id)
        current = facility.rules_for(channel).to_dict()
        unknown = set(changes) - set(current)
        if unknown:
            raise ValidationError(f"Unknown channel rules: {', '.join(sorted(unknown))}")
        try:
            rules = ChannelRules.from_dict({**current, **changes})
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid channel rules: {exc}", facility_id=facility_id) from exc
        all_rules = dict(facility.channel_rules)
        all_rules[channel] = rules
        self._write(
            "UPDATE facilities SET channel_rules = ? WHERE id = ?",
            (
                json.dumps({c.value: r.to_dict() for c, r in all_rules.items()}),
                facility_id,
            ),
        )
        return self.get_facility(facility_id)

    # ------------------------------------------------------------------
    # Dogs, vaccine approvals & subscriptions
    # ------------------------------------------------------------------
    def add_dog(self, *, account_id: str, name: str, breed: str | None = None, dog_id: str | None = None) -> dict:
        dog_id = dog_id or secrets.token_hex(8)
        self._write(
            "INSERT INTO dogs(id, account_id, name, breed) VALUES (?, ?, ?, ?)",
            (dog_id, account_id, name, breed),
        )
        return self.get_dog(dog_id)

    def get_dog(self, dog_id: str) -> dict:
        row = self.conn.execute("SELECT * FROM dogs WHERE id = ?", (dog_id,)).fetchone()
        if not row:
            raise RecordNotFound("Dog not found")
        return row

    def record_vaccine_certification(
        self,
        *,
        dog_id: str,
        expiry_date: str | dt.date,
        status: str = "approved",
    ) -> dict:
        self.get_dog(dog_id)
        if status not in {"pending", "approved", "rejected"}:
            raise ValidationError(f"Unknown certificate status {status!r}")
        cur = self._write(
            "INSERT INTO vaccine_certifications(dog_id, status, expiry_date) VALUES (?, ?, ?)",
            (dog_id, status, _parse_date(expiry_date).isoformat()),
        )
        return self.conn.execute(
            "SELECT * FROM vaccine_certifications WHERE id = ?", (cur.lastrowid,)
        ).fetchone()

    def set_subscription(
        self,
        *,
        account_id: str,
        active: bool,
        expires_at: dt.datetime | None = None,
    ) -> None:
        self._write(
            """
            INSERT INTO subscriptions(account_id, active, expires_at) VALUES (?, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET
                active = excluded.active,
                expires_at = excluded.expires_at,
                updated_at = CURRENT_TIMESTAMP
            """,
            (account_id, int(active), expires_at.isoformat() if expires_at else None),
        )

    # ------------------------------------------------------------------
    # Availability & pricing
    # ------------------------------------------------------------------
    def get_availability(
        self,
        facility_id: int,
        date: str | dt.date,
        *,
        now: dt.datetime | None = None,
    ) -> list[SlotAvailability]:
        facility = self.get_facility(facility_id)
        target = _parse_date(date)
        now = self._now(now)
        return compute_availability(facility, target, self._occupants(facility_id, target, now), now=now)

    def quote(
        self,
        channel: Channel,
        duration_hours: int,
        head_count: int,
        is_subscriber: bool,
        *,
        facility_id: int | None = None,
        scheme: FeeScheme | None = None,
    ) -> PricingQuote:
        if facility_id is None:
            return pricing.quote(
                channel,
                duration_hours,
                head_count,
                is_subscriber,
                scheme=scheme,
                max_head_count=self.max_head_count,
            )
        facility = self.get_facility(facility_id)
        return pricing.quote(
            channel,
            duration_hours,
            head_count,
            is_subscriber,
            rates=facility.rates,
            scheme=scheme,
            max_head_count=facility.max_head_count,
            discount_eligible=facility.subscription_discount_eligible,
        )

    # ------------------------------------------------------------------
    # Booking lifecycle
    # ------------------------------------------------------------------
    def place_hold(self, request: BookingRequest, *, now: dt.datetime | None = None) -> Hold:
        """Validate a request and claim its slot-hours until payment completes."""

        now = self._now(now)
        facility = self.get_facility(request.facility_id)
        try:
            validated = self.validator.validate(
                facility, request, self._occupants(facility.id, request.date, now), now
            )
            with self._write_lock, transaction(self.conn):
                # Re-read inside the write lock; a concurrent hold may have
                # committed since the snapshot above.
                self.validator.check_availability(
                    facility, request, self._occupants(facility.id, request.date, now), now
                )
                token = secrets.token_urlsafe(16)
                expires_at = now + self.hold_ttl
                self.conn.execute(
                    """
                    INSERT INTO holds(
                        token, facility_id, account_id, date, start_time, duration, channel,
                        scheme, entity_ids, guest_count, quote, state, expires_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'active', ?)
                    """,
                    (
                        token,
                        facility.id,
                        request.account_id,
                        request.date.isoformat(),
                        request.start.isoformat(timespec="minutes"),
                        request.duration_hours,
                        request.channel.value,
                        request.fee_scheme.value,
                        json.dumps(list(request.entity_ids)),
                        request.guest_count,
                        json.dumps(validated.quote.to_dict()),
                        expires_at.isoformat(),
                    ),
                )
        except BookingError as exc:
            logger.info(
                "Rejected %s booking at facility %s on %s %s: %s",
                request.channel.value if isinstance(request.channel, Channel) else request.channel,
                request.facility_id,
                request.date,
                request.start,
                exc.message,
            )
            raise
        logger.info(
            "Hold %s placed for %s at facility %s on %s %s",
            token[:8],
            request.channel.value,
            facility.id,
            request.date,
            request.slot_label,
        )
        return Hold(token, request, validated.quote, expires_at)

    def get_hold(self, token: str) -> Hold:
        row = self.conn.execute("SELECT * FROM holds WHERE token = ?", (token,)).fetchone()
        if not row:
            raise RecordNotFound("Hold not found")
        return self._hold_from_row(row)

    def release_hold(self, token: str, *, reason: str = "released") -> Hold:
        self._write(
            "UPDATE holds SET state = 'released' WHERE token = ? AND state = 'active'",
            (token,),
        )
        logger.info("Hold %s released (%s)", token[:8], reason)
        return self.get_hold(token)

    def release_expired_holds(self, *, now: dt.datetime | None = None) -> int:
        now = self._now(now)
        cur = self._write(
            "UPDATE holds SET state = 'released' WHERE state = 'active' AND expires_at <= ?",
            (now.isoformat(),),
        )
        if cur.rowcount:
            logger.info("Released %s expired hold(s)", cur.rowcount)
        return cur.rowcount

    def _authorize_payment(self, hold: Hold, metadata: Mapping[str, Any] | None) -> dict | None:
        """Authorize the hold's amount; returns the payload to void with, if any."""

        amount = hold.quote.final_amount
        if amount == 0:
            return None
        payload = {
            "hold_token": hold.token,
            "facility_id": hold.facility_id,
            "account_id": hold.request.account_id,
            "date": hold.date.isoformat(),
            "slot": hold.request.slot_label,
            "channel": hold.channel.value,
            "scheme": hold.quote.scheme.value,
            **(metadata or {}),
        }
        context = {"facility_id": hold.facility_id, "date": hold.date, "slot": hold.request.slot_label}
        try:
            approved = authorize_payment(self.payments, amount, payload, timeout=self.timeout)
        except Exception as exc:
            self.release_hold(hold.token, reason="payment error")
            raise PaymentFailure(f"Payment authorization failed: {exc}", **context) from exc
        if not approved:
            self.release_hold(hold.token, reason="payment declined")
            raise PaymentFailure("Payment authorization was declined", **context)
        return payload

    def complete_hold(
        self,
        token: str,
        *,
        now: dt.datetime | None = None,
        payment_metadata: Mapping[str, Any] | None = None,
    ) -> Reservation:
        """Authorize payment for a hold and convert it into a reservation."""

        now = self._now(now)
        hold = self.get_hold(token)
        context = {"facility_id": hold.facility_id, "date": hold.date, "slot": hold.request.slot_label}
        if hold.state is HoldState.CONVERTED:
            raise ValidationError("Hold has already been converted", **context)
        if not hold.is_active(now):
            if hold.state is HoldState.ACTIVE:
                self.release_hold(token, reason="expired")
            raise AvailabilityConflict("Hold expired or was released before payment completed", **context)

        payment = self._authorize_payment(hold, payment_metadata)
        try:
            reservation_id = self._convert_hold(hold, now, context)
        except Exception:
            if payment is not None:
                void_payment(self.payments, payment)
            raise
        reservation = self.get_reservation(reservation_id)
        request = hold.request
        logger.info(
            "Reservation %s %s for %s at facility %s on %s %s",
            reservation.id,
            reservation.status.value,
            reservation.channel.value,
            reservation.facility_id,
            reservation.date,
            request.slot_label,
        )
        confirmed = reservation.status is ReservationStatus.CONFIRMED
        title = "Reservation confirmed" if confirmed else "Reservation requested"
        facility = self.get_facility(hold.facility_id)
        send_notification(
            self.notifier,
            request.account_id,
            f"{title}: {facility.name} {request.date.isoformat()} {request.slot_label}",
        )
        return reservation

    def _convert_hold(self, hold: Hold, now: dt.datetime, context: dict) -> int:
        facility = self.get_facility(hold.facility_id)
        status = ReservationStatus.CONFIRMED if facility.auto_confirm else ReservationStatus.PENDING
        request = hold.request
        token = hold.token
        pass_expires_at = now + DAY_PASS_VALIDITY if request.fee_scheme is FeeScheme.DAY_PASS else None
        with self._write_lock, transaction(self.conn):
            cur = self.conn.execute(
                "UPDATE holds SET state = 'converted' WHERE token = ? AND state = 'active'",
                (token,),
            )
            if cur.rowcount == 0:
                logger.warning("Hold %s vanished after payment authorization; voiding", token[:8])
                raise AvailabilityConflict("Hold is no longer active", **context)
            cur = self.conn.execute(
                """
                INSERT INTO reservations(
                    facility_id, account_id, date, start_time, duration, channel, scheme,
                    head_count, entity_ids, status, total_amount, hold_token,
                    pass_expires_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    facility.id,
                    request.account_id,
                    request.date.isoformat(),
                    request.start.isoformat(timespec="minutes"),
                    request.duration_hours,
                    request.channel.value,
                    request.fee_scheme.value,
                    request.head_count,
                    json.dumps(list(request.entity_ids)),
                    status.value,
                    hold.quote.final_amount,
                    token,
                    pass_expires_at.isoformat() if pass_expires_at else None,
                    now.isoformat(),
                ),
            )
            return cur.lastrowid

    def create_reservation(
        self,
        request: BookingRequest,
        *,
        now: dt.datetime | None = None,
        payment_metadata: Mapping[str, Any] | None = None,
    ) -> Reservation:
        """Validate, hold, authorize payment and commit in one call."""

        now = self._now(now)
        hold = self.place_hold(request, now=now)
        return self.complete_hold(hold.token, now=now, payment_metadata=payment_metadata)

    def get_reservation(self, reservation_id: int) -> Reservation:
        row = self.conn.execute(
            "SELECT * FROM reservations WHERE id = ?", (reservation_id,)
        ).fetchone()
        if not row:
            raise RecordNotFound("Reservation not found")
        return self._reservation_from_row(row)

    def list_reservations(
        self,
        *,
        facility_id: int | None = None,
        account_id: str | None = None,
        date: str | dt.date | None = None,
        statuses: Iterable[ReservationStatus] | None = None,
    ) -> list[Reservation]:
        params: list[Any] = []
        conditions: list[str] = []
        if facility_id is not None:
            conditions.append("facility_id = ?")
            params.append(facility_id)
        if account_id is not None:
            conditions.append("account_id = ?")
            params.append(account_id)
        if date is not None:
            conditions.append("date = ?")
            params.append(_parse_date(date).isoformat())
        if statuses:
            values = [status.value for status in statuses]
            conditions.append(f"status IN ({','.join('?' for _ in values)})")
            params.extend(values)
        where = ""
        if conditions:
            where = " WHERE " + " AND ".join(conditions)
        rows = self.conn.execute(
            "SELECT * FROM reservations" + where + " ORDER BY date, start_time, id",
            params,
        ).fetchall()
        return [self._reservation_from_row(row) for row in rows]

    def confirm_reservation(self, reservation_id: int) -> Reservation:
        """Owner confirmation of a pending reservation."""

        reservation = self.get_reservation(reservation_id)
        if reservation.status is not ReservationStatus.PENDING:
            raise ValidationError(
                f"Only pending reservations can be confirmed (status is {reservation.status.value})",
                facility_id=reservation.facility_id,
                date=reservation.date,
            )
        self._write(
            "UPDATE reservations SET status = 'confirmed' WHERE id = ? AND status = 'pending'",
            (reservation_id,),
        )
        send_notification(
            self.notifier,
            reservation.account_id,
            f"Reservation confirmed: {reservation.date.isoformat()} {reservation.start:%H:%M}",
        )
        return self.get_reservation(reservation_id)

    def cancel_reservation(
        self,
        reservation_id: int,
        now: dt.datetime | None = None,
        *,
        administrative: bool = False,
    ) -> CancellationDecision:
        now = self._now(now)
        reservation = self.get_reservation(reservation_id)
        rules = self.get_facility(reservation.facility_id).rules_for(reservation.channel)
        decision = cancellation.enforce(reservation, rules, now, administrative=administrative)
        cur = self._write(
            """
            UPDATE reservations
            SET status = 'cancelled', refund_percent = ?, cancelled_at = ?
            WHERE id = ? AND status != 'cancelled'
            """,
            (decision.refund_percent, now.isoformat(), reservation_id),
        )
        if cur.rowcount == 0:
            raise ValidationError(
                "Reservation is already cancelled",
                facility_id=reservation.facility_id,
                date=reservation.date,
            )
        logger.info(
            "Reservation %s cancelled%s with %s%% refund",
            reservation_id,
            " by administrator" if administrative else "",
            decision.refund_percent,
        )
        send_notification(
            self.notifier,
            reservation.account_id,
            f"Reservation cancelled: {reservation.date.isoformat()} {reservation.start:%H:%M} "
            f"(refund {decision.refund_percent}%)",
        )
        return decision

    # ------------------------------------------------------------------
    # Live occupancy
    # ------------------------------------------------------------------
    def record_occupancy(
        self,
        *,
        facility_id: int,
        headcount: int,
        capacity: int | None = None,
        timestamp: dt.datetime | None = None,
    ) -> None:
        if headcount < 0:
            raise ValidationError("Headcount cannot be negative", facility_id=facility_id)
        if capacity is None:
            capacity = self.get_facility(facility_id).capacity
        self.occupancy_feed.publish(
            OccupancySample(facility_id, self._now(timestamp), headcount, capacity)
        )

    def occupancy_snapshot(self, facility_id: int) -> OccupancySnapshot | None:
        self.occupancy_feed.pump()
        return self.occupancy.snapshot(facility_id)

    def close(self) -> None:
        self.occupancy_feed.stop()
        self.conn.close()
