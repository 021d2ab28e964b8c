"""Flask application exposing the reservation engine as a JSON API."""

from __future__ import annotations

import datetime as dt
import logging
import secrets
from typing import Any

from flask import Flask, jsonify, request

from dogpark.booking.errors import BookingError, ValidationError
from dogpark.booking.models import BookingRequest, Channel, FeeScheme
from dogpark.booking.system import BookingSystem
from dogpark.config import Settings

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "validation_error": 400,
    "not_found": 404,
    "availability_conflict": 409,
    "cancellation_window_expired": 409,
    "payment_failure": 402,
    "prerequisite_not_met": 422,
    "lead_time_violation": 422,
}


def _payload() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _enum(kind: type, value: Any, label: str) -> Any:
    try:
        return kind(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown {label} {value!r}") from exc


def _date(value: Any, label: str = "date") -> dt.date:
    try:
        return dt.date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError(f"Invalid {label} {value!r}; expected YYYY-MM-DD") from exc


def _time(value: Any, label: str = "start_time") -> dt.time:
    try:
        return dt.time.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError(f"Invalid {label} {value!r}; expected HH:MM") from exc


def _datetime(value: Any) -> dt.datetime | None:
    if value in (None, ""):
        return None
    try:
        return dt.datetime.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError(f"Invalid timestamp {value!r}") from exc


def _int(data: dict[str, Any], key: str, default: Any = None) -> Any:
    value = data.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{key} must be an integer") from exc


def booking_request_from_json(data: dict[str, Any]) -> BookingRequest:
    for key in ("facility_id", "account_id", "date", "start_time", "duration", "channel"):
        if key not in data:
            raise ValidationError(f"Missing field {key!r}")
    scheme = data.get("scheme")
    return BookingRequest(
        facility_id=_int(data, "facility_id"),
        account_id=str(data["account_id"]),
        date=_date(data["date"]),
        start=_time(data["start_time"]),
        duration_hours=_int(data, "duration"),
        channel=_enum(Channel, data["channel"], "channel"),
        entity_ids=tuple(str(entity) for entity in data.get("entity_ids") or ()),
        guest_count=_int(data, "guest_count"),
        scheme=_enum(FeeScheme, scheme, "fee scheme") if scheme else None,
    )


def _facility_to_dict(facility: Any) -> dict[str, Any]:
    return {
        "id": facility.id,
        "name": facility.name,
        "open_time": facility.open_time.strftime("%H:%M"),
        "close_time": facility.close_time.strftime("%H:%M"),
        "capacity": facility.capacity,
        "booth_pool": facility.booth_pool,
        "max_head_count": facility.max_head_count,
        "auto_confirm": facility.auto_confirm,
        "subscription_discount_eligible": facility.subscription_discount_eligible,
        "rates": facility.rates.to_dict(),
        "channel_rules": {
            channel.value: rules.to_dict() for channel, rules in facility.channel_rules.items()
        },
    }


def create_app(settings: Settings | None = None, system: BookingSystem | None = None) -> Flask:
    """Create and configure the Flask application."""

    settings = settings or Settings()
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.secret_key

    if system is None:
        system = BookingSystem.from_settings(settings)
    app.extensions["booking_system"] = system

    @app.errorhandler(BookingError)
    def handle_booking_error(exc: BookingError) -> Any:
        status = STATUS_BY_CODE.get(exc.code, 400)
        logger.info("%s %s -> %s %s", request.method, request.path, status, exc.code)
        return jsonify(exc.to_dict()), status

    # ------------------------------------------------------------------
    # Facilities
    # ------------------------------------------------------------------
    @app.get("/facilities")
    def list_facilities() -> Any:
        return jsonify([_facility_to_dict(facility) for facility in system.list_facilities()])

    @app.post("/facilities")
    def create_facility() -> Any:
        data = _payload()
        for key in ("name", "open_time", "close_time", "capacity"):
            if key not in data:
                raise ValidationError(f"Missing field {key!r}")
        facility = system.create_facility(
            name=str(data["name"]),
            open_time=_time(data["open_time"], "open_time"),
            close_time=_time(data["close_time"], "close_time"),
            capacity=_int(data, "capacity"),
            booth_pool=_int(data, "booth_pool", 0),
            max_head_count=_int(data, "max_head_count"),
            auto_confirm=bool(data.get("auto_confirm", True)),
            subscription_discount_eligible=bool(data.get("subscription_discount_eligible", True)),
            rates=data.get("rates"),
        )
        return jsonify(_facility_to_dict(facility)), 201

    @app.get("/facilities/<int:facility_id>")
    def facility_detail(facility_id: int) -> Any:
        return jsonify(_facility_to_dict(system.get_facility(facility_id)))

    @app.patch("/facilities/<int:facility_id>")
    def update_facility(facility_id: int) -> Any:
        data = _payload()
        rules = data.pop("channel_rules", None) or {}
        if not isinstance(rules, dict) or not all(isinstance(c, dict) for c in rules.values()):
            raise ValidationError("channel_rules must map channel names to objects", facility_id=facility_id)
        facility = system.update_facility(facility_id, **data)
        for channel, changes in rules.items():
            facility = system.set_channel_rules(
                facility_id, _enum(Channel, channel, "channel"), **changes
            )
        return jsonify(_facility_to_dict(facility))

    @app.get("/facilities/<int:facility_id>/availability")
    def availability(facility_id: int) -> Any:
        date = request.args.get("date") or dt.date.today().isoformat()
        slots = system.get_availability(facility_id, _date(date))
        return jsonify({"facility_id": facility_id, "date": date, "slots": [s.to_dict() for s in slots]})

    @app.post("/facilities/<int:facility_id>/occupancy")
    def record_occupancy(facility_id: int) -> Any:
        data = _payload()
        if "headcount" not in data:
            raise ValidationError("Missing field 'headcount'")
        system.record_occupancy(
            facility_id=facility_id,
            headcount=_int(data, "headcount"),
            capacity=_int(data, "capacity"),
            timestamp=_datetime(data.get("timestamp")),
        )
        return jsonify({"accepted": True}), 202

    @app.get("/facilities/<int:facility_id>/occupancy")
    def occupancy(facility_id: int) -> Any:
        system.get_facility(facility_id)
        snapshot = system.occupancy_snapshot(facility_id)
        if snapshot is None:
            return jsonify({"facility_id": facility_id, "headcount": None, "samples": 0})
        return jsonify(snapshot.to_dict())

    # ------------------------------------------------------------------
    # Pricing & reservations
    # ------------------------------------------------------------------
    @app.post("/quote")
    def quote() -> Any:
        data = _payload()
        scheme = data.get("scheme")
        result = system.quote(
            _enum(Channel, data.get("channel"), "channel"),
            _int(data, "duration", 1),
            _int(data, "head_count", 1),
            bool(data.get("is_subscriber", False)),
            facility_id=_int(data, "facility_id"),
            scheme=_enum(FeeScheme, scheme, "fee scheme") if scheme else None,
        )
        return jsonify(result.to_dict())

    @app.post("/holds")
    def place_hold() -> Any:
        hold = system.place_hold(booking_request_from_json(_payload()))
        return jsonify(hold.to_dict()), 201

    @app.post("/holds/<token>/complete")
    def complete_hold(token: str) -> Any:
        data = request.get_json(silent=True) or {}
        reservation = system.complete_hold(token, payment_metadata=data.get("payment"))
        return jsonify(reservation.to_dict()), 201

    @app.delete("/holds/<token>")
    def release_hold(token: str) -> Any:
        return jsonify(system.release_hold(token).to_dict())

    @app.get("/reservations")
    def list_reservations() -> Any:
        date = request.args.get("date")
        reservations = system.list_reservations(
            facility_id=request.args.get("facility_id", type=int),
            account_id=request.args.get("account_id"),
            date=_date(date) if date else None,
        )
        return jsonify([reservation.to_dict() for reservation in reservations])

    @app.post("/reservations")
    def create_reservation() -> Any:
        data = _payload()
        reservation = system.create_reservation(
            booking_request_from_json(data),
            payment_metadata=data.get("payment"),
        )
        return jsonify(reservation.to_dict()), 201

    @app.get("/reservations/<int:reservation_id>")
    def reservation_detail(reservation_id: int) -> Any:
        return jsonify(system.get_reservation(reservation_id).to_dict())

    @app.post("/reservations/<int:reservation_id>/confirm")
    def confirm_reservation(reservation_id: int) -> Any:
        return jsonify(system.confirm_reservation(reservation_id).to_dict())

    @app.post("/reservations/<int:reservation_id>/cancel")
    def cancel_reservation(reservation_id: int) -> Any:
        return jsonify(system.cancel_reservation(reservation_id).to_dict())

    @app.post("/admin/reservations/<int:reservation_id>/cancel")
    def admin_cancel_reservation(reservation_id: int) -> Any:
        supplied = request.headers.get("X-Admin-Token", "")
        if not settings.admin_token or not secrets.compare_digest(supplied, settings.admin_token):
            logger.warning("Refused administrative cancellation of reservation %s", reservation_id)
            return jsonify({"error": "forbidden", "message": "Administrator token required"}), 403
        decision = system.cancel_reservation(reservation_id, administrative=True)
        return jsonify(decision.to_dict())

    return app
