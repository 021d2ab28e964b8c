import datetime as dt
import unittest

from dogpark.booking.system import BookingSystem
from dogpark.config import Settings
from dogpark.webapp import create_app

NOW = dt.datetime(2026, 5, 4, 9, 0)


class DeclineAll:
    def authorize(self, amount, metadata):
        return False

    def void(self, metadata):
        pass


class WebAppTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.system = BookingSystem(clock=lambda: NOW)
        self.addCleanup(self.system.close)
        self.app = create_app(Settings(secret_key="test"), system=self.system)
        self.client = self.app.test_client()
        response = self.client.post(
            "/facilities",
            json={"name": "Harbor Run", "open_time": "06:00", "close_time": "22:00", "capacity": 5, "booth_pool": 1},
        )
        self.assertEqual(response.status_code, 201)
        self.facility_id = response.get_json()["id"]
        self.system.add_dog(account_id="acct-1", name="Rex", dog_id="rex")
        self.system.record_vaccine_certification(dog_id="rex", expiry_date=NOW.date() + dt.timedelta(days=90))

    def booking(self, **overrides) -> dict:
        payload = {
            "facility_id": self.facility_id,
            "account_id": "acct-1",
            "date": NOW.date().isoformat(),
            "start_time": "11:00",
            "duration": 1,
            "channel": "regular",
            "entity_ids": ["rex"],
        }
        payload.update(overrides)
        return payload

    def test_facility_listing_and_settings(self) -> None:
        listed = self.client.get("/facilities").get_json()
        self.assertEqual([f["name"] for f in listed], ["Harbor Run"])
        self.assertEqual(listed[0]["channel_rules"]["whole_facility"]["lead_time_days"], 2)
        response = self.client.patch(
            f"/facilities/{self.facility_id}",
            json={"capacity": 8, "channel_rules": {"regular": {"cancellation_window_minutes": 120}}},
        )
        body = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(body["capacity"], 8)
        self.assertEqual(body["channel_rules"]["regular"]["cancellation_window_minutes"], 120)
        self.assertEqual(self.client.get("/facilities/999").status_code, 404)

    def test_availability(self) -> None:
        response = self.client.get(
            f"/facilities/{self.facility_id}/availability", query_string={"date": NOW.date().isoformat()}
        )
        body = response.get_json()
        self.assertEqual(len(body["slots"]), 16)
        self.assertTrue(body["slots"][0]["is_whole_facility_available"])
        bad = self.client.get(f"/facilities/{self.facility_id}/availability", query_string={"date": "tomorrow"})
        self.assertEqual(bad.status_code, 400)

    def test_quote(self) -> None:
        response = self.client.post(
            "/quote", json={"channel": "whole_facility", "duration": 3, "head_count": 1, "is_subscriber": True}
        )
        self.assertEqual(response.get_json()["final_amount"], 10560)
        self.assertEqual(self.client.post("/quote", json={"channel": "sauna"}).status_code, 400)

    def test_reservation_lifecycle(self) -> None:
        response = self.client.post("/reservations", json=self.booking())
        self.assertEqual(response.status_code, 201)
        reservation = response.get_json()
        self.assertEqual(reservation["total_amount"], 800)
        self.assertEqual(reservation["end_time"], "12:00")

        fetched = self.client.get(f"/reservations/{reservation['id']}").get_json()
        self.assertEqual(fetched["status"], "confirmed")
        listed = self.client.get("/reservations", query_string={"facility_id": self.facility_id}).get_json()
        self.assertEqual(len(listed), 1)

        cancel = self.client.post(f"/reservations/{reservation['id']}/cancel")
        self.assertEqual(cancel.status_code, 200)
        self.assertEqual(cancel.get_json(), {"allowed": True, "refund_percent": 100})
        self.assertEqual(self.client.post(f"/reservations/{reservation['id']}/cancel").status_code, 400)

    def test_hold_endpoints(self) -> None:
        hold = self.client.post("/holds", json=self.booking()).get_json()
        self.assertEqual(hold["state"], "active")
        self.assertEqual(hold["quote"]["final_amount"], 800)
        completed = self.client.post(f"/holds/{hold['token']}/complete", json={"payment": {"method": "card"}})
        self.assertEqual(completed.status_code, 201)
        second = self.client.post("/holds", json=self.booking(start_time="13:00")).get_json()
        released = self.client.delete(f"/holds/{second['token']}").get_json()
        self.assertEqual(released["state"], "released")

    def test_invalid_facility_settings_are_400(self) -> None:
        for payload in (
            {"capacity": "abc"},
            {"capacity": -1},
            {"open_time": "25:99"},
            {"channel_rules": {"regular": 5}},
            {"channel_rules": ["regular"]},
        ):
            with self.subTest(payload=payload):
                response = self.client.patch(f"/facilities/{self.facility_id}", json=payload)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.get_json()["error"], "validation_error")

    def test_customer_cancellation_cannot_bypass_window(self) -> None:
        self.client.patch(
            f"/facilities/{self.facility_id}",
            json={"channel_rules": {"regular": {"cancellation_window_minutes": 180}}},
        )
        reservation = self.client.post("/reservations", json=self.booking()).get_json()
        late = self.client.post(f"/reservations/{reservation['id']}/cancel", json={"administrative": True})
        self.assertEqual(late.status_code, 409)
        self.assertEqual(late.get_json()["error"], "cancellation_window_expired")

        admin_route = f"/admin/reservations/{reservation['id']}/cancel"
        self.assertEqual(self.client.post(admin_route).status_code, 403)
        self.assertEqual(self.client.post(admin_route, headers={"X-Admin-Token": "guess"}).status_code, 403)

        admin = create_app(Settings(secret_key="test", admin_token="s3cret"), system=self.system).test_client()
        self.assertEqual(admin.post(admin_route, headers={"X-Admin-Token": "guess"}).status_code, 403)
        response = admin.post(admin_route, headers={"X-Admin-Token": "s3cret"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"allowed": True, "refund_percent": 0})

    def test_owner_confirmation(self) -> None:
        self.client.patch(f"/facilities/{self.facility_id}", json={"auto_confirm": False})
        reservation = self.client.post("/reservations", json=self.booking()).get_json()
        self.assertEqual(reservation["status"], "pending")
        confirmed = self.client.post(f"/reservations/{reservation['id']}/confirm").get_json()
        self.assertEqual(confirmed["status"], "confirmed")

    def test_error_mapping(self) -> None:
        lead = self.client.post("/reservations", json=self.booking(channel="whole_facility"))
        self.assertEqual(lead.status_code, 422)
        self.assertEqual(lead.get_json()["error"], "lead_time_violation")
        self.assertEqual(lead.get_json()["facility_id"], self.facility_id)

        missing = self.client.post("/reservations", json={"facility_id": self.facility_id})
        self.assertEqual(missing.status_code, 400)

        unknown_dog = self.client.post("/reservations", json=self.booking(entity_ids=["ghost"]))
        self.assertEqual(unknown_dog.status_code, 422)
        self.assertEqual(unknown_dog.get_json()["entity_id"], "ghost")

        target = (NOW.date() + dt.timedelta(days=3)).isoformat()
        self.client.post("/reservations", json=self.booking(channel="whole_facility", date=target))
        conflict = self.client.post("/reservations", json=self.booking(date=target))
        self.assertEqual(conflict.status_code, 409)
        self.assertIn("retry_hint", conflict.get_json())

        reservation = self.client.post("/reservations", json=self.booking(start_time="09:00", duration=1))
        self.assertEqual(reservation.status_code, 422)

        self.assertEqual(self.client.get("/reservations/12345").status_code, 404)

    def test_payment_failure_is_402(self) -> None:
        system = BookingSystem(clock=lambda: NOW, payments=DeclineAll())
        self.addCleanup(system.close)
        facility = system.create_facility(name="Annex", open_time="06:00", close_time="22:00", capacity=2)
        system.add_dog(account_id="acct-1", name="Rex", dog_id="rex")
        system.record_vaccine_certification(dog_id="rex", expiry_date=NOW.date() + dt.timedelta(days=90))
        client = create_app(Settings(), system=system).test_client()
        response = client.post("/reservations", json=self.booking(facility_id=facility.id))
        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.get_json()["error"], "payment_failure")

    def test_occupancy_endpoints(self) -> None:
        empty = self.client.get(f"/facilities/{self.facility_id}/occupancy").get_json()
        self.assertEqual(empty["samples"], 0)
        for minute, headcount in enumerate((0, 0, 0, 1, 2, 3)):
            response = self.client.post(
                f"/facilities/{self.facility_id}/occupancy",
                json={"headcount": headcount, "timestamp": (NOW + dt.timedelta(minutes=minute)).isoformat()},
            )
            self.assertEqual(response.status_code, 202)
        snapshot = self.client.get(f"/facilities/{self.facility_id}/occupancy").get_json()
        self.assertEqual(snapshot["headcount"], 3)
        self.assertEqual(snapshot["trend"], "increasing")
        self.assertEqual(snapshot["level"], "busy")
        self.assertEqual(self.client.post(f"/facilities/{self.facility_id}/occupancy", json={}).status_code, 400)


if __name__ == "__main__":
    unittest.main()
