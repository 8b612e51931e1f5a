import os
import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path
from uuid import uuid4

from werkzeug.security import generate_password_hash

from app import create_app, db
from app.models import ChatMessage, Meal, Medication, MedicationLog, User, Workout

TEST_MASTER_KEY = "11" * 32


class DataIsolationTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.tmp_dir = Path(tempfile.mkdtemp(prefix="zenarog-isolation-"))
        cls.db_file = cls.tmp_dir / f"isolation-{uuid4().hex}.db"
        os.environ["SECRET_KEY"] = "test-secret"

        cls.app = create_app(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": f"sqlite:///{cls.db_file.as_posix()}",
                "UPLOAD_FOLDER": str(cls.tmp_dir / "uploads"),
                "ENCRYPTION_MASTER_KEY": TEST_MASTER_KEY,
                "ENCRYPTION_REQUIRED": False,
            }
        )

        with cls.app.app_context():
            db.drop_all()
            db.create_all()

            user1 = User(
                full_name="User One",
                email="user1@example.com",
                password_hash=generate_password_hash("pass12345"),
            )
            user2 = User(
                full_name="User Two",
                email="user2@example.com",
                password_hash=generate_password_hash("pass12345"),
            )
            db.session.add_all([user1, user2])
            db.session.flush()

            db.session.add_all(
                [
                    Workout(
                        user_id=user1.id,
                        performed_at=datetime(2026, 9, 1, 7, 0),
                        exercises=[{"name": "U1_SECRET_SQUAT", "sets": 3, "reps": 10, "weight": 60}],
                        duration_min=30,
                        calories=290,
                    ),
                    Workout(
                        user_id=user2.id,
                        performed_at=datetime(2026, 9, 1, 8, 0),
                        exercises=[{"name": "U2_SECRET_ROW", "sets": 3, "reps": 12, "weight": 40}],
                        duration_min=20,
                        calories=210,
                    ),
                    Meal(
                        user_id=user2.id,
                        eaten_at=datetime(2026, 9, 1, 12, 30),
                        meal_type="lunch",
                        foods=[{"name": "U2_SECRET_MEAL", "calories": 500, "quantity": 1}],
                        total_calories=500,
                    ),
                ]
            )

            med_u1 = Medication(
                user_id=user1.id,
                name="U1 Paracetamol",
                dosage="500mg",
                frequency="daily",
                times=["08:00"],
                start_date=date(2026, 9, 1),
            )
            med_u2 = Medication(
                user_id=user2.id,
                name="U2_SECRET_MED",
                dosage="40mg",
                frequency="twice_daily",
                times=["08:00", "20:00"],
                start_date=date(2026, 9, 1),
            )
            db.session.add_all([med_u1, med_u2])
            db.session.flush()

            db.session.add(
                MedicationLog(
                    user_id=user2.id,
                    medication_id=med_u2.id,
                    day=date(2026, 9, 1),
                    scheduled_time="08:00",
                    med_name="U2_SECRET_MED",
                    taken=True,
                    taken_at=datetime(2026, 9, 1, 8, 5),
                )
            )
            db.session.add(ChatMessage(user_id=user2.id, role="user", content="U2_SECRET_CHAT"))
            db.session.commit()

            cls.user1_id = user1.id
            cls.user2_id = user2.id
            cls.med_u1_id = med_u1.id
            cls.med_u2_id = med_u2.id

    @classmethod
    def tearDownClass(cls):
        with cls.app.app_context():
            db.session.remove()
            db.drop_all()
            db.engine.dispose()

    def setUp(self):
        self.client = self.app.test_client()

    def _login(self, email: str):
        response = self.client.post("/login", json={"email": email, "password": "pass12345"})
        self.assertEqual(response.status_code, 200)

    def test_requests_without_session_are_rejected(self):
        response = self.client.get("/medications")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json(), {"ok": False, "error": "Please log in first."})

    def test_wrong_password_is_rejected(self):
        response = self.client.post("/login", json={"email": "user1@example.com", "password": "nope"})
        self.assertEqual(response.status_code, 401)
        self.assertFalse(response.get_json()["ok"])

    def test_lists_only_show_own_records(self):
        self._login("user1@example.com")

        body = self.client.get("/medications").get_data(as_text=True)
        self.assertIn("U1 Paracetamol", body)
        self.assertNotIn("U2_SECRET_MED", body)

        body = self.client.get("/workouts").get_data(as_text=True)
        self.assertIn("U1_SECRET_SQUAT", body)
        self.assertNotIn("U2_SECRET_ROW", body)

        self.assertNotIn("U2_SECRET_MEAL", self.client.get("/meals").get_data(as_text=True))
        self.assertNotIn("U2_SECRET_CHAT", self.client.get("/chat").get_data(as_text=True))

    def test_tracker_ignores_other_users_logs(self):
        self._login("user1@example.com")
        payload = self.client.get("/tracker?day=2026-09-01").get_json()
        names = {entry["med_name"] for entry in payload["entries"]}
        self.assertEqual(names, {"U1 Paracetamol"})
        self.assertEqual(payload["stats"]["taken"], 0)
        self.assertEqual(payload["stats"]["total"], 1)

    def test_cross_user_writes_return_not_found(self):
        self._login("user1@example.com")

        self.assertEqual(
            self.client.patch(f"/medications/{self.med_u2_id}", json={"name": "hijacked"}).status_code,
            404,
        )
        self.assertEqual(self.client.delete(f"/medications/{self.med_u2_id}").status_code, 404)
        self.assertEqual(
            self.client.post(f"/medications/{self.med_u2_id}/calendar").status_code,
            404,
        )
        toggle = self.client.post(
            "/tracker/toggle",
            json={"medication_id": self.med_u2_id, "scheduled_time": "20:00", "day": "2026-09-01"},
        )
        self.assertEqual(toggle.status_code, 404)

        with self.app.app_context():
            med = db.session.get(Medication, self.med_u2_id)
            self.assertEqual(med.name, "U2_SECRET_MED")
            self.assertEqual(
                MedicationLog.query.filter_by(medication_id=self.med_u2_id).count(),
                1,
            )

    def test_medication_notes_are_encrypted_at_rest(self):
        self._login("user1@example.com")
        response = self.client.post(
            "/medications",
            json={
                "name": "Metformin",
                "dosage": "500mg",
                "frequency": "twice_daily",
                "times": ["08:00", "20:00"],
                "start_date": "2026-10-01",
                "notes": "U1_PRIVATE_NOTE take after food",
            },
        )
        self.assertEqual(response.status_code, 201)
        created = response.get_json()["medication"]
        self.assertEqual(created["notes"], "U1_PRIVATE_NOTE take after food")

        with self.app.app_context():
            med = db.session.get(Medication, created["id"])
            self.assertIsNone(med.notes)
            self.assertIsNotNone(med.encrypted_payload)
            self.assertNotIn(b"U1_PRIVATE_NOTE", med.encrypted_payload)

        listed = self.client.get("/medications").get_json()["medications"]
        notes = {item["name"]: item["notes"] for item in listed}
        self.assertEqual(notes["Metformin"], "U1_PRIVATE_NOTE take after food")

        self._login("user2@example.com")
        self.assertNotIn("U1_PRIVATE_NOTE", self.client.get("/medications").get_data(as_text=True))


if __name__ == "__main__":
    unittest.main()
