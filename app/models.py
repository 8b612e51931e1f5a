from datetime import date, datetime

from app import db

UNKNOWN_NAME = "Unknown"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), unique=True, nullable=True)
    password_hash = db.Column(db.String(255), nullable=True)
    encrypted_dek = db.Column(db.LargeBinary, nullable=True)
    daily_calorie_goal = db.Column(db.Integer, nullable=True)
    last_active_at = db.Column(db.DateTime, nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    workouts = db.relationship("Workout", backref="user", lazy=True)
    meals = db.relationship("Meal", backref="user", lazy=True)
    calorie_logs = db.relationship("CalorieLog", backref="user", lazy=True)
    medications = db.relationship("Medication", backref="user", lazy=True)
    medication_logs = db.relationship("MedicationLog", backref="user", lazy=True)
    chat_messages = db.relationship("ChatMessage", backref="user", lazy=True)


class Workout(db.Model):
    __tablename__ = "workouts"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    performed_at = db.Column(db.DateTime, default=datetime.utcnow, index=True, nullable=False)

    exercises = db.Column(db.JSON, nullable=True)  # [{"name", "sets", "reps", "weight"}]
    duration_min = db.Column(db.Integer, nullable=False, default=0)
    calories = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class Meal(db.Model):
    __tablename__ = "meals"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    eaten_at = db.Column(db.DateTime, default=datetime.utcnow, index=True, nullable=False)

    meal_type = db.Column(db.String(20), nullable=False, default="lunch")  # breakfast/lunch/dinner/snack
    foods = db.Column(db.JSON, nullable=True)  # [{"name", "calories", "protein", "carbs", "fat", "quantity"}]
    total_calories = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class CalorieLog(db.Model):
    __tablename__ = "calorie_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    day = db.Column(db.Date, default=date.today, index=True, nullable=False)

    calories_in = db.Column(db.Integer, nullable=False, default=0)
    calories_out = db.Column(db.Integer, nullable=False, default=0)
    protein_g = db.Column(db.Float, nullable=False, default=0)
    carbs_g = db.Column(db.Float, nullable=False, default=0)
    fat_g = db.Column(db.Float, nullable=False, default=0)
    goal = db.Column(db.Integer, nullable=False, default=2000)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    __table_args__ = (db.UniqueConstraint("user_id", "day", name="uq_calorie_logs_user_day"),)


class Medication(db.Model):
    __tablename__ = "medications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    source = db.Column(db.String(20), nullable=False, default="manual", index=True)  # manual | scan

    name = db.Column(db.String(255), nullable=False, default=UNKNOWN_NAME)
    brand_name = db.Column(db.String(255), nullable=True)
    generic_names = db.Column(db.JSON, nullable=True)
    strength = db.Column(db.String(120), nullable=True)
    dosage = db.Column(db.String(120), nullable=True)
    dosage_form = db.Column(db.String(120), nullable=True)
    manufacturer = db.Column(db.String(255), nullable=True)

    uses = db.Column(db.JSON, nullable=True)
    warnings = db.Column(db.JSON, nullable=True)
    side_effects = db.Column(db.JSON, nullable=True)
    risk_level = db.Column(db.String(20), nullable=True)  # low/moderate/high
    requires_prescription = db.Column(db.Boolean, nullable=False, default=False)
    confidence = db.Column(db.Float, nullable=True)
    identified = db.Column(db.Boolean, nullable=False, default=False)
    image_path = db.Column(db.String(500), nullable=True)

    frequency = db.Column(db.String(20), nullable=True)  # daily/twice_daily/weekly/as_needed
    times = db.Column(db.JSON, nullable=True)  # ["08:00", "20:00"]
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    added_to_calendar = db.Column(db.Boolean, nullable=False, default=False)
    encrypted_payload = db.Column(db.LargeBinary, nullable=True)

    scanned_at = db.Column(db.DateTime, nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    logs = db.relationship(
        "MedicationLog",
        backref="medication",
        lazy=True,
        cascade="all, delete-orphan",
    )

    def display_name(self) -> str:
        return (self.name or "").strip() or (self.brand_name or "").strip() or UNKNOWN_NAME

    def is_active_on(self, day: date) -> bool:
        if self.start_date and day < self.start_date:
            return False
        if self.end_date and day > self.end_date:
            return False
        return True


class MedicationLog(db.Model):
    __tablename__ = "medication_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    medication_id = db.Column(db.Integer, db.ForeignKey("medications.id"), nullable=False, index=True)
    day = db.Column(db.Date, nullable=False, index=True)
    scheduled_time = db.Column(db.String(5), nullable=False)  # HH:MM

    med_name = db.Column(db.String(255), nullable=True)
    dosage = db.Column(db.String(120), nullable=True)
    taken = db.Column(db.Boolean, nullable=False, default=False)
    taken_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint(
            "medication_id", "day", "scheduled_time", name="uq_medication_logs_med_day_time"
        ),
    )


class ChatMessage(db.Model):
    __tablename__ = "chat_messages"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False)  # user | assistant
    content = db.Column(db.Text, nullable=True)
    encrypted_payload = db.Column(db.LargeBinary, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
