import json
import os
from datetime import date, datetime, timedelta
from functools import wraps
from uuid import uuid4

from flask import (
    Blueprint,
    Response,
    abort,
    current_app,
    g,
    jsonify,
    request,
    session,
    stream_with_context,
)
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash
from werkzeug.utils import secure_filename

from app import db, hub
from app.adherence import (
    DEFAULT_TIMES,
    FREQUENCIES,
    adherence_stats,
    build_daily_schedule,
    calendar_events,
    calendar_for_month,
    normalize_frequency,
    normalize_time,
    normalize_times,
    toggle_dose,
)
from app.ai import ScanServiceError, normalize_medicine_insight, send_chat_message
from app.fitness import (
    COMMON_FOODS,
    MEAL_TYPES,
    QUICK_ADD_BURNED,
    QUICK_ADD_INTAKE,
    calorie_balance,
    calorie_chart,
    day_bounds,
    estimate_workout_calories,
    fitness_summary,
    macro_breakdown,
    meal_macros,
    meal_total_calories,
    normalize_exercises,
    normalize_foods,
    start_of_week,
)
from app.identification import SCAN_ENGINES, medication_from_insight, run_scan_pipeline
from app.models import (
    UNKNOWN_NAME,
    CalorieLog,
    ChatMessage,
    Meal,
    Medication,
    MedicationLog,
    User,
    Workout,
)
from app.security import CHAT_SEALED_FIELDS, MEDICATION_SEALED_FIELDS, open_fields, seal_fields
from app.subscriptions import UnknownCollectionError

bp = Blueprint("main", __name__)

ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "webp", "heic"}
MEDICATION_TEXT_FIELDS = ["brand_name", "strength", "dosage", "dosage_form", "manufacturer", "risk_level"]
MEDICATION_LIST_FIELDS = ["generic_names", "uses", "warnings", "side_effects"]
HISTORY_LIMIT = 100


def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def parse_int(value):
    return int(value) if value not in (None, "") else None


def parse_float(value):
    return float(value) if value not in (None, "") else None


def parse_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).lower() in {"1", "true", "yes", "on"}


def normalize_text(value):
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def normalize_email(value: str | None):
    if not value:
        return None
    return value.strip().lower()


def parse_list(value):
    if value in (None, ""):
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


def parse_day(value, default: date | None = None):
    if value in (None, ""):
        return default
    return date.fromisoformat(str(value))


def parse_timestamp(value, default: datetime | None = None):
    if value in (None, ""):
        return default
    return datetime.fromisoformat(str(value))


def request_payload() -> dict:
    if request.is_json:
        body = request.get_json(silent=True)
        return body if isinstance(body, dict) else {}
    return request.form.to_dict()


def error_response(message: str, status: int = 400):
    return jsonify({"ok": False, "error": message}), status


def scan_error_response(exc: ScanServiceError):
    return error_response(str(exc), 502 if exc.status_code else 400)


def calorie_goal_for(user: User) -> int:
    return user.daily_calorie_goal or current_app.config["DEFAULT_CALORIE_GOAL"]


def publish(*collections: str) -> None:
    hub.publish(g.user.id, *collections)


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if g.user is None:
            return error_response("Please log in first.", 401)
        return view(*args, **kwargs)

    return wrapped


@bp.before_app_request
def load_logged_in_user():
    user_id = session.get("user_id")
    g.user = db.session.get(User, user_id) if user_id else None


# Serializers


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "full_name": user.full_name,
        "email": user.email,
        "daily_calorie_goal": calorie_goal_for(user),
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def serialize_workout(workout: Workout) -> dict:
    return {
        "id": workout.id,
        "performed_at": workout.performed_at.isoformat(),
        "exercises": workout.exercises or [],
        "duration_min": workout.duration_min,
        "calories": workout.calories,
        "notes": workout.notes,
    }


def serialize_meal(meal: Meal) -> dict:
    foods = meal.foods or []
    return {
        "id": meal.id,
        "eaten_at": meal.eaten_at.isoformat(),
        "meal_type": meal.meal_type,
        "foods": foods,
        "total_calories": meal.total_calories,
        "macros": meal_macros(foods),
    }


def serialize_calorie_log(log: CalorieLog) -> dict:
    return {
        "id": log.id,
        "day": log.day.isoformat(),
        "calories_in": log.calories_in,
        "calories_out": log.calories_out,
        "protein_g": log.protein_g,
        "carbs_g": log.carbs_g,
        "fat_g": log.fat_g,
        "goal": log.goal,
    }


def serialize_medication(user: User, med: Medication) -> dict:
    open_fields(user, med, MEDICATION_SEALED_FIELDS, scope="medication")
    return {
        "id": med.id,
        "source": med.source,
        "name": med.display_name(),
        "brand_name": med.brand_name,
        "generic_names": med.generic_names or [],
        "strength": med.strength,
        "dosage": med.dosage,
        "dosage_form": med.dosage_form,
        "manufacturer": med.manufacturer,
        "uses": med.uses or [],
        "warnings": med.warnings or [],
        "side_effects": med.side_effects or [],
        "risk_level": med.risk_level,
        "requires_prescription": med.requires_prescription,
        "confidence": med.confidence,
        "identified": med.identified,
        "image_path": med.image_path,
        "frequency": med.frequency,
        "frequency_label": FREQUENCIES.get(med.frequency or "", ""),
        "times": med.times or [],
        "start_date": med.start_date.isoformat() if med.start_date else None,
        "end_date": med.end_date.isoformat() if med.end_date else None,
        "notes": med.notes,
        "added_to_calendar": med.added_to_calendar,
        "scanned_at": med.scanned_at.isoformat() if med.scanned_at else None,
        "created_at": med.created_at.isoformat() if med.created_at else None,
        "updated_at": med.updated_at.isoformat() if med.updated_at else None,
    }


def serialize_medication_log(log: MedicationLog) -> dict:
    return {
        "id": log.id,
        "medication_id": log.medication_id,
        "day": log.day.isoformat(),
        "scheduled_time": log.scheduled_time,
        "med_name": log.med_name,
        "dosage": log.dosage,
        "taken": log.taken,
        "taken_at": log.taken_at.isoformat() if log.taken_at else None,
    }


def serialize_chat_message(user: User, message: ChatMessage) -> dict:
    open_fields(user, message, CHAT_SEALED_FIELDS, scope="chat")
    return {
        "id": message.id,
        "role": message.role,
        "content": message.content or "",
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }


# Snapshot loaders for /stream/<collection>


def _load_workouts(user_id: int):
    rows = Workout.query.filter_by(user_id=user_id).order_by(Workout.performed_at.desc()).all()
    return [serialize_workout(row) for row in rows]


def _load_meals(user_id: int):
    rows = Meal.query.filter_by(user_id=user_id).order_by(Meal.eaten_at.desc()).all()
    return [serialize_meal(row) for row in rows]


def _load_calorie_logs(user_id: int):
    rows = CalorieLog.query.filter_by(user_id=user_id).order_by(CalorieLog.day.desc()).all()
    return [serialize_calorie_log(row) for row in rows]


def _load_medications(user_id: int):
    user = db.session.get(User, user_id)
    rows = Medication.query.filter_by(user_id=user_id).order_by(Medication.created_at.desc()).all()
    return [serialize_medication(user, row) for row in rows]


def _load_medication_logs(user_id: int):
    rows = (
        MedicationLog.query.filter_by(user_id=user_id)
        .order_by(MedicationLog.day.desc(), MedicationLog.scheduled_time.asc())
        .all()
    )
    return [serialize_medication_log(row) for row in rows]


hub.register("workouts", _load_workouts)
hub.register("meals", _load_meals)
hub.register("calorie_logs", _load_calorie_logs)
hub.register("medications", _load_medications)
hub.register("medication_logs", _load_medication_logs)


# Auth


@bp.post("/register")
def register():
    body = request_payload()
    full_name = normalize_text(body.get("full_name"))
    email = normalize_email(body.get("email"))
    password = body.get("password") or ""
    password_confirm = body.get("password_confirm")

    if not full_name:
        return error_response("Full name is required.")
    if not email:
        return error_response("Email is required.")
    if len(password) < 8:
        return error_response("Password must be at least 8 characters.")
    if password_confirm is not None and password != password_confirm:
        return error_response("Password confirmation does not match.")
    if User.query.filter_by(email=email).first():
        return error_response("An account with that email already exists.", 409)

    user = User(full_name=full_name, email=email, password_hash=generate_password_hash(password))
    db.session.add(user)
    db.session.commit()

    session.clear()
    session["user_id"] = user.id
    current_app.logger.info("Registered user_id=%s", user.id)
    return jsonify({"ok": True, "user": serialize_user(user)}), 201


@bp.post("/login")
def login():
    body = request_payload()
    email = normalize_email(body.get("email"))
    password = body.get("password") or ""

    user = User.query.filter_by(email=email).first() if email else None
    if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
        return error_response("Invalid email or password.", 401)

    session.clear()
    session["user_id"] = user.id
    user.last_active_at = datetime.utcnow()
    db.session.commit()
    return jsonify({"ok": True, "user": serialize_user(user)})


@bp.post("/logout")
@login_required
def logout():
    session.clear()
    return jsonify({"ok": True})


@bp.get("/me")
@login_required
def me():
    return jsonify({"ok": True, "user": serialize_user(g.user)})


# Fitness


@bp.get("/workouts")
@login_required
def workout_list():
    try:
        workouts = _load_workouts(g.user.id)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to load workouts for user_id=%s", g.user.id)
        workouts = []
    return jsonify({"ok": True, "workouts": workouts})


@bp.post("/workouts")
@login_required
def workout_create():
    body = request_payload()
    exercises = body.get("exercises")
    if isinstance(exercises, str):
        try:
            exercises = json.loads(exercises)
        except json.JSONDecodeError:
            return error_response("Exercises must be a JSON list.")
    exercises = normalize_exercises(exercises)
    try:
        duration_min = parse_int(body.get("duration_min")) or 0
        performed_at = parse_timestamp(body.get("performed_at"), default=datetime.utcnow())
    except ValueError:
        return error_response("Invalid duration or timestamp.")
    if not exercises and duration_min <= 0:
        return error_response("Add at least one exercise or a duration.")

    workout = Workout(
        user_id=g.user.id,
        performed_at=performed_at,
        exercises=exercises,
        duration_min=duration_min,
        calories=estimate_workout_calories(len(exercises), duration_min),
        notes=normalize_text(body.get("notes")),
    )
    db.session.add(workout)
    db.session.commit()
    publish("workouts")
    return jsonify({"ok": True, "workout": serialize_workout(workout)}), 201


@bp.delete("/workouts/<int:workout_id>")
@login_required
def workout_delete(workout_id: int):
    workout = Workout.query.filter_by(id=workout_id, user_id=g.user.id).first_or_404()
    db.session.delete(workout)
    db.session.commit()
    publish("workouts")
    return jsonify({"ok": True})


@bp.get("/foods/common")
@login_required
def common_foods():
    return jsonify({"ok": True, "foods": COMMON_FOODS})


@bp.get("/meals")
@login_required
def meal_list():
    try:
        meals = _load_meals(g.user.id)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to load meals for user_id=%s", g.user.id)
        meals = []
    return jsonify({"ok": True, "meals": meals})


@bp.post("/meals")
@login_required
def meal_create():
    body = request_payload()
    foods = body.get("foods")
    if isinstance(foods, str):
        try:
            foods = json.loads(foods)
        except json.JSONDecodeError:
            return error_response("Foods must be a JSON list.")
    foods = normalize_foods(foods)
    if not foods:
        return error_response("Add at least one food.")

    meal_type = (body.get("meal_type") or "lunch").strip().lower()
    if meal_type not in MEAL_TYPES:
        return error_response("Meal type must be breakfast, lunch, dinner, or snack.")
    try:
        eaten_at = parse_timestamp(body.get("eaten_at"), default=datetime.utcnow())
    except ValueError:
        return error_response("Invalid meal timestamp.")

    meal = Meal(
        user_id=g.user.id,
        eaten_at=eaten_at,
        meal_type=meal_type,
        foods=foods,
        total_calories=meal_total_calories(foods),
    )
    db.session.add(meal)
    db.session.commit()
    publish("meals")
    return jsonify({"ok": True, "meal": serialize_meal(meal)}), 201


@bp.delete("/meals/<int:meal_id>")
@login_required
def meal_delete(meal_id: int):
    meal = Meal.query.filter_by(id=meal_id, user_id=g.user.id).first_or_404()
    db.session.delete(meal)
    db.session.commit()
    publish("meals")
    return jsonify({"ok": True})


def get_or_create_calorie_log(user: User, day: date) -> CalorieLog:
    log = CalorieLog.query.filter_by(user_id=user.id, day=day).first()
    if log is None:
        log = CalorieLog(user_id=user.id, day=day, goal=calorie_goal_for(user))
        db.session.add(log)
    return log


def build_calorie_context(user: User, today: date) -> dict:
    goal = calorie_goal_for(user)
    start_day = today - timedelta(days=6)
    logs = (
        CalorieLog.query.filter(
            CalorieLog.user_id == user.id,
            CalorieLog.day >= start_day,
            CalorieLog.day <= today,
        )
        .order_by(CalorieLog.day.desc())
        .all()
    )
    today_log = next((log for log in logs if log.day == today), None)
    balance = calorie_balance(
        today_log.calories_in if today_log else 0,
        today_log.calories_out if today_log else 0,
        goal,
    )
    return {
        "today": balance,
        "macros": macro_breakdown(today_log),
        "chart": calorie_chart(logs, today=today, goal=goal),
        "logs": [serialize_calorie_log(log) for log in logs],
        "quick_add": {"intake": QUICK_ADD_INTAKE, "burned": QUICK_ADD_BURNED},
    }


@bp.get("/calories")
@login_required
def calories():
    return jsonify({"ok": True, **build_calorie_context(g.user, date.today())})


@bp.post("/calories/intake")
@login_required
def calories_intake():
    body = request_payload()
    try:
        amount = parse_int(body.get("calories")) or 0
        protein = parse_float(body.get("protein")) or 0.0
        carbs = parse_float(body.get("carbs")) or 0.0
        fat = parse_float(body.get("fat")) or 0.0
    except ValueError:
        return error_response("Calories and macros must be numbers.")
    if amount <= 0:
        return error_response("Calories must be greater than zero.")

    log = get_or_create_calorie_log(g.user, date.today())
    log.calories_in = (log.calories_in or 0) + amount
    log.protein_g = (log.protein_g or 0) + protein
    log.carbs_g = (log.carbs_g or 0) + carbs
    log.fat_g = (log.fat_g or 0) + fat
    db.session.commit()
    publish("calorie_logs")
    return jsonify({"ok": True, **build_calorie_context(g.user, date.today())})


@bp.post("/calories/burned")
@login_required
def calories_burned():
    body = request_payload()
    try:
        amount = parse_int(body.get("calories")) or 0
    except ValueError:
        return error_response("Calories must be a number.")
    if amount <= 0:
        return error_response("Calories must be greater than zero.")

    log = get_or_create_calorie_log(g.user, date.today())
    log.calories_out = (log.calories_out or 0) + amount
    db.session.commit()
    publish("calorie_logs")
    return jsonify({"ok": True, **build_calorie_context(g.user, date.today())})


@bp.post("/calories/goal")
@login_required
def calories_goal():
    body = request_payload()
    try:
        goal = parse_int(body.get("goal"))
    except ValueError:
        goal = None
    if not goal or goal <= 0:
        goal = current_app.config["DEFAULT_CALORIE_GOAL"]

    g.user.daily_calorie_goal = goal
    today_log = CalorieLog.query.filter_by(user_id=g.user.id, day=date.today()).first()
    if today_log is not None:
        today_log.goal = goal
    db.session.commit()
    publish("calorie_logs")
    return jsonify({"ok": True, **build_calorie_context(g.user, date.today())})


def build_fitness_dashboard(user: User, today: date) -> dict:
    week_start = start_of_week(today)
    day_start, day_end = day_bounds(today)
    workouts = Workout.query.filter(Workout.user_id == user.id, Workout.performed_at >= week_start).all()
    meals_today = Meal.query.filter(
        Meal.user_id == user.id,
        Meal.eaten_at >= day_start,
        Meal.eaten_at < day_end,
    ).all()
    chart = build_calorie_context(user, today)["chart"]
    return fitness_summary(workouts, meals_today, chart)


def build_medicine_dashboard(user: User, today: date, now: datetime) -> dict:
    medications = Medication.query.filter_by(user_id=user.id).all()
    logs = MedicationLog.query.filter_by(user_id=user.id, day=today).all()
    entries = build_daily_schedule(medications, logs, today)
    recent_scans = sorted(
        (med for med in medications if med.source == "scan"),
        key=lambda med: med.scanned_at or med.created_at,
        reverse=True,
    )[:5]
    return {
        "medications": len(medications),
        "scanned": sum(1 for med in medications if med.source == "scan"),
        "today": adherence_stats(entries, now=now, day=today),
        "recent_scans": [serialize_medication(user, med) for med in recent_scans],
    }


@bp.get("/dashboard/fitness")
@login_required
def dashboard_fitness():
    return jsonify({"ok": True, "fitness": build_fitness_dashboard(g.user, date.today())})


@bp.get("/dashboard/medicine")
@login_required
def dashboard_medicine():
    now = datetime.now()
    return jsonify({"ok": True, "medicine": build_medicine_dashboard(g.user, now.date(), now)})


@bp.get("/dashboard")
@login_required
def dashboard():
    now = datetime.now()
    return jsonify(
        {
            "ok": True,
            "user": serialize_user(g.user),
            "fitness": build_fitness_dashboard(g.user, now.date()),
            "medicine": build_medicine_dashboard(g.user, now.date(), now),
        }
    )


# Medications


def apply_medication_fields(med: Medication, body: dict, *, partial: bool) -> None:
    """Copy request fields onto a medication; ``partial`` skips absent keys."""
    if not partial or "name" in body:
        med.name = normalize_text(body.get("name")) or UNKNOWN_NAME
    for field in MEDICATION_TEXT_FIELDS:
        if not partial or field in body:
            setattr(med, field, normalize_text(body.get(field)))
    for field in MEDICATION_LIST_FIELDS:
        if not partial or field in body:
            setattr(med, field, parse_list(body.get(field)))
    if not partial or "frequency" in body:
        med.frequency = normalize_frequency(body.get("frequency"))
    if not partial or "times" in body:
        times = normalize_times(body.get("times"))
        if not times and med.frequency != "as_needed" and not partial:
            times = list(DEFAULT_TIMES)
        med.times = times
    if not partial or "start_date" in body:
        med.start_date = parse_day(body.get("start_date"), default=None if partial else date.today())
    if not partial or "end_date" in body:
        med.end_date = parse_day(body.get("end_date"))
    if not partial or "notes" in body:
        med.notes = normalize_text(body.get("notes"))
    if "requires_prescription" in body:
        med.requires_prescription = parse_bool(body.get("requires_prescription"))


@bp.get("/medications")
@login_required
def medication_list():
    try:
        medications = _load_medications(g.user.id)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to load medications for user_id=%s", g.user.id)
        medications = []
    return jsonify({"ok": True, "medications": medications, "frequencies": FREQUENCIES})


@bp.post("/medications")
@login_required
def medication_create():
    body = request_payload()
    med = Medication(user_id=g.user.id, source="manual")
    try:
        apply_medication_fields(med, body, partial=False)
    except ValueError:
        return error_response("Dates must use YYYY-MM-DD.")

    seal_fields(g.user, med, MEDICATION_SEALED_FIELDS, scope="medication")
    db.session.add(med)
    db.session.commit()
    publish("medications")
    return jsonify({"ok": True, "medication": serialize_medication(g.user, med)}), 201


@bp.patch("/medications/<int:medication_id>")
@login_required
def medication_update(medication_id: int):
    med = Medication.query.filter_by(id=medication_id, user_id=g.user.id).first_or_404()
    open_fields(g.user, med, MEDICATION_SEALED_FIELDS, scope="medication")
    body = request_payload()
    try:
        apply_medication_fields(med, body, partial=True)
    except ValueError:
        return error_response("Dates must use YYYY-MM-DD.")

    seal_fields(g.user, med, MEDICATION_SEALED_FIELDS, scope="medication")
    db.session.commit()
    publish("medications")
    return jsonify({"ok": True, "medication": serialize_medication(g.user, med)})


@bp.delete("/medications/<int:medication_id>")
@login_required
def medication_delete(medication_id: int):
    med = Medication.query.filter_by(id=medication_id, user_id=g.user.id).first_or_404()
    db.session.delete(med)
    db.session.commit()
    publish("medications", "medication_logs")
    return jsonify({"ok": True})


@bp.post("/medications/<int:medication_id>/calendar")
@login_required
def medication_add_to_calendar(medication_id: int):
    med = Medication.query.filter_by(id=medication_id, user_id=g.user.id).first_or_404()
    open_fields(g.user, med, MEDICATION_SEALED_FIELDS, scope="medication")
    events = calendar_events(med)
    med.added_to_calendar = True
    db.session.commit()
    publish("medications")
    return jsonify({"ok": True, "events": events, "times": med.times or []})


# Medication scanning


def save_upload(photo, raw: bytes) -> str:
    safe_name = secure_filename(photo.filename or "") or "scan.jpg"
    upload_name = f"{uuid4().hex}_{safe_name}"
    upload_dir = current_app.config["UPLOAD_FOLDER"]
    os.makedirs(upload_dir, exist_ok=True)
    with open(os.path.join(upload_dir, upload_name), "wb") as handle:
        handle.write(raw)
    return f"uploads/{upload_name}"


@bp.post("/medscan/analyze")
@login_required
def medscan_analyze():
    photo = request.files.get("image")
    if photo is None:
        return error_response("Attach a medicine photo first.")
    filename = photo.filename or ""
    mime_type = (photo.mimetype or "").lower()
    if not allowed_file(filename) and not mime_type.startswith("image/"):
        return error_response("Unsupported file type. Use png/jpg/jpeg/webp/heic.")

    raw = photo.read()
    if not raw:
        return error_response("The uploaded image was empty.")

    engine = normalize_text(request.form.get("engine"))
    try:
        insight = run_scan_pipeline(raw, photo.mimetype, engine)
    except ScanServiceError as exc:
        current_app.logger.warning("Medication scan failed for user_id=%s: %s", g.user.id, exc)
        return scan_error_response(exc)
    except Exception:
        current_app.logger.exception("Medication scan crashed for user_id=%s", g.user.id)
        return error_response("Medicine scan failed. Try a clearer photo or enter it manually.", 500)

    image_path = save_upload(photo, raw)
    return jsonify({"ok": True, "insight": insight, "image_path": image_path})


@bp.post("/medscan/save")
@login_required
def medscan_save():
    body = request.get_json(silent=True) or {}
    insight = body.get("insight")
    if not isinstance(insight, dict) or not isinstance(insight.get("medicine"), dict):
        return error_response("Nothing to save. Scan a medicine first.")
    source = str(insight.get("source") or "").strip().lower()
    insight = normalize_medicine_insight(
        insight,
        raw_text=str(insight.get("raw_text") or ""),
        source=source if source in SCAN_ENGINES else "vision",
    )

    image_path = normalize_text(body.get("image_path"))
    if image_path and (not image_path.startswith("uploads/") or ".." in image_path):
        image_path = None

    med = medication_from_insight(g.user.id, insight, image_path=image_path)
    try:
        apply_medication_fields(med, {k: v for k, v in body.items() if k != "insight"}, partial=True)
    except ValueError:
        return error_response("Dates must use YYYY-MM-DD.")
    if not med.times and med.frequency != "as_needed":
        med.times = list(DEFAULT_TIMES)
    if med.start_date is None:
        med.start_date = date.today()

    seal_fields(g.user, med, MEDICATION_SEALED_FIELDS, scope="medication")
    db.session.add(med)
    db.session.commit()
    publish("medications")
    return jsonify({"ok": True, "medication": serialize_medication(g.user, med)}), 201


@bp.get("/medscan/history")
@login_required
def medscan_history():
    try:
        rows = (
            Medication.query.filter_by(user_id=g.user.id, source="scan")
            .order_by(Medication.scanned_at.desc())
            .limit(HISTORY_LIMIT)
            .all()
        )
        history = [serialize_medication(g.user, row) for row in rows]
    except SQLAlchemyError:
        current_app.logger.exception("Failed to load scan history for user_id=%s", g.user.id)
        history = []
    return jsonify({"ok": True, "history": history})


# Tracker and calendar


@bp.get("/tracker")
@login_required
def tracker():
    now = datetime.now()
    try:
        selected_day = parse_day(request.args.get("day"), default=now.date())
    except ValueError:
        return error_response("Invalid day format. Use YYYY-MM-DD.")

    medications = Medication.query.filter_by(user_id=g.user.id).all()
    logs = MedicationLog.query.filter_by(user_id=g.user.id, day=selected_day).all()
    entries = build_daily_schedule(medications, logs, selected_day)
    return jsonify(
        {
            "ok": True,
            "day": selected_day.isoformat(),
            "entries": entries,
            "stats": adherence_stats(entries, now=now, day=selected_day),
        }
    )


@bp.post("/tracker/toggle")
@login_required
def tracker_toggle():
    body = request_payload()
    try:
        medication_id = parse_int(body.get("medication_id"))
        selected_day = parse_day(body.get("day"), default=date.today())
    except ValueError:
        return error_response("Invalid medication or day.")
    scheduled_time = normalize_time(body.get("scheduled_time"))
    if medication_id is None or scheduled_time is None:
        return error_response("medication_id and scheduled_time (HH:MM) are required.")

    med = Medication.query.filter_by(id=medication_id, user_id=g.user.id).first_or_404()
    if scheduled_time not in (med.times or []):
        return error_response("That time is not on this medication's schedule.")

    existing = MedicationLog.query.filter_by(
        user_id=g.user.id,
        medication_id=med.id,
        day=selected_day,
        scheduled_time=scheduled_time,
    ).first()
    log = toggle_dose(existing, medication=med, day=selected_day, scheduled_time=scheduled_time, user_id=g.user.id)
    if existing is None:
        db.session.add(log)
    db.session.commit()
    publish("medication_logs")
    return jsonify({"ok": True, "log": serialize_medication_log(log)})


@bp.get("/calendar")
@login_required
def medication_calendar():
    today = date.today()
    try:
        year = parse_int(request.args.get("year")) or today.year
        month = parse_int(request.args.get("month")) or today.month
        first_day = date(year, month, 1)
        next_month = date(year + (month == 12), month % 12 + 1, 1)
    except ValueError:
        return error_response("Invalid year or month.")

    medications = Medication.query.filter_by(user_id=g.user.id).all()
    logs = MedicationLog.query.filter(
        MedicationLog.user_id == g.user.id,
        MedicationLog.day >= first_day,
        MedicationLog.day < next_month,
    ).all()
    return jsonify({"ok": True, "calendar": calendar_for_month(medications, logs, year, month)})


# Chat


def load_chat_history(user: User, limit: int | None = None) -> list[ChatMessage]:
    query = ChatMessage.query.filter_by(user_id=user.id).order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
    if limit:
        query = query.limit(limit)
    return list(reversed(query.all()))


@bp.get("/chat")
@login_required
def chat_history():
    try:
        messages = [serialize_chat_message(g.user, m) for m in load_chat_history(g.user)]
    except SQLAlchemyError:
        current_app.logger.exception("Failed to load chat history for user_id=%s", g.user.id)
        messages = []
    return jsonify({"ok": True, "messages": messages})


@bp.post("/chat")
@login_required
def chat_send():
    body = request_payload()
    text = normalize_text(body.get("message"))
    if not text:
        return error_response("Type a message first.")

    history = [
        serialize_chat_message(g.user, m)
        for m in load_chat_history(g.user, current_app.config["CHAT_HISTORY_LIMIT"])
    ]
    try:
        reply = send_chat_message(history, text)
    except ScanServiceError as exc:
        current_app.logger.warning("Chat request failed for user_id=%s: %s", g.user.id, exc)
        return scan_error_response(exc)
    except Exception:
        current_app.logger.exception("Chat request crashed for user_id=%s", g.user.id)
        return error_response("Sorry, I encountered an error. Please try again.", 500)

    user_message = ChatMessage(user_id=g.user.id, role="user", content=text)
    assistant_message = ChatMessage(user_id=g.user.id, role="assistant", content=reply)
    for message in (user_message, assistant_message):
        seal_fields(g.user, message, CHAT_SEALED_FIELDS, scope="chat")
        db.session.add(message)
    db.session.commit()

    return jsonify(
        {
            "ok": True,
            "messages": [
                serialize_chat_message(g.user, user_message),
                serialize_chat_message(g.user, assistant_message),
            ],
            "reply": reply,
        }
    )


@bp.delete("/chat")
@login_required
def chat_clear():
    deleted = ChatMessage.query.filter_by(user_id=g.user.id).delete()
    db.session.commit()
    return jsonify({"ok": True, "deleted": deleted})


# Streams


@bp.get("/stream/<collection>")
@login_required
def stream(collection: str):
    try:
        subscription = hub.subscribe(g.user.id, collection)
    except UnknownCollectionError:
        abort(404)

    def generate():
        with subscription:
            for snapshot in subscription:
                if snapshot is None:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: {collection}\ndata: {json.dumps(snapshot)}\n\n"

    return Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
