from datetime import date, datetime, time, timedelta
from typing import Any, Iterable

from app.models import CalorieLog, Meal, Workout

MEAL_TYPES = {"breakfast", "lunch", "dinner", "snack"}
CALORIES_PER_EXERCISE = 50
CALORIES_PER_MINUTE = 8
QUICK_ADD_INTAKE = [100, 250, 500]
QUICK_ADD_BURNED = [100, 250]
CHART_DAYS = 7

COMMON_FOODS = [
    {"name": "Chicken Breast", "calories": 165, "protein": 31, "carbs": 0, "fat": 3.6},
    {"name": "Rice (1 cup)", "calories": 206, "protein": 4, "carbs": 45, "fat": 0.4},
    {"name": "Eggs (2)", "calories": 156, "protein": 12, "carbs": 1, "fat": 10},
    {"name": "Banana", "calories": 105, "protein": 1, "carbs": 27, "fat": 0.4},
    {"name": "Oatmeal", "calories": 150, "protein": 5, "carbs": 27, "fat": 3},
    {"name": "Salmon", "calories": 208, "protein": 20, "carbs": 0, "fat": 13},
    {"name": "Broccoli", "calories": 55, "protein": 4, "carbs": 11, "fat": 0.6},
    {"name": "Greek Yogurt", "calories": 100, "protein": 17, "carbs": 6, "fat": 0.7},
]


def _number(value, default: float = 0.0) -> float:
    if value in (None, ""):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def normalize_exercises(raw: Any) -> list[dict]:
    exercises = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        if not name:
            continue
        exercises.append(
            {
                "name": name,
                "sets": int(_number(item.get("sets"))),
                "reps": int(_number(item.get("reps"))),
                "weight": _number(item.get("weight")),
            }
        )
    return exercises


def estimate_workout_calories(exercise_count: int, duration_min: float) -> int:
    return round(exercise_count * CALORIES_PER_EXERCISE + duration_min * CALORIES_PER_MINUTE)


def normalize_foods(raw: Any) -> list[dict]:
    foods = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        if not name:
            continue
        foods.append(
            {
                "name": name,
                "calories": _number(item.get("calories")),
                "protein": _number(item.get("protein")),
                "carbs": _number(item.get("carbs")),
                "fat": _number(item.get("fat")),
                "quantity": _number(item.get("quantity"), default=1.0),
            }
        )
    return foods


def meal_total_calories(foods: Iterable[dict]) -> int:
    return round(sum(_number(f.get("calories")) * _number(f.get("quantity"), default=1.0) for f in foods))


def meal_macros(foods: Iterable[dict]) -> dict[str, float]:
    totals = {"protein": 0.0, "carbs": 0.0, "fat": 0.0}
    for food in foods:
        quantity = _number(food.get("quantity"), default=1.0)
        for key in totals:
            totals[key] += _number(food.get(key)) * quantity
    return {key: round(value, 1) for key, value in totals.items()}


def calorie_balance(calories_in: int, calories_out: int, goal: int) -> dict[str, int]:
    return {
        "calories_in": calories_in,
        "calories_out": calories_out,
        "goal": goal,
        "net": calories_in - calories_out,
        "remaining": goal - calories_in + calories_out,
    }


def macro_breakdown(log: CalorieLog | None) -> list[dict]:
    if log is None:
        return [
            {"name": "Protein", "grams": 0.0},
            {"name": "Carbs", "grams": 0.0},
            {"name": "Fat", "grams": 0.0},
        ]
    return [
        {"name": "Protein", "grams": round(log.protein_g or 0, 1)},
        {"name": "Carbs", "grams": round(log.carbs_g or 0, 1)},
        {"name": "Fat", "grams": round(log.fat_g or 0, 1)},
    ]


def calorie_chart(logs: Iterable[CalorieLog], *, today: date, goal: int, days: int = CHART_DAYS) -> list[dict]:
    """Oldest-first series covering the last ``days`` days; days without a log read as zero."""
    by_day = {log.day: log for log in logs}
    series = []
    for offset in range(days - 1, -1, -1):
        current = today - timedelta(days=offset)
        log = by_day.get(current)
        series.append(
            {
                "date": current.isoformat(),
                "day": current.strftime("%a"),
                "calories_in": log.calories_in if log else 0,
                "calories_out": log.calories_out if log else 0,
                "goal": log.goal if log else goal,
            }
        )
    return series


def start_of_week(day: date) -> datetime:
    # Weeks start on Sunday.
    offset = (day.weekday() + 1) % 7
    return datetime.combine(day - timedelta(days=offset), time.min)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def fitness_summary(
    workouts_this_week: list[Workout],
    meals_today: list[Meal],
    chart: list[dict],
) -> dict:
    return {
        "workouts_this_week": len(workouts_this_week),
        "calories_burned_this_week": sum(w.calories or 0 for w in workouts_this_week),
        "calories_today": sum(m.total_calories or 0 for m in meals_today),
        "meals_today": len(meals_today),
        "weekly_calories": [{"day": point["day"], "calories": point["calories_in"]} for point in chart],
    }
