"""Score labels, percentages and dashboard aggregates over Assessment.to_dict() records."""

import math
from collections import defaultdict
from datetime import datetime, timezone

MAX_CRITERION_SCORE = 5

# RGB fill colours for the score bar, by percentage bucket
RED = (231, 76, 60)
ORANGE = (243, 156, 18)
BLUE = (52, 152, 219)
GREEN = (46, 204, 113)

_INTERVALS = (
    ("year", 31536000),
    ("month", 2592000),
    ("week", 604800),
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
)


def finite_or_zero(value):
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def round_half_up(value):
    return int(math.floor(value + 0.5))


def score_level(score):
    if score < 2:
        return "Needs Improvement"
    if score < 3:
        return "Developing"
    if score < 4:
        return "Proficient"
    if score < 4.5:
        return "Advanced"
    return "Exemplary"


def score_percentage(score, max_score=MAX_CRITERION_SCORE):
    score = finite_or_zero(score)
    max_score = finite_or_zero(max_score)
    if max_score == 0:
        return 0
    return round_half_up(score / max_score * 100)


def percentage_color(percentage):
    if percentage < 40:
        return RED
    if percentage < 60:
        return ORANGE
    if percentage < 75:
        return BLUE
    return GREEN


def completed_only(records):
    return [record for record in records if record.get("status") == "completed"]


def summarize_assessments(records):
    # Averages only cover completed assessments
    total = len(records)
    completed = completed_only(records)
    completion_rate = round_half_up(len(completed) / total * 100) if total else 0
    if completed:
        average = sum(finite_or_zero(r.get("totalScore")) for r in completed) / len(completed)
    else:
        average = 0.0
    return {
        "total": total,
        "completed": len(completed),
        "completion_rate": completion_rate,
        "average_score": average,
    }


def group_average(records, key):
    buckets = defaultdict(list)
    for record in completed_only(records):
        group = key(record)
        if group is not None:
            buckets[group].append(finite_or_zero(record.get("totalScore")))
    return {group: sum(values) / len(values) for group, values in buckets.items()}


def criterion_averages(records, criteria):
    results = []
    completed = completed_only(records)
    for criterion in criteria:
        key = str(criterion["id"])
        values = [
            finite_or_zero(record["scores"][key])
            for record in completed
            if key in (record.get("scores") or {})
        ]
        results.append({
            "criterionId": criterion["id"],
            "name": criterion["name"],
            "average": sum(values) / len(values) if values else 0.0,
            "count": len(values),
        })
    return results


def _as_datetime(value):
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def format_date(value):
    if not value:
        return "Unknown date"
    moment = _as_datetime(value)
    return f"{moment:%b} {moment.day}, {moment.year}"


def format_relative_time(value, now=None):
    moment = _as_datetime(value)
    if now is None:
        now = datetime.now(timezone.utc) if moment.tzinfo else datetime.now(timezone.utc).replace(tzinfo=None)
    seconds = math.floor((now - moment).total_seconds())

    if seconds < 0:
        return "in the future"
    if seconds < 60:
        return "just now"
    for unit, unit_seconds in _INTERVALS:
        count = seconds // unit_seconds
        if count >= 1:
            return f"1 {unit} ago" if count == 1 else f"{count} {unit}s ago"
    return "just now"
