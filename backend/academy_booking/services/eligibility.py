"""
Batch and participant eligibility rules.

Rules are evaluated at reservation time only. Every failing (participant,
rule) pair is collected so the client sees all problems at once.
"""

from datetime import date
from typing import Optional, Sequence

from academy_booking.services.interfaces.catalog import BatchInfo, ParticipantInfo


def calculate_age(dob: date, on: date) -> int:
    age = on.year - dob.year
    if (on.month, on.day) < (dob.month, dob.day):
        age -= 1
    return age


def batch_unavailable_reason(batch: BatchInfo, today: date) -> Optional[str]:
    """Why the batch cannot take reservations today, or None if it can."""
    if batch.is_deleted:
        return "Batch has been deleted and is not available for booking"
    if not batch.is_active:
        return "Batch is disabled and not available for booking"
    if batch.status != "published":
        return "Batch is not published and not available for booking"
    if batch.end_date is not None and batch.end_date < today:
        return "Batch has already ended and is not available for booking"
    if not batch.center.is_active:
        return "Coaching center is not active and not available for booking"
    return None


def _violation(participant: ParticipantInfo, rule: str, message: str) -> dict:
    return {"participant_id": participant.id, "rule": rule, "message": message}


def _gender_allowed(gender: str, allowed: Sequence[str]) -> bool:
    # An empty allow-list admits everyone
    return not allowed or gender in {g.lower() for g in allowed}


def participant_violations(participant: ParticipantInfo, batch: BatchInfo, today: date) -> list[dict]:
    violations = []
    name = participant.display_name
    center = batch.center

    if participant.dob is None:
        violations.append(_violation(participant, "age", f"Participant {name} does not have a date of birth"))
    else:
        age = calculate_age(participant.dob, today)
        if age < batch.age_min or age > batch.age_max:
            violations.append(_violation(
                participant,
                "age",
                f"Participant {name} age ({age}) is outside the batch age range "
                f"({batch.age_min}-{batch.age_max} years)",
            ))

    if participant.gender:
        gender = participant.gender.lower()
        if not _gender_allowed(gender, batch.allowed_genders):
            violations.append(_violation(
                participant,
                "gender",
                f"Participant {name} gender ({gender}) is not allowed for this batch. "
                f"Allowed genders: {', '.join(batch.allowed_genders)}",
            ))
        elif not _gender_allowed(gender, center.allowed_genders):
            violations.append(_violation(
                participant,
                "gender",
                f"Participant {name} gender ({gender}) is not allowed by the coaching center. "
                f"Allowed genders: {', '.join(center.allowed_genders)}",
            ))

    if participant.has_disability and not batch.is_allowed_disabled:
        violations.append(_violation(
            participant, "disability", f"Batch {batch.name} does not allow participants with a disability"
        ))
    elif center.is_only_for_disabled and not participant.has_disability:
        violations.append(_violation(
            participant, "disability", f"Coaching center {center.name} is exclusively for participants with a disability"
        ))
    elif participant.has_disability and not center.is_only_for_disabled and not center.allowed_disabled:
        violations.append(_violation(
            participant, "disability", f"Coaching center {center.name} does not allow participants with a disability"
        ))

    return violations


def eligibility_violations(
    participants: Sequence[ParticipantInfo], batch: BatchInfo, today: date
) -> list[dict]:
    violations = []
    for participant in participants:
        violations.extend(participant_violations(participant, batch, today))
    return violations
