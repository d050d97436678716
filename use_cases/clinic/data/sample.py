"""
Sample clinic data.

Loaded into the in-memory store when ``SEED_SAMPLE_DATA`` is set, and into
Cosmos DB by ``scripts/populate_cosmosdb.py``. Schedule dates are generated
relative to today so the sample week is always bookable.
"""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional


DOCTORS: List[Dict[str, Any]] = [
    {
        "id": "DOC-001",
        "type": "doctor",
        "name": "Dr. Amelia Hart",
        "email": "a.hart@clinic.example",
        "specialty": "CARDIOLOGY",
        "license_number": "LIC-CA-10293",
        "experience": 14,
        "consultation_fee": 150.0,
        "is_available": True,
        "rating": 5.0,
        "total_reviews": 0,
    },
    {
        "id": "DOC-002",
        "type": "doctor",
        "name": "Dr. Rahul Menon",
        "email": "r.menon@clinic.example",
        "specialty": "PEDIATRICS",
        "license_number": "LIC-PE-20417",
        "experience": 9,
        "consultation_fee": 90.0,
        "is_available": True,
        "rating": 5.0,
        "total_reviews": 0,
    },
    {
        "id": "DOC-003",
        "type": "doctor",
        "name": "Dr. Sofia Alvarez",
        "email": "s.alvarez@clinic.example",
        "specialty": "DERMATOLOGY",
        "license_number": "LIC-DE-33081",
        "experience": 6,
        "consultation_fee": 120.0,
        "is_available": True,
        "rating": 5.0,
        "total_reviews": 0,
    },
]

PATIENTS: List[Dict[str, Any]] = [
    {
        "id": "PAT-001",
        "type": "patient",
        "name": "Jane Smith",
        "email": "jane.smith@email.com",
        "phone": "555-0101",
        "date_of_birth": "1986-04-12",
        "gender": "FEMALE",
    },
    {
        "id": "PAT-002",
        "type": "patient",
        "name": "Robert Johnson",
        "email": "rjohnson@company.com",
        "phone": "555-0102",
        "date_of_birth": "1979-11-03",
        "gender": "MALE",
    },
    {
        "id": "PAT-003",
        "type": "patient",
        "name": "Maria Garcia",
        "email": "m.garcia@inbox.com",
        "phone": "555-0103",
        "date_of_birth": "2015-06-21",
        "gender": "FEMALE",
    },
]

# (doctor_id, day offset, start, end, slot_duration, max_patients, location)
SCHEDULE_TEMPLATES = [
    ("DOC-001", 1, "09:00", "12:00", 30, 1, "Main Clinic"),
    ("DOC-001", 1, "14:00", "17:00", 30, 1, "Main Clinic"),
    ("DOC-002", 1, "08:00", "12:00", 20, 2, "Children's Wing"),
    ("DOC-002", 2, "13:00", "16:00", 20, 2, "Children's Wing"),
    ("DOC-003", 3, "10:00", "15:00", 45, 1, "Main Clinic"),
]


def build_schedules(today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Schedule documents for the days following ``today``."""
    today = today or date.today()
    schedules = []
    for i, (doctor_id, offset, start, end, duration, capacity, location) in enumerate(SCHEDULE_TEMPLATES, 1):
        day = today + timedelta(days=offset)
        start_h, start_m = map(int, start.split(":"))
        end_h, end_m = map(int, end.split(":"))
        span = (end_h * 60 + end_m) - (start_h * 60 + start_m)
        schedules.append({
            "id": f"SCH-SAMPLE-{i:03d}",
            "type": "schedule",
            "doctor_id": doctor_id,
            "date": day.isoformat(),
            "day_of_week": day.strftime("%A").upper(),
            "start_time": start,
            "end_time": end,
            "slot_duration": duration,
            "max_patients": capacity,
            "total_slots": span // duration,
            "status": "ACTIVE",
            "location": location,
            "notes": None,
        })
    return schedules
