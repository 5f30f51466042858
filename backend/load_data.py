"""
Data Loader Script - Seeds a roster and deployed tests, then walks a student
through one test via the API.

Rosters and test authoring live in other services; this script fills the
local database so the engine can be exercised end to end.

Usage:
    python load_data.py                              # Seed only
    python load_data.py http://localhost:8000        # Seed, then simulate an attempt
    python load_data.py http://backend:8000          # Inside Docker network
"""

import json
import os
import sys

import httpx

from exam_engine.auth import create_student_token
from exam_engine.database import SessionLocal, create_tables
from exam_engine.models import OnlineTest, Student
from exam_engine.models.student import normalize_phone
from exam_engine.services.deployment import deploy_test
from exam_engine.timeutil import isoformat, utcnow


def load_seed(db, data: dict) -> dict:
    """Upsert students by phone and create (and deploy) the seed tests."""
    students = 0
    for entry in data.get("students", []):
        phone = normalize_phone(entry.get("phone"))
        if not phone:
            continue
        student = db.query(Student).filter(Student.phone == phone).first()
        if student is None:
            student = Student(phone=phone, name=entry.get("name") or "Unknown")
            db.add(student)
        student.name = entry.get("name") or student.name
        student.email = entry.get("email")
        student.cohort_list = entry.get("cohorts", [])
        students += 1
    db.commit()

    test_ids = []
    for entry in data.get("tests", []):
        test = OnlineTest(
            title=entry["title"],
            description=entry.get("description"),
            created_by=entry.get("createdBy", "admin@example.com"),
            status="draft",
        )
        test.questions_list = entry.get("questions", [])
        test.config_dict = entry.get("config", {})
        db.add(test)
        db.commit()

        deployment = entry.get("deployment")
        if deployment:
            deploy_test(
                db, test,
                batches=deployment.get("batches"),
                students=deployment.get("students"),
                start_time=deployment.get("startTime") or isoformat(utcnow()),
                end_time=deployment.get("endTime"),
                duration_minutes=deployment.get("durationMinutes"),
            )
        test_ids.append(str(test.id))

    return {"students": students, "tests": test_ids}


def simulate_attempt(client: httpx.Client, api_url: str, test_id: str, phone: str) -> dict:
    """Start, autosave and submit one attempt, answering the first option everywhere."""
    headers = {"Authorization": f"Bearer {create_student_token(phone)}"}
    url = f"{api_url}/api/student/online-tests/{test_id}"

    started = client.post(url, headers=headers)
    started.raise_for_status()
    questions = started.json().get("questions", [])

    answers = []
    for q in questions:
        if q.get("type") == "mcq":
            answers.append({"questionId": q["id"], "answer": 0, "timeTaken": 5})
        elif q.get("type") == "msq":
            answers.append({"questionId": q["id"], "answer": [0], "timeTaken": 5})

    client.patch(url, headers=headers, json={"answers": answers[:1], "timeSpent": 5000}).raise_for_status()
    submitted = client.put(url, headers=headers, json={"answers": answers, "timeSpent": 10000})
    submitted.raise_for_status()
    return submitted.json()


def main():
    api_url = sys.argv[1] if len(sys.argv) > 1 else os.getenv("API_URL")

    # Locate the data file
    data_file = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "sample_data.json")
    if not os.path.exists(data_file):
        data_file = "sample_data.json"
    if not os.path.exists(data_file):
        print("Error: Could not find sample_data.json")
        sys.exit(1)

    print(f"Loading data from: {data_file}")
    with open(data_file, 'r') as f:
        data = json.load(f)

    create_tables()
    db = SessionLocal()
    try:
        summary = load_seed(db, data)
    finally:
        db.close()

    print("=" * 60)
    print("SEED SUMMARY")
    print("=" * 60)
    print(f"  Students:  {summary['students']}")
    print(f"  Tests:     {len(summary['tests'])}")
    print("=" * 60)

    if not api_url or not summary["tests"] or not data.get("students"):
        return

    phone = normalize_phone(data["students"][0]["phone"])
    print(f"Simulating an attempt for {phone} against {api_url}")
    with httpx.Client(timeout=30.0) as client:
        result = simulate_attempt(client, api_url, summary["tests"][0], phone)
    print(f"  Score: {result.get('score')} / {result.get('totalMarks')} ({result.get('percentage')}%)")


if __name__ == "__main__":
    main()
