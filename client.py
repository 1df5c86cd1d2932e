import requests
from typing import List, Optional


class FitnessClient:
    """Simple REST client for the fitness tracking API."""

    def __init__(self, base_url: str = "http://localhost:8000") -> None:
        self.base_url = base_url.rstrip("/")

    def create_session(self, user_id: str, date: Optional[str] = None, **fields: str) -> int:
        resp = requests.post(
            f"{self.base_url}/workout-sessions",
            json={"user_id": user_id, "date": date, **fields},
        )
        resp.raise_for_status()
        return resp.json()["data"]["id"]

    def complete_session(self, session_id: int) -> dict:
        resp = requests.patch(
            f"{self.base_url}/workout-sessions",
            params={"id": session_id, "action": "complete"},
        )
        resp.raise_for_status()
        return resp.json()["data"]

    def add_set(
        self,
        session_id: int,
        exercise_id: str,
        set_number: int,
        reps: int,
        weight: Optional[float] = None,
    ) -> int:
        resp = requests.post(
            f"{self.base_url}/workout-sets",
            json={
                "workout_id": session_id,
                "exercise_id": exercise_id,
                "set_number": set_number,
                "reps": reps,
                "weight": weight,
            },
        )
        resp.raise_for_status()
        return resp.json()["data"]["id"]

    def progress(
        self,
        user_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        exercises: Optional[List[str]] = None,
    ) -> dict:
        params = {"userId": user_id}
        if start_date:
            params["startDate"] = start_date
        if end_date:
            params["endDate"] = end_date
        if exercises:
            params["exercises"] = ",".join(exercises)
        resp = requests.get(f"{self.base_url}/progress", params=params)
        resp.raise_for_status()
        return resp.json()["data"]

    def calendar_data(
        self, user_id: str, start: Optional[str] = None, end: Optional[str] = None
    ) -> dict:
        params = {"userId": user_id}
        if start and end:
            params.update({"start": start, "end": end})
        resp = requests.get(f"{self.base_url}/calendar-data", params=params)
        resp.raise_for_status()
        return resp.json()

    def workout_details(self, user_id: str, date: str) -> list:
        resp = requests.get(
            f"{self.base_url}/workout-details",
            params={"userId": user_id, "date": date},
        )
        resp.raise_for_status()
        return resp.json()["data"]
