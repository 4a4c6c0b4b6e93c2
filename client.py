import requests
from typing import Optional


class IronLogClient:
    """Simple REST client for the IronLog API."""

    def __init__(self, base_url: str = "http://localhost:8000") -> None:
        self.base_url = base_url.rstrip("/")

    def _get(self, path: str, **params):
        resp = requests.get(f"{self.base_url}{path}", params=params)
        resp.raise_for_status()
        return resp.json()

    def health(self) -> dict:
        return self._get("/health")

    def list_exercises(self) -> list[dict]:
        return self._get("/exercises")

    def add_exercise(self, name: str, target_muscle: str = "Custom", category: str = "strength") -> int:
        resp = requests.post(
            f"{self.base_url}/exercises",
            json={"name": name, "target_muscle": target_muscle, "category": category, "is_custom": True},
        )
        resp.raise_for_status()
        return resp.json()["id"]

    def add_routine(self, name: str, elements: list[dict]) -> int:
        resp = requests.post(f"{self.base_url}/routines", json={"name": name, "elements": elements})
        resp.raise_for_status()
        return resp.json()["id"]

    def assign_day(self, day_index: int, routine_id: Optional[int]) -> dict:
        resp = requests.put(
            f"{self.base_url}/schedule/{day_index}", json={"routine_id": routine_id}
        )
        resp.raise_for_status()
        return resp.json()

    def log_set(
        self,
        exercise_id: int,
        weight: float,
        reps: float,
        date: Optional[str] = None,
        is_warmup: bool = False,
    ) -> int:
        resp = requests.post(
            f"{self.base_url}/sets",
            json={
                "exercise_id": exercise_id,
                "weight": weight,
                "reps": reps,
                "date": date,
                "is_warmup": is_warmup,
            },
        )
        resp.raise_for_status()
        return resp.json()["id"]

    def active_routine(self, date: Optional[str] = None) -> Optional[dict]:
        params = {"date": date} if date else {}
        return self._get("/active_routine", **params)["routine"]

    def day_status(self, date: str) -> dict:
        return self._get(f"/days/{date}/status")

    def overview(self, view: str = "month") -> dict:
        return self._get("/stats/overview", view=view)

    def export_backup(self) -> dict:
        return self._get("/backup")

    def restore_backup(self, text: str) -> None:
        resp = requests.post(
            f"{self.base_url}/backup",
            data=text.encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
        resp.raise_for_status()

    def reset(self) -> None:
        resp = requests.post(f"{self.base_url}/reset")
        resp.raise_for_status()
