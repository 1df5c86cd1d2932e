from pydantic import BaseModel, ValidationError


class SettingsSchema(BaseModel):
    database_path: str = "fitness.db"
    log_level: str = "INFO"
    progress_window_days: int = 90
    progress_limit: int = 1000
    calendar_window_days: int = 30
    frequency_weeks: int = 4
    google_client_id: str = ""
    google_client_secret: str = ""
    oauth_redirect_uri: str = "http://localhost:8000/auth/callback"


def validate_settings(data: dict) -> SettingsSchema:
    try:
        return SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
