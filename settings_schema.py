from pydantic import BaseModel, Field, ValidationError


class SettingsSchema(BaseModel):
    db_path: str = "trainee.db"
    server_url: str = "http://localhost:3000/api"
    use_server_data: bool = True
    request_timeout: float = Field(10.0, gt=0)
    fetch_cooldown_seconds: int = Field(24 * 60 * 60, ge=0)
    history_limit: int = Field(50, gt=0)
    local_plans_path: str | None = None
    log_level: str = "INFO"
    log_file: str | None = None
    log_json: bool = False
    api_token: str | None = None


def load_settings(data: dict) -> SettingsSchema:
    """Return validated settings, raising ``ValueError`` on bad input."""
    try:
        return SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
