from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from models import DEFAULT_USER_ID, SYSTEM_OWNER_ID


class SettingsSchema(BaseModel):
    db_path: str = "workout.db"
    weight_unit: Literal["kg", "lb"] = "kg"
    default_rest_seconds: int = Field(default=90, ge=0)
    default_user_id: str = DEFAULT_USER_ID
    default_user_name: str = "Fitness Enthusiast"
    system_owner_id: str = SYSTEM_OWNER_ID
    retry_backoff: float = Field(default=0.05, ge=0)
    busy_timeout: float = Field(default=30.0, gt=0)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


def validate_settings(data: dict) -> SettingsSchema:
    try:
        return SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
