from typing import Literal

from pydantic import BaseModel, ValidationError


class StoreSettings(BaseModel):
    database_path: str = "gym_assistant.db"
    seed_defaults: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


def validate_settings(data: dict) -> StoreSettings:
    try:
        return StoreSettings(**data)
    except ValidationError as e:
        raise ValueError(str(e))
