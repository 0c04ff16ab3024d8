"""
Configuration management for the Clinic Agenda scheduling engine.

This module provides centralized configuration using Pydantic settings
for type-safe environment variable management.
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Clinic Configuration
    clinic_name: str = Field(default="Clínica Odontológica Central", alias="CLINIC_NAME")
    clinic_timezone: str = Field(default="America/Asuncion", alias="CLINIC_TIMEZONE")

    # Scheduling Grid
    slot_grid_minutes: int = Field(default=15, alias="SLOT_GRID_MINUTES")
    fallback_start: str = Field(default="08:00", alias="FALLBACK_START")
    fallback_end: str = Field(default="16:00", alias="FALLBACK_END")
    buffer_minutes: int = Field(default=0, alias="BUFFER_MINUTES")
    min_duration_minutes: int = Field(default=5, alias="MIN_DURATION_MINUTES")
    max_duration_minutes: int = Field(default=480, alias="MAX_DURATION_MINUTES")

    # Recommendations
    search_window_days: int = Field(default=7, alias="SEARCH_WINDOW_DAYS")
    max_recommendations: int = Field(default=10, alias="MAX_RECOMMENDATIONS")

    # Timeouts
    resolver_timeout_seconds: float = Field(default=5.0, alias="RESOLVER_TIMEOUT_SECONDS")
    transaction_timeout_seconds: float = Field(
        default=5.0, alias="TRANSACTION_TIMEOUT_SECONDS"
    )

    # Remote Working-Hours API (empty means the in-process directory is used)
    working_hours_api_url: str = Field(default="", alias="WORKING_HOURS_API_URL")
    working_hours_api_timeout: int = Field(default=10, alias="WORKING_HOURS_API_TIMEOUT")
    connection_pool_size: int = Field(default=50, alias="CONNECTION_POOL_SIZE")

    # Application Configuration
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8080, alias="API_PORT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once,
    improving performance for repeated access.
    """
    return Settings()


# Appointment categories and the specialties able to attend them.
# An empty list means any professional may take the appointment.
APPOINTMENT_TYPES: List[dict] = [
    {
        "id": "CONSULTA",
        "name": "Consulta",
        "duration_minutes": 30,
        "specialties": ["Odontología General"],
    },
    {
        "id": "LIMPIEZA",
        "name": "Limpieza dental",
        "duration_minutes": 45,
        "specialties": ["Odontología General"],
    },
    {
        "id": "ENDODONCIA",
        "name": "Endodoncia",
        "duration_minutes": 90,
        "specialties": ["Endodoncia"],
    },
    {
        "id": "EXTRACCION",
        "name": "Extracción",
        "duration_minutes": 45,
        "specialties": ["Odontología General"],
    },
    {
        "id": "URGENCIA",
        "name": "Urgencia",
        "duration_minutes": 30,
        "specialties": ["Odontología General"],
    },
    {
        "id": "ORTODONCIA",
        "name": "Ortodoncia",
        "duration_minutes": 30,
        "specialties": ["Ortodoncia"],
    },
    {
        "id": "CONTROL",
        "name": "Control",
        "duration_minutes": 20,
        "specialties": ["Odontología General"],
    },
    {
        "id": "OTRO",
        "name": "Otro",
        "duration_minutes": 30,
        "specialties": [],
    },
]


# Spanish day names used by weekly schedules -> Python weekday index (Monday=0)
SPANISH_DAY_NAMES = {
    0: "lunes",
    1: "martes",
    2: "miércoles",
    3: "jueves",
    4: "viernes",
    5: "sábado",
    6: "domingo",
}

# Reverse lookup, accepting the unaccented spellings as well
SPANISH_DAY_NAME_TO_INDEX = {name: idx for idx, name in SPANISH_DAY_NAMES.items()}
SPANISH_DAY_NAME_TO_INDEX.update({"miercoles": 2, "sabado": 5})


def get_appointment_type(type_id: str) -> dict | None:
    """Get an appointment type by its ID."""
    for appointment_type in APPOINTMENT_TYPES:
        if appointment_type["id"] == type_id:
            return appointment_type
    return None


def get_required_specialties(type_id: str) -> List[str]:
    """Get the specialties that can attend an appointment type."""
    appointment_type = get_appointment_type(type_id)
    if appointment_type is None:
        return []
    return list(appointment_type["specialties"])
