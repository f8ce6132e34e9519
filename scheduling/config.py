"""
Configuration management for the clinic scheduling core.

This module provides centralized configuration using Pydantic settings
for type-safe environment variable management.
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Clinic API Configuration
    clinic_api_url: str = Field(default="http://localhost:8080", alias="CLINIC_API_URL")
    clinic_api_timeout: int = Field(default=10, alias="CLINIC_API_TIMEOUT")
    connection_pool_size: int = Field(default=20, alias="CONNECTION_POOL_SIZE")

    # Clinic Configuration
    clinic_id: int = Field(default=1, alias="CLINIC_ID")
    clinic_name: str = Field(default="Clínica Central", alias="CLINIC_NAME")
    clinic_timezone: str = Field(default="America/Sao_Paulo", alias="CLINIC_TIMEZONE")

    # Working Day Configuration
    schedule_start_hour: int = Field(default=8, ge=0, le=23, alias="SCHEDULE_START_HOUR")
    schedule_end_hour: int = Field(default=18, ge=1, le=24, alias="SCHEDULE_END_HOUR")
    slot_interval_minutes: int = Field(default=15, gt=0, alias="SLOT_INTERVAL_MINUTES")
    break_start: str = Field(default="12:00", alias="BREAK_START")
    break_end: str = Field(default="13:00", alias="BREAK_END")

    # Return Visit Policy
    follow_up_interval_days: int = Field(default=30, gt=0, alias="FOLLOW_UP_INTERVAL_DAYS")

    # Application Configuration
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

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


# Appointment types offered by the booking wizard
APPOINTMENT_TYPES: List[dict] = [
    {
        "id": "consultation",
        "name": "Consulta Geral",
        "description": "Consulta clínica com o médico",
    },
    {
        "id": "procedure",
        "name": "Procedimento",
        "description": "Procedimento faturável do catálogo do médico",
    },
    {
        "id": "follow_up",
        "name": "Retorno",
        "description": "Retorno de um paciente com consulta anterior",
    },
    {
        "id": "emergency",
        "name": "Emergência",
        "description": "Atendimento de urgência",
    },
]

# Payment methods accepted at the front desk
PAYMENT_METHODS: List[dict] = [
    {"id": "cash", "name": "Dinheiro"},
    {"id": "credit_card", "name": "Cartão de Crédito"},
    {"id": "debit_card", "name": "Cartão de Débito"},
    {"id": "pix", "name": "PIX"},
    {"id": "bank_transfer", "name": "Transferência Bancária"},
    {"id": "check", "name": "Cheque"},
    {"id": "insurance", "name": "Convênio"},
    {"id": "other", "name": "Outro"},
]

MULTIPLE_RETURNS_ADVISORY = (
    "Mais de um retorno neste mês: retornos múltiplos no mesmo mês "
    "requerem aprovação clínica."
)


def get_appointment_type_by_id(type_id: str) -> dict | None:
    """Get an appointment type by its ID."""
    for appointment_type in APPOINTMENT_TYPES:
        if appointment_type["id"] == type_id:
            return appointment_type
    return None


def get_payment_method_name(method_id: str) -> str | None:
    """Get the display name of a payment method."""
    for method in PAYMENT_METHODS:
        if method["id"] == method_id:
            return method["name"]
    return None
