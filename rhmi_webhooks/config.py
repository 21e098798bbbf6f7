"""
Configuration module for the RHMIConfig admission webhooks, read from env vars.
"""
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    # API
    API_HOST: str = os.environ.get("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.environ.get("API_PORT", "8443"))
    TLS_CERT_FILE: str = os.environ.get("TLS_CERT_FILE", "")
    TLS_KEY_FILE: str = os.environ.get("TLS_KEY_FILE", "")
    VERSION: str = os.environ.get("OPERATOR_VERSION", "2.8.0")

    # Edits made by this identity are not stamped with lastEdit annotations
    OPERATOR_SERVICE_ACCOUNT: str = os.environ.get(
        "OPERATOR_SERVICE_ACCOUNT", "system:serviceaccount:redhat-rhmi-operator:rhmi-operator",
    )


settings = Settings()
