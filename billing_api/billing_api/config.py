"""Billing service configuration loaded from environment variables."""

from __future__ import annotations

from enum import Enum
from typing import Self

from billing_core.pricing import PriceCatalog
from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PlatformEnv(str, Enum):
    """Deployment environment labels."""

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class IdempotencyFailurePolicy(str, Enum):
    """What to do when the processed-event log cannot be written.

    ``proceed`` applies the event anyway (billing availability over audit
    completeness).  ``reject`` answers 500 so Stripe redelivers later.
    """

    PROCEED = "proceed"
    REJECT = "reject"


_REQUIRED_SECRETS = (
    "stripe_secret_key",
    "stripe_webhook_secret",
    "database_service_key",
)


class BillingSettings(BaseSettings):
    """FastAPI application settings.

    All values can be overridden via environment variables prefixed with
    ``BILLING_`` (e.g. ``BILLING_DATABASE_URL=...``) or through a ``.env``
    file in the working directory.

    ``stripe_secret_key``, ``stripe_webhook_secret``, ``database_url`` and
    ``database_service_key`` have no defaults: the process refuses to start
    without them.
    """

    model_config = SettingsConfigDict(
        env_prefix="BILLING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Database connection string (asyncpg driver in production) and the
    # service-role credential applied as its password.
    database_url: str
    database_service_key: SecretStr

    platform_env: PlatformEnv = PlatformEnv.DEV

    # Origins permitted by the CORS middleware (the web frontend).
    cors_origins: list[str] = ["http://localhost:5173"]

    # Whether CORS responses include credentials (cookies, auth headers).
    cors_allow_credentials: bool = True

    # Stripe.
    stripe_secret_key: SecretStr
    stripe_webhook_secret: SecretStr
    stripe_api_version: str = "2024-06-20"
    stripe_webhook_tolerance_seconds: int = 300

    idempotency_failure_policy: IdempotencyFailurePolicy = IdempotencyFailurePolicy.PROCEED

    # Structured JSON logging for log aggregation.
    structured_logging: bool = False
    log_level: str = "INFO"

    # Frontend-facing checkout/portal endpoints.  Both must be set for
    # those endpoints to be served; the webhook works without them.
    frontend_url: str = ""
    auth_jwt_secret: SecretStr = SecretStr("")
    auth_jwt_audience: str = "authenticated"

    # Stripe price ids per tier / billing period / currency.
    stripe_price_starter_monthly_usd: str = ""
    stripe_price_starter_monthly_eur: str = ""
    stripe_price_starter_yearly_usd: str = ""
    stripe_price_starter_yearly_eur: str = ""
    stripe_price_pro_monthly_usd: str = ""
    stripe_price_pro_monthly_eur: str = ""
    stripe_price_pro_yearly_usd: str = ""
    stripe_price_pro_yearly_eur: str = ""

    @model_validator(mode="after")
    def _validate_required_not_blank(self) -> Self:
        """Refuse to start with an empty Stripe or database credential.

        Missing variables are already rejected by pydantic; this catches
        variables that are present but blank (``BILLING_STRIPE_SECRET_KEY=``).
        """
        blank = [name for name in _REQUIRED_SECRETS if not getattr(self, name).get_secret_value().strip()]
        if not self.database_url.strip():
            blank.append("database_url")
        if blank:
            env_names = ", ".join(f"BILLING_{name.upper()}" for name in sorted(blank))
            raise ValueError(f"Missing required configuration: {env_names}. Refusing to start.")
        return self

    @model_validator(mode="after")
    def _validate_cors_credentials_not_wildcard(self) -> Self:
        """Reject wildcard origins when credentials are enabled.

        Browsers silently reject ``Access-Control-Allow-Origin: *`` when
        ``Access-Control-Allow-Credentials: true`` is present.  Fail fast at
        startup instead.
        """
        if self.cors_allow_credentials and "*" in self.cors_origins:
            raise ValueError(
                "Cannot use wildcard origins with credentials. "
                "Specify explicit origins instead of '*' when "
                "cors_allow_credentials=True."
            )
        return self

    @property
    def frontend_enabled(self) -> bool:
        """Whether the checkout and portal endpoints are configured."""
        return bool(self.frontend_url.strip() and self.auth_jwt_secret.get_secret_value())

    def price_catalog(self) -> PriceCatalog:
        """Return the configured Stripe prices as a :class:`PriceCatalog`."""
        prefix = "stripe_price_"
        return PriceCatalog.from_mapping(
            {name[len(prefix) :]: getattr(self, name) for name in type(self).model_fields if name.startswith(prefix)}
        )


def load_billing_settings() -> BillingSettings:
    """Construct settings from the environment / ``.env`` file."""
    return BillingSettings()  # type: ignore[call-arg]
