from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "admin-gate"

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:9002"
    REDIS_URL: str = ""
    COOKIE_SECURE: bool = False

    # Operator-configured secrets
    ADMIN_EMAIL: str = "admin@example.com"
    ADMIN_PASSWORD: str = "change_me_admin_password"
    ADMIN_SECURITY_CODE: str = "change_me_security_code"
    ADMIN_OTP_SALT: str = "change_me_otp_salt"

    ADMIN_JWT_SECRET: str = "change_me_admin"
    ADMIN_SESSION_TTL_HOURS: int = 24
    ADMIN_SESSION_COOKIE_NAME: str = "admin_session"
    ADMIN_VERIFY_COOKIE_NAME: str = "admin_verify"
    ADMIN_VERIFY_STEP_TTL_SECONDS: int = 300
    ADMIN_OTP_RESEND_COOLDOWN_SECONDS: int = 60

    ADMIN_OTP_CHANNEL: str = "email"  # email | telegram
    ADMIN_OTP_EMAIL: str = ""
    ADMIN_OTP_DELIVERY_TIMEOUT_SECONDS: float = 10.0
    ADMIN_OTP_DEV_MODE: bool = False

    EMAIL_PROVIDER: str = "dummy"  # dummy (dev mode only) | smtp | service
    EMAIL_SERVICE_URL: str = "http://email-service:8010"
    INTERNAL_SERVICE_TOKEN: str = "change_me_internal_service_token"
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    OTP_EMAIL_SUBJECT_TEMPLATE: str = "Admin verification code: {code}"
    OTP_EMAIL_TEMPLATE: str = "Your admin panel verification code is {code}. It expires in {ttl_minutes} minutes."

    TELEGRAM_BOT_TOKEN: str = "change_me"
    TELEGRAM_CHAT_ID: str = "0"
    OTP_TELEGRAM_TEMPLATE: str = "Admin panel verification code: {code}"

    @model_validator(mode="after")
    def _dev_mode_not_in_production(self):
        if self.ADMIN_OTP_DEV_MODE and self.is_production:
            raise ValueError("ADMIN_OTP_DEV_MODE cannot be enabled when APP_ENV=production")
        return self

    @property
    def is_production(self) -> bool:
        return str(self.APP_ENV or "").strip().lower() == "production"

    @property
    def cookie_secure(self) -> bool:
        return bool(self.COOKIE_SECURE) or self.is_production

    @property
    def admin_otp_recipient(self) -> str:
        return str(self.ADMIN_OTP_EMAIL or "").strip() or str(self.ADMIN_EMAIL or "").strip()

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
