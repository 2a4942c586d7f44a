import os
from dataclasses import dataclass, replace
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    DATABASE_URL = os.environ.get('DATABASE_URL') or 'sqlite:///slotbook.db'
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # API Keys
    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY')
    CULQI_SECRET_KEY = os.environ.get('CULQI_SECRET_KEY')
    TWILIO_ACCOUNT_SID = os.environ.get('TWILIO_ACCOUNT_SID')
    TWILIO_AUTH_TOKEN = os.environ.get('TWILIO_AUTH_TOKEN')
    TWILIO_PHONE_NUMBER = os.environ.get('TWILIO_PHONE_NUMBER')
    SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY')
    SENDGRID_FROM_EMAIL = os.environ.get('SENDGRID_FROM_EMAIL', 'noreply@slotbook.app')
    GOOGLE_CLIENT_ID = os.environ.get('GOOGLE_CLIENT_ID')
    GOOGLE_CLIENT_SECRET = os.environ.get('GOOGLE_CLIENT_SECRET')
    MICROSOFT_CLIENT_ID = os.environ.get('MICROSOFT_CLIENT_ID')
    MICROSOFT_CLIENT_SECRET = os.environ.get('MICROSOFT_CLIENT_SECRET')

    # Application Settings
    APP_URL = os.environ.get('APP_URL', 'http://localhost:5000')
    DEFAULT_TIMEZONE = os.environ.get('DEFAULT_TIMEZONE', 'America/Lima')
    DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY', 'PEN')

    # Booking policy defaults (used when an event type is created without them)
    DEFAULT_CANCELLATION_HOURS = int(os.environ.get('DEFAULT_CANCELLATION_HOURS', '24'))
    DEFAULT_RESCHEDULING_HOURS = int(os.environ.get('DEFAULT_RESCHEDULING_HOURS', '24'))
    DEFAULT_MINIMUM_NOTICE_HOURS = int(os.environ.get('DEFAULT_MINIMUM_NOTICE_HOURS', '2'))

    # Notifications
    SEND_CONFIRMATION_EMAILS = _env_bool('SEND_CONFIRMATION_EMAILS', 'true')
    SEND_REMINDER_EMAILS = _env_bool('SEND_REMINDER_EMAILS', 'true')
    REMINDER_HOURS_BEFORE = int(os.environ.get('REMINDER_HOURS_BEFORE', '24'))
    ENABLE_SMS_NOTIFICATIONS = _env_bool('ENABLE_SMS_NOTIFICATIONS', 'false')

    # Calendar integrations
    ENABLE_GOOGLE_CALENDAR = _env_bool('ENABLE_GOOGLE_CALENDAR', 'true')
    ENABLE_OUTLOOK_CALENDAR = _env_bool('ENABLE_OUTLOOK_CALENDAR', 'true')
    CALENDAR_TIMEOUT_SECONDS = float(os.environ.get('CALENDAR_TIMEOUT_SECONDS', '5'))

    # Background side effects (email, calendar sync, refunds)
    SIDE_EFFECT_MAX_ATTEMPTS = int(os.environ.get('SIDE_EFFECT_MAX_ATTEMPTS', '5'))
    SIDE_EFFECT_RETRY_SECONDS = int(os.environ.get('SIDE_EFFECT_RETRY_SECONDS', '30'))

    # Admin Settings
    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL', 'admin@slotbook.app')
    ADMIN_PHONE = os.environ.get('ADMIN_PHONE')

    # Logging
    LOG_FILE = os.environ.get('LOG_FILE', 'logs/slotbook.log')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    DEBUG = True
    TESTING = True
    DATABASE_URL = 'sqlite:///test_slotbook.db'
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SEND_CONFIRMATION_EMAILS = True
    ENABLE_SMS_NOTIFICATIONS = False
    CALENDAR_TIMEOUT_SECONDS = 1.0


class ProductionConfig(Config):
    DEBUG = False
    TESTING = False


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


@dataclass(frozen=True)
class SchedulingSettings:
    """Immutable scheduling settings handed to the services at construction.

    Built once at process start with ``load_settings()``; tests derive
    variants with ``settings.override(...)`` instead of mutating globals.
    """
    default_timezone: str = 'America/Lima'
    default_currency: str = 'PEN'
    default_cancellation_hours: int = 24
    default_rescheduling_hours: int = 24
    default_minimum_notice_hours: int = 2
    send_confirmation_emails: bool = True
    send_reminder_emails: bool = True
    reminder_hours_before: int = 24
    enable_sms_notifications: bool = False
    enable_google_calendar: bool = True
    enable_outlook_calendar: bool = True
    calendar_timeout_seconds: float = 5.0
    side_effect_max_attempts: int = 5
    side_effect_retry_seconds: int = 30
    app_url: str = 'http://localhost:5000'
    admin_email: str = 'admin@slotbook.app'
    admin_phone: str = None

    def override(self, **changes) -> 'SchedulingSettings':
        return replace(self, **changes)

    @property
    def enabled_calendar_providers(self):
        providers = []
        if self.enable_google_calendar:
            providers.append('google')
        if self.enable_outlook_calendar:
            providers.append('outlook')
        return providers


def load_settings(config_class=None) -> SchedulingSettings:
    """Build the settings value from a Config class (environment by default)"""
    if config_class is None:
        env = os.environ.get('SLOTBOOK_ENV', 'default')
        config_class = config.get(env, DevelopmentConfig)

    return SchedulingSettings(
        default_timezone=config_class.DEFAULT_TIMEZONE,
        default_currency=config_class.DEFAULT_CURRENCY,
        default_cancellation_hours=config_class.DEFAULT_CANCELLATION_HOURS,
        default_rescheduling_hours=config_class.DEFAULT_RESCHEDULING_HOURS,
        default_minimum_notice_hours=config_class.DEFAULT_MINIMUM_NOTICE_HOURS,
        send_confirmation_emails=config_class.SEND_CONFIRMATION_EMAILS,
        send_reminder_emails=config_class.SEND_REMINDER_EMAILS,
        reminder_hours_before=config_class.REMINDER_HOURS_BEFORE,
        enable_sms_notifications=config_class.ENABLE_SMS_NOTIFICATIONS,
        enable_google_calendar=config_class.ENABLE_GOOGLE_CALENDAR,
        enable_outlook_calendar=config_class.ENABLE_OUTLOOK_CALENDAR,
        calendar_timeout_seconds=config_class.CALENDAR_TIMEOUT_SECONDS,
        side_effect_max_attempts=config_class.SIDE_EFFECT_MAX_ATTEMPTS,
        side_effect_retry_seconds=config_class.SIDE_EFFECT_RETRY_SECONDS,
        app_url=config_class.APP_URL,
        admin_email=config_class.ADMIN_EMAIL,
        admin_phone=config_class.ADMIN_PHONE,
    )
