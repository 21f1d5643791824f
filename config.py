import os
import secrets
from dotenv import load_dotenv
from typing import Optional

# Find the absolute path of the root directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load the .env file from the root directory
load_dotenv(os.path.join(basedir, '.env'))


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid"""
    pass


def _env_int(key: str, default: int) -> int:
    value = os.environ.get(key)
    return int(value) if value else default


def _env_float(key: str, default: float) -> float:
    value = os.environ.get(key)
    return float(value) if value else default


class Config:
    """
    Base configuration class. Contains default configuration settings
    and settings applicable to all environments.
    """
    # Generate a random key if none is provided
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    FLASK_ENV = os.environ.get('FLASK_ENV')

    @classmethod
    def validate_required_config(cls) -> None:
        """Validate that all required configuration is present"""
        if os.environ.get('FLASK_ENV') == 'testing' or os.environ.get('SKIP_ENV_VALIDATION'):
            return

        required_vars = ['DATABASE_URL']
        if os.environ.get('SMS_TRANSPORT', 'openphone') == 'openphone':
            required_vars += ['OPENPHONE_API_KEY', 'OPENPHONE_PHONE_NUMBER_ID']

        missing_vars = [var for var in required_vars if not os.environ.get(var)]
        if missing_vars:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing_vars)}"
            )

    @staticmethod
    def get_required_env(key: str) -> str:
        """Get required environment variable or raise error"""
        value = os.environ.get(key)
        if not value:
            raise ConfigurationError(f"Required environment variable {key} is not set")
        return value

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'coop.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Cooperative identity used in invitation messages
    COOPERATIVE_NAME = os.environ.get('COOPERATIVE_NAME', 'SVMPC')
    COOPERATIVE_PHONE = os.environ.get('COOPERATIVE_PHONE', '+1-800-SVMPC-1')
    FRONTEND_URL = os.environ.get('FRONTEND_URL', 'http://localhost:5173')

    # Members imported without an email get member_<id>@<domain>.
    # .invalid is reserved (RFC 2606) so it can never collide with a real address.
    PLACEHOLDER_EMAIL_DOMAIN = os.environ.get('PLACEHOLDER_EMAIL_DOMAIN', 'members.invalid')

    # Temporary credentials
    TEMP_PASSWORD_TTL_HOURS = _env_int('TEMP_PASSWORD_TTL_HOURS', 24)
    TEMP_PASSWORD_LENGTH = _env_int('TEMP_PASSWORD_LENGTH', 8)

    # CSV uploads
    MAX_CSV_SIZE_MB = _env_int('MAX_CSV_SIZE_MB', 10)
    CSV_UPLOAD_FOLDER = os.environ.get('CSV_UPLOAD_FOLDER') or os.path.join(basedir, 'uploads', 'csv')
    PREVIEW_ROW_LIMIT = 10

    # Notification retry policy
    NOTIFICATION_MAX_RETRIES = _env_int('NOTIFICATION_MAX_RETRIES', 3)
    NOTIFICATION_INITIAL_DELAY_MS = _env_int('NOTIFICATION_INITIAL_DELAY_MS', 1000)
    NOTIFICATION_MAX_DELAY_MS = _env_int('NOTIFICATION_MAX_DELAY_MS', 60000)
    NOTIFICATION_BACKOFF_MULTIPLIER = _env_int('NOTIFICATION_BACKOFF_MULTIPLIER', 2)
    BULK_RETRY_DELAY_SECONDS = _env_float('BULK_RETRY_DELAY_SECONDS', 0.1)

    # SMS transport: 'openphone' sends through the OpenPhone API, 'log' only logs
    SMS_TRANSPORT = os.environ.get('SMS_TRANSPORT', 'openphone')
    OPENPHONE_API_KEY = os.environ.get('OPENPHONE_API_KEY')
    OPENPHONE_PHONE_NUMBER_ID = os.environ.get('OPENPHONE_PHONE_NUMBER_ID')

    # Celery uses the standard uppercase keys; 'redis' is the docker-compose service name.
    CELERY_BROKER_URL = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'

    # Mail settings
    MAIL_SERVER = os.environ.get('MAIL_SERVER')
    MAIL_PORT = int(os.environ.get('MAIL_PORT') or 587)  # Handle empty string
    MAIL_USE_TLS = os.environ.get('MAIL_USE_TLS', 'true').lower() == 'true'
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER', 'noreply@svmpc.coop')

    # Security settings
    SESSION_COOKIE_SECURE = False  # Overridden in production
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # Requests carry the CSV upload; leave headroom over MAX_CSV_SIZE_MB for multipart overhead
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024
    JSON_SORT_KEYS = False

    BCRYPT_LOG_ROUNDS = 12

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    @classmethod
    def init_app(cls, app):
        """Initialize application with this config"""
        os.makedirs(app.config['CSV_UPLOAD_FOLDER'], exist_ok=True)


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        Config.SQLALCHEMY_DATABASE_URI

    # Development: log SMS instead of sending, never hit SMTP
    SMS_TRANSPORT = os.environ.get('SMS_TRANSPORT', 'log')
    MAIL_SUPPRESS_SEND = True

    BCRYPT_LOG_ROUNDS = 10
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    """Testing environment configuration"""
    TESTING = True
    DEBUG = True

    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # Disable login requirement for testing
    LOGIN_DISABLED = True

    CELERY_BROKER_URL = 'redis://localhost:6379/1'
    CELERY_RESULT_BACKEND = 'redis://localhost:6379/1'

    SMS_TRANSPORT = 'log'
    MAIL_SUPPRESS_SEND = True
    BULK_RETRY_DELAY_SECONDS = 0

    # Fast bcrypt rounds for testing
    BCRYPT_LOG_ROUNDS = 4

    @classmethod
    def init_app(cls, app):
        """Testing-specific initialization"""
        import tempfile
        upload_dir = os.path.join(tempfile.gettempdir(), 'coop_test_uploads')
        app.config['CSV_UPLOAD_FOLDER'] = upload_dir
        os.makedirs(upload_dir, exist_ok=True)


class ProductionConfig(Config):
    """Production environment configuration"""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')

    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_NAME = 'coop_session'

    BCRYPT_LOG_ROUNDS = 14

    CELERY_BROKER_URL = os.environ.get('REDIS_URL', '')
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL', '')

    # If using rediss:// (SSL), append required parameters
    if CELERY_BROKER_URL.startswith('rediss://') and 'ssl_cert_reqs' not in CELERY_BROKER_URL:
        separator = '&' if '?' in CELERY_BROKER_URL else '?'
        CELERY_BROKER_URL += f"{separator}ssl_cert_reqs=CERT_NONE"
        CELERY_RESULT_BACKEND += f"{separator}ssl_cert_reqs=CERT_NONE"

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization"""
        cls.validate_required_config()
        Config.init_app(app)

        import logging
        from logging.handlers import SysLogHandler
        syslog_handler = SysLogHandler()
        syslog_handler.setLevel(logging.WARNING)
        app.logger.addHandler(syslog_handler)


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type[Config]:
    """Get configuration class based on environment"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    return config.get(config_name, DevelopmentConfig)
