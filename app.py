# app.py

from flask import Flask, g, request, jsonify
from config import get_config
from extensions import db, login_manager, bcrypt, mail
import uuid
import structlog
from sqlalchemy import event, text
from werkzeug.middleware.proxy_fix import ProxyFix
from logging_config import setup_logging, get_logger

# Configure logging as early as possible
setup_logging(app_name="coop-member-import", log_level="INFO")
logger = get_logger(__name__)


def create_app(config_name=None, test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)

    # Initialize app with config
    config_class.init_app(app)

    if test_config:
        app.config.update(test_config)

    setup_logging(app_name="coop-member-import", log_level=app.config.get('LOG_LEVEL', 'INFO'))

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)
    bcrypt.init_app(app)
    mail.init_app(app)
    login_manager.init_app(app)

    from coop_database import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    with app.app_context():
        if db.engine.dialect.name == 'sqlite':
            _enable_sqlite_savepoints(db.engine)

    from services.registry import ServiceRegistry
    registry = ServiceRegistry()

    # db.session is scoped per app context, so one handle serves every request
    registry.register_factory('db_session', lambda: db.session)

    # Repositories
    registry.register_factory('user_repository', _create_user_repository, dependencies=['db_session'])
    registry.register_factory('import_operation_repository', _create_import_operation_repository,
                              dependencies=['db_session'])
    registry.register_factory('activity_repository', _create_activity_repository, dependencies=['db_session'])

    # Adapters
    registry.register_factory('password', lambda: _create_password_service(app.config))
    registry.register_factory('sms_transport', lambda: _create_sms_transport(app.config))
    registry.register_factory('email_service', lambda: _create_email_service(app.config))
    registry.register_factory(
        'sms_channel',
        lambda sms_transport: _create_sms_channel(sms_transport, app.config),
        dependencies=['sms_transport']
    )
    registry.register_factory(
        'email_channel',
        lambda email_service: _create_email_channel(email_service, app.config),
        dependencies=['email_service']
    )

    # Services
    registry.register_factory('audit_log', _create_audit_log_service, dependencies=['activity_repository'])
    registry.register_factory(
        'import_error',
        lambda audit_log, import_operation_repository, user_repository: _create_import_error_service(
            audit_log, import_operation_repository, user_repository, app.config
        ),
        dependencies=['audit_log', 'import_operation_repository', 'user_repository']
    )
    registry.register_factory(
        'notification',
        _create_notification_service,
        dependencies=['user_repository', 'import_operation_repository', 'audit_log', 'import_error',
                      'sms_channel', 'email_channel']
    )
    registry.register_factory(
        'bulk_account',
        lambda user_repository, import_operation_repository, audit_log, import_error, password, notification:
            _create_bulk_account_service(user_repository, import_operation_repository, audit_log, import_error,
                                         password, notification, app.config),
        dependencies=['user_repository', 'import_operation_repository', 'audit_log', 'import_error',
                      'password', 'notification']
    )
    registry.register_factory(
        'notification_retry',
        lambda user_repository, audit_log, import_error, password, notification:
            _create_notification_retry_service(user_repository, audit_log, import_error, password,
                                               notification, app.config),
        dependencies=['user_repository', 'audit_log', 'import_error', 'password', 'notification']
    )
    registry.register_factory(
        'resend_invitation',
        _create_resend_invitation_service,
        dependencies=['user_repository', 'audit_log', 'password', 'notification']
    )
    registry.register_factory(
        'import_recovery',
        _create_import_recovery_service,
        dependencies=['import_operation_repository', 'user_repository', 'audit_log', 'import_error',
                      'password', 'notification']
    )
    registry.register_factory(
        'member_query',
        _create_member_query_service,
        dependencies=['user_repository', 'import_operation_repository']
    )
    registry.register_factory(
        'member_activation',
        _create_member_activation_service,
        dependencies=['user_repository', 'audit_log', 'password']
    )
    registry.register_factory('csv_validation', _create_csv_validation_service)
    registry.register_factory(
        'csv_import',
        lambda csv_validation, bulk_account, import_error: _create_csv_import_service(
            csv_validation, bulk_account, import_error, app.config
        ),
        dependencies=['csv_validation', 'bulk_account', 'import_error']
    )

    errors = registry.validate_dependencies()
    if errors:
        for error in errors:
            logger.error("Service registry misconfigured", error=error)
        raise RuntimeError(f"Service registry misconfigured: {errors}")

    # Attach registry to app
    app.services = registry

    # Add request tracking middleware
    @app.before_request
    def before_request():
        g.request_id = str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=g.request_id)
        logger.info("Request started", method=request.method, path=request.path)

    @app.after_request
    def after_request(response):
        logger.info("Request completed",
                    request_id=getattr(g, 'request_id', None),
                    status_code=response.status_code)
        return response

    @app.errorhandler(404)
    def not_found_error(error):
        logger.warning("Resource not found", path=request.path)
        return jsonify({'success': False, 'error': {
            'code': 'NOT_FOUND', 'message': 'Resource not found', 'details': {}
        }}), 404

    # Health check endpoint - no auth required
    @app.route('/health')
    def health_check():
        health_status = {
            'status': 'healthy',
            'service': 'coop-member-import'
        }

        try:
            db.session.execute(text('SELECT 1'))
            health_status['database'] = 'connected'
        except Exception as e:
            health_status['database'] = 'error'
            health_status['status'] = 'degraded'
            logger.error("Health check database error", error=str(e))

        return jsonify(health_status), 200 if health_status['status'] == 'healthy' else 503

    from routes.import_routes import imports_bp
    from routes.auth import auth_bp
    app.register_blueprint(imports_bp)
    app.register_blueprint(auth_bp)

    # Register CLI commands
    from scripts import commands
    commands.init_app(app)

    with app.app_context():
        import coop_database  # noqa: F401  registers models on db.metadata
        db.create_all()

    return app


def _enable_sqlite_savepoints(engine):
    """
    pysqlite starts transactions lazily and breaks SAVEPOINT; take over BEGIN ourselves.
    Must run before the engine's first connection.
    """
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


# Service Factory Functions
# These are only called when the service is first requested

def _create_user_repository(db_session):
    from repositories.user_repository import UserRepository
    return UserRepository(db_session)


def _create_import_operation_repository(db_session):
    from repositories.import_operation_repository import ImportOperationRepository
    return ImportOperationRepository(db_session)


def _create_activity_repository(db_session):
    from repositories.activity_repository import ActivityRepository
    return ActivityRepository(db_session)


def _create_password_service(config):
    from services.temporary_password_service import TemporaryPasswordService
    return TemporaryPasswordService(
        bcrypt,
        length=config.get('TEMP_PASSWORD_LENGTH', 8),
        ttl_hours=config.get('TEMP_PASSWORD_TTL_HOURS', 24),
    )


def _create_sms_transport(config):
    """OpenPhone in production, a logging stub when SMS_TRANSPORT=log"""
    from services.openphone_service import OpenPhoneService, LoggingSmsTransport
    if config.get('SMS_TRANSPORT') == 'log':
        logger.info("SMS transport set to log only")
        return LoggingSmsTransport()
    return OpenPhoneService(
        api_key=config.get('OPENPHONE_API_KEY'),
        phone_number_id=config.get('OPENPHONE_PHONE_NUMBER_ID'),
    )


def _create_email_service(config):
    from services.email_service import EmailService, EmailConfig
    return EmailService(mail, EmailConfig.from_app_config(config))


def _create_sms_channel(sms_transport, config):
    from services.notification_channels import SMSChannel
    return SMSChannel(
        sms_transport,
        cooperative_name=config.get('COOPERATIVE_NAME'),
        cooperative_phone=config.get('COOPERATIVE_PHONE'),
        ttl_hours=config.get('TEMP_PASSWORD_TTL_HOURS', 24),
    )


def _create_email_channel(email_service, config):
    from services.notification_channels import EmailChannel
    return EmailChannel(
        email_service,
        frontend_url=config.get('FRONTEND_URL'),
        cooperative_name=config.get('COOPERATIVE_NAME'),
        cooperative_phone=config.get('COOPERATIVE_PHONE'),
        ttl_hours=config.get('TEMP_PASSWORD_TTL_HOURS', 24),
    )


def _create_audit_log_service(activity_repository):
    from services.audit_log_service import AuditLogService
    return AuditLogService(activity_repository)


def _create_import_error_service(audit_log, import_operation_repository, user_repository, config):
    from services.import_error_service import ImportErrorService
    return ImportErrorService(
        audit_log,
        import_operation_repository,
        user_repository,
        max_csv_size_mb=config.get('MAX_CSV_SIZE_MB', 10),
    )


def _create_notification_service(user_repository, import_operation_repository, audit_log, import_error,
                                 sms_channel, email_channel):
    from services.notification_service import NotificationService
    return NotificationService(
        user_repository=user_repository,
        import_operation_repository=import_operation_repository,
        audit_log=audit_log,
        error_service=import_error,
        sms_channel=sms_channel,
        email_channel=email_channel,
    )


def _create_bulk_account_service(user_repository, import_operation_repository, audit_log, import_error,
                                 password, notification, config):
    from services.bulk_account_service import BulkAccountService
    return BulkAccountService(
        user_repository=user_repository,
        import_operation_repository=import_operation_repository,
        audit_log=audit_log,
        error_service=import_error,
        password_service=password,
        notification_service=notification,
        placeholder_email_domain=config.get('PLACEHOLDER_EMAIL_DOMAIN', 'members.invalid'),
    )


def _create_notification_retry_service(user_repository, audit_log, import_error, password, notification, config):
    from services.notification_retry_service import NotificationRetryService, RetryPolicy
    return NotificationRetryService(
        user_repository=user_repository,
        audit_log=audit_log,
        error_service=import_error,
        password_service=password,
        notification_service=notification,
        policy=RetryPolicy.from_config(config),
        bulk_delay_seconds=config.get('BULK_RETRY_DELAY_SECONDS', 0.1),
    )


def _create_resend_invitation_service(user_repository, audit_log, password, notification):
    from services.resend_invitation_service import ResendInvitationService
    return ResendInvitationService(user_repository, audit_log, password, notification)


def _create_import_recovery_service(import_operation_repository, user_repository, audit_log, import_error,
                                   password, notification):
    from services.import_recovery_service import ImportRecoveryService
    return ImportRecoveryService(
        import_operation_repository=import_operation_repository,
        user_repository=user_repository,
        audit_log=audit_log,
        error_service=import_error,
        password_service=password,
        notification_service=notification,
    )


def _create_member_query_service(user_repository, import_operation_repository):
    from services.member_query_service import MemberQueryService
    return MemberQueryService(user_repository, import_operation_repository)


def _create_member_activation_service(user_repository, audit_log, password):
    from services.member_activation_service import MemberActivationService
    return MemberActivationService(user_repository, audit_log, password)


def _create_csv_validation_service():
    from services.csv_validation_service import CsvValidationService
    return CsvValidationService()


def _create_csv_import_service(csv_validation, bulk_account, import_error, config):
    from services.csv_import_service import CsvImportService
    return CsvImportService(
        validator=csv_validation,
        bulk_account_service=bulk_account,
        error_service=import_error,
        upload_folder=config['CSV_UPLOAD_FOLDER'],
        max_size_mb=config.get('MAX_CSV_SIZE_MB', 10),
        preview_row_limit=config.get('PREVIEW_ROW_LIMIT', 10),
    )


if __name__ == '__main__':
    app = create_app()
    app.run(debug=True)
