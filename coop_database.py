# coop_database.py

from extensions import db
from utils.datetime_utils import utc_now, ensure_utc, format_utc_iso
from services.enums import ActivationStatus, ImportStatus, UserRole


# --- Member / User account ---
class User(db.Model):
    __tablename__ = 'user'

    id = db.Column(db.Integer, primary_key=True)
    # Externally assigned cooperative member number; immutable once set
    member_id = db.Column(db.String(50), unique=True, nullable=True, index=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    full_name = db.Column(db.String(150), nullable=False)
    phone_number = db.Column(db.String(30), unique=True, nullable=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    # False when email holds a generated placeholder address
    has_real_email = db.Column(db.Boolean, nullable=False, default=True)
    role = db.Column(db.String(20), nullable=False, default=UserRole.MEMBER.value)
    is_active = db.Column(db.Boolean, default=True)

    # Permanent credential. Imported members get a throwaway hash until activation.
    password_hash = db.Column(db.String(256), nullable=False)

    activation_status = db.Column(
        db.String(30), nullable=False, default=ActivationStatus.ACTIVATED.value, index=True
    )
    activation_method = db.Column(db.String(10), nullable=True)  # 'sms' or 'email'
    temporary_password_hash = db.Column(db.String(256), nullable=True)
    temporary_password_expires = db.Column(db.DateTime, nullable=True)
    activation_token_hash = db.Column(db.String(64), nullable=True, index=True)

    import_id = db.Column(db.Integer, db.ForeignKey('import_operation.id'), nullable=True, index=True)

    sms_sent_at = db.Column(db.DateTime, nullable=True)
    email_sent_at = db.Column(db.DateTime, nullable=True)
    activated_at = db.Column(db.DateTime, nullable=True)
    last_password_change_at = db.Column(db.DateTime, nullable=True)

    # Retry bookkeeping, independent per channel
    sms_retry_count = db.Column(db.Integer, nullable=False, default=0)
    sms_last_retry_at = db.Column(db.DateTime, nullable=True)
    email_retry_count = db.Column(db.Integer, nullable=False, default=0)
    email_last_retry_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=utc_now)
    last_login = db.Column(db.DateTime)

    import_operation = db.relationship('ImportOperation', backref=db.backref('members', lazy='dynamic'))

    def __repr__(self):
        return f'<User {self.id}: {self.member_id or self.username} ({self.activation_status})>'

    # Flask-Login required properties
    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    def get_id(self):
        return str(self.id)

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN.value

    @property
    def status(self) -> ActivationStatus:
        return ActivationStatus(self.activation_status)

    @property
    def is_imported(self) -> bool:
        return self.import_id is not None

    def is_temporary_password_expired(self, now=None) -> bool:
        if self.temporary_password_expires is None:
            return True
        return ensure_utc(self.temporary_password_expires) <= (now or utc_now())

    def to_dict(self) -> dict:
        """Full member record for detail views. Credential hashes are never serialized."""
        return {
            'id': self.id,
            'member_id': self.member_id,
            'username': self.username,
            'full_name': self.full_name,
            'phone_number': self.phone_number,
            'email': self.email,
            'has_real_email': self.has_real_email,
            'role': self.role,
            'activation_status': self.activation_status,
            'activation_method': self.activation_method,
            'has_temporary_password': self.temporary_password_hash is not None,
            'temporary_password_expires': format_utc_iso(self.temporary_password_expires),
            'import_id': self.import_id,
            'sms_sent_at': format_utc_iso(self.sms_sent_at),
            'email_sent_at': format_utc_iso(self.email_sent_at),
            'activated_at': format_utc_iso(self.activated_at),
            'last_password_change_at': format_utc_iso(self.last_password_change_at),
            'sms_retry_count': self.sms_retry_count or 0,
            'sms_last_retry_at': format_utc_iso(self.sms_last_retry_at),
            'email_retry_count': self.email_retry_count or 0,
            'email_last_retry_at': format_utc_iso(self.email_last_retry_at),
            'created_at': format_utc_iso(self.created_at),
            'updated_at': format_utc_iso(self.updated_at),
        }

    def to_list_item(self) -> dict:
        """Compact record for list views (masked by the caller)"""
        return {
            'id': self.id,
            'member_id': self.member_id,
            'full_name': self.full_name,
            'phone_number': self.phone_number,
            'email': self.email if self.has_real_email else None,
            'activation_status': self.activation_status,
            'sms_sent_at': format_utc_iso(self.sms_sent_at),
            'email_sent_at': format_utc_iso(self.email_sent_at),
            'import_id': self.import_id,
            'created_at': format_utc_iso(self.created_at),
        }


# --- Bulk import tracking ---
class ImportOperation(db.Model):
    """One record per CSV confirm, and one per retry of a failed import"""
    __tablename__ = 'import_operation'

    id = db.Column(db.Integer, primary_key=True)
    admin_id = db.Column(db.Integer, nullable=True)
    admin_name = db.Column(db.String(150), nullable=True)
    csv_file_name = db.Column(db.String(255), nullable=False)

    total_rows = db.Column(db.Integer, nullable=False, default=0)
    successful_imports = db.Column(db.Integer, nullable=False, default=0)
    failed_imports = db.Column(db.Integer, nullable=False, default=0)
    skipped_rows = db.Column(db.Integer, nullable=False, default=0)
    sms_sent_count = db.Column(db.Integer, nullable=False, default=0)
    sms_failed_count = db.Column(db.Integer, nullable=False, default=0)
    email_sent_count = db.Column(db.Integer, nullable=False, default=0)
    email_failed_count = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(20), nullable=False, default=ImportStatus.PENDING.value, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    errors = db.relationship(
        'ImportOperationError',
        backref='import_operation',
        order_by='ImportOperationError.id',
        lazy=True,
        cascade='all, delete-orphan'
    )

    def __repr__(self):
        return f'<ImportOperation {self.id}: {self.csv_file_name} ({self.status})>'

    def to_dict(self, include_errors: bool = True) -> dict:
        data = {
            'id': self.id,
            'admin_id': self.admin_id,
            'admin_name': self.admin_name,
            'csv_file_name': self.csv_file_name,
            'total_rows': self.total_rows,
            'successful_imports': self.successful_imports,
            'failed_imports': self.failed_imports,
            'skipped_rows': self.skipped_rows,
            'sms_sent_count': self.sms_sent_count,
            'sms_failed_count': self.sms_failed_count,
            'email_sent_count': self.email_sent_count,
            'email_failed_count': self.email_failed_count,
            'status': self.status,
            'created_at': format_utc_iso(self.created_at),
            'completed_at': format_utc_iso(self.completed_at),
        }
        if include_errors:
            data['import_errors'] = [error.to_dict() for error in self.errors]
        return data


class ImportOperationError(db.Model):
    """Ordered entry in an import's error list. Rows are only ever appended."""
    __tablename__ = 'import_operation_error'

    id = db.Column(db.Integer, primary_key=True)
    import_id = db.Column(
        db.Integer, db.ForeignKey('import_operation.id', ondelete='CASCADE'), nullable=False, index=True
    )
    row_number = db.Column(db.Integer, nullable=True)
    member_id = db.Column(db.String(50), nullable=True)
    error_code = db.Column(db.String(50), nullable=False)
    error_message = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict:
        return {
            'row_number': self.row_number,
            'member_id': self.member_id,
            'error_code': self.error_code,
            'error_message': self.error_message,
        }


# --- Audit trail ---
class Activity(db.Model):
    """Append-only audit record"""
    __tablename__ = 'activity'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, nullable=True, index=True)
    action = db.Column(db.String(50), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)
    activity_metadata = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)

    def __repr__(self):
        return f'<Activity {self.id}: {self.action}>'

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'actor_id': self.actor_id,
            'action': self.action,
            'description': self.description,
            'metadata': self.activity_metadata or {},
            'created_at': format_utc_iso(self.created_at),
        }
