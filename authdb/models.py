import uuid
from sqlalchemy import (
    Boolean, Column, DateTime, FetchedValue, ForeignKey, Index, Integer, String, Text, Uuid, func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _id_column():
    return Column(Uuid, primary_key=True, default=uuid.uuid4)


def _person_fk():
    return Column(Uuid, ForeignKey('person.id', ondelete='CASCADE'), nullable=False)


def _created_at(name='created_at'):
    return Column(name, DateTime(timezone=True), nullable=False, server_default=func.now())


def _updated_at():
    # Maintained by the update_updated_at_column trigger, never by the application
    return Column(DateTime(timezone=True), nullable=False, server_default=func.now(),
                  server_onupdate=FetchedValue())


def _children(model):
    return relationship(model, back_populates='person', cascade='all, delete-orphan', passive_deletes=True)


# --- 1. PERSON (user account) ---
class Person(Base):
    __tablename__ = 'person'

    id = _id_column()

    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)

    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    avatar_url = Column(Text, nullable=True)

    email_verified = Column(Boolean, nullable=False, default=False)
    email_verified_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    is_2fa_enabled = Column(Boolean, nullable=False, default=False)
    two_fa_secret = Column(String(255), nullable=True)

    failed_login_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    created_at = _created_at()
    updated_at = _updated_at()
    # Soft delete
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    refresh_tokens = _children('RefreshToken')
    password_reset_tokens = _children('PasswordResetToken')
    email_verification_tokens = _children('EmailVerificationToken')
    oauth_providers = _children('OAuthProvider')
    password_history = _children('PasswordHistory')
    two_fa_backup_codes = _children('TwoFaBackupCode')

    __table_args__ = (Index('idx_person_email', 'email'),)


# --- 2. REFRESH TOKENS ---
class RefreshToken(Base):
    __tablename__ = 'refresh_token'

    id = _id_column()
    person_id = _person_fk()
    token_hash = Column(String(255), unique=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    device_name = Column(String(255), nullable=True)
    device_type = Column(String(50), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)

    is_revoked = Column(Boolean, nullable=False, default=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = _created_at()

    person = relationship('Person', back_populates='refresh_tokens')

    __table_args__ = (
        Index('idx_refresh_token_person_id', 'person_id'),
        Index('idx_refresh_token_expires_at', 'expires_at'),
    )


# --- 3. PASSWORD RESET ---
class PasswordResetToken(Base):
    __tablename__ = 'password_reset_token'

    id = _id_column()
    person_id = _person_fk()
    token_hash = Column(String(255), unique=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = _created_at()

    person = relationship('Person', back_populates='password_reset_tokens')

    __table_args__ = (Index('idx_password_reset_token_person_id', 'person_id'),)


# --- 4. EMAIL VERIFICATION ---
class EmailVerificationToken(Base):
    __tablename__ = 'email_verification_token'

    id = _id_column()
    person_id = _person_fk()
    token_hash = Column(String(255), unique=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = _created_at()

    person = relationship('Person', back_populates='email_verification_tokens')

    __table_args__ = (Index('idx_email_verification_token_person_id', 'person_id'),)


# --- 5. OAUTH ---
class OAuthProvider(Base):
    __tablename__ = 'oauth_provider'

    id = _id_column()
    person_id = _person_fk()
    provider = Column(String(50), nullable=False)            # google, github, ...
    provider_user_id = Column(String(255), nullable=False)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = _created_at()
    updated_at = _updated_at()

    person = relationship('Person', back_populates='oauth_providers')

    __table_args__ = (
        Index('idx_oauth_provider_user', 'provider', 'provider_user_id', unique=True),
        Index('idx_oauth_provider_person_id', 'person_id'),
    )


# --- 6. PASSWORD HISTORY ---
class PasswordHistory(Base):
    __tablename__ = 'password_history'

    id = _id_column()
    person_id = _person_fk()
    password_hash = Column(String(255), nullable=False)
    created_at = _created_at()

    person = relationship('Person', back_populates='password_history')

    __table_args__ = (Index('idx_password_history_person_id', 'person_id'),)


# --- 7. 2FA BACKUP CODES ---
class TwoFaBackupCode(Base):
    __tablename__ = 'two_fa_backup_code'

    id = _id_column()
    person_id = _person_fk()
    code_hash = Column(String(255), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = _created_at()

    person = relationship('Person', back_populates='two_fa_backup_codes')

    __table_args__ = (Index('idx_two_fa_backup_code_person_id', 'person_id'),)


# --- 8. LOGIN ATTEMPTS (no FK: attempts for unknown emails are kept too) ---
class LoginAttempt(Base):
    __tablename__ = 'login_attempt'

    id = _id_column()
    email = Column(String(255), nullable=False)
    ip_address = Column(String(45), nullable=False)
    user_agent = Column(Text, nullable=True)
    success = Column(Boolean, nullable=False)
    failure_reason = Column(Text, nullable=True)
    attempted_at = _created_at('attempted_at')

    __table_args__ = (
        Index('idx_login_attempt_email_time', 'email', 'attempted_at'),
        Index('idx_login_attempt_ip_time', 'ip_address', 'attempted_at'),
    )


TABLES = {mapper.class_.__tablename__: mapper.class_ for mapper in Base.registry.mappers}
