from authdb.operations import (
    GENERATED_ID, NOW, Column, CreateExtension, CreateIndex, CreateTable, CreateUpdatedAtFunction,
    CreateUpdatedAtTrigger, DropTable, DropUpdatedAtFunction,
)

ID = Column("id", "uuid", primary_key=True, default=GENERATED_ID)
PERSON_ID = Column("person_id", "uuid", nullable=False, references="person.id", on_delete="cascade")
CREATED_AT = Column("created_at", "timestamp", nullable=False, default=NOW)
UPDATED_AT = Column("updated_at", "timestamp", nullable=False, default=NOW)


def token_hash():
    return Column("token_hash", "varchar(255)", nullable=False, unique=True)


UP = [
    CreateExtension("uuid-ossp"),
    # Trigger function first, the triggers below depend on it
    CreateUpdatedAtFunction(),

    # --- person ---
    CreateTable("person", (
        ID,
        Column("email", "varchar(255)", nullable=False, unique=True),
        Column("password_hash", "varchar(255)", nullable=False),
        Column("first_name", "varchar(100)"),
        Column("last_name", "varchar(100)"),
        Column("avatar_url", "text"),
        Column("email_verified", "boolean", nullable=False, default=False),
        Column("email_verified_at", "timestamp"),
        Column("is_active", "boolean", nullable=False, default=True),
        Column("is_2fa_enabled", "boolean", nullable=False, default=False),
        Column("two_fa_secret", "varchar(255)"),
        Column("failed_login_attempts", "integer", nullable=False, default=0),
        Column("locked_until", "timestamp"),
        Column("last_login_at", "timestamp"),
        CREATED_AT,
        UPDATED_AT,
        Column("deleted_at", "timestamp"),
    )),
    CreateIndex("idx_person_email", "person", ("email",)),

    # --- refresh_token ---
    CreateTable("refresh_token", (
        ID,
        PERSON_ID,
        token_hash(),
        Column("expires_at", "timestamp", nullable=False),
        Column("device_name", "varchar(255)"),
        Column("device_type", "varchar(50)"),
        Column("ip_address", "varchar(45)"),
        Column("user_agent", "text"),
        Column("is_revoked", "boolean", nullable=False, default=False),
        Column("revoked_at", "timestamp"),
        Column("last_used_at", "timestamp"),
        CREATED_AT,
    )),
    CreateIndex("idx_refresh_token_person_id", "refresh_token", ("person_id",)),
    CreateIndex("idx_refresh_token_expires_at", "refresh_token", ("expires_at",)),

    # --- password_reset_token ---
    CreateTable("password_reset_token", (
        ID,
        PERSON_ID,
        token_hash(),
        Column("expires_at", "timestamp", nullable=False),
        Column("used", "boolean", nullable=False, default=False),
        Column("used_at", "timestamp"),
        CREATED_AT,
    )),
    CreateIndex("idx_password_reset_token_person_id", "password_reset_token", ("person_id",)),

    # --- email_verification_token ---
    CreateTable("email_verification_token", (
        ID,
        PERSON_ID,
        token_hash(),
        Column("expires_at", "timestamp", nullable=False),
        Column("verified", "boolean", nullable=False, default=False),
        Column("verified_at", "timestamp"),
        CREATED_AT,
    )),
    CreateIndex("idx_email_verification_token_person_id", "email_verification_token", ("person_id",)),

    # --- oauth_provider ---
    CreateTable("oauth_provider", (
        ID,
        PERSON_ID,
        Column("provider", "varchar(50)", nullable=False),
        Column("provider_user_id", "varchar(255)", nullable=False),
        Column("access_token", "text"),
        Column("refresh_token", "text"),
        Column("token_expires_at", "timestamp"),
        CREATED_AT,
        UPDATED_AT,
    )),
    CreateIndex("idx_oauth_provider_user", "oauth_provider", ("provider", "provider_user_id"), unique=True),
    CreateIndex("idx_oauth_provider_person_id", "oauth_provider", ("person_id",)),

    # --- password_history ---
    CreateTable("password_history", (
        ID,
        PERSON_ID,
        Column("password_hash", "varchar(255)", nullable=False),
        CREATED_AT,
    )),
    CreateIndex("idx_password_history_person_id", "password_history", ("person_id",)),

    # --- two_fa_backup_code ---
    CreateTable("two_fa_backup_code", (
        ID,
        PERSON_ID,
        Column("code_hash", "varchar(255)", nullable=False),
        Column("used", "boolean", nullable=False, default=False),
        Column("used_at", "timestamp"),
        CREATED_AT,
    )),
    CreateIndex("idx_two_fa_backup_code_person_id", "two_fa_backup_code", ("person_id",)),

    # --- login_attempt (no FK to person) ---
    CreateTable("login_attempt", (
        ID,
        Column("email", "varchar(255)", nullable=False),
        Column("ip_address", "varchar(45)", nullable=False),
        Column("user_agent", "text"),
        Column("success", "boolean", nullable=False),
        Column("failure_reason", "text"),
        Column("attempted_at", "timestamp", nullable=False, default=NOW),
    )),
    CreateIndex("idx_login_attempt_email_time", "login_attempt", ("email", "attempted_at")),
    CreateIndex("idx_login_attempt_ip_time", "login_attempt", ("ip_address", "attempted_at")),

    CreateUpdatedAtTrigger("person"),
    CreateUpdatedAtTrigger("oauth_provider"),
]

DOWN = [
    # Reverse dependency order; triggers go with their tables
    DropTable("login_attempt"),
    DropTable("two_fa_backup_code"),
    DropTable("password_history"),
    DropTable("oauth_provider"),
    DropTable("email_verification_token"),
    DropTable("password_reset_token"),
    DropTable("refresh_token"),
    DropTable("person"),
    DropUpdatedAtFunction(),
]
