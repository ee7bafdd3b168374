"""Database-enforced behaviour of the migrated schema, seen through the models."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import delete, func, insert, inspect, select, update
from sqlalchemy.exc import IntegrityError

from authdb.models import (
    TABLES, Base, EmailVerificationToken, LoginAttempt, OAuthProvider, PasswordHistory, PasswordResetToken,
    Person, RefreshToken, TwoFaBackupCode,
)

CHILD_MODELS = [
    RefreshToken, PasswordResetToken, EmailVerificationToken, OAuthProvider, PasswordHistory, TwoFaBackupCode,
]

LONG_AGO = datetime(2000, 1, 1, tzinfo=timezone.utc)


def add_person(session, email="ada@example.com", **kwargs):
    person = Person(email=email, password_hash="hash", **kwargs)
    session.add(person)
    session.flush()
    return person


def expires():
    return datetime.now(timezone.utc) + timedelta(days=7)


def count(conn, model, *where):
    return conn.execute(select(func.count()).select_from(model.__table__).where(*where)).scalar()


def test_tables_registry():
    assert set(TABLES) == {
        "person", "refresh_token", "password_reset_token", "email_verification_token",
        "oauth_provider", "password_history", "two_fa_backup_code", "login_attempt",
    }
    assert TABLES["person"] is Person


def test_migrated_schema_matches_models(migrated):
    with migrated.connection() as conn:
        insp = inspect(conn)
        for name, table in Base.metadata.tables.items():
            db_columns = {c["name"]: c["nullable"] for c in insp.get_columns(name)}
            assert db_columns == {c.name: c.nullable for c in table.columns}, name

            db_indexes = {i["name"] for i in insp.get_indexes(name)}
            assert db_indexes == {i.name for i in table.indexes}, name


def test_person_defaults(migrated):
    with migrated.session() as s:
        person = add_person(s)
        s.commit()

        assert isinstance(person.id, uuid.UUID)
        assert person.email_verified is False
        assert person.is_active is True
        assert person.is_2fa_enabled is False
        assert person.failed_login_attempts == 0
        assert person.created_at is not None
        assert person.updated_at is not None
        assert person.deleted_at is None


class TestCascade:

    def _populate(self, database):
        with database.session() as s:
            ada = add_person(s)
            grace = add_person(s, "grace@example.com")
            s.add_all([
                RefreshToken(person_id=ada.id, token_hash="rt-ada", expires_at=expires()),
                PasswordResetToken(person_id=ada.id, token_hash="prt-ada", expires_at=expires()),
                EmailVerificationToken(person_id=ada.id, token_hash="evt-ada", expires_at=expires()),
                OAuthProvider(person_id=ada.id, provider="github", provider_user_id="1"),
                PasswordHistory(person_id=ada.id, password_hash="old-hash"),
                TwoFaBackupCode(person_id=ada.id, code_hash="code-1"),
                RefreshToken(person_id=grace.id, token_hash="rt-grace", expires_at=expires()),
                LoginAttempt(email="ada@example.com", ip_address="10.0.0.1", success=False,
                             failure_reason="invalid password"),
            ])
            ada_id, grace_id = ada.id, grace.id
            s.commit()
        return ada_id, grace_id

    def _assert_cascaded(self, database, ada_id, grace_id):
        with database.connection() as conn:
            for model in CHILD_MODELS:
                assert count(conn, model, model.person_id == ada_id) == 0, model.__tablename__
            assert count(conn, RefreshToken, RefreshToken.person_id == grace_id) == 1
            assert count(conn, LoginAttempt) == 1

    def test_core_delete_cascades(self, migrated):
        ada_id, grace_id = self._populate(migrated)

        with migrated.connection() as conn:
            conn.execute(delete(Person).where(Person.id == ada_id))
            conn.commit()

        self._assert_cascaded(migrated, ada_id, grace_id)

    def test_orm_delete_leaves_cascade_to_database(self, migrated):
        ada_id, grace_id = self._populate(migrated)

        with migrated.session() as s:
            s.delete(s.get(Person, ada_id))
            s.commit()

        self._assert_cascaded(migrated, ada_id, grace_id)


class TestConstraints:

    def test_oauth_identity_is_unique(self, migrated):
        with migrated.session() as s:
            ada = add_person(s)
            grace = add_person(s, "grace@example.com")
            s.add(OAuthProvider(person_id=ada.id, provider="github", provider_user_id="42"))
            s.flush()

            s.add(OAuthProvider(person_id=grace.id, provider="github", provider_user_id="42"))
            with pytest.raises(IntegrityError):
                s.flush()

    def test_person_can_link_several_providers(self, migrated):
        with migrated.session() as s:
            ada = add_person(s)
            s.add_all([
                OAuthProvider(person_id=ada.id, provider="github", provider_user_id="42"),
                OAuthProvider(person_id=ada.id, provider="google", provider_user_id="42"),
            ])
            s.commit()

            assert s.scalar(select(func.count()).select_from(OAuthProvider)) == 2

    def test_token_hash_is_unique(self, migrated):
        with migrated.session() as s:
            ada = add_person(s)
            s.add(RefreshToken(person_id=ada.id, token_hash="same", expires_at=expires()))
            s.flush()

            s.add(RefreshToken(person_id=ada.id, token_hash="same", expires_at=expires()))
            with pytest.raises(IntegrityError):
                s.flush()

    def test_email_is_unique(self, migrated):
        with migrated.session() as s:
            add_person(s)
            with pytest.raises(IntegrityError):
                add_person(s)

    def test_owner_is_mandatory(self, migrated):
        with migrated.session() as s:
            s.add(PasswordHistory(password_hash="orphan"))
            with pytest.raises(IntegrityError):
                s.flush()

    def test_owner_must_exist(self, migrated):
        with migrated.session() as s:
            s.add(TwoFaBackupCode(person_id=uuid.uuid4(), code_hash="orphan"))
            with pytest.raises(IntegrityError):
                s.flush()

    def test_login_attempt_needs_no_person(self, migrated):
        with migrated.session() as s:
            s.add(LoginAttempt(email="nobody@example.com", ip_address="::1", success=False))
            s.commit()
            assert s.scalar(select(func.count()).select_from(LoginAttempt)) == 1


class TestUpdatedAtTrigger:

    def test_person_update_advances_updated_at(self, migrated):
        people = Person.__table__
        with migrated.connection() as conn:
            conn.execute(insert(people).values(email="ada@example.com", password_hash="hash", updated_at=LONG_AGO))
            conn.commit()

            conn.execute(update(people).where(people.c.email == "ada@example.com").values(first_name="Ada"))
            conn.commit()

            updated_at = conn.execute(select(people.c.updated_at)).scalar()
        assert updated_at.replace(tzinfo=None) > datetime(2000, 1, 2)

    def test_explicit_updated_at_is_overwritten(self, migrated):
        people = Person.__table__
        with migrated.connection() as conn:
            conn.execute(insert(people).values(email="ada@example.com", password_hash="hash"))
            conn.commit()

            conn.execute(update(people).values(first_name="Ada", updated_at=LONG_AGO))
            conn.commit()

            updated_at = conn.execute(select(people.c.updated_at)).scalar()
        assert updated_at.replace(tzinfo=None) > datetime(2000, 1, 2)

    def test_oauth_provider_update_advances_updated_at(self, migrated):
        with migrated.session() as s:
            ada = add_person(s)
            link = OAuthProvider(person_id=ada.id, provider="github", provider_user_id="1", updated_at=LONG_AGO)
            s.add(link)
            s.commit()

            link.access_token = "fresh-token"
            s.commit()

            assert link.updated_at.replace(tzinfo=None) > datetime(2000, 1, 2)

    def test_soft_delete_keeps_row(self, migrated):
        with migrated.session() as s:
            ada = add_person(s)
            ada.deleted_at = datetime.now(timezone.utc)
            s.commit()

            active = s.scalars(select(Person).where(Person.deleted_at.is_(None))).all()
            assert active == []
            assert s.scalar(select(func.count()).select_from(Person)) == 1
