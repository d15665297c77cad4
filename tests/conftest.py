import pytest
from werkzeug.security import generate_password_hash

from app.wellness import create_app
from app.wellness.auth import reset_rate_limits
from app.wellness.db import session_scope
from app.wellness.models import Base, User
from app.wellness.modules.companies.models import Company
from app.wellness.rbac import ensure_role

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass-123"
OWNER_EMAIL = "owner@acme.test"
OWNER_PASSWORD = "owner-pass-123"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("MAIL_BACKEND", "memory")
    monkeypatch.setenv("QR_SECRET", "test-qr-secret")
    monkeypatch.setenv("PUBLIC_BASE_URL", "http://wellness.test")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "SMTP_HOST"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        admin = User(
            email=ADMIN_EMAIL,
            password_hash=generate_password_hash(ADMIN_PASSWORD),
            first_name="Ada",
            last_name="Admin",
            is_active=True,
        )
        admin.roles.append(ensure_role(s, "admin"))
        owner = User(
            email=OWNER_EMAIL,
            password_hash=generate_password_hash(OWNER_PASSWORD),
            first_name="Olive",
            last_name="Owner",
            is_active=True,
        )
        owner.roles.append(ensure_role(s, "company"))
        s.add_all([admin, owner])
        s.flush()
        s.add(
            Company(
                name="Acme",
                contact_person_name="Olive Owner",
                email=OWNER_EMAIL,
                phone="5551234567",
                user_id=owner.id,
            )
        )

    reset_rate_limits()
    app.extensions["mail_outbox"] = []
    yield app
    reset_rate_limits()


def login(client, email, password):
    return client.post("/api/auth/login", json={"email": email, "password": password})


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def admin_client(app):
    c = app.test_client()
    r = login(c, ADMIN_EMAIL, ADMIN_PASSWORD)
    assert r.status_code == 200
    return c


@pytest.fixture()
def company_client(app):
    c = app.test_client()
    r = login(c, OWNER_EMAIL, OWNER_PASSWORD)
    assert r.status_code == 200
    return c


@pytest.fixture()
def outbox(app):
    return app.extensions["mail_outbox"]


@pytest.fixture()
def acme_id(app):
    with session_scope(app) as s:
        return s.query(Company).filter(Company.email == OWNER_EMAIL).one().id


@pytest.fixture()
def failing_mail(app):
    """SMTP selected with no host: every send raises MailError."""
    app.config["MAIL_BACKEND"] = "smtp"
    app.config["SMTP_HOST"] = ""
    return app
