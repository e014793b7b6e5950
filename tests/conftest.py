# tests/conftest.py
"""
Configuration globale pour les tests pytest
Base SQLite en mémoire, stockage objet local dans tmp_path, surcharges des dépendances FastAPI
"""

import os
import sys

import pytest

# Ajouter le répertoire racine au path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.config import Settings, get_settings
from core.rate_limit import get_rate_limiter
from db.models import Base
from db.session import get_db
from routes.deps import get_object_storage
from services.object_storage import LocalObjectStorage
from services.user_service import UserService

DEFAULT_PASSWORD = "password123"


@pytest.fixture
def engine():
    """Engine SQLite en mémoire partagé entre les sessions (StaticPool)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite://",
        local_storage_dir=str(tmp_path / "objects"),
        storage_backend="local",
        login_rate_limit=1000,
        login_rate_window_seconds=60,
        max_upload_bytes=1024 * 1024,
        max_files_per_quote=5,
        allowed_cad_extensions=["step", "stp", "stl", "dxf", "dwg", "pdf"],
        status_transition_mode="permissive",
    )


@pytest.fixture
def storage(settings):
    return LocalObjectStorage(settings.local_storage_dir)


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    get_rate_limiter().reset_all()
    yield
    get_rate_limiter().reset_all()


@pytest.fixture
def app(session_factory, settings, storage):
    from main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_object_storage] = lambda: storage
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Client de test FastAPI (porte le cookie de session)."""
    return TestClient(app)


# =====================================
# Helpers
# =====================================

def register(client, email, password=DEFAULT_PASSWORD, first_name="Alice", last_name="Martin"):
    return client.post("/api/register", json={
        "email": email,
        "password": password,
        "firstName": first_name,
        "lastName": last_name,
    })


def upload_blob(client, object_id, data=b"ISO-10303-21;\nHEADER;\nENDSEC;\n"):
    return client.put(f"/api/objects/upload/{object_id}", content=data)


def quote_payload(upload_url="/api/objects/upload/abc", **overrides):
    payload = {
        "partName": "Bride de fixation",
        "service": "cnc_machining",
        "quantity": 10,
        "files": [{"name": "part.step", "uploadURL": upload_url, "size": 1024}],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def user_client(app):
    """Client connecté en tant qu'utilisateur standard (a@x.com)."""
    client = TestClient(app)
    response = register(client, "a@x.com")
    assert response.status_code == 200
    return client


@pytest.fixture
def other_client(app):
    """Second utilisateur standard, sans lien avec les devis de user_client."""
    client = TestClient(app)
    response = register(client, "b@x.com", first_name="Bruno", last_name="Petit")
    assert response.status_code == 200
    return client


@pytest.fixture
def admin_client(app, db_session):
    """Client connecté en tant qu'administrateur (promu directement en base)."""
    client = TestClient(app)
    response = register(client, "admin@x.com", first_name="Ada", last_name="Admin")
    assert response.status_code == 200
    users = UserService(db_session)
    users.set_admin(users.get_user_by_email("admin@x.com"), True)
    return client


@pytest.fixture
def created_quote(user_client):
    """Devis créé par user_client avec un fichier STEP téléversé."""
    assert upload_blob(user_client, "abc").status_code == 200
    response = user_client.post("/api/quotes", json=quote_payload())
    assert response.status_code == 200, response.text
    return response.json()
