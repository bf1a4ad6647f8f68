import os
import tempfile

# settings and the module-level engine are built at import time
_TMP_DIR = tempfile.mkdtemp(prefix="switchboard-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP_DIR}/app.db")
os.environ.setdefault("ENV", "test")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from jose import jwt  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import switchboard.db.models  # noqa: F401, E402
from switchboard.auth.models import User  # noqa: E402
from switchboard.auth.security import JWT_ALG, JWT_SECRET  # noqa: E402
from switchboard.channels.models import TenantChannelAccount  # noqa: E402
from switchboard.db.base import Base  # noqa: E402
from switchboard.db.session import use_immediate_transactions  # noqa: E402
from switchboard.operators.models import HumanAgent  # noqa: E402
from switchboard.tenants.models import Tenant, TenantAgentBinding  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'switchboard.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    use_immediate_transactions(eng)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def tenant(db):
    now = datetime.utcnow()
    row = Tenant(id="t_acme", name="Acme")
    db.add(row)
    db.add(
        TenantAgentBinding(
            id="tab_acme",
            tenant_id="t_acme",
            agent_id="agent_acme",
            agent_name="Acme Voice",
            channel="voice-inbound",
            is_active=True,
            created_at=now,
            updated_at=now,
        )
    )
    db.add(
        TenantChannelAccount(
            id="ch_acme",
            tenant_id="t_acme",
            channel_type="whatsapp",
            name="Acme WhatsApp",
            verify_token="verify-acme",
            app_secret="meta-secret",
            phone_number_id="pn_acme",
            is_active=True,
            created_at=now,
            updated_at=now,
        )
    )
    db.commit()
    return row


def auth_headers(user: User) -> dict:
    token = jwt.encode(
        {
            "sub": user.id,
            "tenant_id": user.tenant_id,
            "typ": "access",
            "exp": datetime.utcnow() + timedelta(minutes=15),
        },
        JWT_SECRET,
        algorithm=JWT_ALG,
    )
    return {"Authorization": f"Bearer {token}"}


def add_user(db, *, user_id: str, tenant_id: str = "t_acme", role: str = "support", name: str | None = None) -> User:
    user = User(id=user_id, tenant_id=tenant_id, email=f"{user_id}@acme.test", name=name, role=role)
    db.add(user)
    db.commit()
    return user


def add_agent(
    db,
    *,
    agent_id: str,
    tenant_id: str = "t_acme",
    user_id: str | None = None,
    name: str | None = None,
    status: str = "available",
    max_sessions: int = 1,
    active_sessions: int = 0,
) -> HumanAgent:
    agent = HumanAgent(
        id=agent_id,
        tenant_id=tenant_id,
        user_id=user_id or f"u_{agent_id}",
        name=name or agent_id,
        status=status,
        active_sessions=active_sessions,
        max_sessions=max_sessions,
        last_seen_at=datetime.utcnow(),
        created_at=datetime.utcnow(),
    )
    db.add(agent)
    db.commit()
    return agent


@pytest.fixture
def client(session_factory):
    from fastapi.testclient import TestClient

    from switchboard.db.session import get_db
    from switchboard.main import app

    def _get_test_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_test_db
    try:
        # no context manager: startup would run init_db against the default engine
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def dispatched(monkeypatch):
    """Capture background dispatches instead of calling out."""
    calls: list[tuple[str, str, dict]] = []

    async def _capture(tenant_id, event_type, data):
        calls.append((tenant_id, getattr(event_type, "value", event_type), data))

    for module in (
        "switchboard.dispatch.router",
        "switchboard.channels.router",
        "switchboard.handoff.router",
        "switchboard.embed.router",
    ):
        monkeypatch.setattr(f"{module}.dispatch_in_background", _capture)
    return calls
