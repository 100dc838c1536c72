# tests/conftest.py
import asyncio
import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from loguru import logger

# --- Asegurar que podemos importar 'oauth_provider' desde la raíz del repo ---
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def _generate_ephemeral_keys() -> tuple[str, str]:
    """Par RSA 2048 en PEM (privada, pública) para el consumidor RSA-SHA1."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem_priv = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    pem_pub = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return pem_priv.decode(), pem_pub.decode()


def _prepare_test_env() -> None:
    tmp = (ROOT / ".pytest_tmp").absolute()
    tmp.mkdir(exist_ok=True)

    # BD SQLite temporal para pruebas, limpia en cada sesión
    db_file = tmp / "test.sqlite3"
    if db_file.exists():
        db_file.unlink()
    os.environ["DB_URL"] = f"sqlite+aiosqlite:///{db_file.as_posix()}"

    # Variables mínimas para que Settings funcione sin .env
    os.environ["OAUTH_TIMESTAMP_TOLERANCE"] = "300"
    os.environ["OAUTH_ACCESS_TOKEN_TTL"] = "3600"
    os.environ["OAUTH_REMOTE_USER_HEADER"] = "X-Remote-User"
    os.environ.pop("OAUTH_PUBLIC_BASE_URL", None)


# Settings se instancia al importar oauth_provider: el entorno va antes
_prepare_test_env()

from oauth_provider.core.config import settings
from oauth_provider.db.models import Base, Consumer
from oauth_helpers import CONSUMER_URL, OAuthTester

RSA_PRIVATE_PEM, RSA_PUBLIC_PEM = _generate_ephemeral_keys()


def make_consumers() -> list[Consumer]:
    return [
        Consumer(key="foo", secret="bar", name="Test Consumer", url=CONSUMER_URL,
                 rsa_public_key=RSA_PUBLIC_PEM),
        Consumer(key="nourl", secret="nourl-secret", name="Nowhere App"),
    ]


async def _seed_consumers() -> None:
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    engine = create_async_engine(settings.db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with async_sessionmaker(engine, expire_on_commit=False)() as s:
        s.add_all(make_consumers())
        await s.commit()
    await engine.dispose()


@pytest.fixture(scope="session")
def rsa_private_pem():
    return RSA_PRIVATE_PEM


@pytest.fixture(scope="session")
def rsa_public_pem():
    return RSA_PUBLIC_PEM


@pytest.fixture(scope="session")
def client():
    """
    Cliente de pruebas con entorno efímero:
    - BD sqlite en .pytest_tmp/test.sqlite3
    - consumidores 'foo' (secreto 'bar', con clave RSA) y 'nourl'
    """
    from oauth_provider.main import app
    # Con 'with' forzamos lifespan: crea tablas en startup y cierra engine en shutdown
    with TestClient(app) as c:
        asyncio.run(_seed_consumers())
        yield c


@pytest.fixture
def run_db(tmp_path):
    """
    Ejecuta una corrutina contra una BD nueva. La corrutina recibe la
    ``async_sessionmaker``; todo ocurre dentro del mismo event loop.
    """
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    db_path = (tmp_path / "core.sqlite3").as_posix()

    def _run(body):
        async def _main():
            engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            factory = async_sessionmaker(engine, expire_on_commit=False)
            try:
                return await body(factory)
            finally:
                await engine.dispose()

        return asyncio.run(_main())

    return _run


# --- loguru -> caplog ---
@pytest.fixture
def caplog(caplog):
    handler_id = logger.add(caplog.handler, format="{message}", level=0)
    yield caplog
    logger.remove(handler_id)


# --- Reset de settings después de cada test (autouse) ---
@pytest.fixture(autouse=True)
def _reset_settings_between_tests():
    snapshot = settings.model_dump()
    yield
    for name, value in snapshot.items():
        setattr(settings, name, value)


@pytest.fixture
def oauth(client):
    return OAuthTester(client)
