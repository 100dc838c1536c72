# oauth_provider/main.py
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from loguru import logger

from oauth_provider.api.oauth import router as oauth_router

from oauth_provider.core.config import settings
from oauth_provider.core.errors import OAuthError
from oauth_provider.db.session import engine
from oauth_provider.db.models import Base


@asynccontextmanager
async def lifespan(app: FastAPI):
    # === STARTUP ===
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("OAuth provider ready (db={})", engine.url.render_as_string(hide_password=True))
    yield
    # === SHUTDOWN ===
    await engine.dispose()


async def oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("OAuth {} failed: {} (consumer {})", request.url.path, exc.kind, exc.consumer_key)
    elif exc.status_code == 401:
        logger.warning("OAuth {} rejected: {} (consumer {})", request.url.path, exc.kind, exc.consumer_key)
    else:
        logger.info("OAuth {} refused: {} (consumer {})", request.url.path, exc.kind, exc.consumer_key)

    headers = None
    if exc.status_code == 401:
        headers = {"WWW-Authenticate": f'OAuth realm="{settings.realm}"'}
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.detail},
        headers=headers,
    )


app = FastAPI(title="OAuth 1.0 service provider", lifespan=lifespan)
app.add_exception_handler(OAuthError, oauth_error_handler)

app.include_router(oauth_router, prefix="/oauth", tags=["oauth"])


@app.get("/")
def root():
    return {"ok": True}
