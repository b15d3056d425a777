from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from simple_request.api import router
from simple_request.core.config import Settings
from simple_request.core.service import SecretService


def create_app(settings: Optional[Settings] = None, service: Optional[SecretService] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # The service (and its cache eviction task) lives exactly as long as the app.
        owned = service is None
        app.state.secret_service = service or SecretService.from_settings(settings or Settings.from_env())
        try:
            yield
        finally:
            if owned:
                app.state.secret_service.close()

    app = FastAPI(title="Simple Request Secret Core", lifespan=lifespan)

    # The desktop frontend runs on a different origin in development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    @app.get("/")
    def health_check():
        return {"status": "Simple Request secret core running"}

    return app


app = create_app()
