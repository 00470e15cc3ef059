"""
CareWatch Web Application

FastAPI 應用程式入口點。
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from carewatch.core.errors import NotFound, PermissionDenied, StoreUnavailable
from carewatch.engine.emergency import EmergencyEngine
from carewatch.store import BaseStore, InMemoryStore
from carewatch.web.routes.api import router as api_router
from carewatch.web.routes.realtime import router as realtime_router


logger = logging.getLogger(__name__)


def create_app(store: BaseStore | None = None, engine: EmergencyEngine | None = None) -> FastAPI:
    """建立 FastAPI 應用程式

    Args:
        store: 共享資料儲存（預設為記憶體儲存）
        engine: 緊急狀態引擎（預設以 store 建立）

    Returns:
        FastAPI 應用程式實例
    """
    app = FastAPI(
        title="CareWatch",
        description="穿戴裝置緊急狀態與即時同步服務",
        version="0.1.0",
    )

    store = store if store is not None else InMemoryStore()
    app.state.store = store
    app.state.engine = engine if engine is not None else EmergencyEngine(store)

    # 錯誤對應
    @app.exception_handler(NotFound)
    async def _not_found(_request: Request, exc: NotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(PermissionDenied)
    async def _permission_denied(_request: Request, exc: PermissionDenied) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": str(exc)})

    @app.exception_handler(StoreUnavailable)
    async def _store_unavailable(_request: Request, exc: StoreUnavailable) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def _invalid_value(_request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    # 註冊路由
    app.include_router(api_router)
    app.include_router(realtime_router)

    logger.info(f"CareWatch 應用程式已建立（tenant: {store.tenant}）")

    return app
