import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# 在导入配置模块前加载 .env
load_dotenv()

from app.api.v1 import auth, dashboard, documents, internal, manuscripts, reviews, users  # noqa: E402
from app.api.v1.admin import users as admin_users  # noqa: E402
from app.core.config import AppConfig, PortalConfig  # noqa: E402
from app.core.middleware import RequestContextMiddleware, register_exception_handlers  # noqa: E402
from app.core.sentry_init import init_sentry  # noqa: E402

logger = logging.getLogger("portal")

API_PREFIX = "/api/v1"

ROUTERS = (
    auth.router,
    users.router,
    dashboard.router,
    manuscripts.router,
    reviews.router,
    documents.router,
    admin_users.router,
    internal.router,
)


def _init_error_reporting() -> bool:
    # 中文注释: Sentry 初始化失败只记日志，不阻塞启动
    try:
        enabled = init_sentry()
    except Exception as e:
        logger.warning("[sentry] init failed (ignored): %s", e)
        return False
    if enabled:
        logger.info("[sentry] enabled")
    return enabled


def create_app(app_config: AppConfig | None = None, portal_config: PortalConfig | None = None) -> FastAPI:
    app_config = app_config or AppConfig.from_env()
    portal_config = portal_config or PortalConfig.from_env()

    application = FastAPI(
        title=f"{portal_config.portal_name} API",
        description="Manuscript submission and peer-review backend",
        version="1.0.0",
    )

    # 中间件按添加的逆序执行：异常兜底在内层，CORS 在最外层
    application.add_middleware(RequestContextMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=list(app_config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(application)

    for router in ROUTERS:
        application.include_router(router, prefix=API_PREFIX)

    @application.get("/")
    async def root():
        return {"message": f"{portal_config.portal_name} API is running", "docs": "/docs"}

    return application


_init_error_reporting()
app = create_app()
