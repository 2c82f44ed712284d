"""
后台管理API服务主程序
提供登录、令牌刷新、登出、菜单树、权限树和角色API密钥管理的REST API
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from admin_core.config import Settings, get_settings, mask_url
from admin_core.database import AsyncMongoDBClient, AsyncRedisClient
from admin_core.logging import setup_logging, get_logger, FastAPILoggingMiddleware
from admin_core.auth import (
    JWTAuthenticator, PasswordManager, SessionStore, UserManager, RoleManager,
    PermissionManager, MenuManager, RBACAuthorizer, ApiKeyManager, Authenticator,
    AuditEmitter, MongoAuditSink, AuthMiddleware, ApiKeyAuth, User, Role,
    get_current_user, require_permission, register_exception_handlers
)
from admin_core.auth.bootstrap import initialize_default_roles, create_default_admin
from admin_core.auth.middleware import DEFAULT_PUBLIC_PATHS

logger = get_logger("admin_api")


def build_components(database, redis_client: AsyncRedisClient, settings: Settings,
                     audit: AuditEmitter) -> Dict[str, Any]:
    """根据配置组装认证与授权组件"""
    password_manager = PasswordManager(rounds=settings.security.bcrypt_rounds)
    user_manager = UserManager(database, password_manager)
    role_manager = RoleManager(database)
    permission_manager = PermissionManager(database)

    authenticator = Authenticator(
        user_manager=user_manager,
        token_issuer=JWTAuthenticator.from_settings(settings.jwt),
        session_store=SessionStore(redis_client),
        password_manager=password_manager,
        audit=audit,
        session_ttl=settings.jwt.access_token_expire_seconds,
        refresh_ttl=settings.jwt.refresh_token_expire_seconds,
        default_blacklist_ttl=settings.security.default_blacklist_ttl,
        revocation_fail_open=settings.security.revocation_fail_open,
        max_login_attempts=settings.security.login_max_attempts,
        login_window=settings.security.login_window_seconds
    )

    return {
        'user_manager': user_manager,
        'role_manager': role_manager,
        'permission_manager': permission_manager,
        'menu_manager': MenuManager(database, role_manager, settings.security.super_admin_role),
        'rbac': RBACAuthorizer(role_manager, permission_manager, audit, settings.security.super_admin_role),
        'api_key_manager': ApiKeyManager(database, settings.security.api_key_max_attempts),
        'authenticator': authenticator,
        'audit': audit
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    settings: Settings = app.state.settings
    logger.info("后台管理服务启动", extra={'event': 'admin_api_startup'})

    mongo_client = AsyncMongoDBClient.from_settings(settings.mongo)
    if not await mongo_client.connect():
        raise RuntimeError("MongoDB连接失败")
    await mongo_client.ensure_indexes()

    redis_client = AsyncRedisClient.from_settings(settings.redis)
    if not await redis_client.connect():
        logger.warning("Redis连接失败，会话相关操作将不可用", extra={
            'event': 'redis_unavailable',
            'fail_open': settings.security.revocation_fail_open
        })

    database = mongo_client.database
    audit = AuditEmitter(MongoAuditSink(database), settings.audit.queue_size, settings.audit.enabled)
    audit.start()

    for name, component in build_components(database, redis_client, settings, audit).items():
        setattr(app.state, name, component)

    await initialize_default_roles(app.state.role_manager, app.state.permission_manager)
    await create_default_admin(
        app.state.user_manager,
        username=settings.bootstrap.admin_username,
        email=settings.bootstrap.admin_email,
        password=settings.bootstrap.admin_password,
        role=settings.security.super_admin_role
    )

    logger.info("后台管理服务初始化完成", extra={
        'event': 'admin_api_initialized',
        'database_url': mask_url(settings.mongo.url)
    })

    yield

    logger.info("后台管理服务关闭", extra={'event': 'admin_api_shutdown'})
    await audit.stop()
    await redis_client.disconnect()
    mongo_client.disconnect()


# 请求模型
class LoginRequest(BaseModel):
    username: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class ApiKeyCreateRequest(BaseModel):
    remark: str = ""


class ApiKeyToggleRequest(BaseModel):
    is_active: bool


def register_routes(app: FastAPI, settings: Settings) -> None:
    api_key_auth = ApiKeyAuth(settings.security.api_key_header, settings.security.api_secret_header)

    @app.get("/health")
    async def health():
        return {'status': 'ok'}

    @app.post("/api/auth/login")
    async def login(body: LoginRequest, request: Request):
        """用户登录"""
        client_ip = request.client.host if request.client else None
        result = await request.app.state.authenticator.login(body.username, body.password, client_ip)
        return result.to_dict()

    @app.post("/api/auth/refresh")
    async def refresh(body: RefreshRequest, request: Request):
        """刷新访问令牌"""
        access_token = await request.app.state.authenticator.refresh_access_token(body.refresh_token)
        return {'access_token': access_token, 'token_type': 'Bearer'}

    @app.post("/api/auth/logout")
    async def logout(request: Request, current_user: User = Depends(get_current_user)):
        """用户登出，当前访问令牌加入黑名单"""
        authenticator: Authenticator = request.app.state.authenticator
        token: Optional[str] = None
        header = request.headers.get("Authorization")
        if header:
            token = authenticator.token_issuer.extract_bearer_token(header)
        await authenticator.logout(current_user.id, token)
        return {'message': '登出成功'}

    @app.get("/api/auth/profile")
    async def profile(current_user: User = Depends(get_current_user)):
        """获取当前用户信息"""
        return current_user.to_dict()

    @app.get("/api/menus/tree")
    async def menu_tree(request: Request, _: User = Depends(require_permission('menu:view'))):
        """完整菜单树"""
        nodes = await request.app.state.menu_manager.get_menu_tree()
        return [node.to_dict() for node in nodes]

    @app.get("/api/menus/user-tree")
    async def user_menu_tree(request: Request, current_user: User = Depends(get_current_user)):
        """当前用户可见的菜单树"""
        nodes = await request.app.state.menu_manager.get_menu_tree_for_role(current_user.role)
        return [node.to_dict() for node in nodes]

    @app.get("/api/permissions/tree")
    async def permission_tree(request: Request, _: User = Depends(require_permission('permission:view'))):
        """按模块分组的权限树"""
        return await request.app.state.permission_manager.permission_tree()

    @app.get("/api/roles/{role_id}/api-keys")
    async def list_api_keys(role_id: str, request: Request, _: User = Depends(require_permission('role:view'))):
        return await request.app.state.api_key_manager.list_api_keys(role_id)

    @app.post("/api/roles/{role_id}/api-keys", status_code=status.HTTP_201_CREATED)
    async def generate_api_key(role_id: str, body: ApiKeyCreateRequest, request: Request,
                               _: User = Depends(require_permission('role:edit'))):
        """生成API密钥，secret仅在此次响应中返回"""
        return await request.app.state.api_key_manager.generate_api_key(role_id, body.remark)

    @app.patch("/api/roles/{role_id}/api-keys/{key}")
    async def toggle_api_key(role_id: str, key: str, body: ApiKeyToggleRequest, request: Request,
                             _: User = Depends(require_permission('role:edit'))):
        await request.app.state.api_key_manager.toggle_api_key(role_id, key, body.is_active)
        return {'key': key, 'is_active': body.is_active}

    @app.delete("/api/roles/{role_id}/api-keys/{key}")
    async def revoke_api_key(role_id: str, key: str, request: Request,
                             _: User = Depends(require_permission('role:edit'))):
        removed = await request.app.state.api_key_manager.revoke_api_key(role_id, key)
        return {'removed': removed}

    @app.delete("/api/users/{user_id}")
    async def delete_user(user_id: str, request: Request,
                          current_user: User = Depends(require_permission('user:delete'))):
        deleted = await request.app.state.user_manager.delete_user(user_id, acting_user_id=current_user.id)
        return {'deleted': deleted}

    @app.get("/api/service/identity")
    async def service_identity(role: Role = Depends(api_key_auth)):
        """API密钥调用方的角色信息"""
        return {'role': str(role.code), 'name': role.name}


def create_app(settings: Settings = None, lifespan_handler=lifespan) -> FastAPI:
    """创建FastAPI应用"""
    settings = settings or get_settings()
    setup_logging(settings.service_name, settings.log)

    app = FastAPI(
        title="Admin API",
        description="后台管理系统身份认证与访问控制服务",
        version="1.0.0",
        lifespan=lifespan_handler
    )
    app.state.settings = settings

    # 后添加的中间件在外层：日志 -> CORS -> 认证
    # /api/service 下的接口使用API密钥认证
    app.add_middleware(AuthMiddleware, excluded_paths=DEFAULT_PUBLIC_PATHS + ["/api/service"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(FastAPILoggingMiddleware)

    register_exception_handlers(app)
    register_routes(app, settings)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "services.admin_api.main:app",
        host=settings.web.host,
        port=settings.web.port,
        reload=settings.debug
    )
