"""API Routes Module"""
from .admin_routes import admin_router
from .auth_routes import auth_router
from .rate_limit_routes import rate_limit_router


def include_routers(app):
    """Include all routers in the FastAPI app"""
    app.include_router(auth_router)
    app.include_router(rate_limit_router)
    app.include_router(admin_router)


__all__ = ['include_routers', 'auth_router', 'rate_limit_router', 'admin_router']
