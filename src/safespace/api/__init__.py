"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. This protects all routes in each router
without modifying individual handlers. The health router is open.
"""

from fastapi import APIRouter, Depends

from safespace.api.admin import router as admin_router
from safespace.api.connections import router as connections_router
from safespace.api.groups import router as groups_router
from safespace.api.health import router as health_router
from safespace.api.messages import router as messages_router
from safespace.api.notifications import router as notifications_router
from safespace.api.panic_alerts import router as panic_alerts_router
from safespace.api.users import router as users_router
from safespace.auth.dependencies import get_current_account

# Protected routers need a valid token for an active account
_auth = [Depends(get_current_account)]

api_router = APIRouter(prefix="/api/v1")

# Open routes
api_router.include_router(health_router, tags=["health"])

# Routes behind a bearer token
api_router.include_router(users_router, tags=["users"], dependencies=_auth)
api_router.include_router(messages_router, tags=["messages"], dependencies=_auth)
api_router.include_router(groups_router, tags=["groups"], dependencies=_auth)
api_router.include_router(connections_router, tags=["connections"], dependencies=_auth)
api_router.include_router(panic_alerts_router, tags=["panic-alerts"], dependencies=_auth)
api_router.include_router(notifications_router, tags=["notifications"], dependencies=_auth)
api_router.include_router(admin_router, tags=["admin"], dependencies=_auth)
