"""
Route table and middleware registry of the reference application.
"""

from slowapi import Limiter

from tessera.app.handlers import auth, site, users
from tessera.core.config import Settings
from tessera.http import Middleware, Router
from tessera.http.middleware import Throttle, authenticate


def build_router(settings: Settings) -> Router:
    router = Router()

    with router.group(prefix=settings.api_prefix):
        router.get("/", site.index)
        router.get("/health", site.health)

        with router.group(prefix="/site"):
            router.get("/info", site.info)
            router.get("/endpoints", site.endpoints(router))

        with router.group(prefix="/auth"):
            router.post("/register", auth.register, middleware=["throttle"])
            router.post("/login", auth.login, middleware=["throttle"])
            router.post("/refresh", auth.refresh, middleware=["throttle"])
            router.post("/logout", auth.logout, middleware=["auth"])
            router.get("/me", auth.me, middleware=["auth"])
            router.post("/forgot-password", auth.forgot_password, middleware=["throttle"])
            router.post("/reset-password", auth.reset_password, middleware=["throttle"])

        with router.group(prefix="/users", middleware=["auth"]):
            router.get("/", users.index)
            router.get("/all", users.list_all)
            router.get("/{id}", users.show)
            router.post("/", users.store)
            router.put("/{id}", users.update)
            router.delete("/{id}", users.destroy)

    return router


def build_middleware(settings: Settings, limiter: Limiter) -> dict[str, Middleware]:
    return {
        "auth": authenticate,
        "throttle": Throttle(limiter, settings.rate_limit_auth),
    }
