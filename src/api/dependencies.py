from fastapi import Request

from core.errors import Unauthorized


def require_user(request: Request) -> dict:
    """
    Dependency returning the identity attached by IdentityMiddleware.
    Usage: dependencies=[Depends(require_user)]
    """
    user = getattr(request.state, "user", None)
    if not user or not user.get("email"):
        raise Unauthorized()
    return user
