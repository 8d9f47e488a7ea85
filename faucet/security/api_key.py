from fastapi import Header, HTTPException, Request


def require_admin_api_key(
    request: Request,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
):
    expected = request.app.state.settings.ADMIN_API_KEY
    if not x_api_key or x_api_key != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True
