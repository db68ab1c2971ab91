from __future__ import annotations


class APIError(Exception):
    status_code: int = 500
    code: str = "api_error"

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code


class TenantNotFoundError(APIError):
    status_code = 404
    code = "tenant_not_found"

    def __init__(self, tenant_id: str):
        super().__init__(f"Unknown tenant: {tenant_id}")
        self.tenant_id = tenant_id
