"""
Domain errors raised by the admin user service.

Each error carries the HTTP status it maps to; app.core.errors turns any AdminUserError into
``{"success": false, "error": <message>}``.
"""
from typing import Sequence
from fastapi import status


class AdminUserError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PrivilegeEscalation(AdminUserError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str, unauthorized_org_ids: Sequence[str] = ()):
        super().__init__(message)
        self.unauthorized_org_ids = list(unauthorized_org_ids)


class ValidationError(AdminUserError):
    status_code = status.HTTP_400_BAD_REQUEST


class DuplicateEmail(AdminUserError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, email: str):
        super().__init__(f"User with email {email} already exists")
        self.email = email


class UserNotFound(AdminUserError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class RoleNotFound(AdminUserError):
    status_code = status.HTTP_404_NOT_FOUND


class OrganizationNotFound(AdminUserError):
    status_code = status.HTTP_404_NOT_FOUND


class SystemRoleProtected(AdminUserError):
    status_code = status.HTTP_403_FORBIDDEN


class RoleInUse(AdminUserError):
    status_code = status.HTTP_409_CONFLICT
