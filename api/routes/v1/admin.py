"""
api/routes/v1/admin.py -- Admin-only user management endpoints.

Routes:
  POST   /api/v1/admin/create-subadmin          -- create a pre-verified subadmin
  GET    /api/v1/admin/users                    -- list accounts (non-sensitive projection)
  PATCH  /api/v1/admin/users/{id}/activate      -- re-enable an account
  PATCH  /api/v1/admin/users/{id}/deactivate    -- disable an account (last-admin guarded)
  PATCH  /api/v1/admin/users/{id}/role          -- set role to user/subadmin (last-admin guarded)
  DELETE /api/v1/admin/users/{id}               -- delete an account (last-admin guarded)

Every route depends on require_admin: 401 without a valid bearer token,
403 for any role other than admin.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import (
    ActiveStatusResponse,
    DeleteResponse,
    RoleChangeRequest,
    RoleResponse,
    SignupRequest,
    UserResponse,
)
from auth import accounts, admin
from auth.dependencies import require_admin
from auth.models import Principal
from auth.store import UserStore

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


def _store(request: Request) -> UserStore:
    return request.app.state.user_store


@router.post("/create-subadmin", response_model=UserResponse, status_code=201)
def create_subadmin(
    request: Request,
    body: SignupRequest,
    current: Principal = Depends(require_admin),
) -> UserResponse:
    """Create a subadmin account. Subadmins skip email verification."""
    user = accounts.create_subadmin(
        _store(request),
        name=body.name,
        email=body.email,
        handle=body.handle,
        password=body.password,
        actor=current,
    )
    return UserResponse.from_user(user)


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request) -> list[UserResponse]:
    """List all accounts, newest first."""
    return [UserResponse.from_user(u) for u in admin.list_users(_store(request))]


@router.patch("/users/{user_id}/activate", response_model=ActiveStatusResponse)
def activate_user(
    request: Request,
    user_id: int,
    current: Principal = Depends(require_admin),
) -> ActiveStatusResponse:
    user = admin.activate_user(_store(request), user_id, actor=current)
    return ActiveStatusResponse(id=user.id, is_active=user.is_active)


@router.patch("/users/{user_id}/deactivate", response_model=ActiveStatusResponse)
def deactivate_user(
    request: Request,
    user_id: int,
    current: Principal = Depends(require_admin),
) -> ActiveStatusResponse:
    """Disable an account. Refused with last_admin for the last active admin."""
    user = admin.deactivate_user(_store(request), user_id, actor=current)
    return ActiveStatusResponse(id=user.id, is_active=user.is_active)


@router.patch("/users/{user_id}/role", response_model=RoleResponse)
def change_role(
    request: Request,
    user_id: int,
    body: RoleChangeRequest,
    current: Principal = Depends(require_admin),
) -> RoleResponse:
    """Set the role to user or subadmin. Refused with last_admin for the last active admin."""
    user = admin.change_role(_store(request), user_id, body.role, actor=current)
    return RoleResponse(id=user.id, role=user.role)


@router.delete("/users/{user_id}", response_model=DeleteResponse)
def delete_user(
    request: Request,
    user_id: int,
    current: Principal = Depends(require_admin),
) -> DeleteResponse:
    """Delete an account. Refused with last_admin for the last active admin."""
    admin.delete_user(_store(request), user_id, actor=current)
    return DeleteResponse(deleted=True, id=user_id)
