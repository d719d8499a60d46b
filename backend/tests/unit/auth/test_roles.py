"""Unit tests for the admin role hierarchy and the FastAPI auth dependencies."""

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from auth.dependencies import Actor, get_current_actor, require_role
from auth.jwt import create_access_token
from auth.roles import UserRole, get_allowed_roles, has_permission


def credentials(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestHierarchy:

    @pytest.mark.parametrize("role, required, allowed", [
        (UserRole.ADMIN, UserRole.INTEGRATOR, True),
        (UserRole.INTEGRATOR, UserRole.OPS, True),
        (UserRole.OPS, UserRole.INTEGRATOR, False),
        (UserRole.VIEWER, UserRole.OPS, False),
        (UserRole.VIEWER, UserRole.VIEWER, True),
        ("OPS", UserRole.VIEWER, True),
        ("SUPERUSER", UserRole.VIEWER, False),
        (None, UserRole.VIEWER, False),
    ])
    def test_has_permission(self, role, required, allowed):
        assert has_permission(role, required) is allowed

    def test_only_admin_satisfies_admin(self):
        assert get_allowed_roles(UserRole.ADMIN) == {UserRole.ADMIN}

    def test_ops_requirement(self):
        assert get_allowed_roles(UserRole.OPS) == {UserRole.ADMIN, UserRole.INTEGRATOR, UserRole.OPS}


class TestDependencies:

    def test_valid_token_builds_actor(self):
        token = create_access_token(user_id="u1", role="INTEGRATOR", email="int@shop.test")

        actor = get_current_actor(credentials(token))

        assert actor == Actor(user_id="u1", role=UserRole.INTEGRATOR, email="int@shop.test")
        assert actor.label == "admin:int@shop.test"

    def test_unknown_role_claim_rejected(self):
        token = create_access_token(user_id="u1", role="SUPERUSER", email="x@shop.test")

        with pytest.raises(HTTPException) as exc_info:
            get_current_actor(credentials(token))

        assert exc_info.value.status_code == 401

    def test_expired_token_rejected(self):
        token = create_access_token(user_id="u1", role="ADMIN", email="a@shop.test", expires_minutes=-1)

        with pytest.raises(HTTPException) as exc_info:
            get_current_actor(credentials(token))

        assert exc_info.value.detail == "Token has expired"

    def test_require_role_rejects_lower_role(self):
        check = require_role(UserRole.INTEGRATOR)

        with pytest.raises(HTTPException) as exc_info:
            check(Actor(user_id="u1", role=UserRole.OPS, email=""))

        assert exc_info.value.status_code == 403

    def test_require_role_accepts_higher_role(self):
        actor = Actor(user_id="u1", role=UserRole.ADMIN, email="")

        assert require_role(UserRole.OPS)(actor) is actor

    def test_label_falls_back_to_user_id(self):
        assert Actor(user_id="u1", role=UserRole.OPS, email="").label == "admin:u1"
