"""Tests for opportunity and membership endpoints."""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from opphub.api.app import create_application
from opphub.api.dependencies import AuthenticatedUser, get_current_user, get_optional_user
from opphub.config import settings
from opphub.db.models import Opportunity, OpportunityMembership, User
from opphub.db.session import get_db
from opphub.errors import StoreError
from opphub.services.membership import MembershipState

OPP_ID = "0190a8a0-0000-7000-8000-000000000001"


@pytest.fixture(autouse=True)
def mock_invalidate():
    with patch("opphub.api.routers.opportunities.invalidate_roles", new_callable=AsyncMock) as m:
        yield m


def _opportunity(code: str = "alpha", title: str = "Alpha") -> Opportunity:
    return Opportunity(id=uuid.UUID(OPP_ID), code=code, title=title)


def _user(*roles: str, email: str = "user@example.com") -> AuthenticatedUser:
    return AuthenticatedUser(email=email, display_name=None, roles=list(roles))


def _make_app(user: AuthenticatedUser | None = None, db=None):
    """Create an app with auth and db dependencies overridden."""
    app = create_application()
    db = db if db is not None else AsyncMock()

    async def override_auth():
        return user

    async def override_db():
        return db

    if user is not None:
        app.dependency_overrides[get_current_user] = override_auth
    app.dependency_overrides[get_optional_user] = override_auth
    app.dependency_overrides[get_db] = override_db
    return app


async def _request(app, method: str, url: str, **kwargs):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.request(method, url, **kwargs)


class TestListAndRead:
    @patch("opphub.services.opportunity_service.list_opportunities", new_callable=AsyncMock)
    async def test_anonymous_list_has_all_flags_false(self, mock_list):
        mock_list.return_value = [_opportunity()]
        app = _make_app(user=None)

        response = await _request(app, "GET", "/api/v2/opportunities")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data[0]["code"] == "alpha"
        assert data[0]["userIs"] == {
            "admin": False,
            "member": False,
            "request": False,
            "gov": False,
        }

    @patch("opphub.services.opportunity_service.list_opportunities", new_callable=AsyncMock)
    async def test_list_decorates_with_viewer_roles(self, mock_list):
        mock_list.return_value = [_opportunity("beta", "Beta"), _opportunity("alpha", "Alpha")]
        app = _make_app(user=_user("alpha", "beta-request", "gov"))

        response = await _request(app, "GET", "/api/v2/opportunities")

        data = response.json()["data"]
        assert [d["code"] for d in data] == ["beta", "alpha"]
        assert data[0]["userIs"]["request"] is True
        assert data[1]["userIs"]["member"] is True
        assert data[1]["userIs"]["gov"] is True

    @patch("opphub.services.opportunity_service.get_opportunity_or_404", new_callable=AsyncMock)
    async def test_read_decorated(self, mock_get):
        mock_get.return_value = _opportunity()
        app = _make_app(user=_user("alpha", "alpha-admin"))

        response = await _request(app, "GET", f"/api/v2/opportunities/{OPP_ID}")

        assert response.status_code == 200
        user_is = response.json()["data"]["userIs"]
        assert user_is["admin"] is True
        assert user_is["member"] is True

    async def test_read_malformed_id_is_400(self):
        db = AsyncMock()
        app = _make_app(user=None, db=db)

        response = await _request(app, "GET", "/api/v2/opportunities/not-a-uuid")

        assert response.status_code == 400
        assert response.json()["detail"] == "Opportunity is invalid"
        db.execute.assert_not_called()

    async def test_read_unknown_id_is_404(self):
        db = AsyncMock()
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        db.execute.return_value = result
        app = _make_app(user=None, db=db)

        response = await _request(app, "GET", f"/api/v2/opportunities/{OPP_ID}")

        assert response.status_code == 404
        assert response.json()["detail"] == "No opportunity with that identifier has been found"

    @patch("opphub.services.opportunity_service.list_opportunities", new_callable=AsyncMock)
    async def test_routes_follow_configured_prefix(self, mock_list):
        mock_list.return_value = []
        with patch.object(settings, "api_prefix", "/api/v9"):
            app = _make_app(user=None)

        assert (await _request(app, "GET", "/api/v9/opportunities")).status_code == 200
        assert (await _request(app, "GET", "/api/v2/opportunities")).status_code == 404

    async def test_new_returns_blank(self):
        app = _make_app(user=_user())

        response = await _request(app, "GET", "/api/v2/opportunities/new")

        assert response.status_code == 200
        assert response.json()["data"]["code"] == ""


class TestCreate:
    @patch("opphub.services.opportunity_service.create_opportunity", new_callable=AsyncMock)
    async def test_create_returns_201_and_commits(self, mock_create):
        mock_create.return_value = _opportunity("clean-water-initiative", "Clean Water Initiative!!")
        db = AsyncMock()
        app = _make_app(user=_user(email="creator@example.com"), db=db)

        response = await _request(
            app,
            "POST",
            "/api/v2/opportunities",
            json={"data": {"attributes": {"title": "Clean Water Initiative!!"}}},
        )

        assert response.status_code == 201
        assert response.json()["data"]["code"] == "clean-water-initiative"
        mock_create.assert_called_once_with(
            db, {"title": "Clean Water Initiative!!"}, "creator@example.com"
        )
        db.commit.assert_called_once()

    @patch("opphub.services.opportunity_service.create_opportunity", new_callable=AsyncMock)
    async def test_creator_cache_dropped_after_commit(self, mock_create, mock_invalidate):
        mock_create.return_value = _opportunity()
        events = []
        db = AsyncMock()
        db.commit.side_effect = lambda: events.append("commit")
        mock_invalidate.side_effect = lambda email: events.append(("invalidate", email))
        app = _make_app(user=_user(email="creator@example.com"), db=db)

        await _request(
            app, "POST", "/api/v2/opportunities", json={"data": {"attributes": {"title": "Alpha"}}}
        )

        assert events == ["commit", ("invalidate", "creator@example.com")]

    @pytest.mark.parametrize("data", [[], "x", 3])
    async def test_non_object_data_is_400(self, data):
        db = AsyncMock()
        app = _make_app(user=_user(), db=db)

        response = await _request(app, "POST", "/api/v2/opportunities", json={"data": data})

        assert response.status_code == 400
        assert response.json()["detail"] == "Data must be an object"
        db.commit.assert_not_called()

    async def test_non_object_attributes_is_400(self):
        app = _make_app(user=_user())

        response = await _request(
            app, "POST", "/api/v2/opportunities", json={"data": {"attributes": ["title"]}}
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Attributes must be an object"

    @patch("opphub.services.opportunity_service.create_opportunity", new_callable=AsyncMock)
    async def test_store_error_message_passed_through(self, mock_create):
        mock_create.side_effect = StoreError("duplicate key value violates unique constraint")
        app = _make_app(user=_user())

        response = await _request(
            app, "POST", "/api/v2/opportunities", json={"data": {"attributes": {"title": "X"}}}
        )

        assert response.status_code == 422
        assert response.json()["detail"] == "duplicate key value violates unique constraint"


@patch("opphub.services.opportunity_service.get_opportunity_or_404", new_callable=AsyncMock)
class TestAdminGate:
    @patch("opphub.services.opportunity_service.update_opportunity", new_callable=AsyncMock)
    async def test_update_by_non_admin_is_rejected(self, mock_update, mock_get):
        mock_get.return_value = _opportunity()
        app = _make_app(user=_user("alpha"))

        response = await _request(
            app,
            "PUT",
            f"/api/v2/opportunities/{OPP_ID}",
            json={"data": {"attributes": {"title": "New"}}},
        )

        assert response.status_code == 422
        assert response.json()["detail"] == "User Not Authorized"
        mock_update.assert_not_called()

    @patch("opphub.services.opportunity_service.update_opportunity", new_callable=AsyncMock)
    async def test_update_by_opportunity_admin(self, mock_update, mock_get):
        opp = _opportunity()
        mock_get.return_value = opp
        mock_update.return_value = opp
        app = _make_app(user=_user("alpha", "alpha-admin"))

        response = await _request(
            app,
            "PUT",
            f"/api/v2/opportunities/{OPP_ID}",
            json={"data": {"attributes": {"title": "New"}}},
        )

        assert response.status_code == 200
        mock_update.assert_called_once()

    @patch("opphub.services.opportunity_service.delete_opportunity", new_callable=AsyncMock)
    async def test_delete_by_platform_admin(self, mock_delete, mock_get):
        opp = _opportunity()
        mock_get.return_value = opp
        mock_delete.return_value = []
        app = _make_app(user=_user("admin"))

        response = await _request(app, "DELETE", f"/api/v2/opportunities/{OPP_ID}")

        assert response.status_code == 200
        assert response.json()["data"]["code"] == "alpha"
        mock_delete.assert_called_once()

    @patch("opphub.services.opportunity_service.delete_opportunity", new_callable=AsyncMock)
    async def test_delete_drops_member_caches_after_commit(
        self, mock_delete, mock_get, mock_invalidate
    ):
        mock_get.return_value = _opportunity()
        mock_delete.return_value = ["a@example.com", "m@example.com"]
        events = []
        db = AsyncMock()
        db.commit.side_effect = lambda: events.append("commit")
        mock_invalidate.side_effect = lambda email: events.append(("invalidate", email))
        app = _make_app(user=_user("admin"), db=db)

        response = await _request(app, "DELETE", f"/api/v2/opportunities/{OPP_ID}")

        assert response.status_code == 200
        assert events == [
            "commit",
            ("invalidate", "a@example.com"),
            ("invalidate", "m@example.com"),
        ]

    @patch("opphub.services.opportunity_service.delete_opportunity", new_callable=AsyncMock)
    async def test_delete_by_admin_of_other_opportunity_rejected(self, mock_delete, mock_get):
        mock_get.return_value = _opportunity()
        app = _make_app(user=_user("beta-admin"))

        response = await _request(app, "DELETE", f"/api/v2/opportunities/{OPP_ID}")

        assert response.status_code == 422
        mock_delete.assert_not_called()


@patch("opphub.services.opportunity_service.get_opportunity_or_404", new_callable=AsyncMock)
class TestMembershipEndpoints:
    @patch("opphub.services.membership_service.request_membership", new_callable=AsyncMock)
    async def test_request_returns_ok(self, mock_request, mock_get):
        opp = _opportunity()
        mock_get.return_value = opp
        mock_request.return_value = MembershipState.PENDING
        db = AsyncMock()
        app = _make_app(user=_user(email="joiner@example.com"), db=db)

        response = await _request(app, "POST", f"/api/v2/opportunities/{OPP_ID}/request")

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        mock_request.assert_called_once_with(db, opp, "joiner@example.com")

    @patch("opphub.services.membership_service.approve_request", new_callable=AsyncMock)
    async def test_confirm_by_admin(self, mock_approve, mock_get):
        mock_get.return_value = _opportunity()
        mock_approve.return_value = MembershipState.MEMBER
        app = _make_app(user=_user("alpha", "alpha-admin"))

        response = await _request(
            app, "POST", f"/api/v2/opportunities/{OPP_ID}/requests/joiner@example.com/confirm"
        )

        assert response.status_code == 200
        assert response.json()["data"] == {
            "email": "joiner@example.com",
            "state": "member",
            "roles": ["alpha"],
        }

    @patch("opphub.services.membership_service.deny_request", new_callable=AsyncMock)
    async def test_deny_by_non_admin_rejected(self, mock_deny, mock_get):
        mock_get.return_value = _opportunity()
        app = _make_app(user=_user("alpha-request"))

        response = await _request(
            app, "POST", f"/api/v2/opportunities/{OPP_ID}/requests/joiner@example.com/deny"
        )

        assert response.status_code == 422
        assert response.json()["detail"] == "User Not Authorized"
        mock_deny.assert_not_called()

    @patch("opphub.services.membership_service.revoke_membership", new_callable=AsyncMock)
    async def test_revoke_by_admin(self, mock_revoke, mock_get):
        mock_get.return_value = _opportunity()
        mock_revoke.return_value = MembershipState.NONE
        app = _make_app(user=_user("admin"))

        response = await _request(
            app, "DELETE", f"/api/v2/opportunities/{OPP_ID}/members/member@example.com"
        )

        assert response.status_code == 200
        assert response.json()["data"]["state"] == "none"
        assert response.json()["data"]["roles"] == []

    @patch("opphub.services.membership_service.revoke_membership", new_callable=AsyncMock)
    async def test_revoke_drops_cache_after_commit(self, mock_revoke, mock_get, mock_invalidate):
        mock_get.return_value = _opportunity()
        mock_revoke.return_value = MembershipState.NONE
        events = []
        db = AsyncMock()
        db.commit.side_effect = lambda: events.append("commit")
        mock_invalidate.side_effect = lambda email: events.append(("invalidate", email))
        app = _make_app(user=_user("admin"), db=db)

        response = await _request(
            app, "DELETE", f"/api/v2/opportunities/{OPP_ID}/members/m@example.com"
        )

        assert response.status_code == 200
        assert events == ["commit", ("invalidate", "m@example.com")]

    @patch("opphub.services.membership_service.approve_request", new_callable=AsyncMock)
    async def test_failed_commit_keeps_cache(self, mock_approve, mock_get, mock_invalidate):
        mock_get.return_value = _opportunity()
        mock_approve.return_value = MembershipState.MEMBER
        db = AsyncMock()
        db.commit.side_effect = OperationalError("COMMIT", {}, Exception("connection lost"))
        app = _make_app(user=_user("admin"), db=db)

        response = await _request(
            app, "POST", f"/api/v2/opportunities/{OPP_ID}/requests/j@example.com/confirm"
        )

        assert response.status_code == 422
        assert response.json()["detail"] == "connection lost"
        mock_invalidate.assert_not_called()

    @patch("opphub.services.membership_service.list_members", new_callable=AsyncMock)
    async def test_list_members(self, mock_members, mock_get):
        mock_get.return_value = _opportunity()
        mock_members.return_value = [
            (
                OpportunityMembership(user_email="a@example.com", state="admin"),
                User(email="a@example.com", display_name="Ada"),
            ),
            (OpportunityMembership(user_email="m@example.com", state="member"), None),
        ]
        app = _make_app(user=_user())

        response = await _request(app, "GET", f"/api/v2/opportunities/{OPP_ID}/members")

        assert response.status_code == 200
        assert response.json()["data"] == [
            {"email": "a@example.com", "display-name": "Ada", "state": "admin"},
            {"email": "m@example.com", "display-name": None, "state": "member"},
        ]

    @patch("opphub.services.membership_service.list_requests", new_callable=AsyncMock)
    async def test_list_requests(self, mock_requests, mock_get):
        mock_get.return_value = _opportunity()
        mock_requests.return_value = [
            (OpportunityMembership(user_email="p@example.com", state="pending"), None),
        ]
        app = _make_app(user=_user())

        response = await _request(app, "GET", f"/api/v2/opportunities/{OPP_ID}/requests")

        assert response.json()["data"][0]["state"] == "pending"
