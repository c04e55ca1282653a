import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from stockbook.core.security import hash_password
from stockbook.models.account import Business, BusinessMembership, TeamInvitation, User
from stockbook.models.warehouse import Warehouse


def _register(client, *, email: str, full_name: str = "Owner", **extra):
    return client.post(
        "/auth/register",
        json={
            "email": email,
            "full_name": full_name,
            "password": "password123",
            **extra,
        },
    )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _login(client, identifier: str, password: str = "password123"):
    return client.post("/auth/login", json={"identifier": identifier, "password": password})


def _create_loose_user(session_local, *, email: str, username: str, full_name: str) -> str:
    """A user with no business of their own, ready to be added to a team."""
    db = session_local()
    try:
        user = User(
            email=email,
            username=username,
            full_name=full_name,
            hashed_password=hash_password("password123"),
            is_active=True,
        )
        db.add(user)
        db.commit()
        return user.id
    finally:
        db.close()


def _team_member_token(client, session_local, owner_token: str, *, email: str, role: str) -> str:
    username = email.split("@")[0].replace("-", "_")
    _create_loose_user(session_local, email=email, username=username, full_name=role.title())
    added = client.post(
        "/team/members",
        json={"email": email, "role": role},
        headers=_auth_headers(owner_token),
    )
    assert added.status_code == 200, added.text
    login = _login(client, email)
    assert login.status_code == 200, login.text
    return login.json()["access_token"]


def test_register_provisions_business_admin_membership_and_default_warehouse(test_context):
    client, session_local = test_context

    res = _register(client, email="Amina@Example.com", full_name="Amina Diallo", business_name="Diallo Textiles")
    assert res.status_code == 200, res.text
    token = res.json()["access_token"]

    me = client.get("/auth/me", headers=_auth_headers(token))
    assert me.status_code == 200, me.text
    profile = me.json()
    assert profile["email"] == "amina@example.com"
    assert profile["username"] == "amina"
    assert profile["role"] == "admin"
    assert profile["business_name"] == "Diallo Textiles"

    db = session_local()
    try:
        business = db.execute(select(Business).where(Business.id == profile["business_id"])).scalar_one()
        membership = db.execute(
            select(BusinessMembership).where(BusinessMembership.business_id == business.id)
        ).scalar_one()
        warehouses = db.execute(select(Warehouse).where(Warehouse.business_id == business.id)).scalars().all()
    finally:
        db.close()
    assert membership.role == "admin"
    assert [warehouse.name for warehouse in warehouses] == ["Main warehouse"]

    duplicate = _register(client, email="amina@example.com")
    assert duplicate.status_code == 400, duplicate.text


def test_login_with_email_or_username_and_invalid_credentials(test_context):
    client, _ = test_context
    assert _register(client, email="kwame@example.com", username="kwame").status_code == 200

    assert _login(client, "kwame@example.com").status_code == 200
    assert _login(client, "KWAME").status_code == 200

    wrong = _login(client, "kwame", "wrong-password")
    assert wrong.status_code == 401, wrong.text
    assert wrong.json()["error"]["code"] == "unauthorized"

    form = client.post("/auth/token", data={"username": "kwame", "password": "password123"})
    assert form.status_code == 200, form.text
    assert form.json()["token_type"] == "bearer"


def test_login_rate_limited_after_repeated_failures(test_context):
    client, _ = test_context
    assert _register(client, email="locked@example.com").status_code == 200

    for _ in range(5):
        assert _login(client, "locked@example.com", "nope-nope").status_code == 401

    blocked = _login(client, "locked@example.com")
    assert blocked.status_code == 429, blocked.text
    assert int(blocked.headers["retry-after"]) > 0


def test_refresh_rotates_tokens_and_logout_revokes(test_context):
    client, _ = test_context
    tokens = _register(client, email="refresh@example.com").json()

    rotated = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert rotated.status_code == 200, rotated.text
    new_tokens = rotated.json()

    reused = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert reused.status_code == 401, reused.text

    logout = client.post("/auth/logout", json={"refresh_token": new_tokens["refresh_token"]})
    assert logout.status_code == 200, logout.text
    after_logout = client.post("/auth/refresh", json={"refresh_token": new_tokens["refresh_token"]})
    assert after_logout.status_code == 401, after_logout.text


def test_change_password_revokes_sessions(test_context):
    client, _ = test_context
    tokens = _register(client, email="password@example.com").json()

    res = client.post(
        "/auth/change-password",
        json={"current_password": "password123", "new_password": "password456"},
        headers=_auth_headers(tokens["access_token"]),
    )
    assert res.status_code == 200, res.text

    assert client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401
    assert _login(client, "password@example.com").status_code == 401
    assert _login(client, "password@example.com", "password456").status_code == 200


def test_protected_endpoints_require_token(test_context):
    client, _ = test_context
    res = client.get("/products")
    assert res.status_code == 401, res.text

    bad = client.get("/products", headers=_auth_headers("not-a-token"))
    assert bad.status_code == 401, bad.text


def test_seller_can_record_movements_but_not_manage_catalog(test_context):
    client, session_local = test_context
    owner_token = _register(client, email="team-owner@example.com").json()["access_token"]
    created = client.post(
        "/products",
        json={"name": "Beads", "variants": [{"variant_name": "Red", "price": 5, "initial_quantity": 3}]},
        headers=_auth_headers(owner_token),
    )
    variant_id = created.json()["variant_ids"][0]

    seller_token = _team_member_token(client, session_local, owner_token, email="seller@example.com", role="seller")

    me = client.get("/auth/me", headers=_auth_headers(seller_token))
    assert me.json()["role"] == "seller"

    forbidden = client.post(
        "/products",
        json={"name": "Nope", "variants": [{"variant_name": "X", "price": 1}]},
        headers=_auth_headers(seller_token),
    )
    assert forbidden.status_code == 403, forbidden.text

    movement = client.post(
        "/inventory/movements",
        json={"variant_id": variant_id, "quantity": 1, "movement_type": "sale", "reference": "Walk-in"},
        headers=_auth_headers(seller_token),
    )
    assert movement.status_code == 200, movement.text
    assert movement.json()["movement"]["actor_label"] == "Seller"

    report = client.get(
        "/reports/stock-movements?start_date=2026-01-01&end_date=2026-12-31",
        headers=_auth_headers(seller_token),
    )
    assert report.status_code == 403, report.text

    team = client.get("/team/members", headers=_auth_headers(seller_token))
    assert team.status_code == 403, team.text


def test_viewer_is_read_only(test_context):
    client, session_local = test_context
    owner_token = _register(client, email="viewer-owner@example.com").json()["access_token"]
    created = client.post(
        "/products",
        json={"name": "Beads", "variants": [{"variant_name": "Red", "price": 5, "initial_quantity": 3}]},
        headers=_auth_headers(owner_token),
    )
    variant_id = created.json()["variant_ids"][0]

    viewer_token = _team_member_token(client, session_local, owner_token, email="viewer@example.com", role="viewer")

    assert client.get("/products", headers=_auth_headers(viewer_token)).json()["pagination"]["total"] == 1
    movement = client.post(
        "/inventory/movements",
        json={"variant_id": variant_id, "quantity": 1, "movement_type": "in"},
        headers=_auth_headers(viewer_token),
    )
    assert movement.status_code == 403, movement.text
    order = client.post(
        "/orders",
        json={"customer_name": "Ama", "items": [{"variant_id": variant_id, "qty": 1}]},
        headers=_auth_headers(viewer_token),
    )
    assert order.status_code == 403, order.text


def test_admin_manages_team_and_sees_audit_trail(test_context):
    client, session_local = test_context
    owner = _register(client, email="admin@example.com").json()
    owner_token = owner["access_token"]
    _create_loose_user(session_local, email="staff@example.com", username="staff", full_name="Staff")

    added = client.post(
        "/team/members",
        json={"email": "staff@example.com", "role": "manager"},
        headers=_auth_headers(owner_token),
    )
    assert added.status_code == 200, added.text
    membership_id = added.json()["membership_id"]

    again = client.post(
        "/team/members",
        json={"email": "staff@example.com"},
        headers=_auth_headers(owner_token),
    )
    assert again.status_code == 409, again.text

    unknown = client.post(
        "/team/members",
        json={"email": "ghost@example.com"},
        headers=_auth_headers(owner_token),
    )
    assert unknown.status_code == 404, unknown.text

    bad_role = client.post(
        "/team/members",
        json={"email": "staff@example.com", "role": "owner"},
        headers=_auth_headers(owner_token),
    )
    assert bad_role.status_code == 422, bad_role.text

    demoted = client.patch(
        f"/team/members/{membership_id}",
        json={"role": "seller"},
        headers=_auth_headers(owner_token),
    )
    assert demoted.status_code == 200, demoted.text
    assert demoted.json()["role"] == "seller"

    removed = client.delete(f"/team/members/{membership_id}", headers=_auth_headers(owner_token))
    assert removed.status_code == 204, removed.text

    members = client.get("/team/members", headers=_auth_headers(owner_token))
    assert [member["email"] for member in members.json()["items"]] == ["admin@example.com"]
    own_membership_id = members.json()["items"][0]["membership_id"]

    self_demote = client.patch(
        f"/team/members/{own_membership_id}",
        json={"role": "viewer"},
        headers=_auth_headers(owner_token),
    )
    assert self_demote.status_code == 400, self_demote.text
    self_remove = client.delete(f"/team/members/{own_membership_id}", headers=_auth_headers(owner_token))
    assert self_remove.status_code == 400, self_remove.text

    audit = client.get("/audit-logs?target_type=business_membership", headers=_auth_headers(owner_token))
    assert audit.status_code == 200, audit.text
    actions = {item["action"] for item in audit.json()["items"]}
    assert actions == {"team.member.added", "team.member.updated", "team.member.deactivated"}


def _invite(client, owner_token: str, *, email: str, role: str = "seller", **extra):
    return client.post(
        "/team/invitations",
        json={"email": email, "role": role, **extra},
        headers=_auth_headers(owner_token),
    )


def test_invited_user_registers_into_inviting_business_with_role(test_context):
    client, session_local = test_context
    owner_token = _register(client, email="inviter@example.com", business_name="Mensah Hardware").json()[
        "access_token"
    ]

    invited = _invite(client, owner_token, email="Clerk@Example.com", role="manager")
    assert invited.status_code == 200, invited.text
    body = invited.json()
    assert body["email"] == "clerk@example.com"
    assert body["role"] == "manager"
    assert body["status"] == "pending"
    assert body["invitation_token"].startswith("ti_")

    wrong_email = _register(
        client, email="someone-else@example.com", invitation_token=body["invitation_token"]
    )
    assert wrong_email.status_code == 403, wrong_email.text

    joined = _register(client, email="clerk@example.com", invitation_token=body["invitation_token"])
    assert joined.status_code == 200, joined.text
    me = client.get("/auth/me", headers=_auth_headers(joined.json()["access_token"]))
    assert me.status_code == 200, me.text
    assert me.json()["role"] == "manager"
    assert me.json()["business_name"] == "Mensah Hardware"

    db = session_local()
    try:
        owned = db.execute(
            select(Business).join(User, User.id == Business.owner_user_id).where(User.email == "clerk@example.com")
        ).scalar_one_or_none()
    finally:
        db.close()
    assert owned is None

    reused = _register(client, email="clerk2@example.com", invitation_token=body["invitation_token"])
    assert reused.status_code == 400, reused.text

    unknown = _register(client, email="nobody@example.com", invitation_token="ti_unknown")
    assert unknown.status_code == 404, unknown.text

    listed = client.get("/team/invitations", headers=_auth_headers(owner_token))
    assert listed.status_code == 200, listed.text
    item = listed.json()["items"][0]
    assert item["status"] == "accepted"
    assert item["accepted_by_user_id"] == me.json()["id"]
    assert "invitation_token" not in item


def test_existing_user_accepts_invitation_and_gets_invited_role(test_context):
    client, session_local = test_context
    owner_token = _register(client, email="acc-owner@example.com").json()["access_token"]
    _create_loose_user(session_local, email="acc-staff@example.com", username="acc_staff", full_name="Staff")
    staff_token = _login(client, "acc-staff@example.com").json()["access_token"]
    _create_loose_user(
        session_local, email="acc-intruder@example.com", username="acc_intruder", full_name="Intruder"
    )
    intruder_token = _login(client, "acc-intruder@example.com").json()["access_token"]

    token = _invite(client, owner_token, email="acc-staff@example.com", role="viewer").json()["invitation_token"]

    duplicate = _invite(client, owner_token, email="acc-staff@example.com", role="seller")
    assert duplicate.status_code == 409, duplicate.text

    mismatch = client.post(
        "/team/invitations/accept",
        json={"invitation_token": token},
        headers=_auth_headers(intruder_token),
    )
    assert mismatch.status_code == 403, mismatch.text

    accepted = client.post(
        "/team/invitations/accept",
        json={"invitation_token": token},
        headers=_auth_headers(staff_token),
    )
    assert accepted.status_code == 200, accepted.text
    assert accepted.json()["role"] == "viewer"
    assert accepted.json()["is_active"] is True

    me = client.get("/auth/me", headers=_auth_headers(staff_token))
    assert me.json()["role"] == "viewer"

    already_member = _invite(client, owner_token, email="acc-staff@example.com")
    assert already_member.status_code == 409, already_member.text

    audit = client.get("/audit-logs?target_type=team_invitation", headers=_auth_headers(owner_token))
    assert audit.status_code == 200, audit.text
    actions = {item["action"] for item in audit.json()["items"]}
    assert actions == {"team.invitation.created", "team.invitation.accepted"}


def test_revoked_and_expired_invitations_cannot_be_redeemed(test_context):
    client, session_local = test_context
    owner_token = _register(client, email="rev-owner@example.com").json()["access_token"]

    revoked = _invite(client, owner_token, email="rev-one@example.com").json()
    removed = client.delete(
        f"/team/invitations/{revoked['invitation_id']}", headers=_auth_headers(owner_token)
    )
    assert removed.status_code == 204, removed.text
    again = client.delete(f"/team/invitations/{revoked['invitation_id']}", headers=_auth_headers(owner_token))
    assert again.status_code == 400, again.text
    missing = client.delete(f"/team/invitations/{uuid.uuid4()}", headers=_auth_headers(owner_token))
    assert missing.status_code == 404, missing.text

    after_revoke = _register(client, email="rev-one@example.com", invitation_token=revoked["invitation_token"])
    assert after_revoke.status_code == 400, after_revoke.text

    stale = _invite(client, owner_token, email="rev-two@example.com", expires_in_days=1).json()
    db = session_local()
    try:
        invitation = db.execute(
            select(TeamInvitation).where(TeamInvitation.id == stale["invitation_id"])
        ).scalar_one()
        invitation.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.commit()
    finally:
        db.close()

    after_expiry = _register(client, email="rev-two@example.com", invitation_token=stale["invitation_token"])
    assert after_expiry.status_code == 400, after_expiry.text

    expired = client.get("/team/invitations?status=expired", headers=_auth_headers(owner_token))
    assert expired.status_code == 200, expired.text
    assert [item["email"] for item in expired.json()["items"]] == ["rev-two@example.com"]
    statuses = {
        item["email"]: item["status"]
        for item in client.get("/team/invitations", headers=_auth_headers(owner_token)).json()["items"]
    }
    assert statuses == {"rev-one@example.com": "revoked", "rev-two@example.com": "expired"}

    reinvited = _invite(client, owner_token, email="rev-two@example.com")
    assert reinvited.status_code == 200, reinvited.text

    too_long = _invite(client, owner_token, email="rev-three@example.com", expires_in_days=31)
    assert too_long.status_code == 422, too_long.text


def test_only_admin_manages_invitations(test_context):
    client, session_local = test_context
    owner_token = _register(client, email="inv-admin@example.com").json()["access_token"]
    manager_token = _team_member_token(
        client, session_local, owner_token, email="inv-manager@example.com", role="manager"
    )

    denied = _invite(client, manager_token, email="inv-new@example.com")
    assert denied.status_code == 403, denied.text
    listing = client.get("/team/invitations", headers=_auth_headers(manager_token))
    assert listing.status_code == 403, listing.text


def test_only_admin_can_rename_business(test_context):
    client, session_local = test_context
    owner_token = _register(client, email="rename-owner@example.com").json()["access_token"]
    manager_token = _team_member_token(
        client, session_local, owner_token, email="rename-manager@example.com", role="manager"
    )

    denied = client.patch("/auth/me", json={"business_name": "Hijacked"}, headers=_auth_headers(manager_token))
    assert denied.status_code == 403, denied.text

    renamed = client.patch(
        "/auth/me",
        json={"business_name": "Renamed Store", "full_name": "New Name"},
        headers=_auth_headers(owner_token),
    )
    assert renamed.status_code == 200, renamed.text
    assert renamed.json()["business_name"] == "Renamed Store"
    assert renamed.json()["full_name"] == "New Name"


def test_error_envelope_carries_request_id(test_context):
    client, _ = test_context
    res = client.get("/products", headers={"X-Request-ID": "req-123"})
    assert res.status_code == 401
    assert res.headers["x-request-id"] == "req-123"
    assert res.json()["error"] == {
        "code": "unauthorized",
        "message": "Not authenticated",
        "request_id": "req-123",
        "path": "/products",
        "details": None,
    }


def test_unknown_business_membership_returns_404(test_context):
    client, session_local = test_context
    _create_loose_user(session_local, email="lonely@example.com", username=f"lonely_{uuid.uuid4().hex[:6]}", full_name="Lonely")
    token = _login(client, "lonely@example.com").json()["access_token"]

    res = client.get("/dashboard/summary", headers=_auth_headers(token))
    assert res.status_code == 404, res.text
