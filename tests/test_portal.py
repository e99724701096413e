from fastapi.testclient import TestClient

from conecta.auth.jwt import get_db
from conecta.constants import PORTAL_COOKIE_NAME
from conecta.main import app
from conecta.models.models import Customer, FollowUpEvent, Notification
from conecta.services import notifications as notification_service


def _override_get_db(session):
    def _get_db():
        try:
            yield session
        finally:
            pass

    return _get_db


def _portal_client(db_session, email: str, password: str) -> TestClient:
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    client = TestClient(app)
    response = client.post("/api/portal/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return client


def test_customer_login_and_profile(db_session, create_customer):
    customer = create_customer(email="client@example.com", portal_password="portal-pass")
    try:
        client = _portal_client(db_session, "Client@Example.com", "portal-pass")
        me = client.get("/api/portal/auth/me").json()["user"]
    finally:
        app.dependency_overrides.clear()

    assert me["role"] == "customer"
    assert me["customerId"] == customer.id
    assert me["emailNotificationsEnabled"] is True
    assert me["smsNotificationsEnabled"] is False
    assert me["preferredLanguage"] == "es"


def test_agent_login_takes_precedence(db_session, create_agent, create_customer):
    agent = create_agent(portal_email="shared@example.com", portal_password="agent-pass")
    create_customer(email="shared@example.com", portal_password="customer-pass")
    try:
        client = _portal_client(db_session, "shared@example.com", "agent-pass")
        me = client.get("/api/portal/auth/me").json()["user"]
        notifications = client.get("/api/portal/notifications").json()
    finally:
        app.dependency_overrides.clear()

    assert me["role"] == "agent"
    assert me["agentId"] == agent.id
    assert notifications == {"notifications": [], "unreadCount": 0}


def test_wrong_portal_password(db_session, create_customer):
    create_customer(email="client@example.com", portal_password="portal-pass")
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    client = TestClient(app)
    try:
        response = client.post("/api/portal/auth/login", json={"email": "client@example.com", "password": "nope"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401
    assert PORTAL_COOKIE_NAME not in response.cookies


def test_portal_routes_require_portal_cookie(db_session):
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    client = TestClient(app)
    try:
        assert client.get("/api/portal/auth/me").status_code == 401
        assert client.get("/api/portal/transactions").status_code == 401
    finally:
        app.dependency_overrides.clear()


def test_notification_inbox_flow(db_session, create_user, create_customer, create_transaction):
    admin = create_user(email="admin@example.com", role_name="admin")
    customer = create_customer(email="client@example.com", portal_password="portal-pass")
    transaction = create_transaction(actor=admin, buyer_ids=[customer.id])
    tasks = db_session.query(FollowUpEvent).filter(FollowUpEvent.transaction_id == transaction.id).limit(2).all()
    for task in tasks:
        notification_service.notify_task_completion(db_session, task)

    try:
        client = _portal_client(db_session, "client@example.com", "portal-pass")
        inbox = client.get("/api/portal/notifications").json()
        assert inbox["unreadCount"] == 2
        assert len(inbox["notifications"]) == 2

        first_id = inbox["notifications"][0]["id"]
        assert client.patch("/api/portal/notifications", json={"notificationId": first_id}).status_code == 200
        assert client.get("/api/portal/notifications").json()["unreadCount"] == 1

        assert client.patch("/api/portal/notifications", json={"notificationId": 9999}).status_code == 404
        assert client.patch("/api/portal/notifications", json={}).status_code == 400

        assert client.patch("/api/portal/notifications", json={"markAllAsRead": True}).status_code == 200
        assert client.get("/api/portal/notifications").json()["unreadCount"] == 0
    finally:
        app.dependency_overrides.clear()

    assert db_session.query(Notification).filter(Notification.read_at.is_(None)).count() == 0


def test_notification_preferences_update(db_session, create_customer):
    customer = create_customer(email="client@example.com", portal_password="portal-pass")
    try:
        client = _portal_client(db_session, "client@example.com", "portal-pass")
        response = client.put(
            "/api/portal/settings/notifications", json={"emailNotificationsEnabled": False}
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "preferences": {"smsNotificationsEnabled": False, "emailNotificationsEnabled": False},
    }
    db_session.expire_all()
    assert db_session.get(Customer, customer.id).email_notifications_enabled is False


def test_portal_transactions_show_role_and_progress(
    db_session, create_user, create_agent, create_customer, create_property, create_transaction
):
    admin = create_user(email="admin@example.com", role_name="admin")
    agent = create_agent(portal_email="agent.portal@example.com", portal_password="agent-pass")
    buyer = create_customer(email="buyer@example.com", portal_password="portal-pass")
    seller = create_customer(email="seller@example.com")
    prop = create_property(address="9 Elm Street")
    bought = create_transaction(actor=admin, buyer_ids=[buyer.id], listing_agent_id=agent.id, property_id=prop.id)
    create_transaction(actor=admin, seller_ids=[seller.id])
    task = db_session.query(FollowUpEvent).filter(FollowUpEvent.transaction_id == bought.id).first()
    task.status = "completed"
    db_session.commit()

    try:
        client = _portal_client(db_session, "buyer@example.com", "portal-pass")
        customer_view = client.get("/api/portal/transactions").json()["transactions"]
        client = _portal_client(db_session, "agent.portal@example.com", "agent-pass")
        agent_view = client.get("/api/portal/transactions").json()["transactions"]
    finally:
        app.dependency_overrides.clear()

    assert [item["id"] for item in customer_view] == [bought.id]
    assert customer_view[0]["role"] == "buyer"
    assert customer_view[0]["property_address"] == "9 Elm Street"
    assert customer_view[0]["completed_tasks"] == 1
    assert [item["id"] for item in agent_view] == [bought.id]
    assert agent_view[0]["role"] == "listing_agent"
