from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from conecta.auth.jwt import get_current_user
from conecta.auth.policy import Capability, Resource, can, capabilities_for, require_capability, sees_only_assigned
from conecta.core.errors import register_exception_handlers


class DummyUser:
    def __init__(self, role_name: str):
        self.role_name = role_name


def _build_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.delete("/transactions")
    def delete_route(_: object = Depends(require_capability(Resource.TRANSACTION, Capability.DELETE))):
        return {"ok": True}

    @app.get("/drive")
    def drive_route(_: object = Depends(require_capability(Resource.DRIVE, Capability.MANAGE))):
        return {"ok": True}

    return app


def test_delete_is_limited_to_admin_and_manager():
    app = _build_app()
    client = TestClient(app)

    for role, expected in (("admin", 200), ("manager", 200), ("agent", 403), ("assistant", 403), ("", 403)):
        app.dependency_overrides[get_current_user] = lambda role=role: DummyUser(role)
        assert client.delete("/transactions").status_code == expected, role


def test_drive_management_is_admin_only():
    app = _build_app()
    client = TestClient(app)

    app.dependency_overrides[get_current_user] = lambda: DummyUser("manager")
    response = client.get("/drive")
    assert response.status_code == 403
    assert response.json()["error"] == "Forbidden"

    app.dependency_overrides[get_current_user] = lambda: DummyUser("admin")
    assert client.get("/drive").status_code == 200


def test_assistants_see_only_assigned_transactions():
    assert sees_only_assigned(DummyUser("assistant")) is True
    assert sees_only_assigned(DummyUser("agent")) is False
    assert sees_only_assigned(DummyUser("unknown")) is True


def test_document_delete_any_belongs_to_admin():
    assert can(DummyUser("admin"), Resource.DOCUMENT, Capability.DELETE_ANY)
    assert not can(DummyUser("manager"), Resource.DOCUMENT, Capability.DELETE_ANY)
    assert Capability.DELETE_OWN in capabilities_for("assistant", Resource.DOCUMENT)
    assert capabilities_for("nobody", Resource.TASK) == frozenset()
