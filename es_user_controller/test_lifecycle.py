"""Tests for Apply and Cleanup of a single resource"""

from unittest.mock import patch

import pytest

from .config import Config
from .conftest import make_user
from .elasticsearch_client import ElasticTransportError
from .lifecycle import LifecycleController, ReconciliationError, should_keep
from .models import ChangeKind, PermissionTier, Role


def deleting(**overrides):
    return make_user(deletion_timestamp="2026-10-19T10:00:00Z", finalizers=[Config.FINALIZER], **overrides)


def test_first_apply_provisions_everything(k8s, elastic):
    """A new resource gets a secret, a role and a user"""
    report = LifecycleController(k8s, elastic).apply(make_user())

    password = k8s.secrets["s1"][Config.SECRET_PASS].decode()
    assert k8s.secrets["s1"][Config.SECRET_USER] == b"alice"
    assert elastic.roles["role-alice"].to_body() == {
        "indices": [{"names": ["logs*"], "privileges": ["read", "write"]}]
    }
    assert elastic.users["alice"].roles == ["role-alice"]
    assert elastic.passwords["alice"] == password

    assert report.role.kind is ChangeKind.CREATED
    assert report.user.kind is ChangeKind.CREATED
    assert k8s.statuses["alice-user"].to_dict() == {"ok": True, "errorMessage": None}


def test_apply_is_idempotent(k8s, elastic):
    controller = LifecycleController(k8s, elastic)
    controller.apply(make_user())
    report = controller.apply(make_user())

    assert report.was_noop()
    assert k8s.count("create_secret") == 1
    assert k8s.count("patch_secret") == 0
    assert elastic.count("put_user") == 1
    assert elastic.count("put_role") == 1


def test_reapply_after_user_was_deleted_by_hand(k8s, elastic):
    controller = LifecycleController(k8s, elastic)
    controller.apply(make_user())
    del elastic.users["alice"]

    report = controller.apply(make_user())

    assert report.role.kind is ChangeKind.NOOP
    assert report.user.kind is ChangeKind.CREATED


def test_tier_change_updates_role_only(k8s, elastic):
    controller = LifecycleController(k8s, elastic)
    controller.apply(make_user(permissions=PermissionTier.READ))

    report = controller.apply(make_user(permissions=PermissionTier.CREATE))

    assert report.role.kind is ChangeKind.UPDATED
    assert report.role.reason == "attributes"
    assert report.user.kind is ChangeKind.NOOP
    assert elastic.roles["role-alice"] == Role(["logs*"], frozenset({"read", "write", "create"}))


def test_password_changed_by_hand_is_restored(k8s, elastic):
    controller = LifecycleController(k8s, elastic)
    controller.apply(make_user())
    elastic.passwords["alice"] = "changed-by-hand"
    pushes = elastic.count("put_user")

    report = controller.apply(make_user())

    assert report.user.kind is ChangeKind.UPDATED
    assert report.user.reason == "password"
    assert elastic.count("put_user") == pushes + 1
    assert elastic.passwords["alice"] == k8s.secrets["s1"][Config.SECRET_PASS].decode()
    assert k8s.statuses["alice-user"].ok


def test_failed_apply_records_status_and_raises(k8s, elastic):
    controller = LifecycleController(k8s, elastic)
    with patch.object(elastic, "get_user", side_effect=ElasticTransportError("GET /_security/user/alice failed")):
        with pytest.raises(ReconciliationError) as excinfo:
            controller.apply(make_user())

    assert isinstance(excinfo.value.cause, ElasticTransportError)
    status = k8s.statuses["alice-user"]
    assert status.ok is False
    assert "GET /_security/user/alice failed" in status.error_message
    # progress made before the failure is kept
    assert "s1" in k8s.secrets
    assert "role-alice" in elastic.roles


def test_status_write_failure_does_not_hide_the_cause(k8s, elastic):
    controller = LifecycleController(k8s, elastic)
    with patch.object(elastic, "get_role", side_effect=ElasticTransportError("down")), \
         patch.object(k8s, "patch_status", side_effect=RuntimeError("status down")):
        with pytest.raises(ReconciliationError) as excinfo:
            controller.apply(make_user())
    assert isinstance(excinfo.value.cause, ElasticTransportError)


def test_cleanup_deletes_user_then_role(k8s, elastic):
    controller = LifecycleController(k8s, elastic)
    controller.apply(make_user())
    elastic.calls.clear()

    assert controller.cleanup(deleting()) is True

    deletes = [call for call in elastic.calls if call[0].startswith("delete_")]
    assert deletes == [("delete_user", "alice"), ("delete_role", "role-alice")]
    assert "alice" not in elastic.users
    assert "role-alice" not in elastic.roles
    # the secret goes away with its owner, not through the controller
    assert "s1" in k8s.secrets


def test_cleanup_of_absent_user_and_role_succeeds(k8s, elastic):
    assert LifecycleController(k8s, elastic).cleanup(deleting()) is True
    assert elastic.count("delete_user") == 1
    assert elastic.count("delete_role") == 1


def test_failed_cleanup_raises(k8s, elastic):
    with patch.object(elastic, "delete_role", side_effect=ElasticTransportError("down")):
        with pytest.raises(ReconciliationError) as excinfo:
            LifecycleController(k8s, elastic).cleanup(deleting())
    assert isinstance(excinfo.value.cause, ElasticTransportError)


def test_keep_annotation_skips_cleanup(k8s, elastic):
    controller = LifecycleController(k8s, elastic)
    controller.apply(make_user())

    kept = controller.cleanup(deleting(annotations={Config.KEEP_ANNOTATION: "true"}))

    assert kept is False
    assert "alice" in elastic.users
    assert elastic.count("delete_user") == 0


def test_should_keep():
    assert should_keep(make_user()) is False
    assert should_keep(make_user(annotations={Config.KEEP_ANNOTATION: "yes"})) is True
    assert should_keep(make_user(annotations={Config.KEEP_ANNOTATION: "false"})) is False
    # unparseable values keep the credentials
    assert should_keep(make_user(annotations={Config.KEEP_ANNOTATION: "perhaps"})) is True
