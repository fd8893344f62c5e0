"""test_persistence.py — SQL construction tests for intranet_api.persistence.

The query helpers are patched, so these check which statements and bound
parameters are produced without a database.

Run: python3 -m pytest test_persistence.py -v
"""

from __future__ import annotations

import json
import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.dirname(__file__))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "shared_layer", "python"))

import persistence  # noqa: E402


def test_update_task_only_touches_whitelisted_columns():
    with patch.object(persistence, "_execute") as mock_exec, \
            patch.object(persistence, "_get_task", return_value={"id": "t1"}) as mock_get:
        result = persistence._update_task(
            "t1", {"status": "done", "assignee_name": None, "author_id": "evil", "id": "other"}
        )
    assert result == {"id": "t1"}
    sql, params = mock_exec.call_args.args
    assert "status = CAST(:status AS task_status)" in sql
    assert "assignee_name = :assignee_name" in sql
    assert "author_id" not in sql
    assert params == {"status": "done", "assignee_name": None, "id": "t1"}
    mock_get.assert_called_once_with("t1")


def test_update_task_without_fields_skips_update():
    with patch.object(persistence, "_execute") as mock_exec, \
            patch.object(persistence, "_get_task", return_value=None):
        assert persistence._update_task("t1", {}) is None
    mock_exec.assert_not_called()


def test_update_user_drops_role_for_non_admins():
    with patch.object(persistence, "_fetch_one", return_value={"id": "u1"}) as mock_fetch:
        persistence._update_user("u1", {"name": "New", "role": "ADMIN"}, allow_role=False)
    sql, params = mock_fetch.call_args.args
    assert "role" not in params
    assert "name = :name" in sql
    assert sql.startswith("UPDATE users")


def test_update_user_admin_may_change_role():
    with patch.object(persistence, "_fetch_one", return_value={"id": "u1"}) as mock_fetch:
        persistence._update_user("u1", {"role": "ADMIN"}, allow_role=True)
    sql, params = mock_fetch.call_args.args
    assert "role = :role" in sql
    assert params["role"] == "ADMIN"


def test_update_user_with_nothing_to_change_reads_row():
    with patch.object(persistence, "_fetch_one", return_value=None) as mock_fetch:
        assert persistence._update_user("u1", {}, allow_role=False) is None
    assert mock_fetch.call_args.args[0].startswith("SELECT")


def test_insert_user_maps_unique_violation_message():
    with patch.object(persistence, "_execute", return_value=[{"id": "u1"}]) as mock_exec:
        persistence._insert_user(
            name="A", email="a@corp.io", role="EMPLOYEE", position="Dev",
            department="IT", password_hash="h", avatar_url="u",
        )
    assert mock_exec.call_args.kwargs["conflict_message"] == "Email already in use"
    assert "password_hash" not in mock_exec.call_args.args[0].split("RETURNING")[1]


def test_announcement_json_column_whitelist():
    with pytest.raises(ValueError):
        persistence._set_announcement_json("n1", "title", [])
    with patch.object(persistence, "_fetch_one", return_value={"id": "n1"}) as mock_fetch:
        persistence._set_announcement_json("n1", "liked_by", ["u1"])
    sql, params = mock_fetch.call_args.args
    assert "liked_by = CAST(:value AS jsonb)" in sql
    assert json.loads(params["value"]) == ["u1"]


def test_feed_likes_update_count():
    with patch.object(persistence, "_execute") as mock_exec:
        persistence._set_feed_likes("f1", ["u1", "u2"])
    _, params = mock_exec.call_args.args
    assert params["count"] == 2
    assert json.loads(params["likes"]) == ["u1", "u2"]


def test_delete_document_returns_storage_path():
    with patch.object(persistence, "_fetch_one", return_value={"storage_path": "db-storage"}):
        assert persistence._delete_document("d1") == "db-storage"
    with patch.object(persistence, "_fetch_one", return_value=None):
        assert persistence._delete_document("d404") is None
