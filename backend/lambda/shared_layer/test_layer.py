"""test_layer.py — Unit tests for vinteg_shared layer modules.

Run from shared_layer directory:
    PYTHONPATH=python python3 -m pytest test_layer.py -v
"""

from __future__ import annotations

import base64
import datetime as dt
import json
import os
import sys
import time
import unittest
import uuid
from decimal import Decimal
from unittest.mock import MagicMock, patch

# Ensure the layer's python/ directory is importable.
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "python"))

import pytest

from vinteg_shared.auth import (
    Session,
    hash_password,
    issue_token,
    require_admin,
    require_session,
    verify_password,
    verify_token,
)
from vinteg_shared.aws_clients import _get_s3
from vinteg_shared.errors import (
    AppError,
    ConfigurationError,
    Conflict,
    Forbidden,
    NotFound,
    RateLimited,
    Unauthorized,
    ValidationFailed,
    _is_configuration_fault,
)
from vinteg_shared.http_utils import (
    ApiRequest,
    _apply_headers,
    _error,
    _json_body,
    _no_content,
    _path_method,
    _request_from_event,
    _response,
)
from vinteg_shared.rate_limiter import UNKNOWN_CLIENT, RateLimiter, _client_key
from vinteg_shared.router import Router, route
from vinteg_shared.serialization import _json_default, _now_z, _to_snake, _to_snake_keys, _unix_now
from vinteg_shared.validation import (
    CreateAnnouncementRequest,
    CreateTaskRequest,
    UpdateTaskRequest,
    validate_body,
)


def _make_event(method="GET", path="/api/health", body=None, headers=None, source_ip="10.0.0.1"):
    """Build a mock API Gateway v2 event."""
    event = {
        "requestContext": {"http": {"method": method, "path": path, "sourceIp": source_ip}},
        "headers": headers or {},
        "rawPath": path,
    }
    if body is not None:
        event["body"] = json.dumps(body) if isinstance(body, (dict, list)) else body
    return event


def _request(headers=None, body=None):
    return ApiRequest(method="POST", path="/x", headers=headers or {}, body=body)


class _FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now


class AuthTests(unittest.TestCase):
    def test_password_round_trip(self):
        hashed = hash_password("s3cret-pass", rounds=4)
        self.assertNotEqual(hashed, "s3cret-pass")
        self.assertTrue(verify_password("s3cret-pass", hashed))
        self.assertFalse(verify_password("other-pass", hashed))

    def test_hashes_are_salted(self):
        self.assertNotEqual(hash_password("same", rounds=4), hash_password("same", rounds=4))

    def test_verify_malformed_hash_is_false(self):
        self.assertFalse(verify_password("anything", "not-a-bcrypt-hash"))
        self.assertFalse(verify_password("anything", ""))

    def test_long_passwords_truncate_consistently(self):
        base = "x" * 72
        hashed = hash_password(base + "tail-one", rounds=4)
        self.assertTrue(verify_password(base + "tail-two", hashed))

    def test_token_round_trip(self):
        token = issue_token({"id": "u1", "role": "ADMIN", "email": "a@b.co"}, secret="k" * 16)
        claims = verify_token(token, secret="k" * 16)
        self.assertEqual(claims["id"], "u1")
        self.assertEqual(claims["role"], "ADMIN")
        self.assertEqual(claims["exp"] - claims["iat"], 7 * 24 * 3600)

    def test_token_with_foreign_signature_is_none(self):
        token = issue_token({"id": "u1"}, secret="k" * 16)
        self.assertIsNone(verify_token(token, secret="z" * 16))

    def test_expired_token_is_none(self):
        token = issue_token({"id": "u1"}, secret="k" * 16, now=time.time() - 3600, ttl_seconds=60)
        self.assertIsNone(verify_token(token, secret="k" * 16))

    def test_garbage_token_is_none(self):
        self.assertIsNone(verify_token("not.a.jwt"))
        self.assertIsNone(verify_token(""))

    def test_require_session_missing_header(self):
        with self.assertRaises(Unauthorized) as ctx:
            require_session(_request())
        self.assertEqual(ctx.exception.message, "Unauthorized: Missing token")
        self.assertEqual(ctx.exception.status_code, 401)

    def test_require_session_invalid_token(self):
        with self.assertRaises(Unauthorized) as ctx:
            require_session(_request({"authorization": "Bearer nope"}))
        self.assertEqual(ctx.exception.message, "Unauthorized: Invalid or expired token")

    def test_require_session_valid_token(self):
        token = issue_token({"id": "u9", "role": "EMPLOYEE", "email": "e@corp.io"})
        session = require_session(_request({"authorization": f"Bearer {token}"}))
        self.assertEqual(session.user_id, "u9")
        self.assertEqual(session.email, "e@corp.io")
        self.assertFalse(session.is_admin)

    def test_require_admin(self):
        admin = Session("a", "ADMIN", "a@corp.io", 0, 1)
        employee = Session("e", "EMPLOYEE", "e@corp.io", 0, 1)
        self.assertIs(require_admin(admin), admin)
        with self.assertRaises(Forbidden):
            require_admin(employee)


class RateLimiterTests(unittest.TestCase):
    def _limiter(self, clock=None, rng=lambda: 1.0, **kwargs):
        kwargs.setdefault("limit", 300)
        kwargs.setdefault("window_seconds", 60)
        kwargs.setdefault("sweep_probability", 0.05)
        return RateLimiter(clock=clock or _FakeClock(), rng=rng, **kwargs)

    def test_301st_call_in_window_is_rejected(self):
        limiter = self._limiter()
        results = [limiter.allow("1.2.3.4") for _ in range(301)]
        self.assertTrue(all(results[:300]))
        self.assertFalse(results[300])

    def test_count_is_capped_at_limit(self):
        limiter = self._limiter(limit=3)
        for _ in range(10):
            limiter.allow("ip")
        self.assertEqual(limiter.record("ip").count, 3)

    def test_window_elapsed_resets_count(self):
        clock = _FakeClock()
        limiter = self._limiter(clock=clock, limit=2)
        self.assertTrue(limiter.allow("ip"))
        self.assertTrue(limiter.allow("ip"))
        self.assertFalse(limiter.allow("ip"))
        clock.now += 61
        self.assertTrue(limiter.allow("ip"))
        self.assertEqual(limiter.record("ip").count, 1)

    def test_clients_are_counted_separately(self):
        limiter = self._limiter(limit=1)
        self.assertTrue(limiter.allow("a"))
        self.assertTrue(limiter.allow("b"))
        self.assertFalse(limiter.allow("a"))

    def test_sweep_drops_only_stale_records(self):
        clock = _FakeClock()
        rolls = iter([1.0, 1.0, 0.0])
        limiter = self._limiter(clock=clock, rng=lambda: next(rolls))
        limiter.allow("old")
        clock.now += 61
        limiter.allow("fresh")
        self.assertEqual(len(limiter), 2)
        clock.now += 1
        limiter.allow("fresh")  # rng 0.0 -> sweep
        self.assertEqual(len(limiter), 1)
        self.assertIsNone(limiter.record("old"))

    def test_retry_after(self):
        clock = _FakeClock()
        limiter = self._limiter(clock=clock)
        self.assertEqual(limiter.retry_after("ip"), 0)
        limiter.allow("ip")
        clock.now += 20.5
        self.assertEqual(limiter.retry_after("ip"), 40)

    def test_client_key_prefers_first_forwarded_hop(self):
        event = _make_event(headers={"X-Forwarded-For": " 203.0.113.7 , 10.0.0.2"})
        self.assertEqual(_client_key(event), "203.0.113.7")

    def test_client_key_falls_back_to_source_ip(self):
        self.assertEqual(_client_key(_make_event(source_ip="198.51.100.4")), "198.51.100.4")

    def test_client_key_unknown(self):
        self.assertEqual(_client_key({"headers": {}}), UNKNOWN_CLIENT)

    def test_client_key_rest_api_identity(self):
        event = {"headers": {}, "requestContext": {"identity": {"sourceIp": "192.0.2.9"}}}
        self.assertEqual(_client_key(event), "192.0.2.9")


class ValidationTests(unittest.TestCase):
    def _run(self, schema, body):
        seen = {}

        @validate_body(schema)
        def handler(request, *params):
            seen["payload"] = request.payload
            seen["body"] = request.body
            seen["params"] = params
            return {"statusCode": 200}

        handler(_request(body=body), "p1")
        return seen

    def test_missing_title_names_title(self):
        with self.assertRaises(ValidationFailed) as ctx:
            self._run(CreateTaskRequest, {"priority": "high"})
        self.assertTrue(ctx.exception.message.startswith("Validation Error: "))
        self.assertIn("title", ctx.exception.message)

    def test_all_violations_are_reported(self):
        with self.assertRaises(ValidationFailed) as ctx:
            self._run(CreateAnnouncementRequest, {"title": "x", "priority": "urgent"})
        message = ctx.exception.message
        self.assertIn("title", message)
        self.assertIn("content", message)
        self.assertIn("priority", message)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_non_object_body_fails(self):
        with self.assertRaises(ValidationFailed):
            self._run(CreateTaskRequest, ["not", "an", "object"])

    def test_success_sets_payload_and_params(self):
        seen = self._run(CreateTaskRequest, {"title": "Ship it", "priority": "low", "extra": 1})
        self.assertIsInstance(seen["payload"], CreateTaskRequest)
        self.assertEqual(seen["payload"].title, "Ship it")
        self.assertNotIn("extra", seen["body"])
        self.assertEqual(seen["params"], ("p1",))

    def test_blank_project_and_due_date_become_none(self):
        seen = self._run(CreateTaskRequest, {"title": "t", "priority": "low", "projectId": "", "due_date": " "})
        self.assertIsNone(seen["payload"].project_id)
        self.assertIsNone(seen["payload"].due_date)

    def test_invalid_project_uuid_rejected(self):
        with self.assertRaises(ValidationFailed) as ctx:
            self._run(CreateTaskRequest, {"title": "t", "priority": "low", "project_id": "nope"})
        self.assertIn("project_id", ctx.exception.message)

    def test_partial_update_accepts_camel_case(self):
        seen = self._run(UpdateTaskRequest, {"assigneeName": "Ann", "dueDate": ""})
        fields = seen["payload"].model_dump(exclude_unset=True)
        self.assertEqual(fields, {"assignee_name": "Ann", "due_date": None})

    def test_partial_update_rejects_null_required_columns(self):
        with self.assertRaises(ValidationFailed) as ctx:
            self._run(UpdateTaskRequest, {"title": None, "priority": None})
        self.assertIn("title: Value error, must not be null", ctx.exception.message)
        self.assertIn("priority: Value error, must not be null", ctx.exception.message)

    def test_partial_update_allows_null_description(self):
        seen = self._run(UpdateTaskRequest, {"description": None})
        self.assertEqual(seen["payload"].model_dump(exclude_unset=True), {"description": None})


class HttpUtilsTests(unittest.TestCase):
    def test_response_format(self):
        resp = _response(200, {"key": "val"})
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(resp["headers"]["Content-Type"], "application/json")
        self.assertEqual(json.loads(resp["body"]), {"key": "val"})

    def test_error_envelope(self):
        resp = _error(400, "bad input")
        self.assertEqual(json.loads(resp["body"]), {"message": "bad input"})

    def test_no_content(self):
        self.assertEqual(_no_content()["statusCode"], 204)
        self.assertEqual(_no_content()["body"], "")

    def test_apply_headers_reflects_origin(self):
        resp = _apply_headers(_response(200, {}), "https://intranet.example")
        headers = resp["headers"]
        self.assertEqual(headers["Access-Control-Allow-Origin"], "https://intranet.example")
        self.assertEqual(headers["Access-Control-Allow-Credentials"], "true")
        self.assertEqual(headers["X-Frame-Options"], "DENY")
        self.assertEqual(headers["X-Content-Type-Options"], "nosniff")
        self.assertEqual(headers["Cache-Control"], "no-store, max-age=0, must-revalidate")
        self.assertEqual(headers["Content-Type"], "application/json")

    def test_apply_headers_without_origin(self):
        resp = _apply_headers(_no_content(), None)
        self.assertEqual(resp["headers"]["Access-Control-Allow-Origin"], "*")

    def test_json_body_base64(self):
        raw = base64.b64encode(b'{"key": "b64"}').decode()
        self.assertEqual(_json_body({"body": raw, "isBase64Encoded": True}), {"key": "b64"})

    def test_json_body_empty(self):
        self.assertEqual(_json_body({"body": ""}), {})

    def test_json_body_invalid(self):
        with self.assertRaises(ValidationFailed) as ctx:
            _json_body({"body": "{oops"})
        self.assertEqual(ctx.exception.message, "Invalid JSON body")

    def test_json_body_base64_not_utf8(self):
        raw = base64.b64encode(b"\xff\xfe{").decode()
        with self.assertRaises(ValidationFailed) as ctx:
            _json_body({"body": raw, "isBase64Encoded": True})
        self.assertEqual(ctx.exception.message, "Invalid JSON body")

    def test_json_body_bad_base64(self):
        with self.assertRaises(ValidationFailed):
            _json_body({"body": "not*base64!", "isBase64Encoded": True})

    def test_path_method_strips_query(self):
        event = {"httpMethod": "post", "path": "/api/tasks?x=1"}
        self.assertEqual(_path_method(event), ("POST", "/api/tasks"))

    def test_request_from_event_lowercases_headers(self):
        req = _request_from_event(_make_event(headers={"Authorization": "Bearer t"}, body={"a": 1}))
        self.assertEqual(req.header("Authorization"), "Bearer t")
        self.assertEqual(req.body, {"a": 1})
        self.assertEqual(req.source_ip, "10.0.0.1")


class SerializationTests(unittest.TestCase):
    def test_json_default_types(self):
        moment = dt.datetime(2024, 5, 1, 12, 30, tzinfo=dt.timezone.utc)
        ident = uuid.UUID("12345678-1234-5678-1234-567812345678")
        encoded = json.loads(json.dumps(
            {"at": moment, "day": dt.date(2024, 5, 1), "id": ident, "n": Decimal("3"), "f": Decimal("1.5")},
            default=_json_default,
        ))
        self.assertEqual(encoded["at"], "2024-05-01T12:30:00Z")
        self.assertEqual(encoded["day"], "2024-05-01")
        self.assertEqual(encoded["id"], str(ident))
        self.assertEqual(encoded["n"], 3)
        self.assertEqual(encoded["f"], 1.5)

    def test_to_snake(self):
        self.assertEqual(_to_snake("assigneeName"), "assignee_name")
        self.assertEqual(_to_snake("already_snake"), "already_snake")
        self.assertEqual(_to_snake_keys({"dueDate": 1, "projectId": None}), {"due_date": 1, "project_id": None})

    def test_now_z_format(self):
        self.assertRegex(_now_z(), r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{6}Z$")

    def test_unix_now(self):
        self.assertAlmostEqual(_unix_now(), int(time.time()), delta=2)


class ErrorsTests(unittest.TestCase):
    def test_app_error_defaults(self):
        err = NotFound("gone")
        self.assertEqual(err.status_code, 404)
        self.assertTrue(err.is_operational)
        self.assertEqual(AppError("teapot", 418).status_code, 418)

    def test_rate_limited_carries_retry_after(self):
        err = RateLimited("slow down", retry_after=12)
        self.assertEqual(err.status_code, 429)
        self.assertEqual(err.retry_after, 12)

    def test_configuration_fault_detection(self):
        self.assertTrue(_is_configuration_fault(ConfigurationError("boom")))
        self.assertTrue(_is_configuration_fault(RuntimeError("DATABASE_URL is missing")))
        self.assertFalse(_is_configuration_fault(RuntimeError("db down")))


class AwsClientTests(unittest.TestCase):
    @patch("vinteg_shared.aws_clients.boto3")
    def test_get_s3_singleton(self, mock_boto3):
        import vinteg_shared.aws_clients as clients

        clients._s3 = None  # Reset singleton
        mock_boto3.client.return_value = MagicMock()

        self.assertIs(_get_s3(), _get_s3())
        mock_boto3.client.assert_called_once()

        clients._s3 = None  # Clean up


# ---------------------------------------------------------------------------
# Router (pytest style)
# ---------------------------------------------------------------------------


def _ok(request, *params):
    return _response(200, {"params": list(params)})


def _boom(request, *params):
    raise RuntimeError("secret internals")


def _config_boom(request, *params):
    raise ConfigurationError("Configuration Error: DATABASE_URL is not set")


def _conflict(request, *params):
    raise Conflict("Email already in use")


@pytest.fixture
def router():
    routes = [
        route("GET", r"/api/items", _ok),
        route("GET", r"/api/items/([^/]+)", _ok),
        route("POST", r"/api/items", _conflict),
        route("GET", r"/api/boom", _boom),
        route("GET", r"/api/config", _config_boom),
    ]
    return Router(routes, RateLimiter(limit=3, window_seconds=60, rng=lambda: 1.0))


def _body(resp):
    return json.loads(resp["body"]) if resp["body"] else None


def test_unknown_route_names_method_and_path(router):
    resp = router.dispatch(_make_event("GET", "/api/nope"))
    assert resp["statusCode"] == 404
    assert _body(resp) == {"message": "Route not found: GET /api/nope"}


def test_method_must_match(router):
    resp = router.dispatch(_make_event("DELETE", "/api/items"))
    assert resp["statusCode"] == 404


def test_path_params_are_positional(router):
    resp = router.dispatch(_make_event("GET", "/api/items/abc"))
    assert resp["statusCode"] == 200
    assert _body(resp) == {"params": ["abc"]}


def test_pattern_must_match_whole_path(router):
    resp = router.dispatch(_make_event("GET", "/api/items/abc/extra"))
    assert resp["statusCode"] == 404


def test_query_string_is_ignored_for_matching(router):
    event = _make_event("GET", "/api/items")
    event["rawPath"] = "/api/items?page=2"
    assert router.dispatch(event)["statusCode"] == 200


def test_options_short_circuits(router):
    resp = router.dispatch(_make_event("OPTIONS", "/api/anything", headers={"origin": "https://a.example"}))
    assert resp["statusCode"] == 200
    assert resp["body"] == ""
    assert resp["headers"]["Access-Control-Allow-Origin"] == "https://a.example"


def test_options_does_not_consume_rate_limit(router):
    for _ in range(10):
        router.dispatch(_make_event("OPTIONS", "/api/items"))
    assert router.dispatch(_make_event("GET", "/api/items"))["statusCode"] == 200


def test_rate_limit_returns_429_with_retry_after(router):
    for _ in range(3):
        assert router.dispatch(_make_event("GET", "/api/items"))["statusCode"] == 200
    resp = router.dispatch(_make_event("GET", "/api/items"))
    assert resp["statusCode"] == 429
    assert _body(resp) == {"message": "Too many requests. Please try again later."}
    assert int(resp["headers"]["Retry-After"]) > 0
    assert resp["headers"]["X-Frame-Options"] == "DENY"


def test_app_error_translated_verbatim(router):
    resp = router.dispatch(_make_event("POST", "/api/items", body={}))
    assert resp["statusCode"] == 409
    assert _body(resp) == {"message": "Email already in use"}


def test_unclassified_error_is_generic_500(router):
    resp = router.dispatch(_make_event("GET", "/api/boom"))
    assert resp["statusCode"] == 500
    assert _body(resp) == {"message": "Internal Server Error"}


def test_configuration_fault_is_verbatim(router):
    resp = router.dispatch(_make_event("GET", "/api/config"))
    assert resp["statusCode"] == 500
    assert _body(resp) == {"message": "Configuration Error: DATABASE_URL is not set"}


def test_invalid_json_body_is_400(router):
    resp = router.dispatch(_make_event("POST", "/api/items", body="{broken"))
    assert resp["statusCode"] == 400
    assert _body(resp) == {"message": "Invalid JSON body"}


def test_undecodable_base64_body_is_400(router):
    event = _make_event("POST", "/api/items")
    event["body"] = base64.b64encode(b"\xff\xfe{").decode()
    event["isBase64Encoded"] = True
    resp = router.dispatch(event)
    assert resp["statusCode"] == 400
    assert _body(resp) == {"message": "Invalid JSON body"}


def test_route_table_preserves_order(router):
    assert router.route_table()[0] == ("GET", "/api/items")
    assert len(router.route_table()) == 5


# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def sqlite_engine():
    import vinteg_shared.database as database

    database._reset_engine()
    database._get_engine("sqlite://")
    yield database
    database._reset_engine()


def test_execute_and_fetch(sqlite_engine):
    db = sqlite_engine
    db._execute("CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT UNIQUE)")
    db._execute("INSERT INTO users (email) VALUES (:email)", {"email": "a@corp.io"})
    rows = db._fetch_all("SELECT email FROM users WHERE email = :email", {"email": "a@corp.io"})
    assert rows == [{"email": "a@corp.io"}]


def test_unique_violation_becomes_conflict(sqlite_engine):
    db = sqlite_engine
    db._execute("CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT UNIQUE)")
    db._execute("INSERT INTO users (email) VALUES (:email)", {"email": "a@corp.io"})
    with pytest.raises(Conflict) as exc_info:
        db._execute(
            "INSERT INTO users (email) VALUES (:email)",
            {"email": "a@corp.io"},
            conflict_message="Email already in use",
        )
    assert exc_info.value.message == "Email already in use"
    assert exc_info.value.status_code == 409


def test_normalize_url_pins_psycopg_driver():
    from vinteg_shared.database import _normalize_url

    assert _normalize_url("postgres://u:p@h/db") == "postgresql+psycopg://u:p@h/db"
    assert _normalize_url("postgresql://h/db") == "postgresql+psycopg://h/db"
    assert _normalize_url("sqlite://") == "sqlite://"


def test_missing_database_url_is_configuration_error():
    import vinteg_shared.database as database

    database._reset_engine()
    with patch.object(database, "DATABASE_URL", ""):
        with pytest.raises(ConfigurationError) as exc_info:
            database._get_engine()
    assert "DATABASE_URL" in str(exc_info.value)


if __name__ == "__main__":
    unittest.main()
