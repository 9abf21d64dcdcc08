"""Scenario tests for running request sequences with chained variables."""

import datetime
from unittest.mock import MagicMock

import requests

from reqrun.errors import ExtractionMiss, InvalidQuery, ParseError, ResolutionError, TransportError
from reqrun.executor import HttpTransport
from reqrun.loader import build_store
from reqrun.materializer import materialize
from reqrun.models import AuthDescriptor, BodyDefinition, RunConfig, RunState
from reqrun.runner import RunOrchestrator
from tests.conftest import FakeTransport, make_definition, make_response


def _run(definitions, responses=None, store=None, sink=None):
    transport = FakeTransport(responses)
    orchestrator = RunOrchestrator(RunConfig(), transport)
    store = store if store is not None else build_store(defaults={"host": "http://x"})
    report = orchestrator.run(definitions, store, sink=sink)
    return report, transport, orchestrator, store


def _login_then_item():
    return [
        make_definition(name="login", url="{{host}}/login", extract={"auth_token": "$.token"}),
        make_definition(
            name="item",
            method="POST",
            url="{{host}}/item",
            headers=(("Authorization", "Bearer {{auth_token}}"),),
        ),
    ]


# ── Chaining ──────────────────────────────────────────────────────────────


class TestChaining:
    def test_login_token_reaches_next_request(self):
        report, transport, orchestrator, _ = _run(
            _login_then_item(),
            [make_response(body={"token": "abc"}), make_response(status_code=201, body={"id": 1})],
        )
        assert report.ok
        assert report.state is RunState.COMPLETED
        assert orchestrator.state is RunState.COMPLETED
        assert transport.sent[0].url == "http://x/login"
        assert transport.sent[1].method == "POST"
        assert transport.sent[1].header("Authorization") == "Bearer abc"
        assert [r.name for r in report.results] == ["login", "item"]
        assert report.results[0].extractions[0].variable == "auth_token"
        assert report.results[0].extractions[0].value == "abc"

    def test_extracted_value_overrides_runtime_override(self):
        store = build_store(defaults={"host": "http://x"}, overrides={"v": "cli"})
        definitions = [
            make_definition(name="a", url="{{host}}/{{v}}", extract={"v": "$.v"}),
            make_definition(name="b", url="{{host}}/{{v}}"),
        ]
        _, transport, _, _ = _run(definitions, [make_response(body={"v": "server"})], store=store)
        assert [r.url for r in transport.sent] == ["http://x/cli", "http://x/server"]

    def test_request_vars_apply_to_that_request_only(self):
        definitions = [
            make_definition(name="a", url="{{host}}/{{p}}", variables={"p": "local"}),
            make_definition(name="b", url="{{host}}/{{p}}"),
        ]
        report, transport, _, _ = _run(definitions)
        assert transport.sent[0].url == "http://x/local"
        assert len(transport.sent) == 1
        assert isinstance(report.error, ResolutionError)

    def test_extractions_applied_in_declared_order(self):
        definitions = [
            make_definition(name="a", extract={"x": "$.first", "y": "$.second", "x2": "$.first"}),
        ]
        report, _, _, store = _run(definitions, [make_response(body={"first": 1, "second": [2]})])
        assert [(e.variable, e.value) for e in report.results[0].extractions] == [
            ("x", "1"),
            ("y", "[2]"),
            ("x2", "1"),
        ]
        assert store.lookup("y") == "[2]"

    def test_sink_receives_each_result(self):
        seen = []
        report, _, _, _ = _run(_login_then_item(), [make_response(body={"token": "t"})], sink=seen.append)
        assert seen == report.results


# ── Forward-only propagation ──────────────────────────────────────────────


class TestForwardOnly:
    def test_rematerializing_earlier_request_is_unaffected(self):
        """Request 0 re-materialized from its own snapshot after request 2 extracted."""
        definitions = [
            make_definition(name="r0", url="{{host}}/{{step}}", headers=(("X-Host", "{{host}}"),)),
            make_definition(name="r1", url="{{host}}/one", extract={"step": "$.step"}),
            make_definition(name="r2", url="{{host}}/two", extract={"host": "$.host"}),
        ]
        store = build_store(defaults={"host": "http://x", "step": "zero"})
        report, transport, _, store = _run(
            definitions,
            [
                make_response(body={}),
                make_response(body={"step": "one"}),
                make_response(body={"host": "http://changed"}),
            ],
            store=store,
        )
        assert report.ok
        assert store.lookup("host") == "http://changed"
        assert store.scopes[0].values == {"host": "http://x", "step": "zero"}

        first = report.results[0]
        again = materialize(definitions[0], first.variables)
        assert again == first.request == transport.sent[0]
        assert again.url == "http://x/zero"

    def test_earlier_results_keep_their_view(self):
        report, _, _, _ = _run(_login_then_item(), [make_response(body={"token": "abc"})])
        assert "auth_token" not in report.results[0].variables
        assert report.results[1].variables["auth_token"] == "abc"


# ── Aborts ────────────────────────────────────────────────────────────────


class TestAborts:
    def test_extraction_miss_stops_run(self):
        definitions = [
            make_definition(name="a", extract={"id": "$.data.id"}),
            make_definition(name="b", url="{{host}}/{{id}}"),
        ]
        report, transport, orchestrator, _ = _run(definitions, [make_response(body={"other": 1})])
        assert report.state is RunState.ABORTED
        assert orchestrator.state is RunState.ABORTED
        assert isinstance(report.error, ExtractionMiss)
        assert report.error.path == "$.data.id"
        assert report.failed_index == 0
        assert len(transport.sent) == 1
        assert len(report.results) == 1
        assert report.results[0].error is report.error
        assert report.results[0].response.status_code == 200

    def test_partial_extractions_recorded_on_miss(self):
        definitions = [make_definition(name="a", extract={"ok": "$.ok", "id": "$.id"})]
        report, _, _, _ = _run(definitions, [make_response(body={"ok": True})])
        assert [e.variable for e in report.results[0].extractions] == ["ok"]

    def test_undefined_variable_aborts_before_dispatch(self):
        definitions = [
            make_definition(name="ok", url="{{host}}/ok"),
            make_definition(name="bad", url="{{host}}/{{undefined_var}}"),
            make_definition(name="never", url="{{host}}/never"),
        ]
        report, transport, _, _ = _run(definitions)
        assert isinstance(report.error, ResolutionError)
        assert report.error.name == "undefined_var"
        assert report.failed_index == 1
        assert [r.name for r in report.results] == ["ok"]
        assert [r.url for r in transport.sent] == ["http://x/ok"]

    def test_undefined_variable_in_first_request(self):
        report, transport, _, _ = _run([make_definition(url="{{undefined_var}}")])
        assert report.results == []
        assert transport.sent == []
        assert report.failed_index == 0

    def test_transport_error_records_result(self):
        definitions = [make_definition(name="a"), make_definition(name="b")]
        report, transport, _, _ = _run(definitions, [TransportError("Connection error: refused")])
        assert isinstance(report.error, TransportError)
        assert len(transport.sent) == 1
        assert len(report.results) == 1
        assert report.results[0].response is None
        assert report.results[0].error is report.error

    def test_invalid_query_aborts_before_any_dispatch(self):
        definitions = [
            make_definition(name="a"),
            make_definition(name="b", extract={"x": "$.items[0"}),
        ]
        report, transport, _, _ = _run(definitions)
        assert isinstance(report.error, InvalidQuery)
        assert report.failed_index is None
        assert transport.sent == []
        assert report.results == []

    def test_unstructured_body_with_rules_is_parse_error(self):
        definitions = [make_definition(name="a", extract={"x": "$.x"}), make_definition(name="b")]
        response = make_response(body="plain text", content_type="text/plain")
        report, transport, _, _ = _run(definitions, [response])
        assert isinstance(report.error, ParseError)
        assert len(transport.sent) == 1

    def test_unstructured_body_without_rules_is_fine(self):
        response = make_response(body="plain text", content_type="text/plain")
        report, _, _, _ = _run([make_definition()], [response])
        assert report.ok

    def test_http_error_status_is_not_an_abort(self):
        report, transport, _, _ = _run(
            [make_definition(name="a"), make_definition(name="b")],
            [make_response(status_code=500, body={"error": "boom"})],
        )
        assert report.ok
        assert len(transport.sent) == 2


# ── YAML values and non-ASCII text ────────────────────────────────────────


class TestYamlAndUnicode:
    def test_yaml_response_dates_extract_as_iso_text(self):
        definitions = [
            make_definition(name="a", extract={"created": "$.created", "meta": "$.meta"}),
            make_definition(name="b", url="{{host}}/since/{{created}}"),
        ]
        response = make_response(
            body="created: 2024-01-01\nmeta: {day: 2024-02-03, n: 1}\n",
            content_type="application/yaml",
        )
        report, transport, _, store = _run(definitions, [response])
        assert report.ok, report.error
        assert store.lookup("created") == "2024-01-01"
        assert store.lookup("meta") == '{"day":"2024-02-03","n":1}'
        assert transport.sent[1].url == "http://x/since/2024-01-01"

    def test_json_body_with_date_value(self):
        body = BodyDefinition("json", {"when": datetime.date(2024, 1, 1), "who": "{{host}}"})
        report, transport, _, _ = _run([make_definition(method="POST", body=body)])
        assert report.ok, report.error
        assert transport.sent[0].body == b'{"when": "2024-01-01", "who": "http://x"}'

    def test_non_ascii_value_in_json_body(self):
        definitions = [
            make_definition(name="a", extract={"name": "$.name"}),
            make_definition(name="b", method="POST", body=BodyDefinition("json", {"name": "{{name}}"})),
        ]
        report, transport, _, _ = _run(definitions, [make_response(body={"name": "caf€"})])
        assert report.ok
        assert transport.sent[1].body == b'{"name": "caf\\u20ac"}'

    def test_unencodable_header_aborts_with_result(self):
        session = MagicMock(spec=requests.Session)
        session.headers = {}
        session.request.side_effect = UnicodeEncodeError("latin-1", "caf€", 3, 4, "ordinal not in range(256)")
        transport = HttpTransport(RunConfig(), session=session)
        store = build_store(defaults={"name": "caf€"})
        definitions = [
            make_definition(name="a", headers=(("X-Name", "{{name}}"),)),
            make_definition(name="b"),
        ]
        report = RunOrchestrator(RunConfig(), transport).run(definitions, store)
        assert report.state is RunState.ABORTED
        assert isinstance(report.error, TransportError)
        assert "Request failed" in str(report.error)
        assert report.failed_index == 0
        assert len(report.results) == 1
        assert report.results[0].response is None
        assert report.results[0].request.header("X-Name") == "caf€"
        assert session.request.call_count == 1


# ── Determinism ───────────────────────────────────────────────────────────


class TestDeterminism:
    def _sequence(self):
        return [
            make_definition(name="list", url="{{host}}/items", extract={"item": "$.items[*].id"}),
            make_definition(
                name="get",
                method="PUT",
                url="{{host}}/items/{{item}}",
                body=BodyDefinition("json", {"id": "{{item}}", "n": [1, 2]}),
                auth=AuthDescriptor("bearer", token="{{item}}"),
            ),
        ]

    def _responses(self):
        return [make_response(body={"items": [{"id": "first"}, {"id": "second"}]}), make_response(body={})]

    def test_first_match_bound_across_runs(self):
        urls = set()
        for _ in range(3):
            _, transport, _, _ = _run(self._sequence(), self._responses())
            urls.add(transport.sent[1].url)
        assert urls == {"http://x/items/first"}

    def test_repeated_runs_produce_identical_requests(self):
        _, first, _, _ = _run(self._sequence(), self._responses())
        _, second, _, _ = _run(self._sequence(), self._responses())
        assert first.sent == second.sent
        assert [r.body for r in first.sent] == [r.body for r in second.sent]
