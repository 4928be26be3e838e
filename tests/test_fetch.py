"""Tests for the mail-fetch collaborators.

The HTTP backend is exercised through a mocked requests.Session.
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests

from mailtriage.config_schema import FetchConfig
from mailtriage.core.errors import FetchError
from mailtriage.fetch import (
    BackendFetcher,
    Email,
    JsonFileFetcher,
    build_fetch_result,
    create_fetcher,
    dedupe_by_message_id,
)

BASE_URL = "https://imap.example.org"


def _response(status_code: int = 200, payload: Any = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


def _payload(message_id: str, sender: str = "clerk@court.gov.uk") -> dict[str, str]:
    return {
        "from": sender,
        "to": "me@example.ee",
        "subject": "Hearing listed",
        "body": "See attached",
        "date": "2024-01-05T10:00:00.000Z",
        "messageId": message_id,
    }


class TestEmailModels:
    def test_from_payload_accepts_backend_spelling(self) -> None:
        email = Email.from_payload(_payload("<a@x>"))
        assert email.sender == "clerk@court.gov.uk"
        assert email.recipient == "me@example.ee"
        assert email.message_id == "<a@x>"
        assert email.fetch_id

    def test_from_payload_accepts_record_spelling_and_defaults(self) -> None:
        fetched_at = datetime(2024, 1, 5, 12, tzinfo=UTC)
        email = Email.from_payload(
            {"sender": "a@b.c", "message_id": "<m>", "subject": None}, fetched_at
        )
        assert email.sender == "a@b.c"
        assert email.subject == ""
        assert email.recipient == ""
        assert email.date == fetched_at.isoformat()

    def test_fetch_ids_are_unique(self) -> None:
        assert Email.from_payload({}).fetch_id != Email.from_payload({}).fetch_id

    def test_dedupe_keeps_first_and_blank_ids(self) -> None:
        emails = [
            Email.from_payload(_payload("<a>")),
            Email.from_payload(_payload("<a>", sender="other@x.com")),
            Email.from_payload(_payload("")),
            Email.from_payload(_payload("")),
        ]
        unique = dedupe_by_message_id(emails)
        assert len(unique) == 3
        assert unique[0] is emails[0]

    def test_build_fetch_result_excludes_own_address(self) -> None:
        emails = [
            Email.from_payload(_payload("<a>")),
            Email.from_payload(_payload("<a>")),
            Email.from_payload(_payload("<b>", sender="Me@Example.ee")),
        ]
        result = build_fetch_result(emails, exclude_senders=["me@example.ee"])
        assert (result.fetched, result.inbound, result.filtered) == (3, 1, 0)
        assert [e.message_id for e in result.emails] == ["<a>"]


class TestJsonFileFetcher:
    def test_reads_list_and_wrapped_forms(self, tmp_path: Path) -> None:
        plain = tmp_path / "plain.json"
        plain.write_text(json.dumps([_payload("<a>"), _payload("<b>")]))
        wrapped = tmp_path / "wrapped.json"
        wrapped.write_text(json.dumps({"emails": [_payload("<a>")]}))

        assert JsonFileFetcher(plain).fetch_emails().inbound == 2
        assert JsonFileFetcher(wrapped).fetch_emails().inbound == 1

    def test_connectivity_reports_missing_file(self, tmp_path: Path) -> None:
        (hop,) = JsonFileFetcher(tmp_path / "missing.json").check_connectivity()
        assert hop.hop == "file"
        assert not hop.ok
        assert hop.error == "file not found"

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FetchError, match="not found") as exc_info:
            JsonFileFetcher(tmp_path / "missing.json").fetch_emails()
        assert exc_info.value.hop == "file"

    @pytest.mark.parametrize("content", ["{broken", '"just a string"'])
    def test_invalid_content_raises(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "bad.json"
        path.write_text(content)
        with pytest.raises(FetchError):
            JsonFileFetcher(path).fetch_emails()


class TestBackendConnectivity:
    def test_all_hops_ok(self) -> None:
        session = MagicMock()
        session.get.side_effect = [
            _response(200, {}),
            _response(200, {"status": "ok", "service": "imap", "account": "me@example.ee"}),
            _response(200, {"status": "ok", "config": {"bridge": "127.0.0.1:1025"}}),
        ]
        hops = BackendFetcher(BASE_URL + "/", session=session).check_connectivity()

        assert [h.hop for h in hops] == ["tunnel", "backend", "bridge"]
        assert all(h.ok for h in hops)
        assert hops[1].detail == {"service": "imap", "account": "me@example.ee"}
        assert hops[2].url == "127.0.0.1:1025"
        session.get.assert_any_call(BASE_URL, timeout=5.0)

    def test_tunnel_down_stops_checks(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        hops = BackendFetcher(BASE_URL, session=session).check_connectivity()

        assert len(hops) == 1
        assert hops[0].hop == "tunnel"
        assert not hops[0].ok
        assert "refused" in hops[0].error

    def test_gateway_error_means_backend_down(self) -> None:
        session = MagicMock()
        session.get.side_effect = [_response(200, {}), _response(502)]
        hops = BackendFetcher(BASE_URL, session=session).check_connectivity()

        assert [h.ok for h in hops] == [True, False]
        assert hops[1].error == "tunnel returned 502"

    def test_unhealthy_bridge(self) -> None:
        session = MagicMock()
        session.get.side_effect = [
            _response(200, {}),
            _response(200, {"status": "ok"}),
            _response(200, {"status": "error", "error": "bridge not reachable"}),
        ]
        hops = BackendFetcher(BASE_URL, session=session).check_connectivity()

        assert hops[-1].hop == "bridge"
        assert not hops[-1].ok
        assert hops[-1].url == "127.0.0.1:1143"
        assert hops[-1].error == "bridge not reachable"


class TestBackendFetch:
    def test_fetch_emails(self) -> None:
        session = MagicMock()
        session.post.return_value = _response(
            200, {"emails": [_payload("<a>"), _payload("<a>"), "junk"]}
        )
        fetcher = BackendFetcher(BASE_URL, folder="INBOX", session=session)
        result = fetcher.fetch_emails()

        assert (result.fetched, result.inbound) == (2, 1)
        _, kwargs = session.post.call_args
        assert kwargs["json"]["folder"] == "INBOX"
        assert kwargs["json"]["includeBody"] is True
        assert kwargs["timeout"] == 30.0

    def test_non_2xx_raises(self) -> None:
        session = MagicMock()
        session.post.return_value = _response(500, {"error": "boom"})
        with pytest.raises(FetchError) as exc_info:
            BackendFetcher(BASE_URL, session=session).fetch_emails()
        assert exc_info.value.status_code == 500
        assert exc_info.value.hop == "fetch"

    def test_timeout_raises(self) -> None:
        session = MagicMock()
        session.post.side_effect = requests.exceptions.Timeout()
        with pytest.raises(FetchError, match="timed out"):
            BackendFetcher(BASE_URL, session=session).fetch_emails()

    def test_non_json_body_raises(self) -> None:
        session = MagicMock()
        session.post.return_value = _response(200)
        with pytest.raises(FetchError, match="non-JSON"):
            BackendFetcher(BASE_URL, session=session).fetch_emails()


class TestCreateFetcher:
    def test_file_source(self) -> None:
        fetcher = create_fetcher(FetchConfig(source="file", file_path="data/emails.json"))
        assert isinstance(fetcher, JsonFileFetcher)

    def test_backend_source(self) -> None:
        fetcher = create_fetcher(FetchConfig(backend_url="https://mail.example.org"))
        assert isinstance(fetcher, BackendFetcher)
        assert fetcher.base_url == "https://mail.example.org"
