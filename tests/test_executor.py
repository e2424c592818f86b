from unittest.mock import MagicMock

import pytest
import requests

from quickbase import QuickBase, QuickBaseError
from quickbase.config import VERSION, ClientConfig
from quickbase.errors import DEFAULT_ERROR_DESCRIPTION
from quickbase.executor import RequestExecutor
from quickbase.schemas import ApiAction, ApiResponse, TempTokenState
from quickbase.throttle import Throttle

from tests.conftest import RAY_ID, expired_ticket_response, make_response, sent


def temp_token_client(session, **options):
    qb = QuickBase(realm="demo.quickbase.com", app_token="app-token", session=session, **options)
    qb.set_temp_token("old-temp", "bq_app_1")
    return qb


class TestRequestBuilding:
    def test_user_token_request(self, qb, session):
        session.request.return_value = make_response(200, {"id": "bq_app_1"})

        assert qb.get_app(app_id="bq_app_1") == {"id": "bq_app_1"}

        method, url, kwargs = sent(session)
        assert method == "GET"
        assert url == "https://api.quickbase.com/v1/apps/bq_app_1"
        assert kwargs["headers"]["Authorization"] == "QB-USER-TOKEN b7xxxx_user_token"
        assert kwargs["headers"]["QB-Realm-Hostname"] == "demo.quickbase.com"
        assert f"python-quickbase/v{VERSION}" in kwargs["headers"]["User-Agent"]

    def test_user_token_wins_over_app_and_temp_tokens(self, session):
        qb = QuickBase(realm="demo", user_token="user", app_token="app", session=session)
        qb.set_temp_token("temp", "bq_app_1")
        qb.get_app(app_id="bq_app_1")

        headers = sent(session)[2]["headers"]
        assert headers["Authorization"] == "QB-USER-TOKEN user"
        assert "QB-App-Token" not in headers

    def test_app_token_and_temp_token(self, session):
        temp_token_client(session).get_app(app_id="bq_app_1")

        headers = sent(session)[2]["headers"]
        assert headers["QB-App-Token"] == "app-token"
        assert headers["Authorization"] == "QB-TEMP-TOKEN old-temp"

    def test_no_authorization_without_tokens(self, session):
        QuickBase(realm="demo", session=session).get_app(app_id="bq_app_1")
        assert "Authorization" not in sent(session)[2]["headers"]

    def test_custom_user_agent_prefix(self, session):
        QuickBase(realm="demo", user_agent="nightly-sync/2.1", session=session).get_app(app_id="x")
        assert sent(session)[2]["headers"]["User-Agent"].startswith("nightly-sync/2.1 python-quickbase/")

    def test_server_version_and_proxy_from_config(self, session):
        proxy = {"https": "http://proxy.local:3128"}
        QuickBase(realm="demo", server="qb.example.com", version="v2", proxy=proxy, session=session).get_app(app_id="x")

        _, url, kwargs = sent(session)
        assert url == "https://qb.example.com/v2/apps/x"
        assert kwargs["proxies"] == proxy

    def test_request_options_layer_over_defaults(self, qb, session):
        qb.get_fields(
            table_id="bq_tbl_1",
            request_options={"headers": {"X-Trace": "abc"}, "params": {"extra": 1}, "timeout": 5},
        )

        _, _, kwargs = sent(session)
        assert kwargs["headers"]["X-Trace"] == "abc"
        assert kwargs["headers"]["Authorization"] == "QB-USER-TOKEN b7xxxx_user_token"
        assert kwargs["params"] == {"tableId": "bq_tbl_1", "extra": 1}
        assert kwargs["timeout"] == 5

    def test_request_options_can_replace_header(self, qb, session):
        qb.get_app(app_id="x", request_options={"headers": {"Authorization": "QB-USER-TOKEN other"}})
        assert sent(session)[2]["headers"]["Authorization"] == "QB-USER-TOKEN other"

    def test_request_options_url_replaces_built_url(self, qb, session):
        qb.get_app(app_id="x", request_options={"url": "https://eu.quickbase.com/v1/apps/x"})

        _, url, kwargs = sent(session)
        assert url == "https://eu.quickbase.com/v1/apps/x"
        assert "url" not in kwargs


class TestResponses:
    def test_pass_through_returns_envelope(self, qb, session):
        session.request.return_value = make_response(200, {"ok": True})

        result = qb.executor.execute(ApiAction(path="apps/x"), pass_through=True)

        assert isinstance(result, ApiResponse)
        assert result.status == 200
        assert result.body == {"ok": True}
        assert result.headers["qb-api-ray"] == RAY_ID

    def test_empty_body_returns_none(self, qb, session):
        session.request.return_value = make_response(200, None)
        assert qb.executor.execute(ApiAction(path="apps/x", method="DELETE")) is None

    def test_transport_error_propagates_unchanged(self, qb, session):
        session.request.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(requests.ConnectionError):
            qb.get_app(app_id="x")

    def test_http_error_normalized(self, qb, session):
        session.request.return_value = make_response(
            400, {"message": "Bad Request", "errors": ["Field 6 is required.", "Field 7 is invalid."]}
        )

        with pytest.raises(QuickBaseError) as exc:
            qb.get_app(app_id="x")

        assert exc.value.code == 400
        assert exc.value.message == "Bad Request"
        assert exc.value.description == "Field 6 is required. Field 7 is invalid."
        assert exc.value.ray_id == RAY_ID

    def test_http_error_without_body_uses_defaults(self, qb, session):
        session.request.return_value = make_response(500, None)

        with pytest.raises(QuickBaseError) as exc:
            qb.get_app(app_id="x")

        assert exc.value.code == 500
        assert exc.value.message == "Quick Base Error"
        assert exc.value.description == DEFAULT_ERROR_DESCRIPTION


class TestTempTokenRenewal:
    def test_expired_token_renewed_and_retried(self, session):
        qb = temp_token_client(session)
        session.request.side_effect = [
            expired_ticket_response(),
            make_response(200, {"temporaryAuthorization": "new-temp"}),
            make_response(200, {"id": "bq_app_1"}),
        ]

        assert qb.get_app(app_id="bq_app_1") == {"id": "bq_app_1"}

        assert session.request.call_count == 3
        assert sent(session, 0)[2]["headers"]["Authorization"] == "QB-TEMP-TOKEN old-temp"
        assert sent(session, 1)[1] == "https://api.quickbase.com/v1/auth/temporary/bq_app_1"
        assert sent(session, 2)[1] == "https://api.quickbase.com/v1/apps/bq_app_1"
        assert sent(session, 2)[2]["headers"]["Authorization"] == "QB-TEMP-TOKEN new-temp"
        assert qb.temp_token.snapshot() == ("new-temp", "bq_app_1")

    def test_renewal_stores_token_when_auto_consume_off(self, session):
        qb = temp_token_client(session, auto_consume_temp_tokens=False)
        session.request.side_effect = [
            expired_ticket_response(),
            make_response(200, {"temporaryAuthorization": "new-temp"}),
            make_response(200, {"id": "bq_app_1"}),
        ]

        qb.get_app(app_id="bq_app_1")

        assert sent(session, 2)[2]["headers"]["Authorization"] == "QB-TEMP-TOKEN new-temp"
        assert qb.temp_token.snapshot() == ("new-temp", "bq_app_1")

    def test_no_renewal_when_auto_renew_off(self, session):
        qb = temp_token_client(session, auto_renew_temp_tokens=False)
        session.request.side_effect = [expired_ticket_response()]

        with pytest.raises(QuickBaseError) as exc:
            qb.get_app(app_id="bq_app_1")

        assert exc.value.code == 401
        assert session.request.call_count == 1

    def test_no_renewal_without_remembered_scope(self, session):
        qb = QuickBase(realm="demo", temp_token="old-temp", session=session)
        session.request.side_effect = [expired_ticket_response()]

        with pytest.raises(QuickBaseError):
            qb.get_app(app_id="bq_app_1")
        assert session.request.call_count == 1

    def test_other_errors_not_retried(self, session):
        qb = temp_token_client(session)
        session.request.side_effect = [make_response(403, {"message": "Access Denied"})]

        with pytest.raises(QuickBaseError) as exc:
            qb.get_app(app_id="bq_app_1")
        assert exc.value.code == 403
        assert session.request.call_count == 1

    def test_second_expiry_after_renewal_is_raised(self, session):
        qb = temp_token_client(session)
        session.request.side_effect = [
            expired_ticket_response(),
            make_response(200, {"temporaryAuthorization": "new-temp"}),
            expired_ticket_response(),
        ]

        with pytest.raises(QuickBaseError) as exc:
            qb.get_app(app_id="bq_app_1")

        assert exc.value.is_expired_ticket
        assert session.request.call_count == 3

    def test_failed_renewal_is_raised_without_looping(self, session):
        qb = temp_token_client(session)
        session.request.side_effect = [expired_ticket_response(), expired_ticket_response()]

        with pytest.raises(QuickBaseError):
            qb.get_app(app_id="bq_app_1")
        assert session.request.call_count == 2

    def test_renewal_skipped_when_token_already_replaced(self):
        session = MagicMock(spec=requests.Session)
        state = TempTokenState("old-temp", "bq_app_1")
        renew = MagicMock()
        executor = RequestExecutor(ClientConfig(realm="demo"), session, Throttle(1, 0), state, renew)

        responses = iter([expired_ticket_response(), make_response(200, {"ok": True})])

        def respond(*args, **kwargs):
            resp = next(responses)
            if resp.status_code == 401:
                # another call renewed while this one was in flight
                state.set("fresh-from-other-call", "bq_app_1")
            return resp

        session.request.side_effect = respond

        assert executor.execute(ApiAction(path="apps/bq_app_1")) == {"ok": True}
        renew.assert_not_called()
        assert session.request.call_args_list[1].kwargs["headers"]["Authorization"] == "QB-TEMP-TOKEN fresh-from-other-call"

    def test_renewal_uses_scope_set_while_request_in_flight(self, session):
        qb = QuickBase(realm="demo.quickbase.com", temp_token="old-temp", session=session)
        responses = iter([
            expired_ticket_response(),
            make_response(200, {"temporaryAuthorization": "new-temp"}),
            make_response(200, {"id": "bq_tbl_9"}),
        ])

        def respond(*args, **kwargs):
            resp = next(responses)
            if resp.status_code == 401:
                qb.set_temp_token("old-temp", "bq_tbl_9")
            return resp

        session.request.side_effect = respond

        assert qb.get_table(app_id="bq_app_1", table_id="bq_tbl_9") == {"id": "bq_tbl_9"}
        assert sent(session, 1)[1] == "https://api.quickbase.com/v1/auth/temporary/bq_tbl_9"
        assert sent(session, 2)[2]["headers"]["Authorization"] == "QB-TEMP-TOKEN new-temp"
