"""Unit tests for core/analysis.py -- the analysis backend HTTP client.

requests.Session is replaced with a MagicMock so no test opens a socket.
Each failure mode must surface as an AnalysisError with the right kind.
"""

from unittest.mock import MagicMock

import pytest
import requests

from core.analysis import ABORTED, HTTP_STATUS, MALFORMED, NETWORK, AnalysisClient, AnalysisError
from core.models import Scope

SCOPE = Scope(1, 3)


def _response(status_code: int = 200, body=None, content: bytes = b"", reason: str = "OK") -> MagicMock:
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.reason = reason
    resp.content = content
    if body is None:
        resp.json.side_effect = ValueError("No JSON")
    else:
        resp.json.return_value = body
    return resp


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return AnalysisClient("http://analysis:8000/", timeout=5, session=session)


class TestAnalyze:
    def test_posts_file_with_scope_headers(self, client, session):
        session.request.return_value = _response(
            body={
                "status": "success",
                "message": "Analysis complete",
                "output_files": {"standard_report": "report.xlsx"},
                "completed": True,
                "redirect": "/dashboard",
            }
        )
        result = client.analyze("scan.xlsx", b"PK\x03\x04", "application/vnd.ms-excel", SCOPE)

        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert method == "POST"
        assert url == "http://analysis:8000/api/v1/analyze"
        assert kwargs["timeout"] == 5
        assert kwargs["headers"] == {"X-Current-Instance-Id": "1", "X-Current-Run-Id": "3"}
        assert kwargs["files"]["file"][0] == "scan.xlsx"

        assert result.completed is True
        assert result.redirect == "/dashboard"
        assert result.output_files.standard_report == "report.xlsx"
        assert result.output_files.enhanced_workbook is None

    def test_timeout_is_aborted(self, client, session):
        session.request.side_effect = requests.ReadTimeout()
        with pytest.raises(AnalysisError) as exc_info:
            client.analyze("scan.xlsx", b"x", "application/vnd.ms-excel", SCOPE)
        assert exc_info.value.kind == ABORTED
        assert not exc_info.value.retryable

    def test_connect_timeout_is_network_and_retryable(self, client, session):
        session.request.side_effect = requests.ConnectTimeout()
        with pytest.raises(AnalysisError) as exc_info:
            client.analyze("scan.xlsx", b"x", "application/vnd.ms-excel", SCOPE)
        assert exc_info.value.kind == NETWORK
        assert exc_info.value.retryable

    def test_connection_error_is_network_and_retryable(self, client, session):
        session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(AnalysisError) as exc_info:
            client.analyze("scan.xlsx", b"x", "application/vnd.ms-excel", SCOPE)
        assert exc_info.value.kind == NETWORK
        assert exc_info.value.retryable

    def test_error_status_carries_backend_detail(self, client, session):
        session.request.return_value = _response(422, body={"detail": "Sheet 'Vulnerabilities' is missing"})
        with pytest.raises(AnalysisError) as exc_info:
            client.analyze("scan.xlsx", b"x", "application/vnd.ms-excel", SCOPE)
        assert exc_info.value.kind == HTTP_STATUS
        assert exc_info.value.status_code == 422
        assert exc_info.value.message == "Sheet 'Vulnerabilities' is missing"

    def test_error_status_without_json_uses_status_line(self, client, session):
        session.request.return_value = _response(500, reason="Internal Server Error")
        with pytest.raises(AnalysisError) as exc_info:
            client.analyze("scan.xlsx", b"x", "application/vnd.ms-excel", SCOPE)
        assert exc_info.value.message == "HTTP 500 Internal Server Error"

    def test_non_json_success_is_malformed(self, client, session):
        session.request.return_value = _response(200)
        with pytest.raises(AnalysisError) as exc_info:
            client.analyze("scan.xlsx", b"x", "application/vnd.ms-excel", SCOPE)
        assert exc_info.value.kind == MALFORMED

    @pytest.mark.parametrize("body", [[], {"message": "no status"}, {"status": "ok", "output_files": "x"}])
    def test_unexpected_shape_is_malformed(self, client, session, body):
        session.request.return_value = _response(body=body)
        with pytest.raises(AnalysisError) as exc_info:
            client.analyze("scan.xlsx", b"x", "application/vnd.ms-excel", SCOPE)
        assert exc_info.value.kind == MALFORMED

    def test_missing_completed_defaults_to_false(self, client, session):
        session.request.return_value = _response(body={"status": "error", "message": "bad sheet"})
        result = client.analyze("scan.xlsx", b"x", "application/vnd.ms-excel", SCOPE)
        assert result.completed is False
        assert result.message == "bad sheet"


class TestDownloads:
    def test_download_report_url(self, client, session):
        session.request.return_value = _response(content=b"workbook")
        assert client.download_report(SCOPE) == b"workbook"
        assert session.request.call_args.args == ("GET", "http://analysis:8000/api/v1/download/1/3")

    def test_download_sheet_encodes_name(self, client, session):
        session.request.return_value = _response(content=b"sheet")
        assert client.download_sheet(SCOPE, "CVE Summary") == b"sheet"
        assert session.request.call_args.args == (
            "GET",
            "http://analysis:8000/api/v1/download-sheet/1/3/Q1ZFIFN1bW1hcnk",
        )

    def test_download_404_raises(self, client, session):
        session.request.return_value = _response(404, body={"detail": "Report not found"})
        with pytest.raises(AnalysisError) as exc_info:
            client.download_report(SCOPE)
        assert exc_info.value.status_code == 404

    def test_close_closes_session(self, client, session):
        client.close()
        session.close.assert_called_once()
