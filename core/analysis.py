"""
analysis.py -- HTTP client for the external analysis backend.

The backend turns an uploaded vulnerability spreadsheet into the per-run
report tables and serves the generated workbooks back. Every call goes to
the single base URL configured as ANALYSIS_BASE_URL.

Failures are raised as AnalysisError with a kind the caller can branch on:
  network             -- connection refused/reset/timed out, DNS failure (retryable)
  aborted             -- no response within the configured read timeout
  http_status         -- backend answered with a non-2xx status
  malformed_response  -- 2xx but the body is not the JSON we expect
"""

import logging
from typing import Any, Optional

import requests

from .models import AnalysisResult, OutputFiles, Scope
from .sheets import encode_sheet_name

logger = logging.getLogger("insightshield.analysis")

NETWORK = "network"
ABORTED = "aborted"
HTTP_STATUS = "http_status"
MALFORMED = "malformed_response"


class AnalysisError(Exception):
    def __init__(self, kind: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind == NETWORK


def _error_detail(resp: requests.Response) -> str:
    """Best human-readable reason from an error response.

    The backend returns {"detail": "..."} for handled errors; anything else
    falls back to the status line.
    """
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return f"HTTP {resp.status_code} {resp.reason or ''}".strip()


def _parse_result(body: Any) -> AnalysisResult:
    if not isinstance(body, dict) or "status" not in body:
        raise AnalysisError(MALFORMED, "Analysis backend returned an unexpected response.")
    files = body.get("output_files") or {}
    if not isinstance(files, dict):
        raise AnalysisError(MALFORMED, "Analysis backend returned an unexpected output_files value.")
    return AnalysisResult(
        status=str(body["status"]),
        message=str(body.get("message") or ""),
        output_files=OutputFiles(
            standard_report=files.get("standard_report"),
            enhanced_workbook=files.get("enhanced_workbook"),
            json_results=files.get("json_results"),
        ),
        completed=bool(body.get("completed", False)),
        redirect=body.get("redirect"),
    )


class AnalysisClient:
    """Thin wrapper over a pooled requests.Session.

    Usage:
        client = AnalysisClient("http://analysis:8000", timeout=600)
        result = client.analyze("scan.xlsx", data, content_type, Scope(1, 3))
        workbook = client.download_report(Scope(1, 3))
    """

    def __init__(self, base_url: str, timeout: float = 600.0, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        # The backend is a single known host; a long redirect chain is never legitimate.
        self._session.max_redirects = 3

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.ConnectionError as exc:
            # Includes ConnectTimeout
            logger.warning("Analysis request failed: %s %s: %s", method, path, exc)
            raise AnalysisError(NETWORK, "Could not reach the analysis service.") from exc
        except requests.Timeout as exc:
            logger.warning("Analysis request timed out: %s %s", method, path)
            raise AnalysisError(ABORTED, "The analysis request timed out.") from exc
        except requests.RequestException as exc:
            logger.warning("Analysis request failed: %s %s: %s", method, path, exc)
            raise AnalysisError(NETWORK, "Could not reach the analysis service.") from exc
        if not resp.ok:
            detail = _error_detail(resp)
            logger.warning("Analysis backend returned %d for %s %s: %s", resp.status_code, method, path, detail)
            raise AnalysisError(HTTP_STATUS, detail, status_code=resp.status_code)
        return resp

    @staticmethod
    def _scope_headers(scope: Scope) -> dict[str, str]:
        return {
            "X-Current-Instance-Id": str(scope.instance_id),
            "X-Current-Run-Id": str(scope.run_id),
        }

    def analyze(self, filename: str, content: bytes, content_type: str, scope: Scope) -> AnalysisResult:
        """Upload a spreadsheet for analysis within scope.

        Blocks until the backend has produced the report tables or the
        timeout elapses.
        """
        resp = self._request(
            "POST",
            "/api/v1/analyze",
            files={"file": (filename, content, content_type)},
            headers=self._scope_headers(scope),
        )
        try:
            body = resp.json()
        except ValueError as exc:
            raise AnalysisError(MALFORMED, "Analysis backend returned a non-JSON response.") from exc
        return _parse_result(body)

    def download_report(self, scope: Scope) -> bytes:
        resp = self._request("GET", f"/api/v1/download/{scope.instance_id}/{scope.run_id}")
        return resp.content

    def download_sheet(self, scope: Scope, sheet_name: str) -> bytes:
        encoded = encode_sheet_name(sheet_name)
        resp = self._request("GET", f"/api/v1/download-sheet/{scope.instance_id}/{scope.run_id}/{encoded}")
        return resp.content

    def close(self) -> None:
        self._session.close()
