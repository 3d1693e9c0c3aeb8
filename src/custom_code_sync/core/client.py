"""HTTP client for the remote project server.

Two endpoints are used:

* ``POST <api_url>/syncCustomCodeChanges`` -- push a ``SyncPayload``.  The
  response is reduced to a ``PushResult``; transport failures and error
  statuses are reported in the result rather than raised, so the session
  can surface them without leaving its push state in disarray.
* ``POST <api_url>/exportCode`` -- download the generated project as a
  base64 zip and extract it.  Failures raise ``RemoteError``.
"""

import base64
import binascii
import io
import json
import logging
import threading
import zipfile
from pathlib import Path, PurePosixPath
from typing import Any

import requests

from ..config import Config
from ..errors import RemoteError
from ..sync.models import CodeType, FileWarning, PushResult, SyncPayload

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"


class RemoteClient:
    """Client bound to one project and branch.

    Args:
        config: Session configuration (API URL, token, timeout).
        project_id: Remote project identifier.
        branch_name: Remote branch; ``"main"`` and ``""`` both mean the
            default branch.
    """

    def __init__(self, config: Config, project_id: str, branch_name: str = ""):
        if not config.api_token:
            raise ValueError(
                "API token not set. Set FLUTTERFLOW_API_TOKEN or add "
                "'api_token' to the remote section of config.yml."
            )
        self.config = config
        self._project_id = project_id
        self._branch_name = branch_name
        self._thread_local = threading.local()

    @property
    def project_id(self) -> str:
        return self._project_id

    @property
    def branch_name(self) -> str:
        # The API expects "" for the default branch.
        return "" if self._branch_name == DEFAULT_BRANCH else self._branch_name

    @property
    def session(self) -> requests.Session:
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Bearer {self.config.api_token}",
                "Content-Type": "application/json",
            }
        )
        return session

    def _url(self, endpoint: str) -> str:
        return f"{self.config.api_url.rstrip('/')}/{endpoint}"

    def _post(self, endpoint: str, body: dict[str, Any]) -> requests.Response:
        return self._get_session().post(
            self._url(endpoint),
            data=json.dumps(body),
            timeout=(10, self.config.timeout),
        )

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def push_code(self, payload: SyncPayload) -> PushResult:
        """Send *payload* and report what the server said about it."""
        logger.info(
            "Pushing %d file record(s) to project %s (branch %r)",
            len(payload.file_map),
            payload.project_id,
            payload.branch_name,
        )
        try:
            response = self._post("syncCustomCodeChanges", payload.to_request())
        except requests.RequestException as exc:
            logger.error("Push request failed: %s", exc)
            return PushResult(error_message=f"API error syncing code: {exc}")

        body = _json_or_none(response)
        warnings = parse_file_warnings(body)

        if not response.ok:
            message = _error_message(body) or response.text or response.reason
            logger.error("Push rejected with HTTP %d: %s", response.status_code, message)
            return PushResult(
                response_code=response.status_code,
                error_message=message,
                file_warnings=warnings,
            )

        if body is None:
            logger.error("Push response was not JSON")
            return PushResult(
                response_code=response.status_code,
                error_message="Malformed response from server",
            )

        return PushResult(
            response_code=response.status_code, file_warnings=warnings
        )

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def pull_code(self, dest_dir: Path) -> list[str]:
        """Download the project and extract it into *dest_dir*.

        The archive's top-level folder is stripped so the project lands
        directly in *dest_dir*.

        Returns:
            Extracted file paths relative to *dest_dir*.

        Raises:
            RemoteError: On transport failure, an error status, or a
                malformed archive.
        """
        body: dict[str, Any] = {
            "project": {"path": f"projects/{self.project_id}"},
            "export_as_module": False,
            "include_assets_map": False,
            "format": True,
            "export_as_debug": False,
        }
        if self.branch_name:
            body["branch_name"] = self.branch_name

        logger.info(
            "Pulling project %s (branch %r) into %s",
            self.project_id,
            self.branch_name,
            dest_dir,
        )
        try:
            response = self._post("exportCode", body)
        except requests.RequestException as exc:
            raise RemoteError(f"API error exporting code: {exc}") from exc

        if not response.ok:
            raise RemoteError(
                f"status: {response.status_code} Message: {response.text}",
                status_code=response.status_code,
            )

        value = _unwrap_value(_json_or_none(response))
        encoded = value.get("project_zip") if isinstance(value, dict) else None
        if not encoded:
            raise RemoteError(
                "Export response did not contain a project archive",
                status_code=response.status_code,
            )
        try:
            archive = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise RemoteError(f"Project archive is not valid base64: {exc}") from exc

        return extract_project_zip(archive, dest_dir)


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def _json_or_none(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _unwrap_value(body: Any) -> Any:
    """Return the ``value`` member of a response body.

    The server sometimes sends ``value`` as a JSON-encoded string.
    """
    if not isinstance(body, dict):
        return None
    value = body.get("value", body)
    if isinstance(value, str):
        try:
            return json.loads(value) if value else {}
        except ValueError:
            return None
    return value


def _error_message(body: Any) -> str | None:
    value = _unwrap_value(body)
    if isinstance(value, dict):
        for key in ("error", "reason", "message"):
            if isinstance(value.get(key), str):
                return value[key]
    return None


def parse_file_warnings(body: Any) -> dict[str, list[FileWarning]]:
    """Extract ``{filename: [FileWarning]}`` from a push response body.

    Accepts ``file_warnings`` or ``fileWarnings`` at the top of the body or
    of its ``value``, with snake_case or camelCase warning fields.  Entries
    that cannot be read are skipped.
    """
    value = _unwrap_value(body)
    raw = None
    for candidate in (value, body):
        if isinstance(candidate, dict):
            raw = candidate.get("file_warnings", candidate.get("fileWarnings"))
            if raw is not None:
                break
    if not isinstance(raw, dict):
        return {}

    result: dict[str, list[FileWarning]] = {}
    for filename, entries in raw.items():
        if not isinstance(entries, list):
            continue
        parsed = [w for w in (_parse_warning(e) for e in entries) if w]
        if parsed:
            result[filename] = parsed
    return result


def _parse_warning(data: Any) -> FileWarning | None:
    if not isinstance(data, dict):
        return None
    message = data.get("error_message", data.get("errorMessage"))
    if not isinstance(message, str):
        return None
    file_type = data.get("file_type", data.get("fileType"))
    try:
        code = CodeType(file_type) if file_type else None
    except ValueError:
        code = None
    return FileWarning(
        file_type=code,
        error_message=message,
        is_critical=bool(data.get("is_critical", data.get("isCritical", False))),
    )


def extract_project_zip(archive: bytes, dest_dir: Path) -> list[str]:
    """Extract *archive* into *dest_dir*, dropping its top-level folder.

    Raises:
        RemoteError: If the archive is unreadable or an entry would land
            outside *dest_dir*.
    """
    dest_dir = Path(dest_dir)
    extracted: list[str] = []
    try:
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                parts = PurePosixPath(info.filename).parts[1:]
                if not parts:
                    continue
                if ".." in parts:
                    raise RemoteError(f"Unsafe path in archive: {info.filename}")
                rel = PurePosixPath(*parts)
                target = dest_dir.joinpath(*parts)
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(zf.read(info))
                extracted.append(str(rel))
    except zipfile.BadZipFile as exc:
        raise RemoteError(f"Project archive is corrupt: {exc}") from exc
    logger.debug("Extracted %d file(s) into %s", len(extracted), dest_dir)
    return extracted
