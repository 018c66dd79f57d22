"""HTTP client for the storage-mesh gateway."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

import requests
import structlog
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from lumera_ica.deadline import Deadline
from lumera_ica.errors import DownloadError, OperationTimeoutError, UploadError

log = structlog.get_logger(__name__)

TASK_ID_HEADER = "X-Task-ID"
PART_SUFFIX = ".part"
DOWNLOAD_CHUNK_SIZE = 64 * 1024

_FILENAME_STAR = re.compile(r"filename\*\s*=\s*[^']*'[^']*'([^;]+)", re.IGNORECASE)
_FILENAME = re.compile(r'filename\s*=\s*"?([^";]+)"?', re.IGNORECASE)


@dataclass(frozen=True)
class DownloadResult:
    action_id: str
    task_id: str
    output_path: str


def filename_from_disposition(header: str | None) -> str:
    if not header:
        return ""
    match = _FILENAME_STAR.search(header) or _FILENAME.search(header)
    if not match:
        return ""
    name = unquote(match.group(1).strip())
    # Never let the gateway choose a path outside the output directory.
    name = Path(name.replace("\\", "/")).name
    if name in ("", ".", ".."):
        return ""
    return name


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("error") or body.get("detail") or body.get("message")
        if isinstance(detail, str) and detail:
            return detail
    return (response.text or "").strip()[:200]


@dataclass
class StorageMeshClient:
    base_url: str
    retries: int = 0
    session: requests.Session | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.base_url.strip():
            raise ValueError("storage mesh base url is required")
        if self.session is None:
            self.session = requests.Session()
            retry = Retry(
                total=max(0, int(self.retries)),
                connect=max(0, int(self.retries)),
                read=0,
                status=0,
                allowed_methods=("GET",),
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry)
            self.session.mount("http://", adapter)
            self.session.mount("https://", adapter)

    def __enter__(self) -> "StorageMeshClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self.session is not None:
            self.session.close()

    def _url(self, action_id: str, operation: str) -> str:
        quoted = quote(action_id, safe="")
        return f"{self.base_url.rstrip('/')}/api/v1/actions/{quoted}/{operation}"

    def _post(self, url: str, *, deadline: Deadline, kind: str, error: type, **kwargs: Any) -> requests.Response:
        timeout = deadline.check(kind)
        try:
            return self.session.post(url, timeout=timeout, **kwargs)
        except requests.Timeout as exc:
            raise OperationTimeoutError(f"{kind} timed out after {timeout:.0f}s") from exc
        except requests.RequestException as exc:
            if deadline.expired:
                raise OperationTimeoutError(f"deadline exceeded: {kind}") from exc
            raise error(f"{kind}: {exc}") from exc

    def upload(
        self,
        action_id: str,
        file_path: str | Path,
        *,
        signer_address: str,
        signature_b64: str,
        deadline: Deadline,
    ) -> str:
        """Send the file bytes for ``action_id``; returns the mesh task id."""
        path = Path(file_path)
        if not path.is_file():
            raise UploadError(f"file not found: {path}")
        log.info("mesh_upload_started", action_id=action_id, file=str(path), signer=signer_address)
        with path.open("rb") as handle:
            response = self._post(
                self._url(action_id, "upload"),
                deadline=deadline,
                kind="mesh upload",
                error=UploadError,
                files={"file": (path.name, handle, "application/octet-stream")},
                data={"signer_address": signer_address, "signature_b64": signature_b64},
            )
        with response:
            if response.status_code >= 400:
                raise UploadError(
                    f"mesh upload failed: {response.status_code} {_error_detail(response)}"
                )
            try:
                body = response.json()
            except ValueError as exc:
                raise UploadError("mesh upload returned a non-JSON body") from exc
        task_id = str(body.get("task_id") or "") if isinstance(body, dict) else ""
        if not task_id:
            raise UploadError("mesh upload response has no task_id")
        log.info("mesh_upload_finished", action_id=action_id, task_id=task_id)
        return task_id

    def download(
        self,
        action_id: str,
        out_dir: str | Path,
        *,
        signer_address: str,
        signature_b64: str,
        deadline: Deadline,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ) -> DownloadResult:
        """Stream the stored bytes into ``out_dir``.

        Bytes land in ``<name>.part`` and are renamed only after the body is
        fully read; the partial file is removed on every failure.
        """
        directory = Path(out_dir)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DownloadError(f"create output dir {directory}: {exc}") from exc

        log.info("mesh_download_started", action_id=action_id, out_dir=str(directory))
        response = self._post(
            self._url(action_id, "download"),
            deadline=deadline,
            kind="mesh download",
            error=DownloadError,
            json={"signer_address": signer_address, "signature_b64": signature_b64},
            stream=True,
        )
        with response:
            if response.status_code >= 400:
                raise DownloadError(
                    f"mesh download failed: {response.status_code} {_error_detail(response)}"
                )
            task_id = response.headers.get(TASK_ID_HEADER, "")
            name = filename_from_disposition(response.headers.get("Content-Disposition")) or action_id
            target = directory / name
            partial = target.with_name(target.name + PART_SUFFIX)
            try:
                with partial.open("wb") as handle:
                    for chunk in response.iter_content(chunk_size=chunk_size):
                        deadline.check("mesh download")
                        if chunk:
                            handle.write(chunk)
                partial.replace(target)
            except requests.RequestException as exc:
                partial.unlink(missing_ok=True)
                if deadline.expired:
                    raise OperationTimeoutError("deadline exceeded: mesh download") from exc
                raise DownloadError(f"mesh download interrupted: {exc}") from exc
            except OSError as exc:
                partial.unlink(missing_ok=True)
                raise DownloadError(f"save {target}: {exc}") from exc
            except BaseException:
                partial.unlink(missing_ok=True)
                raise
        log.info("mesh_download_finished", action_id=action_id, task_id=task_id, path=str(target))
        return DownloadResult(action_id=action_id, task_id=task_id, output_path=str(target))
