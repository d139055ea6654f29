"""Executors that replay deferred operations against the RelayKit API."""

import logging

import httpx

from relaykit.sync.store import DeferredOperation

logger = logging.getLogger(__name__)

_METHODS = {"create": "POST", "update": "PUT", "delete": "DELETE"}


class SyncError(RuntimeError):
    """The API rejected a replayed operation."""


def _error_text(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"{fallback}: {response.status_code}"
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        return detail.get("error") or fallback
    return str(detail or fallback)


def _check(response: httpx.Response, fallback: str) -> httpx.Response:
    if response.is_error:
        raise SyncError(_error_text(response, fallback))
    return response


def entity_sync_executor(client: httpx.AsyncClient):
    """Replay ``{type, entity, data}`` payloads as REST calls on ``/api/{entity}``.

    ``create`` posts to the collection; ``update`` and ``delete`` address
    ``/api/{entity}/{data["id"]}``.
    """

    async def execute(op: DeferredOperation) -> dict:
        payload = op.payload or {}
        kind = payload.get("type")
        entity = payload.get("entity")
        data = payload.get("data") or {}
        if kind not in _METHODS or not entity:
            raise SyncError(f"Unsupported operation: {kind!r} on {entity!r}")

        path = f"/api/{entity}"
        if kind != "create" and data.get("id"):
            path = f"{path}/{data['id']}"
        body = {k: v for k, v in data.items() if k != "id"}

        if kind == "delete":
            response = await client.delete(path)
        else:
            response = await client.request(_METHODS[kind], path, json=body)
        _check(response, "Sync failed")
        logger.debug("Synced %s %s", kind, path)
        return response.json() if response.content else {}

    return execute


def photo_upload_executor(client: httpx.AsyncClient):
    """Upload a queued photo: signed URL, raw PUT, then record the file on the job."""

    async def execute(op: DeferredOperation) -> dict:
        payload = op.payload or {}
        job_id = payload.get("job_id")
        if not job_id or op.blob is None:
            raise SyncError("Upload is missing job_id or file data")
        mime_type = payload.get("mime_type") or "image/jpeg"

        signed = _check(
            await client.post(
                "/api/uploads/signed",
                json={
                    "job_id": job_id,
                    "filename": payload.get("filename") or "upload",
                    "content_type": mime_type,
                },
            ),
            "Failed to create signed upload",
        ).json()

        _check(
            await client.put(signed["upload_url"], content=op.blob, headers={"Content-Type": mime_type}),
            "Failed to upload file",
        )

        recorded = _check(
            await client.post(
                "/api/uploads/record",
                json={
                    "job_id": job_id,
                    "storage_path": signed["storage_path"],
                    "mime_type": mime_type,
                    "kind": "image",
                },
            ),
            "Failed to record upload",
        ).json()
        logger.info("Uploaded photo for job=%s to %s", job_id, signed["storage_path"])
        return recorded

    return execute
