import base64
from io import BytesIO
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from httpx import AsyncClient
from PIL import Image

from src.config import settings
from src.services import grayscale_client
from src.services.session import registry


def _make_test_image(width: int = 32, height: int = 32, fmt: str = "PNG") -> bytes:
    img = Image.new("RGB", (width, height), color="blue")
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def _gray_jpeg() -> bytes:
    img = Image.new("L", (32, 32), color=128)
    buffer = BytesIO()
    img.save(buffer, format="JPEG")
    return buffer.getvalue()


def _upstream(response: httpx.Response) -> MagicMock:
    client = MagicMock()
    client.post = AsyncMock(return_value=response)
    return client


async def _create(client: AsyncClient) -> str:
    response = await client.post("/sessions")
    assert response.status_code == 201
    return response.json()["id"]


async def _load(client: AsyncClient, session_id: str, data: bytes | None = None) -> dict:
    data = data if data is not None else _make_test_image()
    response = await client.post(
        f"/sessions/{session_id}/image",
        files={"file": ("photo.png", data, "image/png")},
    )
    assert response.status_code == 200
    return response.json()


class TestCreateSession:
    async def test_new_session_is_empty(self, client: AsyncClient) -> None:
        response = await client.post("/sessions")
        assert response.status_code == 201
        data = response.json()
        assert data["state"] == "empty"
        assert data["busy"] is False
        assert data["original"] is None
        assert data["converted"] is None
        assert data["error"] is None
        assert data["options"]["technique"] == "average"
        assert data["options"]["channel"] == "r"

    async def test_unknown_session(self, client: AsyncClient) -> None:
        response = await client.get("/sessions/does-not-exist")
        assert response.status_code == 404
        assert response.json() == {"detail": "Session not found"}


class TestUploadImage:
    async def test_select_upload(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        image = _make_test_image()
        data = await _load(client, session_id, image)
        assert data["state"] == "loaded"
        assert data["original"]["media_type"] == "image/png"
        assert data["original"]["src"] == f"data:image/png;base64,{base64.b64encode(image).decode()}"

        original = await client.get(f"/sessions/{session_id}/original")
        assert original.status_code == 200
        assert original.content == image
        assert original.headers["content-type"] == "image/png"

    async def test_drop_of_non_image_ignored(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        response = await client.post(
            f"/sessions/{session_id}/image",
            params={"source": "drop"},
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "empty"
        assert data["original"] is None
        assert data["error"] is None

    async def test_drop_of_image_accepted(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        response = await client.post(
            f"/sessions/{session_id}/image",
            params={"source": "drop"},
            files={"file": ("photo.png", _make_test_image(), "image/png")},
        )
        assert response.json()["state"] == "loaded"

    async def test_invalid_source(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        response = await client.post(
            f"/sessions/{session_id}/image",
            params={"source": "paste"},
            files={"file": ("photo.png", _make_test_image(), "image/png")},
        )
        assert response.status_code == 422

    async def test_original_missing(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        response = await client.get(f"/sessions/{session_id}/original")
        assert response.status_code == 404


class TestOptions:
    async def test_set_weighted_options(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        response = await client.put(
            f"/sessions/{session_id}/options",
            json={"technique": "weighted", "weights": {"wr": "0.5", "wg": "0.25", "wb": "0.25"}},
        )
        assert response.status_code == 200
        assert response.json()["options"]["technique"] == "weighted"

    async def test_invalid_channel(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        response = await client.put(f"/sessions/{session_id}/options", json={"channel": "x"})
        assert response.status_code == 422


class TestConvert:
    async def test_json_response_flow(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        await _load(client, session_id)
        await client.put(f"/sessions/{session_id}/options", json={"technique": "single_channel", "channel": "b"})
        gray = _gray_jpeg()
        payload = base64.b64encode(gray).decode()
        upstream = _upstream(httpx.Response(200, json={"converted_image": payload}))

        with patch.object(grayscale_client, "get_http_client", return_value=upstream):
            response = await client.post(f"/sessions/{session_id}/convert")

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "completed"
        assert data["busy"] is False
        assert data["converted"]["src"] == f"data:image/jpeg;base64,{payload}"
        assert data["download_url"] == f"http://test/sessions/{session_id}/download"
        assert upstream.post.await_args.kwargs["params"] == {"technique": "single_channel", "channel": "b"}

        download = await client.get(f"/sessions/{session_id}/download")
        assert download.status_code == 200
        assert download.content == gray
        assert download.headers["content-type"] == "image/jpeg"
        assert 'filename="grayscale-image.jpg"' in download.headers["content-disposition"]

    async def test_binary_response_flow(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        await _load(client, session_id)
        gray = _gray_jpeg()
        upstream = _upstream(httpx.Response(200, content=gray, headers={"content-type": "image/jpeg"}))

        with patch.object(grayscale_client, "get_http_client", return_value=upstream):
            response = await client.post(f"/sessions/{session_id}/convert")

        data = response.json()
        assert data["state"] == "completed"
        assert data["converted"]["media_type"] == "image/jpeg"
        assert data["converted"]["src"].startswith(f"http://test/images/{session_id}/")

        hosted = await client.get(data["converted"]["src"])
        assert hosted.status_code == 200
        assert hosted.content == gray

        download = await client.get(f"/sessions/{session_id}/download")
        assert download.status_code == 200
        assert download.content == gray

    async def test_server_error(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        await _load(client, session_id)
        upstream = _upstream(httpx.Response(500, json={"image": "eA=="}))

        with patch.object(grayscale_client, "get_http_client", return_value=upstream):
            response = await client.post(f"/sessions/{session_id}/convert")

        data = response.json()
        assert data["state"] == "failed"
        assert "500" in data["error"]
        assert data["converted"] is None
        assert data["download_url"] is None

        download = await client.get(f"/sessions/{session_id}/download")
        assert download.status_code == 404

    async def test_invalid_structured_response(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        await _load(client, session_id)
        upstream = _upstream(httpx.Response(200, json={"status": "done"}))

        with patch.object(grayscale_client, "get_http_client", return_value=upstream):
            response = await client.post(f"/sessions/{session_id}/convert")

        data = response.json()
        assert data["state"] == "failed"
        assert data["error"] == "Invalid API response"
        assert data["converted"] is None

    async def test_retry_after_failure(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        await _load(client, session_id)
        failing = _upstream(httpx.Response(503))
        with patch.object(grayscale_client, "get_http_client", return_value=failing):
            await client.post(f"/sessions/{session_id}/convert")

        working = _upstream(httpx.Response(200, json={"image": "data:image/png;base64,eA=="}))
        with patch.object(grayscale_client, "get_http_client", return_value=working):
            response = await client.post(f"/sessions/{session_id}/convert")

        data = response.json()
        assert data["state"] == "completed"
        assert data["error"] is None
        assert data["converted"]["src"] == "data:image/png;base64,eA=="

    async def test_convert_without_image_is_noop(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        upstream = _upstream(httpx.Response(200, json={"image": "eA=="}))
        with patch.object(grayscale_client, "get_http_client", return_value=upstream):
            response = await client.post(f"/sessions/{session_id}/convert")
        assert response.json()["state"] == "empty"
        upstream.post.assert_not_awaited()


class TestReset:
    async def test_reset_after_binary_result(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        await _load(client, session_id)
        upstream = _upstream(httpx.Response(200, content=_gray_jpeg(), headers={"content-type": "image/jpeg"}))
        with patch.object(grayscale_client, "get_http_client", return_value=upstream):
            converted = (await client.post(f"/sessions/{session_id}/convert")).json()["converted"]

        response = await client.post(f"/sessions/{session_id}/reset")
        data = response.json()
        assert data["state"] == "empty"
        assert data["original"] is None
        assert data["converted"] is None
        assert data["error"] is None

        hosted = await client.get(converted["src"])
        assert hosted.status_code == 404

    async def test_reload_after_reset(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        await _load(client, session_id)
        failing = _upstream(httpx.Response(500))
        with patch.object(grayscale_client, "get_http_client", return_value=failing):
            await client.post(f"/sessions/{session_id}/convert")

        await client.post(f"/sessions/{session_id}/reset")
        data = await _load(client, session_id)
        assert data["state"] == "loaded"
        assert data["error"] is None
        assert data["options"]["technique"] == "average"

    async def test_load_after_completion_conflicts(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        await _load(client, session_id)
        upstream = _upstream(httpx.Response(200, json={"image": "eA=="}))
        with patch.object(grayscale_client, "get_http_client", return_value=upstream):
            await client.post(f"/sessions/{session_id}/convert")

        response = await client.post(
            f"/sessions/{session_id}/image",
            files={"file": ("photo.png", _make_test_image(), "image/png")},
        )
        assert response.status_code == 409

    async def test_delete_session(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        await _load(client, session_id)
        response = await client.delete(f"/sessions/{session_id}")
        assert response.status_code == 204
        assert (await client.get(f"/sessions/{session_id}")).status_code == 404


class TestExpiry:
    async def test_expired_session_evicted(self, client: AsyncClient, images_dir: Path) -> None:
        session_id = await _create(client)
        await _load(client, session_id)
        upstream = _upstream(httpx.Response(200, content=_gray_jpeg(), headers={"content-type": "image/jpeg"}))
        with patch.object(grayscale_client, "get_http_client", return_value=upstream):
            converted = (await client.post(f"/sessions/{session_id}/convert")).json()["converted"]
        assert (images_dir / session_id).exists()

        registry.get(session_id).last_seen -= settings.session_ttl + 1

        response = await client.get(f"/sessions/{session_id}")
        assert response.status_code == 404
        assert not (images_dir / session_id).exists()
        assert (await client.get(converted["src"])).status_code == 404

    async def test_zero_ttl_keeps_idle_sessions(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        registry.get(session_id).last_seen -= 10 * settings.session_ttl

        with patch.object(settings, "session_ttl", 0):
            response = await client.get(f"/sessions/{session_id}")
        assert response.status_code == 200

    async def test_callback_error_still_completes(self, client: AsyncClient) -> None:
        session_id = await _create(client)
        await _load(client, session_id)
        registry.get(session_id).on_converted = MagicMock(side_effect=RuntimeError("boom"))
        upstream = _upstream(httpx.Response(200, json={"image": "data:image/png;base64,eA=="}))

        with patch.object(grayscale_client, "get_http_client", return_value=upstream):
            response = await client.post(f"/sessions/{session_id}/convert")

        assert response.status_code == 200
        assert response.json()["state"] == "completed"
