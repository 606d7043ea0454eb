import pytest
import requests

from core.errors import UpscaleServiceError
from runtime.upscale_client import UPSCALER_PATH, HttpUpscaleClient, UpscaleRequest, UpscaleResponse


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


def make_request():
    return UpscaleRequest(user_id="u1", image=b"\x89PNG", content_type="image/png",
                          scale=4, quality="photo", plan="pro")


async def test_successful_upscale_posts_payload():
    session = FakeSession(FakeResponse(payload={
        "success": True,
        "outputUrl": "https://cdn.test/out.png",
        "upscaledDimensions": {"width": 400, "height": 300},
        "remainingUpscales": 9,
        "unknownField": "ignored",
    }))
    client = HttpUpscaleClient("https://svc.test/", api_key="secret", timeout=12, session=session)

    response = await client.upscale(make_request())

    post = session.posts[0]
    assert post["url"] == f"https://svc.test{UPSCALER_PATH}"
    assert post["headers"]["Authorization"] == "Bearer secret"
    assert post["json"]["imageBase64"].startswith("data:image/png;base64,")
    assert post["json"]["scale"] == 4
    assert post["timeout"] == 12
    assert response.result_url == "https://cdn.test/out.png"
    assert response.upscaled_dimensions.width == 400
    assert response.remaining_upscales == 9


def test_image_url_is_preferred_over_output_url():
    response = UpscaleResponse.model_validate({
        "success": True, "imageUrl": "https://a.test/1.png", "outputUrl": "https://a.test/2.png",
    })
    assert response.result_url == "https://a.test/1.png"


async def test_unconfigured_client_raises():
    client = HttpUpscaleClient(None, session=FakeSession())
    assert not client.is_configured()
    with pytest.raises(UpscaleServiceError, match="not configured"):
        await client.upscale(make_request())


@pytest.mark.parametrize("session,match", [
    (FakeSession(FakeResponse(500, text="boom")), "500"),
    (FakeSession(FakeResponse(200, payload=None)), "invalid JSON"),
    (FakeSession(FakeResponse(200, payload={"success": False, "error": "Model overloaded"})), "Model overloaded"),
    (FakeSession(FakeResponse(200, payload={"success": True})), "no image URL"),
    (FakeSession(error=requests.exceptions.Timeout()), "timed out"),
    (FakeSession(error=requests.exceptions.ConnectionError("refused")), "unreachable"),
])
async def test_service_failures_raise(session, match):
    client = HttpUpscaleClient("https://svc.test", session=session)
    with pytest.raises(UpscaleServiceError, match=match):
        await client.upscale(make_request())


async def test_http_error_keeps_status_code():
    client = HttpUpscaleClient("https://svc.test", session=FakeSession(FakeResponse(503, text="busy")))
    with pytest.raises(UpscaleServiceError) as excinfo:
        await client.upscale(make_request())
    assert excinfo.value.status_code == 503
