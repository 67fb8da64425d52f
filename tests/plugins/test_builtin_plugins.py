"""
Tests for the bundled model plugins.

Each plugin is exercised through the full HTTP pipeline (directory loading,
upload gate, validation, invocation) and its helpers are tested directly.
"""

import asyncio
import base64
import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from gateway.api.main import create_app
from gateway.core.errors import ApiError
from gateway.models.providers import CompletionRequest
from gateway.models.strategy import ProcessContext
from gateway.plugins.image_generation import plugin as image_plugin
from gateway.plugins.text_generation import plugin as text_plugin
from gateway.plugins.vision_ocr import plugin as ocr_plugin


def png_bytes(size=(64, 32), color="white"):
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def client(settings):
    """Test client serving the plugins shipped in gateway/plugins."""
    app = create_app(settings=settings)
    with TestClient(app) as test_client:
        yield test_client


class TestPluginDiscovery:
    def test_builtin_models_registered(self, client, auth_headers):
        response = client.get("/api/models", headers=auth_headers)

        model_ids = sorted(m["modelId"] for m in response.json()["data"]["models"])
        assert model_ids == ["gemini-image-gen", "google-text-bison", "google-vision-ocr"]

    def test_upload_flags_follow_schema(self, client, auth_headers):
        flags = {
            model_id: client.get(f"/api/models/{model_id}", headers=auth_headers).json()["data"]["requiresFileUpload"]
            for model_id in ("gemini-image-gen", "google-text-bison", "google-vision-ocr")
        }
        assert flags == {"gemini-image-gen": True, "google-text-bison": False, "google-vision-ocr": True}


class TestTextGeneration:
    """Test suite for the text generation plugin"""

    def test_invoke(self, client, auth_headers):
        """
        Test: Text generation through the gateway
        How: POST a prompt with generation parameters
        Ensures: The simulated completion, usage and metadata come back in the envelope
        """
        response = client.post(
            "/api/models/google-text-bison/invoke",
            json={"prompt": "Write a haiku about the sea", "maxTokens": 200, "temperature": 0.2},
            headers=auth_headers,
        )

        assert response.status_code == 200, response.text
        data = response.json()["data"]
        assert "Write a haiku about the sea" in data["result"]["text"]
        assert data["result"]["finishReason"] == "STOP"
        usage = data["result"]["usage"]
        assert usage["totalTokens"] == usage["promptTokens"] + usage["completionTokens"]
        assert data["metadata"]["modelVersion"] == "text-bison-001"
        assert data["metadata"]["apiProvider"] == "Google"

    def test_out_of_range_parameters(self, client, auth_headers):
        response = client.post(
            "/api/models/google-text-bison/invoke",
            json={"prompt": "", "temperature": 3, "maxTokens": 0},
            headers=auth_headers,
        )

        assert response.status_code == 400
        fields = sorted(d["field"] for d in response.json()["error"]["details"])
        assert fields == ["maxTokens", "prompt", "temperature"]

    def test_fractional_token_counts_rejected(self, client, auth_headers):
        """
        Test: Fractional values for integer generation parameters
        How: POST maxTokens 10.5 and topK 2.5
        Ensures: 400 ValidationError naming both fields instead of a failure inside the strategy
        """
        response = client.post(
            "/api/models/google-text-bison/invoke",
            json={"prompt": "hi", "maxTokens": 10.5, "topK": 2.5},
            headers=auth_headers,
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["name"] == "ValidationError"
        messages = {d["field"]: d["message"] for d in error["details"]}
        assert messages == {
            "maxTokens": "Field 'maxTokens' must be of type integer",
            "topK": "Field 'topK' must be of type integer",
        }

    def test_max_tokens_truncates(self):
        req = CompletionRequest(model="m", messages=[{"role": "user", "content": "tell me everything"}],
                                params={"max_tokens": 5})

        content = text_plugin._simulate_completion(req)

        assert content["finish_reason"] == "MAX_TOKENS"
        assert text_plugin._count_tokens(content["text"]) <= 5

    def test_stop_sequence(self):
        req = CompletionRequest(model="m", messages=[{"role": "user", "content": "hello"}],
                                params={"stop_sequences": ["here is"]})

        content = text_plugin._simulate_completion(req)

        assert content["text"] == 'Based on your prompt: "hello", '
        assert content["finish_reason"] == "STOP"

    def test_templates_render_prompt(self):
        strategy = text_plugin.ModelStrategy()
        params = text_plugin.TextGenerationInput.model_validate({"prompt": "Hi", "stopSequences": ["END"]})

        system, user = strategy.render_messages(params)

        assert system["role"] == "system" and "text-bison-001" in system["content"]
        assert "END" in system["content"]
        assert user == {"role": "user", "content": "Hi"}

    def test_requires_api_key_in_context(self):
        strategy = text_plugin.ModelStrategy()

        with pytest.raises(ApiError) as exc_info:
            asyncio.run(strategy.process({"prompt": "Hi"}, ProcessContext()))
        assert exc_info.value.status_code == 401


class TestVisionOcr:
    """Test suite for the OCR plugin"""

    def test_multipart_invoke(self, client, auth_headers):
        """
        Test: OCR with an uploaded PNG and form options
        How: POST multipart with imageFile, maxResults=2 and a low confidence threshold
        Ensures: Image info comes from the decoded upload and annotations are capped
        """
        response = client.post(
            "/api/models/google-vision-ocr/invoke",
            data={"maxResults": "2", "confidenceThreshold": "0.5", "language": "en"},
            files={"imageFile": ("scan.png", png_bytes(), "image/png")},
            headers=auth_headers,
        )

        assert response.status_code == 200, response.text
        result = response.json()["data"]["result"]
        assert result["imageInfo"]["width"] == 64
        assert result["imageInfo"]["height"] == 32
        assert result["imageInfo"]["format"] == "png"
        assert len(result["annotations"]) == 2
        assert result["text"] == "\n".join(a["text"] for a in result["annotations"])
        assert all("boundingBox" in a for a in result["annotations"])
        assert response.json()["data"]["metadata"]["imageProcessed"] is True

    def test_text_output_format_without_boxes(self, client, auth_headers):
        response = client.post(
            "/api/models/google-vision-ocr/invoke",
            data={"outputFormat": "text", "includeBoundingBoxes": "false"},
            files={"imageFile": ("scan.png", png_bytes(), "image/png")},
            headers=auth_headers,
        )

        result = response.json()["data"]["result"]
        assert result["annotations"] == []
        assert result["text"]
        assert response.json()["data"]["metadata"]["outputFormat"] == "text"

    def test_fractional_max_results_rejected(self, client, auth_headers):
        response = client.post(
            "/api/models/google-vision-ocr/invoke",
            data={"maxResults": "2.5"},
            files={"imageFile": ("scan.png", png_bytes(), "image/png")},
            headers=auth_headers,
        )

        assert response.status_code == 400
        details = response.json()["error"]["details"]
        assert [d["field"] for d in details] == ["maxResults"]
        assert details[0]["value"] == "2.5"

    def test_missing_image(self, client, auth_headers):
        response = client.post("/api/models/google-vision-ocr/invoke", json={"language": "en"}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"]["details"] == [{"field": "imageFile", "message": "Field 'imageFile' is required"}]

    def test_invalid_language_and_unknown_field(self, client, auth_headers):
        response = client.post(
            "/api/models/google-vision-ocr/invoke",
            data={"language": "english", "colour": "red"},
            files={"imageFile": ("scan.png", png_bytes(), "image/png")},
            headers=auth_headers,
        )

        messages = {d["field"]: d["message"] for d in response.json()["error"]["details"]}
        assert messages["language"] == "Field 'language' does not match the required pattern"
        assert messages["root"] == "Field 'root' contains additional properties not allowed in schema"

    def test_rejects_non_image_upload(self, client, auth_headers):
        response = client.post(
            "/api/models/google-vision-ocr/invoke",
            files={"imageFile": ("notes.txt", b"hello", "text/plain")},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["name"] == "UploadError"

    def test_undecodable_image(self, client, auth_headers):
        response = client.post(
            "/api/models/google-vision-ocr/invoke",
            files={"imageFile": ("broken.png", b"not really a png", "image/png")},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert "Cannot decode image" in response.json()["error"]["message"]

    def test_base64_json_body(self):
        strategy = ocr_plugin.ModelStrategy()
        encoded = base64.b64encode(png_bytes((10, 10))).decode()

        output = asyncio.run(strategy.process({"imageFile": encoded, "confidenceThreshold": 0.0},
                                              ProcessContext(api_key="k", user_id="k")))

        assert output.result.image_info.width == 10
        assert output.result.annotations


class TestImageGeneration:
    """Test suite for the image generation plugin"""

    def test_text_to_image(self, client, auth_headers):
        """
        Test: Image generation with a non-square aspect ratio
        How: POST a prompt with aspectRatio 16:9
        Ensures: A decodable PNG of the matching size and a text description are returned
        """
        response = client.post(
            "/api/models/gemini-image-gen/invoke",
            json={"prompt": "a red fox in the snow", "aspectRatio": "16:9"},
            headers=auth_headers,
        )

        assert response.status_code == 200, response.text
        data = response.json()["data"]
        image = data["result"]["images"][0]
        assert (image["width"], image["height"]) == (1024, 576)
        assert image["mimeType"] == "image/png"
        decoded = Image.open(io.BytesIO(base64.b64decode(image["data"])))
        assert decoded.size == (1024, 576)
        assert "a red fox in the snow" in data["result"]["text"]
        assert data["metadata"]["mode"] == "text-to-image"

    def test_image_editing(self, client, auth_headers):
        source = base64.b64encode(png_bytes((20, 20), color="blue")).decode()
        response = client.post(
            "/api/models/gemini-image-gen/invoke",
            json={
                "prompt": "make it sunny",
                "responseModalities": ["Image"],
                "inputImages": [{"data": source, "mimeType": "image/png"}],
            },
            headers=auth_headers,
        )

        assert response.status_code == 200, response.text
        data = response.json()["data"]
        assert data["result"]["text"] is None
        assert data["metadata"]["hasInputImages"] is True
        assert data["metadata"]["mode"] == "image-editing"

    def test_invalid_input_image(self, client, auth_headers):
        response = client.post(
            "/api/models/gemini-image-gen/invoke",
            json={"prompt": "edit", "inputImages": [{"data": "***", "mimeType": "image/png"}]},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"].startswith("Invalid base64 image data")

    def test_schema_limits(self, client, auth_headers):
        response = client.post(
            "/api/models/gemini-image-gen/invoke",
            json={"prompt": "x", "aspectRatio": "7:3", "responseModalities": ["Image", "Image"]},
            headers=auth_headers,
        )

        details = {d["field"]: d for d in response.json()["error"]["details"]}
        assert details["aspectRatio"]["allowedValues"] == image_plugin.ASPECT_RATIOS
        assert details["responseModalities"]["message"] == "Field 'responseModalities' must contain unique items"

    @pytest.mark.parametrize("ratio,expected", [("1:1", (1024, 1024)), ("9:16", (576, 1024)), ("21:9", (1024, 438))])
    def test_canvas_size(self, ratio, expected):
        assert image_plugin.canvas_size(ratio) == expected
