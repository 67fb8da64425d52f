import asyncio
import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from starlette.datastructures import Headers, UploadFile

from gateway.api.dependencies.uploads import READ_CHUNK_SIZE, coerce_form_value, read_upload
from gateway.api.main import create_app
from gateway.core.errors import UploadRejectedError
from gateway.models.loader import PluginEntry
from gateway.models.strategy import ModelStrategy
from gateway.models.uploads import UploadPolicy

from conftest import ECHO_SCHEMA, EchoStrategy

UPLOAD_SCHEMA = {
    "type": "object",
    "required": ["imageFile"],
    "properties": {
        "imageFile": {"type": ["string", "array"]},
        "maskFile": {"type": "string"},
        "maxResults": {"type": "number", "maximum": 50},
        "verbose": {"type": "boolean"},
        "flags": {"type": "array", "items": {"type": "integer"}},
    },
    "x-multipart-media": {"fieldName": "imageFile", "allowedTypes": ["image/png", "image/jpeg"], "maxSize": 1024},
}


class RecordingStrategy(ModelStrategy):
    """Reports what the controller handed it"""

    invocations = []

    async def process(self, params, context):
        RecordingStrategy.invocations.append(params)
        files = params.get("files")
        if isinstance(files, dict):
            files = {field: [f.originalname for f in group] for field, group in files.items()}
        elif isinstance(files, list):
            files = [f.originalname for f in files]
        single = params.get("file")
        return {
            "result": {
                "file": single.originalname if single else None,
                "size": single.size if single else None,
                "files": files,
                "body": {k: v for k, v in params.items() if k not in ("file", "files")},
            }
        }


def png_bytes(size=(4, 4)):
    buffer = io.BytesIO()
    Image.new("RGB", size, color="red").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def client(settings):
    RecordingStrategy.invocations = []
    entries = [
        PluginEntry("uploader", UPLOAD_SCHEMA, RecordingStrategy),
        PluginEntry("echo", ECHO_SCHEMA, EchoStrategy),
    ]
    app = create_app(settings=settings, load_builtin=False, entries=entries)
    with TestClient(app) as test_client:
        yield test_client


class TestMultipartUploads:
    """Test suite for the upload gate on upload-capable models"""

    def test_single_file_with_form_fields(self, client, auth_headers):
        """
        Test: Multipart request with one image and typed form fields
        How: Upload a PNG with maxResults=5, verbose=true and flags as JSON
        Ensures: The file arrives as `file`, and form values are coerced to their schema types
        """
        data = png_bytes()
        response = client.post(
            "/api/models/uploader/invoke",
            data={"maxResults": "5", "verbose": "true", "flags": "[1, 2]"},
            files={"imageFile": ("scan.png", data, "image/png")},
            headers=auth_headers,
        )

        assert response.status_code == 200, response.text
        result = response.json()["data"]["result"]
        assert result["file"] == "scan.png"
        assert result["size"] == len(data)
        assert result["files"] is None
        assert result["body"] == {"maxResults": 5, "verbose": True, "flags": [1, 2], "imageFile": "scan.png"}

        uploaded = RecordingStrategy.invocations[0]["file"]
        assert uploaded.fieldname == "imageFile"
        assert uploaded.mimetype == "image/png"
        assert uploaded.buffer == data

    def test_disallowed_mime_rejected_before_strategy(self, client, auth_headers):
        """
        Test: Upload with a MIME type outside the allow-list
        How: Send a PDF to a model accepting only PNG/JPEG
        Ensures: 400 UploadError naming the file and the strategy never runs
        """
        response = client.post(
            "/api/models/uploader/invoke",
            files={"imageFile": ("report.pdf", b"%PDF-1.4", "application/pdf")},
            headers=auth_headers,
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["name"] == "UploadError"
        assert "report.pdf" in error["message"]
        assert RecordingStrategy.invocations == []

    def test_oversized_file_rejected(self, client, auth_headers):
        response = client.post(
            "/api/models/uploader/invoke",
            files={"imageFile": ("big.png", b"x" * 2048, "image/png")},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert "exceeds the maximum size of 1024 bytes" in response.json()["error"]["message"]
        assert RecordingStrategy.invocations == []

    def test_several_files_in_one_field(self, client, auth_headers):
        files = [
            ("imageFile", ("a.png", png_bytes(), "image/png")),
            ("imageFile", ("b.png", png_bytes(), "image/png")),
        ]
        response = client.post("/api/models/uploader/invoke", files=files, headers=auth_headers)

        assert response.status_code == 200, response.text
        result = response.json()["data"]["result"]
        assert result["file"] is None
        assert result["files"] == ["a.png", "b.png"]
        assert result["body"]["imageFile"] == ["a.png", "b.png"]

    def test_files_grouped_by_field(self, client, auth_headers):
        files = [
            ("imageFile", ("photo.png", png_bytes(), "image/png")),
            ("maskFile", ("mask.png", png_bytes(), "image/png")),
        ]
        response = client.post("/api/models/uploader/invoke", files=files, headers=auth_headers)

        assert response.status_code == 200, response.text
        assert response.json()["data"]["result"]["files"] == {"imageFile": ["photo.png"], "maskFile": ["mask.png"]}

    def test_too_many_files(self, client, auth_headers):
        files = [("imageFile", (f"{i}.png", png_bytes(), "image/png")) for i in range(6)]

        response = client.post("/api/models/uploader/invoke", files=files, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert RecordingStrategy.invocations == []

    def test_uncoercible_form_value_fails_validation(self, client, auth_headers):
        response = client.post(
            "/api/models/uploader/invoke",
            data={"maxResults": "many"},
            files={"imageFile": ("scan.png", png_bytes(), "image/png")},
            headers=auth_headers,
        )

        assert response.status_code == 400
        details = response.json()["error"]["details"]
        assert details == [{"field": "maxResults", "message": "Field 'maxResults' must be of type number",
                            "value": "many"}]

    def test_repeated_array_fields(self, client, auth_headers):
        response = client.post(
            "/api/models/uploader/invoke",
            data={"flags": ["3", "4"]},
            files={"imageFile": ("scan.png", png_bytes(), "image/png")},
            headers=auth_headers,
        )

        assert response.json()["data"]["result"]["body"]["flags"] == [3, 4]

    def test_json_body_still_accepted(self, client, auth_headers):
        response = client.post("/api/models/uploader/invoke", json={"imageFile": "inline-reference"},
                               headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["result"]["file"] is None


class TestNonUploadModels:
    def test_form_fields_without_files(self, client, auth_headers):
        response = client.post("/api/models/echo/invoke", data={"text": "hi"}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["result"]["echoed"] == "hi"

    def test_files_rejected(self, client, auth_headers):
        response = client.post(
            "/api/models/echo/invoke",
            data={"text": "hi"},
            files={"attachment": ("a.txt", b"hello", "text/plain")},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert "does not accept file uploads" in response.json()["error"]["message"]

    def test_unknown_model_fails_open_then_404(self, client, auth_headers):
        response = client.post(
            "/api/models/ghost/invoke",
            files={"imageFile": ("scan.png", png_bytes(), "image/png")},
            headers=auth_headers,
        )

        assert response.status_code == 404


class TestCoerceFormValue:
    @pytest.mark.parametrize("raw,prop,expected", [
        ("5", {"type": "number"}, 5),
        ("0.5", {"type": "number"}, 0.5),
        ("7", {"type": "integer"}, 7),
        ("7.5", {"type": "integer"}, "7.5"),
        ("false", {"type": "boolean"}, False),
        ("maybe", {"type": "boolean"}, "maybe"),
        ('{"a": 1}', {"type": "object"}, {"a": 1}),
        ("[1]", {"type": "object"}, "[1]"),
        ("3", {"type": ["null", "integer"]}, 3),
        ("plain", None, "plain"),
    ])
    def test_coercion(self, raw, prop, expected):
        assert coerce_form_value(raw, prop) == expected


class TestReadUpload:
    """Size enforcement while an upload is read"""

    POLICY = UploadPolicy(requires_file_upload=True, file_fields=("imageFile",),
                          allowed_types=("image/png",), max_file_size=1024)

    def make_upload(self, data, size=None):
        return UploadFile(io.BytesIO(data), size=size, filename="big.png",
                          headers=Headers({"content-type": "image/png"}))

    def test_stops_reading_once_over_limit(self):
        """
        Test: Unsized upload far larger than the limit
        How: Read a 512 KiB stream against a 1 KiB policy
        Ensures: Rejected after the first chunk instead of buffering the whole stream
        """
        upload = self.make_upload(b"x" * (512 * 1024))

        with pytest.raises(UploadRejectedError):
            asyncio.run(read_upload(upload, "imageFile", self.POLICY))
        assert upload.file.tell() == READ_CHUNK_SIZE

    def test_known_size_rejected_without_reading(self):
        upload = self.make_upload(b"x" * 2048, size=2048)

        with pytest.raises(UploadRejectedError):
            asyncio.run(read_upload(upload, "imageFile", self.POLICY))
        assert upload.file.tell() == 0

    def test_reads_within_limit(self):
        uploaded = asyncio.run(read_upload(self.make_upload(b"y" * 1024), "imageFile", self.POLICY))

        assert uploaded.size == 1024
        assert uploaded.buffer == b"y" * 1024
