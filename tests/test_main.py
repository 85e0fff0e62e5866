"""Tests for the HTTP surface of the signer."""

import hashlib
import logging
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import pytest
from starlette.testclient import TestClient

from main import create_app, serve
from sign_s3 import verify_presigned_url
from signer_config import SignerConfig
from signer_logging import REDACTED


@pytest.fixture
def client(minio_config):
    return TestClient(create_app(minio_config))


def _query(url):
    return parse_qs(urlsplit(url).query)


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.text.startswith("S3 Signer (version ")


def test_healthz(client):
    response = client.get("/healthz")
    assert response.json() == {"status": "ok"}


class TestSign:
    def test_presigned_get(self, client, minio_config):
        response = client.get("/api/sign", params={"bucket": "test-bucket", "path": "file.txt"})
        assert response.status_code == 200, response.text
        url = response.json()["url"]
        assert url.startswith("http://minio.local:9000/test-bucket/file.txt?")
        assert _query(url)["X-Amz-Expires"] == ["3600"]
        assert verify_presigned_url(minio_config, url)

    def test_create_flag_signs_put(self, client, minio_config):
        response = client.get("/api/sign", params={"bucket": "b", "path": "k", "create": "true"})
        url = response.json()["url"]
        assert verify_presigned_url(minio_config, url, method="PUT")
        assert not verify_presigned_url(minio_config, url, method="GET")

    def test_explicit_method_and_expiry(self, client, minio_config):
        response = client.get("/api/sign", params={"bucket": "b", "path": "k", "method": "DELETE", "expires": "60"})
        url = response.json()["url"]
        assert _query(url)["X-Amz-Expires"] == ["60"]
        assert verify_presigned_url(minio_config, url, method="DELETE")

    def test_headers_mode(self, client):
        response = client.get("/api/sign", params=[("bucket", "b"), ("path", "k"), ("mode", "headers"),
                                                   ("header", "Range: bytes=0-9")])
        assert response.status_code == 200, response.text
        payload = response.json()
        assert payload["headers"]["Range"] == "bytes=0-9"
        assert "SignedHeaders=host;range;x-amz-content-sha256;x-amz-date" in payload["headers"]["Authorization"]
        assert payload["headers"]["Authorization"].endswith(f"Signature={payload['signature']}")

    def test_post_hashes_body(self, client):
        body = b"Welcome to Amazon S3."
        response = client.post("/api/sign", params={"bucket": "b", "path": "k"}, content=body)
        assert response.status_code == 200, response.text
        headers = response.json()["headers"]
        assert headers["x-amz-content-sha256"] == hashlib.sha256(body).hexdigest()

    @pytest.mark.parametrize("expires", ["0", "604801"])
    def test_expiry_out_of_bounds(self, client, expires):
        response = client.get("/api/sign", params={"bucket": "b", "path": "k", "expires": expires})
        assert response.status_code == 400
        assert "Expiry" in response.json()["error"]

    def test_unsupported_method(self, client):
        response = client.get("/api/sign", params={"bucket": "b", "path": "k", "method": "PATCH"})
        assert response.status_code == 400

    def test_empty_bucket(self, client):
        response = client.get("/api/sign", params={"bucket": "", "path": "k"})
        assert response.status_code == 400

    @pytest.mark.parametrize("params", [
        {"path": "k"},
        {"bucket": "b"},
        {"bucket": "b", "path": "k", "expires": "soon"},
        {"bucket": "b", "path": "k", "mode": "cookie"},
        {"bucket": "b", "path": "k", "header": "nocolon"},
    ])
    def test_transport_errors(self, client, params):
        response = client.get("/api/sign", params=params)
        assert response.status_code == 422
        assert "error" in response.json()

    def test_missing_credentials_not_leaked(self, caplog):
        client = TestClient(create_app(SignerConfig(hostname="minio.local:9000")))
        with caplog.at_level(logging.ERROR, logger="main"):
            response = client.get("/api/sign", params={"bucket": "b", "path": "k"})
        assert response.status_code == 500
        assert response.json() == {"error": "signing unavailable"}
        assert "Missing credentials" in caplog.text


class TestObjects:
    def test_get_object_redirects(self, client, minio_config):
        response = client.get("/api/object", params={"bucket": "b", "path": "dir/file.txt"}, follow_redirects=False)
        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith("http://minio.local:9000/b/dir/file.txt?")
        assert verify_presigned_url(minio_config, location)

    def test_create_object_redirects_to_put(self, client, minio_config):
        response = client.post("/api/objects", params={"bucket": "b", "path": "new.txt"}, follow_redirects=False)
        assert response.status_code == 302
        assert verify_presigned_url(minio_config, response.headers["location"], method="PUT")


class TestMultipartUpload:
    def test_part_upload_url(self, client, minio_config):
        response = client.get("/api/multipart-upload/upload-123/part/7", params={"bucket": "b", "path": "big.bin"})
        assert response.status_code == 200, response.text
        url = response.json()["presigned_url"]
        query = _query(url)
        assert query["partNumber"] == ["7"]
        assert query["uploadId"] == ["upload-123"]
        assert verify_presigned_url(minio_config, url, method="PUT")

    @pytest.mark.parametrize("part_number", ["0", "10001"])
    def test_part_number_bounds(self, client, part_number):
        response = client.get(f"/api/multipart-upload/u/part/{part_number}", params={"bucket": "b", "path": "k"})
        assert response.status_code == 400


def test_cors_preflight(client):
    response = client.options(
        "/api/sign",
        headers={"Origin": "https://app.example.com", "Access-Control-Request-Method": "GET"},
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_app_redacts_secrets_in_signer_logs(minio_config, caplog):
    create_app(minio_config)
    with caplog.at_level(logging.INFO):
        logging.getLogger("sign_s3").info("leaked %s", "minio-secret-key")
    assert "minio-secret-key" not in caplog.text
    assert REDACTED in caplog.text


class TestServe:
    ENV = ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_SESSION_TOKEN", "AWS_REGION", "AWS_HOSTNAME",
           "S3_SIGNER_SCHEME", "S3_SIGNER_ADDRESSING_STYLE", "S3_SIGNER_DEFAULT_EXPIRES", "S3_SIGNER_MAX_EXPIRES")

    @pytest.fixture
    def served(self, monkeypatch):
        for name in self.ENV:
            monkeypatch.delenv(name, raising=False)
        with patch("main.uvicorn.run") as run, patch("main.configure_logging") as configure:
            yield monkeypatch, run, configure

    def test_empty_region_falls_back_to_default(self, served):
        monkeypatch, run, _ = served
        monkeypatch.setenv("AWS_REGION", "")
        serve(["--aws-access-key-id", "AKID", "--aws-secret-access-key", "secret"])
        config = run.call_args[0][0].state.config
        assert config.region == "us-east-1"

    def test_defaults_from_environment(self, served):
        monkeypatch, run, configure = served
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKID")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")
        monkeypatch.setenv("AWS_HOSTNAME", "http://minio.local:9000")
        monkeypatch.setenv("S3_SIGNER_MAX_EXPIRES", "86400")
        serve(["-p", "9001", "-vv"])
        config = run.call_args[0][0].state.config
        assert (config.access_key, config.hostname, config.max_expires) == ("AKID", "http://minio.local:9000", 86400)
        assert run.call_args[1]["port"] == 9001
        configure.assert_called_once_with(2, secrets=["secret"])

    def test_flags_override_environment(self, served):
        monkeypatch, run, _ = served
        monkeypatch.setenv("AWS_REGION", "eu-west-1")
        serve(["--aws-region", "eu-west-3", "--addressing-style", "virtual"])
        config = run.call_args[0][0].state.config
        assert (config.region, config.addressing_style) == ("eu-west-3", "virtual")
