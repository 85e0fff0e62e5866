from datetime import datetime, timezone

import pytest

from signer_config import SignerConfig
from vectors import ACCESS_KEY_ID, S3_SECRET_ACCESS_KEY


@pytest.fixture
def example_config():
    """Credentials and addressing of the AWS S3 documentation examples"""
    return SignerConfig(
        access_key=ACCESS_KEY_ID,
        secret_key=S3_SECRET_ACCESS_KEY,
        region="us-east-1",
        addressing_style="virtual",
    )


@pytest.fixture
def minio_config():
    return SignerConfig(
        access_key="minioadmin",
        secret_key="minio-secret-key",
        region="us-east-1",
        hostname="http://minio.local:9000",
    )


@pytest.fixture
def new_year():
    return datetime(2023, 1, 1, tzinfo=timezone.utc)
