"""Values flowing through the SigV4 signing pipeline.

Every value here is created for a single signing call and thrown away once the
artifact is returned.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Optional

ALGORITHM = 'AWS4-HMAC-SHA256'
SERVICE = 's3'
TERMINATOR = 'aws4_request'

SUPPORTED_METHODS = frozenset({'GET', 'PUT', 'DELETE', 'HEAD'})

# AWS rejects presigned URLs valid for longer than seven days
MIN_EXPIRES = 1
MAX_EXPIRES = 604800


def _utcnow():
    return datetime.now(timezone.utc)


class SigningMode(enum.Enum):
    """Where the signature ends up"""

    QUERY_STRING = 'url'
    HEADERS = 'headers'


@dataclass(frozen=True)
class Credentials:
    access_key: str
    secret_key: str = field(repr=False)
    session_token: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class SigningRequest:
    """Description of the S3 request to authorize.

    ``timestamp`` defaults to the current time and is normalized to UTC so the
    canonical request, the credential scope and the artifact all agree on it.
    """

    method: str
    bucket: str
    key: str = ''
    query_params: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    expires: int = 3600
    timestamp: datetime = field(default_factory=_utcnow)
    body: Optional[bytes] = field(default=None, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'method', str(self.method).upper())
        timestamp = self.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        object.__setattr__(self, 'timestamp', timestamp.astimezone(timezone.utc))

    @property
    def amz_date(self):
        return self.timestamp.strftime('%Y%m%dT%H%M%SZ')

    @property
    def date_stamp(self):
        return self.timestamp.strftime('%Y%m%d')


@dataclass(frozen=True)
class Scope:
    """Date/region/service tuple a derived signing key is bound to"""

    date: str
    region: str
    service: str = SERVICE

    @classmethod
    def for_request(cls, request, region):
        return cls(date=request.date_stamp, region=region)

    @property
    def credential_scope(self):
        return f"{self.date}/{self.region}/{self.service}/{TERMINATOR}"


@dataclass(frozen=True)
class SigningArtifact:
    """Result handed back to the caller: a presigned URL or a header map"""

    mode: SigningMode
    signature: str
    amz_date: str
    expires: int
    url: Optional[str] = None
    headers: Optional[Mapping[str, str]] = None

    def to_dict(self):
        if self.mode is SigningMode.QUERY_STRING:
            return {'url': self.url}
        return {'headers': dict(self.headers), 'signature': self.signature}
