"""Process-wide signer configuration.

Built once at start (from the environment or CLI flags) and passed by reference
into every signing call. Nothing here is mutated afterwards.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from signing_errors import CredentialsMissing
from signing_types import MAX_EXPIRES, Credentials

PATH_STYLE = 'path'
VIRTUAL_HOSTED_STYLE = 'virtual'
ADDRESSING_STYLES = (PATH_STYLE, VIRTUAL_HOSTED_STYLE)

DEFAULT_REGION = 'us-east-1'


@dataclass(frozen=True)
class SignerConfig:
    access_key: str = ''
    secret_key: str = field(default='', repr=False)
    session_token: Optional[str] = field(default=None, repr=False)
    region: str = DEFAULT_REGION
    # Endpoint override for S3-compatible stores, e.g. "minio.local:9000"
    hostname: Optional[str] = None
    scheme: str = 'https'
    addressing_style: str = PATH_STYLE
    default_expires: int = 3600
    max_expires: int = MAX_EXPIRES

    def __post_init__(self):
        if self.addressing_style not in ADDRESSING_STYLES:
            raise ValueError(f"Unknown addressing style: {self.addressing_style!r}")
        if self.scheme not in ('http', 'https'):
            raise ValueError(f"Unknown scheme: {self.scheme!r}")
        if not 1 <= self.max_expires <= MAX_EXPIRES:
            raise ValueError(f"max_expires must be within 1..{MAX_EXPIRES}")
        if not 1 <= self.default_expires <= self.max_expires:
            raise ValueError("default_expires must be within 1..max_expires")

    @classmethod
    def from_env(cls, environ=None):
        """Load configuration from environment variables.

        Missing credentials are tolerated here; signing fails with
        CredentialsMissing instead, so the service can still start and
        answer health checks.
        """
        env = os.environ if environ is None else environ
        return cls(
            access_key=env.get('AWS_ACCESS_KEY_ID', ''),
            secret_key=env.get('AWS_SECRET_ACCESS_KEY', ''),
            session_token=env.get('AWS_SESSION_TOKEN') or None,
            region=env.get('AWS_REGION', DEFAULT_REGION) or DEFAULT_REGION,
            hostname=env.get('AWS_HOSTNAME') or None,
            scheme=env.get('S3_SIGNER_SCHEME', 'https'),
            addressing_style=env.get('S3_SIGNER_ADDRESSING_STYLE', PATH_STYLE),
            default_expires=int(env.get('S3_SIGNER_DEFAULT_EXPIRES', '3600')),
            max_expires=int(env.get('S3_SIGNER_MAX_EXPIRES', str(MAX_EXPIRES))),
        )

    def credentials(self):
        missing = [name for name, value in (('access key id', self.access_key),
                                            ('secret access key', self.secret_key)) if not value]
        if missing:
            raise CredentialsMissing(f"Missing credentials: {', '.join(missing)}")
        return Credentials(self.access_key, self.secret_key, self.session_token)

    def secrets(self):
        """Values that must never show up in logs"""
        return [value for value in (self.secret_key, self.session_token) if value]
