"""SigV4 signing key derivation and signature calculation"""

import hashlib
import hmac
import logging

from signing_errors import CredentialsMissing, InternalHashingFault
from signing_types import ALGORITHM, SERVICE, TERMINATOR

logger = logging.getLogger(__name__)


def sign(key, msg):
    return hmac.new(key, msg.encode('utf-8'), hashlib.sha256).digest()


def derive_signing_key(secret_key, datestamp, region, service=SERVICE):
    """Derive the scoped SigV4 signing key

    Args:
        secret_key: AWS secret key
        datestamp: Date in YYYYMMDD format
        region: AWS region
        service: AWS service name, always 's3' for this signer

    Returns:
        Signing key bytes
    """
    kDate = sign(('AWS4' + secret_key).encode('utf-8'), datestamp)
    kRegion = sign(kDate, region)
    kService = sign(kRegion, service)
    return sign(kService, TERMINATOR)


def build_string_to_sign(amz_date, credential_scope, canonical_request_hash):
    """Build the SigV4 string to sign

    Args:
        amz_date: Timestamp in YYYYMMDDTHHMMSSZ format
        credential_scope: date/region/s3/aws4_request
        canonical_request_hash: Hex SHA-256 of the canonical request

    Returns:
        String to sign
    """
    return f"{ALGORITHM}\n{amz_date}\n{credential_scope}\n{canonical_request_hash}"


def calculate_signature_v4(canonical_request_hash, credentials, scope, amz_date):
    """Calculate AWS Signature V4

    Args:
        canonical_request_hash: Hex SHA-256 of the canonical request
        credentials: Credentials to sign with
        scope: Scope the signature is bound to
        amz_date: Timestamp in YYYYMMDDTHHMMSSZ format

    Returns:
        Hex-encoded signature string
    """
    if not (credentials.access_key and credentials.secret_key):
        raise CredentialsMissing('Access key id and secret access key are required')

    string_to_sign = build_string_to_sign(amz_date, scope.credential_scope, canonical_request_hash)
    try:
        signing_key = derive_signing_key(credentials.secret_key, scope.date, scope.region, scope.service)
        signature = hmac.new(signing_key, string_to_sign.encode('utf-8'), hashlib.sha256).hexdigest()
    except (TypeError, ValueError) as exc:
        raise InternalHashingFault(f'HMAC-SHA256 failed for scope {scope.credential_scope}') from exc

    logger.debug('Signed canonical request %s with scope %s', canonical_request_hash, scope.credential_scope)
    return signature
