import argparse
import hmac
import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import parse_qsl, unquote, urlsplit

from canonical_request import (
    UNSIGNED_PAYLOAD,
    CanonicalRequest,
    canonical_headers,
    canonical_query_string,
    canonicalize,
    payload_hash,
    uri_encode,
    validate_request,
)
from signature_helpers import calculate_signature_v4
from signer_config import PATH_STYLE, VIRTUAL_HOSTED_STYLE, SignerConfig
from signing_errors import MalformedRequest, SigningError
from signing_types import ALGORITHM, Scope, SigningArtifact, SigningMode, SigningRequest

logger = logging.getLogger(__name__)

PRESIGN_PARAMS = frozenset({
    'X-Amz-Algorithm',
    'X-Amz-Credential',
    'X-Amz-Date',
    'X-Amz-Expires',
    'X-Amz-SignedHeaders',
    'X-Amz-Security-Token',
    'X-Amz-Signature',
})

# Headers the signer sets itself in header mode
HEADER_AUTH_HEADERS = frozenset({
    'authorization',
    'x-amz-content-sha256',
    'x-amz-date',
    'x-amz-security-token',
})


@dataclass(frozen=True)
class Endpoint:
    scheme: str
    host: str


def resolve_endpoint(config, bucket):
    """Resolve scheme and Host header value for a bucket.

    Path-style addressing (the default, and what MinIO expects) keeps the
    configured host; virtual-hosted style prefixes the bucket name.
    """
    hostname = config.hostname
    if hostname:
        if '://' not in hostname:
            hostname = f'{config.scheme}://{hostname}'
        parsed = urlsplit(hostname)
        scheme, host = parsed.scheme, parsed.netloc
    else:
        scheme = config.scheme
        if config.region == 'us-east-1':
            host = 's3.amazonaws.com'
        else:
            host = f's3.{config.region}.amazonaws.com'

    if config.addressing_style == VIRTUAL_HOSTED_STYLE:
        host = f'{bucket}.{host}'
    return Endpoint(scheme=scheme, host=host)


def parse_header_args(values):
    """Parse 'Name:Value' strings into a header mapping"""
    headers = {}
    for item in values or ():
        name, sep, value = item.partition(':')
        if not sep or not name.strip():
            raise ValueError(f"Invalid header {item!r}, expected 'Name:Value'")
        headers[name.strip()] = value.strip()
    return headers


def presign_query_params(request, credentials, scope, signed_headers):
    """Caller query parameters plus the SigV4 presign metadata.

    Must run before canonicalization: X-Amz-Expires and friends are part of
    what gets signed.
    """
    reserved = {name.lower() for name in PRESIGN_PARAMS}
    for name in request.query_params:
        if name.lower() in reserved:
            raise MalformedRequest(f'Query parameter {name} is reserved for SigV4')

    params = list(request.query_params.items())
    params.extend([
        ('X-Amz-Algorithm', ALGORITHM),
        ('X-Amz-Credential', f'{credentials.access_key}/{scope.credential_scope}'),
        ('X-Amz-Date', request.amz_date),
        ('X-Amz-Expires', str(request.expires)),
        ('X-Amz-SignedHeaders', signed_headers),
    ])
    if credentials.session_token:
        params.append(('X-Amz-Security-Token', credentials.session_token))
    return params


def _headers_to_sign(request, endpoint, credentials, presigned):
    headers = {'host': endpoint.host}
    for name, value in request.headers.items():
        lower = name.strip().lower()
        if lower == 'host':
            if ' '.join(str(value).split()) != endpoint.host:
                raise MalformedRequest('Host header does not match the configured endpoint')
            continue
        if lower in HEADER_AUTH_HEADERS:
            raise MalformedRequest(f'Header {name} is set by the signer')
        headers[name] = value

    if not presigned:
        headers['x-amz-content-sha256'] = payload_hash(request.body, presigned=False)
        headers['x-amz-date'] = request.amz_date
        if credentials.session_token:
            headers['x-amz-security-token'] = credentials.session_token
    return headers


def assemble(mode, request, scope, signature, signed_headers, endpoint, canonical, credentials):
    """Embed a signature into the artifact for the requested mode"""
    if mode is SigningMode.QUERY_STRING:
        if f'X-Amz-Expires={request.expires}' not in canonical.query_string.split('&'):
            raise SigningError('Presign metadata must be canonicalized before assembly')
        url = (f'{endpoint.scheme}://{endpoint.host}{canonical.uri}'
               f'?{canonical.query_string}&X-Amz-Signature={signature}')
        return SigningArtifact(mode=mode, signature=signature, amz_date=request.amz_date,
                               expires=request.expires, url=url)

    authorization = (f'{ALGORITHM} Credential={credentials.access_key}/{scope.credential_scope}, '
                     f'SignedHeaders={signed_headers}, Signature={signature}')
    headers = {
        'Authorization': authorization,
        'x-amz-date': request.amz_date,
        'x-amz-content-sha256': canonical.payload_hash,
    }
    if credentials.session_token:
        headers['x-amz-security-token'] = credentials.session_token
    for name, value in request.headers.items():
        if name.strip().lower() != 'host':
            headers[name] = value
    return SigningArtifact(mode=mode, signature=signature, amz_date=request.amz_date,
                           expires=request.expires, headers=headers)


def sign_request(config, request, mode=SigningMode.QUERY_STRING):
    """Run canonicalization, signing and assembly for one request.

    Args:
        config: SignerConfig holding credentials, region and endpoint
        request: SigningRequest to authorize
        mode: SigningMode.QUERY_STRING for a presigned URL, SigningMode.HEADERS for headers

    Returns:
        SigningArtifact
    """
    if not isinstance(mode, SigningMode):
        raise MalformedRequest(f'Unknown signing mode: {mode!r}')
    validate_request(request, config.max_expires)
    credentials = config.credentials()

    presigned = mode is SigningMode.QUERY_STRING
    endpoint = resolve_endpoint(config, request.bucket)
    scope = Scope.for_request(request, config.region)
    headers = _headers_to_sign(request, endpoint, credentials, presigned)

    if presigned:
        _, signed_names = canonical_headers(headers)
        query_params = presign_query_params(request, credentials, scope, signed_names)
    else:
        query_params = list(request.query_params.items())

    canonical = canonicalize(
        request,
        scope,
        headers,
        query_params=query_params,
        payload_hash=payload_hash(request.body, presigned),
        addressing_style=config.addressing_style,
        max_expires=config.max_expires,
    )
    signature = calculate_signature_v4(canonical.hexdigest(), credentials, scope, request.amz_date)
    logger.info('Signed %s %s/%s (%s, expires in %ss)', request.method, request.bucket, request.key,
                mode.value, request.expires)
    return assemble(mode, request, scope, signature, canonical.signed_headers, endpoint, canonical, credentials)


def generate_presigned_url(config, request):
    """AWS Signature Version 4, query-string authorization"""
    return sign_request(config, request, SigningMode.QUERY_STRING)


def generate_signed_headers(config, request):
    """AWS Signature Version 4, Authorization header"""
    return sign_request(config, request, SigningMode.HEADERS)


def verify_presigned_url(config, url, method='GET', headers=None):
    """Recompute the signature of a presigned URL from its own path and query.

    Expiry is not checked; the object store enforces it.

    Returns:
        True if X-Amz-Signature matches
    """
    parsed = urlsplit(url)
    params = parse_qsl(parsed.query, keep_blank_values=True)
    values = dict(params)

    provided_signature = values.get('X-Amz-Signature', '')
    amz_date = values.get('X-Amz-Date', '')
    credential = values.get('X-Amz-Credential', '')
    signed_headers = values.get('X-Amz-SignedHeaders', 'host')
    if not all([provided_signature, amz_date, credential]):
        return False
    if values.get('X-Amz-Algorithm') != ALGORITHM:
        return False

    access_key, _, credential_scope = credential.partition('/')
    scope_parts = credential_scope.split('/')
    if len(scope_parts) != 4:
        return False
    credentials = config.credentials()
    if not hmac.compare_digest(access_key, credentials.access_key):
        return False

    available = {'host': parsed.netloc}
    for name, value in (headers or {}).items():
        available[name.lower()] = value
    signed_names = signed_headers.split(';')
    if any(name not in available for name in signed_names):
        return False
    block, signed = canonical_headers({name: available[name] for name in signed_names})

    canonical = CanonicalRequest(
        method=method.upper(),
        uri=uri_encode(unquote(parsed.path) or '/', encode_slash=False),
        query_string=canonical_query_string([(k, v) for k, v in params if k != 'X-Amz-Signature']),
        headers=block,
        signed_headers=signed,
        payload_hash=UNSIGNED_PAYLOAD,
    )
    scope = Scope(date=scope_parts[0], region=scope_parts[1], service=scope_parts[2])
    expected_signature = calculate_signature_v4(canonical.hexdigest(), credentials, scope, amz_date)
    return hmac.compare_digest(provided_signature, expected_signature)


def main(argv=None):
    parser = argparse.ArgumentParser(description='Generate MinIO/S3 presigned URLs and signed headers')
    parser.add_argument('endpoint', help='MinIO/S3 endpoint (e.g., minio.example.com:9000)')
    parser.add_argument('access_key', help='Access key')
    parser.add_argument('secret_key', help='Secret key')
    parser.add_argument('bucket', help='Bucket name')
    parser.add_argument('object_key', nargs='?', default='', help='Object key/path')
    parser.add_argument('--expires', '-e', type=int, default=3600, help='Expiration time in seconds (default: 3600)')
    parser.add_argument('--method', '-m', default='GET', help='HTTP method (default: GET)')
    parser.add_argument('--region', '-r', default='us-east-1', help='AWS region (default: us-east-1)')
    parser.add_argument('--session-token', '-t', default=None, help='Session token for temporary credentials')
    parser.add_argument('--mode', choices=[m.value for m in SigningMode], default=SigningMode.QUERY_STRING.value,
                        help='Presigned URL or signed headers (default: url)')
    parser.add_argument('--virtual-hosted', action='store_true', help='Use virtual-hosted style addressing')
    parser.add_argument('--header', '-H', action='append', default=[], help="Extra signed header, 'Name:Value'")
    parser.add_argument('--timestamp', default=None, help='Signing time, YYYYMMDDTHHMMSSZ (default: now)')

    args = parser.parse_args(argv)

    try:
        headers = parse_header_args(args.header)
        timestamp = datetime.strptime(args.timestamp, '%Y%m%dT%H%M%SZ') if args.timestamp else None
    except ValueError as exc:
        parser.error(str(exc))

    config = SignerConfig(
        access_key=args.access_key,
        secret_key=args.secret_key,
        session_token=args.session_token,
        region=args.region,
        hostname=args.endpoint,
        addressing_style=VIRTUAL_HOSTED_STYLE if args.virtual_hosted else PATH_STYLE,
    )
    request_args = dict(method=args.method, bucket=args.bucket, key=args.object_key,
                        headers=headers, expires=args.expires)
    if timestamp is not None:
        request_args['timestamp'] = timestamp

    try:
        artifact = sign_request(config, SigningRequest(**request_args), SigningMode(args.mode))
    except SigningError as exc:
        print(f'error: {exc.message}', file=sys.stderr)
        return 2

    if artifact.mode is SigningMode.QUERY_STRING:
        print(artifact.url)
    else:
        print(json.dumps(artifact.headers, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
