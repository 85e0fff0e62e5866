"""SigV4 canonical request construction for S3.

S3 differs from other AWS services in two ways that matter here: the path is
URI-encoded once (no double encoding) and it is never normalized, so ``//``,
trailing slashes and ``.``/``..`` segments are signed exactly as given.
"""

import hashlib
import logging
from dataclasses import dataclass

from signer_config import PATH_STYLE, VIRTUAL_HOSTED_STYLE
from signing_errors import MalformedRequest
from signing_types import MAX_EXPIRES, MIN_EXPIRES, SUPPORTED_METHODS

logger = logging.getLogger(__name__)

UNSIGNED_PAYLOAD = 'UNSIGNED-PAYLOAD'

# S3 object keys are limited to 1024 bytes of UTF-8
MAX_KEY_BYTES = 1024

_AWS_UNRESERVED = frozenset(
    b'ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~'
)


@dataclass(frozen=True)
class CanonicalRequest:
    method: str
    uri: str
    query_string: str
    headers: str
    signed_headers: str
    payload_hash: str

    @property
    def text(self):
        # headers already ends with a newline, which yields the blank line
        return '\n'.join([
            self.method,
            self.uri,
            self.query_string,
            self.headers,
            self.signed_headers,
            self.payload_hash,
        ])

    def hexdigest(self):
        return hashlib.sha256(self.text.encode('utf-8')).hexdigest()


def uri_encode(value, encode_slash=True):
    """URI-encode a value using AWS's rules.

    Unreserved characters (A-Z, a-z, 0-9, -, _, ., ~) pass through, everything
    else is percent-encoded byte by byte over UTF-8 with uppercase hex.

    Args:
        value: String to encode
        encode_slash: Whether '/' is encoded or kept as a separator

    Returns:
        Encoded string
    """
    result = []
    for byte in value.encode('utf-8'):
        if byte in _AWS_UNRESERVED or (byte == 0x2F and not encode_slash):
            result.append(chr(byte))
        else:
            result.append(f'%{byte:02X}')
    return ''.join(result)


def canonical_uri(bucket, key, addressing_style=PATH_STYLE):
    if addressing_style == VIRTUAL_HOSTED_STYLE:
        path = f'/{key}'
    elif key:
        path = f'/{bucket}/{key}'
    else:
        path = f'/{bucket}'
    return uri_encode(path, encode_slash=False)


def canonical_query_string(params):
    """Encode query parameters and sort them by encoded name, then value.

    Args:
        params: Iterable of (name, value) pairs or a mapping

    Returns:
        Canonical query string, '&'-joined
    """
    if hasattr(params, 'items'):
        params = params.items()
    encoded = sorted((uri_encode(name), uri_encode(str(value))) for name, value in params)
    return '&'.join(f'{name}={value}' for name, value in encoded)


def canonical_headers(headers):
    """Build the canonical headers block and the signed headers list.

    Header names are compared case-insensitively; repeated names have their
    values joined with commas in the order given.

    Returns:
        tuple: (canonical headers string, semicolon-joined signed header names)
    """
    merged = {}
    for name, value in headers.items():
        name = name.strip().lower()
        value = ' '.join(str(value).split())
        if name in merged:
            merged[name] = f'{merged[name]},{value}'
        else:
            merged[name] = value

    names = sorted(merged)
    block = ''.join(f'{name}:{merged[name]}\n' for name in names)
    return block, ';'.join(names)


def payload_hash(body, presigned):
    if presigned:
        return UNSIGNED_PAYLOAD
    return hashlib.sha256(body or b'').hexdigest()


def validate_request(request, max_expires=MAX_EXPIRES):
    if not request.bucket:
        raise MalformedRequest('Bucket must not be empty')
    if request.method not in SUPPORTED_METHODS:
        raise MalformedRequest(f'Unsupported method: {request.method}')
    if isinstance(request.expires, bool) or not isinstance(request.expires, int):
        raise MalformedRequest('Expiry must be an integer number of seconds')
    upper = min(max_expires, MAX_EXPIRES)
    if not MIN_EXPIRES <= request.expires <= upper:
        raise MalformedRequest(f'Expiry must be within {MIN_EXPIRES}..{upper} seconds')
    try:
        key_bytes = request.key.encode('utf-8')
    except UnicodeEncodeError as exc:
        raise MalformedRequest('Object key is not valid UTF-8') from exc
    if len(key_bytes) > MAX_KEY_BYTES:
        raise MalformedRequest(f'Object key exceeds {MAX_KEY_BYTES} bytes')


def canonicalize(request, scope, signed_headers, query_params=(), payload_hash=UNSIGNED_PAYLOAD,
                 addressing_style=PATH_STYLE, max_expires=MAX_EXPIRES):
    """Turn a signing request into its canonical form.

    Args:
        request: SigningRequest being signed
        scope: Scope the signature is bound to
        signed_headers: Mapping of every header that participates in the signature
        query_params: Full query parameter set, SigV4 metadata included
        payload_hash: UNSIGNED-PAYLOAD or the body's SHA-256 hex digest
        addressing_style: 'path' or 'virtual'
        max_expires: Configured expiry ceiling

    Returns:
        CanonicalRequest
    """
    validate_request(request, max_expires)
    if scope.date != request.date_stamp:
        raise MalformedRequest('Request timestamp does not match the credential scope date')

    headers_block, signed = canonical_headers(signed_headers)
    if 'host' not in signed.split(';'):
        raise MalformedRequest('The host header must be signed')

    canonical = CanonicalRequest(
        method=request.method,
        uri=canonical_uri(request.bucket, request.key, addressing_style),
        query_string=canonical_query_string(query_params),
        headers=headers_block,
        signed_headers=signed,
        payload_hash=payload_hash,
    )
    logger.debug('Canonical request for %s %s: signed headers %s', canonical.method, canonical.uri, signed)
    return canonical
