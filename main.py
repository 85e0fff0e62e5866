import argparse
import logging
import os
from dataclasses import replace

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse
from starlette.routing import Route

from sign_s3 import parse_header_args, sign_request
from signer_config import ADDRESSING_STYLES, DEFAULT_REGION, SignerConfig
from signer_logging import configure_logging, redact_loggers
from signing_errors import CredentialsMissing, MalformedRequest, SigningError
from signing_types import SigningMode, SigningRequest

VERSION = '0.1.0'

# S3 accepts part numbers 1 to 10000 in a multipart upload
MAX_PART_NUMBER = 10000

logger = logging.getLogger(__name__)

# Loggers of the modules on the signing path
SIGNER_LOGGERS = (__name__, 'sign_s3', 'canonical_request', 'signature_helpers')


class InvalidParameters(ValueError):
    """Transport-level problem with the incoming query string"""


def _required(params, name):
    value = params.get(name)
    if value is None:
        raise InvalidParameters(f"Missing query parameter: {name}")
    return value


def _flag(params, name):
    return params.get(name, '').lower() in ('1', 'true', 'yes')


def _expires(params, config):
    raw = params.get('expires')
    if raw is None:
        return config.default_expires
    try:
        return int(raw)
    except ValueError:
        raise InvalidParameters(f"Invalid expires: {raw!r}") from None


def _headers(params):
    try:
        return parse_header_args(params.getlist('header'))
    except ValueError as exc:
        raise InvalidParameters(str(exc)) from None


def build_signing_request(params, config, default_method='GET', body=None, query_params=None):
    """Convert the HTTP query string into a SigningRequest"""
    method = params.get('method') or ('PUT' if _flag(params, 'create') else default_method)
    return SigningRequest(
        method=method,
        bucket=_required(params, 'bucket'),
        key=_required(params, 'path'),
        query_params=query_params or {},
        headers=_headers(params),
        expires=_expires(params, config),
        body=body,
    )


async def root(request):
    return PlainTextResponse(f"S3 Signer (version {VERSION})\n")


async def health_check(request):
    # Signing does no I/O, so there is no upstream to probe
    return JSONResponse({"status": "ok"})


async def sign_handler(request):
    """GET signs a presigned URL (or headers with mode=headers); POST signs headers over the body"""
    config = request.app.state.config
    params = request.query_params

    if request.method == 'POST':
        mode = SigningMode.HEADERS
        signing_request = build_signing_request(params, config, default_method='PUT', body=await request.body())
    else:
        try:
            mode = SigningMode(params.get('mode', SigningMode.QUERY_STRING.value))
        except ValueError:
            raise InvalidParameters(f"Unknown mode: {params.get('mode')!r}") from None
        signing_request = build_signing_request(params, config)

    artifact = sign_request(config, signing_request, mode)
    return JSONResponse(artifact.to_dict())


async def get_object(request):
    config = request.app.state.config
    signing_request = build_signing_request(request.query_params, config, default_method='GET')
    artifact = sign_request(config, signing_request, SigningMode.QUERY_STRING)
    return RedirectResponse(artifact.url, status_code=302)


async def create_object(request):
    config = request.app.state.config
    signing_request = build_signing_request(request.query_params, config, default_method='PUT')
    artifact = sign_request(config, signing_request, SigningMode.QUERY_STRING)
    return RedirectResponse(artifact.url, status_code=302)


async def part_upload_url(request):
    config = request.app.state.config
    upload_id = request.path_params['upload_id']
    part_number = request.path_params['part_number']
    if not 1 <= part_number <= MAX_PART_NUMBER:
        raise MalformedRequest(f"Part number must be within 1..{MAX_PART_NUMBER}")

    logger.info("Upload part: upload_id=%s, part_number=%s", upload_id, part_number)
    signing_request = build_signing_request(
        request.query_params,
        config,
        default_method='PUT',
        query_params={'partNumber': str(part_number), 'uploadId': upload_id},
    )
    artifact = sign_request(config, signing_request, SigningMode.QUERY_STRING)
    return JSONResponse({"presigned_url": artifact.url})


async def handle_invalid_parameters(request, exc):
    return JSONResponse({"error": str(exc)}, status_code=422)


async def handle_signing_error(request, exc):
    if isinstance(exc, CredentialsMissing):
        logger.error("Signer misconfigured: %s", exc.message)
    elif exc.status_code >= 500:
        logger.error("Signing failed: %s", exc.message, exc_info=exc)
    else:
        logger.info("Rejected signing request: %s", exc.message)
    return JSONResponse({"error": exc.public_message}, status_code=exc.status_code)


def create_app(config):
    routes = [
        Route("/", root, methods=["GET"]),
        Route("/healthz", health_check, methods=["GET"]),
        Route("/api/sign", sign_handler, methods=["GET", "POST"]),
        Route("/api/object", get_object, methods=["GET"]),
        Route("/api/objects", create_object, methods=["POST"]),
        Route("/api/multipart-upload/{upload_id}/part/{part_number:int}", part_upload_url, methods=["GET"]),
    ]

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "OPTIONS", "POST", "PUT"],
            allow_headers=["*"],
        )
    ]

    exception_handlers = {
        InvalidParameters: handle_invalid_parameters,
        SigningError: handle_signing_error,
    }

    redact_loggers(config.secrets(), SIGNER_LOGGERS)

    app = Starlette(routes=routes, middleware=middleware, exception_handlers=exception_handlers)
    app.state.config = config
    return app


def serve(argv=None):
    env_config = SignerConfig.from_env()

    parser = argparse.ArgumentParser(description='S3 Signer for AWS and other S3 compatible storage systems')
    parser.add_argument('--aws-access-key-id', default=env_config.access_key,
                        help='Sets the AWS Access Key ID')
    parser.add_argument('--aws-secret-access-key', default=env_config.secret_key,
                        help='Sets the AWS Secret Access Key')
    parser.add_argument('--aws-session-token', default=env_config.session_token,
                        help='Sets the AWS Session Token for temporary credentials')
    parser.add_argument('--aws-region', default=env_config.region, help='Sets the AWS Region')
    parser.add_argument('--aws-hostname', '-a', default=env_config.hostname,
                        help='Sets the AWS Hostname (required for non-AWS S3 endpoint)')
    parser.add_argument('--addressing-style', choices=ADDRESSING_STYLES, default=env_config.addressing_style,
                        help='Path-style (default, MinIO) or virtual-hosted style URLs')
    parser.add_argument('--port', '-p', type=int, default=int(os.getenv('PORT', '8000')),
                        help='Sets the port number to serve the signer (default: 8000)')
    parser.add_argument('--verbose', '-v', action='count', default=0, help='Sets the level of verbosity')
    args = parser.parse_args(argv)

    config = replace(
        env_config,
        access_key=args.aws_access_key_id,
        secret_key=args.aws_secret_access_key,
        session_token=args.aws_session_token or None,
        region=args.aws_region or DEFAULT_REGION,
        hostname=args.aws_hostname or None,
        addressing_style=args.addressing_style,
    )

    configure_logging(args.verbose, secrets=config.secrets())
    logger.info("Listening on http://0.0.0.0:%s", args.port)
    uvicorn.run(create_app(config), host="0.0.0.0", port=args.port, log_config=None)


app = create_app(SignerConfig.from_env())

if __name__ == "__main__":
    serve()
