from fastapi import Depends
from fastapi import FastAPI
from fastapi import File
from fastapi import Query
from fastapi import Request
from fastapi import UploadFile
from fastapi.responses import JSONResponse
from fastapi.responses import PlainTextResponse
from s3_gateway.config import load_config
from s3_gateway.config import open_gateway
from s3_gateway.config import settings_from_environ
from s3_gateway.errors import BackendRejected
from s3_gateway.errors import BackendUnavailable
from s3_gateway.errors import ConfigurationError
from s3_gateway.errors import GatewayError
from s3_gateway.errors import InvalidInput
from s3_gateway.errors import LocalResourceError
from s3_gateway.errors import NotFound
from typing import List

import logging
import os
import uvicorn


logger = logging.getLogger(__name__)

_STATUS_CODES = (
    (InvalidInput, 400),
    (NotFound, 404),
    (BackendUnavailable, 503),
    (BackendRejected, 502),
    (LocalResourceError, 500),
)


def status_for(exc):
    for error_class, status in _STATUS_CODES:
        if isinstance(exc, error_class):
            return status
    return 500


def get_gateway(request: Request):
    return request.app.state.gateway


def create_app(gateway):
    """Build the HTTP boundary around an already wired gateway."""
    app = FastAPI(title="S3 Gateway")
    app.state.gateway = gateway

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        status = status_for(exc)
        if status >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    @app.post("/s3/upload", response_class=PlainTextResponse)
    def upload_file(file: UploadFile = File(...), gateway=Depends(get_gateway)):
        """Upload a file directly through the gateway."""
        key = gateway.put_object(file.filename, file.file)
        return f"File uploaded successfully: {key}"

    @app.get("/s3/presigned/upload-url", response_class=PlainTextResponse)
    def get_upload_url(
        file_name: str = Query(..., alias="fileName"),
        gateway=Depends(get_gateway),
    ):
        """Return a pre-signed URL the client can PUT a file to."""
        return gateway.create_upload_grant(file_name).url

    @app.get("/s3/presigned/download-url", response_class=PlainTextResponse)
    def get_download_url(
        file_key: str = Query(..., alias="fileKey"),
        gateway=Depends(get_gateway),
    ):
        """Return a pre-signed URL for downloading an exact key."""
        return gateway.create_download_grant(file_key).url

    @app.get("/s3/files", response_model=List[str])
    def list_files(gateway=Depends(get_gateway)):
        return gateway.list_objects()

    @app.get("/s3/demo", response_class=PlainTextResponse)
    def demo():
        return "Working fine"

    return app


def build_gateway(environ=None):
    """Open the gateway from ``S3_GATEWAY_CONFIG`` or from the environment."""
    environ = os.environ if environ is None else environ
    config_path = environ.get("S3_GATEWAY_CONFIG")
    if config_path:
        return load_config(config_path).open()
    return open_gateway(settings_from_environ(environ))


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    try:
        gateway = build_gateway()
    except ConfigurationError as e:
        logger.error("Refusing to start: %s", e)
        raise SystemExit(1) from e
    host = os.environ.get("S3_GATEWAY_HOST", "127.0.0.1")
    port = int(os.environ.get("S3_GATEWAY_PORT", "8080"))
    uvicorn.run(create_app(gateway), host=host, port=port)


if __name__ == "__main__":
    main()
