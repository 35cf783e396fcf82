# SPDX-License-Identifier: Apache-2.0
# Copyright (C) 2024-2026 The Birthmark Standard Foundation

"""Public verification API: is this file (or digest) anchored in the registry?"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Path, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from . import __version__
from .config import Settings, get_settings
from .errors import ConfigurationError, TransientError, TruthCameraError
from .hashing import digest, normalize_digest, verify_hash_format
from .models import VerificationResult
from .registry import create_registry_client

logger = logging.getLogger(__name__)


class VerificationResponse(BaseModel):
    """Response for a verification query."""

    verified: bool = Field(..., description="Whether the digest is recorded in the registry")
    image_hash: str = Field(..., description="SHA-256 digest (64 hex chars)")
    submitter: Optional[str] = Field(None, description="Address that anchored the digest")
    timestamp: Optional[int] = Field(None, description="Chain time of the submission")

    @classmethod
    def from_result(cls, result: VerificationResult) -> 'VerificationResponse':
        if not result.exists:
            return cls(verified=False, image_hash=result.digest)
        return cls(
            verified=True,
            image_hash=result.digest,
            submitter=result.submitter,
            timestamp=result.timestamp,
        )


def get_registry(request: Request):
    """FastAPI dependency for the registry client (fails closed when unconfigured)."""
    registry = request.app.state.registry
    if registry is None:
        error = request.app.state.config_error or ConfigurationError()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={'error': error.reason, 'message': error.user_message},
        )
    return registry


def _registry_failure(e: TruthCameraError) -> HTTPException:
    code = status.HTTP_503_SERVICE_UNAVAILABLE if isinstance(e, TransientError) else status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail={'error': e.reason, 'message': e.user_message})


async def _verify(registry, value: str) -> VerificationResponse:
    try:
        result = await registry.verify(value)
    except TruthCameraError as e:
        logger.warning(f"Verification failed for {value[:16]}...: {e.reason}: {e.detail}")
        raise _registry_failure(e) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    logger.info(f"Hash {'VERIFIED' if result.exists else 'NOT FOUND'}: {value[:16]}...")
    return VerificationResponse.from_result(result)


def create_app(
    settings: Optional[Settings] = None,
    use_mock_chain: bool = False,
    registry_client=None,
) -> FastAPI:
    """
    Build the verifier application.

    Args:
        settings: Application settings
        use_mock_chain: Serve from an in-process registry
        registry_client: Pre-built client (skips construction from settings)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Truth Camera verifier")
        if app.state.registry is not None:
            logger.info(f"Registry: {app.state.registry.address} on {app.state.registry.chain.name}")
        else:
            logger.warning(f"⚠ Registry not configured: {app.state.config_error}")
        yield
        logger.info("Shutting down Truth Camera verifier")

    app = FastAPI(
        title="Truth Camera Verifier",
        description="Check whether an image's SHA-256 digest is anchored in the TruthCamera registry",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.state.config_error = None
    if registry_client is None:
        try:
            registry_client = create_registry_client(settings, use_mock=use_mock_chain)
        except ConfigurationError as e:
            app.state.config_error = e
    app.state.registry = registry_client

    @app.get("/")
    async def root():
        """Root endpoint with basic info."""
        registry = app.state.registry
        return {
            "service": "Truth Camera Verifier",
            "version": __version__,
            "registry": registry.address if registry is not None else None,
            "chain_id": registry.chain.chain_id if registry is not None else None,
        }

    @app.post("/api/verify", response_model=VerificationResponse)
    async def verify_upload(
        file: UploadFile = File(..., description="Image file to check"),
        registry=Depends(get_registry),
    ) -> VerificationResponse:
        """
        Hash an uploaded file and look the digest up.

        Only the raw bytes are hashed; the filename and metadata are ignored.
        """
        data = await file.read()
        if not data:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
        return await _verify(registry, digest(data))

    @app.get("/api/verify/{image_hash}", response_model=VerificationResponse)
    async def verify_hash(
        image_hash: str = Path(..., description="SHA-256 hash (64 hex chars, optional 0x)"),
        registry=Depends(get_registry),
    ) -> VerificationResponse:
        value = normalize_digest(image_hash)
        if not verify_hash_format(value):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Hash must be 64 hexadecimal characters",
            )
        return await _verify(registry, value)

    return app
