from fastapi import APIRouter, HTTPException, status
from fastapi.concurrency import run_in_threadpool

from avatar_composer.composer.errors import (
    EncodeError,
    ExporterBusyError,
    MissingRequiredNodeError,
    MissingSkeletonSourceError,
    PartLoadError,
    StructuralPreconditionError,
)
from avatar_composer.models import ExportRequest, ExportResponse
from avatar_composer.services.export import AvatarExportService

router = APIRouter()


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    """Simple liveness probe."""
    return {"status": "ok"}


@router.post("/avatars/export", response_model=ExportResponse, status_code=status.HTTP_202_ACCEPTED)
async def export_avatar(request: ExportRequest) -> ExportResponse:
    """Compose the requested parts and export the avatar as glTF and GLB."""
    service = AvatarExportService()
    try:
        return await run_in_threadpool(service.export, request)
    except (FileNotFoundError, IsADirectoryError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (
        MissingRequiredNodeError,
        MissingSkeletonSourceError,
        StructuralPreconditionError,
        PartLoadError,
    ) as exc:
        raise HTTPException(
            status_code=422,
            detail=f"{type(exc).__name__}: {exc}",
        ) from exc
    except ExporterBusyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except EncodeError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
