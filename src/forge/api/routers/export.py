from __future__ import annotations

from fastapi import APIRouter, Response

from ...domain.models import ExportRequest
from ...services.packaging import archive_name, fragment_to_zip

router = APIRouter(tags=["export"])


@router.post("/export")
def export_fragment(req: ExportRequest) -> Response:
    data = fragment_to_zip(req.fragment)
    return Response(
        content=data,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{archive_name(req.fragment)}"'},
    )
