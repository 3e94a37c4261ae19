# quotedoc/deps.py
from fastapi import Depends, File, HTTPException, UploadFile

from quotedoc.config import Settings, get_settings


async def read_template(
    template: UploadFile = File(...),
    settings: Settings = Depends(get_settings),
) -> bytes:
    """Uploaded template bytes, after the size and emptiness checks."""
    blob = await template.read()
    if not blob:
        raise HTTPException(status_code=400, detail="Uploaded template is empty")
    limit = settings.max_template_mb * 1024 * 1024
    if len(blob) > limit:
        raise HTTPException(
            status_code=413,
            detail=f"Template is {len(blob) / (1024 * 1024):.1f} MB; the limit is {settings.max_template_mb} MB",
        )
    return blob
