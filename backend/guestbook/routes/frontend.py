"""
Guestbook Backend: Front End Route
===================================

What:  Serves the single-page front end at `/`.
How:   `index.html` from the static directory; the remaining assets are
       mounted at `/static` by main.py.
"""

from pathlib import Path

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

from guestbook.config import settings

router = APIRouter(tags=["Front end"])


@router.get("/", include_in_schema=False)
async def index() -> FileResponse:
    page = Path(settings.static_dir) / "index.html"
    if not page.is_file():
        raise HTTPException(status_code=404, detail="index.html not found")
    return FileResponse(page, media_type="text/html")
