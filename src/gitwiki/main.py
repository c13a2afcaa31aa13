"""GitWiki FastAPI application.

A thin JSON surface over the content service. Markup rendering is left to
the client.
"""

import logging
import threading
from contextlib import asynccontextmanager
from datetime import datetime
from urllib.parse import quote

from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from gitwiki.config import settings
from gitwiki.core.errors import PageNotFoundError, PathEscapeError, WikiError
from gitwiki.core.models import Revision, SearchHit
from gitwiki.core.service import ContentService

logger = logging.getLogger(__name__)

FRONT_PAGE = "FrontPage"

_service: ContentService | None = None
_service_lock = threading.Lock()


def get_service() -> ContentService:
    """Get the global content service, creating it on first use."""
    global _service
    with _service_lock:
        if _service is None:
            _service = ContentService.from_settings(settings)
        return _service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: load or rebuild the search index."""
    global _service
    service = get_service()
    if service.ensure_index():
        logger.info("Search index rebuilt at startup")
    yield
    with _service_lock:
        if _service is not None:
            _service.close()
            _service = None


app = FastAPI(
    title=settings.app_title,
    debug=settings.debug,
    lifespan=lifespan,
)


class PageView(BaseModel):
    title: str
    body: str
    modified_at: datetime


class EditView(BaseModel):
    title: str
    body: str
    exists: bool


# ========== Error mapping ==========


@app.exception_handler(PathEscapeError)
async def path_escape_handler(request: Request, exc: PathEscapeError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PageNotFoundError)
async def not_found_handler(request: Request, exc: PageNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(WikiError)
async def wiki_error_handler(request: Request, exc: WikiError):
    logger.error("Request %s failed: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def _header_value(message: str) -> str:
    """Collapse whitespace and escape non-ASCII so a message fits in a header."""
    text = " ".join(message.split())
    return text.encode("ascii", "backslashreplace").decode("ascii")


# ========== Pages ==========


@app.get("/")
def index():
    """Redirect to the front page."""
    return RedirectResponse(url=f"/view/{FRONT_PAGE}", status_code=302)


@app.get("/view/{title:path}", response_model=PageView)
def view_page(title: str, service: ContentService = Depends(get_service)):
    """View a page. Missing pages redirect to the editor."""
    try:
        page = service.read(title)
    except PageNotFoundError:
        return RedirectResponse(url=f"/edit/{quote(title)}", status_code=302)
    return PageView(title=page.title, body=page.text, modified_at=page.modified_at)


@app.get("/edit/{title:path}", response_model=EditView)
def edit_page(title: str, service: ContentService = Depends(get_service)):
    """Raw content for the editor; empty for a new page."""
    try:
        page = service.read(title)
    except PageNotFoundError:
        return EditView(title=title, body="", exists=False)
    return EditView(title=title, body=page.text, exists=True)


@app.post("/save/{title:path}")
def save_page(
    title: str,
    body: str = Form(""),
    service: ContentService = Depends(get_service),
):
    """Save page content and redirect to the page."""
    result = service.save_and_index(title, body.encode("utf-8"))

    response = RedirectResponse(url=f"/view/{quote(title)}", status_code=302)
    response.headers["X-Wiki-Save-State"] = result.state.value
    response.headers["X-Wiki-Revision"] = result.commit.revision
    if result.push_error is not None:
        response.headers["X-Wiki-Push"] = "failed"
    elif result.commit.pushed:
        response.headers["X-Wiki-Push"] = "ok"
    for warning in result.warnings:
        response.headers.append("X-Wiki-Warning", _header_value(warning))
    return response


@app.get("/history/{title:path}", response_model=list[Revision])
def page_history(
    title: str,
    limit: int | None = None,
    service: ContentService = Depends(get_service),
):
    """Commits that touched a page, newest first."""
    return service.history(title, limit=limit)


# ========== Search ==========


@app.post("/search", response_model=list[SearchHit])
def search(search: str = Form(""), service: ContentService = Depends(get_service)):
    """Full-text search. Returns [{"title": ..., "score": ...}, ...]."""
    return service.search(search)
