"""
api/routes/v1/eol.py -- Framework end-of-life routes.

POST /eol/refresh is the only route that reaches out to the network, so it
carries the tightest rate limit. The @limiter.limit() decorator must sit
ABOVE @router.post so slowapi can attach the limit before FastAPI wraps the
function.
"""

from typing import Optional

from fastapi import APIRouter, Request

from api.limiter import limiter
from api.models import EolRefreshRequest, EolRefreshResponse, FrameworkVersionRow
from core.config import get_settings, utc_now
from core.models import FrameworkType
from core.pipeline import refresh_eol
from portfolio.store import PortfolioStore

router = APIRouter()


@limiter.limit(get_settings().eol_refresh_rate_limit)
@router.post("/eol/refresh", response_model=EolRefreshResponse)
def post_eol_refresh(request: Request, body: Optional[EolRefreshRequest] = None) -> EolRefreshResponse:
    """Fetch the end-of-life feed, diff it against stored versions and apply.

    Families that fail to fetch or parse are listed under errors; the rest
    are still applied (success is false when any family failed).
    """
    body = body or EolRefreshRequest()
    store: PortfolioStore = request.app.state.store
    cache = request.app.state.cache if body.use_cache else None
    now = utc_now()

    result = refresh_eol(store.versions_by_family(), families=body.frameworks, cache=cache, now=now)
    store.apply_eol_refresh(result)
    return EolRefreshResponse.from_result(result, now.date())


@router.get("/eol/versions", response_model=list[FrameworkVersionRow])
def list_versions(request: Request, framework: Optional[FrameworkType] = None) -> list[FrameworkVersionRow]:
    """Return stored framework versions, optionally for one family."""
    store: PortfolioStore = request.app.state.store
    today = utc_now().date()
    return [FrameworkVersionRow.from_version(v, today) for v in store.list_framework_versions(framework)]
