"""
api/routes/v1/health_scores.py -- Health score route.

Applications arrive in the request body (they are owned by the sync
collaborators, not stored here); their lifecycle tasks are read from the
store so overdue work counts against the score.
"""

from fastapi import APIRouter, Request

from api.limiter import limiter
from api.models import HealthScoreRequest, HealthScoreResponse, HealthScoreRow, PortfolioSummaryResponse
from core.config import utc_now
from core.scoring import DocumentationWeights, calculate_health_score, summarize_portfolio
from portfolio.store import PortfolioStore

router = APIRouter()


@limiter.limit("60/minute")
@router.post("/health-scores", response_model=HealthScoreResponse)
def post_health_scores(request: Request, body: HealthScoreRequest) -> HealthScoreResponse:
    """Score every submitted application.

    Response:
      results -- one breakdown per application, in request order
      summary -- category counts and average across the submitted set
    """
    store: PortfolioStore = request.app.state.store
    now = utc_now()

    applications = [a.to_domain() for a in body.applications]
    tasks = store.tasks_by_application(a.id for a in applications)
    incidents = [i.to_domain() for i in body.incidents] if body.incidents is not None else None
    weights = DocumentationWeights() if body.weighted_documentation else None

    rows = []
    breakdowns = []
    for app in applications:
        app_incidents = [i for i in incidents if i.application_id == app.id] if incidents is not None else None
        breakdown = calculate_health_score(app, tasks.get(app.id, ()), app_incidents, weights, now)
        breakdowns.append(breakdown)
        rows.append(HealthScoreRow.from_breakdown(app, breakdown))

    return HealthScoreResponse(
        results=rows,
        summary=PortfolioSummaryResponse.from_summary(summarize_portfolio(breakdowns)),
    )
