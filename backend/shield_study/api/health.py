"""Health endpoints for the study host."""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from sqlalchemy import func

from shield_study.database import get_db
from shield_study.models.study import StudyRecord

router = APIRouter()


@router.get("/health")
@router.head("/health")
async def health_check():
    """Liveness only."""
    return {"status": "healthy", "service": "shield-study-host"}


@router.get("/health/detailed")
def detailed_health_check(request: Request, db: Session = Depends(get_db)):
    """
    Readiness: is the coordinator wired, and can the enrollment store be read?

    Reports the coordinator state and the number of enrollments per ending
    reason so an operator can see whether the study is still enrolling.
    """
    coordinator = getattr(request.app.state, "coordinator", None)
    study = {"coordinator": "missing", "state": None}
    if coordinator is not None:
        snapshot = coordinator.snapshot()
        study = {"coordinator": "ready", "state": snapshot["state"], "ending_reason": snapshot["ending_reason"]}

    try:
        rows = db.query(
            StudyRecord.ending_reason, func.count(StudyRecord.id)
        ).group_by(StudyRecord.ending_reason).all()
        enrollments = {(reason or "enrolled"): count for reason, count in rows}
        store = "healthy"
    except Exception as e:
        enrollments = {}
        store = f"unhealthy: {e}"

    healthy = coordinator is not None and store == "healthy"
    return {
        "status": "healthy" if healthy else "degraded",
        "study": study,
        "enrollment_store": store,
        "enrollments": enrollments
    }
