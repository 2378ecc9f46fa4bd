import html
import logging
from typing import List, Optional

from fastapi import Depends, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from common.database import get_db
from common.dependencies import allow_roles, get_current_user
from common.errors import BookingNotFound, Forbidden
from common.models import Booking, Feedback, RoleEnum, User
from common.rate_limit import limiter
from common.schemas import FeedbackCreate, FeedbackRead
from common.service import create_service_app

logger = logging.getLogger(__name__)

app = create_service_app("Feedback Service", "feedback")


def _sanitize(comment: Optional[str]) -> Optional[str]:
    if comment is None:
        return None
    stripped = comment.strip()
    return html.escape(stripped) if stripped else None


def _feedback_query():
    return select(Feedback).options(selectinload(Feedback.user)).order_by(Feedback.created_at.desc())


@app.post("/feedback", response_model=FeedbackRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def submit_feedback(
    request: Request,
    feedback_in: FeedbackCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Feedback:
    if feedback_in.booking_id is not None:
        booking = db.get(Booking, feedback_in.booking_id)
        if booking is None:
            raise BookingNotFound()
        if booking.user_id != current_user.id and not current_user.is_admin:
            raise Forbidden("You can only leave feedback on your own bookings")

    feedback = Feedback(
        user_id=current_user.id,
        booking_id=feedback_in.booking_id,
        rating=feedback_in.rating,
        comment=_sanitize(feedback_in.comment),
    )
    db.add(feedback)
    db.commit()
    db.refresh(feedback)
    logger.info("Feedback %s submitted by %s (rating=%s)", feedback.id, current_user.id, feedback.rating)
    request.app.state.notifier.publish("feedback", "created", feedback.id)
    return feedback


@app.get("/feedback/me", response_model=List[FeedbackRead])
@limiter.limit("30/minute")
def my_feedback(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[Feedback]:
    return list(db.scalars(_feedback_query().where(Feedback.user_id == current_user.id)))


@app.get("/feedback", response_model=List[FeedbackRead])
@limiter.limit("30/minute")
def list_feedback(
    request: Request,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> List[Feedback]:
    return list(db.scalars(_feedback_query()))
