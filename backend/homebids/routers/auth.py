"""Auth endpoints."""
import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import get_current_user, sign_in, sign_out, sign_up
from ..config import settings
from ..database import get_db
from ..domain_errors import StoreUnavailable
from ..models import User
from ..schemas import SignInRequest, SignUpRequest, TokenResponse, UserResponse

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _set_no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"


@router.post("/sign-up", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def sign_up_endpoint(payload: SignUpRequest, db: Session = Depends(get_db)):
    """Register an account; metadata carries full_name and role."""
    return sign_up(db, email=payload.email, password=payload.password, metadata=payload.metadata)


@router.post("/sign-in", response_model=TokenResponse)
def sign_in_endpoint(payload: SignInRequest, response: Response, db: Session = Depends(get_db)):
    """Sign in with email and password."""
    _set_no_store(response)
    user, access_token = sign_in(db, email=payload.email, password=payload.password)
    logger.info("auth.sign_in user=%s", user.id)
    return TokenResponse(
        access_token=access_token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


@router.post("/sign-out")
def sign_out_endpoint(
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Sign out by revoking currently issued tokens (token_version bump)."""
    _set_no_store(response)
    try:
        sign_out(db, user=current_user)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to sign out user")
        raise StoreUnavailable("Failed to sign out") from exc
    logger.info("auth.sign_out user=%s", current_user.id)
    return {"message": "Signed out successfully"}


@router.get("/me", response_model=UserResponse)
def get_me(response: Response, current_user: User = Depends(get_current_user)):
    """Get current user info."""
    _set_no_store(response)
    return current_user
