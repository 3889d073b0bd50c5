"""Project, bid and contractor-alias endpoints."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth import PermissionChecker, get_current_user
from ..database import get_db
from ..domain_errors import Forbidden, ValidationError
from ..models import Bid, Project, User
from ..schemas import BidCreate, BidResponse, ContractorSummary, ProjectCreate, ProjectResponse
from ..services.aliases import AliasAssignor
from ..services.identity import IdentityResolver

router = APIRouter(prefix="/projects", tags=["projects"])
logger = logging.getLogger(__name__)


def require_participant(identity: IdentityResolver, project_id: UUID, user: User) -> str:
    role = identity.participant_role(project_id, user.id)
    if role is None:
        raise Forbidden("You are not a participant of this project", code="PROJECT_ACCESS_DENIED")
    return role


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(
    payload: ProjectCreate,
    current_user: User = Depends(PermissionChecker("canPostProjects")),
    db: Session = Depends(get_db),
):
    """Post a new project owned by the current user."""
    project = Project(
        owner_id=current_user.id,
        title=payload.title.strip(),
        description=payload.description,
        status=payload.status,
    )
    db.add(project)
    db.commit()
    logger.info("projects.created id=%s owner=%s", project.id, current_user.id)
    return project


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(
    project_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return IdentityResolver(db).get_project(project_id)


@router.post("/{project_id}/bids", response_model=BidResponse, status_code=status.HTTP_201_CREATED)
def submit_bid(
    project_id: UUID,
    payload: BidCreate,
    current_user: User = Depends(PermissionChecker("canBid")),
    db: Session = Depends(get_db),
):
    """Submit a bid; the bidder gets an alias on this project right away."""
    identity = IdentityResolver(db)
    if identity.owner_of(project_id) == current_user.id:
        raise ValidationError("Cannot bid on your own project", code="OWN_PROJECT_BID")

    bid = Bid(
        project_id=project_id,
        contractor_id=current_user.id,
        amount=payload.amount,
        description=payload.description,
    )
    db.add(bid)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("You already bid on this project", code="BID_EXISTS")

    AliasAssignor(db, identity).ensure_aliases(project_id)
    logger.info("projects.bid id=%s project=%s contractor=%s", bid.id, project_id, current_user.id)
    return bid


@router.get("/{project_id}/contractors", response_model=list[ContractorSummary])
def list_contractors(
    project_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Contractors seen on the project, identified only by alias."""
    identity = IdentityResolver(db)
    if identity.owner_of(project_id) != current_user.id:
        raise Forbidden("Only the project owner can list contractors", code="PROJECT_ACCESS_DENIED")

    aliases = AliasAssignor(db, identity)
    aliases.ensure_aliases(project_id)
    return aliases.contractors_with_aliases(project_id)
