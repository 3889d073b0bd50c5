"""
Celery worker running the periodic contractor alias sweep.
"""
from celery import Celery
from sqlalchemy import exists, select
import logging
from .config import settings
from .database import SessionLocal
from .models import Bid, ContractorAlias, Message, Project
from .services.aliases import AliasAssignor

logger = logging.getLogger(__name__)

celery_app = Celery(
    "homebids",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    beat_schedule={
        "sweep-contractor-aliases": {
            "task": "sweep_contractor_aliases",
            "schedule": settings.ALIAS_SWEEP_INTERVAL_SECONDS,
        },
    },
)


def projects_missing_aliases(db, limit: int) -> list:
    """Projects with a bidder or non-owner sender that has no alias yet."""
    unlabeled_bid = (
        select(Bid.project_id)
        .where(
            ~exists().where(
                ContractorAlias.project_id == Bid.project_id,
                ContractorAlias.contractor_id == Bid.contractor_id,
            )
        )
    )
    unlabeled_sender = (
        select(Message.project_id)
        .join(Project, Project.id == Message.project_id)
        .where(
            Message.sender_id != Project.owner_id,
            ~exists().where(
                ContractorAlias.project_id == Message.project_id,
                ContractorAlias.contractor_id == Message.sender_id,
            ),
        )
    )
    rows = db.execute(unlabeled_bid.union(unlabeled_sender).limit(limit)).all()
    return [row[0] for row in rows]


@celery_app.task(name="sweep_contractor_aliases")
def sweep_contractor_aliases(batch_size: int = 100):
    """
    Backfill aliases for contractors observed without one.
    """
    db = SessionLocal()
    repaired = 0
    project_ids = []

    try:
        project_ids = projects_missing_aliases(db, batch_size)
        logger.info("aliases.sweep found=%s", len(project_ids))

        assignor = AliasAssignor(db)
        for project_id in project_ids:
            repaired += len(assignor.ensure_aliases(project_id))

    except Exception as e:
        db.rollback()
        logger.error(f"Error sweeping contractor aliases: {e}", exc_info=True)
        raise

    finally:
        db.close()

    return {"projects": len(project_ids), "aliases_created": repaired}
