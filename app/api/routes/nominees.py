# app/api/routes/nominees.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.nominee import NomineeStatus
from app.models.user import User
from app.core.capabilities import Capability
from app.core.exceptions import AlreadyNominated, NominationRejected, NotFound
from app.schemas.category import NomineeResponse
from app.schemas.nominee import NominationCreate, MyNominationResponse
from app.api.deps import get_current_user, require_capability
from app.services import nomination_service, tally_service

router = APIRouter(prefix="/api/v1/nominees", tags=["nominees"])

@router.post("", response_model=NomineeResponse, status_code=status.HTTP_201_CREATED)
async def nominate_self(
    data: NominationCreate,
    current_user: User = Depends(require_capability(Capability.BE_NOMINATED)),
    db: AsyncSession = Depends(get_db)
):
    """Put yourself forward in a category; an admin reviews it"""
    try:
        return await nomination_service.create_nomination(
            db,
            category_id=data.category_id,
            nominated_by=current_user.id,
            student_id=current_user.id,
            display_name=data.display_name,
            nomination_reason=data.nomination_reason,
            achievements=[a.model_dump() for a in data.achievements],
            image_url=data.image_url
        )
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except AlreadyNominated as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except NominationRejected as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

@router.get("/my-nominations", response_model=List[MyNominationResponse])
async def get_my_nominations(
    status_filter: Optional[NomineeStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Nominations naming the caller, with vote totals"""
    nominations = await nomination_service.list_student_nominations(db, current_user.id, status_filter)

    response = []
    for nominee in nominations:
        stats = await tally_service.get_nominee_stats(db, nominee.id)
        response.append(MyNominationResponse(
            **NomineeResponse.model_validate(nominee).model_dump(),
            review_notes=nominee.review_notes,
            total_votes=stats["total_votes"],
            total_revenue=stats["total_revenue"]
        ))
    return response
