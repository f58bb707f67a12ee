from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..schemas.schemas import HealthResponse
from ..services.image_support import PropertyImageSupport, get_image_support
from .dependencies import get_db

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health(
    db: Session = Depends(get_db),
    support: PropertyImageSupport = Depends(get_image_support),
) -> HealthResponse:
    return HealthResponse(status="ok", features={"propertyImages": support.is_available(db)})
