from fastapi import APIRouter, Depends

from app.api.dependencies import require_db
from app.models.schemas import MigrationRunResponse
from app.services import migrations

router = APIRouter(prefix="/migrations", tags=["migrations"], dependencies=[Depends(require_db)])


@router.post("/run", response_model=MigrationRunResponse)
def run_migrations():
    return migrations.run_migrations()
