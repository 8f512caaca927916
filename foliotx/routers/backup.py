# foliotx/routers/backup.py

import json

from fastapi import APIRouter, Body, Depends, HTTPException, UploadFile, File
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from foliotx.database import get_db
from foliotx.services import backup

router = APIRouter()


def _summary(bundle) -> dict:
    return {
        "message": "Backup successfully imported.",
        "portfolios": len(bundle.portfolios),
        "deletedPortfolios": len(bundle.deleted_portfolios),
    }


# === GET /api/backup/export ===
@router.get("/export")
def export_backup(db: Session = Depends(get_db)):
    with backup.ledger_lock:
        bundle = backup.export_bundle(db)
    return JSONResponse(
        content=bundle.model_dump(mode="json", by_alias=True),
        headers={
            "Content-Disposition": "attachment; filename=foliotx_backup.json"
        },
    )


# === POST /api/backup/import ===
@router.post("/import")
def import_backup(payload=Body(...), db: Session = Depends(get_db)):
    """
    Replace the whole ledger with a backup. Accepts the export bundle,
    a bare list of portfolios, or the legacy {assets, history} document.
    """
    try:
        with backup.ledger_lock:
            bundle = backup.import_bundle(db, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Import failed: {str(e)}")
    return _summary(bundle)


# === POST /api/backup/restore ===
@router.post("/restore")
def restore_backup_file(file: UploadFile = File(...), db: Session = Depends(get_db)):
    """Same as /import, from an uploaded .json file."""
    try:
        payload = json.load(file.file)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise HTTPException(status_code=400, detail=f"Restore failed: not a JSON file ({str(e)})")
    try:
        with backup.ledger_lock:
            bundle = backup.import_bundle(db, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Restore failed: {str(e)}")
    return _summary(bundle)
