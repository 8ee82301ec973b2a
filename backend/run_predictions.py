"""
Runs the predictive notification engine once, outside the API process.

    python run_predictions.py

Prints the JSON summary; exits 1 if the run fails.
"""
import asyncio
import json
import logging
import os
import sys

# Allow importing the backend modules when run from anywhere
sys.path.append(os.path.dirname(os.path.abspath(__file__)))
from config import settings
from database import db, connect_db, close_db
from services.audit_service import AuditAction
from services.prediction_service import run_prediction_job

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("run_predictions")


async def main() -> int:
    await connect_db()
    try:
        summary = await run_prediction_job(db, action=AuditAction.CLI_PREDICT)
    except Exception:
        logger.exception("Prediction run failed")
        return 1
    finally:
        await close_db()
    print(json.dumps({"success": True, **summary.model_dump()}, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
