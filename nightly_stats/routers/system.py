"""
System API router.

Operator identity and result store connection recovery.
"""
import logging

from fastapi import APIRouter, Depends

from nightly_stats.config import get_settings
from nightly_stats.database import get_pool
from nightly_stats.utils.auth import verify_api_key

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/username")
async def get_username():
    """Operator name written to ModifyBy and sent to Jenkins."""
    return {'username': get_settings().operator_name}


@router.post("/reset-db-connection", dependencies=[Depends(verify_api_key)])
async def reset_db_connection():
    """
    Drop the result store connection pool and reconnect.

    Backs the 'Reset connection' action of the persistent database banner.

    Raises:
        StoreConnectionError: If the store is still unreachable
    """
    pool = get_pool()
    pool.reset()
    pool.health_check()
    logger.info("Result store connection reset")
    return {'success': True, 'message': 'Database connection restored'}
