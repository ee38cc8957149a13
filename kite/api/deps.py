"""Shared FastAPI dependencies for the lender-facing API."""
from fastapi import Depends, Header, HTTPException, Request

from kite.compute.pipeline import get_lender_store
from kite.trust.api_keys import LenderRecord, authenticate_api_key


async def require_lender(
    request: Request,
    authorization: str = Header(None),
    store=Depends(get_lender_store),
) -> LenderRecord:
    """Authenticate via 'Authorization: Bearer kite_...'."""
    lender = authenticate_api_key(authorization, store.get_by_hash)
    if lender is None:
        raise HTTPException(
            status_code=401,
            detail="Valid API key required. Pass it as 'Authorization: Bearer kite_...'.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    # Picked up by the request log in kite.main
    request.state.lender_id = lender.id
    return lender
