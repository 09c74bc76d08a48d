"""FastAPI dependencies shared by the v1 routers."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from app.services.signature_cache import SignatureCache, get_signature_cache


async def get_caller_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Caller identity resolved upstream by the auth layer, trusted verbatim."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )
    return x_user_id.strip()


CallerId = Annotated[str, Depends(get_caller_id)]
Cache = Annotated[SignatureCache, Depends(get_signature_cache)]
