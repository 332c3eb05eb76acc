"""Read-only listing routes.

Learn: Writes only go through the WebSocket channel, because that is where
the fan-out to other viewers happens. These routes expose the same catalog
queries over plain HTTP for tools (the CLI) and for page loads that want
the catalog before opening a socket.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from marketsync.db.engine import get_db
from marketsync.schemas.listing import ListingRead
from marketsync.services.listing_service import ListingService

router = APIRouter()


def _svc(db: AsyncSession = Depends(get_db)) -> ListingService:
    return ListingService(db)


@router.get("/listings", response_model=list[ListingRead])
async def list_listings(svc: ListingService = Depends(_svc)):
    """All listings, newest first."""
    return await svc.select_all_ordered()


@router.get("/listings/{listing_id}", response_model=ListingRead)
async def get_listing(listing_id: str, svc: ListingService = Depends(_svc)):
    listing = await svc.get(listing_id)
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    return listing


@router.get("/sellers/{seller_id}/listings", response_model=list[ListingRead])
async def list_seller_listings(seller_id: str, svc: ListingService = Depends(_svc)):
    return await svc.select_by_seller(seller_id)
