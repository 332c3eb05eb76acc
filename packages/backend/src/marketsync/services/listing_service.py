"""Listing service — the durable listing store behind the realtime protocol.

Learn: Service layer separates persistence from the WebSocket protocol.
The command processor opens one AsyncSession per command and calls exactly
one of these methods. By default each write commits itself, so a returned
value means "durably stored". With autocommit=False a write is only
flushed and the caller commits; this is how the processor keeps its
timeout away from the commit. Written rows are refreshed before they are
returned, so callers always see the stored values, e.g. the price as the
Numeric column keeps it.

Timestamps come from MonotonicClock: every write gets a millisecond value
strictly greater than any value this process handed out before and strictly
greater than the row's previous value, so "newest first" is a total order.
"""

import time
from typing import Any, Callable, Optional

from sqlalchemy import delete, exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketsync.db.models import Listing, new_listing_id
from marketsync.schemas.listing import ListingCreate


class ListingError(Exception):
    """Base class for command failures reported back to the sender."""
    pass


class ListingValidationError(ListingError):
    """Raised when a command body is well-formed but not acceptable."""
    pass


class ListingNotFoundError(ListingError):
    """Raised when an update targets an id that is not in the store."""
    pass


class ListingConflictError(ListingError):
    """Raised when a client-supplied id is already taken."""
    pass


class PersistenceError(ListingError):
    """Raised when the store is unreachable, rejects a write, or times out."""
    pass


def _wall_clock_ms() -> int:
    return time.time_ns() // 1_000_000


class MonotonicClock:
    """Millisecond clock that never repeats or goes backwards within a process."""

    def __init__(self, source: Callable[[], int] = _wall_clock_ms):
        self._source = source
        self._last = 0

    def now_ms(self, after: int = 0) -> int:
        """Current time in ms, bumped past both the last value issued and `after`."""
        now = max(self._source(), self._last + 1, after + 1)
        self._last = now
        return now


# Shared by every service instance in the process.
clock = MonotonicClock()


class ListingService:
    """Single-row CRUD over the listings table."""

    def __init__(
        self,
        db: AsyncSession,
        clock: MonotonicClock = clock,
        autocommit: bool = True,
    ):
        self.db = db
        self.clock = clock
        self.autocommit = autocommit

    async def _save(self) -> None:
        if self.autocommit:
            await self.db.commit()
        else:
            await self.db.flush()

    # ─── Writes ─────────────────────────────────────────

    async def insert(self, data: ListingCreate, image_ref: Optional[str] = None) -> Listing:
        """Store a new listing; the id is generated unless the client chose one."""
        fields = data.model_dump(exclude={"id"})
        if image_ref is not None:
            fields["image_ref"] = image_ref
        listing = Listing(
            id=data.id or new_listing_id(),
            created_or_updated_at=self.clock.now_ms(),
            **fields,
        )
        self.db.add(listing)
        try:
            await self._save()
        except IntegrityError as e:
            await self.db.rollback()
            raise ListingConflictError(f"Listing {listing.id} already exists") from e
        await self.db.refresh(listing)
        return listing

    async def update_by_key(
        self,
        listing_id: str,
        changes: dict[str, Any],
        seller_id: Optional[str] = None,
    ) -> Listing:
        """Apply `changes` to one listing and stamp it with a fresh timestamp.

        Learn: The row is read with FOR UPDATE (a no-op on SQLite, where the
        write lock already serializes writers) so two concurrent updates of
        the same id cannot interleave their read and write.
        """
        listing = await self.get(listing_id, for_update=True)
        if listing is None:
            raise ListingNotFoundError(f"Listing {listing_id} not found")
        if seller_id is not None and seller_id != listing.seller_id:
            raise ListingValidationError("sellerId cannot be changed")

        for key, value in changes.items():
            setattr(listing, key, value)
        listing.created_or_updated_at = self.clock.now_ms(after=listing.created_or_updated_at)
        await self._save()
        await self.db.refresh(listing)
        return listing

    async def delete_by_key(self, listing_id: str) -> bool:
        """Remove a listing. Returns False when there was nothing to remove."""
        result = await self.db.execute(delete(Listing).where(Listing.id == listing_id))
        await self._save()
        return result.rowcount > 0

    # ─── Reads ──────────────────────────────────────────

    async def get(self, listing_id: str, for_update: bool = False) -> Listing | None:
        q = select(Listing).where(Listing.id == listing_id)
        if for_update:
            q = q.with_for_update()
        result = await self.db.execute(q)
        return result.scalars().first()

    async def select_all_ordered(self) -> list[Listing]:
        """Every listing, newest first (ties broken by id)."""
        result = await self.db.execute(
            select(Listing).order_by(
                Listing.created_or_updated_at.desc(), Listing.id.desc()
            )
        )
        return list(result.scalars().all())

    async def select_by_seller(self, seller_id: str) -> list[Listing]:
        result = await self.db.execute(
            select(Listing)
            .where(Listing.seller_id == seller_id)
            .order_by(Listing.created_or_updated_at.desc(), Listing.id.desc())
        )
        return list(result.scalars().all())

    async def image_in_use(self, image_ref: str) -> bool:
        """Whether any listing still points at `image_ref`."""
        result = await self.db.execute(
            select(exists().where(Listing.image_ref == image_ref))
        )
        return bool(result.scalar())
