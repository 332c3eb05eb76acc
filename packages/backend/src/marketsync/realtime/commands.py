"""Listing command processor — the protocol state machine.

Learn: One inbound envelope goes through the same four steps:
1. Resolve the kind (unknown → error naming it)
2. Validate the body against the kind's schema (invalid → error)
3. Run exactly one store operation in its own DB session
4. On success only: ack the sender, then notify every other session

Every failure is turned into an `error` frame for the sender and nothing
else: no write, no broadcast, and the connection stays open. Notifications
are produced after the store call returned, i.e. after the commit, so no
client ever hears about a write that did not happen.

  create_listing  → insert        → create_ack {id}  + listing_created {listing}
  update_listing  → update_by_key → update_ack {id}  + listing_updated {listing}
  delete_listing  → delete_by_key → delete_ack {id}  + listing_deleted {id}*
  list_all        → select_all    → catalog_snapshot [listings]
  list_by_seller  → by_seller     → seller_catalog   [listings]

  * only when a row was actually removed; deleting an absent id is acked
    the same way but broadcasts nothing.

An upload that a write leaves unreferenced (the old image of an updated or
deleted listing) is removed once the commit has succeeded.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketsync.db.models import Listing
from marketsync.realtime import protocol
from marketsync.realtime.protocol import CommandKind, Envelope, error_message, make_message
from marketsync.realtime.registry import Session, SessionRegistry
from marketsync.schemas.listing import (
    EmptyBody,
    ListingCreate,
    ListingKey,
    ListingRead,
    ListingUpdate,
    SellerQuery,
    describe_validation_error,
)
from marketsync.services.image_store import ImageStore
from marketsync.services.listing_service import (
    ListingError,
    ListingService,
    PersistenceError,
)

logger = structlog.get_logger()

T = TypeVar("T")

BODY_SCHEMAS: dict[CommandKind, type[BaseModel]] = {
    CommandKind.CREATE_LISTING: ListingCreate,
    CommandKind.UPDATE_LISTING: ListingUpdate,
    CommandKind.DELETE_LISTING: ListingKey,
    CommandKind.LIST_ALL: EmptyBody,
    CommandKind.LIST_BY_SELLER: SellerQuery,
}


def _wire(listings) -> list[dict[str, Any]]:
    return [ListingRead.model_validate(listing).to_wire() for listing in listings]


class ListingCommandProcessor:
    """Maps decoded envelopes to store operations and outbound frames."""

    def __init__(
        self,
        registry: SessionRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        images: Optional[ImageStore] = None,
        timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.session_factory = session_factory
        self.images = images
        self.timeout = timeout
        self._handlers: dict[CommandKind, Callable[[Any, Session], Awaitable[None]]] = {
            CommandKind.CREATE_LISTING: self._create,
            CommandKind.UPDATE_LISTING: self._update,
            CommandKind.DELETE_LISTING: self._delete,
            CommandKind.LIST_ALL: self._list_all,
            CommandKind.LIST_BY_SELLER: self._list_by_seller,
        }

    # ─── Entry points ────────────────────────────────────

    async def handle(self, envelope: Envelope, sender: Session) -> None:
        """Process one envelope from `sender`. Never raises."""
        kind = envelope.command
        if kind is None:
            logger.info("command.unknown", kind=envelope.kind)
            await self._reject(sender, f"Unknown message type: {envelope.kind}")
            return

        try:
            body = BODY_SCHEMAS[kind].model_validate(envelope.body)
        except ValidationError as e:
            logger.info("command.invalid", kind=kind.value, errors=e.error_count())
            await self._reject(sender, f"Invalid {kind.value}: {describe_validation_error(e)}")
            return

        try:
            await self._handlers[kind](body, sender)
        except ListingError as e:
            logger.info("command.rejected", kind=kind.value, reason=str(e))
            await self._reject(sender, str(e))
        except Exception:
            logger.exception("command.failed", kind=kind.value)
            await self._reject(sender, "Internal server error")

    async def snapshot_message(self) -> dict[str, Any]:
        """The catalog_snapshot frame a new session starts from."""
        listings = await self._run(lambda svc: svc.select_all_ordered())
        return make_message(protocol.CATALOG_SNAPSHOT, _wire(listings))

    # ─── Store access ────────────────────────────────────

    async def _run(self, op: Callable[[ListingService], Awaitable[T]]) -> T:
        """Run one store operation in a fresh session, then commit it.

        Learn: The timeout bounds the operation up to the commit, never the
        commit itself. A command that timed out has written nothing, and once
        the commit is issued the sender hears its real outcome.
        """
        try:
            async with self.session_factory() as db:
                result = await self._within_timeout(op(ListingService(db, autocommit=False)))
                await db.commit()
                return result
        except asyncio.TimeoutError as e:
            logger.warning("listing.store_timeout", timeout=self.timeout)
            raise PersistenceError("Listing store timed out, please retry") from e
        except SQLAlchemyError as e:
            logger.error("listing.store_error", error=str(e))
            raise PersistenceError("Listing store unavailable, please retry") from e

    async def _within_timeout(self, work: Awaitable[T]) -> T:
        if self.timeout is None:
            return await work
        return await asyncio.wait_for(work, self.timeout)

    async def _store_image(self, image_ref: Optional[str]) -> Optional[str]:
        """Persist an inline image; returns the new path, or None to keep image_ref as is."""
        if image_ref is None or self.images is None or not self.images.is_inline(image_ref):
            return None
        return await self.images.save(image_ref)

    async def _orphaned(self, svc: ListingService, image_ref: Optional[str]) -> Optional[str]:
        """`image_ref` if it is a stored upload that no listing points at any more."""
        if not image_ref or self.images is None or not self.images.owns(image_ref):
            return None
        if await svc.image_in_use(image_ref):
            return None
        return image_ref

    # ─── Handlers ────────────────────────────────────────

    async def _create(self, body: ListingCreate, sender: Session) -> None:
        stored_image = await self._store_image(body.image_ref)
        try:
            listing = await self._run(lambda svc: svc.insert(body, image_ref=stored_image))
        except ListingError:
            if stored_image:
                self.images.discard(stored_image)
            raise

        record = ListingRead.model_validate(listing).to_wire()
        logger.info("listing.created", listing_id=listing.id, seller_id=listing.seller_id)
        await self.registry.send_to(sender, make_message(protocol.CREATE_ACK, {"id": listing.id}))
        await self.registry.broadcast_except(
            make_message(protocol.LISTING_CREATED, record), excluded=sender
        )

    async def _update(self, body: ListingUpdate, sender: Session) -> None:
        changes = body.changes()
        stored_image = await self._store_image(body.image_ref)
        if stored_image:
            changes["image_ref"] = stored_image

        async def apply(svc: ListingService) -> tuple[Listing, Optional[str]]:
            current = await svc.get(body.id, for_update=True)
            previous_image = current.image_ref if current is not None else None
            listing = await svc.update_by_key(body.id, changes, seller_id=body.seller_id)
            return listing, await self._orphaned(svc, previous_image)

        try:
            listing, replaced_image = await self._run(apply)
        except ListingError:
            if stored_image:
                self.images.discard(stored_image)
            raise

        record = ListingRead.model_validate(listing).to_wire()
        logger.info("listing.updated", listing_id=listing.id, fields=sorted(changes))
        await self.registry.send_to(sender, make_message(protocol.UPDATE_ACK, {"id": listing.id}))
        await self.registry.broadcast_except(
            make_message(protocol.LISTING_UPDATED, record), excluded=sender
        )
        if replaced_image:
            self.images.discard(replaced_image)

    async def _delete(self, body: ListingKey, sender: Session) -> None:

        async def remove(svc: ListingService) -> tuple[bool, Optional[str]]:
            current = await svc.get(body.id, for_update=True)
            previous_image = current.image_ref if current is not None else None
            removed = await svc.delete_by_key(body.id)
            if not removed:
                return False, None
            return True, await self._orphaned(svc, previous_image)

        removed, orphaned_image = await self._run(remove)

        logger.info("listing.deleted", listing_id=body.id, removed=removed)
        await self.registry.send_to(sender, make_message(protocol.DELETE_ACK, {"id": body.id}))
        if removed:
            await self.registry.broadcast_except(
                make_message(protocol.LISTING_DELETED, {"id": body.id}), excluded=sender
            )
        if orphaned_image:
            self.images.discard(orphaned_image)

    async def _list_all(self, body: EmptyBody, sender: Session) -> None:
        await self.registry.send_to(sender, await self.snapshot_message())

    async def _list_by_seller(self, body: SellerQuery, sender: Session) -> None:
        listings = await self._run(lambda svc: svc.select_by_seller(body.seller_id))
        await self.registry.send_to(
            sender, make_message(protocol.SELLER_CATALOG, _wire(listings))
        )

    async def _reject(self, sender: Session, reason: str) -> None:
        await self.registry.send_to(sender, error_message(reason))
