"""
Saving PC builds and checking them out into a cart.

A checkout is four writes: create the saved build, get or create the owner's
cart, add the build as a cart line item, recompute the cart totals. They run
inside one transaction so a failure at any step leaves neither an orphaned
build nor a stale cart total behind. Saving is a single insert and runs
outside any transaction, so it also works against a standalone MongoDB.

Neither operation re-validates the configuration; invalid builds can be saved
and checked out.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from bson import ObjectId

import database
from catalog import collect_component_ids, parse_configuration, round_money
from pricing import calculate_price
from schemas import Cart, CheckoutResponse, SavedBuild, SavedBuildResponse

logger = logging.getLogger(__name__)


class AuthenticationRequiredError(Exception):
    """Raised when checkout is attempted without an owner."""


def _resolve_total(configuration, catalog, total_price: Optional[float]) -> float:
    if total_price:
        return float(round_money(Decimal(str(total_price))))
    components = catalog.resolve(collect_component_ids(configuration))
    return calculate_price(configuration, components).total


def save_build(raw, catalog, store, user_id: Optional[str] = None, total_price: Optional[float] = None) -> SavedBuildResponse:
    """SaveBuild: every call writes a new record, identical configurations included."""
    configuration = parse_configuration(raw)
    final_price = _resolve_total(configuration, catalog, total_price)
    build = SavedBuild(user_id=user_id, total_estimated_price=final_price, configuration_data=raw)

    build_id = store.create_build(build)

    logger.info("Saved build %s (owner=%s, total=%.2f)", build_id, user_id or "guest", final_price)
    return SavedBuildResponse(id=build_id, total_estimated_price=final_price)


def checkout_build(raw, catalog, store, user_id: Optional[str], total_price: Optional[float] = None) -> CheckoutResponse:
    if not user_id:
        raise AuthenticationRequiredError("Authentication required")
    configuration = parse_configuration(raw)
    final_price = _resolve_total(configuration, catalog, total_price)
    build = SavedBuild(user_id=user_id, total_estimated_price=final_price, configuration_data=raw)

    with store.transaction() as tx:
        build_id = tx.create_build(build)
        cart_id = tx.get_or_create_cart(user_id)
        tx.upsert_cart_line_item(cart_id, build_id, final_price)
        tx.recompute_cart_totals(cart_id)

    logger.info("Checked out build %s into cart %s for user %s", build_id, cart_id, user_id)
    return CheckoutResponse(custom_build_id=build_id, cart_id=cart_id)


class MongoBuildWriter:
    """Build and cart writes bound to one client session."""

    def __init__(self, db, session):
        self.db = db
        self.session = session

    def create_build(self, build: SavedBuild) -> str:
        return database.create_document("savedbuild", build, session=self.session)

    def get_or_create_cart(self, user_id: str) -> str:
        cart = self.db["cart"].find_one(
            {"user_id": user_id}, sort=[("updated_at", -1)], session=self.session
        )
        if cart:
            return str(cart["_id"])
        return database.create_document("cart", Cart(user_id=user_id), session=self.session)

    def upsert_cart_line_item(self, cart_id: str, build_id: str, price: float) -> None:
        now = datetime.now(timezone.utc)
        self.db["cartitem"].update_one(
            {"cart_id": cart_id, "custom_build_id": build_id},
            {
                "$inc": {"quantity": 1},
                "$set": {"updated_at": now},
                "$setOnInsert": {
                    "price_at_added": price,
                    "discount_percentage": 0.0,
                    "discounted_price": price,
                    "created_at": now,
                },
            },
            upsert=True,
            session=self.session,
        )

    def recompute_cart_totals(self, cart_id: str) -> Cart:
        pipeline = [
            {"$match": {"cart_id": cart_id}},
            {"$group": {"_id": None, "subtotal": {"$sum": {"$multiply": ["$discounted_price", "$quantity"]}}}},
        ]
        rows = list(self.db["cartitem"].aggregate(pipeline, session=self.session))
        subtotal = round(float(rows[0]["subtotal"]), 2) if rows else 0.0

        cart = self.db["cart"].find_one({"_id": ObjectId(cart_id)}, session=self.session)
        discount = float(cart.get("discount_amount") or 0)
        total = round(subtotal - discount, 2)
        self.db["cart"].update_one(
            {"_id": ObjectId(cart_id)},
            {"$set": {"subtotal": subtotal, "total_amount": total, "updated_at": datetime.now(timezone.utc)}},
            session=self.session,
        )
        return Cart(user_id=cart["user_id"], subtotal=subtotal, discount_amount=discount, total_amount=total)


class MongoBuildStore:
    """Build store backed by MongoDB; needs a replica set for transactions."""

    def create_build(self, build: SavedBuild) -> str:
        return database.create_document("savedbuild", build)

    @contextmanager
    def transaction(self):
        with database.transaction() as session:
            yield MongoBuildWriter(database.db, session)
