from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Self

from .attributevalue import item_from_wire
from .aws_errors import map_transaction_error
from .capacity import ConsumedCapacity
from .context import Context
from .decode import unmarshal_item
from .errors import NoInputError, NotFoundError, ValidationError
from .query import Query
from .request import WriteRequest

if TYPE_CHECKING:
    from .conditioncheck import ConditionCheck
    from .db import DB
    from .delete import Delete
    from .put import Put
    from .update import Update

MAX_TX_ITEMS = 100


def new_idempotency_token(rand_bytes: Callable[[int], bytes]) -> str:
    return str(uuid.UUID(bytes=bytes(rand_bytes(16)), version=4))


class GetTx:
    """Reads up to 100 items atomically with TransactGetItems."""

    def __init__(self, db: DB) -> None:
        self.db = db
        self._items: list[tuple[Query, Any]] = []
        self._cc: ConsumedCapacity | None = None

    def get(self, query: Query) -> Self:
        return self.get_one(query, dict)

    def get_one(self, query: Query, out: Any) -> Self:
        """Add ``query``, decoding its item into ``out`` (a type, or a dataclass filled in place)."""
        self._items.append((query, out))
        return self

    def consumed_capacity(self, cc: ConsumedCapacity) -> Self:
        self._cc = cc
        return self

    def run(self, *, ctx: Context | None = None) -> list[Any]:
        """Run the transaction.

        Returns one decoded value per query, in the order they were added;
        ``None`` marks an item that does not exist. Raises ``NotFoundError``
        when none exist.
        """
        items = self._execute(ctx)
        return [unmarshal_item(item, out) if item is not None else None for item, (_, out) in zip(items, self._items)]

    def all(self, out: Any = dict, *, ctx: Context | None = None) -> list[Any]:
        """Run the transaction and decode every item that exists into ``out``."""
        items = self._execute(ctx)
        for item, (_, target) in zip(items, self._items):
            # instances passed to get_one are still filled in
            if item is not None and target is not dict and not isinstance(target, type):
                unmarshal_item(item, target)
        return [unmarshal_item(item, out) for item in items if item is not None]

    def input(self) -> dict[str, Any]:
        if not self._items:
            raise NoInputError()
        if len(self._items) > MAX_TX_ITEMS:
            raise ValidationError(f"transaction has {len(self._items)} items; the maximum is {MAX_TX_ITEMS}")
        req: dict[str, Any] = {"TransactItems": [q.get_tx_item() for q, _ in self._items]}
        if self._cc is not None:
            req["ReturnConsumedCapacity"] = "INDEXES"
        return req

    def _execute(self, ctx: Context | None) -> list[Any]:
        req = self.input()
        resp = self.db.call(ctx, "transact_get_items", req, tx_conflicts=True, map_error=map_transaction_error)
        if self._cc is not None:
            self._cc.inc_requests()
            self._cc.add_all(resp.get("ConsumedCapacity"))

        items = [item_from_wire(r.get("Item")) for r in resp.get("Responses") or []]
        if all(item is None for item in items):
            raise NotFoundError()
        return items


class WriteTx:
    """Writes up to 100 puts, updates, deletes and condition checks atomically."""

    def __init__(self, db: DB) -> None:
        self.db = db
        self._items: list[WriteRequest] = []
        self._token = ""
        self._on_cond_fail = ""
        self._cc: ConsumedCapacity | None = None

    def put(self, put: Put) -> Self:
        self._items.append(put)
        return self

    def update(self, update: Update) -> Self:
        self._items.append(update)
        return self

    def delete(self, delete: Delete) -> Self:
        self._items.append(delete)
        return self

    def check(self, check: ConditionCheck) -> Self:
        self._items.append(check)
        return self

    def include_all_items_in_cond_check_fail(self, enabled: bool = True) -> Self:
        """Return the current item of every failed condition in the cancellation reasons.

        Decode them with ``unmarshal_items_from_tx_cond_check_failed``.
        """
        self._on_cond_fail = "ALL_OLD" if enabled else "NONE"
        return self

    def idempotent(self, enabled: bool = True) -> Self:
        """Send a client request token so retries of this transaction are deduplicated.

        The token is generated once and reused until ``idempotent(False)``.
        Transaction conflicts are only retried while idempotency is on.
        """
        if not enabled:
            self._token = ""
        elif not self._token:
            self._token = new_idempotency_token(self.db.rand_bytes)
        return self

    def idempotent_with_token(self, token: str) -> Self:
        self._token = token
        return self

    @property
    def token(self) -> str:
        return self._token

    def consumed_capacity(self, cc: ConsumedCapacity) -> Self:
        self._cc = cc
        return self

    def run(self, *, ctx: Context | None = None) -> None:
        req = self.input()
        resp = self.db.call(
            ctx,
            "transact_write_items",
            req,
            tx_conflicts=bool(self._token),
            map_error=map_transaction_error,
        )
        if self._cc is not None:
            self._cc.inc_requests()
            self._cc.add_all(resp.get("ConsumedCapacity"))

    def input(self) -> dict[str, Any]:
        if not self._items:
            raise NoInputError()
        if len(self._items) > MAX_TX_ITEMS:
            raise ValidationError(f"transaction has {len(self._items)} items; the maximum is {MAX_TX_ITEMS}")

        items: list[dict[str, Any]] = []
        for op in self._items:
            wti = op.write_tx_item()
            if self._on_cond_fail:
                for body in wti.values():
                    body["ReturnValuesOnConditionCheckFailure"] = self._on_cond_fail
            items.append(wti)

        req: dict[str, Any] = {"TransactItems": items}
        if self._token:
            req["ClientRequestToken"] = self._token
        if self._cc is not None:
            req["ReturnConsumedCapacity"] = "INDEXES"
        return req
