"""
Ordered key-value store on top of the SQL database.

Keys are tuples of str/int parts. They are encoded to bytes by joining the
parts with a 0x1F separator, so a bytewise comparison of encoded keys walks
the tuple part by part. Parts must not contain control characters.
"""

from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from remindbot.db.database import async_session
from remindbot.errors import StoreError
from remindbot.models.kv_entry import KVEntry

KeyPart = Union[str, int]
Key = Tuple[KeyPart, ...]

SEPARATOR = b"\x1f"
# First byte after the separator; closes every range opened by "<prefix>\x1f"
PREFIX_END = b"\x20"


def encode_key(key: Sequence[KeyPart]) -> bytes:
    """
    Encode a tuple key.

    Args:
        key: Key parts

    Returns:
        Encoded key
    """
    parts = []
    for part in key:
        text = str(part)
        if any(ord(char) < 0x20 for char in text):
            raise ValueError(f"Key part contains a control character: {text!r}")
        parts.append(text.encode("utf-8"))
    return SEPARATOR.join(parts)


def decode_key(raw: bytes) -> Key:
    """Decode an encoded key. Parts come back as strings."""
    if not raw:
        return ()
    return tuple(part.decode("utf-8") for part in raw.split(SEPARATOR))


class KVStore:
    """Class to read and write the key-value store."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        """
        Initialize the store.

        Args:
            session_factory: Async session maker, defaults to the application one
        """
        self.session_factory = session_factory or async_session

    async def get(self, key: Key) -> Optional[Any]:
        """Get the value stored under a key, None if absent."""
        try:
            async with self.session_factory() as session:
                entry = await session.get(KVEntry, encode_key(key))
                return entry.value if entry else None
        except SQLAlchemyError as e:
            raise StoreError(f"Error reading {key}: {str(e)}") from e

    async def commit(
        self,
        sets: Iterable[Tuple[Key, Any]] = (),
        deletes: Iterable[Key] = ()
    ) -> None:
        """
        Apply deletes and upserts in one transaction.

        Deletes are applied before sets. Deleting a missing key is a no-op.

        Args:
            sets: (key, value) pairs to upsert
            deletes: Keys to delete
        """
        sets = [(encode_key(key), value) for key, value in sets]
        deletes = [encode_key(key) for key in deletes]
        if not sets and not deletes:
            return

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    if deletes:
                        await session.execute(
                            delete(KVEntry).where(KVEntry.key.in_(deletes))
                        )
                    for key, value in sets:
                        await session.merge(KVEntry(key=key, value=value))
        except SQLAlchemyError as e:
            raise StoreError(f"Error committing {len(sets)} sets and {len(deletes)} deletes: {str(e)}") from e

    async def set_many(self, items: Iterable[Tuple[Key, Any]]) -> None:
        """Atomically upsert several entries."""
        await self.commit(sets=items)

    async def delete_many(self, keys: Iterable[Key]) -> None:
        """Atomically delete several entries."""
        await self.commit(deletes=keys)

    async def scan_prefix(self, prefix: Key) -> List[Tuple[Key, Any]]:
        """
        List every entry under a prefix, in key order.

        Args:
            prefix: Leading key parts

        Returns:
            List of (key, value) pairs
        """
        encoded = encode_key(prefix)
        if not encoded:
            return await self._scan(None, None)
        return await self._scan(encoded + SEPARATOR, encoded + PREFIX_END)

    async def scan_range(self, prefix: Key, upper: KeyPart) -> List[Tuple[Key, Any]]:
        """
        List entries under a prefix whose next key part is <= upper, in key order.

        Args:
            prefix: Leading key parts
            upper: Inclusive upper bound for the part that follows the prefix

        Returns:
            List of (key, value) pairs
        """
        encoded = encode_key(prefix)
        lower = encoded + SEPARATOR if encoded else None
        return await self._scan(lower, encode_key(tuple(prefix) + (upper,)) + PREFIX_END)

    async def _scan(self, lower: Optional[bytes], upper: Optional[bytes]) -> List[Tuple[Key, Any]]:
        query = select(KVEntry).order_by(KVEntry.key)
        if lower is not None:
            query = query.where(KVEntry.key >= lower)
        if upper is not None:
            query = query.where(KVEntry.key < upper)

        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [(decode_key(entry.key), entry.value) for entry in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreError(f"Error scanning store: {str(e)}") from e
