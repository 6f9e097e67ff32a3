"""
Message read and write operations exposed by the HTTP API.
"""

import logging
import math
from collections.abc import Mapping
from typing import Any, List, Optional, Union

from ..domain.ports import RecordStore, ValidationError
from ..domain.schema import Message, MessagePage, Pagination
from ..domain.validation import is_present


logger = logging.getLogger(__name__)

# Largest value a signed 64-bit SQL integer holds
MAX_QUERY_VALUE = 2 ** 63 - 1


def parse_positive_int(value: Optional[str], default: int) -> int:
    """
    Parse a query parameter as a positive integer.

    Invalid, non-numeric, non-positive or out-of-range values fall back
    to the default.
    """
    if value is None:
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    return number if 0 < number <= MAX_QUERY_VALUE else default


class MessageService:
    """
    Paginated reads and single or batched creation of messages.
    """

    def __init__(
        self,
        store: RecordStore,
        default_limit: int = 100,
        max_limit: Optional[int] = None
    ):
        """
        Initialize message service.

        Args:
            store: Record store
            default_limit: Page size when none (or an invalid one) is requested
            max_limit: Optional cap on requested page size; None means no cap
        """
        self.store = store
        self.default_limit = default_limit
        self.max_limit = max_limit

    async def list_page(self, page: Optional[str] = None, limit: Optional[str] = None) -> MessagePage:
        page_number = parse_positive_int(page, 1)
        page_size = parse_positive_int(limit, self.default_limit)
        if self.max_limit is not None:
            page_size = min(page_size, self.max_limit)

        records, total = await self.store.list_messages(page=page_number, limit=page_size)

        return MessagePage(
            data=records,
            pagination=Pagination(
                total=total,
                page=page_number,
                pages=math.ceil(total / page_size),
                limit=page_size
            )
        )

    async def list_texts(self) -> List[str]:
        return await self.store.list_message_texts(limit=self.default_limit)

    async def create(self, payload: Any) -> Union[Message, List[Message]]:
        """
        Create one message from an object, or several from an array.

        Every item is validated before anything is written.

        Raises:
            ValidationError: If the body shape is wrong or any item lacks text
            PersistenceError: If a write fails
        """
        if isinstance(payload, Mapping):
            items = [payload]
        elif isinstance(payload, list):
            items = payload
        else:
            raise ValidationError("Body must be an object or an array of objects with 'text'")

        invalid = [
            index for index, item in enumerate(items)
            if not isinstance(item, Mapping)
            or not isinstance(item.get("text"), str)
            or not is_present(item.get("text"))
        ]
        if invalid:
            raise ValidationError(
                "Field 'text' is required",
                invalid_indexes=invalid
            )

        created = []
        for item in items:
            created.append(await self.store.create_message(item["text"]))

        logger.info(
            f"Created {len(created)} message(s)",
            extra={"component": "message_service", "count": len(created)}
        )

        if isinstance(payload, Mapping):
            return created[0]
        return created
