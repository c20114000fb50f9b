"""
Diagnostics reported to the caller instead of being raised.

Request-time validation (bad filter field, missing child rows, unparseable
values) appends `Message`s to a caller-owned `MessageSink` so that several
problems can be reported from a single request.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterator, List, Optional

from pydantic import BaseModel, Field


class MessageKind(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    SUCCESS = "success"


# message ids shared with client applications
INVALID_DATA = "invalidData"
VALUE_REQUIRED = "valueRequired"
INTERNAL_ERROR = "internalError"
INVALID_ROW_COUNT = "invalidRowCount"


class Message(BaseModel):
    """
    One diagnostic entry.

    `object_name` and `row_number` locate the problem when it was found in a
    child table or a multi-row payload.
    """

    kind: MessageKind = Field(MessageKind.ERROR)
    message_id: str = Field(INVALID_DATA)
    field_name: Optional[str] = Field(None)
    text: str = Field("")
    object_name: Optional[str] = Field(None)
    row_number: Optional[int] = Field(None)

    model_config = {
        "frozen": True,
        "populate_by_name": True,
    }

    @classmethod
    def error(cls, text: str, message_id: str = INVALID_DATA) -> "Message":
        return cls(kind=MessageKind.ERROR, message_id=message_id, text=text)

    @classmethod
    def field_error(
        cls,
        field_name: str,
        text: str,
        message_id: str = INVALID_DATA,
        object_name: Optional[str] = None,
        row_number: Optional[int] = None,
    ) -> "Message":
        return cls(
            kind=MessageKind.ERROR,
            message_id=message_id,
            field_name=field_name,
            text=text,
            object_name=object_name,
            row_number=row_number,
        )

    @classmethod
    def warning(cls, text: str, field_name: Optional[str] = None) -> "Message":
        return cls(kind=MessageKind.WARNING, message_id="warning", field_name=field_name, text=text)

    def __str__(self) -> str:
        field = f" field:{self.field_name}" if self.field_name else ""
        return f"type:{self.kind.value} id:{self.message_id}{field} {self.text}".rstrip()


class MessageSink:
    """Ordered collector of messages for one request."""

    def __init__(self) -> None:
        self._messages: List[Message] = []

    def add(self, message: Message) -> None:
        self._messages.append(message)

    def extend(self, messages: "MessageSink | List[Message]") -> None:
        for message in messages:
            self.add(message)

    @property
    def has_errors(self) -> bool:
        return any(m.kind is MessageKind.ERROR for m in self._messages)

    def errors(self) -> List[Message]:
        return [m for m in self._messages if m.kind is MessageKind.ERROR]

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __bool__(self) -> bool:
        return bool(self._messages)


class RequestContext:
    """
    Per-request state the engine needs from the surrounding application:
    the caller's tenant and user ids, and the sink for diagnostics.
    """

    def __init__(
        self,
        tenant_id: object = None,
        user_id: object = None,
        messages: Optional[MessageSink] = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.messages = messages if messages is not None else MessageSink()

    def add_message(self, message: Message) -> None:
        self.messages.add(message)


__all__ = [
    "INTERNAL_ERROR",
    "INVALID_DATA",
    "INVALID_ROW_COUNT",
    "VALUE_REQUIRED",
    "Message",
    "MessageKind",
    "MessageSink",
    "RequestContext",
]
