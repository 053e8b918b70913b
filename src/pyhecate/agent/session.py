from __future__ import annotations

import threading
from typing import Callable, Iterable, Iterator

from ..llm.types import Message
from ..session.store import SessionStore


class Conversation:
    """Append-only message history.

    ``append`` is the only mutator; messages are never reordered or edited.
    With a store attached every message is persisted as it is appended.
    """

    def __init__(
        self,
        messages: Iterable[Message] = (),
        *,
        store: SessionStore | None = None,
        on_append: Callable[[Message], None] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._messages: list[Message] = list(messages)
        self.store = store
        self.on_append = on_append

    @staticmethod
    def resume(store: SessionStore) -> "Conversation":
        return Conversation(store.load(), store=store)

    @property
    def session_id(self) -> str | None:
        return self.store.session_id if self.store else None

    def append(self, msg: Message) -> None:
        with self._lock:
            self._messages.append(msg)
        if self.store is not None:
            self.store.append(msg)
        if self.on_append is not None:
            self.on_append(msg)

    @property
    def messages(self) -> tuple[Message, ...]:
        with self._lock:
            return tuple(self._messages)

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

    def last(self) -> Message | None:
        with self._lock:
            return self._messages[-1] if self._messages else None
