"""In-process publish/subscribe bus that keeps tag views consistent.

Topics are a closed set and each carries exactly one payload type, so a
subscriber always knows the shape it receives. Delivery is synchronous and
single-threaded; there is no ordering guarantee between different topics
for what is logically one change.
"""
import logging
from collections import defaultdict
from enum import Enum
from typing import Callable, DefaultDict, Dict, List, Optional, Type, Union

from pydantic import BaseModel, Field

from tagtree_mcp.models.schema import TagAction, TagRecord

logger = logging.getLogger(__name__)


class Topic(str, Enum):
    """Every topic the bus carries."""

    TAGS_CHANGED = "tagsChanged"
    TAG_COLORS_CHANGED = "tagColorsChanged"
    FAVORITE_TAGS_UPDATED = "favoriteTagsUpdated"
    TAG_FILTER_CHANGED = "tagFilterChanged"


class TagsChanged(BaseModel):
    """A tag was created, changed, moved or deleted, or the list was reloaded.

    ``tag`` is the record after the change (before it, for deletions) and is
    None for a full reload, in which case ``tags`` holds the whole list.
    """

    action: TagAction
    tag_name: Optional[str] = None
    tag: Optional[TagRecord] = None
    tags: Optional[List[TagRecord]] = None

    model_config = {"frozen": True}


class TagColorsChanged(BaseModel):
    """The complete color map after a change."""

    colors: Dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}


class FavoriteTagsUpdated(BaseModel):
    """The complete favorites name list after a change."""

    favorite_tags: List[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class TagFilterChanged(BaseModel):
    """The tag used to filter notes; None clears the filter."""

    tag_name: Optional[str] = None

    model_config = {"frozen": True}


Payload = Union[TagsChanged, TagColorsChanged, FavoriteTagsUpdated, TagFilterChanged]
Handler = Callable[[Payload], None]

TOPIC_PAYLOADS: Dict[Topic, Type[BaseModel]] = {
    Topic.TAGS_CHANGED: TagsChanged,
    Topic.TAG_COLORS_CHANGED: TagColorsChanged,
    Topic.FAVORITE_TAGS_UPDATED: FavoriteTagsUpdated,
    Topic.TAG_FILTER_CHANGED: TagFilterChanged,
}
_PAYLOAD_TOPICS: Dict[Type[BaseModel], Topic] = {v: k for k, v in TOPIC_PAYLOADS.items()}


def topic_for(payload: Payload) -> Topic:
    """Return the topic a payload belongs to."""
    try:
        return _PAYLOAD_TOPICS[type(payload)]
    except KeyError:
        raise TypeError(f"{type(payload).__name__} is not a sync bus payload") from None


class SyncBus:
    """Typed publish/subscribe service.

    Handlers run in subscription order. A handler that raises is logged and
    skipped; the remaining handlers still receive the event.
    """

    def __init__(self):
        self._handlers: DefaultDict[Topic, List[Handler]] = defaultdict(list)
        self.published_count = 0

    def subscribe(self, topic: Topic, handler: Handler) -> Callable[[], None]:
        """Register a handler and return a function that unregisters it."""
        topic = Topic(topic)
        self._handlers[topic].append(handler)

        def unsubscribe() -> None:
            try:
                self._handlers[topic].remove(handler)
            except ValueError:
                pass  # already unsubscribed

        return unsubscribe

    def publish(self, payload: Payload, topic: Optional[Topic] = None) -> int:
        """Deliver a payload to every subscriber of its topic.

        Args:
            payload: One of the topic payload models.
            topic: Optional explicit topic; must match the payload type.

        Returns:
            Number of handlers that completed without raising.
        """
        expected = topic_for(payload)
        if topic is not None and Topic(topic) is not expected:
            raise TypeError(
                f"{type(payload).__name__} cannot be published on {Topic(topic).value}"
            )
        self.published_count += 1
        delivered = 0
        # Copy so handlers may unsubscribe while being called
        for handler in list(self._handlers[expected]):
            try:
                handler(payload)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Sync bus handler failed on {expected.value}: {e}", exc_info=True
                )
        return delivered

    def subscriber_count(self, topic: Topic) -> int:
        """Number of handlers currently subscribed to a topic."""
        return len(self._handlers[Topic(topic)])
