"""Notification Service - Post-commit fan-out of workflow events

Delivery (email, websocket, in-app) lives in the hooks; this service only
dispatches. Hooks run after the transition has committed, so a failing hook
can never undo a state change.
"""
from typing import Callable, List, Optional

from ..domain.models import NotificationEvent
from ..domain.enums import NotificationEventType
from ..utils.logger import get_logger

logger = get_logger(__name__)

NotificationHook = Callable[[NotificationEvent], None]


class NotificationService:
    """Registry of fire-and-forget notification hooks"""

    def __init__(self, hooks: Optional[List[NotificationHook]] = None):
        self._hooks: List[NotificationHook] = list(hooks or [])

    def register_hook(self, hook: NotificationHook) -> None:
        """Add a hook; hooks are called in registration order"""
        self._hooks.append(hook)

    def unregister_hook(self, hook: NotificationHook) -> None:
        if hook in self._hooks:
            self._hooks.remove(hook)

    @property
    def hooks(self) -> List[NotificationHook]:
        return list(self._hooks)

    def notify(
        self,
        instance_id: str,
        event_type: NotificationEventType,
        task_id: Optional[str] = None,
        actor_id: Optional[str] = None
    ) -> NotificationEvent:
        """Build an event and hand it to every hook"""
        event = NotificationEvent(
            instance_id=instance_id,
            task_id=task_id,
            event_type=event_type,
            actor_id=actor_id
        )
        self.dispatch(event)
        return event

    def dispatch(self, event: NotificationEvent) -> None:
        """Call each hook; a failing hook is logged and the rest still run"""
        logger.info(
            f"Notification {event.event_type.value} for instance {event.instance_id}",
            extra={
                "instance_id": event.instance_id,
                "task_id": event.task_id,
                "actor_id": event.actor_id,
                "action": event.event_type.value,
            }
        )
        for hook in self._hooks:
            try:
                hook(event)
            except Exception as e:
                # Don't fail the transition if a hook fails
                logger.warning(
                    f"Notification hook {getattr(hook, '__name__', hook)!r} failed: {e}",
                    extra={"instance_id": event.instance_id, "task_id": event.task_id}
                )
