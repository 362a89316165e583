"""Event model: canonical storage-change events parsed from producer records."""

from fanout.events.models import Event, Origin, ResourceLocator, parse_event, parse_notification

__all__ = ["Event", "Origin", "ResourceLocator", "parse_event", "parse_notification"]
