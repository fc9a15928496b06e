"""Device command execution for the tools the model can call."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from hark.utils import capitalize_first

if TYPE_CHECKING:  # pragma: no cover
    from .mqtt import AssistantMqtt

LOGGER = logging.getLogger("hark-assistant.actions")

ALARM_LABEL = "Hark Alarm"
DEVICE_UNREACHABLE = "I can't reach the device right now."

_RELATIVE_ALARM_RE = re.compile(r"\s+in\s+(\S+)\s+(\S+)")
_CLOCK_TIME_RE = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)?", re.IGNORECASE)


def _local_now() -> datetime:
    return datetime.now().astimezone()


def load_contacts(path: Path | None) -> dict[str, str]:
    """Load a contact book from JSON: either {"name": "number"} or [{"name", "number"}]."""
    if not path or not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("[actions] Could not read contacts file %s: %s", path, exc)
        return {}
    contacts: dict[str, str] = {}
    if isinstance(raw, dict):
        entries: Iterable[tuple[Any, Any]] = raw.items()
    elif isinstance(raw, list):
        entries = ((item.get("name"), item.get("number")) for item in raw if isinstance(item, dict))
    else:
        entries = ()
    for name, number in entries:
        name_text = str(name or "").strip()
        number_text = str(number or "").strip()
        if name_text and number_text:
            contacts[name_text] = number_text
    return contacts


def _text_arg(arguments: Mapping[str, Any], key: str) -> str:
    value = arguments.get(key)
    if value is None:
        return ""
    return str(value).strip()


class DeviceCommandExecutor:
    """Publish tool invocations as MQTT commands for the device agent to perform.

    Every outcome, including bad arguments and lookup misses, is a sentence the
    assistant can say; nothing here raises.
    """

    def __init__(
        self,
        mqtt: AssistantMqtt,
        topic_base: str,
        *,
        contacts: Mapping[str, str] | None = None,
        apps: Iterable[str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.mqtt = mqtt
        self.command_topic = f"{topic_base.rstrip('/')}/commands"
        self.contacts = dict(contacts or {})
        self.apps = tuple(app for app in (apps or ()) if app)
        self._logger = logger or LOGGER
        self._handlers: dict[str, Callable[[Mapping[str, Any]], str]] = {
            "setAlarm": self.set_alarm,
            "openApp": self.open_app,
            "callContact": self.call_contact,
            "searchWeb": self.search_web,
        }

    def execute(self, tool_name: str, arguments: Mapping[str, Any]) -> str:
        handler = self._handlers.get(tool_name)
        if handler is None:
            return f"Unknown function: {tool_name}"
        return handler(arguments or {})

    def search_web(self, arguments: Mapping[str, Any]) -> str:
        query = _text_arg(arguments, "query")
        if not query:
            return "What would you like to search for?"
        self._logger.debug("[actions] Searching for '%s'", query)
        if not self._send("search", {"query": query}):
            return DEVICE_UNREACHABLE
        return f"Searching for {query}..."

    def set_alarm(self, arguments: Mapping[str, Any]) -> str:
        command = _text_arg(arguments, "command").lower()
        if not command:
            return "I need a time to set the alarm."

        relative = _RELATIVE_ALARM_RE.search(f" {command}")
        if relative:
            amount_text, unit = relative.groups()
            try:
                amount = int(amount_text)
            except ValueError:
                self._logger.warning("[actions] Failed to parse relative alarm from '%s'", command)
                return "Sorry, I couldn't set the relative alarm."
            if unit.startswith("minute"):
                target = _local_now() + timedelta(minutes=amount)
            elif unit.startswith("hour"):
                target = _local_now() + timedelta(hours=amount)
            else:
                self._logger.warning("[actions] Unknown time unit in alarm command '%s'", command)
                return "Sorry, I couldn't set the relative alarm."
            if not self._send_alarm(target.hour, target.minute):
                return DEVICE_UNREACHABLE
            return f"OK, alarm set for {amount} {unit} from now."

        match = _CLOCK_TIME_RE.search(command)
        if not match:
            self._logger.warning("[actions] No time pattern found in alarm command '%s'", command)
            return "Sorry, I couldn't understand the time."
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        meridiem = (match.group(3) or "").lower()
        if meridiem == "pm" and hour < 12:
            hour += 12
        if meridiem == "am" and hour == 12:
            hour = 0
        if hour > 23 or minute > 59:
            return "Sorry, I couldn't understand the time."
        if not self._send_alarm(hour, minute):
            return DEVICE_UNREACHABLE
        return f"Alarm set for {match.group(0).strip()}."

    def open_app(self, arguments: Mapping[str, Any]) -> str:
        app_name = _text_arg(arguments, "appName")
        if not app_name:
            return "Which app would you like to open?"
        label = self._resolve_app(app_name)
        if label is None:
            return f"Sorry, I can't find the app {app_name}."
        if not self._send("open_app", {"app": label}):
            return DEVICE_UNREACHABLE
        return f"Opening {label}."

    def call_contact(self, arguments: Mapping[str, Any]) -> str:
        contact_name = _text_arg(arguments, "contactName")
        if not contact_name:
            return "Who would you like to call?"
        display_name = capitalize_first(contact_name)
        number = self.find_phone_number(contact_name)
        if number is None:
            self._logger.info("[actions] Could not find contact '%s'", contact_name)
            return f"Sorry, I couldn't find {display_name} in your contacts."
        if not self._send("call", {"name": contact_name, "number": number}):
            return DEVICE_UNREACHABLE
        return f"Calling {display_name}..."

    def find_phone_number(self, name: str) -> str | None:
        needle = name.strip().lower()
        if not needle:
            return None
        for contact, number in self.contacts.items():
            if needle in contact.lower():
                return number
        return None

    def _resolve_app(self, app_name: str) -> str | None:
        if not self.apps:
            return app_name
        lowered = app_name.lower()
        for label in self.apps:
            if label.lower() == lowered:
                return label
        for label in self.apps:
            if lowered in label.lower():
                return label
        return None

    def _send_alarm(self, hour: int, minute: int) -> bool:
        return self._send(
            "set_alarm",
            {"hour": hour, "minute": minute, "label": ALARM_LABEL, "skip_ui": True},
        )

    def _send(self, action: str, payload: dict[str, Any]) -> bool:
        if not self.mqtt.is_connected():
            self._logger.warning("[actions] MQTT not connected; dropping %s command", action)
            return False
        topic = f"{self.command_topic}/{action}"
        if not self.mqtt.publish_json(topic, payload):
            self._logger.warning("[actions] Failed to publish %s command to %s", action, topic)
            return False
        return True
