"""Tests for device command execution (hark/assistant/actions.py)."""

from __future__ import annotations

import json
from datetime import datetime
from unittest.mock import patch

import pytest
from hark.assistant.actions import DEVICE_UNREACHABLE, DeviceCommandExecutor, load_contacts

TOPIC = "hark/test-device/commands"


@pytest.fixture
def executor(mock_assistant_mqtt):
    return DeviceCommandExecutor(
        mock_assistant_mqtt,
        "hark/test-device/",
        contacts={"Mom": "+15550001", "Dr. Alice Smith": "+15550002"},
        apps=("Maps", "Spotify", "Google Chrome"),
    )


def _published(mqtt_mock):
    return [(call.args[0], call.args[1]) for call in mqtt_mock.publish_json.call_args_list]


# ============================================================================
# setAlarm
# ============================================================================


class TestSetAlarm:
    def test_clock_time_pm(self, executor, mock_assistant_mqtt):
        result = executor.execute("setAlarm", {"command": "7:30 pm"})
        assert result == "Alarm set for 7:30 pm."
        assert _published(mock_assistant_mqtt) == [
            (f"{TOPIC}/set_alarm", {"hour": 19, "minute": 30, "label": "Hark Alarm", "skip_ui": True})
        ]

    def test_clock_time_hour_only(self, executor, mock_assistant_mqtt):
        assert executor.execute("setAlarm", {"command": "wake me at 6 AM"}) == "Alarm set for 6 am."
        payload = _published(mock_assistant_mqtt)[0][1]
        assert (payload["hour"], payload["minute"]) == (6, 0)

    def test_twelve_am_is_midnight(self, executor, mock_assistant_mqtt):
        executor.execute("setAlarm", {"command": "12 am"})
        assert _published(mock_assistant_mqtt)[0][1]["hour"] == 0

    def test_relative_minutes(self, executor, mock_assistant_mqtt):
        now = datetime(2024, 5, 1, 10, 50)
        with patch("hark.assistant.actions._local_now", return_value=now):
            result = executor.execute("setAlarm", {"command": "in 15 minutes"})
        assert result == "OK, alarm set for 15 minutes from now."
        payload = _published(mock_assistant_mqtt)[0][1]
        assert (payload["hour"], payload["minute"]) == (11, 5)

    def test_relative_hours(self, executor, mock_assistant_mqtt):
        now = datetime(2024, 5, 1, 23, 0)
        with patch("hark.assistant.actions._local_now", return_value=now):
            result = executor.execute("setAlarm", {"command": "Set it in 2 hours"})
        assert result == "OK, alarm set for 2 hours from now."
        assert _published(mock_assistant_mqtt)[0][1]["hour"] == 1

    def test_relative_bad_amount(self, executor, mock_assistant_mqtt):
        assert executor.execute("setAlarm", {"command": "in five minutes"}) == "Sorry, I couldn't set the relative alarm."
        mock_assistant_mqtt.publish_json.assert_not_called()

    def test_relative_unknown_unit(self, executor):
        assert executor.execute("setAlarm", {"command": "in 3 days"}) == "Sorry, I couldn't set the relative alarm."

    def test_unparseable_time(self, executor, mock_assistant_mqtt):
        assert executor.execute("setAlarm", {"command": "tomorrow morning"}) == "Sorry, I couldn't understand the time."
        mock_assistant_mqtt.publish_json.assert_not_called()

    def test_out_of_range_time(self, executor):
        assert executor.execute("setAlarm", {"command": "25:00"}) == "Sorry, I couldn't understand the time."

    def test_missing_command(self, executor):
        assert executor.execute("setAlarm", {}) == "I need a time to set the alarm."


# ============================================================================
# openApp
# ============================================================================


class TestOpenApp:
    def test_exact_match(self, executor, mock_assistant_mqtt):
        assert executor.execute("openApp", {"appName": "spotify"}) == "Opening Spotify."
        assert _published(mock_assistant_mqtt) == [(f"{TOPIC}/open_app", {"app": "Spotify"})]

    def test_partial_match(self, executor):
        assert executor.execute("openApp", {"appName": "chrome"}) == "Opening Google Chrome."

    def test_unknown_app(self, executor, mock_assistant_mqtt):
        assert executor.execute("openApp", {"appName": "Tetris"}) == "Sorry, I can't find the app Tetris."
        mock_assistant_mqtt.publish_json.assert_not_called()

    def test_no_catalog_passes_name_through(self, mock_assistant_mqtt):
        executor = DeviceCommandExecutor(mock_assistant_mqtt, "hark/x")
        assert executor.execute("openApp", {"appName": "Camera"}) == "Opening Camera."

    def test_missing_name(self, executor):
        assert executor.execute("openApp", {"appName": "  "}) == "Which app would you like to open?"


# ============================================================================
# callContact
# ============================================================================


class TestCallContact:
    def test_known_contact(self, executor, mock_assistant_mqtt):
        assert executor.execute("callContact", {"contactName": "mom"}) == "Calling Mom..."
        assert _published(mock_assistant_mqtt) == [(f"{TOPIC}/call", {"name": "mom", "number": "+15550001"})]

    def test_substring_lookup(self, executor):
        assert executor.find_phone_number("alice") == "+15550002"

    def test_unknown_contact(self, executor, mock_assistant_mqtt):
        assert executor.execute("callContact", {"contactName": "bob"}) == "Sorry, I couldn't find Bob in your contacts."
        mock_assistant_mqtt.publish_json.assert_not_called()

    def test_missing_name(self, executor):
        assert executor.execute("callContact", {}) == "Who would you like to call?"


# ============================================================================
# searchWeb / dispatch
# ============================================================================


class TestSearchWeb:
    def test_search(self, executor, mock_assistant_mqtt):
        assert executor.execute("searchWeb", {"query": "best pizza"}) == "Searching for best pizza..."
        assert _published(mock_assistant_mqtt) == [(f"{TOPIC}/search", {"query": "best pizza"})]

    def test_missing_query(self, executor):
        assert executor.execute("searchWeb", {"query": None}) == "What would you like to search for?"


def test_unknown_function(executor):
    assert executor.execute("sendEmail", {}) == "Unknown function: sendEmail"


def test_disconnected_mqtt(executor, mock_assistant_mqtt):
    mock_assistant_mqtt.is_connected.return_value = False
    assert executor.execute("searchWeb", {"query": "x"}) == DEVICE_UNREACHABLE
    mock_assistant_mqtt.publish_json.assert_not_called()


def test_publish_failure(executor, mock_assistant_mqtt):
    mock_assistant_mqtt.publish_json.return_value = False
    assert executor.execute("openApp", {"appName": "maps"}) == DEVICE_UNREACHABLE


# ============================================================================
# load_contacts
# ============================================================================


class TestLoadContacts:
    def test_mapping_format(self, tmp_path):
        path = tmp_path / "contacts.json"
        path.write_text(json.dumps({"Mom": "+1555", "Empty": ""}))
        assert load_contacts(path) == {"Mom": "+1555"}

    def test_list_format(self, tmp_path):
        path = tmp_path / "contacts.json"
        path.write_text(json.dumps([{"name": "Bob", "number": "+1666"}, "junk", {"name": "No Number"}]))
        assert load_contacts(path) == {"Bob": "+1666"}

    def test_missing_file(self, tmp_path):
        assert load_contacts(tmp_path / "nope.json") == {}
        assert load_contacts(None) == {}

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "contacts.json"
        path.write_text("{not json")
        assert load_contacts(path) == {}
