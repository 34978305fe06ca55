"""
Local JSON state file for alerts, the API token and UI preferences
"""

import base64
import binascii
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import AlertConfig, UiPreferences
from .refresh import sort_alerts

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "clickup-budget-monitor.json"
STATE_VERSION = 1


def encode_token(token: str) -> str:
    return "plain:" + base64.b64encode(token.encode("utf-8")).decode("ascii")


def decode_token(encoded: str) -> Optional[str]:
    if not encoded.startswith("plain:"):
        return None
    try:
        return base64.b64decode(encoded[len("plain:"):]).decode("utf-8") or None
    except (binascii.Error, UnicodeDecodeError) as e:
        logger.warning(f"Stored token could not be decoded: {e}")
        return None


def default_state() -> Dict[str, Any]:
    return {"version": STATE_VERSION, "alerts": [], "uiPreferences": UiPreferences().to_dict()}


class LocalStore:
    """Reads and atomically rewrites the whole state file on every change"""

    def __init__(self, state_dir: str):
        self.file_path = Path(state_dir) / STATE_FILE_NAME

    def _normalize(self, state: Dict[str, Any]) -> Dict[str, Any]:
        alerts = [item for item in state.get("alerts") or [] if isinstance(item, dict) and item.get("id")]
        alerts.sort(key=lambda item: (item.get("order", 0), item.get("createdAt", "")))

        normalized = {
            "version": STATE_VERSION,
            "alerts": alerts,
            "uiPreferences": {**UiPreferences().to_dict(), **(state.get("uiPreferences") or {})},
        }
        if state.get("encryptedToken"):
            normalized["encryptedToken"] = state["encryptedToken"]
        return normalized

    def read_state(self) -> Dict[str, Any]:
        if not self.file_path.exists():
            self.write_state(default_state())

        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                return self._normalize(json.load(f))
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"State file {self.file_path} is corrupt, resetting: {e}")
            clean = default_state()
            self.write_state(clean)
            return clean

    def write_state(self, state: Dict[str, Any]) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.file_path.with_name(self.file_path.name + ".tmp")
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(self._normalize(state), f, indent=2)
            os.replace(tmp_path, self.file_path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

    def get_alerts(self) -> List[AlertConfig]:
        return [AlertConfig.from_dict(item) for item in self.read_state()["alerts"]]

    def set_alerts(self, alerts: List[AlertConfig]) -> List[AlertConfig]:
        state = self.read_state()
        ordered = sort_alerts(alerts)
        state["alerts"] = [alert.to_dict() for alert in ordered]
        self.write_state(state)
        return ordered

    def has_token(self) -> bool:
        return bool(self.read_state().get("encryptedToken"))

    def get_token(self) -> Optional[str]:
        encoded = self.read_state().get("encryptedToken")
        return decode_token(encoded) if encoded else None

    def set_token(self, token: str) -> None:
        state = self.read_state()
        state["encryptedToken"] = encode_token(token.strip())
        self.write_state(state)

    def clear_token(self) -> None:
        state = self.read_state()
        state.pop("encryptedToken", None)
        self.write_state(state)

    def get_ui_preferences(self) -> UiPreferences:
        return UiPreferences.from_dict(self.read_state()["uiPreferences"])

    def set_ui_preferences(self, **partial) -> UiPreferences:
        state = self.read_state()
        current = UiPreferences.from_dict(state["uiPreferences"])
        prefs = UiPreferences(
            search=partial.get("search", current.search),
            status_filter=partial.get("status_filter", current.status_filter),
            sort_by=partial.get("sort_by", current.sort_by),
        )
        state["uiPreferences"] = prefs.to_dict()
        self.write_state(state)
        return prefs
