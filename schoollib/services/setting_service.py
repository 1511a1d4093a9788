from __future__ import annotations

import threading
import time
from decimal import Decimal, InvalidOperation

from flask import current_app

from schoollib.repositories.setting_repo import SettingRepo

_NOT_CACHED = object()
_NO_ROW = object()

DEFAULTS = {
    # circulation
    "max_books_per_student": {
        "value": "3",
        "description": "Maximum number of books a student can borrow at once",
        "group": "circulation",
        "type": "integer",
    },
    "borrowing_period": {
        "value": "7",
        "description": "Number of days a student can keep a borrowed book",
        "group": "circulation",
        "type": "integer",
    },
    "allow_renewals": {
        "value": "1",
        "description": "Allow students to renew borrowed books",
        "group": "circulation",
        "type": "boolean",
    },
    "max_renewals": {
        "value": "1",
        "description": "Maximum number of times a book can be renewed",
        "group": "circulation",
        "type": "integer",
    },
    # fines
    "fine_per_day": {
        "value": "5.00",
        "description": "Fine amount per day for overdue books (in PHP)",
        "group": "fines",
        "type": "decimal",
    },
    "grace_period": {
        "value": "1",
        "description": "Number of days before fines start accumulating",
        "group": "fines",
        "type": "integer",
    },
    "max_fine_amount": {
        "value": "100.00",
        "description": "Maximum fine amount per transaction (in PHP)",
        "group": "fines",
        "type": "decimal",
    },
    # school
    "school_name": {
        "value": "Bobon B Elementary School",
        "description": "Name of the school",
        "group": "school",
        "type": "text",
    },
    "school_address": {
        "value": "Southern Leyte, Philippines",
        "description": "Full address of the school",
        "group": "school",
        "type": "text",
    },
    "library_name": {
        "value": "School Library",
        "description": "Name of the library",
        "group": "school",
        "type": "text",
    },
    "library_email": {
        "value": "",
        "description": "Library contact email address",
        "group": "school",
        "type": "email",
    },
    "library_phone": {
        "value": "",
        "description": "Library contact phone number",
        "group": "school",
        "type": "text",
    },
    "library_hours": {
        "value": "7:00 AM - 5:00 PM",
        "description": "Library operating hours",
        "group": "school",
        "type": "text",
    },
    # system
    "date_format": {
        "value": "M d, Y",
        "description": "Date display format",
        "group": "system",
        "type": "select",
        "options": ["M d, Y", "d/m/Y", "Y-m-d", "F j, Y"],
    },
    "items_per_page": {
        "value": "15",
        "description": "Number of items to show per page in lists",
        "group": "system",
        "type": "integer",
    },
    "enable_email_notifications": {
        "value": "0",
        "description": "Send email notifications for overdue books",
        "group": "system",
        "type": "boolean",
    },
}

GROUP_LABELS = {
    "school": "School Information",
    "circulation": "Circulation Rules",
    "fines": "Fine Configuration",
    "system": "System Preferences",
}

TRUTHY = ("1", "true", "yes", "on")


class SettingCache:
    """
    In-process key cache with expiry. One instance per Flask app.

    Entries are only trusted while the store's version stamp is unchanged,
    so a write made by another worker or host empties this cache on the
    next read instead of waiting out the TTL.
    """

    def __init__(self, ttl: int):
        self.ttl = ttl
        self._data = {}
        self._version = None
        self._lock = threading.RLock()

    def sync(self, version):
        with self._lock:
            if version != self._version:
                self._data.clear()
                self._version = version

    def get(self, key):
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return _NOT_CACHED
            value, expires_at = entry
            if expires_at < time.monotonic():
                del self._data[key]
                return _NOT_CACHED
            return value

    def put(self, key, value):
        with self._lock:
            self._data[key] = (value, time.monotonic() + self.ttl)

    def forget(self, key):
        with self._lock:
            self._data.pop(key, None)

    def clear(self):
        with self._lock:
            self._data.clear()
            self._version = None


class SettingService:
    @staticmethod
    def _cache() -> SettingCache:
        cache = current_app.extensions.get("setting_cache")
        if cache is None:
            cache = SettingCache(current_app.config.get("SETTINGS_CACHE_TTL", 3600))
            current_app.extensions["setting_cache"] = cache
        return cache

    @staticmethod
    def _stored(key: str):
        """Raw stored text, or _NO_ROW when the key was never saved."""
        cache = SettingService._cache()
        cache.sync(SettingRepo.version())
        value = cache.get(key)
        if value is _NOT_CACHED:
            row = SettingRepo.get_by_key(key)
            # misses are cached too, a fresh store has no rows at all
            value = row.value if row is not None else _NO_ROW
            cache.put(key, value)
        return value

    # ------------------------------------------------------------------
    # raw + typed reads
    # ------------------------------------------------------------------
    @staticmethod
    def get(key: str, default=None):
        if default is None and key in DEFAULTS:
            default = DEFAULTS[key]["value"]
        value = SettingService._stored(key)
        if value is _NO_ROW or value is None:
            return default
        return value

    @staticmethod
    def _cast(key: str, default, caster):
        value = SettingService.get(key, default)
        try:
            return caster(value)
        except (TypeError, ValueError, InvalidOperation):
            current_app.logger.warning(
                f"[settings] '{key}' has unusable value {value!r}, falling back to {default!r}"
            )
            return caster(default)

    @staticmethod
    def get_int(key: str, default: int = 0) -> int:
        return SettingService._cast(key, default, lambda v: int(str(v).strip()))

    @staticmethod
    def get_decimal(key: str, default="0.00") -> Decimal:
        return SettingService._cast(key, default, lambda v: Decimal(str(v).strip()))

    @staticmethod
    def get_bool(key: str, default: bool = False) -> bool:
        value = SettingService.get(key, default)
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in TRUTHY

    @staticmethod
    def get_many(keys, defaults=None) -> dict:
        defaults = defaults or {}
        return {key: SettingService.get(key, defaults.get(key)) for key in keys}

    @staticmethod
    def get_all() -> dict:
        """Every known setting, stored value first, default otherwise."""
        stored = SettingRepo.all_as_dict()
        return {key: stored.get(key, meta["value"]) for key, meta in DEFAULTS.items()}

    @staticmethod
    def has(key: str) -> bool:
        return SettingRepo.get_by_key(key) is not None

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    @staticmethod
    def set(key: str, value):
        description = DEFAULTS.get(key, {}).get("description")
        SettingService._cache().forget(key)
        row = SettingRepo.upsert(key, value, description)
        current_app.logger.info(f"[settings] {key} = {row.value!r}")
        return row

    @staticmethod
    def remove(key: str) -> bool:
        SettingService._cache().forget(key)
        return SettingRepo.delete(key)

    @staticmethod
    def update_many(values: dict) -> list:
        """Apply known keys only; unknown keys come back so the caller can report them."""
        ignored = []
        for key, value in values.items():
            if key in DEFAULTS:
                SettingService.set(key, value)
            else:
                ignored.append(key)
        SettingService.clear_cache()
        return ignored

    @staticmethod
    def reset_defaults() -> None:
        for key, meta in DEFAULTS.items():
            SettingRepo.upsert(key, meta["value"], meta["description"])
        SettingService.clear_cache()

    @staticmethod
    def ensure_defaults() -> int:
        """Insert missing default rows, leave existing ones alone."""
        existing = set(SettingRepo.keys())
        created = 0
        for key, meta in DEFAULTS.items():
            if key not in existing:
                SettingRepo.upsert(key, meta["value"], meta["description"])
                created += 1
        SettingService.clear_cache()
        return created

    @staticmethod
    def clear_cache() -> None:
        SettingService._cache().clear()

    # ------------------------------------------------------------------
    # metadata
    # ------------------------------------------------------------------
    @staticmethod
    def get_all_with_metadata() -> dict:
        stored = SettingRepo.all_as_dict()
        return {
            key: {
                "key": key,
                "value": stored.get(key, meta["value"]),
                "description": meta["description"],
                "group": meta["group"],
                "type": meta["type"],
                "options": meta.get("options"),
            }
            for key, meta in DEFAULTS.items()
        }

    @staticmethod
    def get_grouped_settings() -> dict:
        grouped = {g: {"label": label, "settings": {}} for g, label in GROUP_LABELS.items()}
        for key, setting in SettingService.get_all_with_metadata().items():
            grouped[setting["group"]]["settings"][key] = setting
        return grouped

    @staticmethod
    def get_default(key: str):
        return DEFAULTS.get(key, {}).get("value")

    @staticmethod
    def is_valid_key(key: str) -> bool:
        return key in DEFAULTS

    @staticmethod
    def get_type(key: str):
        return DEFAULTS.get(key, {}).get("type")

    # ------------------------------------------------------------------
    # library shortcuts
    # ------------------------------------------------------------------
    @staticmethod
    def max_books_per_student() -> int:
        return SettingService.get_int("max_books_per_student", 3)

    @staticmethod
    def borrowing_period() -> int:
        return SettingService.get_int("borrowing_period", 7)

    @staticmethod
    def fine_per_day() -> Decimal:
        return SettingService.get_decimal("fine_per_day", "5.00")

    @staticmethod
    def grace_period() -> int:
        return SettingService.get_int("grace_period", 1)

    @staticmethod
    def max_fine_amount() -> Decimal:
        return SettingService.get_decimal("max_fine_amount", "100.00")

    @staticmethod
    def allow_renewals() -> bool:
        return SettingService.get_bool("allow_renewals", True)

    @staticmethod
    def max_renewals() -> int:
        return SettingService.get_int("max_renewals", 1)

    @staticmethod
    def school_name() -> str:
        return str(SettingService.get("school_name", "Bobon B Elementary School"))


