import json
from typing import Any, Dict

DEFAULT_SETTINGS = {
    # Filters applied at fetch time and as the default view
    "title_filter": "",
    "location_filter": "",

    # Built-in sources fetched on their own timers (board URLs are separate)
    "enabled_sources": ["microsoft"],
    "include_boards": True,

    "notifications_enabled": True,
    "max_pages": 5,
}


def get_settings(con, user_id: str) -> Dict[str, Any]:
    row = con.execute(
        "SELECT settings_json FROM settings WHERE user_id=?",
        (user_id,)
    ).fetchone()

    if not row:
        # auto-create defaults
        with con:
            con.execute(
                "INSERT INTO settings(user_id, settings_json) VALUES(?,?)",
                (user_id, json.dumps(DEFAULT_SETTINGS))
            )
        return dict(DEFAULT_SETTINGS)

    try:
        data = json.loads(row["settings_json"])
    except ValueError:
        data = {}

    # merge defaults (so new fields appear automatically)
    merged = dict(DEFAULT_SETTINGS)
    merged.update(data or {})
    return merged


def update_settings(con, user_id: str, settings: Dict[str, Any]) -> Dict[str, Any]:
    current = get_settings(con, user_id)
    current.update({k: v for k, v in (settings or {}).items() if k in DEFAULT_SETTINGS})

    with con:
        con.execute(
            "INSERT INTO settings(user_id, settings_json) VALUES(?,?) "
            "ON CONFLICT(user_id) DO UPDATE SET settings_json=excluded.settings_json",
            (user_id, json.dumps(current))
        )
    return current
