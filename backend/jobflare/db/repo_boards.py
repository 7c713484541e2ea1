import json
from typing import Iterable, List

from jobflare.core.models import BoardConfig


def list_boards(con) -> List[BoardConfig]:
    rows = con.execute("SELECT payload_json FROM boards ORDER BY position ASC").fetchall()
    return [BoardConfig.from_dict(json.loads(r["payload_json"])) for r in rows]


def save_boards(con, boards: Iterable[BoardConfig]) -> None:
    rows = [(b.id, b.url, i, json.dumps(b.to_dict())) for i, b in enumerate(boards)]
    with con:
        con.execute("DELETE FROM boards")
        con.executemany(
            "INSERT INTO boards(id, url, position, payload_json) VALUES(?,?,?,?)",
            rows,
        )
