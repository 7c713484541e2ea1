import json
from typing import Iterable, List, Set

from jobflare.core.models import Job


def load_jobs(con) -> List[Job]:
    rows = con.execute("SELECT payload_json FROM jobs ORDER BY position ASC").fetchall()
    return [Job.from_dict(json.loads(r["payload_json"])) for r in rows]


def save_jobs(con, jobs: Iterable[Job]) -> None:
    """Replace the stored posting set in one transaction."""
    rows = [(j.id, j.source.value, i, json.dumps(j.to_dict())) for i, j in enumerate(jobs)]
    with con:
        con.execute("DELETE FROM jobs")
        con.executemany(
            "INSERT OR REPLACE INTO jobs(id, source, position, payload_json) VALUES(?,?,?,?)",
            rows,
        )


def load_seen_ids(con) -> Set[str]:
    return {r["job_id"] for r in con.execute("SELECT job_id FROM seen_ids").fetchall()}


def save_seen_ids(con, ids: Iterable[str]) -> None:
    with con:
        con.execute("DELETE FROM seen_ids")
        con.executemany("INSERT OR IGNORE INTO seen_ids(job_id) VALUES(?)", [(i,) for i in ids])
