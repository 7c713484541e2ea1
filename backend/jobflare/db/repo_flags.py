from typing import Iterable, Set

from jobflare.core.models import now_utc

FLAGS = ("starred", "applied")


def load_flagged(con, flag: str) -> Set[str]:
    rows = con.execute("SELECT job_id FROM job_flags WHERE flag=?", (flag,)).fetchall()
    return {r["job_id"] for r in rows}


def save_flagged(con, flag: str, ids: Iterable[str]) -> None:
    if flag not in FLAGS:
        raise ValueError(f"unknown flag: {flag}")
    created = now_utc().isoformat()
    with con:
        con.execute("DELETE FROM job_flags WHERE flag=?", (flag,))
        con.executemany(
            "INSERT OR IGNORE INTO job_flags(job_id, flag, created_at) VALUES(?,?,?)",
            [(i, flag, created) for i in ids],
        )
