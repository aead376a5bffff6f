import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        system_actor: str,
        max_category_depth: int,
        report_top_transactions: int,
        default_user_id: int,
    ) -> None:
        self.database_url = database_url
        self.system_actor = system_actor
        self.max_category_depth = max_category_depth
        self.report_top_transactions = report_top_transactions
        self.default_user_id = default_user_id


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    system_actor = os.getenv("LEDGER_SYSTEM_ACTOR", "system")
    max_category_depth = int(os.getenv("LEDGER_MAX_CATEGORY_DEPTH", "64"))
    report_top_transactions = int(os.getenv("LEDGER_REPORT_TOP_TRANSACTIONS", "10"))
    default_user_id = int(os.getenv("LEDGER_DEFAULT_USER_ID", "1"))
    return Settings(
        database_url=database_url,
        system_actor=system_actor,
        max_category_depth=max_category_depth,
        report_top_transactions=report_top_transactions,
        default_user_id=default_user_id,
    )
