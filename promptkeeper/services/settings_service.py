import logging
from typing import Dict

from sqlalchemy.orm import Session as DbSession

from promptkeeper.database import store_guard
from promptkeeper.errors import InvalidInputError
from promptkeeper.models.settings_models import Setting

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 50

# Settings Service Functions

def get_settings_map(db: DbSession) -> Dict[str, str]:
    return {s.key: s.value for s in db.query(Setting).order_by(Setting.key).all()}

def get_setting_value(db: DbSession, key: str, default: str = "") -> str:
    db_setting = db.get(Setting, key)
    if db_setting is None or db_setting.value is None:
        return default
    return db_setting.value

def update_settings(db: DbSession, values: Dict[str, str]) -> Dict[str, str]:
    """
    Upserts every key in ``values`` in a single transaction.
    """
    for key in values:
        if not key or len(key) > MAX_KEY_LENGTH:
            raise InvalidInputError(f"Invalid setting key: {key!r}")

    with store_guard(db, "save settings"):
        for key, value in values.items():
            db_setting = db.get(Setting, key)
            if db_setting is None:
                db.add(Setting(key=key, value="" if value is None else str(value)))
            else:
                db_setting.value = "" if value is None else str(value)
        db.commit()

    # Never log the values; they include API keys.
    logger.info(f"Updated settings: {sorted(values)}")
    return get_settings_map(db)
