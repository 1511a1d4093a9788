from sqlalchemy import func

from schoollib.extensions import db
from schoollib.models.setting import Setting


class SettingRepo:
    @staticmethod
    def get_by_key(key: str):
        return Setting.query.filter_by(key=key).first()

    @staticmethod
    def upsert(key: str, value, description=None):
        row = SettingRepo.get_by_key(key)
        if row is None:
            row = Setting(key=key)
            db.session.add(row)
        row.value = None if value is None else str(value)
        if description is not None:
            row.description = description
        db.session.commit()
        return row

    @staticmethod
    def delete(key: str) -> bool:
        deleted = Setting.query.filter_by(key=key).delete()
        db.session.commit()
        return bool(deleted)

    @staticmethod
    def all_as_dict() -> dict:
        return {row.key: row.value for row in Setting.query.all()}

    @staticmethod
    def keys() -> list:
        return [row.key for row in Setting.query.with_entities(Setting.key).all()]

    @staticmethod
    def version() -> tuple:
        """Changes whenever any process inserts, updates or deletes a setting."""
        count, latest = db.session.query(func.count(Setting.id), func.max(Setting.updated_at)).one()
        return count, latest
