from schoollib.extensions import db
from schoollib.models.user import User


class UserRepo:
    @staticmethod
    def get_by_username(username: str):
        return User.query.filter_by(username=username).first()

    @staticmethod
    def create(user: User):
        db.session.add(user)
        db.session.commit()
        return user
