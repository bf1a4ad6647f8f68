from switchboard.db.base import Base
from switchboard.db.session import engine
import switchboard.db.models  # noqa


def init_db():
    Base.metadata.create_all(bind=engine)


if __name__ == "__main__":
    init_db()
