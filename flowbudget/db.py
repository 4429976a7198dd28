from sqlmodel import SQLModel, create_engine
from flowbudget import config
from flowbudget.store import LedgerStore

connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(config.DATABASE_URL, echo=False, connect_args=connect_args)


def init_db(bind=None):
    # Import models so SQLModel.metadata includes them
    import flowbudget.models.user, flowbudget.models.household, flowbudget.models.account  # noqa: F401
    import flowbudget.models.transaction, flowbudget.models.split, flowbudget.models.settlement  # noqa: F401
    import flowbudget.models.budget  # noqa: F401
    SQLModel.metadata.create_all(bind or engine)


def get_store():
    return LedgerStore(engine)
