from sqlalchemy.orm import Session

from modgate.models.module import Module


class ModuleRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_all(self) -> list[Module]:
        return self.db.query(Module).order_by(Module.display_order, Module.code).all()

    def get_by_code(self, code: str) -> Module | None:
        return self.db.query(Module).filter(Module.code == code).first()
