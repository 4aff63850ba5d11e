"""
Persistence layer for CellClaw using SQLAlchemy.
Supports SQLite (default) and PostgreSQL.

Holds the plain-text conversation log, remembered facts, and scheduled task
definitions. All calls are synchronous; async callers offload them with
``asyncio.to_thread``.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    desc,
    func,
    or_,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite:///./cellclaw.db"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MessageModel(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(255), nullable=False, default="default")
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=_utcnow)

    __table_args__ = (Index("idx_messages_conversation_id", "conversation_id"),)


class MemoryFactModel(Base):
    __tablename__ = "memory_facts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(255), nullable=False)
    value = Column(Text, nullable=False)
    category = Column(String(100), nullable=False, default="general")
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("key", "category", name="uq_memory_facts_key_category"),
        Index("idx_memory_facts_category", "category"),
    )


class ScheduledTaskModel(Base):
    __tablename__ = "scheduled_tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    prompt = Column(Text, nullable=False)
    interval_minutes = Column(Integer, nullable=False)
    initial_delay_minutes = Column(Integer, default=0)
    enabled = Column(Boolean, default=True)
    last_run = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)


class Database:
    """Database interface for CellClaw."""

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL):
        self.database_url = database_url

        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False

        self.engine = create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool if database_url.startswith("sqlite") else None,
        )
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self):
        """Create all tables."""
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    # ==================== Messages ====================

    def add_message(self, session: Session, **kwargs) -> MessageModel:
        message = MessageModel(**kwargs)
        session.add(message)
        session.commit()
        session.refresh(message)
        return message

    def get_recent_messages(
        self, session: Session, conversation_id: str, limit: int = 50
    ) -> List[MessageModel]:
        """Most recent messages, oldest first."""
        rows = (
            session.query(MessageModel)
            .filter(MessageModel.conversation_id == conversation_id)
            .order_by(desc(MessageModel.id))
            .limit(limit)
            .all()
        )
        return list(reversed(rows))

    def clear_messages(self, session: Session, conversation_id: str) -> int:
        deleted = (
            session.query(MessageModel)
            .filter(MessageModel.conversation_id == conversation_id)
            .delete()
        )
        session.commit()
        return deleted

    def count_messages(self, session: Session, conversation_id: str) -> int:
        return (
            session.query(func.count(MessageModel.id))
            .filter(MessageModel.conversation_id == conversation_id)
            .scalar()
        )

    # ==================== Memory facts ====================

    def upsert_fact(
        self, session: Session, key: str, value: str, category: str
    ) -> MemoryFactModel:
        fact = (
            session.query(MemoryFactModel)
            .filter(MemoryFactModel.key == key, MemoryFactModel.category == category)
            .first()
        )
        if fact is None:
            fact = MemoryFactModel(key=key, value=value, category=category)
            session.add(fact)
        else:
            fact.value = value
        session.commit()
        session.refresh(fact)
        return fact

    def get_facts(
        self, session: Session, category: Optional[str] = None
    ) -> List[MemoryFactModel]:
        query = session.query(MemoryFactModel)
        if category is not None:
            query = query.filter(MemoryFactModel.category == category)
        return query.order_by(MemoryFactModel.category, MemoryFactModel.id).all()

    def search_facts(self, session: Session, query: str) -> List[MemoryFactModel]:
        pattern = f"%{query}%"
        return (
            session.query(MemoryFactModel)
            .filter(or_(MemoryFactModel.key.like(pattern), MemoryFactModel.value.like(pattern)))
            .order_by(MemoryFactModel.id)
            .all()
        )

    def delete_fact(self, session: Session, fact_id: int) -> bool:
        deleted = session.query(MemoryFactModel).filter(MemoryFactModel.id == fact_id).delete()
        session.commit()
        return deleted > 0

    # ==================== Scheduled tasks ====================

    def create_scheduled_task(self, session: Session, **kwargs) -> ScheduledTaskModel:
        task = ScheduledTaskModel(**kwargs)
        session.add(task)
        session.commit()
        session.refresh(task)
        return task

    def get_scheduled_task(
        self, session: Session, task_id: int
    ) -> Optional[ScheduledTaskModel]:
        return session.query(ScheduledTaskModel).filter(ScheduledTaskModel.id == task_id).first()

    def list_scheduled_tasks(self, session: Session) -> List[ScheduledTaskModel]:
        return (
            session.query(ScheduledTaskModel)
            .order_by(desc(ScheduledTaskModel.created_at), desc(ScheduledTaskModel.id))
            .all()
        )

    def update_last_run(
        self, session: Session, task_id: int, when: Optional[datetime] = None
    ) -> Optional[ScheduledTaskModel]:
        task = self.get_scheduled_task(session, task_id)
        if task is None:
            return None
        task.last_run = when or _utcnow()
        session.commit()
        session.refresh(task)
        return task

    def set_task_enabled(self, session: Session, task_id: int, enabled: bool) -> bool:
        task = self.get_scheduled_task(session, task_id)
        if task is None:
            return False
        task.enabled = enabled
        session.commit()
        return True

    def delete_scheduled_task(self, session: Session, task_id: int) -> bool:
        deleted = (
            session.query(ScheduledTaskModel).filter(ScheduledTaskModel.id == task_id).delete()
        )
        session.commit()
        return deleted > 0


@dataclass(frozen=True)
class StoredMessage:
    role: str
    content: str
    conversation_id: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class MemoryFact:
    id: int
    key: str
    value: str
    category: str


def _fact(row: MemoryFactModel) -> MemoryFact:
    return MemoryFact(id=row.id, key=row.key, value=row.value, category=row.category)


class ConversationStore:
    """Plain-text log of user and assistant messages per conversation."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def add_message(self, role: str, content: str, conversation_id: str = "default") -> None:
        with self.db.get_session() as session:
            self.db.add_message(
                session, role=role, content=content, conversation_id=conversation_id
            )

    def get_recent_messages(
        self, conversation_id: str = "default", limit: int = 50
    ) -> List[StoredMessage]:
        with self.db.get_session() as session:
            return [
                StoredMessage(m.role, m.content, m.conversation_id, m.created_at)
                for m in self.db.get_recent_messages(session, conversation_id, limit)
            ]

    def clear(self, conversation_id: str = "default") -> int:
        with self.db.get_session() as session:
            return self.db.clear_messages(session, conversation_id)

    def count(self, conversation_id: str = "default") -> int:
        with self.db.get_session() as session:
            return self.db.count_messages(session, conversation_id)


class SemanticMemory:
    """Key/value facts about the user, grouped by category.

    A fact is identified by (key, category); remembering the same pair again
    replaces its value.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def remember(self, key: str, value: str, category: str = "general") -> MemoryFact:
        with self.db.get_session() as session:
            return _fact(self.db.upsert_fact(session, key, value, category))

    def recall(self, category: Optional[str] = None) -> List[MemoryFact]:
        with self.db.get_session() as session:
            return [_fact(row) for row in self.db.get_facts(session, category)]

    def search(self, query: str) -> List[MemoryFact]:
        with self.db.get_session() as session:
            return [_fact(row) for row in self.db.search_facts(session, query)]

    def forget(self, fact_id: int) -> bool:
        with self.db.get_session() as session:
            return self.db.delete_fact(session, fact_id)

    def build_context(self) -> str:
        """Markdown block of known facts for the system prompt, or ""."""
        facts = self.recall()
        if not facts:
            return ""

        grouped: Dict[str, List[MemoryFact]] = {}
        for fact in facts:
            grouped.setdefault(fact.category, []).append(fact)

        lines = ["", "## Known Facts"]
        for category, category_facts in grouped.items():
            lines.append(f"### {category}")
            lines.extend(f"- {fact.key}: {fact.value}" for fact in category_facts)
        return "\n".join(lines)


def get_database(database_url: str = DEFAULT_DATABASE_URL) -> Database:
    """Create a database and its tables."""
    db = Database(database_url)
    db.create_tables()
    return db
