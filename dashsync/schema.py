"""
Dashboard data model: task board and categorized notes.

Board layout:
  todo → inProgress → done   (done can go back to todo)

The board is one document per user; notes are one document each.
Columns are fixed, tasks move between them.
"""
import time
import uuid
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Mapping


BOARDS = "boards"
NOTES = "notes"


class ColumnId(Enum):
    """The three fixed board columns, in display order."""
    TODO = "todo"
    IN_PROGRESS = "inProgress"
    DONE = "done"

    @classmethod
    def parse(cls, value: "ColumnId | str") -> "ColumnId":
        """Accept an enum member or its wire value; raise ValueError otherwise."""
        if isinstance(value, cls):
            return value
        return cls(value)


COLUMN_TITLES: Dict[ColumnId, str] = {
    ColumnId.TODO: "To Do",
    ColumnId.IN_PROGRESS: "In Progress",
    ColumnId.DONE: "Done",
}

# Checkbox binding: done unchecks back to todo, everything else checks to done
TOGGLE_TARGET: Dict[ColumnId, ColumnId] = {
    ColumnId.TODO: ColumnId.DONE,
    ColumnId.IN_PROGRESS: ColumnId.DONE,
    ColumnId.DONE: ColumnId.TODO,
}

# Advance binding: done has no forward move
ADVANCE_TARGET: Dict[ColumnId, ColumnId] = {
    ColumnId.TODO: ColumnId.IN_PROGRESS,
    ColumnId.IN_PROGRESS: ColumnId.DONE,
}


class NoteCategory(Enum):
    """Closed set of note categories."""
    CATATAN = "catatan"
    AKUN = "akun"
    LINK = "link"
    MUST_BUY = "must-buy"
    OTHER = "other"

    @classmethod
    def from_str(cls, value: Optional[str]) -> "NoteCategory":
        """Lenient lookup used on snapshot data: unknown → OTHER."""
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER

    @classmethod
    def parse(cls, value: "NoteCategory | str") -> "NoteCategory":
        if isinstance(value, cls):
            return value
        return cls(value)


CATEGORY_ICONS: Dict[NoteCategory, str] = {
    NoteCategory.CATATAN: "📝",
    NoteCategory.AKUN: "👤",
    NoteCategory.LINK: "🔗",
    NoteCategory.MUST_BUY: "🛒",
    NoteCategory.OTHER: "📌",
}


def make_task_id() -> str:
    """Client-side task id (ms timestamp + random hex). Never checked against remote state."""
    ts = int(time.time() * 1000)
    rand = uuid.uuid4().hex[:8]
    return f"task-{ts}-{rand}"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Board
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class Task:
    """One card on the board."""
    id: str
    content: str
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "content": self.content, "completed": self.completed}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Task":
        content = data.get("content")
        return cls(
            id=str(data.get("id", "")),
            content=content if isinstance(content, str) else ("" if content is None else str(content)),
            completed=bool(data.get("completed", False)),
        )


@dataclass
class Column:
    """A fixed board column and its ordered tasks."""
    id: ColumnId
    title: str
    tasks: List[Task] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id.value,
            "title": self.title,
            "tasks": [t.to_dict() for t in self.tasks],
        }


@dataclass
class Board:
    """Whole-board aggregate. Always holds exactly the three columns."""
    columns: Dict[ColumnId, Column]

    @classmethod
    def default(cls) -> "Board":
        return cls(columns={cid: Column(id=cid, title=COLUMN_TITLES[cid]) for cid in ColumnId})

    def copy(self) -> "Board":
        """Copy with fresh task lists, so mutating the copy never touches self."""
        return Board(columns={
            cid: Column(id=col.id, title=col.title, tasks=list(col.tasks))
            for cid, col in self.columns.items()
        })

    def all_tasks(self) -> List[Task]:
        return [t for cid in ColumnId for t in self.columns[cid].tasks]

    def find(self, task_id: str) -> Optional[ColumnId]:
        """Column currently holding task_id, if any."""
        for cid in ColumnId:
            if any(t.id == task_id for t in self.columns[cid].tasks):
                return cid
        return None

    def __str__(self) -> str:
        return ", ".join(
            f"{self.columns[cid].title}: {len(self.columns[cid].tasks)} tasks" for cid in ColumnId
        )


def board_to_document(board: Board, user_id: str) -> Dict[str, Any]:
    """Full board document as persisted under boards/<userId>."""
    return {
        "userId": user_id,
        "columns": {cid.value: board.columns[cid].to_dict() for cid in ColumnId},
    }


def board_from_document(data: Optional[Mapping[str, Any]]) -> Board:
    """
    Rebuild a Board field by field from a stored document.

    Column ids and titles always come from the defaults. A column whose
    tasks field is missing or not a list gets an empty task list; task
    entries that are not mappings are dropped.
    """
    board = Board.default()
    columns = data.get("columns") if isinstance(data, Mapping) else None
    if not isinstance(columns, Mapping):
        return board

    for cid in ColumnId:
        raw_col = columns.get(cid.value)
        raw_tasks = raw_col.get("tasks") if isinstance(raw_col, Mapping) else None
        if not isinstance(raw_tasks, list):
            continue
        board.columns[cid].tasks = [
            Task.from_dict(raw) for raw in raw_tasks if isinstance(raw, Mapping)
        ]
    return board


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Notes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True)
class Note:
    """A categorized note. Immutable once created."""
    id: str
    content: str
    category: NoteCategory = NoteCategory.OTHER
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str = ""


def _coerce_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def note_from_snapshot(snapshot) -> Note:
    """
    Build a Note from a DocumentSnapshot.

    Absent/unknown category → OTHER. Absent or unresolved createdAt →
    current local time.
    """
    data = snapshot.data or {}
    content = data.get("content")
    created_at = _coerce_timestamp(data.get("createdAt"))
    return Note(
        id=snapshot.id,
        content=content if isinstance(content, str) else "",
        category=NoteCategory.from_str(data.get("category")) if data.get("category") else NoteCategory.OTHER,
        created_at=created_at or datetime.now().astimezone(),
        user_id=str(data.get("userId", "")),
    )
