"""
Plain-text presentation of the board and notes views.
"""
from typing import List

from .schema import CATEGORY_ICONS, NoteCategory
from .views import BoardView, NotesView


def category_label(category: NoteCategory) -> str:
    """"must-buy" → "Must-buy"."""
    value = category.value
    return value[:1].upper() + value[1:]


def category_icon(category: NoteCategory) -> str:
    return CATEGORY_ICONS.get(category, "❓")


def render_board(view: BoardView) -> str:
    """One block per column: label, then checkbox/id/content rows."""
    lines: List[str] = []
    for col in view.columns:
        lines.append(f"📋 {col.label}")
        if not col.rows:
            lines.append("   (empty)")
        for row in col.rows:
            box = "[x]" if row.checked else "[ ]"
            arrow = " →" if row.can_advance else ""
            lines.append(f"   {box} {row.id}: {row.content}{arrow}")
        lines.append("")
    return "\n".join(lines).rstrip()


def render_notes(view: NotesView) -> str:
    if view.category is None:
        header = f"🗒 Notes ({view.total}):"
    else:
        header = (
            f"🗒 Notes · {category_icon(view.category)} {category_label(view.category)} "
            f"({len(view.notes)} of {view.total}):"
        )
    if not view.notes:
        return f"{header}\nNo notes found."

    lines = [header]
    for note in view.notes:
        stamp = note.created_at.astimezone().strftime("%Y-%m-%d %H:%M")
        lines.append(f"{category_icon(note.category)} [{category_label(note.category)}] {stamp}  {note.id}")
        lines.append(f"   {note.content}")
    return "\n".join(lines)
