"""
End-to-end tests: session, reconciler and dispatcher against a live store.

Covers:
    - first access bootstraps the board with one write
    - optimistic add visible before the store acknowledges
    - move round trip
    - add note → observe id in snapshot → delete
    - stale snapshot reverts optimistic state until the write lands
    - malformed board documents
    - sign-out / identity change
"""

from conftest import RecordingStore, run
from dashsync.cache import BOARD
from dashsync.schema import Board, ColumnId, NoteCategory, Task, board_to_document
from dashsync.session import DashboardSession
from dashsync.store import DocumentSnapshot, SqliteDocumentStore


async def _signed_in(store, user="u1"):
    session = DashboardSession(store)
    await session.set_user(user)
    await session.wait_ready(timeout=1)
    await session.settle()
    return session


def _todo(session):
    return session.state.get_board().columns[ColumnId.TODO].tasks


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Scenarios
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_fresh_user_gets_bootstrapped_board():
    async def scenario():
        store = RecordingStore()
        session = await _signed_in(store)
        await session.close()
        return store, session

    store, session = run(scenario())
    assert store.writes == ["boards/u1"]
    assert store.get("boards/u1") == board_to_document(Board.default(), "u1")
    assert session.writer.completed == 1


def test_existing_board_is_not_rewritten():
    async def scenario():
        store = RecordingStore()
        board = Board.default()
        board.columns[ColumnId.DONE].tasks.append(Task(id="t1", content="old"))
        await store.write("boards/u1", board_to_document(board, "u1"))
        store.writes.clear()
        session = await _signed_in(store)
        return store, session

    store, session = run(scenario())
    assert store.writes == []
    assert [t.id for t in session.state.get_board().columns[ColumnId.DONE].tasks] == ["t1"]
    assert not session.state.loading


def test_add_task_is_optimistic():
    async def scenario():
        store = RecordingStore()
        session = await _signed_in(store)
        task = session.dispatcher.add_task("Buy milk")
        seen_locally = list(_todo(session))
        seen_remotely = store.get("boards/u1")["columns"]["todo"]["tasks"]
        await session.settle()
        return task, seen_locally, seen_remotely, session

    task, seen_locally, seen_remotely, session = run(scenario())
    assert seen_locally == [Task(id=task.id, content="Buy milk", completed=False)]
    assert seen_remotely == []
    # Own snapshot came back and agrees
    assert _todo(session) == [task]
    assert session.state.board_view.column(ColumnId.TODO).label == "To Do (1)"
    assert session.state.summary() == {"todo": 1, "inProgress": 0, "done": 0, "notes": 0}


def test_move_round_trip_after_settling():
    async def scenario():
        store = RecordingStore()
        session = await _signed_in(store)
        task = session.dispatcher.add_task("t1")
        await session.settle()
        original = session.state.get_board().copy()
        session.dispatcher.move_task(task.id, "todo", "done")
        session.dispatcher.move_task(task.id, "done", "todo")
        await session.settle()
        return original, session, store

    original, session, store = run(scenario())
    assert session.state.get_board() == original
    assert store.get("boards/u1") == board_to_document(original, "u1")


def test_note_appears_only_through_snapshot_then_deletes():
    async def scenario():
        store = RecordingStore()
        session = await _signed_in(store)
        note_id = session.dispatcher.add_note("x", "akun")
        before_snapshot = session.state.get_notes()
        await session.settle()
        observed = [n.id for n in session.state.get_notes()]
        session.dispatcher.delete_note(observed[0])
        await session.settle()
        return note_id, before_snapshot, observed, session

    note_id, before_snapshot, observed, session = run(scenario())
    assert before_snapshot == []
    assert observed == [note_id]
    assert session.state.get_notes() == []


def test_notes_are_newest_first_and_filterable():
    async def scenario():
        store = RecordingStore()
        session = await _signed_in(store)
        d = session.dispatcher
        for text, cat in [("a", "akun"), ("b", "link"), ("c", "akun")]:
            d.add_note(text, cat)
            await session.settle()
        session.set_category_filter("akun")
        return session

    session = run(scenario())
    assert [n.content for n in session.state.get_notes()] == ["c", "b", "a"]
    assert [n.content for n in session.state.notes_view.notes] == ["c", "a"]
    assert session.state.notes_view.category is NoteCategory.AKUN


def test_other_users_notes_are_invisible():
    async def scenario():
        store = RecordingStore()
        other = await _signed_in(store, "u2")
        other.dispatcher.add_note("secret", "akun")
        await other.settle()
        session = await _signed_in(store, "u1")
        return session

    assert run(scenario()).state.get_notes() == []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Reconciliation races
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_stale_snapshot_reverts_until_write_lands():
    async def scenario():
        store = RecordingStore()
        session = await _signed_in(store)
        stale = DocumentSnapshot(id="u1", data=store.get("boards/u1"))

        session.dispatcher.add_task("racing")
        optimistic = len(_todo(session))
        session.reconciler.apply_board_snapshot(stale)
        reverted = len(_todo(session))
        await session.settle()
        return optimistic, reverted, len(_todo(session))

    assert run(scenario()) == (1, 0, 1)


def test_failed_write_keeps_optimistic_state():
    async def scenario():
        store = RecordingStore()
        session = await _signed_in(store)
        store.write_error = PermissionError("denied")
        session.dispatcher.add_task("kept locally")
        await session.settle()
        return session, store

    session, store = run(scenario())
    assert [t.content for t in _todo(session)] == ["kept locally"]
    assert store.get("boards/u1")["columns"]["todo"]["tasks"] == []
    assert len(session.writer.failures) == 1


def test_malformed_board_snapshot_is_repaired():
    async def scenario():
        store = RecordingStore()
        await store.write("boards/u1", {"userId": "u1", "columns": {
            "todo": {"id": "todo", "title": "To Do"},
            "inProgress": {"tasks": "garbage"},
            "done": {"tasks": [{"id": "t9", "content": "x", "completed": True}, 5]},
        }})
        return await _signed_in(store)

    board = run(scenario()).state.get_board()
    assert board.columns[ColumnId.TODO].tasks == []
    assert board.columns[ColumnId.IN_PROGRESS].tasks == []
    assert board.columns[ColumnId.DONE].tasks == [Task(id="t9", content="x", completed=True)]


def test_listeners_fire_per_replacement():
    async def scenario():
        store = RecordingStore()
        session = DashboardSession(store)
        events = []
        session.state.subscribe(lambda aggregate, state: events.append(aggregate))
        await session.set_user("u1")
        await session.wait_ready(timeout=1)
        await session.settle()
        events.clear()
        session.dispatcher.add_task("a")
        await session.settle()
        return events

    # optimistic replace + own snapshot
    assert run(scenario()) == [BOARD, BOARD]


def test_broken_listener_does_not_stop_reconciliation():
    async def scenario():
        store = RecordingStore()
        session = DashboardSession(store)

        def broken(aggregate, state):
            raise RuntimeError("render crashed")

        session.state.subscribe(broken)
        await session.set_user("u1")
        await session.wait_ready(timeout=1)
        session.dispatcher.add_note("still here")
        await session.settle()
        return session

    assert [n.content for n in run(scenario()).state.get_notes()] == ["still here"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Identity changes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_no_user_means_no_subscriptions():
    async def scenario():
        store = RecordingStore()
        session = DashboardSession(store)
        await session.set_user(None)
        return store, session

    store, session = run(scenario())
    assert store.subscriber_count() == 0
    assert session.dispatcher is None
    assert session.state.loading


def test_sign_out_stops_delivery_but_not_writes():
    async def scenario():
        store = RecordingStore()
        session = await _signed_in(store)
        session.dispatcher.add_task("in flight")
        await session.set_user(None)
        await session.writer.drain()
        return store, session

    store, session = run(scenario())
    assert store.subscriber_count() == 0
    assert session.state.get_board() == Board.default()
    # The write issued before sign-out still landed
    assert [t["content"] for t in store.get("boards/u1")["columns"]["todo"]["tasks"]] == ["in flight"]


def test_switching_user_resubscribes():
    async def scenario():
        store = RecordingStore()
        session = await _signed_in(store, "u1")
        session.dispatcher.add_task("mine")
        await session.settle()
        await session.set_user("u2")
        await session.wait_ready(timeout=1)
        await session.settle()
        return store, session

    store, session = run(scenario())
    assert session.user_id == "u2"
    assert session.dispatcher.user_id == "u2"
    assert _todo(session) == []
    assert store.subscriber_count() == 2
    assert len(store.get("boards/u1")["columns"]["todo"]["tasks"]) == 1
    assert store.get("boards/u2") is not None


def test_same_user_is_a_no_op():
    async def scenario():
        store = RecordingStore()
        session = await _signed_in(store)
        reconciler = session.reconciler
        await session.set_user("u1")
        return session, reconciler, store

    session, reconciler, store = run(scenario())
    assert session.reconciler is reconciler
    assert store.subscriber_count() == 2


def test_sqlite_backed_session(db_path):
    async def first_run():
        session = await _signed_in(SqliteDocumentStore(db_path))
        session.dispatcher.add_task("durable")
        session.dispatcher.add_note("remember", "must-buy")
        await session.settle()
        await session.close()

    async def second_run():
        return await _signed_in(SqliteDocumentStore(db_path))

    run(first_run())
    session = run(second_run())
    assert [t.content for t in _todo(session)] == ["durable"]
    assert [(n.content, n.category) for n in session.state.get_notes()] == [("remember", NoteCategory.MUST_BUY)]


def test_quick_adds_on_sqlite_keep_every_task(db_path):
    async def scenario():
        store = SqliteDocumentStore(db_path)
        session = await _signed_in(store)
        added = [session.dispatcher.add_task(f"t{i}") for i in range(8)]
        await session.settle()
        stored = await SqliteDocumentStore(db_path).subscribe("boards/u1").__anext__()
        return added, session, stored

    added, session, stored = run(scenario())
    ids = [t.id for t in added]
    assert [t["id"] for t in stored.data["columns"]["todo"]["tasks"]] == ids
    assert [t.id for t in _todo(session)] == ids
