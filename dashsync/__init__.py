# dashsync: task board + notes kept in sync with a remote document store
#
# Components:
#   schema.py      - Data model (Board, Column, Task, Note, NoteCategory)
#   store.py       - Document store contract, memory and SQLite backends
#   firestore.py   - Firestore REST backend (polling subscriptions)
#   cache.py       - SyncedState: reconciled board/notes + derived views
#   views.py       - Pure view projections (column labels, category filter)
#   dispatcher.py  - Optimistic mutations + fire-and-forget writes
#   reconciler.py  - Subscription readers, last-snapshot-wins
#   session.py     - Per-identity wiring, sign-in/sign-out
#   render.py      - Plain-text presentation
#   config.py      - YAML/env configuration
#   cli.py         - dashsync command

__version__ = "0.1.0"
