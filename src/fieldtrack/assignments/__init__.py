"""
Assignment subsystem.

Components:
- models.py: data structures (Assignment, Task, User, Actor, Page)
- directory.py: SQLite-backed task/user directory
- status.py: computed status and work-hour window checks
- store.py: SQLite-backed assignment storage + guarded transitions
"""
