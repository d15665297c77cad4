"""
Wellness tasks and proof submissions.

Companies submit photo/video proof for a task; admins approve or reject it.
Points and calories move only on approve/reject transitions.
"""
