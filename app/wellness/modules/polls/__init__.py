"""
Live polls: subjects, ordered polls and anonymous per-session votes.
Vote counts and current-poll changes are pushed over app.wellness.realtime.
"""
