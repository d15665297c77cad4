"""
Companies module.

- Company profiles (one per company user)
- Leaderboard (points, then calories)
"""
