"""
Fantasy cricket backend.
Squad validation, auto-match queue, scoring engine; persistence and API are thin layers around them.
"""
