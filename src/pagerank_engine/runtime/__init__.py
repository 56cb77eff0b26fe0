"""
Task execution: the background worker, the messages it speaks, and the caller-side scheduler.
"""
