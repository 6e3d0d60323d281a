"""Subprocess supervision and stream-json protocol engine.

One run drives the agent CLI through a bounded number of attempts.  Each
attempt owns exactly one subprocess: its stdout is decoded line by line into
protocol events, both output channels keep the activity timer alive, and any
stop trigger (timeout, signal, unexpected fault) ends in the same two-phase
shutdown.  The session id reported by a successful attempt is persisted so the
next invocation resumes the same conversation.
"""
