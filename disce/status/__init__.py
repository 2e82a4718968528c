"""Status marker package.

This package contains the reaction-marker state machine the engine uses to
show a request's lifecycle phase on a chat message.
"""
