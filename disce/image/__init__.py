"""Image generation adapter package.

Scope:
    Provides the generation-endpoint client for both provider response shapes
    and the compositor that merges fragment responses into one JPEG.

Non-goals:
    - No chat-platform access.
    - No request queueing; callers run each request on its own task.
"""
