"""Core request-lifecycle package.

Architectural role:
    Holds the shared data contracts, the error taxonomy, the chat-platform
    protocol, and the pipeline engine that sits between the platform adapter
    (`disce.api`) and the lower-level components (`disce.commands`,
    `disce.status`, `disce.image`).

Composition:
    - `request_types`: request/result/message data classes.
    - `errors`: failure taxonomy used across the pipeline.
    - `platform`: protocol implemented by chat adapters.
    - `engine`: per-trigger control flow.

Determinism and side effects:
    Package import is side-effect free. Runtime side effects are performed by
    `engine` through the injected platform, client, and compositor.
"""
