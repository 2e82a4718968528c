"""DISC-E entrypoint package.

Architectural role:
- Defines the external interaction boundary: the Discord bot and a local CLI.
- Converts platform objects into `disce.core.request_types` views.
- Delegates all request handling to `disce.core.engine.BotEngine`.
"""
