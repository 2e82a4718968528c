"""Trigger handling package.

Scope:
    Parses `/dalle` command messages and traces "regenerate" reactions back to
    the command message they refer to. Both modules only read chat state;
    neither sends messages nor touches markers.
"""
