"""Presentation-side helpers: engine events, auto-save and the console session."""
