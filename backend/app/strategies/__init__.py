"""Trading strategies (entry/exit rules).

This package contains *rules* (which direction, whether an entry is allowed,
when a position exits) and composes indicator calculations from
`indicators.py`.

Keep `indicators.py` calculation-only.
"""
