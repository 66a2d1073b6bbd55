"""py-slate: interactive slate negotiation wallet."""

__version__ = "0.1.0"
