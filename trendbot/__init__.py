"""Trendline breakout trading bot: EMA trend filter, swing trendlines and SL/TP position lifecycle."""
