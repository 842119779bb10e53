"""Royalty domain: pure value objects, money arithmetic, periods and policy."""
