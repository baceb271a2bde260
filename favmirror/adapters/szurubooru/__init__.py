"""Szurubooru destination adapter: auth bootstrap, REST client and reconciliation."""
